""" Door access decisions: geofence checks, proof verification and role
resolution in one call.

``authorize`` performs the checks in a fixed order and stops at the first
failure:

1. the door must exist;
2. the geohash supplied with the request must start with the door's prefix;
3. the geohash embedded in the proof must be that same string, so the
   location that passed the geofence is the one bound into the proof;
4. the proof must verify;
5. the proven public key must belong to a known role.

``compute_geohash`` turns a position into the geohash a claimant submits.

Example:
    >>> from privaccess.rbac import get_role_secret
    >>> from privaccess.zkp import Prover
    >>> prover = Prover(get_role_secret("ADMIN"))
    >>> record = prover.generate_proof("t1q7hkf")
    >>> decision = authorize("101", record, "t1q7hkf")
    >>> decision.granted, decision.role
    (True, 'ADMIN')
    >>> authorize("101", record, "u4pruyd").reason
    'outside_proximity'

"""

import json
import logging

import pytest

from .rbac import resolve_role
from .zkp import Verifier, ProofRecord, MalformedProofError, LOCATION_PREFIX_LEN

logger = logging.getLogger(__name__)


class Door(object):
    """A door with the geohash prefix a claimant must be inside of."""

    __slots__ = ['name', 'secret_qr', 'geohash_prefix']

    def __init__(self, name, secret_qr, geohash_prefix):
        self.name = name
        self.secret_qr = secret_qr
        self.geohash_prefix = geohash_prefix

    def __repr__(self):
        return "Door(%r, prefix=%r)" % (self.name, self.geohash_prefix)


DOORS = {
    "101": Door("Computer Lab A", "3f334a1714eb61d5ab08730948518608", "t1q7hk"),
}

GRANTED = "granted"
DOOR_NOT_FOUND = "door_not_found"
OUTSIDE_PROXIMITY = "outside_proximity"
GEOHASH_MISMATCH = "geohash_mismatch"
INVALID_PROOF = "invalid_proof"
UNAUTHORIZED = "unauthorized"

_BASE32 = "0123456789bcdefghjkmnpqrstuvwxyz"

_MESSAGES = {
    DOOR_NOT_FOUND: "Access Denied: Door Not Found",
    OUTSIDE_PROXIMITY: "Access Denied: User is outside the door proximity",
    GEOHASH_MISMATCH: "Access Denied: Geohash tampering detected",
    INVALID_PROOF: "Access Denied: Invalid Zero-Knowledge Proof",
    UNAUTHORIZED: "Access Denied: Unauthorized Identity",
}


class AccessDecision(object):
    """The outcome of an access request.

    Attributes:
        granted (bool): whether the door may open.
        reason (str): ``granted`` or the first failed check.
        message (str): a human readable message.
        role (str): the resolved role when granted, else None.
    """

    __slots__ = ['granted', 'reason', 'message', 'role']

    def __init__(self, granted, reason, message, role=None):
        self.granted = granted
        self.reason = reason
        self.message = message
        self.role = role

    @staticmethod
    def deny(reason):
        return AccessDecision(False, reason, _MESSAGES[reason])

    @staticmethod
    def grant(role):
        return AccessDecision(True, GRANTED, "Access Granted to %s" % role, role)

    def to_dict(self):
        out = {"status": "success" if self.granted else "failed",
               "message": self.message}
        if self.role is not None:
            out["role"] = self.role
        return out

    def __bool__(self):
        return self.granted

    def __repr__(self):
        return "AccessDecision(granted=%r, reason=%r, role=%r)" % (
            self.granted, self.reason, self.role)


def compute_geohash(lat, lon, precision=7):
    """Encodes a position as a geohash of ``precision`` characters. Bits
    alternate between longitude and latitude, longitude first, each one
    halving the current interval; every five bits give one base32 character.

    Example:
        >>> compute_geohash(57.64911, 10.40744)
        'u4pruyd'
        >>> compute_geohash(42.6, -5.6, 5)
        'ezs42'
    """
    if not (-90 <= lat <= 90 and -180 <= lon <= 180):
        raise ValueError("Coordinates out of range: (%r, %r)" % (lat, lon))
    if precision < 1:
        raise ValueError("Geohash precision must be positive")

    lat_range = [-90.0, 90.0]
    lon_range = [-180.0, 180.0]
    chars = []
    bits, nbits = 0, 0
    even = True
    while len(chars) < precision:
        if even:
            value, interval = lon, lon_range
        else:
            value, interval = lat, lat_range

        mid = (interval[0] + interval[1]) / 2
        bits <<= 1
        if value >= mid:
            bits |= 1
            interval[0] = mid
        else:
            interval[1] = mid

        even = not even
        nbits += 1
        if nbits == 5:
            chars.append(_BASE32[bits])
            bits, nbits = 0, 0

    return "".join(chars)


def geofence_match(user_hash, allowed_prefix):
    """Plain geofence rule without a proof: the allowed prefix must be at
    least six characters long and the user's geohash must start with it.

    Example:
        >>> geofence_match("t1q7hkf", "t1q7hk")
        True
        >>> geofence_match("t1q7hkf", "t1q7")
        False
    """
    if not allowed_prefix or len(allowed_prefix) < LOCATION_PREFIX_LEN:
        return False
    return (user_hash or "").startswith(allowed_prefix)


def within_proximity(geohash, door):
    """True if ``geohash`` lies inside the door's configured prefix."""
    if not isinstance(geohash, str):
        return False
    return geohash.startswith(door.geohash_prefix)


def authorize(door_id, record, geohash, doors=None, roles=None, params=None):
    """Decides an access request at a door.

    Args:
        door_id (str): the door identifier, surrounding whitespace ignored.
        record (ProofRecord or dict): the claimant's proof.
        geohash (str): the location submitted with the request.
        doors (dict): door id to Door, ``DOORS`` if None.
        roles (dict): role name to decimal secret, ``rbac.ROLES`` if None.
        params (GroupParameters): the group, default group if None.

    Returns:
        AccessDecision: granted with the role, or denied with the first
        failed check.
    """
    if doors is None:
        doors = DOORS

    door_id = (door_id or "").strip()
    logger.info("[DOOR %s] Received access request", door_id)

    door = doors.get(door_id)
    if door is None:
        logger.warning("[DOOR %s] Access denied: door not found", door_id)
        return AccessDecision.deny(DOOR_NOT_FOUND)

    logger.info("[DOOR %s] Verifying proximity: local=%s | required=%s",
                door_id, geohash, door.geohash_prefix)
    if not within_proximity(geohash, door):
        logger.warning("[DOOR %s] Access denied: outside proximity", door_id)
        return AccessDecision.deny(OUTSIDE_PROXIMITY)

    if not isinstance(record, ProofRecord):
        try:
            record = ProofRecord.from_dict(record)
        except MalformedProofError as e:
            logger.warning("[DOOR %s] Access denied: malformed proof (%s)", door_id, e)
            return AccessDecision.deny(INVALID_PROOF)

    if record.geohash != geohash:
        logger.warning("[DOOR %s] Access denied: geohash mismatch", door_id)
        return AccessDecision.deny(GEOHASH_MISMATCH)

    if not Verifier(params).verify_proof(record):
        logger.warning("[DOOR %s] Access denied: invalid proof", door_id)
        return AccessDecision.deny(INVALID_PROOF)

    role = resolve_role(record.public_key, roles, params)
    if role is None:
        logger.warning("[DOOR %s] Access denied: proven identity has no role", door_id)
        return AccessDecision.deny(UNAUTHORIZED)

    logger.info("[DOOR %s] Access granted to %s", door_id, role)
    return AccessDecision.grant(role)


# ---------- Tests ------------


def _proof(role, geohash):
    from .rbac import get_role_secret
    from .zkp import Prover
    return Prover(get_role_secret(role)).generate_proof(geohash)


def test_compute_geohash():
    assert compute_geohash(57.64911, 10.40744, 11) == "u4pruydqqvj"
    assert compute_geohash(57.64911, 10.40744) == "u4pruyd"
    assert compute_geohash(42.6, -5.6, 5) == "ezs42"
    assert compute_geohash(0, 0, 1) == "s"
    assert compute_geohash(-90, -180, 3) == "000"

    # A point inside the cell of door 101.
    here = compute_geohash(7.5833, 53.9813)
    assert len(here) == 7
    assert compute_geohash(7.5833, 53.9813, 6) == "t1q7hk"
    assert within_proximity(here, DOORS["101"])
    assert geofence_match(here, "t1q7hk")
    assert not within_proximity(compute_geohash(57.64911, 10.40744), DOORS["101"])

    for lat, lon in ((90.5, 0), (0, -180.5), (float("nan"), 0)):
        with pytest.raises(ValueError):
            compute_geohash(lat, lon)
    with pytest.raises(ValueError):
        compute_geohash(0, 0, 0)


def test_grant_at_computed_location():
    here = compute_geohash(7.5833, 53.9813)
    decision = authorize("101", _proof("STUDENT", here), here)
    assert decision.granted
    assert decision.role == "STUDENT"


def test_geofence_match():
    assert geofence_match("t1q7hkf", "t1q7hk")
    assert geofence_match("t1q7hk", "t1q7hk")
    assert not geofence_match("t1q7hkf", "t1q7h")
    assert not geofence_match("u4pruyd", "t1q7hk")
    assert not geofence_match(None, "t1q7hk")
    assert not geofence_match("t1q7hkf", None)


def test_grant_each_role():
    for role in ("ADMIN", "FACULTY", "STUDENT"):
        decision = authorize("101", _proof(role, "t1q7hkf"), "t1q7hkf")
        assert decision.granted
        assert decision.role == role
        assert decision.to_dict() == {"status": "success",
                                      "message": "Access Granted to %s" % role,
                                      "role": role}


def test_door_not_found():
    decision = authorize("999", _proof("ADMIN", "t1q7hkf"), "t1q7hkf")
    assert not decision
    assert decision.reason == DOOR_NOT_FOUND
    assert authorize(" 101 ", _proof("ADMIN", "t1q7hkf"), "t1q7hkf").granted


def test_outside_proximity():
    record = _proof("ADMIN", "u4pruyd")
    decision = authorize("101", record, "u4pruyd")
    assert decision.reason == OUTSIDE_PROXIMITY
    assert decision.to_dict() == {"status": "failed",
                                  "message": _MESSAGES[OUTSIDE_PROXIMITY]}


def test_geohash_mismatch():
    # A proof made elsewhere, presented with an in-fence location.
    record = _proof("ADMIN", "u4pruyd")
    assert authorize("101", record, "t1q7hkf").reason == GEOHASH_MISMATCH

    # Same six-character prefix still counts as a different claim.
    record = _proof("ADMIN", "t1q7hkx")
    assert authorize("101", record, "t1q7hkf").reason == GEOHASH_MISMATCH


def test_invalid_proof():
    record = _proof("ADMIN", "t1q7hkf")
    forged = record.to_dict()
    forged["response"] = repr(int(forged["response"]) + 1)
    assert authorize("101", forged, "t1q7hkf").reason == INVALID_PROOF

    forged["response"] = "oops"
    assert authorize("101", forged, "t1q7hkf").reason == INVALID_PROOF
    assert authorize("101", {"geohash": "t1q7hkf"}, "t1q7hkf").reason == INVALID_PROOF

    # In-fence geohash carrying a lone surrogate, as JSON can deliver it.
    bad_place = "t1q7hk\ud800"
    forged = ProofRecord.from_json(json.dumps(dict(record.to_dict(), geohash=bad_place)))
    assert authorize("101", forged, bad_place).reason == INVALID_PROOF


def test_unauthorized():
    from .zkp import Prover
    record = Prover(4242).generate_proof("t1q7hkf")
    decision = authorize("101", record, "t1q7hkf")
    assert decision.reason == UNAUTHORIZED
    assert decision.role is None


def test_custom_tables():
    from .zkp import Prover
    doors = {"7": Door("Vault", "00", "gcpvj0")}
    record = Prover(4242).generate_proof("gcpvj0e")
    decision = authorize("7", record, "gcpvj0e", doors=doors, roles={"GUARD": "4242"})
    assert decision.granted
    assert decision.role == "GUARD"
