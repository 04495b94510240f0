""" Non-interactive Schnorr identification bound to a location claim.

A prover knowing the secret x behind the public key Y = G^x mod P commits to
R = G^r mod P, derives the challenge c = H(R || Y || geohash[:6]) mod Q
(Fiat-Shamir) and answers with s = r + c * x mod Q. The verifier accepts iff
G^s == R * Y^c (mod P). Since the geohash prefix enters the hash, a proof
cannot be moved to another location claim.

Example:
    How to use ``Prover`` and ``Verifier`` to prove and check an identity
    at a location:

    >>> prover = Prover(Bn.from_decimal("98765432109876543210987654321"))
    >>> record = prover.generate_proof("t1q7hkf")
    >>> sorted(record.to_dict())
    ['commitment', 'geohash', 'public_key', 'response']
    >>> Verifier().verify_proof(record)
    True
    >>> record.geohash = "u4pruyd"
    >>> Verifier().verify_proof(record)
    False

"""

import json
import logging
import re

from hashlib import sha256

import pytest

from .bn import Bn
from .group import GroupParameters, default_params

logger = logging.getLogger(__name__)

# Number of geohash characters bound into the challenge (about 1.2km x 0.6km)
LOCATION_PREFIX_LEN = 6

PROOF_FIELDS = ("public_key", "commitment", "response", "geohash")

_DECIMAL = re.compile(r"[0-9]+")


class MalformedProofError(ValueError):
    """A proof record is missing fields or carries a non-decimal number."""


def parse_decimal(text):
    """Parses a wire-format decimal string into a Bn. Only ASCII digits are
    accepted: no sign, no whitespace, no empty string.

    Example:
        >>> parse_decimal("0042")
        42
    """
    if not isinstance(text, str) or not _DECIMAL.fullmatch(text):
        raise MalformedProofError("Not a decimal number: %r" % (text,))
    return Bn.from_decimal(text)


def truncate_location(location_claim):
    """The part of a location claim bound into the challenge: its first six
    characters, or the whole claim if shorter.

    Example:
        >>> truncate_location("t1q7hkf")
        't1q7hk'
        >>> truncate_location("t1q")
        't1q'
    """
    return location_claim[:LOCATION_PREFIX_LEN]


def derive_challenge(commitment, public_key, location_claim, params=None):
    """Derives the Fiat-Shamir challenge from the commitment, the public key
    and the location claim.

    The three fields are concatenated as text without separators: decimal
    commitment, decimal public key, then the truncated location. Counterpart
    implementations hash exactly this string, so it must not change even
    though it is ambiguous when field lengths vary.

    Args:
        commitment (Bn): R = G^r mod P.
        public_key (Bn): Y = G^x mod P.
        location_claim (str): the claimed geohash.
        params (GroupParameters): the group, default group if None.

    Returns:
        Bn: the SHA-256 digest read big-endian, reduced mod Q.

    Raises:
        TypeError: if the commitment or the public key is not an integer.
    """
    if params is None:
        params = default_params()

    R, Y = Bn.from_num(commitment), Bn.from_num(public_key)
    if R is NotImplemented or Y is NotImplemented:
        raise TypeError("The commitment and public key must be integers")

    prefix = truncate_location(location_claim)
    state = "%s%s%s" % (R, Y, prefix)
    H = sha256()
    H.update(state.encode("utf8"))
    return Bn.from_binary(H.digest()) % params.Q


class ProofRecord(object):
    """ The proof as exchanged on the wire: three decimal strings and the
    full, untruncated geohash.

    Args:
        public_key (str): Y = G^x mod P, decimal.
        commitment (str): R = G^r mod P, decimal.
        response (str): s = r + c * x mod Q, decimal.
        geohash (str): the location claim.
    """

    __slots__ = PROOF_FIELDS

    def __init__(self, public_key, commitment, response, geohash):
        self.public_key = public_key
        self.commitment = commitment
        self.response = response
        self.geohash = geohash

    def to_dict(self):
        return dict((k, getattr(self, k)) for k in PROOF_FIELDS)

    @staticmethod
    def from_dict(data):
        """Builds a record from a mapping with exactly the four string fields.

        Raises:
            MalformedProofError: if a field is missing or not a string.
        """
        try:
            values = [data[k] for k in PROOF_FIELDS]
        except (KeyError, TypeError) as e:
            raise MalformedProofError("Missing proof field: %s" % e)

        for k, v in zip(PROOF_FIELDS, values):
            if not isinstance(v, str):
                raise MalformedProofError("Proof field %s must be a string" % k)

        return ProofRecord(*values)

    def to_json(self):
        return json.dumps(self.to_dict(), sort_keys=True)

    @staticmethod
    def from_json(text):
        try:
            data = json.loads(text)
        except ValueError as e:
            raise MalformedProofError("Proof is not valid JSON: %s" % e)
        return ProofRecord.from_dict(data)

    def numbers(self):
        """Returns (public_key, commitment, response) as Bn values.

        Raises:
            MalformedProofError: if any of them is not a decimal string,
            or the geohash is not a UTF-8 encodable string.
        """
        if not isinstance(self.geohash, str):
            raise MalformedProofError("Proof field geohash must be a string")
        try:
            self.geohash.encode("utf8")
        except UnicodeEncodeError as e:
            raise MalformedProofError("Proof field geohash is not valid text: %s" % e)
        return (parse_decimal(self.public_key),
                parse_decimal(self.commitment),
                parse_decimal(self.response))

    def __eq__(self, other):
        if not isinstance(other, ProofRecord):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __ne__(self, other):
        eq = self.__eq__(other)
        return eq if eq is NotImplemented else not eq

    __hash__ = None

    def __repr__(self):
        return "ProofRecord(public_key=%r, commitment=%r, response=%r, geohash=%r)" % (
            self.public_key, self.commitment, self.response, self.geohash)


class Prover(object):
    """ Holds a private scalar and proves knowledge of it.

    Args:
        private_key (Bn): the secret x, conceptually in [1, Q-1].
        params (GroupParameters): the group, default group if None.
    """

    def __init__(self, private_key, params=None):
        if params is None:
            params = default_params()

        private_key = Bn.from_num(private_key)
        if private_key is NotImplemented:
            raise TypeError("The private key must be an integer")

        self.params = params
        self._x = private_key
        self.public_key = params.exp(private_key)

    def generate_proof(self, location_claim):
        """Builds a fresh proof bound to ``location_claim``. A new nonce is
        drawn on every call; never reuse one.

        Returns:
            ProofRecord: the proof, carrying the full location claim.
        """
        r = self.params.random_scalar()
        return self._prove(r, location_claim)

    def _prove(self, r, location_claim):
        params = self.params
        R = params.exp(r)
        c = derive_challenge(R, self.public_key, location_claim, params)
        s = (r + c * self._x) % params.Q

        return ProofRecord(public_key=repr(self.public_key),
                           commitment=repr(R),
                           response=repr(s),
                           geohash=location_claim)

    def __repr__(self):
        return "Prover(public_key=%s)" % (self.public_key,)


class Verifier(object):
    """ Checks proof records. Holds no state besides the group.

    Args:
        params (GroupParameters): the group, default group if None.
    """

    def __init__(self, params=None):
        if params is None:
            params = default_params()
        self.params = params

    def verify_proof(self, record):
        """Verifies a proof record (or a mapping with its four fields).

        Returns:
            bool: True iff G^s == R * Y^c (mod P) with c recomputed from the
            record. Malformed records give False, as do failed proofs.
        """
        params = self.params
        try:
            if not isinstance(record, ProofRecord):
                record = ProofRecord.from_dict(record)
            Y, R, s = record.numbers()
        except MalformedProofError as e:
            logger.debug("Rejecting malformed proof: %s", e)
            return False

        logger.debug("Verifying identity for geofence %s",
                     truncate_location(record.geohash))

        c = derive_challenge(R, Y, record.geohash, params)
        logger.debug("Challenge c = %s", c)

        lhs = params.exp(s)
        rhs = (R * Y.mod_pow(c, params.P)) % params.P
        logger.debug("Verification equation: LHS=%s | RHS=%s", lhs, rhs)

        is_valid = lhs == rhs
        logger.debug("Verification result: %s", "PASSED" if is_valid else "FAILED")
        return is_valid


def verify_proof(record, params=None):
    """Shorthand for ``Verifier(params).verify_proof(record)``."""
    return Verifier(params).verify_proof(record)


# ---------- Tests ------------

FACULTY_SECRET = "98765432109876543210987654321"


def _flip(digits, pos):
    d = int(digits[pos])
    return digits[:pos] + str((d + 1) % 10) + digits[pos + 1:]


def test_completeness():
    params = default_params()
    locations = ["t1q7hkf", "t1q7hk", "t1q", "", "u4pruydqqvj", u"téléphone"]
    secrets = [Bn(1), params.Q - 2, Bn.from_decimal(FACULTY_SECRET), params.random_scalar()]
    for x in secrets:
        prover = Prover(x)
        for loc in locations:
            assert verify_proof(prover.generate_proof(loc))


def test_public_key_cached():
    prover = Prover(Bn.from_decimal(FACULTY_SECRET))
    params = default_params()
    assert prover.public_key == params.exp(Bn.from_decimal(FACULTY_SECRET))
    assert prover.generate_proof("t1q7hk").public_key == repr(prover.public_key)


def test_tampering():
    prover = Prover(Bn.from_decimal(FACULTY_SECRET))
    record = prover.generate_proof("t1q7hkf")
    assert verify_proof(record)

    for field in ("public_key", "commitment", "response"):
        value = getattr(record, field)
        for pos in (0, len(value) // 2, len(value) - 1):
            forged = ProofRecord.from_dict(record.to_dict())
            setattr(forged, field, _flip(value, pos))
            assert not verify_proof(forged), (field, pos)


def test_malformed_fields():
    prover = Prover(12345)
    good = prover.generate_proof("t1q7hkf").to_dict()
    assert verify_proof(good)

    for field in ("public_key", "commitment", "response"):
        for bad in ("", "12a4", "-" + good[field], " " + good[field], "0x1F", None, 17):
            data = dict(good)
            data[field] = bad
            assert verify_proof(data) is False

    missing = dict(good)
    del missing["response"]
    assert verify_proof(missing) is False
    no_place = ProofRecord(good["public_key"], good["commitment"], good["response"], None)
    assert verify_proof(no_place) is False

    # A lone surrogate survives JSON parsing but has no UTF-8 encoding.
    data = dict(good)
    data["geohash"] = "\ud800abc"
    surrogate = ProofRecord.from_json(json.dumps(data))
    assert surrogate.geohash == "\ud800abc"
    with pytest.raises(MalformedProofError):
        surrogate.numbers()
    assert verify_proof(surrogate) is False

    assert verify_proof(None) is False
    assert verify_proof("not a record") is False


def test_location_binding():
    prover = Prover(Bn.from_decimal(FACULTY_SECRET))
    record = prover.generate_proof("t1q7hkf")

    moved = ProofRecord.from_dict(record.to_dict())
    moved.geohash = "u4pruyd"
    assert not verify_proof(moved)

    # Only the first six characters are bound.
    nearby = ProofRecord.from_dict(record.to_dict())
    nearby.geohash = "t1q7hkzzz"
    assert verify_proof(nearby)


def test_truncation_rule():
    assert truncate_location("abcdef") == "abcdef"
    assert truncate_location("abcdefgh") == "abcdef"
    assert truncate_location("abc") == "abc"
    assert truncate_location("") == ""

    R, Y = Bn(64), Bn(1024)
    assert derive_challenge(R, Y, "abcdefgh") == derive_challenge(R, Y, "abcdef")
    assert derive_challenge(R, Y, "abc") != derive_challenge(R, Y, "abcdef")

    prover = Prover(777)
    for loc in ("abcdef", "abc", "abcdefgh"):
        record = prover.generate_proof(loc)
        assert record.geohash == loc
        assert verify_proof(record)


def test_challenge_determinism():
    params = default_params()
    R, Y = params.exp(3), params.exp(5)
    c1 = derive_challenge(R, Y, "t1q7hk")
    assert c1 == derive_challenge(R, Y, "t1q7hk")
    assert 0 <= c1 < params.Q
    assert c1 != derive_challenge(R, Y, "t1q7hj")
    assert c1 != derive_challenge(R + 1, Y, "t1q7hk")
    assert c1 != derive_challenge(R, Y + 1, "t1q7hk")


def test_challenge_concatenation_is_ambiguous():
    # Fields are joined without separators, so shifting digits across the
    # commitment / public key boundary yields the same challenge.
    assert derive_challenge(12, 345, "t1q7hk") == derive_challenge(123, 45, "t1q7hk")


def test_challenge_rejects_non_integers():
    with pytest.raises(TypeError):
        derive_challenge("1", "2", "x")
    with pytest.raises(TypeError):
        derive_challenge(Bn(1), None, "x")
    with pytest.raises(TypeError):
        derive_challenge(1.5, Bn(2), "x")


def test_nonce_freshness():
    prover = Prover(Bn.from_decimal(FACULTY_SECRET))
    p1 = prover.generate_proof("t1q7hkf")
    p2 = prover.generate_proof("t1q7hkf")
    assert p1.public_key == p2.public_key
    assert p1.commitment != p2.commitment
    assert p1.response != p2.response


def test_small_group_vector():
    params = GroupParameters.from_decimal("2039", "4")
    P, G, Q = 2039, 4, 1019
    x, r = 5, 3

    Y = pow(G, x, P)
    R = pow(G, r, P)
    digest = sha256(("%d%d%s" % (R, Y, "abcdef")).encode("utf8")).digest()
    c = int.from_bytes(digest, "big") % Q
    s = (r + x * c) % Q
    assert pow(G, s, P) == (R * pow(Y, c, P)) % P

    assert derive_challenge(R, Y, "abcdefxyz", params) == c

    record = Prover(x, params)._prove(Bn(r), "abcdef")
    assert record.to_dict() == {"public_key": str(Y), "commitment": str(R),
                                "response": str(s), "geohash": "abcdef"}
    assert Verifier(params).verify_proof(record)
    assert not Verifier().verify_proof(record)


def test_record_wire_format():
    record = ProofRecord("1024", "64", "17", "t1q7hkf")
    data = json.loads(record.to_json())
    assert data == {"public_key": "1024", "commitment": "64",
                    "response": "17", "geohash": "t1q7hkf"}
    assert ProofRecord.from_json(record.to_json()) == record
    assert ProofRecord.from_dict(data) == record

    with pytest.raises(MalformedProofError):
        ProofRecord.from_json("{not json")
    with pytest.raises(MalformedProofError):
        ProofRecord.from_dict({"public_key": 1024, "commitment": "64",
                               "response": "17", "geohash": "t1q7hkf"})
    with pytest.raises(MalformedProofError):
        ProofRecord("1024", "6 4", "17", "x").numbers()


def test_concurrent_provers():
    import threading

    prover = Prover(Bn.from_decimal(FACULTY_SECRET))
    verifier = Verifier()
    results = []

    def worker():
        for _ in range(5):
            results.append(verifier.verify_proof(prover.generate_proof("t1q7hkf")))

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(results) == 40
    assert all(results)
