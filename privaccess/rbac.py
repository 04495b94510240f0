""" Role secrets, permissions and the mapping from a proven public key back
to a role.

Each role owns one fixed private scalar. A verified proof only tells the
verifier that the claimant knows *some* discrete log; ``resolve_role`` finds
which role's key it was by recomputing every role's public key.

Example:
    >>> creds = setup_credentials("faculty")
    >>> creds["role"]
    'FACULTY'
    >>> resolve_role(creds["public_key"])
    'FACULTY'
    >>> get_role_permissions("FACULTY")
    ['read', 'write']

"""

import logging

from .bn import Bn
from .bindings import secure_compare
from .group import default_params, random_scalar

logger = logging.getLogger(__name__)

ROLES = {
    "ADMIN": "123456789012345678901234567890",
    "FACULTY": "98765432109876543210987654321",
    "STUDENT": "112233445566778899001122334455",
}

ROLE_PERMISSIONS = {
    "ADMIN": ["read", "write", "delete"],
    "FACULTY": ["read", "write"],
    "STUDENT": ["read"],
}

DEFAULT_ROLE = "STUDENT"
UNKNOWN_ROLE = "UNKNOWN"


def get_role_secret(role_name, roles=None):
    """Returns the private scalar of a role, or None for an unknown role."""
    if roles is None:
        roles = ROLES
    secret = roles.get(role_name)
    if secret is None:
        return None
    return Bn.from_decimal(secret)


def get_role_permissions(role_name):
    """Returns a copy of the permission list of a role, or None."""
    perms = ROLE_PERMISSIONS.get(role_name)
    if perms is None:
        return None
    return list(perms)


def role_public_key(role_name, roles=None, params=None):
    """Returns G^secret mod P for a role, or None for an unknown role."""
    if params is None:
        params = default_params()
    secret = get_role_secret(role_name, roles)
    if secret is None:
        return None
    return params.exp(secret)


def resolve_role(public_key, roles=None, params=None):
    """Maps a verified public key to the role whose secret produced it.

    Every role's public key is recomputed and compared, as decimal strings,
    with the given one; the cost is linear in the number of roles.

    Args:
        public_key (str, Bn or int): the public key of a verified proof.
        roles (dict): role name to decimal secret, ``ROLES`` if None.
        params (GroupParameters): the group, default group if None.

    Returns:
        str: the role name, or None if no role matches.
    """
    if roles is None:
        roles = ROLES

    if isinstance(public_key, str):
        target = public_key.encode("utf8")
    else:
        target = repr(Bn.from_num(public_key)).encode("utf8")

    found = None
    for role_name in sorted(roles):
        candidate = repr(role_public_key(role_name, roles, params)).encode("utf8")
        if secure_compare(candidate, target) and found is None:
            found = role_name

    return found


def setup_credentials(role=None, params=None):
    """Provisions the key material a client needs to prove a role.

    The role name is upper-cased and defaults to STUDENT. An unknown role gets
    a freshly drawn random secret and is reported as UNKNOWN, so the client
    can still produce valid proofs that no role will accept.

    Returns:
        dict: ``secret``, ``public_key`` (decimal strings) and ``role``.
    """
    if params is None:
        params = default_params()

    requested = (role or DEFAULT_ROLE).upper()
    secret = get_role_secret(requested)
    if secret is None:
        logger.info("Unknown role %r requested, issuing a random key", requested)
        secret = random_scalar(params)
        requested = UNKNOWN_ROLE

    return {
        "secret": repr(secret),
        "public_key": repr(params.exp(secret)),
        "role": requested,
    }


# ---------- Tests ------------


def test_role_tables():
    assert get_role_secret("ADMIN") == Bn.from_decimal("123456789012345678901234567890")
    assert get_role_secret("NOBODY") is None
    assert get_role_permissions("STUDENT") == ["read"]
    assert get_role_permissions("NOBODY") is None

    perms = get_role_permissions("ADMIN")
    perms.append("launch")
    assert ROLE_PERMISSIONS["ADMIN"] == ["read", "write", "delete"]


def test_resolve_faculty():
    from .zkp import Prover, verify_proof

    prover = Prover(get_role_secret("FACULTY"))
    record = prover.generate_proof("t1q7hkf")
    assert verify_proof(record)

    assert resolve_role(record.public_key) == "FACULTY"
    assert resolve_role(prover.public_key) == "FACULTY"
    for other in ("ADMIN", "STUDENT"):
        assert role_public_key(other) != prover.public_key


def test_resolve_unknown():
    params = default_params()
    assert resolve_role(repr(params.exp(42))) is None
    assert resolve_role("") is None
    assert resolve_role("not a number") is None
    assert resolve_role(params.exp(42), roles={"GUEST": "42"}) == "GUEST"


def test_setup_credentials():
    params = default_params()

    creds = setup_credentials()
    assert creds["role"] == "STUDENT"
    assert creds["secret"] == ROLES["STUDENT"]
    assert creds["public_key"] == repr(params.exp(Bn.from_decimal(ROLES["STUDENT"])))

    assert setup_credentials("admin")["role"] == "ADMIN"

    stranger = setup_credentials("janitor")
    assert stranger["role"] == "UNKNOWN"
    x = Bn.from_decimal(stranger["secret"])
    assert 1 <= x <= params.Q - 2
    assert resolve_role(stranger["public_key"]) is None
