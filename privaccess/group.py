""" The multiplicative group modulo a safe prime in which all proofs live.

The default group uses the 2048-bit MODP prime of RFC 3526 (group 14) with
generator 2. Exponents (secrets, nonces, challenges) are reduced modulo
Q = (P - 1) / 2 and group elements modulo P.

Example:
    >>> params = default_params()
    >>> params.G
    2
    >>> params.P.num_bits()
    2048
    >>> params.Q == (params.P - 1) // 2
    True
    >>> x = random_scalar(params)
    >>> 1 <= x <= params.Q - 2
    True

"""

import logging
import threading

import pytest

from .bn import Bn, BnError

logger = logging.getLogger(__name__)


P_HEX = ("FFFFFFFFFFFFFFFFC90FDAA22168C234C4C6628B80DC1CD1"
         "29024E088A67CC74020BBEA63B139B22514A08798E3404DD"
         "EF9519B3CD3A431B302B0A6DF25F14374FE1356D6D51C245"
         "E485B576625E7EC6F44C42E9A637ED6B0BFF5CB6F406B7ED"
         "EE386BFB5A899FA5AE9F24117C4B1FE649286651ECE45B3D"
         "C2007CB8A163BF0598DA48361C55D39A69163FA8FD24CF5F"
         "83655D23DCA3AD961C62F356208552BB9ED529077096966D"
         "670C354E4ABC9804F1746C08CA18217C32905E462E36CE3B"
         "E39E772C180E86039B2783A2EC07A28FB5C55DF06F4C52C9"
         "DE2BCBF6955817183995497CEA956AE515D2261898FA0510"
         "15728E5A8AACAA68FFFFFFFFFFFFFFFF")
GENERATOR_HEX = "02"


class GroupError(ValueError):
    """The group literals do not describe a usable group."""


class GroupParameters(object):
    """ An immutable description of a cyclic group: prime modulus P,
    generator G and subgroup order Q = (P - 1) / 2. Q is assumed prime
    and is not checked.

    Args:
        P (Bn): the prime modulus.
        G (Bn): a generator of the order Q subgroup.

    Raises:
        GroupError: if P is even or too small, or G is not in [2, P-2].
    """

    __slots__ = ['_P', '_G', '_Q']

    def __init__(self, P, G):
        P = Bn.from_num(P)
        G = Bn.from_num(G)
        if P is NotImplemented or G is NotImplemented:
            raise GroupError("Group parameters must be integers")

        if P < 7 or not P.is_odd():
            raise GroupError("The modulus must be an odd prime, got %s" % P)
        if not (2 <= G <= P - 2):
            raise GroupError("The generator must lie in [2, P-2], got %s" % G)

        object.__setattr__(self, '_P', P)
        object.__setattr__(self, '_G', G)
        object.__setattr__(self, '_Q', (P - 1) // 2)

    @staticmethod
    def from_hex(p_hex, g_hex):
        """Builds parameters from hexadecimal literals.

        Example:
            >>> GroupParameters.from_hex("7F7", "04").Q
            1019
        """
        try:
            return GroupParameters(Bn.from_hex(p_hex), Bn.from_hex(g_hex))
        except BnError as e:
            raise GroupError("Malformed group literal: %s" % e)

    @staticmethod
    def from_decimal(p_dec, g_dec):
        """Builds parameters from decimal literals."""
        try:
            return GroupParameters(Bn.from_decimal(p_dec), Bn.from_decimal(g_dec))
        except BnError as e:
            raise GroupError("Malformed group literal: %s" % e)

    def __setattr__(self, name, value):
        raise AttributeError("GroupParameters are immutable")

    @property
    def P(self):
        """The prime modulus."""
        return self._P

    @property
    def G(self):
        """The generator."""
        return self._G

    @property
    def Q(self):
        """The order of the subgroup generated by G."""
        return self._Q

    def random_scalar(self):
        """Returns a uniformly random scalar in [1, Q-2]."""
        return (self._Q - 2).random() + 1

    def exp(self, exponent):
        """Returns G^exponent mod P."""
        return modular_pow(self._G, exponent, self._P)

    def __eq__(self, other):
        if not isinstance(other, GroupParameters):
            return NotImplemented
        return self._P == other._P and self._G == other._G

    def __ne__(self, other):
        eq = self.__eq__(other)
        return eq if eq is NotImplemented else not eq

    def __hash__(self):
        return hash((int(self._P), int(self._G)))

    def __repr__(self):
        return "GroupParameters(P=<%d bits>, G=%s)" % (self._P.num_bits(), self._G)


_default = None
_default_lock = threading.Lock()


def default_params():
    """Returns the process-wide default group, built on first use."""
    global _default
    params = _default
    if params is None:
        with _default_lock:
            if _default is None:
                _default = GroupParameters.from_hex(P_HEX, GENERATOR_HEX)
                logger.debug("Initialised default group (%d-bit modulus)",
                             _default.P.num_bits())
            params = _default
    return params


def modular_pow(base, exponent, modulus):
    """Computes base ** exponent % modulus by square-and-multiply.

    Example:
        >>> modular_pow(4, 3, 2039)
        64
        >>> modular_pow(4, 0, 2039)
        1
        >>> modular_pow(0, 7, 2039)
        0
    """
    return Bn.from_num(base).mod_pow(exponent, modulus)


def random_scalar(params=None):
    """Draws a scalar uniformly from [1, Q-2] with the libcrypto CSPRNG."""
    if params is None:
        params = default_params()
    return params.random_scalar()


# ---------- Tests ------------


def test_default_params():
    params = default_params()
    assert params is default_params()
    assert params.P == Bn.from_hex(P_HEX)
    assert params.G == 2
    assert params.Q * 2 + 1 == params.P
    assert params.exp(params.Q) == 1


def test_default_params_threads():
    seen = []

    def worker():
        seen.append(default_params())

    threads = [threading.Thread(target=worker) for _ in range(10)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert all(p is seen[0] for p in seen)


def test_small_group():
    params = GroupParameters.from_decimal("2039", "4")
    assert params.Q == 1019
    assert params.exp(params.Q) == 1
    assert params.exp(5) == 4 ** 5 % 2039
    assert params == GroupParameters.from_hex("7F7", "4")


def test_bad_literals():
    with pytest.raises(GroupError):
        GroupParameters.from_hex("FFZZ", "02")
    with pytest.raises(GroupError):
        GroupParameters.from_decimal("2039", "")
    with pytest.raises(GroupError):
        GroupParameters.from_decimal("2038", "4")
    with pytest.raises(GroupError):
        GroupParameters.from_decimal("2039", "1")
    with pytest.raises(GroupError):
        GroupParameters.from_decimal("2039", "2038")
    with pytest.raises(GroupError):
        GroupParameters("2039", 4)


def test_immutable():
    params = GroupParameters(2039, 4)
    with pytest.raises(AttributeError):
        params.P = Bn(23)


def test_modular_pow():
    assert modular_pow(2, 10, 1000) == 24
    assert modular_pow(Bn(3), Bn(0), Bn(7)) == 1
    assert modular_pow(0, 0, 7) == 1
    assert modular_pow(14, 5, 7) == 0
    big = 2 ** 4000 + 1
    assert int(modular_pow(big, 65537, 2 ** 2048 - 159)) == pow(big, 65537, 2 ** 2048 - 159)


def test_random_scalar_bounds():
    params = GroupParameters(2039, 4)
    draws = [int(random_scalar(params)) for _ in range(2000)]
    assert min(draws) >= 1
    assert max(draws) <= 1017
    assert len(set(draws)) > 500

    tiny = GroupParameters(7, 2)
    assert set(int(tiny.random_scalar()) for _ in range(50)) == {1}


class _FailingRand(object):
    """Stands in for libcrypto with a random generator that always fails."""

    def __init__(self, lib):
        self._lib = lib

    def BN_rand_range(self, rnd, rng):
        return 0

    def __getattr__(self, name):
        return getattr(self._lib, name)


def test_random_scalar_failure(monkeypatch):
    from . import bn as bn_module

    params = GroupParameters(2039, 4)
    monkeypatch.setattr(bn_module, "_C", _FailingRand(bn_module._C))

    with pytest.raises(BnError):
        random_scalar(params)
    with pytest.raises(BnError):
        params.random_scalar()
    with pytest.raises(BnError):
        Bn(100).random()
