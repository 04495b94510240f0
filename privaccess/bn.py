from .bindings import _FFI, _C, get_errors, error_strings, openssl_free

import threading

import pytest


class BnError(Exception):
    """A libcrypto big number operation failed."""


def _check(return_val):
    """Checks the return code of the C calls"""
    if isinstance(return_val, int) and return_val == 1:
        return
    if isinstance(return_val, bool) and return_val == True:
        return

    errs = get_errors()
    raise BnError("BN exception: %s" % error_strings(errs))


class BnCtx(object):
    """ A Bn Context for use by the privaccess library """

    __slots__ = ['bnctx', '_C']

    def __init__(self):
        self._C = _C
        self.bnctx = self._C.BN_CTX_new()
        _check(self.bnctx != _FFI.NULL)

    def __del__(self):
        if self.bnctx is not None:
            self._C.BN_CTX_free(self.bnctx)


_thread_local = threading.local()


def get_ctx():
    """Returns the BN_CTX scratch space of the calling thread."""
    try:
        return _thread_local.ctx
    except AttributeError:
        _thread_local.ctx = BnCtx()
        return _thread_local.ctx


class Bn(object):
    """The core Big Number class.
         It supports all comparisons (<, <=, ==, !=, >=, >),
         arithmetic operations (+, -, *, %, //, divmod, modular pow).
         The right-hand side operand may be a native python integer of any size. """

    __C = _C

    # We know this class will keep minimal state
    __slots__ = ['bn']

    # -- static methods

    @staticmethod
    def from_num(num):
        if isinstance(num, Bn):
            return num
        elif isinstance(num, int) and not isinstance(num, bool):
            return Bn(num)
        else:
            return NotImplemented

    @staticmethod
    def _from_text(text, parse):
        if not isinstance(text, str):
            raise BnError("BN Error: expected a string, got %r" % (text,))

        ptr = _FFI.new("BIGNUM **")
        read_bytes = parse(ptr, text.encode("utf8"))
        if read_bytes == 0 or read_bytes != len(text):
            if ptr[0] != _FFI.NULL:
                _C.BN_clear_free(ptr[0])
            get_errors()
            raise BnError("BN Error: cannot parse %r" % (text,))

        ret = Bn()
        _C.BN_copy(ret.bn, ptr[0])
        _C.BN_clear_free(ptr[0])
        return ret

    @staticmethod
    def from_decimal(sdec):
        """Creates a Big Number from a decimal string.

        Args:
            sdec (string): numeric string possibly starting with minus.

        See Also:
            str() produces a decimal string from a big number.

        Example:
            >>> hundred = Bn.from_decimal("100")
            >>> str(hundred)
            '100'

        """
        return Bn._from_text(sdec, _C.BN_dec2bn)

    @staticmethod
    def from_hex(shex):
        """Creates a Big Number from a hexadecimal string.

        Args:
            shex (string): hex (0-F) string possibly starting with minus.

        Example:
            >>> Bn.from_hex("FF")
            255
        """
        return Bn._from_text(shex, _C.BN_hex2bn)

    @staticmethod
    def from_binary(sbin):
        """Creates a Big Number from a byte sequence representing the number in Big-endian 8 byte atoms. Only positive values can be represented as byte sequence, and the library user should store the sign bit separately.

        Args:
            sbin (string): a byte sequence.

        Example:
            >>> Bn.from_binary(b"\\x01\\x02\\x03")
            66051
            >>> (1 * 256**2) + (2 * 256) + 3
            66051
        """
        ret = Bn()
        if len(sbin) > 0:
            _check(_C.BN_bin2bn(sbin, len(sbin), ret.bn) != _FFI.NULL)
        return ret

    ## -- methods

    def __init__(self, num=0):
        'Allocate a Big Number structure, initialized with a native integer or zero.'
        self.bn = _C.BN_new()
        _check(self.bn != _FFI.NULL)

        if num == 0:
            return

        if not isinstance(num, int):
            raise BnError("Cannot build a Bn from %r" % (num,))

        # Assign through the big-endian magnitude
        size = (abs(num).bit_length() + 7) // 8
        data = abs(num).to_bytes(size, "big")
        _check(_C.BN_bin2bn(data, len(data), self.bn) != _FFI.NULL)

        if num < 0:
            self._set_neg(1)

    def _set_neg(self, sign=1):
        # """Sets the sign to "-" (1) or "+" (0)"""
        if not (sign == 0 or sign == 1):
            raise BnError("Sign has to be 0 or 1.")
        _C.BN_set_negative(self.bn, sign)

    def __del__(self):
        # 'Deallocate all resources of the big number'
        bn = getattr(self, "bn", None)
        if bn is not None:
            self.__C.BN_clear_free(bn)

    def __inner_cmp__(self, other):
        # 'Irel comparison function'
        other = Bn.from_num(other)
        if other is NotImplemented:
            return NotImplemented
        return int(_C.BN_cmp(self.bn, other.bn))

    def __lt__(self, other):
        sig = self.__inner_cmp__(other)
        return sig if sig is NotImplemented else sig < 0

    def __le__(self, other):
        sig = self.__inner_cmp__(other)
        return sig if sig is NotImplemented else sig <= 0

    def __eq__(self, other):
        sig = self.__inner_cmp__(other)
        return sig if sig is NotImplemented else sig == 0

    def __ne__(self, other):
        sig = self.__inner_cmp__(other)
        return sig if sig is NotImplemented else sig != 0

    def __gt__(self, other):
        sig = self.__inner_cmp__(other)
        return sig if sig is NotImplemented else sig > 0

    def __ge__(self, other):
        sig = self.__inner_cmp__(other)
        return sig if sig is NotImplemented else sig >= 0

    def __bool__(self):
        # 'Turn into boolean'
        return not _C.BN_is_zero(self.bn)

    # Export in different representations

    def __repr__(self):
        # 'The representation of the number as a decimal string'
        buf = _C.BN_bn2dec(self.bn)
        _check(buf != _FFI.NULL)
        s = bytes(_FFI.string(buf))
        openssl_free(buf)
        return s.decode('utf8')

    def __int__(self):
        return int(self.__repr__())

    def __index__(self):
        return int(self.__repr__())

    def binary(self):
        """Returns a byte sequence storing the absolute value of the Big
        Number in Big-Endian format (with 8 bit atoms). You need to extact the sign separately.

        Example:
            >>> Bn(66051).binary() == b"\\x01\\x02\\x03"
            True
        """
        if self < 0:
            raise BnError("Cannot represent negative numbers")
        size = (self.num_bits() + 7) // 8
        if size == 0:
            return b""
        bin_string = _FFI.new("unsigned char[]", size)

        l = _C.BN_bn2bin(self.bn, bin_string)
        assert int(l) == size
        return bytes(_FFI.buffer(bin_string)[:])

    def random(self):
        """Returns a cryptographically strong random number 0 <= rnd < self.
        Raises BnError if the generator fails; there is no fallback.

        Example:
            >>> r = Bn(100).random()
            >>> 0 <= r < 100
            True

        """
        rnd = Bn()
        _check(_C.BN_rand_range(rnd.bn, self.bn))
        return rnd

    # ---------- Arithmetic --------------

    def __radd__(self, other):
        return self.__add__(other)

    def __add__(self, other):
        try:
            r = Bn()
            _check(_C.BN_add(r.bn, self.bn, other.bn))
            return r
        except AttributeError:
            other = Bn.from_num(other)
            if other is NotImplemented:
                return NotImplemented
            return self.__add__(other)

    def __rsub__(self, other):
        return Bn(other) - self

    def __sub__(self, other):
        try:
            r = Bn()
            _check(_C.BN_sub(r.bn, self.bn, other.bn))
            return r
        except AttributeError:
            other = Bn.from_num(other)
            if other is NotImplemented:
                return NotImplemented
            return self.__sub__(other)

    def __rmul__(self, other):
        return self.__mul__(other)

    def __mul__(self, other):
        try:
            r = Bn()
            local_ctx = get_ctx()
            _check(_C.BN_mul(r.bn, self.bn, other.bn, local_ctx.bnctx))
            return r
        except AttributeError:
            other = Bn.from_num(other)
            if other is NotImplemented:
                return NotImplemented
            return self.__mul__(other)

    def mod_pow(self, other, m):
        """ Performs the modular exponentiation of self ** other % m,
            by square-and-multiply inside libcrypto.

            Example:
                >>> one100 = Bn(100)
                >>> one100.mod_pow(2, 3)   # Modular exponentiation
                1
                >>> Bn(7).mod_pow(0, 11)
                1

        """
        return self.__pow__(other, m)

    def __divmod__(self, other):
        try:
            dv = Bn()
            rem = Bn()
            local_ctx = get_ctx()
            _check(_C.BN_div(dv.bn, rem.bn, self.bn, other.bn, local_ctx.bnctx))
            return (dv, rem)
        except AttributeError:
            other = Bn.from_num(other)
            if other is NotImplemented:
                return NotImplemented
            return self.__divmod__(other)

    def __mod__(self, other):
        try:
            rem = Bn()
            local_ctx = get_ctx()
            _check(_C.BN_nnmod(rem.bn, self.bn, other.bn, local_ctx.bnctx))
            return rem
        except AttributeError:
            other = Bn.from_num(other)
            if other is NotImplemented:
                return NotImplemented
            return self.__mod__(other)

    def __floordiv__(self, other):
        dv, _ = divmod(self, other)
        return dv

    def __pow__(self, other, modulo=None):
        if modulo is None:
            raise BnError("Only modular exponentiation is supported")

        try:
            res = Bn()
            ctx = get_ctx()
            _check(_C.BN_mod_exp(res.bn, self.bn, other.bn, modulo.bn, ctx.bnctx))
            return res
        except AttributeError:
            other, modulo = Bn.from_num(other), Bn.from_num(modulo)
            if other is NotImplemented or modulo is NotImplemented:
                return NotImplemented
            return self.__pow__(other, modulo)

    def is_odd(self):
        """Returns True if the number is odd."""
        return bool(_C.BN_is_odd(self.bn))

    def num_bits(self):
        """Returns the number of bits representing this Big Number"""
        return int(_C.BN_num_bits(self.bn))

    def __neg__(self):
        # pylint: disable=protected-access
        ret = Bn()
        _check(_C.BN_copy(ret.bn, self.bn) != _FFI.NULL)
        if _C.BN_is_negative(self.bn):
            ret._set_neg(0)
        else:
            ret._set_neg(1)
        return ret

    def __hash__(self):
        return int(self).__hash__()


# ---------- Tests ------------


def test_bn_constructors():
    assert Bn.from_decimal("100") == 100
    assert Bn.from_decimal("-100") == -100

    with pytest.raises(BnError) as excinfo:
        Bn.from_decimal("100ABC")
    assert 'BN Error' in str(excinfo.value)

    with pytest.raises(BnError):
        Bn.from_decimal("")

    with pytest.raises(BnError):
        Bn.from_decimal(" 100")

    with pytest.raises(BnError) as excinfo:
        Bn.from_hex("100ABCZ")
    assert 'BN Error' in str(excinfo.value)

    assert Bn.from_hex("-64") == -100

    with pytest.raises(BnError) as excinfo:
        Bn(-100).binary()
    assert 'negative' in str(excinfo.value)

    assert Bn.from_binary(Bn(100).binary()) == Bn(100)
    assert Bn.from_binary(b"") == 0
    assert Bn(0).binary() == b""

    big = 2 ** 300 + 12345
    assert int(Bn(big)) == big
    assert int(Bn(-big)) == -big

    assert repr(Bn(5)) == "5"
    assert range(10)[Bn(4)] == 4

    d = {Bn(5): 5, Bn(6): 6}
    assert Bn(5) in d


def test_bn_arithmetic():
    assert (Bn(1) + Bn(1) == Bn(2))
    assert (Bn(1) + 1 == Bn(2))
    assert (1 + Bn(1) == Bn(2))
    assert (Bn(-1) * Bn(-1) == Bn(1))
    assert (10 * Bn(10) == Bn(100))
    assert (Bn(10) - Bn(100) == Bn(-90))
    assert (10 - Bn(100) == Bn(-90))
    assert -Bn(-10) == 10
    assert -Bn(0) == 0
    n = Bn(7)
    assert -n == -7
    assert n == 7

    assert divmod(Bn(10), Bn(3)) == (Bn(3), Bn(1))
    assert Bn(10) // Bn(3) == Bn(3)
    assert Bn(10) % Bn(3) == Bn(1)
    assert Bn(-10) % Bn(3) == Bn(2)

    assert pow(Bn(2), Bn(8), Bn(27)) == Bn(2 ** 8 % 27)
    assert pow(Bn(2), 8, 27) == 2 ** 8 % 27
    assert Bn(0).mod_pow(5, 23) == 0
    assert Bn(5).mod_pow(0, 23) == 1

    with pytest.raises(BnError):
        Bn(2) ** Bn(8)

    with pytest.raises(BnError):
        Bn(10) % Bn(0)


def test_bn_large_product():
    # No truncation of products wider than a machine word.
    a = 2 ** 255 - 19
    b = 2 ** 521 - 1
    assert int(Bn(a) * Bn(b)) == a * b
    assert int((Bn(a) * Bn(b)) % Bn(b - 2)) == (a * b) % (b - 2)


def test_bn_allocate():
    assert str(Bn()) == "0"
    assert str(Bn(1)) == "1"
    assert str(Bn(-1)) == "-1"

    assert int(Bn(5)) == 5

    assert 0 <= Bn(15).random() < 15

    assert not Bn()
    assert not Bn(0)
    assert Bn(1)
    assert Bn(-1)


def test_bn_cmp():
    assert Bn(1) < Bn(2)
    assert Bn(1) <= Bn(2)
    assert Bn(2) <= Bn(2)
    assert Bn(2) == Bn(2)
    assert Bn(3) > 2
    assert Bn(3) >= 3
    assert Bn(2) != "2"
    assert not (Bn(2) == "2")
    assert Bn(1).is_odd()
    assert not Bn(2).is_odd()
    assert Bn(255).num_bits() == 8


def test_bn_random_range():
    bound = Bn.from_decimal("1019")
    seen = set(int(bound.random()) for _ in range(200))
    assert all(0 <= v < 1019 for v in seen)
    assert len(seen) > 100
