#!/usr/bin/env python

import cffi

from ._compat import dlopen_crypto, get_openssl_version, OpenSSLVersion  # pylint: disable=unused-import

_FFI = cffi.FFI()

_FFI.cdef("""

typedef struct bignum_st BIGNUM;
typedef struct bignum_ctx BN_CTX;

unsigned long OpenSSL_version_num(void);
const char *OpenSSL_version(int type);

void CRYPTO_free(void *ptr, const char *file, int line);
int CRYPTO_memcmp(const void *a, const void *b, size_t len);

unsigned long ERR_get_error(void);
void ERR_error_string_n(unsigned long e, char *buf, size_t len);

BN_CTX *BN_CTX_new(void);
void BN_CTX_free(BN_CTX *c);

BIGNUM *BN_new(void);
void BN_clear_free(BIGNUM *a);
BIGNUM *BN_copy(BIGNUM *a, const BIGNUM *b);

void BN_set_negative(BIGNUM *b, int n);
int BN_is_negative(const BIGNUM *b);
int BN_is_zero(const BIGNUM *a);
int BN_is_odd(const BIGNUM *a);
int BN_num_bits(const BIGNUM *a);
int BN_cmp(const BIGNUM *a, const BIGNUM *b);

int BN_dec2bn(BIGNUM **a, const char *str);
int BN_hex2bn(BIGNUM **a, const char *str);
char *BN_bn2dec(const BIGNUM *a);
BIGNUM *BN_bin2bn(const unsigned char *s, int len, BIGNUM *ret);
int BN_bn2bin(const BIGNUM *a, unsigned char *to);

int BN_add(BIGNUM *r, const BIGNUM *a, const BIGNUM *b);
int BN_sub(BIGNUM *r, const BIGNUM *a, const BIGNUM *b);
int BN_mul(BIGNUM *r, const BIGNUM *a, const BIGNUM *b, BN_CTX *ctx);
int BN_div(BIGNUM *dv, BIGNUM *rem, const BIGNUM *m, const BIGNUM *d, BN_CTX *ctx);
int BN_nnmod(BIGNUM *r, const BIGNUM *m, const BIGNUM *d, BN_CTX *ctx);
int BN_mod_exp(BIGNUM *r, const BIGNUM *a, const BIGNUM *p, const BIGNUM *m, BN_CTX *ctx);

int BN_rand_range(BIGNUM *rnd, const BIGNUM *range);

""")

_C = dlopen_crypto(_FFI)

_OPENSSL_VERSION = get_openssl_version(_C, warn=True)

# OPENSSL_VERSION selector for OpenSSL_version()
OPENSSL_VERSION = 0


def openssl_free(ptr):
    """OPENSSL_free is a macro; call the function it expands to."""
    _C.CRYPTO_free(ptr, _FFI.NULL, 0)


def version():
    cstr = _C.OpenSSL_version(OPENSSL_VERSION)
    return _FFI.string(cstr).decode("utf8")


def get_errors():
    errors = []
    err = _C.ERR_get_error()
    while err != 0:
        errors += [err]
        err = _C.ERR_get_error()
    assert isinstance(errors, list)
    return errors


def error_strings(errors):
    """Turns libcrypto error codes into readable strings."""
    out = []
    for err in errors:
        buf = _FFI.new("char[]", 256)
        _C.ERR_error_string_n(err, buf, 256)
        out.append(_FFI.string(buf).decode("utf8", "replace"))
    return out


def secure_compare(a1, a2):
    """A constant-time comparison of two byte strings of equal length.
    Returns False straight away if the lengths differ.

    Example:
        >>> secure_compare(b"1234", b"1234")
        True
        >>> secure_compare(b"1234", b"1235")
        False
    """
    if type(a1) != type(a2):
        raise TypeError("Cannot compare %s with %s" % (type(a1), type(a2)))

    if len(a1) != len(a2):
        return False

    x = _C.CRYPTO_memcmp(a1, a2, len(a1))
    return int(x) == 0


def test_version():
    print(version())
    assert version().startswith("OpenSSL")


def test_errors():
    assert get_errors() == []


def test_secure_compare():
    assert secure_compare(b"", b"")
    assert not secure_compare(b"12", b"123")
    import pytest
    with pytest.raises(TypeError):
        secure_compare(b"12", u"12")


def test_multithread():
    import threading
    from .bn import Bn

    n = Bn.from_decimal("98765432109876543210987654321")
    m = Bn.from_decimal("123456789012345678901234567891")
    expected = pow(98765432109876543210987654321, 65537,
                   123456789012345678901234567891)
    failures = []

    def worker():
        for _ in range(50):
            if n.mod_pow(65537, m) != expected:
                failures.append(1)

    threads = []
    for _ in range(20):
        t = threading.Thread(target=worker)
        threads.append(t)
        t.start()

    for t in threads:
        t.join()

    assert failures == []
