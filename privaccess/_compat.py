import cffi
import warnings


class OpenSSLVersion:
    V1_1 = "1_1"
    V3 = "3"


# Names tried in order when locating libcrypto through the dynamic loader.
LIBCRYPTO_NAMES = ["crypto", "libcrypto.so.3", "libcrypto.so.1.1",
                   "libcrypto.3.dylib", "libcrypto.1.1.dylib"]


def dlopen_crypto(ffi):
    """Opens libcrypto through ``ffi``, trying the usual library names."""
    errors = []
    for name in LIBCRYPTO_NAMES:
        try:
            return ffi.dlopen(name)
        except OSError as e:
            errors.append("%s: %s" % (name, e))
    raise OSError("Cannot load libcrypto (%s)" % "; ".join(errors))


def get_abi_lib():
    ffi = cffi.FFI()
    ffi.cdef("unsigned long OpenSSL_version_num(void);")
    lib = dlopen_crypto(ffi)
    return lib


def get_openssl_version(lib=None, warn=False):
    """Returns the OpenSSL version that is used for bindings."""

    if lib is None:
        lib = get_abi_lib()

    try:
        full_version = lib.OpenSSL_version_num()
    except AttributeError:
        # Only OpenSSL 1.0 and older lack OpenSSL_version_num
        raise OSError("OpenSSL 1.0 and older are not supported")

    major = full_version >> 28
    if major >= 3:
        return OpenSSLVersion.V3

    if (full_version >> 20) != 0x101 and warn:
        warnings.warn(
            "System OpenSSL version is not supported: 0x%x. "
            "Attempting to use in OpenSSL v1.1 mode." % full_version)
    return OpenSSLVersion.V1_1


def test_version_detection():
    assert get_openssl_version() in (OpenSSLVersion.V1_1, OpenSSLVersion.V3)
