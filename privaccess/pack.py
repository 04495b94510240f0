"""The module provides functions to pack and unpack privaccess Bn and
ProofRecord structures.

Example:
    >>> # Define a custom class, encoder and decoder
    >>> class CustomType:
    ...     def __eq__(self, other):
    ...         return isinstance(other, CustomType)
    >>>
    >>> def enc_custom(obj):
    ...     return b''
    >>>
    >>> def dec_custom(data):
    ...     return CustomType()
    >>>
    >>> register_coders(CustomType, 10, enc_custom, dec_custom)
    >>>
    >>> # Define a structure
    >>> record = ProofRecord("1024", "64", "17", "t1q7hkf")
    >>> custom_obj = CustomType()
    >>> test_data = [Bn(2039), record, custom_obj]
    >>>
    >>> # Encode and decode custom structure
    >>> packed = encode(test_data)
    >>> x = decode(packed)
    >>> assert x == test_data
    >>> _init_coders()

"""

import msgpack

from .bn import Bn
from .zkp import ProofRecord, PROOF_FIELDS, MalformedProofError

__all__ = ["encode", "decode", "register_coders"]

_pack_reg = {}
_unpack_reg = {}


def register_coders(cls, num, enc_func, dec_func):
    """ Register a new type for encoding and decoding.
    Take a class type, a number, an encoding and a decoding function."""

    if num in _unpack_reg or cls in _pack_reg:
        raise Exception("Class or number already in use.")

    coders = (cls, num, enc_func, dec_func)
    _pack_reg[cls] = coders
    _unpack_reg[num] = coders


def bn_enc(obj):
    if obj < 0:
        neg = b"-"
        data = (-obj).binary()
    else:
        neg = b"+"
        data = obj.binary()
    return neg + data


def bn_dec(data):
    num = Bn.from_binary(data[1:])
    if data[0] == ord("-"):
        return -num
    return num


def proof_enc(obj):
    # The record keeps its decimal strings; only the framing is binary.
    return msgpack.packb(obj.to_dict(), use_bin_type=True)


def proof_dec(data):
    fields = msgpack.unpackb(data, raw=False)
    if not isinstance(fields, dict) or set(fields) != set(PROOF_FIELDS):
        raise MalformedProofError("Packed proof has the wrong fields")
    return ProofRecord.from_dict(fields)


def _init_coders():
    global _pack_reg, _unpack_reg
    _pack_reg, _unpack_reg = {}, {}
    register_coders(Bn, 0, bn_enc, bn_dec)
    register_coders(ProofRecord, 1, proof_enc, proof_dec)


# Register default coders
_init_coders()


def default(obj):
    # Serialize registered objects
    for T in _pack_reg:
        if isinstance(obj, T):
            _, num, enc, _ = _pack_reg[T]
            return msgpack.ExtType(num, enc(obj))

    raise TypeError("Unknown type: %r" % (type(obj),))


def make_encoder(out_encoder=None):
    if out_encoder is None:
        return default
    else:
        def new_encoder(obj):
            try:
                return default(obj)
            except TypeError:
                return out_encoder(obj)
        return new_encoder


def ext_hook(code, data):
    if code in _unpack_reg:
        _, _, _, dec = _unpack_reg[code]
        return dec(data)

    # Other
    return msgpack.ExtType(code, data)


def make_decoder(custom_decoder=None):
    if custom_decoder is None:
        return ext_hook
    else:
        def new_decoder(code, data):
            out = ext_hook(code, data)
            if not isinstance(out, msgpack.ExtType):
                return out
            else:
                return custom_decoder(code, data)
        return new_decoder


def encode(structure, custom_encoder=None):
    """ Encode a structure containing privaccess objects to a binary format. May define a custom encoder for user classes. """
    encoder = make_encoder(custom_encoder)
    packed_data = msgpack.packb(structure, default=encoder, use_bin_type=True)
    return packed_data


def decode(packed_data, custom_decoder=None):
    """ Decode a binary byte sequence into a structure containing privaccess objects. May define a custom decoder for custom classes. """
    decoder = make_decoder(custom_decoder)
    structure = msgpack.unpackb(
        packed_data,
        ext_hook=decoder,
        raw=False,
        strict_map_key=False)
    return structure

# --- TESTS ---


def test_basic():
    x = [b'spam', u'egg']
    packed = msgpack.packb(x, use_bin_type=True)
    y = msgpack.unpackb(packed, raw=False)
    assert x == y


def test_bn():
    bn1, bn2 = Bn(1), Bn(2)
    big = Bn.from_decimal("112233445566778899001122334455")
    test_data = [bn1, bn2, -bn1, -bn2, Bn(0), big]
    packed = msgpack.packb(test_data, default=default, use_bin_type=True)
    x = msgpack.unpackb(packed, ext_hook=ext_hook, raw=False)
    assert x == test_data


def test_proof_record():
    from .zkp import Prover, verify_proof

    record = Prover(Bn.from_decimal("98765432109876543210987654321")).generate_proof("t1q7hkf")
    x = decode(encode(record))
    assert isinstance(x, ProofRecord)
    assert x == record
    assert verify_proof(x)


def test_bad_proof_payload():
    import pytest

    bad = msgpack.ExtType(1, msgpack.packb({"public_key": "1"}, use_bin_type=True))
    packed = msgpack.packb(bad, use_bin_type=True)
    with pytest.raises(MalformedProofError):
        decode(packed)


def test_enc_dec_dict():
    test_data = {Bn(5): [ProofRecord("1", "2", "3", "abcdef"), Bn(7)]}
    packed = encode(test_data)
    x = decode(packed)
    assert x[Bn(5)] == test_data[Bn(5)]


def test_enc_dec_custom():

    # Define a custom class, encoder and decoder
    class CustomClass:
        def __eq__(self, other):
            return isinstance(other, CustomClass)

    def enc_CustomClass(obj):
        if isinstance(obj, CustomClass):
            return msgpack.ExtType(11, b'')
        raise TypeError("Unknown type: %r" % (obj,))

    def dec_CustomClass(code, data):
        if code == 11:
            return CustomClass()

        return msgpack.ExtType(code, data)

    test_data = [Bn(2039), ProofRecord("1", "2", "3", "abcdef"), CustomClass()]

    packed = encode(test_data, enc_CustomClass)
    x = decode(packed, dec_CustomClass)
    assert x == test_data


def test_streaming():
    test_data = [Bn(2039), ProofRecord("1", "2", "3", "abcdef")]
    data = encode(test_data) + encode(test_data)

    Up = msgpack.Unpacker(ext_hook=make_decoder(), raw=False)
    Up.feed(data)
    count = 0
    for o in Up:
        assert o == test_data
        count += 1
    assert count == 2


def test_register_twice():
    import pytest

    with pytest.raises(Exception):
        register_coders(Bn, 20, bn_enc, bn_dec)
    with pytest.raises(Exception):
        register_coders(dict, 0, bn_enc, bn_dec)
