import io

import pytest

from copybird.crypto import AesGcmConfig, AesGcmDecrypt, AesGcmEncrypt

HEX_KEY = "00112233445566778899aabbccddeeff"
OTHER_HEX_KEY = "ffeeddccbbaa99887766554433221100"


def _run(module, data: bytes) -> bytes:
    out = io.BytesIO()
    module.init_pipe(out, io.BytesIO(data))
    module.run()
    return out.getvalue()


def _encrypt(data: bytes, key: str = HEX_KEY) -> bytes:
    enc = AesGcmEncrypt()
    enc.init_module(AesGcmConfig(key=key))
    return _run(enc, data)


def _decrypt(data: bytes, key: str = HEX_KEY) -> bytes:
    dec = AesGcmDecrypt()
    dec.init_module(AesGcmConfig(key=key))
    return _run(dec, data)


def test_default_config_is_empty():
    assert AesGcmEncrypt().default_config() == AesGcmConfig(key="")
    assert AesGcmDecrypt().default_config() == AesGcmConfig(key="")


def test_non_hex_key_is_rejected():
    with pytest.raises(ValueError, match="hex decode"):
        AesGcmEncrypt().init_module(AesGcmConfig(key="testitnowpleasee"))


def test_empty_key_is_rejected():
    with pytest.raises(ValueError, match="need key"):
        AesGcmDecrypt().init_module(AesGcmConfig())


def test_bad_key_length_is_rejected():
    with pytest.raises(ValueError, match="cipher init err"):
        AesGcmEncrypt().init_module(AesGcmConfig(key="abcd"))


def test_encrypted_frame_layout():
    out = _encrypt(b"hello world")
    assert out[:4] == (11).to_bytes(4, "little")
    assert len(out) == 4 + 12 + 11 + 16
    assert b"hello world" not in out


def test_roundtrip_small():
    assert _decrypt(_encrypt(b"hello world")) == b"hello world"


def test_roundtrip_multiple_chunks():
    payload = bytes(range(256)) * 40
    assert _decrypt(_encrypt(payload)) == payload


def test_empty_input_gives_empty_output():
    assert _encrypt(b"") == b""
    assert _decrypt(b"") == b""


def test_wrong_key_fails():
    with pytest.raises(ValueError, match="decrypt err"):
        _decrypt(_encrypt(b"hello world"), key=OTHER_HEX_KEY)


def test_tampered_data_fails():
    sealed = bytearray(_encrypt(b"hello world"))
    sealed[20] ^= 0x01
    with pytest.raises(ValueError, match="decrypt err"):
        _decrypt(bytes(sealed))


def test_truncated_data_fails():
    sealed = _encrypt(b"hello world")
    with pytest.raises(ValueError, match="truncated"):
        _decrypt(sealed[:-3])