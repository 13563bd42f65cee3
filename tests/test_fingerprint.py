import hashlib

from verireport.services.fingerprint import (
    FINGERPRINT_LENGTH,
    fingerprint_bytes,
    fingerprint_chunks,
    is_fingerprint,
)

EMPTY_SHA256 = "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
ABC_SHA256 = "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"


def test_known_digests():
    assert fingerprint_bytes(b"") == EMPTY_SHA256
    assert fingerprint_bytes(b"abc") == ABC_SHA256


def test_fingerprint_is_lowercase_hex_of_fixed_length():
    fp = fingerprint_bytes(b"\x89PNG\r\n\x1a\n")
    assert len(fp) == FINGERPRINT_LENGTH
    assert fp == fp.lower()
    assert is_fingerprint(fp)


def test_chunked_digest_matches_whole():
    data = bytes(range(256)) * 1000
    chunks = [data[i:i + 4096] for i in range(0, len(data), 4096)]
    assert fingerprint_chunks(chunks) == fingerprint_bytes(data) == hashlib.sha256(data).hexdigest()


def test_single_byte_change_changes_fingerprint():
    assert fingerprint_bytes(b"invoice-1") != fingerprint_bytes(b"invoice-2")


def test_is_fingerprint_rejects_malformed_values():
    assert not is_fingerprint("")
    assert not is_fingerprint("abc")
    assert not is_fingerprint(ABC_SHA256.upper())
    assert not is_fingerprint("g" * 64)
    assert not is_fingerprint(ABC_SHA256 + "0")
