import hashlib
import re

import pytest

from contract_gate.errors import MalformedInputError
from contract_gate.integrity import create_integrity_hash, verify_bytecode_hash, verify_integrity

DIGEST = re.compile(r"^0x[0-9a-f]{64}$")


def test_hashes_follow_sha256_chain():
    hashes = create_integrity_hash("contract A {}", "0x00")

    source_hex = hashlib.sha256(b"contract A {}").hexdigest()
    bytecode_hex = hashlib.sha256(b"\x00").hexdigest()
    assert hashes.source_hash == f"0x{source_hex}"
    assert hashes.bytecode_hash == "0x6e340b9cffb37a989ca544e6bb780a2c78901d3fb33738768511a30617afa01d"
    assert hashes.combined_hash == "0x" + hashlib.sha256((source_hex + bytecode_hex).encode()).hexdigest()
    for value in (hashes.source_hash, hashes.bytecode_hash, hashes.combined_hash):
        assert DIGEST.match(value)


def test_idempotent_and_invariant_to_prefix_and_case():
    first = create_integrity_hash("src", "0x6080ABCD")
    second = create_integrity_hash("src", "6080abcd")
    third = create_integrity_hash("src", "0X6080AbCd")

    assert first == second == third


def test_combined_hash_tracks_both_inputs():
    base = create_integrity_hash("src", "6080")
    other_source = create_integrity_hash("src2", "6080")
    other_bytecode = create_integrity_hash("src", "6081")

    assert other_source.bytecode_hash == base.bytecode_hash
    assert other_source.combined_hash != base.combined_hash
    assert other_bytecode.source_hash == base.source_hash
    assert other_bytecode.combined_hash != base.combined_hash


def test_source_hash_uses_utf8():
    hashes = create_integrity_hash("// café", "00")

    assert hashes.source_hash == "0x" + hashlib.sha256("// café".encode("utf-8")).hexdigest()


def test_verify_integrity_round_trip():
    hashes = create_integrity_hash("src", "0x6080")

    assert verify_integrity("src", "6080", hashes.combined_hash) is True
    assert verify_integrity("src", "6080", hashes.combined_hash.upper().replace("0X", "0x")) is True
    assert verify_integrity("src", "6080", hashes.combined_hash[2:]) is True
    assert verify_integrity("src tampered", "6080", hashes.combined_hash) is False
    assert verify_integrity("src", "6081", hashes.combined_hash) is False


def test_verify_bytecode_hash():
    hashes = create_integrity_hash("src", "6080")

    assert verify_bytecode_hash("0x6080", hashes.bytecode_hash) is True
    assert verify_bytecode_hash("6081", hashes.bytecode_hash) is False


def test_malformed_bytecode_rejected():
    with pytest.raises(MalformedInputError):
        create_integrity_hash("src", "0xabc")
