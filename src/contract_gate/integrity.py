from __future__ import annotations

import hashlib
import hmac

from contract_gate.models import IntegrityHashes
from contract_gate.scanners.bytecode import decode_bytecode


def create_integrity_hash(source: str, bytecode: str) -> IntegrityHashes:
    """Bind reviewed source to compiled bytecode.

    The bytecode digest is taken over the decoded bytes, so ``0x`` prefixes and
    hex letter case do not change it. The combined digest hashes the two hex
    digests concatenated, which is the value worth attesting on-chain.
    """
    source_digest = hashlib.sha256(source.encode("utf-8")).hexdigest()
    bytecode_digest = _bytecode_digest(bytecode)
    combined_digest = hashlib.sha256((source_digest + bytecode_digest).encode("ascii")).hexdigest()

    return IntegrityHashes(
        source_hash=f"0x{source_digest}",
        bytecode_hash=f"0x{bytecode_digest}",
        combined_hash=f"0x{combined_digest}",
    )


def verify_bytecode_hash(bytecode: str, expected_hash: str) -> bool:
    return _digest_equal(f"0x{_bytecode_digest(bytecode)}", expected_hash)


def verify_integrity(source: str, bytecode: str, expected_combined_hash: str) -> bool:
    hashes = create_integrity_hash(source, bytecode)
    return _digest_equal(hashes.combined_hash, expected_combined_hash)


def _bytecode_digest(bytecode: str) -> str:
    return hashlib.sha256(decode_bytecode(bytecode)).hexdigest()


def _digest_equal(actual: str, expected: str) -> bool:
    normalized = expected.strip().lower()
    if not normalized.startswith("0x"):
        normalized = f"0x{normalized}"
    return hmac.compare_digest(actual.encode("ascii"), normalized.encode("ascii", errors="replace"))
