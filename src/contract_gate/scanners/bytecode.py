from __future__ import annotations

import binascii

from contract_gate.errors import MalformedInputError
from contract_gate.models import (
    SCAN_TYPE_BYTECODE,
    SEVERITY_CRITICAL,
    SEVERITY_INFO,
    SecurityFinding,
    SecurityReport,
)
from contract_gate.scoring import build_report

PUSH1 = 0x60
PUSH32 = 0x7F

OPCODE_SELFDESTRUCT = 0xFF
OPCODE_DELEGATECALL = 0xF4
OPCODE_CALLCODE = 0xF2

# EIP-170 deployed code size ceiling.
MAX_BYTECODE_SIZE = 24_576

FORBIDDEN_OPCODES = {
    OPCODE_SELFDESTRUCT: ("OPCODE_SELFDESTRUCT", "SELFDESTRUCT"),
    OPCODE_DELEGATECALL: ("OPCODE_DELEGATECALL", "DELEGATECALL"),
    OPCODE_CALLCODE: ("OPCODE_CALLCODE", "CALLCODE"),
}

# CBOR major type 5 (map) and 3 (text string) with inline lengths.
CBOR_MAP_MIN = 0xA1
CBOR_MAP_MAX = 0xB7
CBOR_TEXT_MIN = 0x60
CBOR_TEXT_MAX = 0x77
METADATA_KEYS = (b"ipfs", b"bzzr0", b"bzzr1", b"solc", b"experimental")


def decode_bytecode(bytecode: str) -> bytes:
    if not isinstance(bytecode, str):
        raise MalformedInputError(f"Bytecode must be a hex string, got {type(bytecode).__name__}")

    text = bytecode.strip()
    if text[:2] in {"0x", "0X"}:
        text = text[2:]
    if not text:
        raise MalformedInputError("Bytecode is empty")
    if len(text) % 2:
        raise MalformedInputError(f"Bytecode hex has odd length ({len(text)} characters)")

    try:
        return binascii.unhexlify(text)
    except (binascii.Error, ValueError) as exc:
        raise MalformedInputError(f"Bytecode is not valid hex: {exc}") from exc


def strip_metadata_trailer(code: bytes) -> bytes:
    """Drop the CBOR metadata block solc appends to runtime code.

    The final two bytes hold the big-endian length of the block. Anything that
    is not a CBOR map of that length whose first key is one solc writes is left
    untouched.
    """
    if len(code) < 3:
        return code
    length = int.from_bytes(code[-2:], "big")
    start = len(code) - 2 - length
    if length < 2 or start < 0:
        return code

    trailer = code[start:-2]
    if not CBOR_MAP_MIN <= trailer[0] <= CBOR_MAP_MAX:
        return code
    if not CBOR_TEXT_MIN <= trailer[1] <= CBOR_TEXT_MAX:
        return code
    key_length = trailer[1] - CBOR_TEXT_MIN
    if trailer[2 : 2 + key_length] not in METADATA_KEYS:
        return code
    return code[:start]


def iter_instructions(code: bytes):
    """Yield ``(offset, opcode)`` for every instruction boundary.

    PUSH operands are skipped so their immediate bytes are never mistaken for
    opcodes. A PUSH whose operand runs past the end of the code ends the walk.
    """
    offset = 0
    while offset < len(code):
        opcode = code[offset]
        yield offset, opcode
        if PUSH1 <= opcode <= PUSH32:
            offset += 1 + (opcode - PUSH1 + 1)
            continue
        offset += 1


def scan_bytecode(
    bytecode: str,
    *,
    ignore_metadata: bool = False,
    max_size: int = MAX_BYTECODE_SIZE,
    creation_bytecode: str | None = None,
) -> SecurityReport:
    """Size-check and opcode-walk ``bytecode`` (the deployed code).

    When ``creation_bytecode`` is given it is walked as well so constructor
    code is covered. Its findings are only added for opcodes the deployed walk
    did not already report, since creation code embeds the runtime code.
    """
    code = decode_bytecode(bytecode)
    size = len(code)

    critical: list[SecurityFinding] = []
    info: list[SecurityFinding] = []

    if size > max_size:
        critical.append(
            SecurityFinding(
                severity=SEVERITY_CRITICAL,
                code="BYTECODE_TOO_LARGE",
                message=f"Bytecode size {size} exceeds EIP-170 limit of {max_size} bytes",
            )
        )

    info.append(
        SecurityFinding(
            severity=SEVERITY_INFO,
            code="BYTECODE_SIZE",
            message=f"Bytecode size: {size} bytes ({size / max_size * 100:.1f}% of EIP-170 limit)",
        )
    )

    opcode_findings = _forbidden_opcodes(code, ignore_metadata=ignore_metadata)
    critical.extend(opcode_findings)

    if creation_bytecode is not None:
        reported = {item.code for item in opcode_findings}
        for finding in _forbidden_opcodes(
            decode_bytecode(creation_bytecode),
            ignore_metadata=ignore_metadata,
            where=" of creation code",
        ):
            if finding.code not in reported:
                reported.add(finding.code)
                critical.append(finding)

    return build_report(SCAN_TYPE_BYTECODE, critical=critical, warnings=[], info=info)


def _forbidden_opcodes(code: bytes, *, ignore_metadata: bool, where: str = "") -> list[SecurityFinding]:
    walked = strip_metadata_trailer(code) if ignore_metadata else code
    findings = []
    for offset, opcode in iter_instructions(walked):
        forbidden = FORBIDDEN_OPCODES.get(opcode)
        if forbidden is None:
            continue
        finding_code, name = forbidden
        findings.append(
            SecurityFinding(
                severity=SEVERITY_CRITICAL,
                code=finding_code,
                message=f"{name} opcode (0x{opcode:02X}) found at byte offset {offset}{where}",
            )
        )
    return findings
