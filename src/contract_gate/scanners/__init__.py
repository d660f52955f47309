from contract_gate.scanners.bytecode import decode_bytecode, scan_bytecode, strip_metadata_trailer
from contract_gate.scanners.source import DEFAULT_SOURCE_RULES, scan_source_code

__all__ = [
    "DEFAULT_SOURCE_RULES",
    "decode_bytecode",
    "scan_bytecode",
    "scan_source_code",
    "strip_metadata_trailer",
]
