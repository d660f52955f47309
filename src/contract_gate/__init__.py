from contract_gate.compiler import compile_contracts, estimate_deployment_gas, validate_contract
from contract_gate.integrity import create_integrity_hash, verify_bytecode_hash, verify_integrity
from contract_gate.pipeline import compile_and_scan, format_violations, validate_sources
from contract_gate.scanners import scan_bytecode, scan_source_code
from contract_gate.scoring import compute_security_score

__all__ = [
    "compile_and_scan",
    "compile_contracts",
    "compute_security_score",
    "create_integrity_hash",
    "estimate_deployment_gas",
    "format_violations",
    "scan_bytecode",
    "scan_source_code",
    "validate_contract",
    "validate_sources",
    "verify_bytecode_hash",
    "verify_integrity",
]
