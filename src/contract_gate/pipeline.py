from __future__ import annotations

import logging
from typing import Iterable, Mapping, Sequence

from contract_gate.compiler import CompilerBackend, compile_contracts, validate_contract
from contract_gate.config import load_rules
from contract_gate.errors import (
    BytecodeScanFailure,
    CompileFailure,
    MalformedInputError,
    SourceScanFailure,
    ValidationFailure,
)
from contract_gate.integrity import create_integrity_hash
from contract_gate.models import (
    CompileAndScanResult,
    CompiledContract,
    GateSettings,
    SecurityFinding,
    SourceRule,
    ValidationResult,
)
from contract_gate.scanners import DEFAULT_SOURCE_RULES, scan_bytecode, scan_source_code

logger = logging.getLogger(__name__)


def compile_and_scan(
    sources: Mapping[str, str],
    *,
    backend: CompilerBackend | None = None,
    settings: GateSettings | None = None,
    rules: Sequence[SourceRule] | None = None,
    precheck: bool = False,
) -> CompileAndScanResult:
    """Source scan -> compile -> bytecode scan -> hash -> score.

    Fail-closed: every gate raises before the next stage runs, so hashes are
    never computed for a rejected artifact.
    """
    if not sources:
        raise MalformedInputError("No contract sources provided", code="EMPTY_SOURCES")

    settings = settings or GateSettings()
    if rules is None:
        rules = load_rules(settings.rules_path) if settings.rules_path else DEFAULT_SOURCE_RULES

    if precheck:
        failures = [
            (filename, result)
            for filename, result in validate_sources(sources).items()
            if not result.valid
        ]
        if failures:
            raise ValidationFailure(
                ("VALIDATION", f"{filename}: {', '.join(result.errors)}") for filename, result in failures
            )

    all_source = "\n".join(sources.values())
    source_report = scan_source_code(all_source, rules)
    if not source_report.passed:
        logger.error("Source scan failed: %s", [item.code for item in source_report.critical])
        raise SourceScanFailure(source_report)

    compiled = compile_contracts(sources, backend=backend, settings=settings)

    primary_key, primary = _primary_contract(compiled.contracts)
    # Size is checked on the deployed code; opcodes on both deployed and creation code.
    bytecode_report = scan_bytecode(
        primary.deployed_bytecode or primary.creation_bytecode,
        ignore_metadata=settings.ignore_metadata_trailer,
        max_size=settings.max_bytecode_size,
        creation_bytecode=primary.creation_bytecode if primary.deployed_bytecode else None,
    )
    if not bytecode_report.passed:
        logger.error("Bytecode scan failed for %s: %s", primary_key, [item.code for item in bytecode_report.critical])
        raise BytecodeScanFailure(bytecode_report)

    integrity_hashes = create_integrity_hash(all_source, primary.creation_bytecode)
    # Mean of two integers, halves round up.
    security_score = (source_report.score + bytecode_report.score + 1) // 2

    logger.info(
        "Security score: %s, combined hash: %s",
        security_score,
        integrity_hashes.combined_hash,
    )

    return CompileAndScanResult(
        contracts=compiled.contracts,
        warnings=compiled.warnings,
        source_report=source_report,
        bytecode_report=bytecode_report,
        integrity_hashes=integrity_hashes,
        security_score=security_score,
        primary_contract=primary_key,
    )


def validate_sources(sources: Mapping[str, str]) -> dict[str, ValidationResult]:
    return {filename: validate_contract(source) for filename, source in sources.items()}


def format_violations(findings: Iterable[SecurityFinding]) -> str:
    """Render findings as ``- CODE: message`` lines for a regeneration prompt."""
    return "\n".join(f"- {item.code}: {item.message}" for item in findings)


def _primary_contract(contracts: Mapping[str, CompiledContract]) -> tuple[str, CompiledContract]:
    # Interfaces and abstract contracts compile to empty bytecode and are never deployable.
    for key, artifact in contracts.items():
        if artifact.creation_bytecode:
            return key, artifact
    raise CompileFailure([("NO_CONTRACTS", "Compilation produced no deployable contract")])
