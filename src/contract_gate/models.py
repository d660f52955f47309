from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

SEVERITY_CRITICAL = "CRITICAL"
SEVERITY_WARNING = "WARNING"
SEVERITY_INFO = "INFO"

SEVERITIES = (SEVERITY_CRITICAL, SEVERITY_WARNING, SEVERITY_INFO)

SCAN_TYPE_SOURCE = "source"
SCAN_TYPE_BYTECODE = "bytecode"


@dataclass(frozen=True)
class SourceRule:
    code: str
    severity: str
    message: str
    pattern: str
    multiline: bool = False
    ignore_case: bool = False
    # Matched against the whole source only; findings carry no line.
    whole_source: bool = False


@dataclass(frozen=True)
class SecurityFinding:
    severity: str
    code: str
    message: str
    line: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class SecurityReport:
    passed: bool
    critical: tuple[SecurityFinding, ...]
    warnings: tuple[SecurityFinding, ...]
    info: tuple[SecurityFinding, ...]
    scan_type: str
    timestamp: str
    score: int

    def all_findings(self) -> tuple[SecurityFinding, ...]:
        return self.critical + self.warnings + self.info

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class IntegrityHashes:
    source_hash: str
    bytecode_hash: str
    combined_hash: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class CompiledContract:
    name: str
    abi: tuple[dict[str, Any], ...]
    creation_bytecode: str
    deployed_bytecode: str
    gas_estimates: dict[str, Any]
    source_file: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "abi": list(self.abi),
            "creation_bytecode": self.creation_bytecode,
            "deployed_bytecode": self.deployed_bytecode,
            "gas_estimates": self.gas_estimates,
            "source_file": self.source_file,
        }


@dataclass(frozen=True)
class CompileOutput:
    contracts: dict[str, CompiledContract]
    warnings: tuple[dict[str, Any], ...] = ()


@dataclass(frozen=True)
class CompileAndScanResult:
    contracts: dict[str, CompiledContract]
    warnings: tuple[dict[str, Any], ...]
    source_report: SecurityReport
    bytecode_report: SecurityReport
    integrity_hashes: IntegrityHashes
    security_score: int
    primary_contract: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "primary_contract": self.primary_contract,
            "security_score": self.security_score,
            "integrity_hashes": self.integrity_hashes.to_dict(),
            "source_report": self.source_report.to_dict(),
            "bytecode_report": self.bytecode_report.to_dict(),
            "warnings": list(self.warnings),
            "contracts": {name: item.to_dict() for name, item in self.contracts.items()},
        }


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    errors: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ImportRemapping:
    prefix: str
    target: str


DEFAULT_IMPORT_REMAPPINGS = (
    ImportRemapping(prefix="@openzeppelin/", target="node_modules/@openzeppelin/"),
    ImportRemapping(
        prefix="@openzeppelin/contracts/",
        target="lib/openzeppelin-contracts/contracts/",
    ),
)


@dataclass(frozen=True)
class GateSettings:
    solc_version: str = "0.8.24"
    optimizer_runs: int = 200
    base_dir: str = "."
    trusted_import_prefixes: tuple[str, ...] = ("@openzeppelin/",)
    import_remappings: tuple[ImportRemapping, ...] = field(
        default_factory=lambda: DEFAULT_IMPORT_REMAPPINGS
    )
    compile_timeout_seconds: float = 120.0
    max_concurrent_compiles: int = 2
    install_solc: bool = False
    max_bytecode_size: int = 24_576
    ignore_metadata_trailer: bool = True
    rules_path: str | None = None
