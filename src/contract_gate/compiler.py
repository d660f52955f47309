from __future__ import annotations

import json
import logging
import math
import posixpath
import re
import subprocess
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Mapping

from solcx.exceptions import (
    DownloadError,
    SolcInstallationError,
    SolcNotInstalled,
    UnexpectedVersionError,
    UnsupportedVersionError,
)
from solcx.install import get_executable, install_solc

from contract_gate.errors import CompileFailure, MalformedInputError
from contract_gate.models import (
    CompiledContract,
    CompileOutput,
    GateSettings,
    ValidationResult,
)
from contract_gate.scanners.bytecode import decode_bytecode

logger = logging.getLogger(__name__)

OUTPUT_SELECTION = ["abi", "evm.bytecode", "evm.deployedBytecode", "evm.gasEstimates"]

IMPORT_STATEMENT = re.compile(
    r"""^\s*import\s+(?:[^;"']*?\bfrom\s+)?["']([^"']+)["']""",
    re.MULTILINE,
)
COMMENT = re.compile(r"/\*.*?\*/|//[^\n]*", re.DOTALL)
CONTRACT_DECLARATION = re.compile(r"contract\s+\w+")

BASE_DEPLOYMENT_GAS = 21_000
GAS_PER_BYTECODE_BYTE = 200


class CompilerBackend(ABC):
    """Narrow seam around a standard-JSON Solidity compiler."""

    @abstractmethod
    def compile(self, standard_input: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError


class SolcBackend(CompilerBackend):
    """Runs a native ``solc --standard-json`` located through py-solc-x."""

    def __init__(self, settings: GateSettings):
        self.settings = settings
        self._slots = compile_slots(settings.max_concurrent_compiles)

    def compile(self, standard_input: dict[str, Any]) -> dict[str, Any]:
        executable = self._executable()
        with self._slots:
            try:
                process = subprocess.run(
                    [str(executable), "--standard-json"],
                    input=json.dumps(standard_input),
                    text=True,
                    capture_output=True,
                    timeout=self.settings.compile_timeout_seconds,
                )
            except subprocess.TimeoutExpired as exc:
                raise CompileFailure(
                    [
                        (
                            "COMPILER_TIMEOUT",
                            f"solc did not finish within {self.settings.compile_timeout_seconds:g} seconds",
                        )
                    ]
                ) from exc
            except OSError as exc:
                raise CompileFailure([("COMPILER_UNAVAILABLE", f"Failed to run {executable}: {exc}")]) from exc

        stdout = (process.stdout or "").strip()
        if not stdout:
            detail = (process.stderr or "").strip() or f"exit code {process.returncode}"
            raise CompileFailure([("COMPILER_CRASHED", detail[:500])])

        try:
            return json.loads(stdout)
        except json.JSONDecodeError as exc:
            raise CompileFailure([("COMPILER_CRASHED", f"solc produced invalid JSON: {exc}")]) from exc

    def _executable(self) -> Path:
        version = self.settings.solc_version
        try:
            return Path(get_executable(version=version))
        except UnsupportedVersionError as exc:
            raise CompileFailure([("COMPILER_UNAVAILABLE", f"solc {version} is not supported: {exc}")]) from exc
        except SolcNotInstalled as exc:
            if not self.settings.install_solc:
                raise CompileFailure(
                    [("COMPILER_UNAVAILABLE", f"solc {version} is not installed: {exc}")]
                ) from exc

        logger.info("Installing solc %s", version)
        try:
            install_solc(version)
            return Path(get_executable(version=version))
        except (
            DownloadError,
            SolcInstallationError,
            SolcNotInstalled,
            UnexpectedVersionError,
            UnsupportedVersionError,
            OSError,
        ) as exc:
            raise CompileFailure([("COMPILER_UNAVAILABLE", f"Could not install solc {version}: {exc}")]) from exc


_slots_lock = threading.Lock()
_compile_slots: dict[int, threading.BoundedSemaphore] = {}


def compile_slots(limit: int) -> threading.BoundedSemaphore:
    """Process-wide semaphore shared by every backend built with the same limit."""
    with _slots_lock:
        slots = _compile_slots.get(limit)
        if slots is None:
            slots = _compile_slots[limit] = threading.BoundedSemaphore(limit)
        return slots


def build_backend(settings: GateSettings) -> CompilerBackend:
    return SolcBackend(settings)


class ImportResolver:
    """Serves imports from the trusted dependency namespace on local disk."""

    def __init__(self, settings: GateSettings):
        self.base_dir = Path(settings.base_dir)
        self.trusted_prefixes = settings.trusted_import_prefixes
        self.remappings = settings.import_remappings

    def is_trusted(self, import_path: str) -> bool:
        if ".." in import_path.split("/"):
            return False
        return any(import_path.startswith(prefix) for prefix in self.trusted_prefixes)

    def resolve(self, import_path: str) -> str | None:
        if not self.is_trusted(import_path):
            return None

        for remapping in self.remappings:
            if not import_path.startswith(remapping.prefix):
                continue
            candidate = self.base_dir / (remapping.target + import_path[len(remapping.prefix):])
            if candidate.is_file():
                logger.debug("Resolved %s -> %s", import_path, candidate)
                return candidate.read_text(encoding="utf-8")

        return None


def collect_sources(
    sources: Mapping[str, str],
    resolver: ImportResolver,
) -> tuple[dict[str, str], list[dict[str, Any]]]:
    """Follow the import graph and inline every resolved dependency.

    Returns the full source unit map (caller files first) and an error
    diagnostic for every import that could not be resolved.
    """
    units: dict[str, str] = dict(sources)
    diagnostics: list[dict[str, Any]] = []
    pending = list(units)
    missing: set[str] = set()

    while pending:
        importer = pending.pop(0)
        for raw_path in _find_imports(units[importer]):
            unit_name = _unit_name(importer, raw_path)
            if unit_name is not None and unit_name in units:
                continue

            contents = resolver.resolve(unit_name) if unit_name is not None else None
            if contents is None:
                if raw_path not in missing:
                    missing.add(raw_path)
                    logger.warning("Import not found: %s (from %s)", raw_path, importer)
                    diagnostics.append(_import_error(importer, raw_path))
                continue

            units[unit_name] = contents
            pending.append(unit_name)

    return units, diagnostics


def build_standard_input(units: Mapping[str, str], settings: GateSettings) -> dict[str, Any]:
    return {
        "language": "Solidity",
        "sources": {name: {"content": content} for name, content in units.items()},
        "settings": {
            "optimizer": {"enabled": True, "runs": settings.optimizer_runs},
            "outputSelection": {"*": {"*": list(OUTPUT_SELECTION)}},
        },
    }


def compile_contracts(
    sources: Mapping[str, str],
    *,
    backend: CompilerBackend | None = None,
    settings: GateSettings | None = None,
) -> CompileOutput:
    if not sources:
        raise MalformedInputError("No contract sources provided", code="EMPTY_SOURCES")

    settings = settings or GateSettings()
    backend = backend or build_backend(settings)

    logger.info("Compiling contracts: %s", ", ".join(sources))

    units, import_errors = collect_sources(sources, ImportResolver(settings))
    if import_errors:
        raise CompileFailure(_diagnostic_entries(import_errors), import_errors)

    output = backend.compile(build_standard_input(units, settings))

    diagnostics = [item for item in output.get("errors") or [] if isinstance(item, dict)]
    errors = [item for item in diagnostics if item.get("severity") == "error"]
    if errors:
        for item in errors:
            logger.error("Compiler error: %s", item.get("formattedMessage") or item.get("message"))
        raise CompileFailure(_diagnostic_entries(errors), errors)

    warnings = tuple(item for item in diagnostics if item.get("severity") == "warning")
    contracts = _extract_contracts(output.get("contracts") or {}, order=list(units))
    return CompileOutput(contracts=contracts, warnings=warnings)


def validate_contract(source: str) -> ValidationResult:
    """Cheap structural pre-check. Advisory only; never replaces the scanners."""
    errors: list[str] = []
    if "SPDX-License-Identifier" not in source:
        errors.append("Missing SPDX-License-Identifier")
    if "pragma solidity" not in source:
        errors.append("Missing pragma solidity statement")
    if not CONTRACT_DECLARATION.search(source):
        errors.append("No contract definition found")
    return ValidationResult(valid=not errors, errors=tuple(errors))


def estimate_deployment_gas(bytecode: str) -> int:
    size = len(decode_bytecode(bytecode))
    return math.ceil(BASE_DEPLOYMENT_GAS + size * GAS_PER_BYTECODE_BYTE)


def _extract_contracts(raw: Mapping[str, Any], order: list[str]) -> dict[str, CompiledContract]:
    rank = {name: index for index, name in enumerate(order)}
    source_files = sorted(raw, key=lambda name: (rank.get(name, len(rank)), name))

    compiled: dict[str, CompiledContract] = {}
    for source_file in source_files:
        for contract_name, payload in (raw.get(source_file) or {}).items():
            evm = payload.get("evm") or {}
            artifact = CompiledContract(
                name=contract_name,
                abi=tuple(payload.get("abi") or ()),
                creation_bytecode=(evm.get("bytecode") or {}).get("object") or "",
                deployed_bytecode=(evm.get("deployedBytecode") or {}).get("object") or "",
                gas_estimates=evm.get("gasEstimates") or {},
                source_file=source_file,
            )
            key = contract_name if contract_name not in compiled else f"{source_file}:{contract_name}"
            compiled[key] = artifact
            logger.info("%s: %d bytes", key, len(artifact.creation_bytecode) // 2)

    return compiled


def _find_imports(source: str) -> list[str]:
    return IMPORT_STATEMENT.findall(COMMENT.sub("", source))


def _unit_name(importer: str, import_path: str) -> str | None:
    if not import_path.startswith(("./", "../")):
        return import_path

    joined = posixpath.normpath(posixpath.join(posixpath.dirname(importer), import_path))
    if joined == ".." or joined.startswith("../"):
        return None
    return joined


def _import_error(importer: str, import_path: str) -> dict[str, Any]:
    message = f"Import not found: {import_path}"
    return {
        "severity": "error",
        "type": "ImportError",
        "component": "general",
        "message": message,
        "formattedMessage": f"ImportError: {message}\n --> {importer}\n",
        "sourceLocation": {"file": importer},
    }


def _diagnostic_entries(diagnostics: list[dict[str, Any]]) -> list[tuple[str, str]]:
    entries = []
    for item in diagnostics:
        message = str(item.get("message") or item.get("formattedMessage") or "unknown compiler error").strip()
        location = (item.get("sourceLocation") or {}).get("file")
        if location:
            message = f"{message} ({location})"
        entries.append((str(item.get("type") or "CompilerError"), message))
    return entries
