from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

from contract_gate.config import ConfigError, load_rules, load_settings
from contract_gate.db import AttestationStore
from contract_gate.errors import ContractGateError
from contract_gate.integrity import create_integrity_hash, verify_integrity
from contract_gate.models import SecurityReport
from contract_gate.pipeline import compile_and_scan, validate_sources
from contract_gate.reporting import write_report
from contract_gate.scanners import DEFAULT_SOURCE_RULES, scan_bytecode, scan_source_code


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="contract-gate",
        description="Fail-closed security gate for generated Solidity contracts",
    )
    parser.add_argument("--verbose", action="store_true", help="Log debug output to stderr")
    subparsers = parser.add_subparsers(dest="command", required=True)

    check_parser = subparsers.add_parser("check", help="Run scan -> compile -> scan -> hash")
    check_parser.add_argument("files", nargs="+", help="Solidity source files")
    check_parser.add_argument("--config", default=None, help="Settings JSON path")
    check_parser.add_argument("--db-path", default=None, help="Record the outcome in this SQLite file")
    check_parser.add_argument("--output-dir", default=None, help="Write gate_result.json and findings.csv here")
    check_parser.add_argument("--label", default=None, help="Free-form label stored with the attestation")
    check_parser.add_argument("--precheck", action="store_true", help="Validate structure before scanning")

    source_parser = subparsers.add_parser("scan-source", help="Source pattern scan only")
    source_parser.add_argument("files", nargs="+")
    source_parser.add_argument("--rules", default=None, help="Custom rules JSON path")

    bytecode_parser = subparsers.add_parser("scan-bytecode", help="Opcode walk over compiled bytecode")
    bytecode_parser.add_argument("bytecode", nargs="?", default=None, help="Hex bytecode")
    bytecode_parser.add_argument("--file", default=None, help="Read hex bytecode from a file")
    bytecode_parser.add_argument("--ignore-metadata", action="store_true")

    hash_parser = subparsers.add_parser("hash", help="Compute integrity hashes")
    hash_parser.add_argument("source_file")
    hash_parser.add_argument("bytecode_file")

    verify_parser = subparsers.add_parser("verify", help="Re-hash and compare to an attested combined hash")
    verify_parser.add_argument("source_file")
    verify_parser.add_argument("bytecode_file")
    verify_parser.add_argument("--combined-hash", required=True)

    validate_parser = subparsers.add_parser("validate", help="Structural pre-check")
    validate_parser.add_argument("files", nargs="+")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        if args.command == "check":
            return _run_check(args)

        if args.command == "scan-source":
            rules = load_rules(args.rules) if args.rules else DEFAULT_SOURCE_RULES
            sources = _read_sources(args.files)
            report = scan_source_code("\n".join(sources.values()), rules)
            return _print_report(report)

        if args.command == "scan-bytecode":
            if args.file:
                bytecode = Path(args.file).read_text(encoding="utf-8")
            elif args.bytecode:
                bytecode = args.bytecode
            else:
                parser.error("scan-bytecode needs a hex argument or --file")
                return 2
            report = scan_bytecode(bytecode, ignore_metadata=args.ignore_metadata)
            return _print_report(report)

        if args.command == "hash":
            hashes = create_integrity_hash(
                Path(args.source_file).read_text(encoding="utf-8"),
                Path(args.bytecode_file).read_text(encoding="utf-8"),
            )
            _print_json(hashes.to_dict())
            return 0

        if args.command == "verify":
            source = Path(args.source_file).read_text(encoding="utf-8")
            bytecode = Path(args.bytecode_file).read_text(encoding="utf-8")
            verified = verify_integrity(source, bytecode, args.combined_hash)
            _print_json(
                {
                    "verified": verified,
                    "expected_combined_hash": args.combined_hash,
                    "computed": create_integrity_hash(source, bytecode).to_dict(),
                }
            )
            return 0 if verified else 1

        if args.command == "validate":
            results = validate_sources(_read_sources(args.files))
            _print_json({name: item.to_dict() for name, item in results.items()})
            return 0 if all(item.valid for item in results.values()) else 1
    except ConfigError as exc:
        parser.error(str(exc))
        return 2
    except ContractGateError as exc:
        _print_json({"passed": False, **exc.to_dict()})
        return 1

    parser.error(f"Unsupported command: {args.command}")
    return 2


def _run_check(args: argparse.Namespace) -> int:
    settings = load_settings(args.config)
    sources = _read_sources(args.files)

    store = None
    if args.db_path:
        store = AttestationStore(args.db_path)
        store.init_schema()

    try:
        try:
            result = compile_and_scan(sources, settings=settings, precheck=args.precheck)
        except ContractGateError as exc:
            payload = {"passed": False, **exc.to_dict()}
            if store is not None:
                payload["attestation_id"] = store.record_rejection(exc, label=args.label)
            _print_json(payload)
            return 1

        payload = {
            "passed": True,
            "primary_contract": result.primary_contract,
            "contracts": sorted(result.contracts),
            "security_score": result.security_score,
            "integrity_hashes": result.integrity_hashes.to_dict(),
            "source_report": result.source_report.to_dict(),
            "bytecode_report": result.bytecode_report.to_dict(),
            "compiler_warnings": len(result.warnings),
        }
        if store is not None:
            payload["attestation_id"] = store.record_attestation(result, label=args.label)
        if args.output_dir:
            payload["report"] = write_report(result, args.output_dir)
        _print_json(payload)
        return 0
    finally:
        if store is not None:
            store.close()


def _read_sources(files: list[str]) -> dict[str, str]:
    sources: dict[str, str] = {}
    for item in files:
        path = Path(item)
        if not path.is_file():
            raise ConfigError(f"Source file not found: {path}")
        if path.name in sources:
            raise ConfigError(f"Duplicate source file name: {path.name}")
        sources[path.name] = path.read_text(encoding="utf-8")
    return sources


def _print_report(report: SecurityReport) -> int:
    _print_json(report.to_dict())
    return 0 if report.passed else 1


def _print_json(payload: dict) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=True))


if __name__ == "__main__":
    raise SystemExit(main())
