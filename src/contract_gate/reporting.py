from __future__ import annotations

import csv
import json
from datetime import datetime, timezone
from pathlib import Path

from contract_gate.models import CompileAndScanResult

FINDING_COLUMNS = ["scan_type", "severity", "code", "message", "line"]


def write_report(result: CompileAndScanResult, output_dir: str | Path) -> dict:
    out_dir = Path(output_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    result_json = out_dir / "gate_result.json"
    findings_csv = out_dir / "findings.csv"

    rows = [
        {"scan_type": report.scan_type, **item.to_dict()}
        for report in (result.source_report, result.bytecode_report)
        for item in report.all_findings()
    ]

    payload = {
        "generated_at": datetime.now(timezone.utc).isoformat(),
        **result.to_dict(),
    }
    _write_json(result_json, payload)
    _write_csv(findings_csv, rows)

    return {
        "combined_hash": result.integrity_hashes.combined_hash,
        "findings_count": len(rows),
        "files": {
            "gate_result": str(result_json.resolve()),
            "findings": str(findings_csv.resolve()),
        },
    }


def _write_json(path: Path, payload: dict) -> None:
    with path.open("w", encoding="utf-8") as handle:
        json.dump(payload, handle, indent=2, ensure_ascii=True)


def _write_csv(path: Path, rows: list[dict]) -> None:
    with path.open("w", encoding="utf-8", newline="") as handle:
        writer = csv.DictWriter(handle, fieldnames=FINDING_COLUMNS)
        writer.writeheader()
        for row in rows:
            writer.writerow(row)
