from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from contract_gate.errors import ContractGateError, SecurityScanFailure
from contract_gate.models import CompileAndScanResult, SecurityReport


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class AttestationStore:
    """Caller-side audit log of gate runs. The pipeline itself never persists."""

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(self.db_path)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys = ON")

    def close(self) -> None:
        self.conn.close()

    def init_schema(self) -> None:
        self.conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS attestations (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                created_at TEXT NOT NULL,
                label TEXT,
                status TEXT NOT NULL,
                primary_contract TEXT,
                security_score INTEGER,
                source_hash TEXT,
                bytecode_hash TEXT,
                combined_hash TEXT,
                error_type TEXT,
                notes TEXT
            );

            CREATE TABLE IF NOT EXISTS findings (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                attestation_id INTEGER NOT NULL,
                scan_type TEXT NOT NULL,
                severity TEXT NOT NULL,
                code TEXT NOT NULL,
                message TEXT NOT NULL,
                line_number INTEGER,
                FOREIGN KEY(attestation_id) REFERENCES attestations(id) ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_attestations_combined_hash ON attestations(combined_hash);
            CREATE INDEX IF NOT EXISTS idx_findings_attestation_id ON findings(attestation_id);
            CREATE INDEX IF NOT EXISTS idx_findings_code ON findings(code);
            """
        )
        self.conn.commit()

    def record_attestation(self, result: CompileAndScanResult, label: str | None = None) -> int:
        hashes = result.integrity_hashes
        cursor = self.conn.execute(
            """
            INSERT INTO attestations (
                created_at,
                label,
                status,
                primary_contract,
                security_score,
                source_hash,
                bytecode_hash,
                combined_hash
            )
            VALUES (?, ?, 'PASSED', ?, ?, ?, ?, ?)
            """,
            (
                utc_now(),
                label,
                result.primary_contract,
                int(result.security_score),
                hashes.source_hash,
                hashes.bytecode_hash,
                hashes.combined_hash,
            ),
        )
        attestation_id = int(cursor.lastrowid)
        self._insert_report(attestation_id, result.source_report)
        self._insert_report(attestation_id, result.bytecode_report)
        self.conn.commit()
        return attestation_id

    def record_rejection(self, error: ContractGateError, label: str | None = None) -> int:
        cursor = self.conn.execute(
            """
            INSERT INTO attestations (created_at, label, status, error_type, notes)
            VALUES (?, ?, 'REJECTED', ?, ?)
            """,
            (utc_now(), label, type(error).__name__, str(error)),
        )
        attestation_id = int(cursor.lastrowid)
        if isinstance(error, SecurityScanFailure):
            self._insert_report(attestation_id, error.report)
        self.conn.commit()
        return attestation_id

    def get_attestation(self, attestation_id: int) -> dict[str, Any] | None:
        row = self.conn.execute(
            "SELECT * FROM attestations WHERE id = ?",
            (int(attestation_id),),
        ).fetchone()
        return dict(row) if row is not None else None

    def find_by_combined_hash(self, combined_hash: str) -> list[dict[str, Any]]:
        rows = self.query(
            "SELECT * FROM attestations WHERE combined_hash = ? ORDER BY id ASC",
            (combined_hash.strip().lower(),),
        )
        return [dict(row) for row in rows]

    def list_findings(self, attestation_id: int) -> list[dict[str, Any]]:
        rows = self.query(
            """
            SELECT scan_type, severity, code, message, line_number
            FROM findings
            WHERE attestation_id = ?
            ORDER BY
                CASE severity WHEN 'CRITICAL' THEN 1 WHEN 'WARNING' THEN 2 ELSE 3 END,
                id ASC
            """,
            (int(attestation_id),),
        )
        return [dict(row) for row in rows]

    def query(self, sql: str, params: tuple | None = None) -> list[sqlite3.Row]:
        cursor = self.conn.execute(sql, params or ())
        return list(cursor.fetchall())

    def _insert_report(self, attestation_id: int, report: SecurityReport) -> None:
        self.conn.executemany(
            """
            INSERT INTO findings (attestation_id, scan_type, severity, code, message, line_number)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    int(attestation_id),
                    report.scan_type,
                    item.severity,
                    item.code,
                    item.message,
                    item.line,
                )
                for item in report.all_findings()
            ],
        )
