from __future__ import annotations

from datetime import datetime, timezone
from typing import Sequence

from contract_gate.models import SecurityFinding, SecurityReport

CRITICAL_PENALTY = 50
WARNING_PENALTY = 10
INFO_PENALTY = 2


def compute_security_score(
    critical: Sequence[SecurityFinding],
    warnings: Sequence[SecurityFinding],
    info: Sequence[SecurityFinding],
) -> int:
    """Informational 0-100 ranking. Never used as the pass/fail gate."""
    score = 100
    score -= len(critical) * CRITICAL_PENALTY
    score -= len(warnings) * WARNING_PENALTY
    score -= len(info) * INFO_PENALTY
    return max(0, min(100, score))


def build_report(
    scan_type: str,
    critical: Sequence[SecurityFinding],
    warnings: Sequence[SecurityFinding],
    info: Sequence[SecurityFinding],
) -> SecurityReport:
    return SecurityReport(
        passed=len(critical) == 0,
        critical=tuple(critical),
        warnings=tuple(warnings),
        info=tuple(info),
        scan_type=scan_type,
        timestamp=datetime.now(timezone.utc).isoformat(),
        score=compute_security_score(critical, warnings, info),
    )
