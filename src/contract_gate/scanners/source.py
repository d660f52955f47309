from __future__ import annotations

import re
from typing import Sequence

from contract_gate.models import (
    SCAN_TYPE_SOURCE,
    SEVERITY_CRITICAL,
    SEVERITY_INFO,
    SEVERITY_WARNING,
    SecurityFinding,
    SecurityReport,
    SourceRule,
)
from contract_gate.scoring import build_report

MIN_SOLIDITY_VERSION = (0, 8, 20)
LARGE_SOURCE_BYTES = 50_000

DEFAULT_SOURCE_RULES: tuple[SourceRule, ...] = (
    SourceRule(
        code="SELFDESTRUCT",
        severity=SEVERITY_CRITICAL,
        message="selfdestruct is forbidden; contract must be immutable",
        pattern=r"\bselfdestruct\s*\(",
        ignore_case=True,
    ),
    SourceRule(
        code="SUICIDE",
        severity=SEVERITY_CRITICAL,
        message="suicide (deprecated selfdestruct) is forbidden",
        pattern=r"\bsuicide\s*\(",
        ignore_case=True,
    ),
    SourceRule(
        code="DELEGATECALL",
        severity=SEVERITY_CRITICAL,
        message="delegatecall is forbidden; no proxy patterns allowed",
        pattern=r"\bdelegatecall\s*\(",
        ignore_case=True,
    ),
    SourceRule(
        code="CALLCODE",
        severity=SEVERITY_CRITICAL,
        message="callcode is forbidden; deprecated and unsafe",
        pattern=r"\bcallcode\s*\(",
        ignore_case=True,
    ),
    SourceRule(
        code="ERC1967_PROXY",
        severity=SEVERITY_CRITICAL,
        message="ERC1967 proxy pattern is forbidden; contracts must be immutable",
        pattern=r"\bERC1967\b",
    ),
    SourceRule(
        code="UUPS_PROXY",
        severity=SEVERITY_CRITICAL,
        message="UUPS upgradeable pattern is forbidden",
        pattern=r"\bUUPS\b",
    ),
    SourceRule(
        code="TRANSPARENT_PROXY",
        severity=SEVERITY_CRITICAL,
        message="TransparentProxy pattern is forbidden",
        pattern=r"\bTransparentProxy\b",
    ),
    SourceRule(
        code="PROXY_IMPORT",
        severity=SEVERITY_CRITICAL,
        message="Proxy contract import detected; upgradeable contracts forbidden",
        pattern=r"import\s+.*[Pp]roxy",
    ),
    SourceRule(
        code="PROXY_INHERITANCE",
        severity=SEVERITY_CRITICAL,
        message="Proxy inheritance detected; upgradeable contracts forbidden",
        pattern=r"\bis\s+.*Proxy\b",
    ),
    SourceRule(
        code="UPGRADEABLE_IMPORT",
        severity=SEVERITY_CRITICAL,
        message="Upgradeable contract import detected; contracts must be immutable",
        pattern=r"import\s+.*[Uu]pgradeable",
    ),
    SourceRule(
        code="TX_ORIGIN",
        severity=SEVERITY_WARNING,
        message="tx.origin usage detected; vulnerable to phishing attacks, use msg.sender instead",
        pattern=r"\btx\.origin\b",
    ),
    SourceRule(
        code="ASSEMBLY_CREATE2",
        severity=SEVERITY_WARNING,
        message="Assembly create2 detected; review for counterfactual deployment safety",
        pattern=r"assembly\s*\{[^}]*\bcreate2\b",
        multiline=True,
    ),
    SourceRule(
        code="SOLIDITY_VERSION",
        severity=SEVERITY_INFO,
        message="Solidity version detected: {0}",
        pattern=r"pragma\s+solidity\s+([^;]+)",
        whole_source=True,
    ),
)

VERSION_PRAGMA = re.compile(r"pragma\s+solidity\s+[\^>=]*\s*(0\.\d+\.\d+)")
ANY_PRAGMA = re.compile(r"\bpragma\s+solidity\b")
VALUE_TRANSFER_CALL = re.compile(r"\.call\s*\{|\.transfer\s*\(|\.send\s*\(")
REENTRANCY_GUARD = "ReentrancyGuard"


def compile_rules(rules: Sequence[SourceRule]) -> list[tuple[SourceRule, re.Pattern[str]]]:
    compiled = []
    for rule in rules:
        flags = re.IGNORECASE if rule.ignore_case else 0
        if rule.multiline:
            flags |= re.DOTALL
        compiled.append((rule, re.compile(rule.pattern, flags)))
    return compiled


def scan_source_code(
    code: str,
    rules: Sequence[SourceRule] = DEFAULT_SOURCE_RULES,
) -> SecurityReport:
    """Scan Solidity source for forbidden primitives and structural problems.

    Each rule contributes at most one finding. Lines are checked first so the
    finding carries the 1-based line of the first match; multi-line rules then
    get a whole-source pass that only adds a (line-less) finding when the
    per-line pass found nothing for that code. Whole-source rules skip the
    per-line pass.
    """
    findings = _run_rules(code, compile_rules(rules))
    findings.extend(_check_version(code))
    findings.extend(_check_reentrancy(code))
    findings.extend(_check_size(code))

    return build_report(
        SCAN_TYPE_SOURCE,
        critical=[item for item in findings if item.severity == SEVERITY_CRITICAL],
        warnings=[item for item in findings if item.severity == SEVERITY_WARNING],
        info=[item for item in findings if item.severity == SEVERITY_INFO],
    )


def _run_rules(code: str, compiled: list[tuple[SourceRule, re.Pattern[str]]]) -> list[SecurityFinding]:
    lines = code.split("\n")
    findings: list[SecurityFinding] = []
    seen_codes: set[str] = set()

    for rule, pattern in compiled:
        if rule.code in seen_codes:
            continue

        if not rule.whole_source:
            for line_index, line in enumerate(lines, start=1):
                match = pattern.search(line)
                if match:
                    findings.append(_to_finding(rule, match, line_index))
                    seen_codes.add(rule.code)
                    break

        if (rule.multiline or rule.whole_source) and rule.code not in seen_codes:
            match = pattern.search(code)
            if match:
                findings.append(_to_finding(rule, match, None))
                seen_codes.add(rule.code)

    return findings


def _to_finding(rule: SourceRule, match: re.Match[str], line: int | None) -> SecurityFinding:
    groups = [" ".join((group or "").split()) for group in match.groups()]
    message = rule.message.format(*groups) if groups else rule.message
    return SecurityFinding(
        severity=rule.severity,
        code=rule.code,
        message=message,
        line=line,
    )


def _check_version(code: str) -> list[SecurityFinding]:
    match = VERSION_PRAGMA.search(code)
    if match:
        version = match.group(1)
        major, minor, patch = (int(part) for part in version.split("."))
        if (major, minor, patch) < MIN_SOLIDITY_VERSION:
            minimum = ".".join(str(part) for part in MIN_SOLIDITY_VERSION)
            return [
                SecurityFinding(
                    severity=SEVERITY_CRITICAL,
                    code="OLD_SOLIDITY",
                    message=f"Solidity version {version} is below minimum {minimum}; upgrade required",
                )
            ]
        return []

    if not ANY_PRAGMA.search(code):
        return [
            SecurityFinding(
                severity=SEVERITY_CRITICAL,
                code="NO_PRAGMA",
                message="No pragma solidity statement found",
            )
        ]
    return []


def _check_reentrancy(code: str) -> list[SecurityFinding]:
    if VALUE_TRANSFER_CALL.search(code) and REENTRANCY_GUARD not in code:
        return [
            SecurityFinding(
                severity=SEVERITY_WARNING,
                code="MISSING_REENTRANCY_GUARD",
                message="Contract has external calls but does not use ReentrancyGuard",
            )
        ]
    return []


def _check_size(code: str) -> list[SecurityFinding]:
    size = len(code.encode("utf-8"))
    if size > LARGE_SOURCE_BYTES:
        return [
            SecurityFinding(
                severity=SEVERITY_INFO,
                code="LARGE_SOURCE",
                message=f"Source code is {size / 1024:.1f}KB; may produce large bytecode",
            )
        ]
    return []
