from __future__ import annotations

from typing import Iterable

from contract_gate.models import SecurityFinding, SecurityReport


class ContractGateError(RuntimeError):
    """Base gate failure.

    ``str(error)`` is the newline-joined ``CODE: message`` list of every
    blocking entry, so it can be shown to a reviewer or fed back verbatim into
    a regeneration prompt.
    """

    def __init__(self, entries: Iterable[tuple[str, str]]):
        self.entries = tuple((str(code), str(message)) for code, message in entries)
        super().__init__("\n".join(f"{code}: {message}" for code, message in self.entries))

    @property
    def codes(self) -> tuple[str, ...]:
        return tuple(code for code, _ in self.entries)

    def to_dict(self) -> dict:
        return {
            "error": type(self).__name__,
            "entries": [{"code": code, "message": message} for code, message in self.entries],
        }


class MalformedInputError(ContractGateError, ValueError):
    def __init__(self, message: str, code: str = "MALFORMED_INPUT"):
        super().__init__([(code, message)])


class ValidationFailure(ContractGateError):
    pass


class CompileFailure(ContractGateError):
    def __init__(self, entries: Iterable[tuple[str, str]], diagnostics: Iterable[dict] = ()):
        super().__init__(entries)
        self.diagnostics = tuple(diagnostics)


class SecurityScanFailure(ContractGateError):
    def __init__(self, report: SecurityReport):
        self.report = report
        super().__init__(_finding_entries(report.critical))


class SourceScanFailure(SecurityScanFailure):
    pass


class BytecodeScanFailure(SecurityScanFailure):
    pass


def _finding_entries(findings: Iterable[SecurityFinding]) -> list[tuple[str, str]]:
    return [(item.code, item.message) for item in findings]
