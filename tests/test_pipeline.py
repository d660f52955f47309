import json
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from types import SimpleNamespace

import pytest

from contract_gate import pipeline
from contract_gate.errors import (
    BytecodeScanFailure,
    CompileFailure,
    MalformedInputError,
    SourceScanFailure,
    ValidationFailure,
)
from contract_gate.integrity import create_integrity_hash
from contract_gate.models import GateSettings, SourceRule
from contract_gate.pipeline import compile_and_scan, format_violations, validate_sources


def test_clean_contract_passes_all_gates(clean_source, fake_backend):
    backend = fake_backend()

    result = compile_and_scan({"Counter.sol": clean_source}, backend=backend)

    assert result.primary_contract == "Counter"
    assert result.source_report.passed and result.bytecode_report.passed
    assert result.source_report.score == 98
    assert result.bytecode_report.score == 98
    assert result.security_score == 98
    expected = create_integrity_hash(clean_source, result.contracts["Counter"].creation_bytecode)
    assert result.integrity_hashes == expected
    json.dumps(result.to_dict())


def test_source_failure_stops_before_compile(fake_backend):
    source = (
        "// SPDX-License-Identifier: MIT\n"
        "pragma solidity ^0.8.24;\n"
        "contract Bad {\n"
        "    function kill(address t) external { selfdestruct(payable(t)); t.delegatecall(\"\"); }\n"
        "}\n"
    )
    backend = fake_backend()

    with pytest.raises(SourceScanFailure) as excinfo:
        compile_and_scan({"Bad.sol": source}, backend=backend)

    assert backend.calls == []
    assert excinfo.value.codes == ("SELFDESTRUCT", "DELEGATECALL")
    assert str(excinfo.value).splitlines()[0] == "SELFDESTRUCT: selfdestruct is forbidden; contract must be immutable"
    assert excinfo.value.report.passed is False


def test_all_files_are_scanned_together(clean_source, fake_backend):
    dependency = "library Danger {\n  function f() internal { selfdestruct(payable(address(0))); }\n}\n"

    with pytest.raises(SourceScanFailure):
        compile_and_scan({"Counter.sol": clean_source, "Danger.sol": dependency}, backend=fake_backend())


def test_compile_failure_propagates(clean_source, fake_backend):
    errors = [{"severity": "error", "type": "DeclarationError", "message": "Identifier already declared."}]

    with pytest.raises(CompileFailure) as excinfo:
        compile_and_scan({"Counter.sol": clean_source}, backend=fake_backend(contracts={}, errors=errors))

    assert str(excinfo.value) == "DeclarationError: Identifier already declared."


def test_forbidden_opcode_in_bytecode_fails(clean_source, fake_backend, make_contract):
    backend = fake_backend(contracts=make_contract(deployed="6080604052" + "f4"))

    with pytest.raises(BytecodeScanFailure) as excinfo:
        compile_and_scan({"Counter.sol": clean_source}, backend=backend)

    assert excinfo.value.codes == ("OPCODE_DELEGATECALL",)
    assert "offset 5" in str(excinfo.value)


def test_oversized_bytecode_rejected_before_hashing(clean_source, fake_backend, make_contract, monkeypatch):
    def fail_hash(*args, **kwargs):
        raise AssertionError("hashing must not run for a rejected artifact")

    monkeypatch.setattr(pipeline, "create_integrity_hash", fail_hash)
    backend = fake_backend(contracts=make_contract(deployed="00" * 24_577))

    with pytest.raises(BytecodeScanFailure) as excinfo:
        compile_and_scan({"Counter.sol": clean_source}, backend=backend)

    assert excinfo.value.codes == ("BYTECODE_TOO_LARGE",)


def test_identical_bytecode_different_sources(clean_source, fake_backend):
    reformatted = clean_source.replace("    uint256 public count;", "    uint256 public count; // total")

    first = compile_and_scan({"Counter.sol": clean_source}, backend=fake_backend())
    second = compile_and_scan({"Counter.sol": reformatted}, backend=fake_backend())

    assert first.integrity_hashes.bytecode_hash == second.integrity_hashes.bytecode_hash
    assert first.integrity_hashes.source_hash != second.integrity_hashes.source_hash
    assert first.integrity_hashes.combined_hash != second.integrity_hashes.combined_hash


def test_interfaces_are_skipped_and_all_artifacts_returned(clean_source, fake_backend, make_contract):
    contracts = make_contract(name="ICounter", creation="", deployed="")
    contracts["Counter.sol"].update(make_contract()["Counter.sol"])
    contracts["Counter.sol"].update(make_contract(name="CounterHelper")["Counter.sol"])

    result = compile_and_scan({"Counter.sol": clean_source}, backend=fake_backend(contracts=contracts))

    assert result.primary_contract == "Counter"
    assert set(result.contracts) == {"ICounter", "Counter", "CounterHelper"}


def test_no_deployable_contract(clean_source, fake_backend, make_contract):
    backend = fake_backend(contracts=make_contract(name="ICounter", creation="", deployed=""))

    with pytest.raises(CompileFailure) as excinfo:
        compile_and_scan({"Counter.sol": clean_source}, backend=backend)

    assert excinfo.value.codes == ("NO_CONTRACTS",)


def test_combined_score_rounds_half_up(fake_backend):
    source = (
        "// SPDX-License-Identifier: MIT\n"
        "pragma solidity ^0.8.24;\n"
        "contract Pay {\n"
        "    function owner() external view returns (bool) { return tx.origin == msg.sender; }\n"
        "}\n"
    )

    result = compile_and_scan({"Pay.sol": source}, backend=fake_backend())

    assert result.source_report.score == 88
    assert result.bytecode_report.score == 98
    assert result.security_score == 93


def test_custom_rules_are_used(clean_source, fake_backend):
    rules = (SourceRule(code="NO_COUNTERS", severity="CRITICAL", message="no counters", pattern=r"\bcount\b"),)

    with pytest.raises(SourceScanFailure) as excinfo:
        compile_and_scan({"Counter.sol": clean_source}, backend=fake_backend(), rules=rules)

    assert excinfo.value.codes == ("NO_COUNTERS",)


def test_empty_source_map_rejected(fake_backend):
    with pytest.raises(MalformedInputError) as excinfo:
        compile_and_scan({}, backend=fake_backend())

    assert excinfo.value.codes == ("EMPTY_SOURCES",)


def test_precheck_fails_fast(fake_backend):
    backend = fake_backend()

    with pytest.raises(ValidationFailure) as excinfo:
        compile_and_scan({"A.sol": "pragma solidity ^0.8.24;\ncontract A {}\n"}, backend=backend, precheck=True)

    assert str(excinfo.value) == "VALIDATION: A.sol: Missing SPDX-License-Identifier"
    assert backend.calls == []


def test_settings_control_size_limit(clean_source, fake_backend, make_contract):
    backend = fake_backend(contracts=make_contract(deployed="00" * 64))

    with pytest.raises(BytecodeScanFailure):
        compile_and_scan(
            {"Counter.sol": clean_source},
            backend=backend,
            settings=GateSettings(max_bytecode_size=32),
        )


def test_validate_sources_and_format_violations(clean_source):
    results = validate_sources({"Counter.sol": clean_source, "Empty.sol": ""})

    assert results["Counter.sol"].valid is True
    assert results["Empty.sol"].valid is False

    report = pipeline.scan_source_code("contract A { function f() external { selfdestruct(payable(msg.sender)); } }")
    assert format_violations(report.critical) == (
        "- SELFDESTRUCT: selfdestruct is forbidden; contract must be immutable\n"
        "- NO_PRAGMA: No pragma solidity statement found"
    )


def test_constructor_only_opcode_fails_bytecode_gate(clean_source, fake_backend, make_contract):
    backend = fake_backend(contracts=make_contract(creation="6000f4" + "6080604052"))

    with pytest.raises(BytecodeScanFailure) as excinfo:
        compile_and_scan({"Counter.sol": clean_source}, backend=backend)

    assert excinfo.value.codes == ("OPCODE_DELEGATECALL",)
    assert "of creation code" in str(excinfo.value)


def test_primary_contract_key_points_at_scanned_artifact(clean_source, fake_backend, make_contract):
    contracts = {
        **make_contract(name="Counter", source_file="ICounter.sol", creation="", deployed=""),
        **make_contract(name="Counter", source_file="Counter.sol"),
    }

    result = compile_and_scan(
        {"ICounter.sol": "interface Counter {}\n", "Counter.sol": clean_source},
        backend=fake_backend(contracts=contracts),
    )

    assert result.primary_contract == "Counter.sol:Counter"
    assert result.contracts[result.primary_contract].source_file == "Counter.sol"
    assert result.contracts["Counter"].creation_bytecode == ""


def test_concurrent_runs_share_compiler_limit(clean_source, make_contract, monkeypatch):
    lock = threading.Lock()
    state = {"active": 0, "peak": 0}
    stdout = json.dumps({"contracts": make_contract()})

    def fake_run(cmd, **kwargs):
        with lock:
            state["active"] += 1
            state["peak"] = max(state["peak"], state["active"])
        time.sleep(0.05)
        with lock:
            state["active"] -= 1
        return SimpleNamespace(stdout=stdout, stderr="", returncode=0)

    monkeypatch.setattr("contract_gate.compiler.get_executable", lambda version=None: Path("/opt/solc"))
    monkeypatch.setattr("contract_gate.compiler.subprocess.run", fake_run)
    settings = GateSettings(max_concurrent_compiles=1)

    with ThreadPoolExecutor(max_workers=4) as executor:
        results = list(
            executor.map(lambda _: compile_and_scan({"Counter.sol": clean_source}, settings=settings), range(4))
        )

    assert state["peak"] == 1
    assert all(item.primary_contract == "Counter" for item in results)
