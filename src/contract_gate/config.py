from __future__ import annotations

import json
import os
import re
from pathlib import Path

from contract_gate.models import (
    DEFAULT_IMPORT_REMAPPINGS,
    SEVERITIES,
    GateSettings,
    ImportRemapping,
    SourceRule,
)


class ConfigError(ValueError):
    pass


ENV_BASE_DIR = "CONTRACT_GATE_BASE_DIR"
ENV_SOLC_VERSION = "CONTRACT_GATE_SOLC_VERSION"

SOLC_VERSION_PATTERN = re.compile(r"^\d+\.\d+\.\d+$")


def load_settings(path: str | Path | None = None) -> GateSettings:
    raw: dict = {}
    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            raise ConfigError(f"Config file not found: {config_path}")

        with config_path.open("r", encoding="utf-8") as handle:
            try:
                raw = json.load(handle)
            except json.JSONDecodeError as exc:
                raise ConfigError(f"Config file is not valid JSON: {config_path}: {exc}") from exc

        if not isinstance(raw, dict):
            raise ConfigError("Config file must contain a JSON object")

    defaults = GateSettings()

    solc_version = str(os.getenv(ENV_SOLC_VERSION) or raw.get("solc_version", defaults.solc_version)).strip()
    if not SOLC_VERSION_PATTERN.match(solc_version):
        raise ConfigError(f"solc_version must look like 0.8.24, got {solc_version!r}")

    base_dir = str(os.getenv(ENV_BASE_DIR) or raw.get("base_dir", defaults.base_dir))

    remappings_raw = raw.get("import_remappings")
    if remappings_raw is None:
        remappings = DEFAULT_IMPORT_REMAPPINGS
    else:
        remappings = tuple(_parse_remapping(item) for item in _ensure_list(remappings_raw, "import_remappings"))

    prefixes = tuple(
        str(item)
        for item in _ensure_list(
            raw.get("trusted_import_prefixes", list(defaults.trusted_import_prefixes)),
            "trusted_import_prefixes",
        )
    )

    settings = GateSettings(
        solc_version=solc_version,
        optimizer_runs=_positive_int(raw, "optimizer_runs", defaults.optimizer_runs),
        base_dir=base_dir,
        trusted_import_prefixes=prefixes,
        import_remappings=remappings,
        compile_timeout_seconds=_positive_float(raw, "compile_timeout_seconds", defaults.compile_timeout_seconds),
        max_concurrent_compiles=_positive_int(raw, "max_concurrent_compiles", defaults.max_concurrent_compiles),
        install_solc=bool(raw.get("install_solc", defaults.install_solc)),
        max_bytecode_size=_positive_int(raw, "max_bytecode_size", defaults.max_bytecode_size),
        ignore_metadata_trailer=bool(raw.get("ignore_metadata_trailer", defaults.ignore_metadata_trailer)),
        rules_path=_optional_str(raw.get("rules_path")),
    )
    return settings


def load_rules(path: str | Path) -> tuple[SourceRule, ...]:
    rules_path = Path(path)
    if not rules_path.exists():
        raise ConfigError(f"Rules file not found: {rules_path}")

    with rules_path.open("r", encoding="utf-8") as handle:
        try:
            raw = json.load(handle)
        except json.JSONDecodeError as exc:
            raise ConfigError(f"Rules file is not valid JSON: {rules_path}: {exc}") from exc

    if not isinstance(raw, list) or not raw:
        raise ConfigError("Rules file must contain a non-empty list")

    rules: list[SourceRule] = []
    for item in raw:
        if not isinstance(item, dict):
            raise ConfigError("Each rule entry must be an object")

        missing = [key for key in ("code", "severity", "message", "pattern") if key not in item]
        if missing:
            raise ConfigError(f"Rule is missing keys: {', '.join(missing)}")

        severity = str(item["severity"]).strip().upper()
        if severity not in SEVERITIES:
            raise ConfigError(f"Rule {item['code']} has unknown severity: {item['severity']}")

        try:
            compiled = re.compile(str(item["pattern"]))
        except re.error as exc:
            raise ConfigError(f"Rule {item['code']} has an invalid pattern: {exc}") from exc

        message = str(item["message"])
        try:
            message.format(*([""] * compiled.groups))
        except (IndexError, KeyError, ValueError) as exc:
            raise ConfigError(f"Rule {item['code']} has an invalid message template: {exc}") from exc

        rules.append(
            SourceRule(
                code=str(item["code"]),
                severity=severity,
                message=message,
                pattern=str(item["pattern"]),
                multiline=bool(item.get("multiline", False)),
                ignore_case=bool(item.get("ignore_case", False)),
                whole_source=bool(item.get("whole_source", False)),
            )
        )

    return tuple(rules)


def _parse_remapping(item: object) -> ImportRemapping:
    if not isinstance(item, dict):
        raise ConfigError("Each import remapping must be an object")
    prefix = _optional_str(item.get("prefix"))
    target = _optional_str(item.get("target"))
    if not prefix or not target:
        raise ConfigError("Import remapping needs both 'prefix' and 'target'")
    return ImportRemapping(prefix=prefix, target=target)


def _positive_int(raw: dict, key: str, default: int) -> int:
    try:
        value = int(raw.get(key, default))
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"'{key}' must be an integer") from exc
    if value <= 0:
        raise ConfigError(f"'{key}' must be positive")
    return value


def _positive_float(raw: dict, key: str, default: float) -> float:
    try:
        value = float(raw.get(key, default))
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"'{key}' must be a number") from exc
    if value <= 0:
        raise ConfigError(f"'{key}' must be positive")
    return value


def _optional_str(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _ensure_list(value: object, key: str) -> list:
    if not isinstance(value, list):
        raise ConfigError(f"'{key}' must be a list")
    return value
