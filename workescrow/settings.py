"""
workescrow settings.

Loaded from a YAML file; every key is optional:

    base_unit_decimals: 6        # display → base unit scale
    registration_fee: 200000     # base units required to register a holding
    asset_release: explicit      # explicit | bundled
    journal_path: .workescrow/journal.jsonl
    ledger_path: .workescrow/ledger.jsonl
    log_level: INFO
"""

import logging
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from workescrow.core.exceptions import ConfigError
from workescrow.core.models import AssetRelease
from workescrow.core.units import DEFAULT_DECIMALS
from workescrow.ledger.ledger import DEFAULT_REGISTRATION_FEE


@dataclass
class EscrowSettings:
    base_unit_decimals: int = DEFAULT_DECIMALS
    registration_fee: int = DEFAULT_REGISTRATION_FEE
    asset_release: AssetRelease = AssetRelease.EXPLICIT
    journal_path: Optional[Path] = None
    ledger_path: Optional[Path] = None
    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "EscrowSettings":
        data = dict(data or {})
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError("Unknown settings keys", {"keys": unknown})

        settings = cls()
        if "base_unit_decimals" in data:
            settings.base_unit_decimals = _non_negative_int(data, "base_unit_decimals")
        if "registration_fee" in data:
            settings.registration_fee = _non_negative_int(data, "registration_fee")
        if "asset_release" in data:
            try:
                settings.asset_release = AssetRelease(str(data["asset_release"]).lower())
            except ValueError as exc:
                raise ConfigError(
                    "asset_release must be 'explicit' or 'bundled'",
                    {"asset_release": data["asset_release"]},
                ) from exc
        for key in ("journal_path", "ledger_path"):
            if data.get(key):
                setattr(settings, key, Path(data[key]))
        if "log_level" in data:
            level = str(data["log_level"]).upper()
            if not isinstance(logging.getLevelName(level), int):
                raise ConfigError("Unknown log_level", {"log_level": data["log_level"]})
            settings.log_level = level
        return settings

    @classmethod
    def from_yaml(cls, config_file: Path) -> "EscrowSettings":
        """Load settings from YAML. An empty file yields the defaults."""
        try:
            with open(config_file, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except OSError as exc:
            raise ConfigError(f"Cannot read settings file {config_file}: {exc}") from exc
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in {config_file}: {exc}") from exc

        if data is not None and not isinstance(data, dict):
            raise ConfigError(f"Settings file {config_file} must contain a mapping")
        return cls.from_dict(data)

    def configure_logging(self) -> None:
        """Apply log_level to the workescrow loggers; add a root handler if none exists."""
        logging.basicConfig(format="%(asctime)s %(levelname)s %(name)s: %(message)s")
        logging.getLogger("workescrow").setLevel(self.log_level)


def _non_negative_int(data: Dict[str, Any], key: str) -> int:
    value = data[key]
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ConfigError(f"{key} must be a non-negative integer", {key: value})
    return value
