# Configuration - Security Settings
#
# Settings come from an optional .env file (python-dotenv), overridden by
# the process environment. Everything has a default; only malformed values
# are errors.

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, Mapping, Optional, Union

from dotenv import dotenv_values

from .core.constants import (
    DEFAULT_CREDENTIAL_NAMESPACE,
    DEFAULT_KEYCHAIN_NAMESPACE,
    SECURITY_COMMAND,
    AuditPolicy,
    SecurityErrorCode,
)

_TRUE_VALUES = ("1", "true", "yes", "on")
_FALSE_VALUES = ("0", "false", "no", "off")
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigurationError(ValueError):
    """Raised when a setting cannot be parsed."""

    code = SecurityErrorCode.CONFIGURATION_ERROR

    def __init__(self, name: str, message: str):
        super().__init__(f"{name}: {message}")
        self.name = name


class MasterPassphraseMode(str, Enum):
    """Where the encrypted store's master passphrase comes from."""

    EPHEMERAL = "ephemeral"  # random per process, lost on restart
    KEYCHAIN = "keychain"  # persisted in the platform keychain


@dataclass(frozen=True)
class SecuritySettings:
    environment: str = "development"
    credential_namespace: str = DEFAULT_CREDENTIAL_NAMESPACE
    keychain_namespace: str = DEFAULT_KEYCHAIN_NAMESPACE
    keychain_command: str = SECURITY_COMMAND
    keychain_timeout: Optional[float] = None
    master_passphrase_mode: MasterPassphraseMode = MasterPassphraseMode.EPHEMERAL
    audit_max_entries: int = 1000
    audit_retention_days: int = 90
    db_path: Optional[Path] = None
    log_level: str = "INFO"
    log_json: bool = True

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def audit_policy(self) -> AuditPolicy:
        return AuditPolicy(
            max_entries=self.audit_max_entries,
            retention_days=self.audit_retention_days,
        )


def _parse_positive_int(name: str, raw: str) -> int:
    try:
        value = int(raw)
    except ValueError:
        raise ConfigurationError(name, f"expected an integer, got {raw!r}")
    if value <= 0:
        raise ConfigurationError(name, "must be greater than zero")
    return value


def _parse_timeout(name: str, raw: str) -> float:
    try:
        value = float(raw)
    except ValueError:
        raise ConfigurationError(name, f"expected a number of seconds, got {raw!r}")
    if value <= 0:
        raise ConfigurationError(name, "must be greater than zero")
    return value


def _parse_bool(name: str, raw: str) -> bool:
    lowered = raw.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ConfigurationError(name, f"expected a boolean, got {raw!r}")


def _parse_mode(name: str, raw: str) -> MasterPassphraseMode:
    try:
        return MasterPassphraseMode(raw.strip().lower())
    except ValueError:
        allowed = ", ".join(m.value for m in MasterPassphraseMode)
        raise ConfigurationError(name, f"expected one of {allowed}, got {raw!r}")


def _parse_log_level(name: str, raw: str) -> str:
    level = raw.strip().upper()
    if level not in _LOG_LEVELS:
        raise ConfigurationError(name, f"unknown log level {raw!r}")
    return level


def load_settings(
    env_file: Optional[Union[str, Path]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> SecuritySettings:
    """
    Build settings from a .env file and the environment.

    Args:
        env_file: Optional .env file; a missing file contributes nothing
        environ: Variables overriding the file (default: os.environ)

    Raises:
        ConfigurationError: If any value is malformed
    """
    values: Dict[str, str] = {}
    if env_file is not None:
        values.update({k: v for k, v in dotenv_values(env_file).items() if v is not None})
    values.update(os.environ if environ is None else environ)

    defaults = SecuritySettings()

    def get(name: str) -> Optional[str]:
        value = values.get(name)
        return value if value is not None and value.strip() != "" else None

    environment = (get("PULSE_ENV") or defaults.environment).strip().lower()

    raw = get("PULSE_KEYCHAIN_TIMEOUT")
    keychain_timeout = _parse_timeout("PULSE_KEYCHAIN_TIMEOUT", raw) if raw else None

    raw = get("PULSE_MASTER_PASSPHRASE_MODE")
    mode = (
        _parse_mode("PULSE_MASTER_PASSPHRASE_MODE", raw) if raw
        else defaults.master_passphrase_mode
    )

    raw = get("PULSE_AUDIT_MAX_ENTRIES")
    max_entries = (
        _parse_positive_int("PULSE_AUDIT_MAX_ENTRIES", raw) if raw
        else defaults.audit_max_entries
    )

    raw = get("PULSE_AUDIT_RETENTION_DAYS")
    retention_days = (
        _parse_positive_int("PULSE_AUDIT_RETENTION_DAYS", raw) if raw
        else defaults.audit_retention_days
    )

    raw = get("PULSE_DB_PATH")
    db_path = Path(raw).expanduser() if raw else None

    raw = get("PULSE_LOG_LEVEL")
    log_level = _parse_log_level("PULSE_LOG_LEVEL", raw) if raw else defaults.log_level

    raw = get("PULSE_LOG_JSON")
    log_json = _parse_bool("PULSE_LOG_JSON", raw) if raw else defaults.log_json

    return SecuritySettings(
        environment=environment,
        credential_namespace=get("PULSE_CREDENTIAL_NAMESPACE") or defaults.credential_namespace,
        keychain_namespace=get("PULSE_KEYCHAIN_NAMESPACE") or defaults.keychain_namespace,
        keychain_command=get("PULSE_KEYCHAIN_COMMAND") or defaults.keychain_command,
        keychain_timeout=keychain_timeout,
        master_passphrase_mode=mode,
        audit_max_entries=max_entries,
        audit_retention_days=retention_days,
        db_path=db_path,
        log_level=log_level,
        log_json=log_json,
    )
