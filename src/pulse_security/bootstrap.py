# Bootstrap - Security Subsystem Startup
#
# Builds the stores once per process and hands them out together:
#   1. Configure logging
#   2. Validate the environment
#   3. Key-value store (SQLite when a path is configured, else memory)
#   4. Audit log, keychain adapter
#   5. Master passphrase (ephemeral, or loaded from / created in keychain)
#   6. Encrypted credential store
# The validation outcome is the first audit entry of the session.

import logging
from dataclasses import dataclass
from typing import Optional

from .config import MasterPassphraseMode, SecuritySettings, load_settings
from .core.audit_log import SecurityAudit
from .core.classification import CREDENTIAL_TYPES
from .core.constants import AuditResult, SecurityEventType
from .core.logging_config import configure_logging
from .core.storage import KeyValueStore, MemoryKeyValueStore, SQLiteKeyValueStore
from .environment import EnvironmentSnapshot, EnvironmentValidationResult, EnvironmentValidator
from .vault.credential_manager import SecureCredentialManager
from .vault.encryption import EncryptionService
from .vault.keychain import CommandRunner, KeychainManager

logger = logging.getLogger(__name__)

MASTER_KEY_TYPE = "ENCRYPTION_MASTER_KEY"


@dataclass
class SecurityContext:
    """Everything the application needs from the security subsystem."""

    settings: SecuritySettings
    store: KeyValueStore
    audit: SecurityAudit
    keychain: KeychainManager
    credentials: SecureCredentialManager
    validation: EnvironmentValidationResult
    passphrase_mode: MasterPassphraseMode

    @property
    def is_ready(self) -> bool:
        return self.validation.is_valid


async def initialize_security(
    settings: Optional[SecuritySettings] = None,
    store: Optional[KeyValueStore] = None,
    snapshot: Optional[EnvironmentSnapshot] = None,
    keychain_runner: Optional[CommandRunner] = None,
) -> SecurityContext:
    """
    Wire up the security subsystem.

    Validation problems are logged and audited but do not stop startup;
    callers decide what to do with context.validation.

    Args:
        settings: Loaded settings (default: load_settings())
        store: Key-value store override
        snapshot: Environment snapshot override
        keychain_runner: Command runner for the keychain adapter
    """
    settings = settings or load_settings()
    configure_logging(level=settings.log_level, json_output=settings.log_json)

    validation = EnvironmentValidator().validate(snapshot)
    if validation.is_valid:
        logger.info("Security environment validated (%s)", validation.environment)
    else:
        for message in validation.error_messages():
            logger.error("Security validation error: %s", message)
    for warning in validation.warnings:
        logger.warning("Security validation warning: %s", warning)

    if store is None:
        store = (
            SQLiteKeyValueStore(settings.db_path)
            if settings.db_path is not None
            else MemoryKeyValueStore()
        )

    audit = SecurityAudit(
        store,
        policy=settings.audit_policy,
        environment=settings.environment,
    )

    await audit.log(
        SecurityEventType.ENVIRONMENT_VALIDATED,
        AuditResult.SUCCESS if validation.is_valid else AuditResult.FAILED,
        {
            "environment": validation.environment,
            "errors": [e.code.value for e in validation.errors],
            "warning_count": len(validation.warnings),
        },
    )

    keychain = KeychainManager(
        runner=keychain_runner,
        namespace=settings.keychain_namespace,
        command=settings.keychain_command,
        timeout=settings.keychain_timeout,
        environment=settings.environment,
    )

    passphrase, mode = await _resolve_master_passphrase(settings, keychain, audit)

    credentials = SecureCredentialManager(
        store,
        audit,
        master_passphrase=passphrase,
        namespace=settings.credential_namespace,
    )

    return SecurityContext(
        settings=settings,
        store=store,
        audit=audit,
        keychain=keychain,
        credentials=credentials,
        validation=validation,
        passphrase_mode=mode,
    )


async def _resolve_master_passphrase(
    settings: SecuritySettings,
    keychain: KeychainManager,
    audit: SecurityAudit,
):
    """Return (passphrase, effective mode). None means a per-process random one."""
    if settings.master_passphrase_mode != MasterPassphraseMode.KEYCHAIN:
        return None, MasterPassphraseMode.EPHEMERAL

    descriptor = CREDENTIAL_TYPES.get(MASTER_KEY_TYPE)
    service, account = descriptor.service, descriptor.account

    existing = await keychain.retrieve(service, account)
    if existing.success and existing.value:
        return existing.value, MasterPassphraseMode.KEYCHAIN

    if existing.not_found:
        passphrase = EncryptionService.generate_secure_password(32)
        stored = await keychain.store(service, account, passphrase)
        if stored.success:
            await audit.log(SecurityEventType.KEY_GENERATED, AuditResult.SUCCESS, {
                "service": service,
                "account": account,
            })
            return passphrase, MasterPassphraseMode.KEYCHAIN
        reason = stored.error
    else:
        reason = existing.error

    logger.warning(f"Master passphrase unavailable from keychain, using ephemeral: {reason}")
    await audit.log(SecurityEventType.SECURITY_CONFIG_CHANGED, AuditResult.WARNING, {
        "action": "master_passphrase_fallback",
        "mode": MasterPassphraseMode.EPHEMERAL.value,
        "error": reason,
    })
    return None, MasterPassphraseMode.EPHEMERAL


def is_security_ready(snapshot: Optional[EnvironmentSnapshot] = None) -> bool:
    """True when the environment passes validation."""
    return EnvironmentValidator().validate(snapshot).is_valid


def generate_security_report(snapshot: Optional[EnvironmentSnapshot] = None) -> str:
    """Markdown security report for the environment."""
    return EnvironmentValidator().generate_security_report(snapshot)
