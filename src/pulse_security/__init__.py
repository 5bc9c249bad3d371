# Pulse Security - Credential & Secrets Management
#
# Encrypted local credential store, macOS keychain adapter, redacted
# audit log and startup environment validation.

__version__ = "0.1.0"
__author__ = "Pulse Team"
__description__ = "Credential and secrets management for Pulse"

from .bootstrap import (
    SecurityContext,
    generate_security_report,
    initialize_security,
    is_security_ready,
)
from .config import ConfigurationError, MasterPassphraseMode, SecuritySettings, load_settings
from .core import (
    AuditResult,
    DataClassification,
    SecurityAudit,
    SecurityErrorCode,
    SecurityEventType,
)
from .environment import EnvironmentSnapshot, EnvironmentValidator
from .vault import EncryptionService, KeychainManager, SecureCredentialManager

__all__ = [
    "__version__",
    "SecurityContext",
    "initialize_security",
    "is_security_ready",
    "generate_security_report",
    "ConfigurationError",
    "MasterPassphraseMode",
    "SecuritySettings",
    "load_settings",
    "AuditResult",
    "DataClassification",
    "SecurityAudit",
    "SecurityErrorCode",
    "SecurityEventType",
    "EnvironmentSnapshot",
    "EnvironmentValidator",
    "EncryptionService",
    "KeychainManager",
    "SecureCredentialManager",
]
