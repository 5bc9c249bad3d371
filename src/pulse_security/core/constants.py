# Core - Security Constants
#
# Event types, error codes and policy values shared by the vault,
# the audit log and the environment validator.

from dataclasses import dataclass, field
from enum import Enum
from typing import Tuple


class SecurityEventType(str, Enum):
    """Types of security events recorded in the audit log."""

    # Authentication Events
    LOGIN_SUCCESS = "login_success"
    LOGIN_FAILURE = "login_failure"
    LOGOUT = "logout"
    SESSION_EXPIRED = "session_expired"

    # Credential Events
    CREDENTIAL_STORED = "credential_stored"
    CREDENTIAL_RETRIEVED = "credential_retrieved"
    CREDENTIAL_UPDATED = "credential_updated"
    CREDENTIAL_DELETED = "credential_deleted"

    # Encryption Events
    DATA_ENCRYPTED = "data_encrypted"
    DATA_DECRYPTED = "data_decrypted"
    KEY_GENERATED = "key_generated"
    KEY_ROTATED = "key_rotated"

    # Access Events
    UNAUTHORIZED_ACCESS = "unauthorized_access"
    PRIVILEGE_ESCALATION = "privilege_escalation"
    SUSPICIOUS_ACTIVITY = "suspicious_activity"

    # Configuration Events
    SECURITY_CONFIG_CHANGED = "security_config_changed"
    POLICY_UPDATED = "policy_updated"
    ENVIRONMENT_VALIDATED = "environment_validated"


class AuditResult(str, Enum):
    """Outcome recorded with every audit entry."""

    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    WARNING = "WARNING"


class SecurityErrorCode(str, Enum):
    """Machine-readable codes carried by every failed result."""

    # Input errors (never reach any I/O)
    INVALID_INPUT = "INVALID_INPUT"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    INVALID_FORMAT = "INVALID_FORMAT"

    # Storage errors
    CREDENTIAL_NOT_FOUND = "CREDENTIAL_NOT_FOUND"
    STORE_OPERATION_FAILED = "STORE_OPERATION_FAILED"

    # Encryption errors
    ENCRYPTION_FAILED = "ENCRYPTION_FAILED"
    DECRYPTION_FAILED = "DECRYPTION_FAILED"
    UNSUPPORTED_ALGORITHM = "UNSUPPORTED_ALGORITHM"

    # Environment errors
    POLICY_VIOLATION = "POLICY_VIOLATION"
    MISSING_REQUIREMENTS = "MISSING_REQUIREMENTS"
    INSECURE_ENVIRONMENT = "INSECURE_ENVIRONMENT"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"


# Operations whose failures count towards the suspicious-activity threshold
SENSITIVE_OPERATIONS: Tuple[str, ...] = (
    "credential_store",
    "credential_retrieve",
    "credential_delete",
    "encryption_key_access",
    "security_config_change",
)


@dataclass(frozen=True)
class AuditPolicy:
    """
    Retention limits and suspicious-activity thresholds for the audit log.

    failed_operation_threshold defaults to the number of sensitive
    operations: more failures than that inside the detection window is
    flagged.
    """

    max_entries: int = 1000
    retention_days: int = 90
    detection_window_hours: int = 1
    sensitive_operations: Tuple[str, ...] = field(default=SENSITIVE_OPERATIONS)
    retrieval_burst_threshold: int = 50

    @property
    def failed_operation_threshold(self) -> int:
        return len(self.sensitive_operations)


# Substrings that mark an audit data key as sensitive (case-insensitive)
SENSITIVE_FIELD_MARKERS: Tuple[str, ...] = (
    "password", "token", "key", "secret", "credential",
)

# Audit entry / stored credential format versions
AUDIT_ENTRY_VERSION = 1
STORED_CREDENTIAL_VERSION = 1

# Storage keys
DEFAULT_CREDENTIAL_NAMESPACE = "pulse.credential"
AUDIT_LOG_STORAGE_KEY = "pulse.security.audit_log"

# Platform keychain
DEFAULT_KEYCHAIN_NAMESPACE = "com.pulse.raycast"
SECURITY_COMMAND = "security"
SUPPORTED_PLATFORM = "darwin"
