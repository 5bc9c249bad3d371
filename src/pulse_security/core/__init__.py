# Core - shared building blocks
#
# Constants and error codes, result types, data classification,
# key-value persistence, the audit log and logging setup.

from .audit_log import AuditLogEntry, SecurityAudit
from .classification import (
    CREDENTIAL_TYPES,
    CredentialTypeDescriptor,
    CredentialTypeRegistry,
    DataClassification,
)
from .constants import AuditPolicy, AuditResult, SecurityErrorCode, SecurityEventType
from .results import CredentialResult, OperationResult, RetrievalResult
from .storage import KeyValueStore, MemoryKeyValueStore, SQLiteKeyValueStore

__all__ = [
    "AuditLogEntry",
    "SecurityAudit",
    "CREDENTIAL_TYPES",
    "CredentialTypeDescriptor",
    "CredentialTypeRegistry",
    "DataClassification",
    "AuditPolicy",
    "AuditResult",
    "SecurityErrorCode",
    "SecurityEventType",
    "CredentialResult",
    "OperationResult",
    "RetrievalResult",
    "KeyValueStore",
    "MemoryKeyValueStore",
    "SQLiteKeyValueStore",
]
