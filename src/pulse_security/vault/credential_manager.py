# Vault - Secure Credential Manager
#
# Application-level credential store on top of the key-value store.
# Each credential is encrypted with the EncryptionService under a master
# passphrase before it is persisted; only metadata (type label, created,
# last accessed) is readable without it.
#
# Storage key: <namespace>.<service>.<account>

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from ..core.audit_log import SecurityAudit
from ..core.classification import CREDENTIAL_TYPES, CredentialTypeRegistry
from ..core.constants import (
    DEFAULT_CREDENTIAL_NAMESPACE,
    STORED_CREDENTIAL_VERSION,
    AuditResult,
    SecurityErrorCode,
    SecurityEventType,
)
from ..core.results import CredentialResult, OperationResult
from ..core.storage import KeyValueStore
from .encryption import EncryptedEnvelope, EncryptionService

logger = logging.getLogger(__name__)

_IDENTIFIER_RE = re.compile(r'^[a-z0-9._-]+$')
MAX_IDENTIFIER_LENGTH = 100
MIN_CREDENTIAL_LENGTH = 8


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class StoredCredential:
    """Persisted form of one credential."""

    encrypted: EncryptedEnvelope
    type: str
    created_at: str
    last_accessed: str
    service: str
    account: str
    version: int = STORED_CREDENTIAL_VERSION

    def to_json(self) -> str:
        return json.dumps({
            "encrypted": self.encrypted.to_dict(),
            "type": self.type,
            "created_at": self.created_at,
            "last_accessed": self.last_accessed,
            "service": self.service,
            "account": self.account,
            "version": self.version,
        })

    @classmethod
    def from_json(cls, raw: str) -> "StoredCredential":
        """Parse a stored record. Raises ValueError, KeyError or TypeError."""
        data = json.loads(raw)
        return cls(
            encrypted=EncryptedEnvelope.from_dict(data["encrypted"]),
            type=data["type"],
            created_at=data["created_at"],
            last_accessed=data["last_accessed"],
            service=data.get("service", ""),
            account=data.get("account", ""),
            version=data.get("version", STORED_CREDENTIAL_VERSION),
        )


class SecureCredentialManager:
    """
    Encrypted local credential store.

    Security:
    - Each credential encrypted with its own salt and IV
    - Master passphrase lives in memory only; unless the caller supplies
      one, a random passphrase is generated per process and credentials
      stored by an earlier process cannot be decrypted
    - Every store/retrieve/delete attempt is audited

    Args:
        store: Key-value store for encrypted records
        audit: Shared audit log
        master_passphrase: Passphrase for all credentials (None: random)
        namespace: Storage key prefix
        registry: Credential-type registry for labelling
        clock: Returns the current UTC time
    """

    def __init__(
        self,
        store: KeyValueStore,
        audit: SecurityAudit,
        master_passphrase: Optional[str] = None,
        namespace: str = DEFAULT_CREDENTIAL_NAMESPACE,
        registry: Optional[CredentialTypeRegistry] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._store = store
        self._audit = audit
        self._master_passphrase = (
            master_passphrase or EncryptionService.generate_secure_password(32)
        )
        self.namespace = namespace
        self._registry = registry or CREDENTIAL_TYPES
        self._clock = clock or _utcnow

        # last_accessed rewrites still in flight
        self._pending_touches: Set[asyncio.Task] = set()

    @property
    def key_prefix(self) -> str:
        return f"{self.namespace}."

    # ------------------------------------------------------------------
    # Operations

    async def store(self, service: str, account: str, credential: str) -> OperationResult:
        """
        Encrypt and persist a credential.

        Returns:
            OperationResult; VALIDATION_FAILED lists every violated rule
        """
        await self._drain_pending()

        errors = self._validate_params(service, account, credential)
        if errors:
            await self._audit.log(SecurityEventType.CREDENTIAL_STORED, AuditResult.FAILED, {
                "service": service,
                "account": account,
                "errors": errors,
            })
            return OperationResult.fail(
                SecurityErrorCode.VALIDATION_FAILED,
                f"Validation failed: {', '.join(errors)}",
            )

        storage_key = self._storage_key(service, account)
        try:
            raw = await self._store.get(storage_key)
            existing = self._parse_record(raw) if raw else None
            if existing is not None and not self._belongs_to(existing, service, account):
                await self._audit.log(SecurityEventType.CREDENTIAL_STORED, AuditResult.FAILED, {
                    "service": service,
                    "account": account,
                    "error": "Storage key in use by another service/account",
                })
                return OperationResult.fail(
                    SecurityErrorCode.STORE_OPERATION_FAILED,
                    "Storage key in use by another service/account",
                )

            encryption = EncryptionService.encrypt(credential, self._master_passphrase)
            if not encryption.success or encryption.envelope is None:
                await self._audit.log(SecurityEventType.CREDENTIAL_STORED, AuditResult.FAILED, {
                    "service": service,
                    "account": account,
                    "error": "Encryption failed",
                })
                return OperationResult.fail(
                    SecurityErrorCode.ENCRYPTION_FAILED, "Failed to encrypt credential"
                )

            now = self._clock().isoformat()
            record = StoredCredential(
                encrypted=encryption.envelope,
                type=self._registry.infer_type_label(service, account),
                created_at=now,
                last_accessed=now,
                service=service,
                account=account,
            )
            await self._store.set(storage_key, record.to_json())

            await self._audit.log(SecurityEventType.CREDENTIAL_STORED, AuditResult.SUCCESS, {
                "service": service,
                "account": account,
                "type": record.type,
            })
            return OperationResult.ok()

        except Exception as e:
            await self._audit.log(SecurityEventType.CREDENTIAL_STORED, AuditResult.FAILED, {
                "service": service,
                "account": account,
                "error": str(e),
            })
            return OperationResult.fail(
                SecurityErrorCode.STORE_OPERATION_FAILED, f"Storage failed: {e}"
            )

    async def retrieve(self, service: str, account: str) -> CredentialResult:
        """
        Load and decrypt a credential.

        Not found, unreadable record and failed decryption are audited
        separately; all three come back as a plain failure.
        """
        await self._drain_pending()

        if not self._is_valid_identifier(service) or not self._is_valid_identifier(account):
            return await self._retrieval_failed(
                service, account,
                SecurityErrorCode.INVALID_INPUT, "Invalid service or account name",
            )

        storage_key = self._storage_key(service, account)
        try:
            raw = await self._store.get(storage_key)
            if not raw:
                return await self._retrieval_failed(
                    service, account,
                    SecurityErrorCode.CREDENTIAL_NOT_FOUND, "Credential not found",
                )

            try:
                record = StoredCredential.from_json(raw)
            except (ValueError, KeyError, TypeError):
                return await self._retrieval_failed(
                    service, account,
                    SecurityErrorCode.INVALID_FORMAT, "Invalid stored credential format",
                )

            if not self._belongs_to(record, service, account):
                return await self._retrieval_failed(
                    service, account,
                    SecurityErrorCode.CREDENTIAL_NOT_FOUND, "Credential not found",
                )

            decryption = EncryptionService.decrypt(record.encrypted, self._master_passphrase)
            if not decryption.success or decryption.plaintext is None:
                return await self._retrieval_failed(
                    service, account,
                    SecurityErrorCode.DECRYPTION_FAILED, "Failed to decrypt credential",
                )

            record.last_accessed = self._clock().isoformat()
            self._schedule_touch(storage_key, record)

            await self._audit.log(SecurityEventType.CREDENTIAL_RETRIEVED, AuditResult.SUCCESS, {
                "service": service,
                "account": account,
                "type": record.type,
            })
            return CredentialResult.ok(credential=decryption.plaintext)

        except Exception as e:
            return await self._retrieval_failed(
                service, account,
                SecurityErrorCode.STORE_OPERATION_FAILED, f"Retrieval failed: {e}",
            )

    async def delete(self, service: str, account: str) -> OperationResult:
        """
        Remove a credential.

        Unlike the keychain adapter, deleting a credential that does not
        exist is reported as a failure.
        """
        await self._drain_pending()

        if not self._is_valid_identifier(service) or not self._is_valid_identifier(account):
            await self._audit.log(SecurityEventType.CREDENTIAL_DELETED, AuditResult.FAILED, {
                "service": service,
                "account": account,
                "error": "Invalid service or account name",
            })
            return OperationResult.fail(
                SecurityErrorCode.INVALID_INPUT, "Invalid service or account name"
            )

        storage_key = self._storage_key(service, account)
        try:
            existing = await self._store.get(storage_key)
            record = self._parse_record(existing) if existing else None
            if not existing or (
                record is not None and not self._belongs_to(record, service, account)
            ):
                await self._audit.log(SecurityEventType.CREDENTIAL_DELETED, AuditResult.FAILED, {
                    "service": service,
                    "account": account,
                    "error": "Credential not found",
                })
                return OperationResult.fail(
                    SecurityErrorCode.CREDENTIAL_NOT_FOUND, "Credential not found"
                )

            await self._store.remove(storage_key)

            await self._audit.log(SecurityEventType.CREDENTIAL_DELETED, AuditResult.SUCCESS, {
                "service": service,
                "account": account,
            })
            return OperationResult.ok()

        except Exception as e:
            await self._audit.log(SecurityEventType.CREDENTIAL_DELETED, AuditResult.FAILED, {
                "service": service,
                "account": account,
                "error": str(e),
            })
            return OperationResult.fail(
                SecurityErrorCode.STORE_OPERATION_FAILED, f"Deletion failed: {e}"
            )

    async def list_credentials(self) -> List[Dict[str, Any]]:
        """
        List stored credentials without decrypting anything.

        Returns:
            [{service, account, type, last_accessed}]; malformed records
            are skipped
        """
        await self._drain_pending()

        try:
            items = await self._store.list_all()
        except Exception as e:
            logger.error(f"Failed to list credentials: {e}")
            return []

        credentials = []
        for key, value in items.items():
            if not key.startswith(self.key_prefix):
                continue
            try:
                record = StoredCredential.from_json(value)
            except (ValueError, KeyError, TypeError):
                continue

            service, account = record.service, record.account
            if not service or not account:
                service, account = self._split_key(key)

            credentials.append({
                "service": service,
                "account": account,
                "type": record.type,
                "last_accessed": record.last_accessed,
            })

        return credentials

    async def clear_all(self) -> OperationResult:
        """Remove every credential under this namespace (use with caution)."""
        await self._drain_pending()

        try:
            items = await self._store.list_all()
            removed = 0
            for key in items:
                if key.startswith(self.key_prefix):
                    await self._store.remove(key)
                    removed += 1

            await self._audit.log(SecurityEventType.CREDENTIAL_DELETED, AuditResult.SUCCESS, {
                "action": "clear_all_credentials",
                "removed": removed,
            })
            return OperationResult.ok()

        except Exception as e:
            await self._audit.log(SecurityEventType.CREDENTIAL_DELETED, AuditResult.FAILED, {
                "action": "clear_all_credentials",
                "error": str(e),
            })
            return OperationResult.fail(
                SecurityErrorCode.STORE_OPERATION_FAILED,
                f"Failed to clear credentials: {e}",
            )

    # ------------------------------------------------------------------
    # last_accessed bookkeeping

    def _schedule_touch(self, storage_key: str, record: StoredCredential) -> None:
        task = asyncio.get_running_loop().create_task(
            self._touch(storage_key, record)
        )
        self._pending_touches.add(task)
        task.add_done_callback(self._pending_touches.discard)

    async def _touch(self, storage_key: str, record: StoredCredential) -> None:
        try:
            await self._store.set(storage_key, record.to_json())
        except Exception as e:
            logger.warning(f"Failed to update last_accessed for {storage_key}: {e}")

    async def _drain_pending(self) -> None:
        """Wait for in-flight last_accessed rewrites."""
        if self._pending_touches:
            await asyncio.gather(*list(self._pending_touches))

    # ------------------------------------------------------------------
    # Helpers

    async def _retrieval_failed(
        self,
        service: str,
        account: str,
        code: SecurityErrorCode,
        message: str,
    ) -> CredentialResult:
        await self._audit.log(SecurityEventType.CREDENTIAL_RETRIEVED, AuditResult.FAILED, {
            "service": service,
            "account": account,
            "error": message,
        })
        return CredentialResult.fail(code, message)

    @staticmethod
    def _parse_record(raw: str) -> Optional[StoredCredential]:
        try:
            return StoredCredential.from_json(raw)
        except (ValueError, KeyError, TypeError):
            return None

    @staticmethod
    def _belongs_to(record: StoredCredential, service: str, account: str) -> bool:
        # Dotted identifiers can share a storage key ("a.b"/"c" and "a"/"b.c").
        # Records without service/account fields predate them and always match.
        if not record.service or not record.account:
            return True
        return record.service == service and record.account == account

    def _storage_key(self, service: str, account: str) -> str:
        return f"{self.namespace}.{service}.{account}"

    def _split_key(self, key: str) -> Tuple[str, str]:
        # Fallback for records without service/account fields
        remainder = key[len(self.key_prefix):]
        service, _, account = remainder.rpartition(".")
        return service or "unknown", account or "unknown"

    @staticmethod
    def _is_valid_identifier(value: str) -> bool:
        return bool(
            value
            and _IDENTIFIER_RE.fullmatch(value)
            and len(value) <= MAX_IDENTIFIER_LENGTH
        )

    def _validate_params(self, service: str, account: str, credential: str) -> List[str]:
        errors = []
        if not self._is_valid_identifier(service):
            errors.append("Invalid service name")
        if not self._is_valid_identifier(account):
            errors.append("Invalid account name")
        if not credential or len(credential) < MIN_CREDENTIAL_LENGTH:
            errors.append(f"Credential must be at least {MIN_CREDENTIAL_LENGTH} characters")
        return errors
