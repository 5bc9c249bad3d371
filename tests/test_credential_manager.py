# Tests for the Secure Credential Manager
# Covers: store/retrieve round trip, validation, not-found, corrupted records,
#         wrong passphrase, delete semantics, listing, clear_all, audit trail,
#         last_accessed bookkeeping, colliding dotted identifiers

import json

import pytest

from pulse_security.core.audit_log import SecurityAudit
from pulse_security.core.constants import (
    AuditResult,
    SecurityErrorCode,
    SecurityEventType,
)
from pulse_security.core.storage import MemoryKeyValueStore
from pulse_security.vault.credential_manager import (
    SecureCredentialManager,
    StoredCredential,
)


class RecordingStore(MemoryKeyValueStore):
    """Memory store that remembers every key written."""

    def __init__(self):
        super().__init__()
        self.writes = []

    async def set(self, key, value):
        self.writes.append(key)
        await super().set(key, value)


class FailingStore(MemoryKeyValueStore):
    async def set(self, key, value):
        raise OSError("disk full")


# ── Store / Retrieve ─────────────────────────────────────────────────


class TestStoreRetrieve:
    @pytest.mark.asyncio
    async def test_roundtrip(self, manager):
        stored = await manager.store("svc", "acct", "mysecretvalue1")
        assert stored.success

        result = await manager.retrieve("svc", "acct")
        assert result.success
        assert result.credential == "mysecretvalue1"

    @pytest.mark.asyncio
    async def test_persisted_record_is_encrypted(self, manager, memory_store, clock):
        await manager.store("svc", "acct", "mysecretvalue1")
        raw = await memory_store.get("pulse.credential.svc.acct")
        assert raw is not None
        assert "mysecretvalue1" not in raw

        record = json.loads(raw)
        assert set(record["encrypted"]) == {"data", "iv", "salt", "algorithm"}
        assert record["encrypted"]["algorithm"] == "aes-256-cbc"
        assert record["type"] == "Generic Credential"
        assert record["created_at"] == clock().isoformat()
        assert record["last_accessed"] == record["created_at"]

    @pytest.mark.asyncio
    async def test_overwrite_replaces_value(self, manager):
        await manager.store("svc", "acct", "firstvalue1")
        await manager.store("svc", "acct", "secondvalue2")
        result = await manager.retrieve("svc", "acct")
        assert result.credential == "secondvalue2"

    @pytest.mark.asyncio
    async def test_known_type_is_labelled(self, manager, memory_store):
        await manager.store("notion-api", "api-token", "secret_" + "a" * 43)
        record = json.loads(await memory_store.get("pulse.credential.notion-api.api-token"))
        assert record["type"] == "Notion API Token"

    @pytest.mark.asyncio
    async def test_retrieve_missing(self, manager):
        result = await manager.retrieve("svc", "missing")
        assert not result.success
        assert result.not_found
        assert result.code == SecurityErrorCode.CREDENTIAL_NOT_FOUND
        assert result.credential is None

    @pytest.mark.asyncio
    async def test_retrieve_corrupted_record(self, manager, memory_store):
        await memory_store.set("pulse.credential.svc.acct", "{not json")
        result = await manager.retrieve("svc", "acct")
        assert not result.success
        assert result.code == SecurityErrorCode.INVALID_FORMAT

    @pytest.mark.asyncio
    async def test_retrieve_record_missing_fields(self, manager, memory_store):
        await memory_store.set("pulse.credential.svc.acct", json.dumps({"type": "x"}))
        result = await manager.retrieve("svc", "acct")
        assert result.code == SecurityErrorCode.INVALID_FORMAT

    @pytest.mark.asyncio
    async def test_other_passphrase_cannot_decrypt(self, memory_store, audit, clock):
        first = SecureCredentialManager(memory_store, audit, master_passphrase="one", clock=clock)
        second = SecureCredentialManager(memory_store, audit, master_passphrase="two", clock=clock)

        await first.store("svc", "acct", "mysecretvalue1")
        result = await second.retrieve("svc", "acct")
        assert not result.success
        assert result.code == SecurityErrorCode.DECRYPTION_FAILED
        assert result.error == "Failed to decrypt credential"

    @pytest.mark.asyncio
    async def test_default_passphrase_is_per_instance(self, memory_store, audit):
        first = SecureCredentialManager(memory_store, audit)
        second = SecureCredentialManager(memory_store, audit)

        await first.store("svc", "acct", "mysecretvalue1")
        assert (await first.retrieve("svc", "acct")).credential == "mysecretvalue1"
        assert not (await second.retrieve("svc", "acct")).success

    @pytest.mark.asyncio
    async def test_storage_failure(self, audit):
        manager = SecureCredentialManager(FailingStore(), audit, master_passphrase="pw")
        result = await manager.store("svc", "acct", "mysecretvalue1")
        assert not result.success
        assert result.code == SecurityErrorCode.STORE_OPERATION_FAILED
        assert "disk full" in result.error


# ── Validation ───────────────────────────────────────────────────────


class TestValidation:
    @pytest.mark.asyncio
    async def test_short_credential_rejected_without_persisting(self, clock):
        store = RecordingStore()
        audit = SecurityAudit(MemoryKeyValueStore(), clock=clock, environment="test")
        manager = SecureCredentialManager(store, audit, master_passphrase="pw", clock=clock)

        result = await manager.store("svc", "acct", "short")
        assert not result.success
        assert result.code == SecurityErrorCode.VALIDATION_FAILED
        assert "at least 8 characters" in result.error
        assert store.writes == []

    @pytest.mark.asyncio
    async def test_all_violations_listed(self, manager):
        result = await manager.store("Bad Service", "Bad/Account", "short")
        assert result.error == (
            "Validation failed: Invalid service name, Invalid account name, "
            "Credential must be at least 8 characters"
        )

    @pytest.mark.asyncio
    @pytest.mark.parametrize("service", ["UPPER", "has space", "", "a" * 101, "slash/name", "svc\n"])
    async def test_invalid_service_names(self, manager, service):
        result = await manager.store(service, "acct", "longenough1")
        assert result.code == SecurityErrorCode.VALIDATION_FAILED

    @pytest.mark.asyncio
    @pytest.mark.parametrize("service", ["svc", "com.pulse.notion-api", "a_b-c.d", "a" * 100])
    async def test_valid_service_names(self, manager, service):
        result = await manager.store(service, "acct", "longenough1")
        assert result.success

    @pytest.mark.asyncio
    async def test_exactly_minimum_length(self, manager):
        assert (await manager.store("svc", "acct", "12345678")).success
        assert not (await manager.store("svc", "acct", "1234567")).success

    @pytest.mark.asyncio
    async def test_retrieve_invalid_identifiers(self, manager):
        result = await manager.retrieve("Bad Service", "acct")
        assert result.code == SecurityErrorCode.INVALID_INPUT

    @pytest.mark.asyncio
    async def test_failed_validation_is_audited(self, manager, audit):
        await manager.store("svc", "acct", "short")
        entries = await audit.query(event_type=SecurityEventType.CREDENTIAL_STORED)
        assert len(entries) == 1
        assert entries[0].result == AuditResult.FAILED.value
        assert entries[0].data["errors"] == ["Credential must be at least 8 characters"]


# ── Delete ───────────────────────────────────────────────────────────


class TestDelete:
    @pytest.mark.asyncio
    async def test_delete_missing_is_failure(self, manager):
        result = await manager.delete("nonexistent-service", "acct")
        assert not result.success
        assert result.code == SecurityErrorCode.CREDENTIAL_NOT_FOUND

    @pytest.mark.asyncio
    async def test_delete_existing(self, manager):
        await manager.store("svc", "acct", "mysecretvalue1")
        assert (await manager.delete("svc", "acct")).success
        assert (await manager.retrieve("svc", "acct")).not_found

    @pytest.mark.asyncio
    async def test_delete_is_audited(self, manager, audit):
        await manager.store("svc", "acct", "mysecretvalue1")
        await manager.delete("svc", "acct")
        await manager.delete("svc", "acct")

        entries = await audit.query(event_type=SecurityEventType.CREDENTIAL_DELETED)
        results = sorted(e.result for e in entries)
        assert results == ["FAILED", "SUCCESS"]

    @pytest.mark.asyncio
    async def test_delete_invalid_identifiers(self, manager, audit):
        result = await manager.delete("BAD", "acct")
        assert result.code == SecurityErrorCode.INVALID_INPUT

        [entry] = await audit.query(event_type=SecurityEventType.CREDENTIAL_DELETED)
        assert entry.result == AuditResult.FAILED.value
        assert entry.data["error"] == "Invalid service or account name"


# ── Dotted Identifiers ───────────────────────────────────────────────


class TestCollidingIdentifiers:
    """("a.b", "c") and ("a", "b.c") share the key pulse.credential.a.b.c."""

    @pytest.mark.asyncio
    async def test_retrieve_other_pair_is_not_found(self, manager):
        await manager.store("a.b", "c", "secret-of-ab-c")
        result = await manager.retrieve("a", "b.c")
        assert not result.success
        assert result.code == SecurityErrorCode.CREDENTIAL_NOT_FOUND
        assert result.credential is None

    @pytest.mark.asyncio
    async def test_store_does_not_overwrite_other_pair(self, manager, audit):
        await manager.store("a.b", "c", "secret-of-ab-c")
        result = await manager.store("a", "b.c", "othersecret1")
        assert not result.success
        assert result.code == SecurityErrorCode.STORE_OPERATION_FAILED

        original = await manager.retrieve("a.b", "c")
        assert original.credential == "secret-of-ab-c"

        stored = await audit.query(event_type=SecurityEventType.CREDENTIAL_STORED)
        assert sorted(e.result for e in stored) == ["FAILED", "SUCCESS"]

    @pytest.mark.asyncio
    async def test_delete_other_pair_keeps_record(self, manager, memory_store):
        await manager.store("a.b", "c", "secret-of-ab-c")
        result = await manager.delete("a", "b.c")
        assert result.code == SecurityErrorCode.CREDENTIAL_NOT_FOUND
        assert await memory_store.get("pulse.credential.a.b.c") is not None
        assert (await manager.retrieve("a.b", "c")).success

    @pytest.mark.asyncio
    async def test_record_without_identity_still_matches(self, manager, memory_store):
        await manager.store("svc", "acct", "mysecretvalue1")
        key = "pulse.credential.svc.acct"
        record = json.loads(await memory_store.get(key))
        del record["service"], record["account"]
        await memory_store.set(key, json.dumps(record))

        result = await manager.retrieve("svc", "acct")
        assert result.credential == "mysecretvalue1"


# ── Listing / Clear All ──────────────────────────────────────────────


class TestListing:
    @pytest.mark.asyncio
    async def test_list_returns_metadata_only(self, manager):
        await manager.store("svc", "acct", "mysecretvalue1")
        await manager.store("plaid-client", "client-id", "0123456789abcdef01234567")

        credentials = await manager.list_credentials()
        by_service = {c["service"]: c for c in credentials}
        assert set(by_service) == {"svc", "plaid-client"}
        assert by_service["plaid-client"]["type"] == "Plaid Client ID"
        assert by_service["svc"]["account"] == "acct"
        for item in credentials:
            assert set(item) == {"service", "account", "type", "last_accessed"}
            assert "mysecretvalue1" not in json.dumps(item)

    @pytest.mark.asyncio
    async def test_list_ignores_other_keys_and_bad_records(self, manager, memory_store):
        await manager.store("svc", "acct", "mysecretvalue1")
        await memory_store.set("pulse.credential.broken.acct", "garbage")
        await memory_store.set("unrelated.key", "value")

        credentials = await manager.list_credentials()
        assert [c["service"] for c in credentials] == ["svc"]

    @pytest.mark.asyncio
    async def test_list_falls_back_to_storage_key(self, manager, memory_store):
        await manager.store("svc", "acct", "mysecretvalue1")
        record = json.loads(await memory_store.get("pulse.credential.svc.acct"))
        record.pop("service")
        record.pop("account")
        await memory_store.set("pulse.credential.com.example.app.user", json.dumps(record))

        credentials = await manager.list_credentials()
        pairs = {(c["service"], c["account"]) for c in credentials}
        assert ("com.example.app", "user") in pairs

    @pytest.mark.asyncio
    async def test_clear_all(self, manager, memory_store, audit):
        await manager.store("svc", "acct", "mysecretvalue1")
        await manager.store("svc", "other", "mysecretvalue2")
        await memory_store.set("unrelated.key", "value")

        assert (await manager.clear_all()).success
        assert await manager.list_credentials() == []
        assert await memory_store.get("unrelated.key") == "value"
        assert await memory_store.get(audit.storage_key) is not None

        entries = await audit.query(event_type=SecurityEventType.CREDENTIAL_DELETED)
        assert entries[0].data == {"action": "clear_all_credentials", "removed": 2}


# ── last_accessed ────────────────────────────────────────────────────


class TestLastAccessed:
    @pytest.mark.asyncio
    async def test_retrieve_updates_last_accessed(self, manager, memory_store, clock):
        await manager.store("svc", "acct", "mysecretvalue1")
        created = clock().isoformat()

        clock.advance(minutes=5)
        await manager.retrieve("svc", "acct")

        # Any later operation waits for the pending rewrite
        credentials = await manager.list_credentials()
        assert credentials[0]["last_accessed"] == clock().isoformat()

        record = StoredCredential.from_json(await memory_store.get("pulse.credential.svc.acct"))
        assert record.created_at == created
        assert record.last_accessed == clock().isoformat()

    @pytest.mark.asyncio
    async def test_touch_failure_does_not_fail_retrieve(self, manager, memory_store, monkeypatch):
        await manager.store("svc", "acct", "mysecretvalue1")

        async def broken_set(key, value):
            raise OSError("read-only")

        monkeypatch.setattr(memory_store, "set", broken_set)
        result = await manager.retrieve("svc", "acct")
        assert result.success
        await manager._drain_pending()


# ── Audit Trail ──────────────────────────────────────────────────────


class TestAuditTrail:
    @pytest.mark.asyncio
    async def test_operations_are_audited(self, manager, audit):
        await manager.store("svc", "acct", "mysecretvalue1")
        await manager.retrieve("svc", "acct")
        await manager.retrieve("svc", "missing")

        stored = await audit.query(event_type=SecurityEventType.CREDENTIAL_STORED)
        retrieved = await audit.query(event_type=SecurityEventType.CREDENTIAL_RETRIEVED)
        assert [e.result for e in stored] == ["SUCCESS"]
        assert sorted(e.result for e in retrieved) == ["FAILED", "SUCCESS"]

    @pytest.mark.asyncio
    async def test_audit_never_contains_secret(self, manager, audit):
        await manager.store("svc", "acct", "mysecretvalue1")
        await manager.retrieve("svc", "acct")
        assert "mysecretvalue1" not in await audit.export_log()
