"""
Shared pytest fixtures for the Pulse Security test suite.

  - FakeClock          -> manually advanced UTC clock for audit/credential timestamps
  - memory_store       -> in-memory key-value store per test
  - FakeSecurityCommand -> stand-in for the macOS `security` binary, keeps
                          items in a dict and answers with the real exit codes
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence, Tuple

import pytest

from pulse_security.core.audit_log import SecurityAudit
from pulse_security.core.storage import MemoryKeyValueStore
from pulse_security.environment import EnvironmentSnapshot
from pulse_security.vault.credential_manager import SecureCredentialManager
from pulse_security.vault.keychain import (
    ITEM_NOT_FOUND_EXIT_CODE,
    CommandOutput,
    KeychainManager,
)

NOT_FOUND_STDERR = (
    "security: SecKeychainSearchCopyNext: The specified item could not be found "
    "in the keychain.\n"
)


class FakeClock:
    """Callable clock returning a fixed, tz-aware UTC time until advanced."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now

    def rewind(self, **kwargs) -> datetime:
        self.now -= timedelta(**kwargs)
        return self.now


class FakeSecurityCommand:
    """
    In-memory replacement for `security`.

    Records every argv it receives. `failures` maps a subcommand to the
    CommandOutput it should return instead of acting.
    """

    def __init__(self, items: Optional[Dict[Tuple[str, str], str]] = None):
        self.items: Dict[Tuple[str, str], str] = dict(items or {})
        self.calls: List[List[str]] = []
        self.failures: Dict[str, CommandOutput] = {}
        self.raise_on: Dict[str, Exception] = {}

    @staticmethod
    def _parse(args: Sequence[str]):
        service = account = secret = None
        i = 0
        while i < len(args):
            flag = args[i]
            if flag in ("-s", "-a") and i + 1 < len(args):
                if flag == "-s":
                    service = args[i + 1]
                else:
                    account = args[i + 1]
                i += 2
                continue
            if flag == "-w" and i + 1 < len(args):
                secret = args[i + 1]
                i += 2
                continue
            i += 1
        return service, account, secret

    def dump(self) -> str:
        lines = []
        for (service, account) in self.items:
            lines.extend([
                'keychain: "/Users/test/Library/Keychains/login.keychain-db"',
                "version: 512",
                'class: "genp"',
                "attributes:",
                '    0x00000007 <blob>="%s"' % service,
                '    "acct"<blob>="%s"' % account,
                '    "cdat"<timedate>=0x32303235303131353132303030305A00',
                '    "svce"<blob>="%s"' % service,
            ])
        return "\n".join(lines) + "\n"

    async def __call__(self, argv: Sequence[str]) -> CommandOutput:
        argv = list(argv)
        self.calls.append(argv)
        subcommand = argv[1]

        if subcommand in self.raise_on:
            raise self.raise_on[subcommand]
        if subcommand in self.failures:
            return self.failures[subcommand]

        service, account, secret = self._parse(argv[2:])
        key = (service, account)

        if subcommand == "add-generic-password":
            if key in self.items:
                return CommandOutput(
                    45, "", "security: SecKeychainItemCreateFromContent: "
                            "The specified item already exists in the keychain.\n"
                )
            self.items[key] = secret
            return CommandOutput(0, "", "")

        if subcommand == "find-generic-password":
            if key not in self.items:
                return CommandOutput(ITEM_NOT_FOUND_EXIT_CODE, "", NOT_FOUND_STDERR)
            return CommandOutput(0, self.items[key] + "\n", "")

        if subcommand == "delete-generic-password":
            if key not in self.items:
                return CommandOutput(ITEM_NOT_FOUND_EXIT_CODE, "", NOT_FOUND_STDERR)
            del self.items[key]
            return CommandOutput(0, "", "")

        if subcommand == "dump-keychain":
            return CommandOutput(0, self.dump(), "")

        return CommandOutput(1, "", f"security: unknown command {subcommand}\n")

    def subcommands(self) -> List[str]:
        return [call[1] for call in self.calls]


def make_snapshot(**overrides) -> EnvironmentSnapshot:
    """A snapshot that passes every check unless overridden."""
    values = dict(
        variables={"PULSE_ENV": "development", "PULSE_OWNER_EMAIL": "owner@example.com"},
        platform="darwin",
        python_version=(3, 12, 1),
        runtime_flags=(),
        cwd="/Users/owner/pulse",
        security_command_available=True,
    )
    values.update(overrides)
    return EnvironmentSnapshot(**values)


# ── Fixtures ─────────────────────────────────────────────────────────


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_store():
    return MemoryKeyValueStore()


@pytest.fixture
def audit(memory_store, clock):
    return SecurityAudit(memory_store, clock=clock, environment="test", session_id="session-test")


@pytest.fixture
def manager(memory_store, audit, clock):
    return SecureCredentialManager(
        memory_store, audit, master_passphrase="test-master-passphrase", clock=clock
    )


@pytest.fixture
def security_command():
    return FakeSecurityCommand()


@pytest.fixture
def keychain(security_command):
    return KeychainManager(runner=security_command, environment="test")
