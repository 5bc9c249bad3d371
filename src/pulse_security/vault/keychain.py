# Vault - Platform Keychain Adapter
#
# Stores one secret per (service, account) pair in the macOS keychain by
# running the `security` command-line tool:
#   add-generic-password / find-generic-password / delete-generic-password
#   dump-keychain (listing only, attributes without secret data)
#
# Commands are executed with an argument vector, never through a shell,
# and every value is checked against an allow-list before it is placed
# on the command line. The OS keychain encrypts at rest on its own, so
# nothing here goes through the EncryptionService.

import asyncio
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

import structlog

from ..core.constants import (
    DEFAULT_KEYCHAIN_NAMESPACE,
    SECURITY_COMMAND,
    SecurityErrorCode,
)
from ..core.results import OperationResult, RetrievalResult

logger = logging.getLogger(__name__)

KEYCHAIN_SERVICES = {
    "NOTION_API": "com.pulse.raycast.notion-api",
    "PLAID_CLIENT": "com.pulse.raycast.plaid-client",
    "PLAID_SECRET": "com.pulse.raycast.plaid-secret",
    "HEALTHKIT": "com.pulse.raycast.healthkit",
    "ENCRYPTION_KEY": "com.pulse.raycast.encryption-key",
}

KEYCHAIN_ACCOUNTS = {
    "DEFAULT": "pulse-extension",
    "USER_TOKEN": "user-token",
    "API_KEY": "api-key",
    "CLIENT_SECRET": "client-secret",
}

# `security` exits with errSecItemNotFound (44) for a missing item
ITEM_NOT_FOUND_EXIT_CODE = 44
_NOT_FOUND_MARKER = "could not be found"

_IDENTIFIER_RE = re.compile(r'^[A-Za-z0-9._@-]{1,255}$')
_CONTROL_CHARS_RE = re.compile(r'[\x00-\x1f\x7f]')

_SERVICE_ATTR_RE = re.compile(r'"svce"<blob>="([^"]*)"')
_ACCOUNT_ATTR_RE = re.compile(r'"acct"<blob>="([^"]*)"')


@dataclass
class CommandOutput:
    returncode: int
    stdout: str
    stderr: str

    @property
    def not_found(self) -> bool:
        return (
            self.returncode == ITEM_NOT_FOUND_EXIT_CODE
            or _NOT_FOUND_MARKER in self.stderr
        )


CommandRunner = Callable[[Sequence[str]], Awaitable[CommandOutput]]


async def run_command(argv: Sequence[str], timeout: Optional[float] = None) -> CommandOutput:
    """Run a command without a shell and capture its output."""
    proc = await asyncio.create_subprocess_exec(
        *argv,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        raise
    return CommandOutput(
        returncode=proc.returncode,
        stdout=stdout.decode('utf-8', errors='replace'),
        stderr=stderr.decode('utf-8', errors='replace'),
    )


def parse_keychain_dump(output: str) -> List[Dict[str, str]]:
    """
    Extract (service, account) pairs from `security dump-keychain` output.

    Each item starts with a `keychain: "..."` line followed by its
    attributes, one per line.
    """
    items: List[Dict[str, str]] = []
    current: Dict[str, str] = {}

    def flush():
        if "service" in current and "account" in current:
            items.append({"service": current["service"], "account": current["account"]})

    for line in output.splitlines():
        if line.startswith("keychain:"):
            flush()
            current = {}
            continue
        service_match = _SERVICE_ATTR_RE.search(line)
        if service_match:
            current["service"] = service_match.group(1)
            continue
        account_match = _ACCOUNT_ATTR_RE.search(line)
        if account_match:
            current["account"] = account_match.group(1)
    flush()

    return items


class KeychainManager:
    """
    macOS keychain wrapper for API keys, tokens and other secrets.

    Args:
        runner: Coroutine executing an argv and returning CommandOutput.
                Defaults to an asyncio subprocess.
        namespace: Service prefix identifying this application's items
        command: Name or path of the `security` binary
        timeout: Per-command timeout in seconds (None: wait indefinitely)
        environment: Trace lines are suppressed in "production"
    """

    def __init__(
        self,
        runner: Optional[CommandRunner] = None,
        namespace: str = DEFAULT_KEYCHAIN_NAMESPACE,
        command: str = SECURITY_COMMAND,
        timeout: Optional[float] = None,
        environment: str = "development",
    ):
        self._runner = runner
        self.namespace = namespace
        self.command = command
        self.timeout = timeout
        self._environment = environment
        self._trace = structlog.get_logger("pulse_security.keychain")

    async def _run(self, *args: str) -> CommandOutput:
        argv = [self.command, *args]
        if self._runner is not None:
            return await self._runner(argv)
        return await run_command(argv, timeout=self.timeout)

    # ------------------------------------------------------------------
    # Validation

    @staticmethod
    def _check_identifiers(service: str, account: str) -> Optional[str]:
        if not service or not account:
            return "Service and account are required"
        if not _IDENTIFIER_RE.fullmatch(service):
            return "Invalid service name"
        if not _IDENTIFIER_RE.fullmatch(account):
            return "Invalid account name"
        return None

    @staticmethod
    def _check_secret(secret: str) -> Optional[str]:
        if not secret:
            return "Service, account, and password are required"
        if _CONTROL_CHARS_RE.search(secret):
            return "Secret contains control characters"
        return None

    # ------------------------------------------------------------------
    # Operations

    async def store(self, service: str, account: str, secret: str) -> OperationResult:
        """
        Store a secret, replacing any existing entry for the same pair.
        """
        problem = self._check_identifiers(service, account) or self._check_secret(secret)
        if problem:
            return OperationResult.fail(SecurityErrorCode.INVALID_INPUT, problem)

        # Overwrite semantics: an existing entry never makes store fail
        await self.delete(service, account)

        try:
            output = await self._run(
                "add-generic-password", "-s", service, "-a", account, "-w", secret,
            )
        except Exception as e:
            return self._store_failed("store", service, account, str(e))

        if output.returncode != 0:
            return self._store_failed("store", service, account, output.stderr.strip())

        self._log_security_event("store", service, account, True)
        return OperationResult.ok()

    async def retrieve(self, service: str, account: str) -> RetrievalResult:
        """Read a secret. A missing item fails with CREDENTIAL_NOT_FOUND."""
        problem = self._check_identifiers(service, account)
        if problem:
            return RetrievalResult.fail(SecurityErrorCode.INVALID_INPUT, problem)

        try:
            output = await self._run(
                "find-generic-password", "-s", service, "-a", account, "-w",
            )
        except Exception as e:
            self._log_security_event("retrieve", service, account, False, str(e))
            return RetrievalResult.fail(
                SecurityErrorCode.STORE_OPERATION_FAILED,
                f"Failed to retrieve credential: {e}",
            )

        if output.not_found:
            self._log_security_event("retrieve", service, account, False, "Credential not found")
            return RetrievalResult.fail(
                SecurityErrorCode.CREDENTIAL_NOT_FOUND, "Credential not found"
            )

        if output.returncode != 0:
            error = output.stderr.strip()
            self._log_security_event("retrieve", service, account, False, error)
            return RetrievalResult.fail(
                SecurityErrorCode.STORE_OPERATION_FAILED,
                f"Failed to retrieve credential: {error}",
            )

        self._log_security_event("retrieve", service, account, True)
        return RetrievalResult.ok(value=output.stdout.rstrip("\n"))

    async def delete(self, service: str, account: str) -> OperationResult:
        """Delete a secret. Deleting a missing item succeeds."""
        problem = self._check_identifiers(service, account)
        if problem:
            return OperationResult.fail(SecurityErrorCode.INVALID_INPUT, problem)

        try:
            output = await self._run(
                "delete-generic-password", "-s", service, "-a", account,
            )
        except Exception as e:
            return self._delete_failed(service, account, str(e))

        if output.returncode != 0 and not output.not_found:
            return self._delete_failed(service, account, output.stderr.strip())

        self._log_security_event("delete", service, account, True)
        return OperationResult.ok()

    async def exists(self, service: str, account: str) -> bool:
        try:
            result = await self.retrieve(service, account)
        except Exception:
            return False
        return result.success

    async def update(self, service: str, account: str, new_secret: str) -> OperationResult:
        """Replace a secret: delete, then store."""
        delete_result = await self.delete(service, account)
        if not delete_result.success:
            return delete_result
        return await self.store(service, account, new_secret)

    async def list_credentials(self) -> List[Dict[str, str]]:
        """
        List this application's (service, account) pairs.

        Diagnostic only: any failure yields an empty list.
        """
        try:
            output = await self._run("dump-keychain")
            if output.returncode != 0:
                error = output.stderr.strip()
                logger.warning(f"dump-keychain failed: {error}")
                self._log_security_event("list", "all", "all", False, error)
                return []
            credentials = [
                item for item in parse_keychain_dump(output.stdout)
                if item["service"].startswith(self.namespace)
            ]
            self._log_security_event("list", "all", "all", True)
            return credentials
        except Exception as e:
            logger.warning(f"Failed to list keychain credentials: {e}")
            self._log_security_event("list", "all", "all", False, str(e))
            return []

    async def clear_all_credentials(self) -> OperationResult:
        """Delete every listed credential, reporting how many deletions failed."""
        credentials = await self.list_credentials()

        failures = []
        for item in credentials:
            result = await self.delete(item["service"], item["account"])
            if not result.success:
                failures.append(f"{item['service']}/{item['account']}: {result.error}")

        if failures:
            error = (
                f"Failed to clear {len(failures)} of {len(credentials)} credentials: "
                + "; ".join(failures)
            )
            self._log_security_event("clear_all", "all", "all", False, error)
            return OperationResult.fail(SecurityErrorCode.STORE_OPERATION_FAILED, error)

        self._log_security_event("clear_all", "all", "all", True)
        return OperationResult.ok()

    # ------------------------------------------------------------------
    # Helpers

    def _store_failed(self, operation: str, service: str, account: str, error: str) -> OperationResult:
        self._log_security_event(operation, service, account, False, error)
        return OperationResult.fail(
            SecurityErrorCode.STORE_OPERATION_FAILED,
            f"Failed to store credential: {error}",
        )

    def _delete_failed(self, service: str, account: str, error: str) -> OperationResult:
        self._log_security_event("delete", service, account, False, error)
        return OperationResult.fail(
            SecurityErrorCode.STORE_OPERATION_FAILED,
            f"Failed to delete credential: {error}",
        )

    def _log_security_event(
        self,
        operation: str,
        service: str,
        account: str,
        success: bool,
        error: Optional[str] = None,
    ) -> None:
        """Local trace line, separate from the audit log. Skipped in production."""
        if self._environment == "production":
            return
        self._trace.info(
            "keychain_operation",
            timestamp=datetime.now(timezone.utc).isoformat(),
            operation=operation,
            service=service.replace('"', ''),
            account=account.replace('"', ''),
            success=success,
            error=error,
        )
