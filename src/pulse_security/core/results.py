# Core - Operation Results
#
# Public vault operations report outcomes instead of raising.
# Every failure carries a SecurityErrorCode next to the human message.

from dataclasses import dataclass
from typing import Optional

from .constants import SecurityErrorCode


@dataclass
class OperationResult:
    """Success flag plus optional error message and code."""

    success: bool
    error: Optional[str] = None
    code: Optional[SecurityErrorCode] = None

    @classmethod
    def ok(cls, **payload) -> "OperationResult":
        return cls(success=True, **payload)

    @classmethod
    def fail(cls, code: SecurityErrorCode, message: str) -> "OperationResult":
        return cls(success=False, error=message, code=code)

    @property
    def not_found(self) -> bool:
        """True when the failure is the routine "nothing stored" case."""
        return self.code == SecurityErrorCode.CREDENTIAL_NOT_FOUND


@dataclass
class RetrievalResult(OperationResult):
    """Keychain lookup outcome."""

    value: Optional[str] = None


@dataclass
class CredentialResult(OperationResult):
    """Encrypted local store lookup outcome."""

    credential: Optional[str] = None
