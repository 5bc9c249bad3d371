# Core - Data Classification & Credential Types
#
# Classification levels decide whether a value must be encrypted and/or
# kept in the platform keychain. The credential-type registry labels stored
# credentials and validates the format of known credential kinds.

import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterator, List, Optional, Pattern, Tuple


class DataClassification(str, Enum):
    """
    Policy label for a piece of data.

    Levels:
    - PUBLIC: no protection needed
    - INTERNAL: encrypted at rest
    - CONFIDENTIAL: encrypted and kept in the platform keychain
    - RESTRICTED: same as CONFIDENTIAL with the most detailed auditing

    Not enforced by the stores; callers route CONFIDENTIAL/RESTRICTED data
    through the encrypted paths.
    """

    PUBLIC = "public"
    INTERNAL = "internal"
    CONFIDENTIAL = "confidential"
    RESTRICTED = "restricted"

    @property
    def requires_encryption(self) -> bool:
        return self != DataClassification.PUBLIC

    @property
    def requires_keychain(self) -> bool:
        return self in (DataClassification.CONFIDENTIAL, DataClassification.RESTRICTED)

    @property
    def audit_level(self) -> str:
        """How much detail audit entries for this data should carry."""
        levels = {
            DataClassification.PUBLIC: "minimal",
            DataClassification.INTERNAL: "standard",
            DataClassification.CONFIDENTIAL: "detailed",
            DataClassification.RESTRICTED: "comprehensive",
        }
        return levels[self]

    @classmethod
    def from_string(cls, level: str) -> "DataClassification":
        """Parse a classification (case-insensitive), defaulting to RESTRICTED."""
        try:
            return cls(level.lower())
        except ValueError:
            return cls.RESTRICTED

    def __str__(self) -> str:
        return self.value.upper()


@dataclass(frozen=True)
class CredentialTypeDescriptor:
    """Static description of one known credential kind."""

    name: str
    classification: DataClassification
    service: str
    account: str
    description: str
    validation_pattern: Pattern[str]

    def matches_format(self, value: str) -> bool:
        return bool(self.validation_pattern.fullmatch(value or ""))


class CredentialTypeRegistry:
    """
    Lookup table of known credential kinds.

    Lookups go through (service, account) indexes, first registration wins
    when two descriptors share a key. A service may be given in full
    ("com.pulse.raycast.notion-api"), by its final dotted segment
    ("notion-api") or by any substring of the full name ("plaid"); the
    substring match only scans descriptors registered for the same account,
    in registration order.
    """

    DEFAULT_LABEL = "Generic Credential"

    def __init__(self):
        self._descriptors: Dict[str, CredentialTypeDescriptor] = {}
        self._by_pair: Dict[Tuple[str, str], CredentialTypeDescriptor] = {}
        self._by_short_pair: Dict[Tuple[str, str], CredentialTypeDescriptor] = {}
        self._by_account: Dict[str, List[CredentialTypeDescriptor]] = {}

    def register(self, key: str, descriptor: CredentialTypeDescriptor) -> None:
        if key in self._descriptors:
            raise ValueError(f"Credential type {key} already registered")
        self._descriptors[key] = descriptor
        self._by_pair.setdefault((descriptor.service, descriptor.account), descriptor)
        short_service = descriptor.service.rsplit(".", 1)[-1]
        self._by_short_pair.setdefault((short_service, descriptor.account), descriptor)
        self._by_account.setdefault(descriptor.account, []).append(descriptor)

    def get(self, key: str) -> Optional[CredentialTypeDescriptor]:
        return self._descriptors.get(key)

    def lookup(self, service: str, account: str) -> Optional[CredentialTypeDescriptor]:
        """Find the descriptor for a service/account pair, if any."""
        pair = (service, account)
        descriptor = self._by_pair.get(pair) or self._by_short_pair.get(pair)
        if descriptor is not None:
            return descriptor
        for candidate in self._by_account.get(account, ()):
            if service in candidate.service:
                return candidate
        return None

    def infer_type_label(self, service: str, account: str) -> str:
        descriptor = self.lookup(service, account)
        return descriptor.name if descriptor else self.DEFAULT_LABEL

    def validate_format(self, key: str, value: str) -> bool:
        """Check a value against a known credential kind's pattern."""
        descriptor = self._descriptors.get(key)
        if descriptor is None:
            raise KeyError(f"Unknown credential type: {key}")
        return descriptor.matches_format(value)

    def __iter__(self) -> Iterator[Tuple[str, CredentialTypeDescriptor]]:
        return iter(self._descriptors.items())

    def __len__(self) -> int:
        return len(self._descriptors)


def _build_default_registry() -> CredentialTypeRegistry:
    registry = CredentialTypeRegistry()
    registry.register("NOTION_API_TOKEN", CredentialTypeDescriptor(
        name="Notion API Token",
        classification=DataClassification.RESTRICTED,
        service="com.pulse.raycast.notion-api",
        account="api-token",
        description="Notion integration API token",
        validation_pattern=re.compile(r"secret_[a-zA-Z0-9]{43}"),
    ))
    registry.register("PLAID_CLIENT_ID", CredentialTypeDescriptor(
        name="Plaid Client ID",
        classification=DataClassification.CONFIDENTIAL,
        service="com.pulse.raycast.plaid-client",
        account="client-id",
        description="Plaid banking API client identifier",
        validation_pattern=re.compile(r"[a-f0-9]{24}"),
    ))
    registry.register("PLAID_SECRET", CredentialTypeDescriptor(
        name="Plaid Secret",
        classification=DataClassification.RESTRICTED,
        service="com.pulse.raycast.plaid-secret",
        account="secret-key",
        description="Plaid banking API secret key",
        validation_pattern=re.compile(r"[a-f0-9]{40}"),
    ))
    registry.register("HEALTHKIT_ACCESS", CredentialTypeDescriptor(
        name="HealthKit Access Token",
        classification=DataClassification.RESTRICTED,
        service="com.pulse.raycast.healthkit",
        account="access-token",
        description="iOS HealthKit data access token",
        validation_pattern=re.compile(r"[A-Za-z0-9\-._~+/]+=*"),
    ))
    registry.register("ENCRYPTION_MASTER_KEY", CredentialTypeDescriptor(
        name="Master Encryption Key",
        classification=DataClassification.RESTRICTED,
        service="com.pulse.raycast.encryption-key",
        account="master-key",
        description="Master key for local data encryption",
        validation_pattern=re.compile(r"[A-Za-z0-9+/]+=*"),
    ))
    return registry


CREDENTIAL_TYPES = _build_default_registry()
