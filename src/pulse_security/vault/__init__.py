# Vault - credential storage
#
# AES-256-CBC encryption with PBKDF2 key derivation, the encrypted local
# credential store and the macOS keychain adapter.

from .credential_manager import SecureCredentialManager
from .encryption import EncryptionService
from .keychain import KeychainManager

__all__ = ["SecureCredentialManager", "EncryptionService", "KeychainManager"]
