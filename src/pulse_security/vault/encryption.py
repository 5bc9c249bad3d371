# Vault - Encryption Service
#
# Password → encryption key (PBKDF2-HMAC-SHA256, fresh salt per call)
# Secret encryption (AES-256-CBC, PKCS7 padding, fresh IV per call)
# Hashing, random tokens and constant-time comparison

import base64
import binascii
import hashlib
import logging
import os
import secrets
from dataclasses import dataclass
from typing import Any, Dict, Optional

from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ..core.constants import SecurityErrorCode
from ..core.results import OperationResult

logger = logging.getLogger(__name__)

ALGORITHM = "aes-256-cbc"

_DECRYPTION_FAILED_MESSAGE = "Decryption failed"


@dataclass(frozen=True)
class EncryptedEnvelope:
    """Output of one encryption call. All byte fields are base64 text."""

    ciphertext: str
    iv: str
    salt: str
    algorithm: str = ALGORITHM

    def to_dict(self) -> Dict[str, str]:
        return {
            "data": self.ciphertext,
            "iv": self.iv,
            "salt": self.salt,
            "algorithm": self.algorithm,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EncryptedEnvelope":
        """Build an envelope from its stored form. Raises KeyError/TypeError."""
        return cls(
            ciphertext=data["data"],
            iv=data["iv"],
            salt=data["salt"],
            algorithm=data["algorithm"],
        )


@dataclass
class EncryptionResult(OperationResult):
    envelope: Optional[EncryptedEnvelope] = None


@dataclass
class DecryptionResult(OperationResult):
    plaintext: Optional[str] = None


class EncryptionService:
    """
    Stateless cryptographic helpers for the credential stores.

    Flow:
    1. Caller supplies plaintext + password
    2. PBKDF2 derives a 256-bit key from password + random salt
    3. AES-256-CBC encrypts the PKCS7-padded plaintext with a random IV
    4. Salt and IV travel with the ciphertext in an EncryptedEnvelope

    Decryption detects a wrong password or corrupted data through padding
    and UTF-8 validation and reports DECRYPTION_FAILED instead of
    returning garbage.
    """

    PBKDF2_ITERATIONS = 100_000
    KEY_LENGTH = 32  # 256 bits for AES-256
    IV_LENGTH = 16  # one AES block
    SALT_LENGTH = 32  # 256-bit salt
    ALGORITHM = ALGORITHM

    @staticmethod
    def derive_key(
        password: str,
        salt: bytes,
        iterations: int = PBKDF2_ITERATIONS,
        length: int = KEY_LENGTH,
    ) -> bytearray:
        """
        Derive a key from a password using PBKDF2-HMAC-SHA256.

        Returns a bytearray so callers can wipe it after use.
        """
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=length,
            salt=salt,
            iterations=iterations,
            backend=default_backend()
        )
        return bytearray(kdf.derive(password.encode('utf-8')))

    @staticmethod
    def _wipe(buffer: bytearray) -> None:
        # Best effort: the cipher backend keeps its own copy
        for i in range(len(buffer)):
            buffer[i] = 0

    @staticmethod
    def encrypt(plaintext: str, password: str) -> EncryptionResult:
        """
        Encrypt plaintext with a key derived from password.

        Args:
            plaintext: Secret to encrypt (non-empty)
            password: Password the key is derived from (non-empty)

        Returns:
            EncryptionResult with the envelope on success
        """
        if not plaintext or not password:
            return EncryptionResult.fail(
                SecurityErrorCode.INVALID_INPUT,
                "Plaintext and password are required",
            )

        try:
            salt = os.urandom(EncryptionService.SALT_LENGTH)
            iv = os.urandom(EncryptionService.IV_LENGTH)
            key = EncryptionService.derive_key(password, salt)
            try:
                padder = padding.PKCS7(algorithms.AES.block_size).padder()
                padded = padder.update(plaintext.encode('utf-8')) + padder.finalize()

                encryptor = Cipher(
                    algorithms.AES(bytes(key)), modes.CBC(iv), backend=default_backend()
                ).encryptor()
                ciphertext = encryptor.update(padded) + encryptor.finalize()
            finally:
                EncryptionService._wipe(key)

            return EncryptionResult.ok(envelope=EncryptedEnvelope(
                ciphertext=EncryptionService.encode_for_storage(ciphertext),
                iv=EncryptionService.encode_for_storage(iv),
                salt=EncryptionService.encode_for_storage(salt),
                algorithm=ALGORITHM,
            ))

        except Exception as e:
            logger.error(f"Encryption failed: {type(e).__name__}")
            return EncryptionResult.fail(
                SecurityErrorCode.ENCRYPTION_FAILED, f"Encryption failed: {e}"
            )

    @staticmethod
    def decrypt(envelope: Optional[EncryptedEnvelope], password: str) -> DecryptionResult:
        """
        Decrypt an envelope produced by encrypt().

        Wrong password and corrupted data produce the same message so the
        result cannot be used as an oracle.
        """
        if envelope is None or not password:
            return DecryptionResult.fail(
                SecurityErrorCode.INVALID_INPUT,
                "Encrypted data and password are required",
            )

        if envelope.algorithm != ALGORITHM:
            return DecryptionResult.fail(
                SecurityErrorCode.UNSUPPORTED_ALGORITHM,
                f"Unsupported encryption algorithm: {envelope.algorithm}",
            )

        try:
            salt = EncryptionService.decode_from_storage(envelope.salt)
            iv = EncryptionService.decode_from_storage(envelope.iv)
            ciphertext = EncryptionService.decode_from_storage(envelope.ciphertext)

            key = EncryptionService.derive_key(password, salt)
            try:
                decryptor = Cipher(
                    algorithms.AES(bytes(key)), modes.CBC(iv), backend=default_backend()
                ).decryptor()
                padded = decryptor.update(ciphertext) + decryptor.finalize()
            finally:
                EncryptionService._wipe(key)

            # Wrong key shows up here: invalid padding or non-UTF-8 bytes
            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            plaintext_bytes = unpadder.update(padded) + unpadder.finalize()
            plaintext = plaintext_bytes.decode('utf-8')

        except (ValueError, TypeError, binascii.Error, UnicodeDecodeError):
            return DecryptionResult.fail(
                SecurityErrorCode.DECRYPTION_FAILED, _DECRYPTION_FAILED_MESSAGE
            )
        except Exception as e:
            logger.error(f"Unexpected decryption error: {type(e).__name__}")
            return DecryptionResult.fail(
                SecurityErrorCode.DECRYPTION_FAILED, _DECRYPTION_FAILED_MESSAGE
            )

        return DecryptionResult.ok(plaintext=plaintext)

    @staticmethod
    def generate_secure_password(length: int = 32) -> str:
        """Random password: `length` random bytes, base64-encoded."""
        return base64.b64encode(secrets.token_bytes(length)).decode('ascii')

    @staticmethod
    def generate_token(length: int = 32) -> str:
        """Random token: `length` random bytes, hex-encoded."""
        return secrets.token_hex(length)

    @staticmethod
    def hash(data: str, salt: Optional[str] = None) -> str:
        """SHA-256 of data (+ salt when given) as a hex string."""
        digest = hashlib.sha256()
        digest.update(data.encode('utf-8'))
        if salt:
            digest.update(salt.encode('utf-8'))
        return digest.hexdigest()

    @staticmethod
    def verify_hash(data: str, digest: str, salt: Optional[str] = None) -> bool:
        """Recompute the hash of data and compare it to digest."""
        return EncryptionService.secure_compare(EncryptionService.hash(data, salt), digest)

    @staticmethod
    def secure_compare(a: str, b: str) -> bool:
        """
        Compare two strings in constant time.

        Lengths are checked first; equal-length inputs are always walked
        end to end, accumulating the XOR of every character pair.
        """
        if len(a) != len(b):
            return False

        result = 0
        for x, y in zip(a, b):
            result |= ord(x) ^ ord(y)

        return result == 0

    @staticmethod
    def validate_envelope(envelope: Optional[EncryptedEnvelope]) -> bool:
        """Structural check: every field present, supported algorithm."""
        return bool(
            envelope
            and envelope.ciphertext
            and envelope.iv
            and envelope.salt
            and envelope.algorithm == ALGORITHM
        )

    @staticmethod
    def encode_for_storage(data: bytes) -> str:
        """Encode binary data as base64 text."""
        return base64.b64encode(data).decode('utf-8')

    @staticmethod
    def decode_from_storage(data: str) -> bytes:
        """Decode base64 text, rejecting anything outside the alphabet."""
        return base64.b64decode(data.encode('utf-8'), validate=True)
