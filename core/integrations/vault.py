"""
Credential Vault: symmetric encryption of credential bundles at rest.

Persisted format (stable across versions)::

    {"encrypted": "<hex>", "iv": "<hex>", "algorithm": "aes-256-gcm"}

New records are written with AES-256-GCM (the GCM tag is appended to the
ciphertext), or with AES-256-CBC plus an HMAC-SHA256 tag over iv + ciphertext
(encrypt-then-MAC, tag appended the same way) when that is configured.
Plain AES-256-CBC records carry no integrity check: they are read-only,
kept so that connections stored before authenticated modes stay usable.

The key is process-wide configuration. A vault cannot be built without one:
a per-call random key would make every stored connection undecryptable.
"""
from __future__ import annotations
import base64
import binascii
import json
import logging
import os

from cryptography.exceptions import InvalidSignature, InvalidTag
from cryptography.hazmat.primitives import hashes, hmac, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from core.config import VaultConfig
from core.errors import ConfigurationError, DecryptionError
from core.integrations.models import CredentialBundle, EncryptedCredential

logger = logging.getLogger(__name__)

AES_256_GCM = "aes-256-gcm"
AES_256_CBC = "aes-256-cbc"
AES_256_CBC_HMAC = "aes-256-cbc-hmac-sha256"
WRITE_ALGORITHMS = (AES_256_GCM, AES_256_CBC_HMAC)
SUPPORTED_ALGORITHMS = (AES_256_GCM, AES_256_CBC_HMAC, AES_256_CBC)

KEY_SIZE = 32
GCM_IV_SIZE = 12
CBC_IV_SIZE = 16
MAC_SIZE = 32


def parse_key(raw: str | bytes | None) -> bytes:
    """Turn a configured key into 32 raw bytes.

    Accepted forms: 32 raw bytes, 64 hex characters, url-safe/standard
    base64 of 32 bytes, or a 32-character string (used verbatim).
    """
    if raw is None or raw == "" or raw == b"":
        raise ConfigurationError(
            "Encryption key is not configured. Set HUB_ENCRYPTION_KEY to a 32-byte key "
            "(64 hex chars). Generate one with: python -c 'import os; print(os.urandom(32).hex())'"
        )
    if isinstance(raw, bytes):
        if len(raw) == KEY_SIZE:
            return raw
        raw = raw.decode("utf-8", errors="strict")

    text = raw.strip()
    if len(text) == KEY_SIZE * 2:
        try:
            return bytes.fromhex(text)
        except ValueError:
            pass
    for decoder in (base64.urlsafe_b64decode, base64.b64decode):
        try:
            decoded = decoder(text)
        except (binascii.Error, ValueError):
            continue
        if len(decoded) == KEY_SIZE:
            return decoded
    encoded = text.encode("utf-8")
    if len(encoded) == KEY_SIZE:
        return encoded
    raise ConfigurationError(
        "Encryption key must be 32 bytes (64 hex chars, base64 of 32 bytes, or 32 characters)"
    )


def _serialize(bundle: CredentialBundle) -> bytes:
    # Stable field order so equal bundles produce equal plaintexts
    return json.dumps(bundle.to_dict(), sort_keys=True, separators=(",", ":")).encode("utf-8")


def _deserialize(plaintext: bytes) -> CredentialBundle:
    try:
        data = json.loads(plaintext.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        raise DecryptionError("Decrypted credentials are not valid JSON") from exc
    if not isinstance(data, dict) or not all(
        isinstance(k, str) and isinstance(v, str) for k, v in data.items()
    ):
        raise DecryptionError("Decrypted credentials are not a mapping of strings")
    return CredentialBundle(data)


def _cbc_keys(key: bytes) -> tuple[bytes, bytes]:
    """Split the vault key into independent encryption and MAC keys."""
    derived = HKDF(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE * 2,
        salt=None,
        info=b"integration-hub credential vault cbc-hmac",
    ).derive(key)
    return derived[:KEY_SIZE], derived[KEY_SIZE:]


def _cbc_mac(mac_key: bytes, iv: bytes, ciphertext: bytes) -> hmac.HMAC:
    mac = hmac.HMAC(mac_key, hashes.SHA256())
    mac.update(iv + ciphertext)
    return mac


class CredentialVault:
    """Encrypts and decrypts CredentialBundles with one process-wide key.

    No I/O and no shared mutable state: safe to call concurrently.
    """

    def __init__(self, key: str | bytes | None, algorithm: str = AES_256_GCM):
        if algorithm == AES_256_CBC:
            raise ConfigurationError(
                f"{AES_256_CBC} has no integrity check and is read-only; "
                f"write with {AES_256_GCM} or {AES_256_CBC_HMAC}"
            )
        if algorithm not in WRITE_ALGORITHMS:
            raise ConfigurationError(f"Unsupported encryption algorithm: {algorithm}")
        self._key = parse_key(key)
        self.algorithm = algorithm

    @classmethod
    def from_config(cls, config: VaultConfig) -> "CredentialVault":
        return cls(config.encryption_key, algorithm=config.algorithm)

    def __repr__(self) -> str:
        return f"CredentialVault(algorithm={self.algorithm!r})"

    # --- encrypt ---

    def encrypt(self, bundle: CredentialBundle) -> EncryptedCredential:
        plaintext = _serialize(bundle)
        if self.algorithm == AES_256_GCM:
            iv = os.urandom(GCM_IV_SIZE)
            ciphertext = AESGCM(self._key).encrypt(iv, plaintext, None)
        else:
            enc_key, mac_key = _cbc_keys(self._key)
            iv = os.urandom(CBC_IV_SIZE)
            padder = padding.PKCS7(algorithms.AES.block_size).padder()
            padded = padder.update(plaintext) + padder.finalize()
            encryptor = Cipher(algorithms.AES(enc_key), modes.CBC(iv)).encryptor()
            ciphertext = encryptor.update(padded) + encryptor.finalize()
            ciphertext += _cbc_mac(mac_key, iv, ciphertext).finalize()
        return EncryptedCredential(
            encrypted=ciphertext.hex(),
            iv=iv.hex(),
            algorithm=self.algorithm,
        )

    # --- decrypt ---

    def decrypt(self, record: EncryptedCredential) -> CredentialBundle:
        try:
            ciphertext = bytes.fromhex(record.encrypted)
            iv = bytes.fromhex(record.iv)
        except ValueError as exc:
            raise DecryptionError("Stored credentials are not valid hex") from exc

        algorithm = (record.algorithm or AES_256_CBC).lower()
        if algorithm == AES_256_GCM:
            plaintext = self._decrypt_gcm(ciphertext, iv)
        elif algorithm == AES_256_CBC_HMAC:
            plaintext = self._decrypt_cbc_hmac(ciphertext, iv)
        elif algorithm == AES_256_CBC:
            logger.warning(
                "Decrypting legacy %s credential without integrity check; reconnect to re-encrypt it",
                AES_256_CBC,
            )
            plaintext = self._decrypt_cbc(self._key, ciphertext, iv)
        else:
            raise DecryptionError(f"Unsupported algorithm: {record.algorithm}", algorithm=record.algorithm)
        return _deserialize(plaintext)

    def _decrypt_gcm(self, ciphertext: bytes, iv: bytes) -> bytes:
        if len(iv) != GCM_IV_SIZE:
            raise DecryptionError("Invalid IV length for aes-256-gcm")
        try:
            return AESGCM(self._key).decrypt(iv, ciphertext, None)
        except InvalidTag as exc:
            logger.error("Failed to decrypt credential: invalid key or corrupted data")
            raise DecryptionError("Failed to decrypt credentials") from exc

    def _decrypt_cbc_hmac(self, data: bytes, iv: bytes) -> bytes:
        if len(iv) != CBC_IV_SIZE:
            raise DecryptionError(f"Invalid IV length for {AES_256_CBC_HMAC}")
        if len(data) <= MAC_SIZE:
            raise DecryptionError("Ciphertext is too short to carry an authentication tag")
        ciphertext, tag = data[:-MAC_SIZE], data[-MAC_SIZE:]
        enc_key, mac_key = _cbc_keys(self._key)
        try:
            _cbc_mac(mac_key, iv, ciphertext).verify(tag)
        except InvalidSignature as exc:
            logger.error("Failed to decrypt credential: invalid key or corrupted data")
            raise DecryptionError("Failed to decrypt credentials") from exc
        return self._decrypt_cbc(enc_key, ciphertext, iv)

    @staticmethod
    def _decrypt_cbc(key: bytes, ciphertext: bytes, iv: bytes) -> bytes:
        if len(iv) != CBC_IV_SIZE:
            raise DecryptionError("Invalid IV length for aes-256-cbc")
        if not ciphertext or len(ciphertext) % CBC_IV_SIZE:
            raise DecryptionError("Ciphertext length is not a multiple of the block size")
        decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
        padded = decryptor.update(ciphertext) + decryptor.finalize()
        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        try:
            return unpadder.update(padded) + unpadder.finalize()
        except ValueError as exc:
            logger.error("Failed to decrypt credential: invalid key or corrupted data")
            raise DecryptionError("Failed to decrypt credentials") from exc
