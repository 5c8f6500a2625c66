"""
Keys — The Cryptographic Capability
Umbral keys, signatures and node addresses as they travel on the wire.

Each party holds independent secp256k1 keys, all made by one factory:
  - a decrypting key (capsules are opened with it)
  - a signing key (treasure maps, fragments and revocations are signed with it)
  - per-label policy keys, for publishers

The factory is random or derived from a passphrase:
  Passphrase → seed (PBKDF2, then HKDF with a key-ring context)
  Seed       → Umbral SecretKeyFactory → one key per label

Wire forms:
  Public key  → 33-byte compressed SEC1 point
  Capsule     → 105 bytes, written raw ahead of its ciphertext
  Signature   → 64-byte big-endian r || s
  Node        → 20-byte canonical Ethereum address (EIP-55 checksum in memory)
"""

import os
from dataclasses import dataclass, field

import umbral_pre
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from web3 import Web3

from treasuremap.errors import FramingError

PUBLIC_KEY_LENGTH = 33
SIGNATURE_LENGTH = 64
ADDRESS_LENGTH = 20
CAPSULE_LENGTH = 105

PBKDF2_ITERATIONS = 600_000  # OWASP recommended minimum
SALT_SIZE = 16
SEED_SIZE = 32

_KEYRING_CONTEXT = b"treasuremap-keyring-seed-v1"
_DECRYPTING_LABEL = b"decrypting"
_SIGNING_LABEL = b"signing"
_POLICY_LABEL_PREFIX = b"policy:"


def public_key_to_bytes(key: umbral_pre.PublicKey) -> bytes:
    return bytes(key.to_compressed_bytes())


def public_key_from_bytes(data: bytes) -> umbral_pre.PublicKey:
    """Parse a compressed public key, raising FramingError on bad input."""
    if len(data) != PUBLIC_KEY_LENGTH:
        raise FramingError(f"Public key must be {PUBLIC_KEY_LENGTH} bytes, got {len(data)}")
    try:
        return umbral_pre.PublicKey.from_compressed_bytes(bytes(data))
    except ValueError as e:
        raise FramingError(f"Invalid public key: {e}") from e


def signature_to_bytes(signature: umbral_pre.Signature) -> bytes:
    return bytes(signature.to_be_bytes())


def signature_from_bytes(data: bytes) -> umbral_pre.Signature:
    """Parse a fixed-width signature, raising FramingError on bad input."""
    if len(data) != SIGNATURE_LENGTH:
        raise FramingError(f"Signature must be {SIGNATURE_LENGTH} bytes, got {len(data)}")
    try:
        return umbral_pre.Signature.from_be_bytes(bytes(data))
    except ValueError as e:
        raise FramingError(f"Invalid signature: {e}") from e


def to_canonical_address(checksum_address: str) -> bytes:
    """Convert a hex address (checksummed or not) to its 20 raw bytes."""
    canonical = bytes(Web3.to_bytes(hexstr=checksum_address))
    if len(canonical) != ADDRESS_LENGTH:
        raise FramingError(f"Address must be {ADDRESS_LENGTH} bytes, got {len(canonical)}")
    return canonical


def to_checksum_address(canonical_address: bytes) -> str:
    """Convert 20 raw address bytes to an EIP-55 checksum string."""
    if len(canonical_address) != ADDRESS_LENGTH:
        raise FramingError(
            f"Address must be {ADDRESS_LENGTH} bytes, got {len(canonical_address)}"
        )
    return Web3.to_checksum_address("0x" + bytes(canonical_address).hex())


def derive_seed(passphrase: str, salt: bytes, iterations: int = PBKDF2_ITERATIONS) -> bytes:
    """
    Derive a key-ring seed from a passphrase.

    PBKDF2 stretches the passphrase, HKDF domain-separates the result so
    the seed is independent from any other key derived from the same
    passphrase and salt.
    """
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=SEED_SIZE,
        salt=salt,
        iterations=iterations,
    )
    raw = kdf.derive(passphrase.encode("utf-8"))
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=SEED_SIZE,
        salt=salt,
        info=_KEYRING_CONTEXT,
    )
    return hkdf.derive(raw)


@dataclass(frozen=True)
class Keyring:
    """
    A party's keys, all derived from one Umbral secret key factory.

    decrypting key  — opens capsules encrypted to `decrypting_key`
    signing key     — signatures checked against `verifying_key`
    policy keys     — one delegating key per policy label (publishers only)
    """
    factory: umbral_pre.SecretKeyFactory = field(repr=False)

    @classmethod
    def random(cls) -> "Keyring":
        return cls(umbral_pre.SecretKeyFactory.random())

    @classmethod
    def from_passphrase(
        cls,
        passphrase: str,
        salt: bytes,
        iterations: int = PBKDF2_ITERATIONS,
    ) -> "Keyring":
        """Derive the same keys every time for the same passphrase and salt."""
        seed = derive_seed(passphrase, salt, iterations)
        return cls(umbral_pre.SecretKeyFactory.from_secure_randomness(seed))

    @staticmethod
    def new_salt() -> bytes:
        return os.urandom(SALT_SIZE)

    @property
    def decrypting_secret(self) -> umbral_pre.SecretKey:
        return self.factory.make_key(_DECRYPTING_LABEL)

    @property
    def signing_secret(self) -> umbral_pre.SecretKey:
        return self.factory.make_key(_SIGNING_LABEL)

    def policy_secret(self, label: bytes | str) -> umbral_pre.SecretKey:
        """The delegating secret for a policy label."""
        if isinstance(label, str):
            label = label.encode("utf-8")
        return self.factory.make_key(_POLICY_LABEL_PREFIX + label)

    def policy_encrypting_key(self, label: bytes | str) -> umbral_pre.PublicKey:
        return self.policy_secret(label).public_key()

    @property
    def decrypting_key(self) -> umbral_pre.PublicKey:
        return self.decrypting_secret.public_key()

    @property
    def verifying_key(self) -> umbral_pre.PublicKey:
        return self.signing_secret.public_key()

    @property
    def signer(self) -> umbral_pre.Signer:
        return umbral_pre.Signer(self.signing_secret)

    def sign(self, message: bytes) -> umbral_pre.Signature:
        return self.signer.sign(message)


def verify_signature(
    signature: umbral_pre.Signature,
    verifying_key: umbral_pre.PublicKey,
    message: bytes,
) -> bool:
    """Check a signature over a message."""
    return bool(signature.verify(verifying_key, message))


def capsule_to_bytes(capsule: umbral_pre.Capsule) -> bytes:
    data = bytes(capsule)
    if len(data) != CAPSULE_LENGTH:
        raise FramingError(f"Capsule must be {CAPSULE_LENGTH} bytes, got {len(data)}")
    return data


def split_capsule(data: bytes) -> tuple[umbral_pre.Capsule, bytes]:
    """
    Read a fixed-width capsule from the front of a buffer.

    Returns:
        (capsule, remainder)

    Raises:
        FramingError: If the buffer is too short or the capsule is invalid.
    """
    if len(data) < CAPSULE_LENGTH:
        raise FramingError(f"Expected a {CAPSULE_LENGTH}-byte capsule, got {len(data)} bytes")
    try:
        capsule = umbral_pre.Capsule.from_bytes(bytes(data[:CAPSULE_LENGTH]))
    except ValueError as e:
        raise FramingError(f"Invalid capsule: {e}") from e
    return capsule, data[CAPSULE_LENGTH:]
