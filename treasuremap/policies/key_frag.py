"""
Key Fragment Authorization
Binds a re-encryption key fragment to a policy, then seals it for one node.

  1. The publisher signs HRAC || fragment bytes (AuthorizedKeyFrag).
     A node cannot present the fragment under a different policy id.
  2. The authorized fragment is encrypted to the node's public key
     (EncryptedKeyFrag). Only that node can read it.

Wire forms:
  AuthorizedKeyFrag: header | signature (64) | fragment
  EncryptedKeyFrag:  capsule (105) | varlen(ciphertext)
"""

from dataclasses import dataclass

import umbral_pre

from treasuremap.errors import AuthenticationError, FramingError
from treasuremap.keys import (
    SIGNATURE_LENGTH,
    capsule_to_bytes,
    signature_from_bytes,
    signature_to_bytes,
    split_capsule,
    verify_signature,
)
from treasuremap.policies.hrac import HRAC
from treasuremap.versioning import (
    Versioned,
    VersionHandler,
    decode_variable_length,
    encode_variable_length,
    split,
)


@dataclass(frozen=True, eq=False)
class AuthorizedKeyFrag(Versioned):
    """A key fragment plus the publisher's signature binding it to an HRAC."""

    BRAND = "AKFr"
    VERSION = (1, 0)

    signature: umbral_pre.Signature
    kfrag: umbral_pre.KeyFrag

    @classmethod
    def construct_by_publisher(
        cls,
        signer: umbral_pre.Signer,
        hrac: HRAC,
        verified_kfrag: umbral_pre.VerifiedKeyFrag,
    ) -> "AuthorizedKeyFrag":
        kfrag = umbral_pre.KeyFrag.from_bytes(bytes(verified_kfrag))
        signature = signer.sign(bytes(hrac) + bytes(kfrag))
        return cls(signature, kfrag)

    def verify(
        self,
        hrac: HRAC,
        publisher_verifying_key: umbral_pre.PublicKey,
        delegating_key: umbral_pre.PublicKey | None = None,
        receiving_key: umbral_pre.PublicKey | None = None,
    ) -> umbral_pre.VerifiedKeyFrag:
        """
        Check the authorization and the fragment itself.

        This is what a node runs on the fragment it was sent.

        Raises:
            AuthenticationError: If the signature is not over this HRAC and
                fragment, or the fragment fails its own verification.
        """
        if not verify_signature(
            self.signature, publisher_verifying_key, bytes(hrac) + bytes(self.kfrag)
        ):
            raise AuthenticationError(f"Fragment is not authorized for {hrac}")
        try:
            return self.kfrag.verify(publisher_verifying_key, delegating_key, receiving_key)
        except umbral_pre.VerificationError as e:
            raise AuthenticationError(f"Key fragment failed verification: {e}") from e

    def _payload(self) -> bytes:
        return signature_to_bytes(self.signature) + bytes(self.kfrag)

    @classmethod
    def _version_handler(cls) -> VersionHandler:
        return VersionHandler(
            brand=cls.BRAND,
            version=cls.VERSION,
            current_decoder=cls._decode,
        )

    @classmethod
    def _decode(cls, payload: bytes) -> "AuthorizedKeyFrag":
        signature_bytes, kfrag_bytes = split(payload, SIGNATURE_LENGTH)
        try:
            kfrag = umbral_pre.KeyFrag.from_bytes(kfrag_bytes)
        except ValueError as e:
            raise FramingError(f"Invalid key fragment: {e}") from e
        return cls(signature_from_bytes(signature_bytes), kfrag)

    def __eq__(self, other) -> bool:
        if not isinstance(other, AuthorizedKeyFrag):
            return NotImplemented
        return self.to_bytes() == other.to_bytes()

    def __hash__(self) -> int:
        return hash(self.to_bytes())


@dataclass(frozen=True, eq=False)
class EncryptedKeyFrag:
    """An AuthorizedKeyFrag encrypted to a single node."""

    capsule: umbral_pre.Capsule
    ciphertext: bytes

    def __post_init__(self):
        object.__setattr__(self, "ciphertext", bytes(self.ciphertext))

    @classmethod
    def author(
        cls,
        node_encrypting_key: umbral_pre.PublicKey,
        authorized_kfrag: AuthorizedKeyFrag,
    ) -> "EncryptedKeyFrag":
        capsule, ciphertext = umbral_pre.encrypt(node_encrypting_key, authorized_kfrag.to_bytes())
        return cls(capsule, ciphertext)

    def decrypt(self, node_secret_key: umbral_pre.SecretKey) -> AuthorizedKeyFrag:
        """Open the fragment with the node's decrypting key."""
        try:
            plaintext = umbral_pre.decrypt_original(node_secret_key, self.capsule, self.ciphertext)
        except ValueError as e:
            raise AuthenticationError(f"Cannot decrypt key fragment: {e}") from e
        return AuthorizedKeyFrag.from_bytes(plaintext)

    def to_bytes(self) -> bytes:
        return capsule_to_bytes(self.capsule) + encode_variable_length(self.ciphertext)

    def __bytes__(self) -> bytes:
        return self.to_bytes()

    @classmethod
    def take(cls, data: bytes) -> tuple["EncryptedKeyFrag", bytes]:
        """
        Read one fragment from the front of a buffer.

        Returns:
            (fragment, remainder) so records can be read back to back.
        """
        capsule, remainder = split_capsule(data)
        ciphertext, remainder = decode_variable_length(remainder)
        return cls(capsule, ciphertext), remainder

    @classmethod
    def from_bytes(cls, data: bytes) -> "EncryptedKeyFrag":
        encrypted_kfrag, remainder = cls.take(bytes(data))
        if remainder:
            raise FramingError(f"{len(remainder)} trailing bytes after encrypted key fragment")
        return encrypted_kfrag

    def __eq__(self, other) -> bool:
        if not isinstance(other, EncryptedKeyFrag):
            return NotImplemented
        return bytes(self.capsule) == bytes(other.capsule) and self.ciphertext == other.ciphertext

    def __hash__(self) -> int:
        return hash(self.to_bytes())

    def __repr__(self) -> str:
        return f"EncryptedKeyFrag(ciphertext={len(self.ciphertext)} bytes)"
