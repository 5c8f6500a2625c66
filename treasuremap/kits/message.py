"""
Message Kits
An encrypted payload, and the same payload while fragments are collected.

MessageKit       — capsule + ciphertext, encrypted to a policy key.
PolicyMessageKit — a MessageKit plus the fragments retrieved so far and the
                   threshold. It is decryptable by the reader once the
                   number of distinct node fragments reaches the threshold.

Both are immutable. with_result() returns a new kit.
"""

from dataclasses import dataclass

import umbral_pre

from treasuremap.errors import (
    AuthenticationError,
    FramingError,
    InsufficientFragments,
    ValidationError,
)
from treasuremap.keys import capsule_to_bytes, split_capsule
from treasuremap.kits.retrieval import RetrievalKit, RetrievalResult
from treasuremap.versioning import (
    Versioned,
    VersionHandler,
    decode_variable_length,
    encode_variable_length,
)


@dataclass(frozen=True, eq=False)
class MessageKit(Versioned):
    """A message encrypted for an intended recipient key."""

    BRAND = "MKit"
    VERSION = (1, 0)

    capsule: umbral_pre.Capsule
    ciphertext: bytes

    def __post_init__(self):
        object.__setattr__(self, "ciphertext", bytes(self.ciphertext))

    @classmethod
    def author(cls, recipient_key: umbral_pre.PublicKey, plaintext: bytes) -> "MessageKit":
        capsule, ciphertext = umbral_pre.encrypt(recipient_key, plaintext)
        return cls(capsule, ciphertext)

    def decrypt(self, secret_key: umbral_pre.SecretKey) -> bytes:
        """Decrypt directly with the key the message was encrypted to."""
        try:
            return bytes(umbral_pre.decrypt_original(secret_key, self.capsule, self.ciphertext))
        except ValueError as e:
            raise AuthenticationError(f"Cannot decrypt message: {e}") from e

    def as_policy_kit(
        self,
        policy_encrypting_key: umbral_pre.PublicKey,
        threshold: int,
    ) -> "PolicyMessageKit":
        return PolicyMessageKit.from_message_kit(self, policy_encrypting_key, threshold)

    def _payload(self) -> bytes:
        return capsule_to_bytes(self.capsule) + encode_variable_length(self.ciphertext)

    @classmethod
    def _version_handler(cls) -> VersionHandler:
        return VersionHandler(
            brand=cls.BRAND,
            version=cls.VERSION,
            current_decoder=cls._decode,
        )

    @classmethod
    def _decode(cls, payload: bytes) -> "MessageKit":
        capsule, remainder = split_capsule(payload)
        ciphertext, remainder = decode_variable_length(remainder)
        if remainder:
            raise FramingError(f"{len(remainder)} trailing bytes after message kit")
        return cls(capsule, ciphertext)

    def __eq__(self, other) -> bool:
        if not isinstance(other, MessageKit):
            return NotImplemented
        return bytes(self.capsule) == bytes(other.capsule) and self.ciphertext == other.ciphertext

    def __hash__(self) -> int:
        return hash(self.to_bytes())


@dataclass(frozen=True, eq=False)
class PolicyMessageKit:
    """
    A MessageKit accumulating re-encrypted fragments toward its threshold.

    Args:
        policy_encrypting_key: The policy key the message was encrypted to.
        threshold: Distinct node fragments needed to decrypt.
        result: Fragments collected so far.
        message_kit: The encrypted message.
    """

    policy_encrypting_key: umbral_pre.PublicKey
    threshold: int
    result: RetrievalResult
    message_kit: MessageKit

    def __post_init__(self):
        if self.threshold < 1:
            raise ValidationError(f"Threshold must be at least 1, got {self.threshold}")

    @classmethod
    def from_message_kit(
        cls,
        message_kit: MessageKit,
        policy_encrypting_key: umbral_pre.PublicKey,
        threshold: int,
    ) -> "PolicyMessageKit":
        return cls(policy_encrypting_key, threshold, RetrievalResult.empty(), message_kit)

    @property
    def capsule(self) -> umbral_pre.Capsule:
        return self.message_kit.capsule

    @property
    def ciphertext(self) -> bytes:
        return self.message_kit.ciphertext

    def attach_fragments(self) -> list[umbral_pre.VerifiedCapsuleFrag]:
        """
        Every collected fragment, ready to open the capsule with.

        Raises:
            InsufficientFragments: If nothing has been collected yet.
        """
        cfrags = list(self.result.cfrags.values())
        if not cfrags:
            raise InsufficientFragments("Failed to attach any capsule fragments")
        return cfrags

    def as_retrieval_kit(self) -> RetrievalKit:
        return RetrievalKit(self.capsule, self.result.addresses)

    def is_decryptable_by_receiver(self) -> bool:
        return len(self.result) >= self.threshold

    def with_result(self, result: RetrievalResult) -> "PolicyMessageKit":
        """A new kit with `result` merged into the fragments collected so far."""
        return PolicyMessageKit(
            self.policy_encrypting_key,
            self.threshold,
            self.result.with_result(result),
            self.message_kit,
        )

    def decrypt(self, reader_secret: umbral_pre.SecretKey) -> bytes:
        """
        Open the capsule with the collected fragments and decrypt.

        Raises:
            InsufficientFragments: If fewer than `threshold` fragments were collected.
        """
        if not self.is_decryptable_by_receiver():
            raise InsufficientFragments(
                f"Need {self.threshold} capsule fragments, have {len(self.result)}"
            )
        try:
            return bytes(umbral_pre.decrypt_reencrypted(
                reader_secret,
                self.policy_encrypting_key,
                self.capsule,
                self.attach_fragments(),
                self.ciphertext,
            ))
        except ValueError as e:
            raise AuthenticationError(f"Cannot decrypt re-encrypted message: {e}") from e

    def to_bytes(self) -> bytes:
        return self.message_kit.to_bytes()

    def __bytes__(self) -> bytes:
        return self.to_bytes()
