"""
Treasure Map
Which node holds which encrypted key fragment for a policy.

Three layers, each wrapping the previous one:

  TreasureMap            — threshold, HRAC, policy key, publisher key and
                           the destination table (address → EncryptedKeyFrag)
  AuthorizedTreasureMap  — publisher signature over reader key || map bytes.
                           The map cannot be redirected to another reader.
  EncryptedTreasureMap   — the authorized map encrypted to the reader.
                           Confidentiality only: verify() is a separate step.

Destination order on the wire is the table's insertion order. Parsing
keeps wire order. Two maps with the same entries in a different order
compare equal but serialize differently.
"""

import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping, Sequence

import umbral_pre

from treasuremap.errors import AuthenticationError, FramingError, ValidationError
from treasuremap.keys import (
    ADDRESS_LENGTH,
    PUBLIC_KEY_LENGTH,
    SIGNATURE_LENGTH,
    Keyring,
    capsule_to_bytes,
    public_key_from_bytes,
    public_key_to_bytes,
    signature_from_bytes,
    signature_to_bytes,
    split_capsule,
    to_canonical_address,
    to_checksum_address,
    verify_signature,
)
from treasuremap.policies.hrac import HRAC, HRAC_LENGTH
from treasuremap.policies.key_frag import AuthorizedKeyFrag, EncryptedKeyFrag
from treasuremap.porter import Ursula
from treasuremap.versioning import (
    Versioned,
    VersionHandler,
    decode_variable_length,
    encode_variable_length,
    split,
)

logger = logging.getLogger(__name__)

MIN_THRESHOLD = 1
MAX_THRESHOLD = 255


def check_threshold(threshold: int, destinations: int) -> None:
    """
    Raises:
        ValidationError: If threshold is outside 1..255 or exceeds the
            number of destinations.
    """
    if not MIN_THRESHOLD <= threshold <= MAX_THRESHOLD:
        raise ValidationError(
            f"The threshold must be between {MIN_THRESHOLD} and {MAX_THRESHOLD}, got {threshold}"
        )
    if destinations < threshold:
        raise ValidationError(
            f"The number of destinations ({destinations}) must be equal or "
            f"greater than the threshold ({threshold})"
        )


@dataclass(frozen=True, eq=False)
class TreasureMap(Versioned):
    """
    The destination table of a policy.

    Args:
        threshold: Fragments needed to open a capsule (1..255).
        hrac: The policy id.
        policy_encrypting_key: The key data is encrypted to.
        publisher_verifying_key: The key authorizations are checked against.
        destinations: Checksum address → EncryptedKeyFrag.
    """

    BRAND = "TMap"
    VERSION = (1, 0)

    threshold: int
    hrac: HRAC
    policy_encrypting_key: umbral_pre.PublicKey
    publisher_verifying_key: umbral_pre.PublicKey
    destinations: Mapping[str, EncryptedKeyFrag]

    def __post_init__(self):
        check_threshold(self.threshold, len(self.destinations))
        object.__setattr__(self, "destinations", MappingProxyType(dict(self.destinations)))

    @classmethod
    def construct_by_publisher(
        cls,
        hrac: HRAC,
        publisher: Keyring,
        nodes: Sequence[Ursula],
        verified_kfrags: Sequence[umbral_pre.VerifiedKeyFrag],
        threshold: int,
        policy_encrypting_key: umbral_pre.PublicKey,
    ) -> "TreasureMap":
        """
        Authorize and encrypt one fragment per node.

        Nodes and fragments are paired by position.

        Raises:
            ValidationError: On a bad threshold, too few nodes, mismatched
                sequence lengths or a repeated node address.
        """
        check_threshold(threshold, len(nodes))
        if len(nodes) != len(verified_kfrags):
            raise ValidationError(
                f"Got {len(nodes)} nodes for {len(verified_kfrags)} key fragments"
            )

        signer = publisher.signer
        destinations: dict[str, EncryptedKeyFrag] = {}
        for node, verified_kfrag in zip(nodes, verified_kfrags):
            if node.checksum_address in destinations:
                raise ValidationError(f"Node {node.checksum_address} appears more than once")
            authorized = AuthorizedKeyFrag.construct_by_publisher(signer, hrac, verified_kfrag)
            destinations[node.checksum_address] = EncryptedKeyFrag.author(
                node.encrypting_key, authorized
            )

        logger.debug("Built treasure map for %s with %d destinations", hrac, len(destinations))
        return cls(
            threshold,
            hrac,
            policy_encrypting_key,
            publisher.verifying_key,
            destinations,
        )

    def encrypt(self, publisher: Keyring, recipient_key: umbral_pre.PublicKey) -> "EncryptedTreasureMap":
        """Sign the map for one reader and encrypt it to them."""
        return EncryptedTreasureMap.construct_by_publisher(self, publisher, recipient_key)

    def _payload(self) -> bytes:
        nodes = b"".join(
            to_canonical_address(address) + encrypted_kfrag.to_bytes()
            for address, encrypted_kfrag in self.destinations.items()
        )
        return (
            self.threshold.to_bytes(1, "big")
            + bytes(self.hrac)
            + public_key_to_bytes(self.policy_encrypting_key)
            + public_key_to_bytes(self.publisher_verifying_key)
            + encode_variable_length(nodes)
        )

    @classmethod
    def _version_handler(cls) -> VersionHandler:
        return VersionHandler(
            brand=cls.BRAND,
            version=cls.VERSION,
            current_decoder=cls._decode,
        )

    @classmethod
    def _decode(cls, payload: bytes) -> "TreasureMap":
        threshold_bytes, remainder = split(payload, 1)
        hrac_bytes, remainder = split(remainder, HRAC_LENGTH)
        policy_key_bytes, remainder = split(remainder, PUBLIC_KEY_LENGTH)
        publisher_key_bytes, remainder = split(remainder, PUBLIC_KEY_LENGTH)
        nodes, remainder = decode_variable_length(remainder)
        if remainder:
            raise FramingError(f"{len(remainder)} trailing bytes after treasure map")

        return cls(
            threshold_bytes[0],
            HRAC(hrac_bytes),
            public_key_from_bytes(policy_key_bytes),
            public_key_from_bytes(publisher_key_bytes),
            cls._decode_destinations(nodes),
        )

    @staticmethod
    def _decode_destinations(data: bytes) -> dict[str, EncryptedKeyFrag]:
        destinations: dict[str, EncryptedKeyFrag] = {}
        while data:
            address_bytes, data = split(data, ADDRESS_LENGTH)
            address = to_checksum_address(address_bytes)
            if address in destinations:
                raise FramingError(f"Destination {address} is listed more than once")
            destinations[address], data = EncryptedKeyFrag.take(data)
        return destinations

    def __eq__(self, other) -> bool:
        if not isinstance(other, TreasureMap):
            return NotImplemented
        return (
            self.threshold == other.threshold
            and self.hrac == other.hrac
            and public_key_to_bytes(self.policy_encrypting_key)
            == public_key_to_bytes(other.policy_encrypting_key)
            and public_key_to_bytes(self.publisher_verifying_key)
            == public_key_to_bytes(other.publisher_verifying_key)
            and dict(self.destinations) == dict(other.destinations)
        )

    def __hash__(self) -> int:
        return hash((self.threshold, self.hrac, frozenset(self.destinations)))

    def __repr__(self) -> str:
        return (
            f"TreasureMap(threshold={self.threshold}, hrac={self.hrac.hex()}, "
            f"destinations={len(self.destinations)})"
        )


@dataclass(frozen=True, eq=False)
class AuthorizedTreasureMap(Versioned):
    """A treasure map signed by its publisher for one specific reader."""

    BRAND = "AMap"
    VERSION = (1, 0)

    signature: umbral_pre.Signature
    treasure_map: TreasureMap

    @staticmethod
    def _signed_message(recipient_key: umbral_pre.PublicKey, treasure_map: TreasureMap) -> bytes:
        return public_key_to_bytes(recipient_key) + treasure_map.to_bytes()

    @classmethod
    def construct_by_publisher(
        cls,
        signer: umbral_pre.Signer,
        recipient_key: umbral_pre.PublicKey,
        treasure_map: TreasureMap,
    ) -> "AuthorizedTreasureMap":
        signature = signer.sign(cls._signed_message(recipient_key, treasure_map))
        return cls(signature, treasure_map)

    def verify(
        self,
        recipient_key: umbral_pre.PublicKey,
        publisher_verifying_key: umbral_pre.PublicKey,
    ) -> TreasureMap:
        """
        Check the publisher signed this map for this recipient.

        Returns:
            The embedded TreasureMap.

        Raises:
            AuthenticationError: If the signature does not match.
        """
        message = self._signed_message(recipient_key, self.treasure_map)
        if not verify_signature(self.signature, publisher_verifying_key, message):
            raise AuthenticationError("Invalid publisher signature on treasure map")
        return self.treasure_map

    def _payload(self) -> bytes:
        return signature_to_bytes(self.signature) + self.treasure_map.to_bytes()

    @classmethod
    def _version_handler(cls) -> VersionHandler:
        return VersionHandler(
            brand=cls.BRAND,
            version=cls.VERSION,
            current_decoder=cls._decode,
        )

    @classmethod
    def _decode(cls, payload: bytes) -> "AuthorizedTreasureMap":
        signature_bytes, map_bytes = split(payload, SIGNATURE_LENGTH)
        return cls(signature_from_bytes(signature_bytes), TreasureMap.from_bytes(map_bytes))


@dataclass(frozen=True, eq=False)
class EncryptedTreasureMap(Versioned):
    """An AuthorizedTreasureMap encrypted to the reader's decrypting key."""

    BRAND = "EMap"
    VERSION = (1, 0)

    capsule: umbral_pre.Capsule
    ciphertext: bytes

    def __post_init__(self):
        object.__setattr__(self, "ciphertext", bytes(self.ciphertext))

    @classmethod
    def construct_by_publisher(
        cls,
        treasure_map: TreasureMap,
        publisher: Keyring,
        recipient_key: umbral_pre.PublicKey,
    ) -> "EncryptedTreasureMap":
        authorized = AuthorizedTreasureMap.construct_by_publisher(
            publisher.signer, recipient_key, treasure_map
        )
        capsule, ciphertext = umbral_pre.encrypt(recipient_key, authorized.to_bytes())
        return cls(capsule, ciphertext)

    def decrypt(self, reader_secret: umbral_pre.SecretKey) -> AuthorizedTreasureMap:
        """
        Decrypt to the authorized map.

        The result is NOT verified. Call verify() on it, or use
        decrypt_and_verify(), before trusting its destinations.
        """
        try:
            plaintext = umbral_pre.decrypt_original(reader_secret, self.capsule, self.ciphertext)
        except ValueError as e:
            raise AuthenticationError(f"Cannot decrypt treasure map: {e}") from e
        return AuthorizedTreasureMap.from_bytes(plaintext)

    def decrypt_and_verify(
        self,
        reader: Keyring,
        publisher_verifying_key: umbral_pre.PublicKey,
    ) -> TreasureMap:
        authorized = self.decrypt(reader.decrypting_secret)
        return authorized.verify(reader.decrypting_key, publisher_verifying_key)

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
    def _decode(cls, payload: bytes) -> "EncryptedTreasureMap":
        capsule, remainder = split_capsule(payload)
        ciphertext, remainder = decode_variable_length(remainder)
        if remainder:
            raise FramingError(f"{len(remainder)} trailing bytes after encrypted treasure map")
        return cls(capsule, ciphertext)

    def __eq__(self, other) -> bool:
        if not isinstance(other, EncryptedTreasureMap):
            return NotImplemented
        return self.to_bytes() == other.to_bytes()

    def __hash__(self) -> int:
        return hash(self.to_bytes())
