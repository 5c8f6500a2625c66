"""
Revocation
Per-node signed orders to drop a policy's key fragment.

Each order covers one destination of a treasure map:

    header | b"REVOKE-" | node address (20) | EncryptedKeyFrag

and is signed by the publisher. A node verifies the order it receives
against the publisher's verifying key and, if it holds that exact
fragment, deletes it. Orders are independent: there is no batch
signature, and delivering only some of them is a valid partial state.
"""

from dataclasses import dataclass
from types import MappingProxyType

import umbral_pre

from treasuremap.errors import AuthenticationError, FramingError
from treasuremap.keys import (
    ADDRESS_LENGTH,
    SIGNATURE_LENGTH,
    signature_from_bytes,
    signature_to_bytes,
    to_canonical_address,
    to_checksum_address,
    verify_signature,
)
from treasuremap.policies.key_frag import EncryptedKeyFrag
from treasuremap.policies.treasure_map import TreasureMap
from treasuremap.versioning import Versioned, VersionHandler, split

REVOCATION_PREFIX = b"REVOKE-"


@dataclass(frozen=True, eq=False)
class RevocationOrder(Versioned):
    """
    A signed request for one node to forget one fragment.

    Build with RevocationOrder.sign(...) to sign now, or pass a signature
    received from elsewhere to the constructor.
    """

    BRAND = "Revo"
    VERSION = (1, 0)

    node_address: str
    encrypted_kfrag: EncryptedKeyFrag
    signature: umbral_pre.Signature

    @classmethod
    def sign(
        cls,
        signer: umbral_pre.Signer,
        node_address: str,
        encrypted_kfrag: EncryptedKeyFrag,
    ) -> "RevocationOrder":
        payload = cls.signed_payload(node_address, encrypted_kfrag)
        return cls(node_address, encrypted_kfrag, signer.sign(payload))

    @classmethod
    def signed_payload(cls, node_address: str, encrypted_kfrag: EncryptedKeyFrag) -> bytes:
        return (
            cls.header()
            + REVOCATION_PREFIX
            + to_canonical_address(node_address)
            + encrypted_kfrag.to_bytes()
        )

    @property
    def payload(self) -> bytes:
        return self.signed_payload(self.node_address, self.encrypted_kfrag)

    def verify(self, publisher_verifying_key: umbral_pre.PublicKey) -> tuple[str, EncryptedKeyFrag]:
        """
        Check the publisher signed this order.

        Returns:
            (node address, fragment) the order revokes.

        Raises:
            AuthenticationError: If the signature does not match.
        """
        if not verify_signature(self.signature, publisher_verifying_key, self.payload):
            raise AuthenticationError(
                f"Invalid publisher signature on revocation order for {self.node_address}"
            )
        return self.node_address, self.encrypted_kfrag

    def _payload(self) -> bytes:
        return (
            REVOCATION_PREFIX
            + to_canonical_address(self.node_address)
            + self.encrypted_kfrag.to_bytes()
            + signature_to_bytes(self.signature)
        )

    @classmethod
    def _version_handler(cls) -> VersionHandler:
        return VersionHandler(
            brand=cls.BRAND,
            version=cls.VERSION,
            current_decoder=cls._decode,
        )

    @classmethod
    def _decode(cls, payload: bytes) -> "RevocationOrder":
        prefix, remainder = split(payload, len(REVOCATION_PREFIX))
        if prefix != REVOCATION_PREFIX:
            raise FramingError(f"Invalid revocation prefix {prefix!r}")
        address_bytes, remainder = split(remainder, ADDRESS_LENGTH)
        encrypted_kfrag, remainder = EncryptedKeyFrag.take(remainder)
        signature_bytes, remainder = split(remainder, SIGNATURE_LENGTH)
        if remainder:
            raise FramingError(f"{len(remainder)} trailing bytes after revocation order")
        return cls(
            to_checksum_address(address_bytes),
            encrypted_kfrag,
            signature_from_bytes(signature_bytes),
        )

    def __eq__(self, other) -> bool:
        if not isinstance(other, RevocationOrder):
            return NotImplemented
        return self.to_bytes() == other.to_bytes()

    def __hash__(self) -> int:
        return hash(self.to_bytes())

    def __repr__(self) -> str:
        return f"RevocationOrder(node_address={self.node_address!r})"


@dataclass(frozen=True)
class RevocationKit:
    """One RevocationOrder per destination of a treasure map."""
    revocations: MappingProxyType

    __hash__ = None

    @classmethod
    def build(cls, treasure_map: TreasureMap, signer: umbral_pre.Signer) -> "RevocationKit":
        revocations = {
            address: RevocationOrder.sign(signer, address, encrypted_kfrag)
            for address, encrypted_kfrag in treasure_map.destinations.items()
        }
        return cls(MappingProxyType(revocations))

    def __getitem__(self, node_address: str) -> RevocationOrder:
        return self.revocations[node_address]

    def __iter__(self):
        return iter(self.revocations.values())

    def __len__(self) -> int:
        return len(self.revocations)

    @property
    def addresses(self) -> frozenset[str]:
        return frozenset(self.revocations)
