"""
Retrieval
What a reader sends to nodes, and what it collects from them.

RetrievalKit    — outbound: the capsule to re-encrypt plus the nodes that
                  already answered, so they are not asked again.
RetrievalResult — inbound: verified capsule fragments keyed by node address.
                  Merging is last-write-wins per address, union otherwise,
                  so results fetched in parallel can be folded in any order.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, Mapping

import umbral_pre

from treasuremap.errors import FramingError
from treasuremap.keys import (
    ADDRESS_LENGTH,
    capsule_to_bytes,
    split_capsule,
    to_canonical_address,
    to_checksum_address,
)
from treasuremap.versioning import (
    Versioned,
    VersionHandler,
    decode_variable_length,
    encode_variable_length,
    split,
)


@dataclass(frozen=True)
class RetrievalResult:
    """Verified capsule fragments collected so far, by node address."""
    cfrags: Mapping[str, umbral_pre.VerifiedCapsuleFrag] = field(default_factory=dict)

    # Compares like a dict, so it is unhashable like one
    __hash__ = None

    def __post_init__(self):
        # Freeze a private copy so callers cannot mutate it under us
        object.__setattr__(self, "cfrags", MappingProxyType(dict(self.cfrags)))

    @classmethod
    def empty(cls) -> "RetrievalResult":
        return cls()

    @property
    def addresses(self) -> frozenset[str]:
        return frozenset(self.cfrags)

    def with_result(self, other: "RetrievalResult") -> "RetrievalResult":
        """Merge another result into a new one. `other` wins on shared addresses."""
        return RetrievalResult({**self.cfrags, **other.cfrags})

    def __len__(self) -> int:
        return len(self.cfrags)


@dataclass(frozen=True, eq=False)
class RetrievalKit(Versioned):
    """
    A re-encryption request descriptor.

    Args:
        capsule: The capsule nodes should re-encrypt.
        queried_addresses: Nodes that already returned a fragment for it.
    """

    BRAND = "RKit"
    VERSION = (1, 0)

    capsule: umbral_pre.Capsule
    queried_addresses: Iterable[str] = frozenset()

    def __post_init__(self):
        object.__setattr__(self, "queried_addresses", frozenset(self.queried_addresses))

    def _payload(self) -> bytes:
        addresses = b"".join(
            to_canonical_address(address) for address in sorted(self.queried_addresses)
        )
        return capsule_to_bytes(self.capsule) + encode_variable_length(addresses)

    @classmethod
    def _version_handler(cls) -> VersionHandler:
        return VersionHandler(
            brand=cls.BRAND,
            version=cls.VERSION,
            current_decoder=cls._decode,
        )

    @classmethod
    def _decode(cls, payload: bytes) -> "RetrievalKit":
        capsule, remainder = split_capsule(payload)
        address_block, remainder = decode_variable_length(remainder)
        if remainder:
            raise FramingError(f"{len(remainder)} trailing bytes after retrieval kit")
        if len(address_block) % ADDRESS_LENGTH:
            raise FramingError(
                f"Address block of {len(address_block)} bytes is not a multiple of {ADDRESS_LENGTH}"
            )
        addresses = []
        while address_block:
            address, address_block = split(address_block, ADDRESS_LENGTH)
            addresses.append(to_checksum_address(address))
        return cls(capsule, addresses)

    def __eq__(self, other) -> bool:
        if not isinstance(other, RetrievalKit):
            return NotImplemented
        return (
            bytes(self.capsule) == bytes(other.capsule)
            and self.queried_addresses == other.queried_addresses
        )

    def __hash__(self) -> int:
        return hash((bytes(self.capsule), self.queried_addresses))
