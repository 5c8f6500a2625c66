"""
HRAC — Hashed Resource Access Code
A deterministic policy identifier binding publisher, reader and label.

The same (publisher, reader, label) triple always produces the same id.
It is the policy id on chain and the value every key fragment
authorization signs, so a fragment cannot be relabeled under another policy.
"""

from dataclasses import dataclass

from web3 import Web3

from treasuremap.errors import FramingError

HRAC_LENGTH = 16


@dataclass(frozen=True)
class HRAC:
    """A 16-byte policy identifier."""
    value: bytes

    def __post_init__(self):
        if len(self.value) != HRAC_LENGTH:
            raise FramingError(f"HRAC must be {HRAC_LENGTH} bytes, got {len(self.value)}")

    @classmethod
    def derive(
        cls,
        publisher_verifying_key: bytes,
        reader_verifying_key: bytes,
        label: bytes | str,
    ) -> "HRAC":
        """Keccak-256 over publisher key || reader key || label, truncated."""
        if isinstance(label, str):
            label = label.encode("utf-8")
        digest = Web3.keccak(
            primitive=bytes(publisher_verifying_key) + bytes(reader_verifying_key) + label
        )
        return cls(bytes(digest)[:HRAC_LENGTH])

    def __bytes__(self) -> bytes:
        return self.value

    def hex(self) -> str:
        return self.value.hex()

    def __str__(self) -> str:
        return f"HRAC:{self.value.hex()}"
