"""
Base class for policy contract agents.
Every on-chain policy registry implements this interface.
"""

from abc import ABC, abstractmethod
from typing import Sequence


class PolicyAgent(ABC):
    """Abstract base class for the contract that registers and pays for policies."""

    @abstractmethod
    async def owner_address(self) -> str:
        """Checksum address of the account that sends transactions."""

    @abstractmethod
    async def create_policy(
        self,
        policy_id: bytes,
        value: int,
        expiration_timestamp: int,
        node_addresses: Sequence[str],
        owner_address: str,
    ) -> dict:
        """
        Register and pay for a policy.

        Args:
            policy_id: The 16-byte HRAC.
            value: Total payment in wei.
            expiration_timestamp: Unix time the policy ends.
            node_addresses: Nodes holding the policy's fragments.
            owner_address: Account that owns (and may revoke) the policy.

        Returns:
            Transaction receipt summary (tx hash, block, success).
        """

    @abstractmethod
    async def revoke_policy(self, policy_id: bytes) -> dict:
        """Disable a policy on chain. Returns a receipt summary."""

    @abstractmethod
    async def policy_exists(self, policy_id: bytes) -> bool:
        """Whether the policy id was ever registered."""

    @abstractmethod
    async def is_policy_disabled(self, policy_id: bytes) -> bool:
        """Whether the policy was revoked. Raises ContractError if it does not exist."""

    @abstractmethod
    async def minimum_fee_rate(self) -> int:
        """Global minimum fee rate, in wei per node per period."""
