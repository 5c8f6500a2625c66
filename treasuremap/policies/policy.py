"""
Policy Assembly
Validates a policy's economics and turns key fragments into an enacted policy.

Enactment:
  1. Register and pay for the policy on chain (PolicyAgent)
  2. Authorize and encrypt one fragment per node (TreasureMap)
  3. Sign the map for the reader and encrypt it to them (EncryptedTreasureMap)
  4. Pre-sign one revocation order per node (RevocationKit)

The result is an EnactedPolicy: everything the reader needs (via a side
channel) plus the revocation kit the publisher keeps.
"""

import logging
import math
import time
from dataclasses import dataclass
from typing import Sequence

import umbral_pre

from treasuremap.agents.base import PolicyAgent
from treasuremap.errors import ValidationError
from treasuremap.keys import Keyring, public_key_to_bytes
from treasuremap.kits.revocation import RevocationKit
from treasuremap.policies.hrac import HRAC
from treasuremap.policies.treasure_map import EncryptedTreasureMap, TreasureMap
from treasuremap.porter import Ursula

logger = logging.getLogger(__name__)


def calculate_value(
    shares: int,
    payment_periods: int,
    value: int = None,
    rate: int = None,
) -> int:
    """
    Work out and validate the total policy value.

    Args:
        shares: Number of nodes paid.
        payment_periods: Number of periods each node is paid for.
        value: Total value in wei. Derived from `rate` when absent.
        rate: Wei per node per period. Used only when `value` is absent.

    Returns:
        The total value, divisible by shares and then by periods.

    Raises:
        ValidationError: On negative inputs, when neither value nor rate is
            given, or when the value cannot be split evenly.
    """
    inputs = {"shares": shares, "payment_periods": payment_periods, "value": value, "rate": rate}
    for name, number in inputs.items():
        if number is not None and number < 0:
            raise ValidationError(
                f"Negative policy parameters are not allowed: {name} is {number}"
            )

    if not value and not rate:
        raise ValidationError(
            f"Either 'value' or 'rate' must be provided for policy. "
            f"Got value: {value} and rate: {rate}"
        )
    if shares == 0 or payment_periods == 0:
        raise ValidationError(
            f"Policy needs at least one share and one payment period, "
            f"got shares={shares}, payment_periods={payment_periods}"
        )

    if not value:
        value = rate * payment_periods * shares

    value_per_node, remainder = divmod(value, shares)
    if remainder:
        raise ValidationError(
            f"Policy value of {value} wei cannot be divided into {shares} shares "
            f"without a remainder ({value_per_node} wei per share, {remainder} left over)."
        )

    if value_per_node % payment_periods:
        raise ValidationError(
            f"Policy value of {value_per_node} wei per node cannot be divided by duration "
            f"{payment_periods} periods without a remainder."
        )

    return value


@dataclass(frozen=True)
class PolicyParameters:
    """Fully resolved policy terms."""
    label: str
    threshold: int
    shares: int
    expiration: int
    payment_periods: int
    value: int
    rate: int

    @classmethod
    def resolve(
        cls,
        label: str,
        threshold: int,
        shares: int,
        period_seconds: int,
        minimum_rate: int = None,
        expiration: int = None,
        payment_periods: int = None,
        value: int = None,
        rate: int = None,
        now: int = None,
    ) -> "PolicyParameters":
        """
        Fill in whichever of expiration / payment_periods and value / rate is missing.

        Args:
            expiration: Unix time the policy ends.
            payment_periods: Periods the policy is paid for.
            minimum_rate: Rate used when neither value nor rate is given.
            now: Current unix time (defaults to time.time()).

        Raises:
            ValidationError: If neither expiration nor payment_periods is
                given, the expiration is not in the future, or the value
                does not split evenly.
        """
        if not 1 <= threshold <= shares:
            raise ValidationError(
                f"Threshold must be between 1 and shares ({shares}), got {threshold}"
            )
        now = int(time.time()) if now is None else now

        if expiration is None and payment_periods is None:
            raise ValidationError("Either 'expiration' or 'payment_periods' must be provided")
        if payment_periods is None:
            if expiration <= now:
                raise ValidationError(f"Policy expiration {expiration} is not in the future")
            payment_periods = math.ceil((expiration - now) / period_seconds)
        if expiration is None:
            expiration = now + payment_periods * period_seconds

        if not value and not rate:
            rate = minimum_rate
        value = calculate_value(shares, payment_periods, value, rate)
        if not rate:
            rate = value // shares // payment_periods

        return cls(
            label=label,
            threshold=threshold,
            shares=shares,
            expiration=expiration,
            payment_periods=payment_periods,
            value=value,
            rate=rate,
        )


@dataclass(frozen=True)
class EnactedPolicy:
    """Everything produced by enacting a policy."""
    hrac: HRAC
    label: str
    policy_encrypting_key: umbral_pre.PublicKey
    encrypted_treasure_map: EncryptedTreasureMap
    revocation_kit: RevocationKit
    publisher_verifying_key: bytes
    ursulas: tuple[Ursula, ...]


class PolicyAssembler:
    """
    Turns generated key fragments into a published, distributed policy.

    Args:
        publisher: The publisher's keys.
        reader_verifying_key: Reader's signing identity (part of the HRAC).
        reader_encrypting_key: Reader's key the treasure map is encrypted to.
        parameters: Resolved policy terms.
        verified_kfrags: One fragment per share.
        policy_encrypting_key: The key data for this policy is encrypted to.
        agent: The policy contract.
    """

    def __init__(
        self,
        publisher: Keyring,
        reader_verifying_key: umbral_pre.PublicKey,
        reader_encrypting_key: umbral_pre.PublicKey,
        parameters: PolicyParameters,
        verified_kfrags: Sequence[umbral_pre.VerifiedKeyFrag],
        policy_encrypting_key: umbral_pre.PublicKey,
        agent: PolicyAgent,
    ):
        if len(verified_kfrags) != parameters.shares:
            raise ValidationError(
                f"Expected {parameters.shares} key fragments, got {len(verified_kfrags)}"
            )
        self.publisher = publisher
        self.reader_encrypting_key = reader_encrypting_key
        self.parameters = parameters
        self.verified_kfrags = tuple(verified_kfrags)
        self.policy_encrypting_key = policy_encrypting_key
        self.agent = agent
        self.hrac = HRAC.derive(
            public_key_to_bytes(publisher.verifying_key),
            public_key_to_bytes(reader_verifying_key),
            parameters.label,
        )

    async def publish(self, node_addresses: Sequence[str]) -> dict:
        """Register and pay for the policy on chain."""
        owner = await self.agent.owner_address()
        return await self.agent.create_policy(
            bytes(self.hrac),
            self.parameters.value,
            self.parameters.expiration,
            node_addresses,
            owner,
        )

    async def enact(self, ursulas: Sequence[Ursula]) -> EnactedPolicy:
        """
        Publish the policy and distribute its fragments.

        Raises:
            ValidationError: If the nodes do not fit the threshold or fragments.
            ContractError: If the on-chain registration fails.
        """
        if len(ursulas) != len(self.verified_kfrags):
            raise ValidationError(
                f"Got {len(ursulas)} nodes for {len(self.verified_kfrags)} key fragments"
            )
        # Nothing is paid for until the map itself is known to be valid
        treasure_map = TreasureMap.construct_by_publisher(
            self.hrac,
            self.publisher,
            ursulas,
            self.verified_kfrags,
            self.parameters.threshold,
            self.policy_encrypting_key,
        )
        await self.publish([ursula.checksum_address for ursula in ursulas])

        encrypted_treasure_map = treasure_map.encrypt(self.publisher, self.reader_encrypting_key)
        revocation_kit = RevocationKit.build(treasure_map, self.publisher.signer)

        logger.info(
            "Enacted policy %s (%d-of-%d) for label %r",
            self.hrac.hex(), self.parameters.threshold, len(ursulas), self.parameters.label,
        )
        return EnactedPolicy(
            hrac=self.hrac,
            label=self.parameters.label,
            policy_encrypting_key=self.policy_encrypting_key,
            encrypted_treasure_map=encrypted_treasure_map,
            revocation_kit=revocation_kit,
            publisher_verifying_key=public_key_to_bytes(self.publisher.verifying_key),
            ursulas=tuple(ursulas),
        )
