"""
Characters
The three roles of a threshold re-encryption grant.

Publisher — owns the data key. Grants a reader access by splitting a
            re-encryption key across nodes and publishing the treasure map.
Enrico    — a data source. Encrypts messages to a policy key.
Reader    — collects threshold re-encrypted fragments and decrypts.

Flow:
  1. publisher.grant(reader, label, ...)      → EnactedPolicy
  2. Enrico(policy key).encrypt_message(data) → MessageKit
  3. reader.retrieve_and_decrypt(...)         → plaintexts
  4. publisher.revoke(policy)                 → RevocationKit for delivery
"""

import logging
from dataclasses import dataclass
from typing import Sequence

import umbral_pre

from treasuremap.agents.base import PolicyAgent
from treasuremap.config import Configuration
from treasuremap.errors import InsufficientFragments, PorterError
from treasuremap.keys import Keyring
from treasuremap.kits.message import MessageKit, PolicyMessageKit
from treasuremap.kits.retrieval import RetrievalResult
from treasuremap.kits.revocation import RevocationKit
from treasuremap.policies.policy import EnactedPolicy, PolicyAssembler, PolicyParameters
from treasuremap.policies.treasure_map import EncryptedTreasureMap, TreasureMap
from treasuremap.porter import Porter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RemoteReader:
    """The public half of a reader, as a publisher knows them."""
    verifying_key: umbral_pre.PublicKey
    encrypting_key: umbral_pre.PublicKey


class Publisher:
    """
    Grants and revokes access to data encrypted under per-label policy keys.

    Args:
        keyring: The publisher's keys.
        agent: Policy contract agent.
        porter: Relay discovery client.
        config: Network configuration (payment period length).
    """

    def __init__(
        self,
        keyring: Keyring,
        agent: PolicyAgent,
        porter: Porter,
        config: Configuration,
    ):
        self.keyring = keyring
        self.agent = agent
        self.porter = porter
        self.config = config

    @property
    def verifying_key(self) -> umbral_pre.PublicKey:
        return self.keyring.verifying_key

    def get_policy_encrypting_key(self, label: str) -> umbral_pre.PublicKey:
        return self.keyring.policy_encrypting_key(label)

    def generate_kfrags(
        self,
        reader: RemoteReader,
        label: str,
        threshold: int,
        shares: int,
    ) -> list[umbral_pre.VerifiedKeyFrag]:
        """Split the label's re-encryption key for the reader."""
        return umbral_pre.generate_kfrags(
            self.keyring.policy_secret(label),
            reader.encrypting_key,
            self.keyring.signer,
            threshold,
            shares,
            True,
            True,
        )

    async def grant(
        self,
        reader: RemoteReader,
        label: str,
        threshold: int,
        shares: int,
        expiration: int = None,
        payment_periods: int = None,
        value: int = None,
        rate: int = None,
    ) -> EnactedPolicy:
        """
        Give a reader threshold-of-shares access to a label.

        Args:
            expiration: Unix time the policy ends. Or give payment_periods.
            value: Total payment in wei. Or give rate. When neither is
                given the contract's minimum fee rate is used.

        Raises:
            ValidationError: On bad threshold, timing or economics.
            PorterError: If Porter cannot supply enough nodes.
            ContractError: If the policy cannot be registered.
        """
        minimum_rate = None
        if not value and not rate:
            minimum_rate = await self.agent.minimum_fee_rate()

        parameters = PolicyParameters.resolve(
            label=label,
            threshold=threshold,
            shares=shares,
            period_seconds=self.config.period_seconds,
            minimum_rate=minimum_rate,
            expiration=expiration,
            payment_periods=payment_periods,
            value=value,
            rate=rate,
        )

        ursulas = await self.porter.get_ursulas(shares)
        if len(ursulas) < shares:
            raise PorterError(f"Porter returned {len(ursulas)} nodes, {shares} needed")

        assembler = PolicyAssembler(
            publisher=self.keyring,
            reader_verifying_key=reader.verifying_key,
            reader_encrypting_key=reader.encrypting_key,
            parameters=parameters,
            verified_kfrags=self.generate_kfrags(reader, label, threshold, shares),
            policy_encrypting_key=self.get_policy_encrypting_key(label),
            agent=self.agent,
        )
        return await assembler.enact(ursulas[:shares])

    async def revoke(self, policy: EnactedPolicy) -> RevocationKit:
        """Disable the policy on chain and hand back its revocation orders."""
        await self.agent.revoke_policy(bytes(policy.hrac))
        logger.info("Revoked policy %s, %d orders to deliver", policy.hrac.hex(), len(policy.revocation_kit))
        return policy.revocation_kit


class Enrico:
    """Encrypts data to a policy key. Needs no secrets."""

    def __init__(self, policy_encrypting_key: umbral_pre.PublicKey):
        self.policy_encrypting_key = policy_encrypting_key

    def encrypt_message(self, plaintext: bytes) -> MessageKit:
        return MessageKit.author(self.policy_encrypting_key, plaintext)


class Reader:
    """
    Retrieves re-encrypted fragments and decrypts messages.

    Args:
        keyring: The reader's keys.
        porter: Relay discovery client.
    """

    def __init__(self, keyring: Keyring, porter: Porter):
        self.keyring = keyring
        self.porter = porter

    def as_remote(self) -> RemoteReader:
        return RemoteReader(
            verifying_key=self.keyring.verifying_key,
            encrypting_key=self.keyring.decrypting_key,
        )

    def _verify_cfrags(
        self,
        treasure_map: TreasureMap,
        policy_kit: PolicyMessageKit,
        cfrags: dict[str, umbral_pre.CapsuleFrag],
        publisher_verifying_key: umbral_pre.PublicKey,
    ) -> RetrievalResult:
        """Keep only fragments from mapped nodes that verify."""
        destinations = treasure_map.destinations
        verified = {}
        for address, cfrag in cfrags.items():
            if address not in destinations:
                logger.warning("Discarding fragment from %s, which is not in the treasure map", address)
                continue
            try:
                verified[address] = cfrag.verify(
                    policy_kit.capsule,
                    publisher_verifying_key,
                    policy_kit.policy_encrypting_key,
                    self.keyring.decrypting_key,
                )
            except umbral_pre.VerificationError:
                logger.warning("Discarding fragment from %s that failed verification", address)
        return RetrievalResult(verified)

    async def retrieve_cfrags(
        self,
        treasure_map: TreasureMap,
        policy_kits: Sequence[PolicyMessageKit],
        publisher_verifying_key: umbral_pre.PublicKey,
    ) -> list[PolicyMessageKit]:
        """
        Ask the map's nodes for fragments of every kit still below threshold.

        Returns:
            New kits with the verified fragments merged in, same order.
        """
        pending = [i for i, kit in enumerate(policy_kits) if not kit.is_decryptable_by_receiver()]
        if not pending:
            return list(policy_kits)

        responses = await self.porter.retrieve_cfrags(
            treasure_map,
            [policy_kits[i].as_retrieval_kit() for i in pending],
            publisher_verifying_key,
            self.keyring.decrypting_key,
            self.keyring.verifying_key,
        )

        updated = list(policy_kits)
        for i, cfrags in zip(pending, responses):
            result = self._verify_cfrags(treasure_map, updated[i], cfrags, publisher_verifying_key)
            updated[i] = updated[i].with_result(result)
            logger.info(
                "Collected %d of %d fragments for message %d",
                len(updated[i].result), updated[i].threshold, i,
            )
        return updated

    async def retrieve_and_decrypt(
        self,
        policy_encrypting_key: umbral_pre.PublicKey,
        publisher_verifying_key: umbral_pre.PublicKey,
        message_kits: Sequence[MessageKit],
        encrypted_treasure_map: EncryptedTreasureMap,
    ) -> list[bytes]:
        """
        Decrypt messages shared with this reader through a policy.

        Raises:
            AuthenticationError: If the treasure map was not signed by the
                publisher for this reader.
            InsufficientFragments: If any message is still below threshold.
        """
        treasure_map = encrypted_treasure_map.decrypt_and_verify(self.keyring, publisher_verifying_key)
        policy_kits = [
            kit.as_policy_kit(policy_encrypting_key, treasure_map.threshold)
            for kit in message_kits
        ]
        policy_kits = await self.retrieve_cfrags(treasure_map, policy_kits, publisher_verifying_key)

        plaintexts = []
        for kit in policy_kits:
            if not kit.is_decryptable_by_receiver():
                raise InsufficientFragments(
                    f"Threshold of {kit.threshold} fragments not met, got {len(kit.result)}"
                )
            plaintexts.append(kit.decrypt(self.keyring.decrypting_secret))
        return plaintexts
