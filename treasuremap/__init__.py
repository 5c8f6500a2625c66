"""
Treasure Map — Threshold Re-encryption Grants
Client-side protocol for sharing encrypted data through semi-trusted relay nodes.

A publisher grants a reader access without re-encrypting anything itself:
1. The re-encryption key is split into N fragments, any K of which suffice
2. Each fragment is signed for the policy and encrypted to one relay node
3. The table of who holds what (the treasure map) is signed for the reader
   and encrypted to them
4. The reader asks nodes to re-encrypt, collects K fragments, and decrypts

No node, and no set of fewer than K nodes, can read the data or redirect
the grant to someone else.

Usage:
    from treasuremap import Publisher, Reader, Enrico, Keyring
    policy = await publisher.grant(reader.as_remote(), "label", threshold=2, shares=3, ...)
    kit = Enrico(policy.policy_encrypting_key).encrypt_message(b"data")
    await reader.retrieve_and_decrypt(policy.policy_encrypting_key, ...)
"""

from treasuremap.errors import (
    TreasureMapError,
    FramingError,
    IncompatibleVersion,
    ValidationError,
    AuthenticationError,
    InsufficientFragments,
    PorterError,
    ContractError,
)
from treasuremap.keys import Keyring
from treasuremap.policies import (
    HRAC,
    AuthorizedKeyFrag,
    EncryptedKeyFrag,
    TreasureMap,
    AuthorizedTreasureMap,
    EncryptedTreasureMap,
)
from treasuremap.policies.policy import EnactedPolicy, PolicyAssembler, calculate_value
from treasuremap.kits import (
    MessageKit,
    PolicyMessageKit,
    RetrievalKit,
    RetrievalResult,
    RevocationKit,
    RevocationOrder,
)
from treasuremap.porter import Porter, Ursula
from treasuremap.agents import PolicyAgent, PolicyManagerAgent
from treasuremap.config import Configuration, default_configuration
from treasuremap.characters import Publisher, Reader, Enrico, RemoteReader

__version__ = "0.1.0"
__all__ = [
    "TreasureMapError",
    "FramingError",
    "IncompatibleVersion",
    "ValidationError",
    "AuthenticationError",
    "InsufficientFragments",
    "PorterError",
    "ContractError",
    "Keyring",
    "HRAC",
    "AuthorizedKeyFrag",
    "EncryptedKeyFrag",
    "TreasureMap",
    "AuthorizedTreasureMap",
    "EncryptedTreasureMap",
    "EnactedPolicy",
    "PolicyAssembler",
    "calculate_value",
    "MessageKit",
    "PolicyMessageKit",
    "RetrievalKit",
    "RetrievalResult",
    "RevocationKit",
    "RevocationOrder",
    "Porter",
    "Ursula",
    "PolicyAgent",
    "PolicyManagerAgent",
    "Configuration",
    "default_configuration",
    "Publisher",
    "Reader",
    "Enrico",
    "RemoteReader",
]
