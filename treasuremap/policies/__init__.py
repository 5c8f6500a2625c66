"""
Policies
Resource ids, authorized key fragments and treasure maps.

Policy assembly lives in treasuremap.policies.policy, which depends on
the kits, and is imported from there directly.
"""

from treasuremap.policies.hrac import HRAC, HRAC_LENGTH
from treasuremap.policies.key_frag import AuthorizedKeyFrag, EncryptedKeyFrag
from treasuremap.policies.treasure_map import (
    AuthorizedTreasureMap,
    EncryptedTreasureMap,
    TreasureMap,
)

__all__ = [
    "HRAC",
    "HRAC_LENGTH",
    "AuthorizedKeyFrag",
    "EncryptedKeyFrag",
    "TreasureMap",
    "AuthorizedTreasureMap",
    "EncryptedTreasureMap",
]
