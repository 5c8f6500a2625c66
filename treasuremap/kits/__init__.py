"""
Kits
Message, retrieval and revocation kits.
"""

from treasuremap.kits.message import MessageKit, PolicyMessageKit
from treasuremap.kits.retrieval import RetrievalKit, RetrievalResult
from treasuremap.kits.revocation import RevocationKit, RevocationOrder

__all__ = [
    "MessageKit",
    "PolicyMessageKit",
    "RetrievalKit",
    "RetrievalResult",
    "RevocationKit",
    "RevocationOrder",
]
