"""
Policy contract agents.
Each agent implements communication with one policy registry contract.
"""

from treasuremap.agents.base import PolicyAgent
from treasuremap.agents.policy_manager import PolicyManagerAgent

__all__ = [
    "PolicyAgent",
    "PolicyManagerAgent",
]
