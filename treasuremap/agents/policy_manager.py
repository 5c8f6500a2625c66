"""
PolicyManager contract agent.
Works for Polygon mainnet, Mumbai testnet, or any EVM chain running the contract.

The contract records each policy (id, owner, expiry, nodes) and holds the
payment that compensates nodes for keeping fragments.
"""

import json
import logging
import os
from pathlib import Path
from typing import Sequence

from web3 import AsyncWeb3
from web3.middleware import ExtraDataToPOAMiddleware

from treasuremap.agents.base import PolicyAgent
from treasuremap.errors import ContractError

logger = logging.getLogger(__name__)

# Gas estimation for createPolicy is unreliable on some RPC providers
CREATE_POLICY_GAS_LIMIT = 350_000
GAS_HEADROOM = 1.2
RECEIPT_TIMEOUT = 120

NULL_ADDRESS = "0x" + "00" * 20

POLICY_MANAGER_ABI = [
    {
        "type": "function",
        "name": "createPolicy",
        "stateMutability": "payable",
        "inputs": [
            {"name": "_policyId", "type": "bytes16"},
            {"name": "_policyOwner", "type": "address"},
            {"name": "_endTimestamp", "type": "uint64"},
            {"name": "_nodes", "type": "address[]"},
        ],
        "outputs": [],
    },
    {
        "type": "function",
        "name": "revokePolicy",
        "stateMutability": "nonpayable",
        "inputs": [{"name": "_policyId", "type": "bytes16"}],
        "outputs": [{"name": "refundValue", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "policies",
        "stateMutability": "view",
        "inputs": [{"name": "", "type": "bytes16"}],
        "outputs": [
            {"name": "disabled", "type": "bool"},
            {"name": "sponsor", "type": "address"},
            {"name": "owner", "type": "address"},
            {"name": "feeRate", "type": "uint128"},
            {"name": "startTimestamp", "type": "uint64"},
            {"name": "endTimestamp", "type": "uint64"},
        ],
    },
    {
        "type": "function",
        "name": "feeRateRange",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [
            {"name": "min", "type": "uint128"},
            {"name": "defaultValue", "type": "uint128"},
            {"name": "max", "type": "uint128"},
        ],
    },
]


class PolicyManagerAgent(PolicyAgent):
    """
    Talks to a PolicyManager contract over JSON-RPC.

    Args:
        rpc_url: JSON-RPC endpoint.
        contract_address: Deployed PolicyManager address.
        contract_abi: ABI override. The embedded minimal ABI is used otherwise.
        private_key: Key that signs transactions. Read-only without it.
    """

    def __init__(
        self,
        rpc_url: str,
        contract_address: str,
        contract_abi: list = None,
        private_key: str = None,
    ):
        self.rpc_url = rpc_url
        self.contract_address = contract_address
        self._abi = contract_abi or POLICY_MANAGER_ABI
        self._private_key = private_key
        self._w3 = None
        self._contract = None
        self._account = None

    def _connect(self):
        """Lazy connection to the chain."""
        if self._w3 is not None:
            return

        self._w3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(self.rpc_url))
        self._w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)

        if self._private_key:
            self._account = self._w3.eth.account.from_key(self._private_key)

        self._contract = self._w3.eth.contract(
            address=AsyncWeb3.to_checksum_address(self.contract_address),
            abi=self._abi,
        )

    def _require_account(self):
        self._connect()
        if self._account is None:
            raise ContractError("A private key must be configured to send transactions")

    async def _transact(self, function, value: int = 0, gas: int = None) -> dict:
        """Build, sign and send a transaction, then wait for its receipt."""
        self._require_account()
        w3 = self._w3

        tx_params = {
            "from": self._account.address,
            "value": value,
            "nonce": await w3.eth.get_transaction_count(self._account.address),
            "gasPrice": await w3.eth.gas_price,
            "chainId": await w3.eth.chain_id,
        }
        if gas is not None:
            tx_params["gas"] = gas
        tx = await function.build_transaction(tx_params)
        if gas is None:
            gas_estimate = await w3.eth.estimate_gas(tx)
            tx["gas"] = int(gas_estimate * GAS_HEADROOM)

        signed = self._account.sign_transaction(tx)
        tx_hash = await w3.eth.send_raw_transaction(signed.raw_transaction)
        receipt = await w3.eth.wait_for_transaction_receipt(tx_hash, timeout=RECEIPT_TIMEOUT)

        if receipt.status != 1:
            raise ContractError(f"Transaction {receipt.transactionHash.hex()} reverted")

        return {
            "tx_hash": receipt.transactionHash.hex(),
            "block": receipt.blockNumber,
            "gas_used": receipt.gasUsed,
            "success": True,
        }

    async def owner_address(self) -> str:
        self._require_account()
        return self._account.address

    async def create_policy(
        self,
        policy_id: bytes,
        value: int,
        expiration_timestamp: int,
        node_addresses: Sequence[str],
        owner_address: str,
    ) -> dict:
        self._connect()
        function = self._contract.functions.createPolicy(
            bytes(policy_id),
            AsyncWeb3.to_checksum_address(owner_address),
            int(expiration_timestamp),
            [AsyncWeb3.to_checksum_address(a) for a in node_addresses],
        )
        receipt = await self._transact(function, value=value, gas=CREATE_POLICY_GAS_LIMIT)
        logger.info("Created policy %s in tx %s", bytes(policy_id).hex(), receipt["tx_hash"])
        return receipt

    async def revoke_policy(self, policy_id: bytes) -> dict:
        self._connect()
        function = self._contract.functions.revokePolicy(bytes(policy_id))
        receipt = await self._transact(function)
        logger.info("Revoked policy %s in tx %s", bytes(policy_id).hex(), receipt["tx_hash"])
        return receipt

    async def _policy(self, policy_id: bytes) -> tuple:
        self._connect()
        try:
            return await self._contract.functions.policies(bytes(policy_id)).call()
        except Exception as e:
            raise ContractError(f"Cannot read policy {bytes(policy_id).hex()}: {e}") from e

    async def policy_exists(self, policy_id: bytes) -> bool:
        policy = await self._policy(policy_id)
        return policy[1] != NULL_ADDRESS

    async def is_policy_disabled(self, policy_id: bytes) -> bool:
        policy = await self._policy(policy_id)
        if policy[1] == NULL_ADDRESS:
            raise ContractError(f"Policy with id {bytes(policy_id).hex()} does not exist")
        return bool(policy[0])

    async def minimum_fee_rate(self) -> int:
        self._connect()
        try:
            fee_rate_range = await self._contract.functions.feeRateRange().call()
        except Exception as e:
            raise ContractError(f"Cannot read fee rate range: {e}") from e
        return int(fee_rate_range[0])

    @classmethod
    def from_deployment(cls, deployment_file: str | Path, private_key: str = None) -> "PolicyManagerAgent":
        """Create an agent from a saved deployment JSON file."""
        data = json.loads(Path(deployment_file).read_text())

        # Load ABI from adjacent file
        abi_file = Path(deployment_file).parent / "PolicyManager.abi.json"
        abi = json.loads(abi_file.read_text()) if abi_file.exists() else None

        return cls(
            rpc_url=data.get("rpc_url", os.environ.get("TREASUREMAP_RPC_URL", "")),
            contract_address=data["contract_address"],
            contract_abi=abi,
            private_key=private_key,
        )
