"""
Treasure Map — Basic Usage Example

Grants a reader 2-of-3 access to a label, encrypts a message to the
policy key, retrieves it as the reader, then revokes the grant.

Needs a live network:
  TREASUREMAP_CHAIN_ID, TREASUREMAP_RPC_URL, TREASUREMAP_POLICY_MANAGER
and a funded account key in TREASUREMAP_PRIVATE_KEY.
"""

import asyncio
import logging
import os
import sys
import time
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from treasuremap import (
    Configuration,
    Enrico,
    Keyring,
    Porter,
    PolicyManagerAgent,
    Publisher,
    Reader,
)
from treasuremap.keys import public_key_from_bytes


async def main():
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    print("=" * 50)
    print("  Treasure Map — Threshold Re-encryption Grants")
    print("=" * 50)

    config = Configuration.from_env()
    porter = Porter(config.porter_uri, timeout=config.timeout)
    agent = PolicyManagerAgent(
        rpc_url=config.rpc_url,
        contract_address=config.policy_manager_address,
        private_key=os.environ["TREASUREMAP_PRIVATE_KEY"],
    )

    # The publisher's keys come from a passphrase, so they can be recreated
    salt = Keyring.new_salt()
    publisher = Publisher(
        Keyring.from_passphrase("my-secret-passphrase-change-this", salt),
        agent,
        porter,
        config,
    )
    reader = Reader(Keyring.random(), porter)

    print("\n[1] Granting 2-of-3 access for 7 days...")
    policy = await publisher.grant(
        reader.as_remote(),
        label="journal",
        threshold=2,
        shares=3,
        expiration=int(time.time()) + 7 * 24 * 60 * 60,
    )
    print(f"    Policy {policy.hrac.hex()} held by:")
    for ursula in policy.ursulas:
        print(f"      {ursula.checksum_address} ({ursula.uri})")

    print("\n[2] Encrypting a message to the policy key...")
    kit = Enrico(policy.policy_encrypting_key).encrypt_message(b"Had a breakthrough idea today.")
    print(f"    Message kit: {len(kit.to_bytes())} bytes")

    print("\n[3] Reader retrieves and decrypts...")
    plaintexts = await reader.retrieve_and_decrypt(
        policy.policy_encrypting_key,
        public_key_from_bytes(policy.publisher_verifying_key),
        [kit],
        policy.encrypted_treasure_map,
    )
    print(f"    Decrypted: {plaintexts[0].decode()}")

    print("\n[4] Revoking...")
    revocation_kit = await publisher.revoke(policy)
    print(f"    {len(revocation_kit)} revocation orders to deliver to the nodes")

    print("\n" + "=" * 50)
    print("  Done.")
    print("=" * 50)


if __name__ == "__main__":
    asyncio.run(main())
