"""
Treasure Map — Integration Tests
Runs whole grants end to end: publisher grants, Enrico encrypts, the reader
retrieves fragments from the nodes and decrypts. Also covers nodes going
offline, revocation, and keys derived from a passphrase.
"""

import asyncio
import sys
from pathlib import Path

# Add parent to path for local development
sys.path.insert(0, str(Path(__file__).parent.parent))

from fakes import FakePolicyAgent, FakePorter, make_nodes
from treasuremap import (
    AuthenticationError,
    Configuration,
    Enrico,
    InsufficientFragments,
    Keyring,
    PorterError,
    Publisher,
    Reader,
)
from treasuremap.keys import public_key_from_bytes, public_key_to_bytes

TEST_PASSPHRASE = "test-passphrase-do-not-use-in-production"
TEST_ITERATIONS = 1_000
CONFIG = Configuration(porter_uri="https://porter.test", period_seconds=60 * 60)


def _network(node_count=5):
    ursulas, secrets = make_nodes(node_count)
    return FakePorter(ursulas, secrets), FakePolicyAgent(minimum_rate=2)


def _grant(porter, agent, threshold=2, shares=3, label="health-data"):
    publisher = Publisher(Keyring.random(), agent, porter, CONFIG)
    reader = Reader(Keyring.random(), porter)
    policy = asyncio.run(
        publisher.grant(reader.as_remote(), label, threshold, shares, payment_periods=4)
    )
    return publisher, reader, policy


def _retrieve(reader, policy, kits):
    return asyncio.run(reader.retrieve_and_decrypt(
        policy.policy_encrypting_key,
        public_key_from_bytes(policy.publisher_verifying_key),
        kits,
        policy.encrypted_treasure_map,
    ))


def test_grant_encrypt_retrieve_decrypt():
    """Full flow with threshold 2 of 3."""
    print("Testing grant → encrypt → retrieve → decrypt...", end=" ")
    porter, agent = _network()
    publisher, reader, policy = _grant(porter, agent)

    enrico = Enrico(policy.policy_encrypting_key)
    messages = [b"heart rate: 62", b"blood pressure: 118/76"]
    kits = [enrico.encrypt_message(m) for m in messages]

    assert _retrieve(reader, policy, kits) == messages
    assert len(policy.ursulas) == 3
    print("OK")


def test_grant_pays_minimum_rate():
    """Without value or rate the contract's minimum fee rate is used."""
    print("Testing minimum fee rate payment...", end=" ")
    porter, agent = _network()
    _, _, policy = _grant(porter, agent, threshold=2, shares=3)

    assert ("minimum_fee_rate",) in agent.calls
    record = agent.policies[bytes(policy.hrac)]
    assert record["value"] == 2 * 3 * 4
    assert record["nodes"] == [u.checksum_address for u in policy.ursulas]
    print("OK")


def test_policy_key_depends_on_label():
    porter, agent = _network()
    publisher, _, first = _grant(porter, agent, label="one")
    assert public_key_to_bytes(first.policy_encrypting_key) == public_key_to_bytes(
        publisher.get_policy_encrypting_key("one")
    )
    assert public_key_to_bytes(publisher.get_policy_encrypting_key("one")) != public_key_to_bytes(
        publisher.get_policy_encrypting_key("two")
    )


def test_threshold_survives_offline_nodes():
    """One of three nodes offline still meets a threshold of two."""
    print("Testing offline tolerance...", end=" ")
    porter, agent = _network()
    _, reader, policy = _grant(porter, agent)
    porter.offline.add(policy.ursulas[0].checksum_address)

    kit = Enrico(policy.policy_encrypting_key).encrypt_message(b"still readable")
    assert _retrieve(reader, policy, [kit]) == [b"still readable"]
    print("OK")


def test_too_many_offline_nodes():
    """Below threshold the reader gets InsufficientFragments."""
    print("Testing below-threshold retrieval...", end=" ")
    porter, agent = _network()
    _, reader, policy = _grant(porter, agent)
    porter.offline.update(u.checksum_address for u in policy.ursulas[:2])

    kit = Enrico(policy.policy_encrypting_key).encrypt_message(b"unreachable")
    try:
        _retrieve(reader, policy, [kit])
        assert False, "should have raised InsufficientFragments"
    except InsufficientFragments:
        pass
    print("OK")


def test_other_reader_cannot_use_map():
    """A treasure map encrypted for one reader is useless to another."""
    print("Testing map redirection...", end=" ")
    porter, agent = _network()
    _, _, policy = _grant(porter, agent)
    intruder = Reader(Keyring.random(), porter)

    kit = Enrico(policy.policy_encrypting_key).encrypt_message(b"private")
    try:
        _retrieve(intruder, policy, [kit])
        assert False, "should have raised AuthenticationError"
    except AuthenticationError:
        pass
    assert porter.requests == []
    print("OK")


def test_revocation():
    """After revocation orders reach the nodes, retrieval fails."""
    print("Testing revocation...", end=" ")
    porter, agent = _network()
    publisher, reader, policy = _grant(porter, agent)

    kit = Enrico(policy.policy_encrypting_key).encrypt_message(b"before revoke")
    assert _retrieve(reader, policy, [kit]) == [b"before revoke"]

    revocation_kit = asyncio.run(publisher.revoke(policy))
    assert agent.policies[bytes(policy.hrac)]["disabled"]
    assert revocation_kit.addresses == {u.checksum_address for u in policy.ursulas}

    for order in revocation_kit:
        porter.deliver_revocation(order, publisher.verifying_key)
    assert porter.revoked == revocation_kit.addresses

    try:
        _retrieve(reader, policy, [kit])
        assert False, "should have raised InsufficientFragments"
    except InsufficientFragments:
        pass
    print("OK")


def test_partial_revocation_below_threshold():
    """Revoking shares - threshold + 1 nodes is enough to cut access."""
    porter, agent = _network()
    publisher, reader, policy = _grant(porter, agent, threshold=2, shares=3)
    revocation_kit = asyncio.run(publisher.revoke(policy))

    for ursula in policy.ursulas[:2]:
        porter.deliver_revocation(revocation_kit[ursula.checksum_address], publisher.verifying_key)

    kit = Enrico(policy.policy_encrypting_key).encrypt_message(b"gone")
    try:
        _retrieve(reader, policy, [kit])
        assert False, "should have raised InsufficientFragments"
    except InsufficientFragments:
        pass


def test_not_enough_nodes():
    porter, agent = _network(node_count=2)
    publisher = Publisher(Keyring.random(), agent, porter, CONFIG)
    reader = Reader(Keyring.random(), porter)
    try:
        asyncio.run(publisher.grant(reader.as_remote(), "label", 2, 3, payment_periods=1))
        assert False, "should have raised PorterError"
    except PorterError:
        pass
    assert agent.policies == {}


def test_passphrase_keyring():
    """Same passphrase and salt give the same keys, and a working grant."""
    print("Testing passphrase keyring...", end=" ")
    salt = Keyring.new_salt()
    first = Keyring.from_passphrase(TEST_PASSPHRASE, salt, iterations=TEST_ITERATIONS)
    second = Keyring.from_passphrase(TEST_PASSPHRASE, salt, iterations=TEST_ITERATIONS)
    other = Keyring.from_passphrase(TEST_PASSPHRASE, Keyring.new_salt(), iterations=TEST_ITERATIONS)

    assert public_key_to_bytes(first.verifying_key) == public_key_to_bytes(second.verifying_key)
    assert public_key_to_bytes(first.decrypting_key) == public_key_to_bytes(second.decrypting_key)
    assert public_key_to_bytes(first.verifying_key) != public_key_to_bytes(other.verifying_key)
    assert public_key_to_bytes(first.verifying_key) != public_key_to_bytes(first.decrypting_key)

    porter, agent = _network()
    reader = Reader(second, porter)
    publisher = Publisher(Keyring.random(), agent, porter, CONFIG)
    policy = asyncio.run(publisher.grant(
        Reader(first, porter).as_remote(), "passphrase", 1, 2, payment_periods=1,
    ))
    kit = Enrico(policy.policy_encrypting_key).encrypt_message(b"same keys")
    assert _retrieve(reader, policy, [kit]) == [b"same keys"]
    print("OK")


def main():
    print("=" * 50)
    print("  Treasure Map — Integration Tests")
    print("=" * 50)
    print()

    tests = [
        test_grant_encrypt_retrieve_decrypt,
        test_grant_pays_minimum_rate,
        test_policy_key_depends_on_label,
        test_threshold_survives_offline_nodes,
        test_too_many_offline_nodes,
        test_other_reader_cannot_use_map,
        test_revocation,
        test_partial_revocation_below_threshold,
        test_not_enough_nodes,
        test_passphrase_keyring,
    ]

    passed = 0
    failed = 0

    for test in tests:
        try:
            test()
            passed += 1
        except Exception as e:
            print(f"FAIL: {e}")
            import traceback
            traceback.print_exc()
            failed += 1

    print()
    print(f"Results: {passed} passed, {failed} failed")
    return failed == 0


if __name__ == "__main__":
    success = main()
    sys.exit(0 if success else 1)
