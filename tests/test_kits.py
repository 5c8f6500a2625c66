"""
Tests for message kits, retrieval kits and revocation orders.
"""

import sys
from pathlib import Path

import umbral_pre

sys.path.insert(0, str(Path(__file__).parent.parent))

from fakes import make_nodes
from treasuremap.errors import (
    AuthenticationError,
    FramingError,
    InsufficientFragments,
    ValidationError,
)
from treasuremap.keys import CAPSULE_LENGTH, Keyring, public_key_to_bytes, to_checksum_address
from treasuremap.kits import (
    MessageKit,
    PolicyMessageKit,
    RetrievalKit,
    RetrievalResult,
    RevocationKit,
    RevocationOrder,
)
from treasuremap.kits.revocation import REVOCATION_PREFIX
from treasuremap.policies import HRAC, TreasureMap

LABEL = "kits-label"


def _addresses(count):
    return [to_checksum_address(bytes([i + 1]) * 20) for i in range(count)]


def _fragments(kit, publisher, reader, threshold, shares):
    """Re-encrypt a kit's capsule with freshly generated fragments."""
    kfrags = umbral_pre.generate_kfrags(
        publisher.policy_secret(LABEL),
        reader.decrypting_key,
        publisher.signer,
        threshold,
        shares,
        True,
        True,
    )
    return [umbral_pre.reencrypt(kit.capsule, kfrag) for kfrag in kfrags]


def test_message_kit_direct_decrypt():
    reader = Keyring.random()
    kit = MessageKit.author(reader.decrypting_key, b"the data")
    assert kit.decrypt(reader.decrypting_secret) == b"the data"

    restored = MessageKit.from_bytes(kit.to_bytes())
    assert restored == kit
    assert restored.decrypt(reader.decrypting_secret) == b"the data"


def test_message_kit_wrong_key():
    kit = MessageKit.author(Keyring.random().decrypting_key, b"secret")
    try:
        kit.decrypt(Keyring.random().decrypting_secret)
        assert False, "should have raised AuthenticationError"
    except AuthenticationError:
        pass


def test_message_kit_trailing_bytes():
    kit = MessageKit.author(Keyring.random().decrypting_key, b"x")
    try:
        MessageKit.from_bytes(kit.to_bytes() + b"\x00")
        assert False, "should have raised FramingError"
    except FramingError:
        pass


def test_retrieval_result_merge():
    a, b, c = _addresses(3)
    first = RetrievalResult({a: "fa", b: "fb"})
    second = RetrievalResult({b: "fb2", c: "fc"})

    merged = first.with_result(second)
    assert len(merged) == 3
    assert merged.addresses == frozenset({a, b, c})
    assert merged.cfrags[b] == "fb2"

    # Inputs untouched
    assert len(first) == 2
    assert first.cfrags[b] == "fb"
    assert len(RetrievalResult.empty()) == 0


def test_retrieval_result_is_read_only():
    source = {_addresses(1)[0]: "f"}
    result = RetrievalResult(source)
    source["other"] = "g"
    assert len(result) == 1
    try:
        result.cfrags["x"] = "y"
        assert False, "mapping should be read-only"
    except TypeError:
        pass


def test_retrieval_kit_round_trip():
    kit = MessageKit.author(Keyring.random().decrypting_key, b"data")
    queried = _addresses(3)
    retrieval_kit = RetrievalKit(kit.capsule, queried)

    restored = RetrievalKit.from_bytes(retrieval_kit.to_bytes())
    assert restored == retrieval_kit
    assert restored.queried_addresses == frozenset(queried)
    assert bytes(restored.capsule) == bytes(kit.capsule)

    empty = RetrievalKit.from_bytes(RetrievalKit(kit.capsule).to_bytes())
    assert empty.queried_addresses == frozenset()


def test_retrieval_kit_bad_address_block():
    kit = MessageKit.author(Keyring.random().decrypting_key, b"data")
    data = bytearray(RetrievalKit(kit.capsule, _addresses(1)).to_bytes())
    # Declare a 19-byte address block, then drop a byte to match
    data[-21] = 19
    try:
        RetrievalKit.from_bytes(bytes(data[:-1]))
        assert False, "should have raised FramingError"
    except FramingError:
        pass


def test_policy_kit_threshold_gating():
    publisher, reader = Keyring.random(), Keyring.random()
    policy_key = publisher.policy_encrypting_key(LABEL)
    kit = MessageKit.author(policy_key, b"gated").as_policy_kit(policy_key, threshold=2)
    cfrags = _fragments(kit, publisher, reader, threshold=2, shares=3)
    a, b, _ = _addresses(3)

    assert not kit.is_decryptable_by_receiver()
    try:
        kit.decrypt(reader.decrypting_secret)
        assert False, "should have raised InsufficientFragments"
    except InsufficientFragments:
        pass

    one = kit.with_result(RetrievalResult({a: cfrags[0]}))
    assert not one.is_decryptable_by_receiver()
    assert len(kit.result) == 0

    # The same node answering twice does not count twice
    again = one.with_result(RetrievalResult({a: cfrags[1]}))
    assert len(again.result) == 1
    assert not again.is_decryptable_by_receiver()

    two = one.with_result(RetrievalResult({b: cfrags[1]}))
    assert two.is_decryptable_by_receiver()
    assert two.as_retrieval_kit().queried_addresses == frozenset({a, b})
    assert two.decrypt(reader.decrypting_secret) == b"gated"
    assert two.to_bytes() == kit.to_bytes()


def test_policy_kit_rejects_zero_threshold():
    policy_key = Keyring.random().policy_encrypting_key(LABEL)
    kit = MessageKit.author(policy_key, b"x")
    try:
        kit.as_policy_kit(policy_key, 0)
        assert False, "should have raised ValidationError"
    except ValidationError:
        pass


def test_attach_fragments_needs_at_least_one():
    policy_key = Keyring.random().policy_encrypting_key(LABEL)
    kit = MessageKit.author(policy_key, b"x").as_policy_kit(policy_key, 1)
    try:
        kit.attach_fragments()
        assert False, "should have raised InsufficientFragments"
    except InsufficientFragments:
        pass


def _revocation_map():
    publisher, reader = Keyring.random(), Keyring.random()
    kfrags = umbral_pre.generate_kfrags(
        publisher.policy_secret(LABEL), reader.decrypting_key, publisher.signer, 2, 3, True, True
    )
    ursulas, _ = make_nodes(3)
    hrac = HRAC.derive(
        public_key_to_bytes(publisher.verifying_key),
        public_key_to_bytes(reader.verifying_key),
        LABEL,
    )
    treasure_map = TreasureMap.construct_by_publisher(
        hrac, publisher, ursulas, kfrags, 2, publisher.policy_encrypting_key(LABEL)
    )
    return treasure_map, publisher


def test_revocation_kit_covers_every_destination():
    treasure_map, publisher = _revocation_map()
    kit = RevocationKit.build(treasure_map, publisher.signer)

    assert len(kit) == len(treasure_map.destinations)
    assert kit.addresses == frozenset(treasure_map.destinations)
    for address, encrypted_kfrag in treasure_map.destinations.items():
        order = kit[address]
        assert order.node_address == address
        assert order.encrypted_kfrag == encrypted_kfrag
        assert order.verify(publisher.verifying_key) == (address, encrypted_kfrag)


def test_revocation_order_round_trip():
    treasure_map, publisher = _revocation_map()
    order = next(iter(RevocationKit.build(treasure_map, publisher.signer)))
    data = order.to_bytes()
    assert data[8:8 + len(REVOCATION_PREFIX)] == REVOCATION_PREFIX
    assert order.payload == data[:-64]

    restored = RevocationOrder.from_bytes(data)
    assert restored == order
    assert restored.verify(publisher.verifying_key) == (order.node_address, order.encrypted_kfrag)


def test_revocation_order_wrong_publisher():
    treasure_map, publisher = _revocation_map()
    order = next(iter(RevocationKit.build(treasure_map, publisher.signer)))
    try:
        order.verify(Keyring.random().verifying_key)
        assert False, "should have raised AuthenticationError"
    except AuthenticationError:
        pass


def test_revocation_order_tampered_address():
    treasure_map, publisher = _revocation_map()
    order = next(iter(RevocationKit.build(treasure_map, publisher.signer)))
    forged = RevocationOrder(_addresses(1)[0], order.encrypted_kfrag, order.signature)
    try:
        forged.verify(publisher.verifying_key)
        assert False, "should have raised AuthenticationError"
    except AuthenticationError:
        pass


def test_revocation_order_bad_prefix():
    treasure_map, publisher = _revocation_map()
    order = next(iter(RevocationKit.build(treasure_map, publisher.signer)))
    data = bytearray(order.to_bytes())
    data[8] ^= 0xFF
    try:
        RevocationOrder.from_bytes(bytes(data))
        assert False, "should have raised FramingError"
    except FramingError:
        pass


def test_capsule_is_written_raw():
    kit = MessageKit.author(Keyring.random().decrypting_key, b"abc")
    data = kit.to_bytes()
    assert len(bytes(kit.capsule)) == CAPSULE_LENGTH
    assert data[8:8 + CAPSULE_LENGTH] == bytes(kit.capsule)
    assert len(data) - 8 == CAPSULE_LENGTH + 4 + len(kit.ciphertext)

    queried = _addresses(2)
    retrieval_data = RetrievalKit(kit.capsule, queried).to_bytes()
    assert retrieval_data[8:8 + CAPSULE_LENGTH] == bytes(kit.capsule)
    assert len(retrieval_data) - 8 == CAPSULE_LENGTH + 4 + 20 * len(queried)

    treasure_map, _ = _revocation_map()
    for encrypted_kfrag in treasure_map.destinations.values():
        kfrag_data = encrypted_kfrag.to_bytes()
        assert kfrag_data[:CAPSULE_LENGTH] == bytes(encrypted_kfrag.capsule)
        assert len(kfrag_data) == CAPSULE_LENGTH + 4 + len(encrypted_kfrag.ciphertext)


def test_truncated_capsule():
    kit = MessageKit.author(Keyring.random().decrypting_key, b"abc")
    try:
        MessageKit.from_bytes(kit.to_bytes()[:8 + CAPSULE_LENGTH - 1])
        assert False, "should have raised FramingError"
    except FramingError:
        pass


def test_wrong_brand_is_rejected():
    kit = MessageKit.author(Keyring.random().decrypting_key, b"branded")
    treasure_map, publisher = _revocation_map()
    order = next(iter(RevocationKit.build(treasure_map, publisher.signer)))
    messages = [
        (MessageKit, kit.to_bytes()),
        (RetrievalKit, RetrievalKit(kit.capsule, _addresses(1)).to_bytes()),
        (RevocationOrder, order.to_bytes()),
    ]
    for cls, data in messages:
        for i in range(4):
            tampered = bytearray(data)
            tampered[i] ^= 0x20
            try:
                cls.from_bytes(bytes(tampered))
                assert False, f"{cls.__name__} accepted a bad brand byte at {i}"
            except FramingError:
                pass


def test_kits_are_immutable():
    policy_key = Keyring.random().policy_encrypting_key(LABEL)
    kit = MessageKit.author(policy_key, b"fixed")
    policy_kit = kit.as_policy_kit(policy_key, 2)
    retrieval_kit = RetrievalKit(kit.capsule, _addresses(1))
    treasure_map, publisher = _revocation_map()
    order = next(iter(RevocationKit.build(treasure_map, publisher.signer)))

    for value, attribute, new in (
        (kit, "ciphertext", b""),
        (policy_kit, "threshold", 0),
        (retrieval_kit, "queried_addresses", frozenset()),
        (order, "node_address", _addresses(1)[0]),
    ):
        try:
            setattr(value, attribute, new)
            assert False, f"{type(value).__name__}.{attribute} should be read-only"
        except AttributeError:
            pass
    assert policy_kit.threshold == 2


def test_retrieval_result_compares_like_a_mapping():
    a, b = _addresses(2)
    first = RetrievalResult({a: "fa", b: "fb"})
    assert first == RetrievalResult({b: "fb", a: "fa"})
    assert first != RetrievalResult({a: "fa"})
    try:
        hash(first)
        assert False, "should have raised TypeError"
    except TypeError:
        pass
