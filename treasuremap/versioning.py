"""
Versioned Framing
Brand-tagged, version-numbered binary framing shared by every wire message.

Every message starts with an 8-byte header:

    brand (4 bytes ASCII) | major (2 bytes BE) | minor (2 bytes BE)

Decoding picks a decoder from the (major, minor) pair:
  - a different major version is refused outright
  - the same or a newer minor goes to the current decoder
  - an older minor goes to a legacy decoder registered for exactly that
    version, or to the current decoder when none is registered

Variable-length fields carry a 4-byte big-endian length prefix, the same
length header used for bucket padding.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable

from treasuremap.errors import FramingError, IncompatibleVersion

logger = logging.getLogger(__name__)

BRAND_LENGTH = 4
VERSION_PART_LENGTH = 2
HEADER_LENGTH = BRAND_LENGTH + 2 * VERSION_PART_LENGTH

# Width of the length prefix on variable-length fields
LENGTH_PREFIX_SIZE = 4

Decoder = Callable[[bytes], Any]
VersionTuple = tuple[int, int]


@dataclass(frozen=True)
class VersionHandler:
    """Everything needed to decode one message type."""
    brand: str
    version: VersionTuple
    current_decoder: Decoder
    legacy_decoders: dict[VersionTuple, Decoder] = field(default_factory=dict)


def split(data: bytes, size: int) -> tuple[bytes, bytes]:
    """
    Take a fixed number of leading bytes.

    Returns:
        (head, remainder)

    Raises:
        FramingError: If fewer than `size` bytes are available.
    """
    if len(data) < size:
        raise FramingError(f"Expected at least {size} bytes, got {len(data)}")
    return data[:size], data[size:]


def encode_variable_length(payload: bytes) -> bytes:
    """Prefix a payload with its 4-byte big-endian length."""
    return len(payload).to_bytes(LENGTH_PREFIX_SIZE, "big") + payload


def decode_variable_length(data: bytes) -> tuple[bytes, bytes]:
    """
    Read one length-prefixed field.

    Returns:
        (payload, remainder)

    Raises:
        FramingError: If the prefix or the declared payload is truncated.
    """
    length_bytes, remainder = split(data, LENGTH_PREFIX_SIZE)
    length = int.from_bytes(length_bytes, "big")
    if len(remainder) < length:
        raise FramingError(
            f"Declared length {length} overruns the {len(remainder)} bytes available"
        )
    return remainder[:length], remainder[length:]


def encode_header(brand: str, version: VersionTuple) -> bytes:
    """Produce the fixed 8-byte header for a brand and version."""
    brand_bytes = brand.encode("ascii")
    if len(brand_bytes) != BRAND_LENGTH:
        raise ValueError(f"Brand must be {BRAND_LENGTH} ASCII characters, got {brand!r}")
    major, minor = version
    return (
        brand_bytes
        + major.to_bytes(VERSION_PART_LENGTH, "big")
        + minor.to_bytes(VERSION_PART_LENGTH, "big")
    )


def parse_header(expected_brand: str, data: bytes) -> tuple[int, int, bytes]:
    """
    Check the brand and read the version.

    Returns:
        (major, minor, remainder)

    Raises:
        FramingError: If the input is shorter than a header or the brand differs.
    """
    if len(data) < HEADER_LENGTH:
        raise FramingError(
            f"Invalid header length: need {HEADER_LENGTH} bytes, got {len(data)}"
        )
    brand_bytes, remainder = split(data, BRAND_LENGTH)
    if brand_bytes != expected_brand.encode("ascii"):
        raise FramingError(
            f"Invalid brand. Expected {expected_brand!r}, got {brand_bytes!r}"
        )
    major_bytes, remainder = split(remainder, VERSION_PART_LENGTH)
    minor_bytes, remainder = split(remainder, VERSION_PART_LENGTH)
    return int.from_bytes(major_bytes, "big"), int.from_bytes(minor_bytes, "big"), remainder


def resolve_decoder(handler: VersionHandler, major: int, minor: int) -> Decoder:
    """
    Choose the decoder for a parsed version.

    Raises:
        IncompatibleVersion: If the major version is not the handler's.
    """
    latest_major, latest_minor = handler.version
    if major != latest_major:
        raise IncompatibleVersion(
            f"Incompatible versions. Compatible version is {latest_major}.x, "
            f"got {major}.{minor}"
        )
    # Future minors are read with the latest schema
    if minor >= latest_minor:
        return handler.current_decoder

    legacy = handler.legacy_decoders.get((major, minor))
    if legacy is not None:
        return legacy

    logger.debug(
        "No decoder registered for %s %d.%d, using the %d.%d decoder",
        handler.brand, major, minor, latest_major, latest_minor,
    )
    return handler.current_decoder


def from_versioned_bytes(handler: VersionHandler, data: bytes) -> Any:
    """Parse the header, pick a decoder and decode the payload."""
    major, minor, payload = parse_header(handler.brand, data)
    decoder = resolve_decoder(handler, major, minor)
    return decoder(payload)


class Versioned(ABC):
    """
    Mixin for brand-tagged wire messages.

    Subclasses set BRAND and VERSION, implement `_payload()` and
    `_version_handler()`, and get `to_bytes()`, `from_bytes()` and
    `bytes(obj)` for free.
    """

    BRAND: str = ""
    VERSION: VersionTuple = (1, 0)

    @abstractmethod
    def _payload(self) -> bytes:
        """The message body that follows the header."""

    @classmethod
    @abstractmethod
    def _version_handler(cls) -> VersionHandler:
        """Brand, version and decoders for this message type."""

    @classmethod
    def header(cls) -> bytes:
        return encode_header(cls.BRAND, cls.VERSION)

    def to_bytes(self) -> bytes:
        return self.header() + self._payload()

    def __bytes__(self) -> bytes:
        return self.to_bytes()

    @classmethod
    def from_bytes(cls, data: bytes):
        return from_versioned_bytes(cls._version_handler(), bytes(data))
