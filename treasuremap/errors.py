"""
Errors
Every failure raised by treasuremap derives from TreasureMapError.

None of these are retried internally. The caller decides whether to
try again, usually by asking more nodes.
"""


class TreasureMapError(Exception):
    """Base class for all treasuremap errors."""


class FramingError(TreasureMapError):
    """Truncated input, brand mismatch, or a declared length that overruns the buffer."""


class IncompatibleVersion(TreasureMapError):
    """The message major version differs from the one this codec speaks."""


class ValidationError(TreasureMapError, ValueError):
    """Parameters that can never produce a valid artifact."""


class AuthenticationError(TreasureMapError):
    """A signature or fragment failed verification."""


class InsufficientFragments(TreasureMapError):
    """Not enough re-encrypted fragments to open a capsule."""


class PorterError(TreasureMapError):
    """The relay-discovery service returned an error or an unreadable response."""


class ContractError(TreasureMapError):
    """A policy contract call failed or returned an unexpected result."""
