"""
Configuration
Per-network defaults, overridable from the environment or a JSON file.

Environment variables:
  TREASUREMAP_CHAIN_ID         — picks the defaults (137 Polygon, 80001 Mumbai)
  TREASUREMAP_PORTER_URI       — Porter base URI
  TREASUREMAP_RPC_URL          — JSON-RPC endpoint for the policy contract
  TREASUREMAP_POLICY_MANAGER   — PolicyManager contract address
  TREASUREMAP_PERIOD_SECONDS   — length of one payment period
  TREASUREMAP_TIMEOUT          — Porter request timeout in seconds
"""

import json
import os
from dataclasses import asdict, dataclass, replace
from enum import Enum
from pathlib import Path

from treasuremap.errors import ValidationError


class ChainId(Enum):
    """Networks with built-in defaults."""
    POLYGON = 137
    MUMBAI = 80001


@dataclass(frozen=True)
class Configuration:
    """Endpoints and policy timing for one network."""
    porter_uri: str
    rpc_url: str = ""
    policy_manager_address: str = ""
    period_seconds: int = 24 * 60 * 60
    timeout: float = 30.0

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_file(cls, path: str | Path) -> "Configuration":
        """Load from JSON. `chain_id` selects defaults for missing keys."""
        data = json.loads(Path(path).read_text())
        chain_id = data.pop("chain_id", None)
        base = default_configuration(chain_id) if chain_id is not None else None
        try:
            return replace(base, **data) if base else cls(**data)
        except TypeError as e:
            raise ValidationError(f"Invalid configuration in {path}: {e}") from e

    @classmethod
    def from_env(cls, environ: dict = None) -> "Configuration":
        """Build from TREASUREMAP_* variables over the selected network's defaults."""
        environ = os.environ if environ is None else environ
        chain_id = int(environ.get("TREASUREMAP_CHAIN_ID", ChainId.POLYGON.value))
        config = default_configuration(chain_id)

        overrides = {}
        if "TREASUREMAP_PORTER_URI" in environ:
            overrides["porter_uri"] = environ["TREASUREMAP_PORTER_URI"]
        if "TREASUREMAP_RPC_URL" in environ:
            overrides["rpc_url"] = environ["TREASUREMAP_RPC_URL"]
        if "TREASUREMAP_POLICY_MANAGER" in environ:
            overrides["policy_manager_address"] = environ["TREASUREMAP_POLICY_MANAGER"]
        try:
            if "TREASUREMAP_PERIOD_SECONDS" in environ:
                overrides["period_seconds"] = int(environ["TREASUREMAP_PERIOD_SECONDS"])
            if "TREASUREMAP_TIMEOUT" in environ:
                overrides["timeout"] = float(environ["TREASUREMAP_TIMEOUT"])
        except ValueError as e:
            raise ValidationError(f"Invalid numeric configuration value: {e}") from e

        return replace(config, **overrides)


CONFIGS = {
    ChainId.POLYGON: Configuration(porter_uri="https://porter.nucypher.community"),
    ChainId.MUMBAI: Configuration(porter_uri="https://porter-ibex.nucypher.community"),
}


def default_configuration(chain_id: int) -> Configuration:
    """
    Built-in defaults for a network.

    Raises:
        ValidationError: If there are no defaults for the chain id.
    """
    try:
        return CONFIGS[ChainId(int(chain_id))]
    except ValueError as e:
        raise ValidationError(f"No default configuration found for chain id {chain_id}") from e
