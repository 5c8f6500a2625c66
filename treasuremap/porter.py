"""
Porter — Relay Discovery Client
HTTP client for the service that knows the relay nodes.

Porter does two things for us:
  1. Samples nodes to hold a new policy's key fragments (get_ursulas)
  2. Fans re-encryption requests out to the nodes named in a treasure map
     and returns whatever capsule fragments came back (retrieve_cfrags)

Fragments returned here are NOT verified. The reader verifies each one
against the capsule, the publisher and the policy key before use.

Retries, backoff and node selection belong to Porter, not to this client.
"""

import base64
import logging
from dataclasses import dataclass
from typing import Sequence

import httpx
import umbral_pre

from treasuremap.errors import PorterError
from treasuremap.keys import public_key_to_bytes

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


@dataclass(frozen=True)
class Ursula:
    """A relay node as Porter describes it."""
    checksum_address: str
    uri: str
    encrypting_key: umbral_pre.PublicKey

    @classmethod
    def from_dict(cls, data: dict) -> "Ursula":
        try:
            return cls(
                checksum_address=data["checksum_address"],
                uri=data["uri"],
                encrypting_key=umbral_pre.PublicKey.from_compressed_bytes(
                    bytes.fromhex(data["encrypting_key"])
                ),
            )
        except (KeyError, ValueError) as e:
            raise PorterError(f"Malformed node entry from Porter: {data!r}") from e

    def to_dict(self) -> dict:
        return {
            "checksum_address": self.checksum_address,
            "uri": self.uri,
            "encrypting_key": public_key_to_bytes(self.encrypting_key).hex(),
        }


class Porter:
    """
    Async Porter client.

    Args:
        porter_uri: Base URI of the Porter instance.
        timeout: Per-request timeout in seconds.
        client: Optional pre-built httpx.AsyncClient (transport, proxies, ...).
    """

    def __init__(
        self,
        porter_uri: str,
        timeout: float = DEFAULT_TIMEOUT,
        client: httpx.AsyncClient = None,
    ):
        self.porter_uri = porter_uri.rstrip("/")
        self.timeout = timeout
        self._client = client

    def _new_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout)

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        url = f"{self.porter_uri}{path}"
        try:
            if self._client is not None:
                response = await self._client.request(method, url, **kwargs)
            else:
                async with self._new_client() as client:
                    response = await client.request(method, url, **kwargs)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as e:
            raise PorterError(
                f"Porter returned {e.response.status_code} for {method} {path}"
            ) from e
        except httpx.HTTPError as e:
            raise PorterError(f"Porter request {method} {path} failed: {e}") from e
        except ValueError as e:
            raise PorterError(f"Porter returned invalid JSON for {method} {path}") from e

        if not isinstance(body, dict) or "result" not in body:
            raise PorterError(f"Porter response for {path} has no result")
        if not isinstance(body["result"], dict):
            raise PorterError(f"Porter result for {path} is not an object")
        return body["result"]

    async def get_ursulas(
        self,
        quantity: int,
        exclude_ursulas: Sequence[str] = (),
        include_ursulas: Sequence[str] = (),
    ) -> list[Ursula]:
        """
        Ask Porter for `quantity` nodes.

        Args:
            quantity: How many nodes to return.
            exclude_ursulas: Addresses that must not be returned.
            include_ursulas: Addresses that must be returned if available.
        """
        params = {"quantity": quantity}
        if exclude_ursulas:
            params["exclude_ursulas"] = ",".join(exclude_ursulas)
        if include_ursulas:
            params["include_ursulas"] = ",".join(include_ursulas)

        result = await self._request("GET", "/get_ursulas", params=params)
        ursulas = [Ursula.from_dict(entry) for entry in result.get("ursulas", [])]
        logger.debug("Porter returned %d of %d requested nodes", len(ursulas), quantity)
        return ursulas

    async def retrieve_cfrags(
        self,
        treasure_map,
        retrieval_kits: Sequence,
        publisher_verifying_key: umbral_pre.PublicKey,
        reader_encrypting_key: umbral_pre.PublicKey,
        reader_verifying_key: umbral_pre.PublicKey,
    ) -> list[dict[str, umbral_pre.CapsuleFrag]]:
        """
        Request re-encryption of each kit's capsule from the map's nodes.

        Returns:
            One {checksum address: CapsuleFrag} dict per retrieval kit, in
            the same order as `retrieval_kits`. Nodes that failed are
            absent from the dict.
        """
        payload = {
            "treasure_map": base64.b64encode(treasure_map.to_bytes()).decode(),
            "retrieval_kits": [
                base64.b64encode(kit.to_bytes()).decode() for kit in retrieval_kits
            ],
            "alice_verifying_key": public_key_to_bytes(publisher_verifying_key).hex(),
            "bob_encrypting_key": public_key_to_bytes(reader_encrypting_key).hex(),
            "bob_verifying_key": public_key_to_bytes(reader_verifying_key).hex(),
        }
        result = await self._request("POST", "/retrieve_cfrags", json=payload)

        retrieval_results = result.get("retrieval_results", [])
        if len(retrieval_results) != len(retrieval_kits):
            raise PorterError(
                f"Porter returned {len(retrieval_results)} results "
                f"for {len(retrieval_kits)} retrieval kits"
            )

        parsed = []
        for entry in retrieval_results:
            for address, error in entry.get("errors", {}).items():
                logger.info("Node %s could not re-encrypt: %s", address, error)
            cfrags = {}
            for address, encoded in entry.get("cfrags", {}).items():
                try:
                    cfrags[address] = umbral_pre.CapsuleFrag.from_bytes(base64.b64decode(encoded))
                except ValueError as e:
                    raise PorterError(f"Malformed capsule fragment from {address}") from e
            parsed.append(cfrags)
        return parsed
