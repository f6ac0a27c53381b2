"""
chains/providers.py - CometBFT RPC client adapter.

Provides:
- Single-attempt queries against one endpoint (no internal retry)
- Whole-query timeout (status + signing lookups share one budget)
- Failure classification: Unreachable vs Malformed
- Chain ID verification against the node's reported network

Retry and failover belong to the endpoint pool, not to this layer.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from chains.endpoints import RpcEndpoint
from chains.signing import SigningSource, AutoSigningSource
from core.constants import ErrorCode
from core.exceptions import EndpointUnreachableError, MalformedResponseError
from core.format import redact_url
from core.logging import get_logger
from core.models import PollMalformed, PollResult, PollSuccess, PollUnreachable

logger = get_logger(__name__)


@dataclass(frozen=True)
class NodeStatus:
    """Subset of /status the monitor depends on."""
    network: str
    latest_height: int
    catching_up: bool


def parse_status(result: Any) -> NodeStatus:
    """
    Parse a /status result.

    Raises:
        MalformedResponseError: If required fields are missing or mistyped
    """
    try:
        node_info = result["node_info"]
        sync_info = result["sync_info"]
        network = node_info["network"]
        height = int(sync_info["latest_block_height"])
        catching_up = sync_info["catching_up"]
    except (KeyError, TypeError, ValueError) as e:
        raise MalformedResponseError(f"Bad /status response: {e!r}") from e

    if not isinstance(catching_up, bool):
        raise MalformedResponseError(f"catching_up is not a bool: {catching_up!r}")
    if height < 0:
        raise MalformedResponseError(f"Negative block height: {height}")

    return NodeStatus(network=str(network), latest_height=height, catching_up=catching_up)


class CometRPCClient:
    """
    RPC client for one chain.

    Owns a shared httpx.AsyncClient; call close() on shutdown.
    """

    def __init__(
        self,
        chain_id: str,
        validator_addr: str,
        signing_source: Optional[SigningSource] = None,
        timeout_seconds: float = 3.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.chain_id = chain_id
        self.validator_addr = validator_addr.upper()
        self.signing_source = signing_source or AutoSigningSource()
        self.timeout_seconds = timeout_seconds
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout_seconds),
                limits=httpx.Limits(max_connections=10),
                headers={"Accept": "application/json"},
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def get(self, url: str, path: str, params: Optional[dict] = None) -> Any:
        """
        GET a CometBFT JSON-RPC route and return its "result".

        Args:
            url: Endpoint base URL
            path: Route name (status, block, validators)
            params: Query parameters

        Raises:
            EndpointUnreachableError: Network failure, timeout, 5xx/429
            MalformedResponseError: Anything the node said that we can't use
        """
        client = await self._get_client()
        target = f"{url.rstrip('/')}/{path}"

        try:
            resp = await client.get(target, params=params)
        except httpx.TimeoutException as e:
            raise EndpointUnreachableError(
                f"Timeout calling /{path}",
                details={"url": redact_url(url)},
                code=ErrorCode.RPC_TIMEOUT,
            ) from e
        except httpx.TransportError as e:
            raise EndpointUnreachableError(
                f"Transport error calling /{path}: {type(e).__name__}: {e}",
                details={"url": redact_url(url)},
            ) from e
        except httpx.DecodingError as e:
            # Body arrived but its content-encoding is broken
            raise MalformedResponseError(
                f"Undecodable body from /{path}: {e}",
                details={"url": redact_url(url)},
            ) from e
        except httpx.RequestError as e:
            raise EndpointUnreachableError(
                f"Request error calling /{path}: {type(e).__name__}: {e}",
                details={"url": redact_url(url)},
            ) from e

        if resp.status_code >= 500 or resp.status_code == 429:
            raise EndpointUnreachableError(
                f"HTTP {resp.status_code} from /{path}",
                details={"url": redact_url(url), "status_code": resp.status_code},
            )
        if resp.status_code >= 400:
            raise MalformedResponseError(
                f"HTTP {resp.status_code} from /{path}",
                details={"url": redact_url(url), "status_code": resp.status_code},
            )

        try:
            body = resp.json()
        except ValueError as e:
            raise MalformedResponseError(f"Non-JSON body from /{path}") from e

        if not isinstance(body, dict):
            raise MalformedResponseError(f"Unexpected body type from /{path}: {type(body).__name__}")

        if body.get("error"):
            error = body["error"]
            if isinstance(error, dict):
                message = error.get("data") or error.get("message")
            else:
                message = error
            raise MalformedResponseError(
                f"RPC error from /{path}: {message}",
                details={"url": redact_url(url)},
            )

        if "result" not in body:
            raise MalformedResponseError(f"Missing result in /{path} response")

        return body["result"]

    async def fetch_status(self, url: str) -> NodeStatus:
        """Fetch and parse /status."""
        return parse_status(await self.get(url, "status"))

    async def query(self, endpoint: RpcEndpoint, timeout: Optional[float] = None) -> PollResult:
        """
        Query one endpoint once.

        Never raises for remote failures: everything is classified into
        a PollResult. Cancellation propagates.

        Args:
            endpoint: Endpoint to query
            timeout: Budget for the whole query (default: client timeout)

        Returns:
            PollSuccess, PollUnreachable or PollMalformed
        """
        budget = timeout if timeout is not None else self.timeout_seconds
        start = time.monotonic()

        try:
            result = await asyncio.wait_for(self._query(endpoint.url), timeout=budget)
        except asyncio.TimeoutError:
            return PollUnreachable(endpoint=endpoint.url, cause=f"query timed out after {budget:.1f}s")
        except EndpointUnreachableError as e:
            return PollUnreachable(endpoint=endpoint.url, cause=str(e))
        except MalformedResponseError as e:
            return PollMalformed(endpoint=endpoint.url, cause=str(e))

        latency_ms = int((time.monotonic() - start) * 1000)
        return PollSuccess(
            endpoint=result.endpoint,
            latest_height=result.latest_height,
            validator_signing=result.validator_signing,
            catching_up=result.catching_up,
            latency_ms=latency_ms,
        )

    async def _query(self, url: str) -> PollSuccess:
        status = await self.fetch_status(url)

        if status.network != self.chain_id:
            raise MalformedResponseError(
                f"Node reports chain '{status.network}', expected '{self.chain_id}'",
                details={"url": redact_url(url)},
                code=ErrorCode.RPC_CHAIN_MISMATCH,
            )

        if status.catching_up:
            # Signing data from a syncing node is not authoritative
            return PollSuccess(
                endpoint=url,
                latest_height=status.latest_height,
                validator_signing=False,
                catching_up=True,
            )

        signing = await self.signing_source.is_signing(self, url, status, self.validator_addr)
        return PollSuccess(
            endpoint=url,
            latest_height=status.latest_height,
            validator_signing=signing,
            catching_up=False,
        )
