# PATH: tests/unit/test_providers.py
"""
Unit tests for CometRPCClient: status parsing, failure classification
and the single-attempt query contract.

Uses httpx.MockTransport in place of a live node.
"""

import asyncio

import httpx
import pytest

from chains.endpoints import RpcEndpoint
from chains.providers import CometRPCClient, NodeStatus, parse_status
from chains.signing import CommitSignatureSource
from core.constants import ErrorCode
from core.exceptions import EndpointUnreachableError, MalformedResponseError
from core.models import PollMalformed, PollSuccess, PollUnreachable


CHAIN = "cosmoshub-4"
URL = "https://rpc.cosmos.example.com"
VALIDATOR = "95E060D07713070FE9822F6C50BD76BCCBF9F17A"


def status_body(network=CHAIN, height="19876543", catching_up=False):
    return {
        "jsonrpc": "2.0",
        "id": -1,
        "result": {
            "node_info": {"network": network, "moniker": "node"},
            "sync_info": {"latest_block_height": height, "catching_up": catching_up},
        },
    }


def block_body(signers):
    return {
        "jsonrpc": "2.0",
        "id": -1,
        "result": {
            "block": {
                "last_commit": {
                    "height": "19876542",
                    "signatures": [
                        {"block_id_flag": 2, "validator_address": addr, "signature": "c2ln"}
                        for addr in signers
                    ],
                },
            },
        },
    }


def node(status=None, block=None, seen=None):
    """MockTransport handler serving /status and /block."""
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        route = request.url.path.rsplit("/", 1)[-1]
        if route == "status":
            return httpx.Response(200, json=status or status_body())
        if route == "block":
            return httpx.Response(200, json=block or block_body([VALIDATOR]))
        return httpx.Response(404, json={"error": "not found"})
    return handler


def make_client(handler, **kwargs):
    return CometRPCClient(
        chain_id=CHAIN,
        validator_addr=VALIDATOR,
        signing_source=kwargs.pop("signing_source", CommitSignatureSource()),
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


def endpoint(url=URL):
    return RpcEndpoint(url=url, index=0)


class TestParseStatus:

    def test_parses_fields(self):
        status = parse_status(status_body()["result"])
        assert status == NodeStatus(network=CHAIN, latest_height=19876543, catching_up=False)

    def test_missing_sync_info(self):
        with pytest.raises(MalformedResponseError):
            parse_status({"node_info": {"network": CHAIN}})

    def test_non_numeric_height(self):
        with pytest.raises(MalformedResponseError):
            parse_status(status_body(height="abc")["result"])

    def test_catching_up_must_be_bool(self):
        with pytest.raises(MalformedResponseError):
            parse_status(status_body(catching_up="false")["result"])

    def test_result_not_a_dict(self):
        with pytest.raises(MalformedResponseError):
            parse_status(["not", "a", "dict"])


class TestGetClassification:

    @pytest.mark.asyncio
    async def test_returns_result_member(self):
        client = make_client(node())
        result = await client.get(URL, "status")
        assert result["node_info"]["network"] == CHAIN
        await client.close()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [500, 502, 503, 429])
    async def test_gateway_errors_are_unreachable(self, status_code):
        client = make_client(lambda request: httpx.Response(status_code, text="bad gateway"))
        with pytest.raises(EndpointUnreachableError):
            await client.get(URL, "status")
        await client.close()

    @pytest.mark.asyncio
    async def test_client_errors_are_malformed(self):
        client = make_client(lambda request: httpx.Response(403, text="forbidden"))
        with pytest.raises(MalformedResponseError):
            await client.get(URL, "status")
        await client.close()

    @pytest.mark.asyncio
    async def test_connection_refused_is_unreachable(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = make_client(refuse)
        with pytest.raises(EndpointUnreachableError) as exc_info:
            await client.get(URL, "status")
        assert exc_info.value.code == ErrorCode.RPC_UNREACHABLE
        await client.close()

    @pytest.mark.asyncio
    async def test_http_timeout_is_unreachable(self):
        def slow(request):
            raise httpx.ReadTimeout("timed out", request=request)

        client = make_client(slow)
        with pytest.raises(EndpointUnreachableError) as exc_info:
            await client.get(URL, "status")
        assert exc_info.value.code == ErrorCode.RPC_TIMEOUT
        await client.close()

    @pytest.mark.asyncio
    async def test_non_json_is_malformed(self):
        client = make_client(lambda request: httpx.Response(200, text="<html>oops</html>"))
        with pytest.raises(MalformedResponseError):
            await client.get(URL, "status")
        await client.close()

    @pytest.mark.asyncio
    async def test_rpc_error_member_is_malformed(self):
        body = {"jsonrpc": "2.0", "id": -1, "error": {"code": -32603, "message": "Internal error", "data": "height 5 is not available"}}
        client = make_client(lambda request: httpx.Response(200, json=body))
        with pytest.raises(MalformedResponseError) as exc_info:
            await client.get(URL, "block", {"height": "5"})
        assert "height 5 is not available" in exc_info.value.message
        await client.close()

    @pytest.mark.asyncio
    async def test_missing_result_is_malformed(self):
        client = make_client(lambda request: httpx.Response(200, json={"jsonrpc": "2.0"}))
        with pytest.raises(MalformedResponseError):
            await client.get(URL, "status")
        await client.close()

    @pytest.mark.asyncio
    async def test_broken_gzip_body_is_malformed(self):
        def broken_proxy(request):
            return httpx.Response(
                200,
                headers={"content-encoding": "gzip", "content-type": "application/json"},
                content=b"not gzip at all",
            )

        client = make_client(broken_proxy)
        with pytest.raises(MalformedResponseError):
            await client.get(URL, "status")
        await client.close()

    @pytest.mark.asyncio
    async def test_redirect_loop_is_unreachable(self):
        def loop(request):
            return httpx.Response(302, headers={"location": str(request.url)})

        client = make_client(loop)
        client._client = httpx.AsyncClient(
            transport=httpx.MockTransport(loop), follow_redirects=True, max_redirects=3,
        )
        with pytest.raises(EndpointUnreachableError):
            await client.get(URL, "status")
        await client.close()

    @pytest.mark.asyncio
    async def test_builds_route_url(self):
        seen = []
        client = make_client(node(seen=seen))
        await client.get(URL + "/", "block", {"height": "10"})

        assert str(seen[0].url) == f"{URL}/block?height=10"
        await client.close()


class TestQuery:

    @pytest.mark.asyncio
    async def test_signing(self):
        client = make_client(node())
        result = await client.query(endpoint())

        assert isinstance(result, PollSuccess)
        assert result.endpoint == URL
        assert result.latest_height == 19876543
        assert result.validator_signing is True
        assert result.catching_up is False
        await client.close()

    @pytest.mark.asyncio
    async def test_not_signing(self):
        other = "D1CE9A9EF19196DA9BCEA8484791DC6BA28178B0"
        client = make_client(node(block=block_body([other])))
        result = await client.query(endpoint())

        assert isinstance(result, PollSuccess)
        assert result.validator_signing is False
        await client.close()

    @pytest.mark.asyncio
    async def test_lowercase_validator_address_matches(self):
        client = CometRPCClient(
            chain_id=CHAIN,
            validator_addr=VALIDATOR.lower(),
            signing_source=CommitSignatureSource(),
            transport=httpx.MockTransport(node()),
        )
        result = await client.query(endpoint())

        assert result.validator_signing is True
        await client.close()

    @pytest.mark.asyncio
    async def test_block_is_queried_at_latest_height(self):
        seen = []
        client = make_client(node(seen=seen))
        await client.query(endpoint())

        block_requests = [r for r in seen if r.url.path.endswith("/block")]
        assert block_requests[0].url.params["height"] == "19876543"
        await client.close()

    @pytest.mark.asyncio
    async def test_catching_up_skips_signing_lookup(self):
        seen = []
        client = make_client(node(status=status_body(catching_up=True), seen=seen))
        result = await client.query(endpoint())

        assert isinstance(result, PollSuccess)
        assert result.catching_up is True
        assert [r.url.path.rsplit("/", 1)[-1] for r in seen] == ["status"]
        await client.close()

    @pytest.mark.asyncio
    async def test_chain_mismatch_is_malformed(self):
        client = make_client(node(status=status_body(network="osmosis-1")))
        result = await client.query(endpoint())

        assert isinstance(result, PollMalformed)
        assert ErrorCode.RPC_CHAIN_MISMATCH.value in result.cause
        await client.close()

    @pytest.mark.asyncio
    async def test_unreachable_never_raises(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = make_client(refuse)
        result = await client.query(endpoint())

        assert isinstance(result, PollUnreachable)
        assert result.reachable is False
        await client.close()

    @pytest.mark.asyncio
    async def test_whole_query_timeout(self):
        """Budget covers the whole query, not each HTTP call."""

        class SlowSource:
            name = "slow"

            async def is_signing(self, rpc, url, status, validator_addr):
                await asyncio.sleep(5)
                return True

        client = make_client(node(), signing_source=SlowSource())
        result = await client.query(endpoint(), timeout=0.05)

        assert isinstance(result, PollUnreachable)
        assert "timed out" in result.cause
        await client.close()

    @pytest.mark.asyncio
    async def test_malformed_signature_list(self):
        body = block_body([])
        body["result"]["block"]["last_commit"]["signatures"] = ["garbage"]
        client = make_client(node(block=body))
        result = await client.query(endpoint())

        assert isinstance(result, PollMalformed)
        await client.close()

    @pytest.mark.asyncio
    async def test_non_string_signer_address(self):
        body = block_body([])
        body["result"]["block"]["last_commit"]["signatures"] = [
            {"block_id_flag": 2, "validator_address": 12345, "signature": "c2ln"},
        ]
        client = make_client(node(block=body))
        result = await client.query(endpoint())

        assert isinstance(result, PollMalformed)
        assert "validator_address" in result.cause
        await client.close()

    @pytest.mark.asyncio
    async def test_undecodable_body_never_raises(self):
        def broken_proxy(request):
            return httpx.Response(200, headers={"content-encoding": "gzip"}, content=b"not gzip at all")

        client = make_client(broken_proxy)
        result = await client.query(endpoint())

        assert isinstance(result, PollMalformed)
        assert result.reachable is True
        await client.close()

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self):
        client = make_client(node())
        await client.query(endpoint())
        await client.close()
        await client.close()
