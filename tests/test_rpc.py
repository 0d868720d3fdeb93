"""
JSON-RPC Client and Contract Oracle Reader Test Suite

The node is simulated with ``httpx.MockTransport`` answering eth_call for
the oracle contract's view functions.

Run with:
    pytest tests/test_rpc.py -v
"""

import json

import httpx
import pytest
from eth_abi import decode, encode

from indexorder.crypto.abi import compute_function_selector
from indexorder.crypto.hashing import to_bytes, to_hex
from indexorder.exceptions import NetworkError, OracleUnavailable, TransactionReverted, UnknownIndex
from indexorder.oracle.contract import ContractOracleReader
from indexorder.oracle.registry import OracleType
from indexorder.rpc.client import EthRPCClient, RPCError

RPC_URL = "https://node.test"
ORACLE = "0x55aafa1d3de3d05536c96ee9f1b965d6ce04a4c1"
FEED = "0x3333333333333333333333333333333333333333"

SELECTORS = {
    compute_function_selector("getIndexValue(uint256)"): "getIndexValue",
    compute_function_selector("isValidIndex(uint256)"): "isValidIndex",
    compute_function_selector("getOracleType(uint256)"): "getOracleType",
    compute_function_selector("getOracleAddress(uint256)"): "getOracleAddress",
}


class MockOracleNode:
    """Serves a fixed set of indices over eth_call."""

    def __init__(self, indices, fail_value_for=()):
        self.indices = indices
        self.fail_value_for = set(fail_value_for)
        self.requests = []

    def __call__(self, request):
        payload = json.loads(request.content)
        self.requests.append(payload)
        if payload["method"] != "eth_call":
            return self.reply(payload, result="0x1")

        data = to_bytes(payload["params"][0]["data"])
        function = SELECTORS[data[:4]]
        (index_id,) = decode(["uint256"], data[4:])
        entry = self.indices.get(index_id)

        if function == "isValidIndex":
            return self.reply(payload, result=to_hex(encode(["bool"], [entry is not None])))
        if entry is None:
            return self.reply(payload, error={"code": 3, "message": "execution reverted: Invalid index"})
        if function == "getIndexValue":
            if index_id in self.fail_value_for:
                return self.reply(payload, error={"code": -32000, "message": "header not found"})
            return self.reply(payload, result=to_hex(encode(["uint256", "uint256"], [entry["value"], entry["ts"]])))
        if function == "getOracleType":
            return self.reply(payload, result=to_hex(encode(["uint8"], [entry.get("type", 0)])))
        return self.reply(payload, result=to_hex(encode(["address"], [entry.get("feed", "0x" + "00" * 20)])))

    @staticmethod
    def reply(payload, result=None, error=None):
        body = {"jsonrpc": "2.0", "id": payload["id"]}
        if error is not None:
            body["error"] = error
        else:
            body["result"] = result
        return httpx.Response(200, json=body)


def make_reader(node, timeout=5.0):
    http = httpx.AsyncClient(transport=httpx.MockTransport(node))
    rpc = EthRPCClient(RPC_URL, client=http)
    return ContractOracleReader(rpc, ORACLE, timeout=timeout), http


INDICES = {
    0: {"value": 320, "ts": 1_700_000_000},
    3: {"value": 1_450, "ts": 1_700_000_100, "type": 1, "feed": FEED},
    5: {"value": 25_000, "ts": 1_700_000_200},
    6: {"value": 42, "ts": 1_700_000_300},
}


# ============================================================================
# Contract oracle reader
# ============================================================================


@pytest.mark.asyncio
class TestContractOracleReader:

    async def test_get_value(self):
        reader, http = make_reader(MockOracleNode(INDICES))
        try:
            reading = await reader.get_value(3)
        finally:
            await http.aclose()
        assert reading.value == 1_450
        assert reading.timestamp == 1_700_000_100

    async def test_eth_call_targets_oracle(self):
        node = MockOracleNode(INDICES)
        reader, http = make_reader(node)
        try:
            await reader.get_value(0)
        finally:
            await http.aclose()
        call = node.requests[0]["params"][0]
        assert call["to"].lower() == ORACLE
        assert node.requests[0]["params"][1] == "latest"

    async def test_get_index(self):
        reader, http = make_reader(MockOracleNode(INDICES))
        try:
            record = await reader.get_index(3)
            plain = await reader.get_index(0)
        finally:
            await http.aclose()
        assert record.oracle_type is OracleType.FEED
        assert record.feed_address.lower() == FEED
        assert record.symbol == "VIX"
        assert plain.feed_address is None
        assert plain.source_url.startswith("https://")

    async def test_reverted_read_is_unknown_index(self):
        reader, http = make_reader(MockOracleNode(INDICES))
        try:
            assert not await reader.is_valid_index(9)
            with pytest.raises(UnknownIndex):
                await reader.get_value(9)
        finally:
            await http.aclose()

    async def test_node_error_is_unavailable(self):
        reader, http = make_reader(MockOracleNode(INDICES, fail_value_for=[5]))
        try:
            with pytest.raises(OracleUnavailable):
                await reader.get_value(5)
        finally:
            await http.aclose()

    async def test_list_indices_stops_at_first_gap(self):
        reader, http = make_reader(MockOracleNode(INDICES, fail_value_for=[5]))
        try:
            records = await reader.list_indices()
        finally:
            await http.aclose()
        # 1, 2 and 4 are invalid predefined ids; 5 fails to read; 7 ends the scan
        assert [r.id for r in records] == [0, 3, 6]

    async def test_transport_failure(self):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        reader, http = make_reader(handler)
        try:
            with pytest.raises(OracleUnavailable):
                await reader.get_value(0)
        finally:
            await http.aclose()


# ============================================================================
# JSON-RPC client
# ============================================================================


@pytest.mark.asyncio
class TestEthRPCClient:

    async def test_hex_results(self):
        def handler(request):
            payload = json.loads(request.content)
            results = {"eth_gasPrice": "0x3b9aca00", "eth_chainId": "0x2105", "eth_getTransactionCount": "0x7"}
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": payload["id"], "result": results[payload["method"]]})

        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        rpc = EthRPCClient(RPC_URL, client=http)
        try:
            assert await rpc.gas_price() == 1_000_000_000
            assert await rpc.chain_id() == 8453
            assert await rpc.get_transaction_count(FEED) == 7
        finally:
            await http.aclose()

    async def test_error_object(self):
        def handler(request):
            payload = json.loads(request.content)
            error = {"code": -32601, "message": "method not found"}
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": payload["id"], "error": error})

        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        rpc = EthRPCClient(RPC_URL, client=http)
        try:
            with pytest.raises(RPCError) as exc_info:
                await rpc.request("eth_foo")
        finally:
            await http.aclose()
        assert exc_info.value.code == -32601
        assert not exc_info.value.is_revert

    async def test_estimate_gas_revert(self):
        def handler(request):
            payload = json.loads(request.content)
            error = {"code": 3, "message": "execution reverted"}
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": payload["id"], "error": error})

        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        rpc = EthRPCClient(RPC_URL, client=http)
        try:
            with pytest.raises(TransactionReverted):
                await rpc.estimate_gas({"to": ORACLE, "data": "0x"})
        finally:
            await http.aclose()

    async def test_http_error(self):
        http = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(502)))
        rpc = EthRPCClient(RPC_URL, client=http)
        try:
            with pytest.raises(NetworkError):
                await rpc.request("eth_chainId")
        finally:
            await http.aclose()

    async def test_raw_transaction_prefixed(self):
        seen = {}

        def handler(request):
            payload = json.loads(request.content)
            seen["params"] = payload["params"]
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": payload["id"], "result": "0x" + "ab" * 32})

        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        rpc = EthRPCClient(RPC_URL, client=http)
        try:
            assert await rpc.send_raw_transaction("f86b01") == "0x" + "ab" * 32
        finally:
            await http.aclose()
        assert seen["params"] == ["0xf86b01"]
