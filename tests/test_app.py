"""
Tests for the JSON-RPC HTTP surface
"""

import time
from unittest.mock import AsyncMock

import pytest

from aa_wallet.app import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    EventLoopThread,
    WalletRpcHandler,
)
from aa_wallet.wallet import WalletService
from tests.fakes import SENDER, TARGET, StubValidator, StubVendor


@pytest.fixture
def loop_thread():
    thread = EventLoopThread()
    yield thread
    thread.stop()


@pytest.fixture
def handler(config, service, loop_thread):
    wallet = WalletService(
        config,
        validators={"stub": StubValidator()},
        vendors={StubVendor.account_id: StubVendor()},
        service=service,
    )
    return WalletRpcHandler(wallet, loop_thread)


@pytest.fixture
def client(handler):
    handler.app.config["TESTING"] = True
    return handler.app.test_client()


def rpc(client, method, params=None, request_id=1):
    response = client.post("/rpc", json={"jsonrpc": "2.0", "id": request_id, "method": method, "params": params or []})
    assert response.status_code == 200
    return response.get_json()


def test_chain_id(client):
    body = rpc(client, "eth_chainId")

    assert body == {"jsonrpc": "2.0", "id": 1, "result": "0xaa36a7"}


def test_unknown_method(client):
    body = rpc(client, "eth_sign", [SENDER, "0x00"])

    assert body["error"]["code"] == METHOD_NOT_FOUND
    assert body["error"]["message"] == "Invalid method"


def test_invalid_params(client):
    body = rpc(client, "wallet_sendCalls", [{"from": SENDER}])

    assert body["error"]["code"] == INVALID_PARAMS


def test_malformed_target_is_invalid_params(client):
    body = rpc(client, "wallet_sendCalls", [{"from": SENDER, "calls": [{"to": "0x1234"}]}])

    assert body["error"]["code"] == INVALID_PARAMS


def test_unexpected_error_is_a_json_rpc_error(config, service, fake_chain, loop_thread):
    wallet = WalletService(
        config,
        validators={"stub": StubValidator(accounts=[SENDER])},
        vendors={StubVendor.account_id: StubVendor()},
        service=service,
    )
    client = WalletRpcHandler(wallet, loop_thread).app.test_client()
    fake_chain.get_account_id = AsyncMock(side_effect=ConnectionError("rpc down"))

    body = rpc(client, "eth_requestAccounts", request_id=7)

    assert body == {
        "jsonrpc": "2.0",
        "id": 7,
        "error": {"code": INTERNAL_ERROR, "message": "Internal server error"},
    }


def test_unparseable_body(client):
    response = client.post("/rpc", data="not json", content_type="application/json")

    assert response.get_json()["error"]["code"] == PARSE_ERROR


def test_send_calls_then_status(client):
    call_id = rpc(client, "wallet_sendCalls", [{"from": SENDER, "calls": [{"to": TARGET, "value": "0x1"}]}])["result"]

    deadline = time.monotonic() + 5
    status = rpc(client, "wallet_getCallsStatus", [call_id])["result"]
    while status["status"] == "PENDING" and time.monotonic() < deadline:
        time.sleep(0.01)
        status = rpc(client, "wallet_getCallsStatus", [call_id])["result"]

    assert status["status"] == "CONFIRMED"
    assert status["receipts"][0]["status"] == "0x1"


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.get_json() == {"status": "healthy", "chainId": 11155111}


def test_health_reports_bundler_failure(client, fake_bundler):
    fake_bundler.responses["eth_chainId"] = ConnectionError("bundler down")

    response = client.get("/health")

    assert response.status_code == 503
    assert response.get_json()["status"] == "error"
