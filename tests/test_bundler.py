"""
Tests for the bundler JSON-RPC transport
"""

from unittest.mock import MagicMock, patch

import pytest
import requests

from aa_wallet.bundler import BundlerClient, convert_user_operation_to_rpc_format
from aa_wallet.config import ENTRYPOINT_V07
from aa_wallet.exceptions import (
    BundlerMethodNotAllowed,
    BundlerRpcError,
    BundlerTransportError,
    UserOperationRejected,
)
from aa_wallet.user_operations import UserOperation
from tests.fakes import PAYMASTER_ADDRESS, SENDER, USER_OP_HASH


def json_response(body, status_code=200):
    response = MagicMock()
    response.ok = 200 <= status_code < 300
    response.status_code = status_code
    response.json.return_value = body
    return response


@pytest.fixture
def bundler():
    return BundlerClient("http://bundler.test", timeout=5)


@pytest.fixture
def user_op():
    return UserOperation(sender=SENDER, call_data="0xaa", signature="0x" + "ff" * 65)


class TestSend:
    @pytest.mark.asyncio
    async def test_returns_result_verbatim(self, bundler):
        with patch("aa_wallet.bundler.requests.post") as post:
            post.return_value = json_response({"jsonrpc": "2.0", "id": 1, "result": "0xaa36a7"})

            assert await bundler.send("eth_chainId") == "0xaa36a7"

        _, kwargs = post.call_args
        assert kwargs["json"] == {"jsonrpc": "2.0", "method": "eth_chainId", "params": [], "id": 1}
        assert kwargs["timeout"] == 5

    @pytest.mark.asyncio
    async def test_method_outside_allow_list_makes_no_request(self, bundler):
        with patch("aa_wallet.bundler.requests.post") as post:
            with pytest.raises(BundlerMethodNotAllowed):
                await bundler.send("eth_sendRawTransaction", ["0x00"])

            post.assert_not_called()

    @pytest.mark.asyncio
    async def test_rpc_error_carries_method_and_payload(self, bundler):
        error = {"code": -32602, "message": "AA21 didn't pay prefund"}
        with patch("aa_wallet.bundler.requests.post") as post:
            post.return_value = json_response({"jsonrpc": "2.0", "id": 1, "error": error})

            with pytest.raises(BundlerRpcError) as exc_info:
                await bundler.send("eth_estimateUserOperationGas", [{}, ENTRYPOINT_V07])

        assert exc_info.value.method == "eth_estimateUserOperationGas"
        assert exc_info.value.error == error
        assert "AA21 didn't pay prefund" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_http_error_is_a_transport_error(self, bundler):
        with patch("aa_wallet.bundler.requests.post") as post:
            post.return_value = json_response({}, status_code=502)

            with pytest.raises(BundlerTransportError) as exc_info:
                await bundler.send("eth_chainId")

        assert exc_info.value.status_code == 502

    @pytest.mark.asyncio
    async def test_connection_failure_is_a_transport_error(self, bundler):
        with patch("aa_wallet.bundler.requests.post", side_effect=requests.ConnectionError("refused")):
            with pytest.raises(BundlerTransportError):
                await bundler.send("eth_chainId")


class TestHelpers:
    @pytest.mark.asyncio
    async def test_send_user_operation_posts_rpc_format(self, bundler, user_op):
        with patch("aa_wallet.bundler.requests.post") as post:
            post.return_value = json_response({"result": USER_OP_HASH})

            assert await bundler.send_user_operation(user_op, ENTRYPOINT_V07) == USER_OP_HASH

        params = post.call_args.kwargs["json"]["params"]
        assert params[0]["sender"] == SENDER
        assert params[0]["callData"] == "0xaa"
        assert params[1] == ENTRYPOINT_V07

    @pytest.mark.asyncio
    async def test_null_submission_is_rejected(self, bundler, user_op):
        with patch("aa_wallet.bundler.requests.post") as post:
            post.return_value = json_response({"result": None})

            with pytest.raises(UserOperationRejected):
                await bundler.send_user_operation(user_op, ENTRYPOINT_V07)

    @pytest.mark.asyncio
    async def test_null_estimate_is_rejected(self, bundler, user_op):
        with patch("aa_wallet.bundler.requests.post") as post:
            post.return_value = json_response({"result": None})

            with pytest.raises(UserOperationRejected):
                await bundler.estimate_user_operation_gas(user_op, ENTRYPOINT_V07)

    @pytest.mark.asyncio
    async def test_lookups_pass_the_hash_through(self, bundler):
        with patch("aa_wallet.bundler.requests.post") as post:
            post.return_value = json_response({"result": None})

            assert await bundler.get_user_operation_receipt(USER_OP_HASH) is None
            assert await bundler.get_user_operation_by_hash(USER_OP_HASH) is None

        methods = [call.kwargs["json"]["method"] for call in post.call_args_list]
        assert methods == ["eth_getUserOperationReceipt", "eth_getUserOperationByHash"]
        assert post.call_args.kwargs["json"]["params"] == [USER_OP_HASH]

    @pytest.mark.asyncio
    async def test_chain_id_is_parsed(self, bundler):
        with patch("aa_wallet.bundler.requests.post") as post:
            post.return_value = json_response({"result": "0xaa36a7"})

            assert await bundler.chain_id() == 11155111

    @pytest.mark.asyncio
    async def test_health_check_reports_errors(self, bundler):
        with patch("aa_wallet.bundler.requests.post") as post:
            post.return_value = json_response({}, status_code=500)

            status = await bundler.health_check()

        assert status["status"] == "error"


class TestRpcFormat:
    def test_unsponsored_operation_has_null_paymaster_fields(self, user_op):
        rpc = convert_user_operation_to_rpc_format(user_op)

        assert rpc["factory"] is None
        assert rpc["factoryData"] is None
        assert rpc["paymaster"] is None
        assert rpc["paymasterData"] is None
        assert rpc["signature"] == "0x" + "ff" * 65

    def test_sponsored_operation_fills_paymaster_fields(self, user_op):
        user_op.set_paymaster(PAYMASTER_ADDRESS)

        rpc = convert_user_operation_to_rpc_format(user_op)

        assert rpc["paymaster"] == PAYMASTER_ADDRESS
        assert rpc["paymasterData"] == "0x"
        assert rpc["paymasterVerificationGasLimit"] == "0x0"
        assert rpc["paymasterPostOpGasLimit"] == "0x0"
