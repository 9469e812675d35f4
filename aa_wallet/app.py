"""
Smart Account Wallet JSON-RPC server

Exposes the wallet's EIP-1193 request surface over HTTP:
1. POST /rpc with a JSON-RPC 2.0 envelope (wallet_sendCalls, wallet_getCallsStatus, ...)
2. GET /health reporting the bundler status
"""

import asyncio
import logging
import os
import threading
from typing import Any, Optional

from eth_account import Account
from flask import Flask, jsonify, request

from aa_wallet.config import SmartAccountConfig
from aa_wallet.exceptions import InvalidRequestError, WalletError
from aa_wallet.paymaster import AllowlistPaymaster, PaymasterServiceClient
from aa_wallet.smart_account import SmartAccountService
from aa_wallet.validators import ECDSAValidator
from aa_wallet.vendors import Kernel, MyAccount, vendor_registry
from aa_wallet.wallet import WalletService

logger = logging.getLogger(__name__)

# Server defaults
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8080

# JSON-RPC 2.0 error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603


def rpc_error(request_id: Any, code: int, message: str):
    return jsonify({"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}})


class EventLoopThread:
    """Runs an asyncio event loop in a daemon thread so background pipelines outlive HTTP requests"""

    def __init__(self):
        self.loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._run, name="wallet-event-loop", daemon=True)
        self._thread.start()

    def _run(self) -> None:
        asyncio.set_event_loop(self.loop)
        self.loop.run_forever()

    def run(self, coroutine, timeout: Optional[float] = None) -> Any:
        """Run a coroutine on the loop and block for its result"""
        return asyncio.run_coroutine_threadsafe(coroutine, self.loop).result(timeout)

    def stop(self) -> None:
        self.loop.call_soon_threadsafe(self.loop.stop)
        self._thread.join()


class WalletRpcHandler:
    """Serves WalletService.request over JSON-RPC"""

    def __init__(self, wallet: WalletService, loop_thread: Optional[EventLoopThread] = None):
        self.app = Flask(__name__)
        self.wallet = wallet
        self.loop_thread = loop_thread or EventLoopThread()
        self._setup_routes()

    def _setup_routes(self) -> None:
        """Set up Flask routes"""
        self.app.route("/rpc", methods=["POST"])(self.handle_rpc)
        self.app.route("/health", methods=["GET"])(self.health_check)

    def handle_rpc(self):
        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            return rpc_error(None, PARSE_ERROR, "Parse error")

        request_id = payload.get("id")
        method = payload.get("method")
        params = payload.get("params") or []
        if not isinstance(method, str) or not isinstance(params, list):
            return rpc_error(request_id, INVALID_REQUEST, "Invalid request")

        try:
            result = self.loop_thread.run(self.wallet.request(method, params))
        except InvalidRequestError as e:
            code = METHOD_NOT_FOUND if str(e) == "Invalid method" else INVALID_PARAMS
            return rpc_error(request_id, code, str(e))
        except WalletError as e:
            logger.error(f"RPC {method} failed: {e}")
            return rpc_error(request_id, INTERNAL_ERROR, str(e))
        except Exception as e:
            logger.error(f"RPC {method} handling error: {e}")
            return rpc_error(request_id, INTERNAL_ERROR, "Internal server error")

        return jsonify({"jsonrpc": "2.0", "id": request_id, "result": result})

    def health_check(self):
        status = self.loop_thread.run(self.wallet.service.bundler.health_check())
        code = 200 if status["status"] == "healthy" else 503
        return jsonify(status), code

    def run(self, host: str = DEFAULT_HOST, port: int = DEFAULT_PORT) -> None:
        """Run the Flask application"""
        self.app.run(host=host, port=port)


def create_wallet_from_env(config: SmartAccountConfig) -> WalletService:
    """ECDSA-validated wallet over MyAccount and Kernel accounts, signer from PRIVATE_KEY"""
    private_key = os.environ.get("PRIVATE_KEY")
    if not private_key:
        raise ValueError("PRIVATE_KEY environment variable is required")

    service = SmartAccountService(config)
    signer = Account.from_key(private_key)
    validators = {
        "ecdsa": ECDSAValidator(signer, chain=service.chain, from_block=config.log_from_block),
    }

    paymaster = None
    if os.environ.get("PAYMASTER_URL"):
        paymaster = PaymasterServiceClient(os.environ["PAYMASTER_URL"], config.request_timeout)
    elif os.environ.get("PAYMASTER_ADDRESS"):
        paymaster = AllowlistPaymaster(
            service.chain,
            config.chain_id,
            os.environ["PAYMASTER_ADDRESS"],
            entry_point=config.entry_point_address,
            sponsor_all=os.environ.get("PAYMASTER_SPONSOR_ALL", "").lower() in ("1", "true", "yes"),
        )

    return WalletService(
        config,
        validators=validators,
        vendors=vendor_registry([MyAccount(), Kernel()]),
        paymaster=paymaster,
        service=service,
    )


def create_app(wallet: Optional[WalletService] = None) -> Flask:
    if wallet is None:
        wallet = create_wallet_from_env(SmartAccountConfig.from_env())
    return WalletRpcHandler(wallet).app


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    handler = WalletRpcHandler(create_wallet_from_env(SmartAccountConfig.from_env()))
    handler.run(port=int(os.environ.get("PORT", DEFAULT_PORT)))
