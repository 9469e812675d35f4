"""
ERC-4337 bundler JSON-RPC transport and UserOperation wire format
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

import requests

from aa_wallet.config import DEFAULT_REQUEST_TIMEOUT
from aa_wallet.exceptions import (
    BundlerMethodNotAllowed,
    BundlerRpcError,
    BundlerTransportError,
    UserOperationRejected,
)
from aa_wallet.user_operations import UserOperation

logger = logging.getLogger(__name__)

ALLOWED_METHODS = frozenset({
    "eth_sendUserOperation",
    "eth_estimateUserOperationGas",
    "eth_getUserOperationByHash",
    "eth_getUserOperationReceipt",
    "eth_supportedEntryPoints",
    "eth_chainId",
    "pimlico_getUserOperationGasPrice",
})


def convert_user_operation_to_rpc_format(user_op: UserOperation) -> Dict[str, Optional[str]]:
    """Convert a UserOperation to the bundler JSON format (EntryPoint v0.7)"""
    rpc_dict = {
        "sender": user_op.sender,
        "nonce": user_op.nonce,
        "callData": user_op.call_data,
        "callGasLimit": user_op.call_gas_limit,
        "verificationGasLimit": user_op.verification_gas_limit,
        "preVerificationGas": user_op.pre_verification_gas,
        "maxFeePerGas": user_op.max_fee_per_gas,
        "maxPriorityFeePerGas": user_op.max_priority_fee_per_gas,
        "signature": user_op.signature or "0x",
    }

    # Handle optional factory fields
    rpc_dict.update({
        "factory": user_op.factory,
        "factoryData": user_op.factory_data if user_op.factory else None,
    })

    # Handle optional paymaster fields
    if user_op.paymaster:
        rpc_dict.update({
            "paymaster": user_op.paymaster,
            "paymasterVerificationGasLimit": user_op.paymaster_verification_gas_limit or "0x0",
            "paymasterPostOpGasLimit": user_op.paymaster_post_op_gas_limit or "0x0",
            "paymasterData": user_op.paymaster_data or "0x",
        })
    else:
        rpc_dict.update({
            "paymaster": None,
            "paymasterVerificationGasLimit": None,
            "paymasterPostOpGasLimit": None,
            "paymasterData": None,
        })

    return rpc_dict


class BundlerClient:
    """JSON-RPC client for ERC-4337 bundlers (Pimlico compatible)"""

    def __init__(self, url: str, timeout: int = DEFAULT_REQUEST_TIMEOUT):
        self.url = url
        self.timeout = timeout

    async def send(self, method: str, params: Optional[List] = None) -> Any:
        """Send one JSON-RPC request and return its `result` verbatim"""
        if method not in ALLOWED_METHODS:
            raise BundlerMethodNotAllowed(method)

        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params or [],
            "id": 1
        }
        return await asyncio.to_thread(self._post, method, payload)

    def _post(self, method: str, payload: Dict) -> Any:
        try:
            response = requests.post(
                self.url,
                json=payload,
                headers={'Content-Type': 'application/json'},
                timeout=self.timeout
            )
        except requests.RequestException as e:
            raise BundlerTransportError(f"Bundler request failed: {method} - {e}") from e

        if not response.ok:
            raise BundlerTransportError(f"HTTP error! status: {response.status_code}", response.status_code)

        data = response.json()
        if data.get('error'):
            logger.error(f"Bundler error for {method}: {data['error']}")
            raise BundlerRpcError(method, data['error'])

        return data.get('result')

    async def get_user_operation_gas_price(self) -> Dict:
        """Get current gas prices (slow / standard / fast tiers)"""
        return await self.send("pimlico_getUserOperationGasPrice")

    async def estimate_user_operation_gas(self, user_operation: UserOperation, entry_point: str) -> Dict:
        user_op_dict = convert_user_operation_to_rpc_format(user_operation)
        result = await self.send("eth_estimateUserOperationGas", [user_op_dict, entry_point])
        if not result:
            raise UserOperationRejected("Bundler returned no gas estimate")
        return result

    async def send_user_operation(self, user_operation: UserOperation, entry_point: str) -> str:
        """Submit a signed UserOperation and return the bundler's userOpHash"""
        user_op_dict = convert_user_operation_to_rpc_format(user_operation)
        logger.debug(f"Full UserOp to bundler: {user_op_dict}")

        result = await self.send("eth_sendUserOperation", [user_op_dict, entry_point])
        if not result:
            raise UserOperationRejected("Failed to send user operation")

        logger.info(f"UserOperation sent successfully: {result}")
        return result

    async def get_user_operation_receipt(self, user_op_hash: str) -> Optional[Dict]:
        return await self.send("eth_getUserOperationReceipt", [user_op_hash])

    async def get_user_operation_by_hash(self, user_op_hash: str) -> Optional[Dict]:
        return await self.send("eth_getUserOperationByHash", [user_op_hash])

    async def supported_entry_points(self) -> List[str]:
        return await self.send("eth_supportedEntryPoints")

    async def chain_id(self) -> int:
        return int(await self.send("eth_chainId"), 16)

    async def health_check(self) -> Dict[str, Any]:
        try:
            return {"status": "healthy", "chainId": await self.chain_id()}
        except Exception as exc:
            return {"status": "error", "reason": str(exc)}
