"""
Read-only chain access (balances, view calls, event logs) for smart accounts
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from web3 import Web3

from aa_wallet.packing import PackedUserOperation

logger = logging.getLogger(__name__)

PACKED_USER_OP_COMPONENTS = [
    {"name": "sender", "type": "address"},
    {"name": "nonce", "type": "uint256"},
    {"name": "initCode", "type": "bytes"},
    {"name": "callData", "type": "bytes"},
    {"name": "accountGasLimits", "type": "bytes32"},
    {"name": "preVerificationGas", "type": "uint256"},
    {"name": "gasFees", "type": "bytes32"},
    {"name": "paymasterAndData", "type": "bytes"},
    {"name": "signature", "type": "bytes"},
]

ENTRY_POINT_ABI = [
    {
        "inputs": [{"name": "sender", "type": "address"}, {"name": "key", "type": "uint192"}],
        "name": "getNonce",
        "outputs": [{"name": "nonce", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [{"name": "userOp", "type": "tuple", "components": PACKED_USER_OP_COMPONENTS}],
        "name": "getUserOpHash",
        "outputs": [{"name": "", "type": "bytes32"}],
        "stateMutability": "view",
        "type": "function"
    },
]

ACCOUNT_ID_ABI = [{
    "inputs": [],
    "name": "accountId",
    "outputs": [{"name": "", "type": "string"}],
    "stateMutability": "pure",
    "type": "function"
}]


class ChainClient:
    """Async facade over a synchronous Web3 HTTP provider"""

    def __init__(self, rpc_url: str, web3: Optional[Web3] = None):
        self.web3 = web3 or Web3(Web3.HTTPProvider(rpc_url))

    def contract(self, address: str, abi: List[Dict]):
        return self.web3.eth.contract(address=Web3.to_checksum_address(address), abi=abi)

    async def get_balance(self, address: str) -> int:
        return await asyncio.to_thread(self.web3.eth.get_balance, Web3.to_checksum_address(address))

    async def call(self, address: str, abi: List[Dict], function_name: str, *args) -> Any:
        """Call a view function"""
        function = getattr(self.contract(address, abi).functions, function_name)
        return await asyncio.to_thread(function(*args).call)

    async def get_nonce(self, entry_point: str, sender: str, key: int) -> int:
        """Get the keyed nonce of a smart account from the EntryPoint"""
        nonce = await self.call(entry_point, ENTRY_POINT_ABI, "getNonce", Web3.to_checksum_address(sender), key)
        logger.info(f"Current nonce for {sender} (key {hex(key)}): {nonce}")
        return nonce

    async def get_user_op_hash(self, entry_point: str, packed: PackedUserOperation) -> str:
        user_op_hash = await self.call(entry_point, ENTRY_POINT_ABI, "getUserOpHash", packed.to_abi_tuple())
        return Web3.to_hex(user_op_hash)

    async def get_account_id(self, address: str) -> str:
        return await self.call(address, ACCOUNT_ID_ABI, "accountId")

    async def get_event_logs(
        self,
        address: str,
        abi: List[Dict],
        event_name: str,
        argument_filters: Optional[Dict[str, Any]] = None,
        from_block: int = 0,
    ) -> List[Dict[str, Any]]:
        """Fetch decoded event logs as plain dicts"""
        event = getattr(self.contract(address, abi).events, event_name)
        logs = await asyncio.to_thread(
            event.get_logs,
            argument_filters=argument_filters,
            from_block=from_block,
        )
        return [
            {
                "event": log["event"],
                "args": dict(log["args"]),
                "blockNumber": log["blockNumber"],
                "transactionIndex": log["transactionIndex"],
                "logIndex": log["logIndex"],
            }
            for log in logs
        ]
