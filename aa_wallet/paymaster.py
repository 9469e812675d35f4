"""
Paymaster providers (ERC-7677 getPaymasterStubData) for sponsored UserOperations
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests
from web3 import Web3

from aa_wallet.bundler import convert_user_operation_to_rpc_format
from aa_wallet.chain import ChainClient
from aa_wallet.config import DEFAULT_REQUEST_TIMEOUT, ENTRYPOINT_V07, PAYMASTER_GAS_LIMIT
from aa_wallet.exceptions import PaymasterError
from aa_wallet.user_operations import UserOperation

logger = logging.getLogger(__name__)

IS_ALLOWED_ABI = [{
    "inputs": [{"name": "_address", "type": "address"}],
    "name": "isAllowed",
    "outputs": [{"name": "", "type": "bool"}],
    "stateMutability": "view",
    "type": "function"
}]


@dataclass
class PaymasterStubData:
    """ERC-7677 pm_getPaymasterStubData result (EntryPoint v0.7 fields)"""

    paymaster: Optional[str] = None
    paymaster_data: Optional[str] = None
    paymaster_verification_gas_limit: Optional[str] = None
    paymaster_post_op_gas_limit: Optional[str] = None
    sponsor: Optional[Dict[str, Any]] = None
    is_final: bool = False

    @classmethod
    def from_rpc(cls, result: Dict[str, Any]) -> "PaymasterStubData":
        return cls(
            paymaster=result.get("paymaster"),
            paymaster_data=result.get("paymasterData"),
            paymaster_verification_gas_limit=result.get("paymasterVerificationGasLimit"),
            paymaster_post_op_gas_limit=result.get("paymasterPostOpGasLimit"),
            sponsor=result.get("sponsor"),
            is_final=bool(result.get("isFinal", False)),
        )

    def to_rpc_dict(self) -> Dict[str, Any]:
        result = {
            "paymaster": self.paymaster,
            "paymasterData": self.paymaster_data,
            "paymasterVerificationGasLimit": self.paymaster_verification_gas_limit,
            "paymasterPostOpGasLimit": self.paymaster_post_op_gas_limit,
            "isFinal": self.is_final,
        }
        if self.sponsor:
            result["sponsor"] = self.sponsor
        return {key: value for key, value in result.items() if value is not None}


class PaymasterProvider(ABC):
    @abstractmethod
    async def get_paymaster_stub_data(
        self,
        user_op: UserOperation,
        entry_point: str,
        chain_id: str,
        context: Dict[str, Any],
    ) -> PaymasterStubData:
        """Stub paymaster fields used for gas estimation"""


class AllowlistPaymaster(PaymasterProvider):
    """Verifying paymaster sponsoring allow-listed senders.

    With sponsor_all=True every sender is sponsored without the on-chain check.
    """

    def __init__(
        self,
        chain: ChainClient,
        chain_id: int,
        paymaster_address: str,
        entry_point: str = ENTRYPOINT_V07,
        sponsor_all: bool = False,
        sponsor_name: str = "My Wallet",
    ):
        self.chain = chain
        self.chain_id = chain_id
        self.paymaster_address = paymaster_address
        self.entry_point = entry_point
        self.sponsor_all = sponsor_all
        self.sponsor_name = sponsor_name

    async def get_paymaster_stub_data(
        self,
        user_op: UserOperation,
        entry_point: str,
        chain_id: str,
        context: Dict[str, Any],
    ) -> PaymasterStubData:
        if entry_point.lower() != self.entry_point.lower() or chain_id != str(self.chain_id):
            raise PaymasterError("Entrypoint or chain id is incorrect")

        if not self.sponsor_all:
            is_allowed = await self.chain.call(
                self.paymaster_address, IS_ALLOWED_ABI, "isAllowed", Web3.to_checksum_address(user_op.sender)
            )
            if not is_allowed:
                raise PaymasterError(f"Sender {user_op.sender} is not in allowlist")

        return PaymasterStubData(
            paymaster=self.paymaster_address,
            paymaster_data="0x",
            paymaster_verification_gas_limit=hex(PAYMASTER_GAS_LIMIT),
            paymaster_post_op_gas_limit=hex(PAYMASTER_GAS_LIMIT),
            sponsor={"name": self.sponsor_name},
            is_final=True,
        )


class PaymasterServiceClient(PaymasterProvider):
    """Remote ERC-7677 paymaster web service"""

    def __init__(self, url: str, timeout: int = DEFAULT_REQUEST_TIMEOUT):
        self.url = url
        self.timeout = timeout

    async def get_paymaster_stub_data(
        self,
        user_op: UserOperation,
        entry_point: str,
        chain_id: str,
        context: Dict[str, Any],
    ) -> PaymasterStubData:
        params = [
            convert_user_operation_to_rpc_format(user_op),
            entry_point,
            hex(int(chain_id)),
            context,
        ]
        result = await asyncio.to_thread(self._rpc_call, "pm_getPaymasterStubData", params)
        if not isinstance(result, dict):
            raise PaymasterError("Invalid paymaster response")

        logger.info(f"Paymaster stub: {result.get('paymaster', 'unknown')}")
        return PaymasterStubData.from_rpc(result)

    def _rpc_call(self, method: str, params: list) -> Any:
        try:
            response = requests.post(
                self.url,
                json={"jsonrpc": "2.0", "method": method, "params": params, "id": 1},
                headers={'Content-Type': 'application/json'},
                timeout=self.timeout
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise PaymasterError(f"Paymaster request failed: {e}") from e

        data = response.json()
        if data.get("error"):
            raise PaymasterError(f"Paymaster error: {data['error']}")
        return data.get("result")
