"""
UserOperation, call batch and receipt models for smart account wallets
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional

from web3 import Web3

from aa_wallet.exceptions import InvalidRequestError


@dataclass
class UserOperation:
    """ERC-4337 v0.7 UserOperation draft.

    Numeric fields are carried as 0x-prefixed hex strings, byte fields as
    0x-prefixed hex data, exactly as they are sent to the bundler.
    """

    sender: str = ""
    nonce: str = "0x0"
    factory: Optional[str] = None
    factory_data: Optional[str] = None
    call_data: str = "0x"
    call_gas_limit: str = "0x0"
    verification_gas_limit: str = "0x0"
    pre_verification_gas: str = "0x0"
    max_fee_per_gas: str = "0x0"
    max_priority_fee_per_gas: str = "0x0"
    paymaster: Optional[str] = None
    paymaster_verification_gas_limit: Optional[str] = None
    paymaster_post_op_gas_limit: Optional[str] = None
    paymaster_data: Optional[str] = None
    signature: str = "0x"

    def check_invariants(self) -> None:
        """Raise InvalidRequestError if factory or paymaster fields are partially set"""
        if (self.factory is None) != (self.factory_data is None):
            raise InvalidRequestError("factory and factoryData must be set together")

        paymaster_fields = (
            self.paymaster,
            self.paymaster_data,
            self.paymaster_verification_gas_limit,
            self.paymaster_post_op_gas_limit,
        )
        present = [value is not None for value in paymaster_fields]
        if any(present) and not all(present):
            raise InvalidRequestError(
                "paymaster, paymasterData, paymasterVerificationGasLimit and "
                "paymasterPostOpGasLimit must be set together"
            )

    def set_paymaster(
        self,
        paymaster: str,
        paymaster_data: Optional[str] = None,
        verification_gas_limit: Optional[str] = None,
        post_op_gas_limit: Optional[str] = None,
    ) -> None:
        """Set all paymaster fields at once, zero-filling whatever is missing"""
        self.paymaster = paymaster
        self.paymaster_data = paymaster_data or "0x"
        self.paymaster_verification_gas_limit = verification_gas_limit or "0x0"
        self.paymaster_post_op_gas_limit = post_op_gas_limit or "0x0"

    def clear_paymaster(self) -> None:
        self.paymaster = None
        self.paymaster_data = None
        self.paymaster_verification_gas_limit = None
        self.paymaster_post_op_gas_limit = None

    def copy(self) -> "UserOperation":
        return replace(self)

    @property
    def required_gas(self) -> int:
        """Total gas the EntryPoint reserves for this operation"""
        return (
            int(self.verification_gas_limit, 16)
            + int(self.call_gas_limit, 16)
            + int(self.paymaster_verification_gas_limit or "0x0", 16)
            + int(self.paymaster_post_op_gas_limit or "0x0", 16)
            + int(self.pre_verification_gas, 16)
        )

    @property
    def required_prefund(self) -> int:
        return self.required_gas * int(self.max_fee_per_gas, 16)


def create_empty_user_operation() -> UserOperation:
    """UserOperation template with zeroed gas fields and no factory / paymaster"""
    return UserOperation()


@dataclass
class Call:
    """Single call of an ERC-5792 batch"""

    to: Optional[str] = None
    data: str = "0x"
    value: str = "0x0"
    chain_id: Any = None

    @classmethod
    def from_dict(cls, call: Dict[str, Any]) -> "Call":
        if not isinstance(call, dict):
            raise InvalidRequestError("Invalid request format")

        to = call.get("to")
        if to is not None and not Web3.is_address(to):
            raise InvalidRequestError(f"Invalid call target: {to!r}")

        return cls(
            to=to,
            data=call.get("data") or "0x",
            value=call.get("value") or "0x0",
            chain_id=call.get("chainId"),
        )


@dataclass
class CallReceipt:
    """Public receipt shape of a confirmed call batch"""

    logs: List[Dict[str, Any]]
    status: str
    chain_id: str
    block_hash: str
    block_number: str
    gas_used: str
    transaction_hash: str

    @classmethod
    def from_user_operation_receipt(cls, result: Dict[str, Any], chain_id: int) -> "CallReceipt":
        """Normalize a bundler eth_getUserOperationReceipt result"""
        receipt = result.get("receipt") or {}
        return cls(
            logs=[
                {"address": log.get("address"), "data": log.get("data"), "topics": log.get("topics", [])}
                for log in result.get("logs", [])
            ],
            status="0x1" if result.get("success") else "0x0",
            chain_id=str(chain_id),
            block_hash=receipt.get("blockHash"),
            block_number=receipt.get("blockNumber"),
            gas_used=receipt.get("gasUsed"),
            transaction_hash=receipt.get("transactionHash"),
        )

    def to_rpc_dict(self) -> Dict[str, Any]:
        return {
            "logs": self.logs,
            "status": self.status,
            "chainId": self.chain_id,
            "blockHash": self.block_hash,
            "blockNumber": self.block_number,
            "gasUsed": self.gas_used,
            "transactionHash": self.transaction_hash,
        }


class CallStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"


@dataclass(frozen=True)
class CallsResult:
    """Status record of a call batch, keyed by call id in the wallet registry"""

    status: CallStatus
    receipts: Optional[List[CallReceipt]] = None
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status is not CallStatus.PENDING

    def to_rpc_dict(self, legacy: bool = False) -> Dict[str, Any]:
        """ERC-5792 result. With legacy=True a failure is reported as CONFIRMED without receipts."""
        status = self.status
        if legacy and status is CallStatus.FAILED:
            status = CallStatus.CONFIRMED

        result: Dict[str, Any] = {"status": status.value}
        if self.receipts is not None:
            result["receipts"] = [receipt.to_rpc_dict() for receipt in self.receipts]
        if self.error is not None and not legacy:
            result["error"] = self.error
        return result


@dataclass(frozen=True)
class AccountInfo:
    address: str
    account_id: str


@dataclass
class SendCallsRequest:
    """Validated wallet_sendCalls parameters"""

    version: str
    sender: str
    calls: List[Call]
    capabilities: Dict[str, Any] = field(default_factory=dict)
