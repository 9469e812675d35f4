"""
Account vendors: how a specific smart account implementation encodes calls,
derives nonce keys and gets deployed
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Sequence, Tuple

from eth_abi import encode
from web3 import Web3

from aa_wallet.chain import ChainClient
from aa_wallet.config import ADDRESSES
from aa_wallet.exceptions import InvalidHexError, VendorError
from aa_wallet.modules import MODULE_TYPE_VALIDATOR, build_validator_uninstall_data, encode_uninstall_module
from aa_wallet.packing import concat_hex, hex_to_bytes, hex_to_int, pad_left
from aa_wallet.user_operations import Call

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# Function selector for execute(bytes32 mode, bytes executionCalldata)
EXECUTE_SELECTOR = Web3.keccak(text="execute(bytes32,bytes)")[:4]

CALLTYPE_SINGLE = "0x00"
CALLTYPE_BATCH = "0x01"
EXECTYPE_DEFAULT = "0x00"

EXECUTIONS_TYPE = "(address,uint256,bytes)[]"


def encode_mode(call_type: str, exec_type: str = EXECTYPE_DEFAULT) -> bytes:
    """ERC-7579 ModeCode.

    | CALLTYPE | EXECTYPE | UNUSED  | ModeSelector | ModePayload |
    | 1 byte   | 1 byte   | 4 bytes | 4 bytes      | 22 bytes    |
    """
    return hex_to_bytes(call_type) + hex_to_bytes(exec_type) + b"\x00" * 4 + b"\x00" * 4 + b"\x00" * 22


def _execution(call: Call) -> Tuple[str, int, bytes]:
    target = call.to or ZERO_ADDRESS
    return (
        Web3.to_checksum_address(target),
        hex_to_int(call.value or "0x0", "value"),
        hex_to_bytes(call.data or "0x", "data"),
    )


def encode_single_execution(call: Call) -> bytes:
    """target (20 bytes) ++ value (32 bytes) ++ calldata"""
    target, value, data = _execution(call)
    return hex_to_bytes(target) + value.to_bytes(32, "big") + data


def encode_batch_executions(calls: Sequence[Call]) -> bytes:
    return encode([EXECUTIONS_TYPE], [[_execution(call) for call in calls]])


def encode_execute(mode: bytes, execution_calldata: bytes) -> str:
    return Web3.to_hex(EXECUTE_SELECTOR + encode(["bytes32", "bytes"], [mode, execution_calldata]))


def is_self_call(sender: str, call: Call) -> bool:
    return bool(call.to) and call.to.lower() == sender.lower()


class AccountVendor(ABC):
    """Smart account implementation, identified by its on-chain accountId()"""

    account_id: str = ""

    @abstractmethod
    def nonce_key(self, validator: str) -> str:
        """24-byte EntryPoint nonce key routing the operation to `validator`"""

    @abstractmethod
    def build_call_data(self, sender: str, calls: Sequence[Call]) -> str:
        """Account calldata executing `calls`; raises VendorError synchronously on invalid batches"""

    async def predict_address(self, chain: ChainClient, *, validator: str, owner: str, salt: str) -> str:
        raise VendorError(f"{type(self).__name__} does not support account creation")

    def build_init_code(self, *, validator: str, owner: str, salt: str) -> Tuple[str, str]:
        """(factory, factoryData) deploying the account"""
        raise VendorError(f"{type(self).__name__} does not support account creation")

    async def build_uninstall_validator_call_data(self, chain: ChainClient, account: str, validator: str) -> str:
        raise VendorError(f"{type(self).__name__} does not support module uninstall")


class ERC7579Account(AccountVendor):
    """Account following the ERC-7579 execute(mode, executionCalldata) convention"""

    def build_call_data(self, sender: str, calls: Sequence[Call]) -> str:
        if not calls:
            raise VendorError("At least one call is required")

        # if one of the calls is to the account itself, it must be a single call
        if any(is_self_call(sender, call) for call in calls):
            if len(calls) > 1:
                raise VendorError("If one of the calls is to the account itself, it must be a single call")
            call_data = calls[0].data or "0x"
            hex_to_bytes(call_data, "data")
            return call_data

        if len(calls) > 1:
            return encode_execute(encode_mode(CALLTYPE_BATCH), encode_batch_executions(calls))
        return encode_execute(encode_mode(CALLTYPE_SINGLE), encode_single_execution(calls[0]))


MY_ACCOUNT_FACTORY_ABI = [
    {
        "inputs": [
            {"name": "salt", "type": "uint256"},
            {"name": "validator", "type": "address"},
            {"name": "data", "type": "bytes"},
        ],
        "name": "getAddress",
        "outputs": [{"name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function"
    },
]

MY_ACCOUNT_CREATE_SELECTOR = Web3.keccak(text="createAccount(uint256,address,bytes)")[:4]


class MyAccount(ERC7579Account):
    """Modular account keeping validators in a linked list"""

    account_id = "johnson86tw.0.0.1"

    def __init__(self, factory: str = ADDRESSES["MY_ACCOUNT_FACTORY"]):
        self.factory = factory

    def nonce_key(self, validator: str) -> str:
        return pad_left(validator, 24)

    async def predict_address(self, chain: ChainClient, *, validator: str, owner: str, salt: str) -> str:
        address = await chain.call(
            self.factory,
            MY_ACCOUNT_FACTORY_ABI,
            "getAddress",
            hex_to_int(salt, "salt"),
            Web3.to_checksum_address(validator),
            hex_to_bytes(owner, "owner"),
        )
        if not Web3.is_address(address):
            raise VendorError("Failed to get new address")
        logger.info(f"Predicted {self.account_id} address: {address}")
        return address

    def build_init_code(self, *, validator: str, owner: str, salt: str) -> Tuple[str, str]:
        factory_data = MY_ACCOUNT_CREATE_SELECTOR + encode(
            ["uint256", "address", "bytes"],
            [hex_to_int(salt, "salt"), Web3.to_checksum_address(validator), hex_to_bytes(owner, "owner")],
        )
        return self.factory, Web3.to_hex(factory_data)

    async def build_uninstall_validator_call_data(self, chain: ChainClient, account: str, validator: str) -> str:
        return await build_validator_uninstall_data(chain, account, validator)


KERNEL_FACTORY_ABI = [
    {
        "inputs": [{"name": "data", "type": "bytes"}, {"name": "salt", "type": "bytes32"}],
        "name": "getAddress",
        "outputs": [{"name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function"
    },
]

KERNEL_CREATE_SELECTOR = Web3.keccak(text="createAccount(bytes,bytes32)")[:4]
KERNEL_INITIALIZE_SELECTOR = Web3.keccak(text="initialize(bytes21,address,bytes,bytes,bytes[])")[:4]

# Kernel validation type for a plain validator module
KERNEL_VALIDATION_TYPE_VALIDATOR = "0x01"


def _check_salt(salt: str) -> bytes:
    try:
        raw = hex_to_bytes(salt, "salt")
    except InvalidHexError as e:
        raise VendorError(str(e)) from e
    if len(raw) != 32:
        raise VendorError("Salt should be 32 bytes")
    return raw


class Kernel(ERC7579Account):
    """Kernel v3 account; every call goes through batch mode"""

    account_id = "kernel.advanced.v0.3.1"

    def __init__(self, factory: str = ADDRESSES["KERNEL_FACTORY"]):
        self.factory = factory

    def nonce_key(self, validator: str) -> str:
        return pad_left(concat_hex(KERNEL_VALIDATION_TYPE_VALIDATOR, validator), 24)

    def build_call_data(self, sender: str, calls: Sequence[Call]) -> str:
        if not calls:
            raise VendorError("At least one call is required")
        return encode_execute(encode_mode(CALLTYPE_BATCH), encode_batch_executions(calls))

    def initialize_data(self, validator: str, owner: str) -> bytes:
        if not Web3.is_address(validator) or not Web3.is_address(owner):
            raise VendorError("Invalid address")

        root_validator = hex_to_bytes(concat_hex(KERNEL_VALIDATION_TYPE_VALIDATOR, validator))
        return KERNEL_INITIALIZE_SELECTOR + encode(
            ["bytes21", "address", "bytes", "bytes", "bytes[]"],
            [root_validator, ZERO_ADDRESS, hex_to_bytes(owner), b"", []],
        )

    async def predict_address(self, chain: ChainClient, *, validator: str, owner: str, salt: str) -> str:
        address = await chain.call(
            self.factory,
            KERNEL_FACTORY_ABI,
            "getAddress",
            self.initialize_data(validator, owner),
            _check_salt(salt),
        )
        if not Web3.is_address(address):
            raise VendorError("Failed to get new address")
        logger.info(f"Predicted {self.account_id} address: {address}")
        return address

    def build_init_code(self, *, validator: str, owner: str, salt: str) -> Tuple[str, str]:
        factory_data = KERNEL_CREATE_SELECTOR + encode(
            ["bytes", "bytes32"],
            [self.initialize_data(validator, owner), _check_salt(salt)],
        )
        return self.factory, Web3.to_hex(factory_data)

    @staticmethod
    def install_module_init_data(validation_data: str) -> str:
        """Kernel validator install data: hook ++ offsets ++ validation data ++ empty hook / selector data"""
        validation = hex_to_bytes(validation_data, "validationData")
        validation_offset = 0x60
        hook_offset = validation_offset + len(validation) + 0x20
        selector_offset = hook_offset + 0x20

        return Web3.to_hex(
            hex_to_bytes(ZERO_ADDRESS)
            + validation_offset.to_bytes(32, "big")
            + hook_offset.to_bytes(32, "big")
            + selector_offset.to_bytes(32, "big")
            + len(validation).to_bytes(32, "big")
            + validation
            + (0).to_bytes(32, "big")
            + (0).to_bytes(32, "big")
        )

    async def build_uninstall_validator_call_data(self, chain: ChainClient, account: str, validator: str) -> str:
        return encode_uninstall_module(MODULE_TYPE_VALIDATOR, validator, "0x")


def vendor_registry(vendors: List[AccountVendor]) -> Dict[str, AccountVendor]:
    """Map vendors by their accountId"""
    return {vendor.account_id: vendor for vendor in vendors}
