"""
EntryPoint v0.7 packing of UserOperations and userOpHash computation
"""

import re
from dataclasses import dataclass
from typing import Dict, Iterable, Tuple

from eth_abi import encode
from hexbytes import HexBytes
from web3 import Web3

from aa_wallet.exceptions import InvalidHexError
from aa_wallet.user_operations import UserOperation

_HEX_RE = re.compile(r"^0x[0-9a-fA-F]*$")

PACKED_USER_OP_TYPE = "(address,uint256,bytes,bytes,bytes32,uint256,bytes32,bytes,bytes)"
HANDLE_OPS_SELECTOR = Web3.keccak(text=f"handleOps({PACKED_USER_OP_TYPE}[],address)")[:4]


def _check_hex(data: str, field: str = "value") -> str:
    if not isinstance(data, str) or not _HEX_RE.match(data):
        raise InvalidHexError(f"{field} must be a 0x-prefixed hex string, got {data!r}")
    return data


def _normalize_odd(data: str) -> str:
    # "0x123" -> "0x0123"
    if len(data) % 2 != 0:
        return "0x0" + data[2:]
    return data


def hex_to_bytes(data: str, field: str = "value") -> bytes:
    """Decode 0x-prefixed, even-length hex data"""
    _check_hex(data, field)
    if len(data) % 2 != 0:
        raise InvalidHexError(f"{field} must have an even number of hex digits, got {data!r}")
    return bytes.fromhex(data[2:])


def hex_to_int(data: str, field: str = "value") -> int:
    """Decode a hex quantity; '0x' is zero"""
    _check_hex(data, field)
    return int(data[2:] or "0", 16)


def pad_left(data: str, length: int = 32) -> str:
    """Left zero-pad hex data to `length` bytes (numeric values)"""
    raw = bytes.fromhex(_normalize_odd(_check_hex(data))[2:])
    if len(raw) > length:
        raise InvalidHexError(f"{data} does not fit in {length} bytes")
    return Web3.to_hex(raw.rjust(length, b"\x00"))


def pad_right(data: str, length: int = 32) -> str:
    """Right zero-pad hex data to `length` bytes (byte strings)"""
    raw = bytes.fromhex(_normalize_odd(_check_hex(data))[2:])
    if len(raw) > length:
        raise InvalidHexError(f"{data} does not fit in {length} bytes")
    return Web3.to_hex(raw.ljust(length, b"\x00"))


def concat_hex(*parts: str) -> str:
    return Web3.to_hex(b"".join(hex_to_bytes(part) for part in parts))


def _uint_bytes(data: str, length: int, field: str) -> bytes:
    value = hex_to_int(data, field)
    try:
        return value.to_bytes(length, "big")
    except OverflowError:
        raise InvalidHexError(f"{field} does not fit in {length} bytes") from None


@dataclass(frozen=True)
class PackedUserOperation:
    """On-chain PackedUserOperation tuple"""

    sender: str
    nonce: int
    init_code: HexBytes
    call_data: HexBytes
    account_gas_limits: HexBytes
    pre_verification_gas: int
    gas_fees: HexBytes
    paymaster_and_data: HexBytes
    signature: HexBytes

    def to_abi_tuple(self) -> Tuple:
        return (
            Web3.to_checksum_address(self.sender),
            self.nonce,
            bytes(self.init_code),
            bytes(self.call_data),
            bytes(self.account_gas_limits),
            self.pre_verification_gas,
            bytes(self.gas_fees),
            bytes(self.paymaster_and_data),
            bytes(self.signature),
        )

    def to_rpc_dict(self) -> Dict[str, str]:
        return {
            "sender": self.sender,
            "nonce": hex(self.nonce),
            "initCode": Web3.to_hex(self.init_code),
            "callData": Web3.to_hex(self.call_data),
            "accountGasLimits": Web3.to_hex(self.account_gas_limits),
            "preVerificationGas": pad_left(hex(self.pre_verification_gas), 32),
            "gasFees": Web3.to_hex(self.gas_fees),
            "paymasterAndData": Web3.to_hex(self.paymaster_and_data),
            "signature": Web3.to_hex(self.signature),
        }


def pack_user_operation(user_op: UserOperation) -> PackedUserOperation:
    """Pack a UserOperation the way EntryPoint v0.7 does.

    The result is derived data: pack again after any change to the draft.
    """
    user_op.check_invariants()

    if user_op.factory is not None:
        init_code = hex_to_bytes(user_op.factory, "factory") + hex_to_bytes(user_op.factory_data, "factoryData")
    else:
        init_code = b""

    account_gas_limits = _uint_bytes(
        user_op.verification_gas_limit, 16, "verificationGasLimit"
    ) + _uint_bytes(user_op.call_gas_limit, 16, "callGasLimit")

    gas_fees = _uint_bytes(
        user_op.max_priority_fee_per_gas, 16, "maxPriorityFeePerGas"
    ) + _uint_bytes(user_op.max_fee_per_gas, 16, "maxFeePerGas")

    if user_op.paymaster is not None:
        paymaster = hex_to_bytes(user_op.paymaster, "paymaster")
        if len(paymaster) != 20:
            raise InvalidHexError(f"paymaster must be a 20-byte address, got {user_op.paymaster}")
        paymaster_and_data = (
            paymaster
            + _uint_bytes(user_op.paymaster_verification_gas_limit, 16, "paymasterVerificationGasLimit")
            + _uint_bytes(user_op.paymaster_post_op_gas_limit, 16, "paymasterPostOpGasLimit")
            + hex_to_bytes(user_op.paymaster_data, "paymasterData")
        )
    else:
        paymaster_and_data = b""

    # range check only, the packed tuple carries it as uint256
    _uint_bytes(user_op.pre_verification_gas, 32, "preVerificationGas")

    return PackedUserOperation(
        sender=user_op.sender,
        nonce=int.from_bytes(_uint_bytes(user_op.nonce, 32, "nonce"), "big"),
        init_code=HexBytes(init_code),
        call_data=HexBytes(hex_to_bytes(user_op.call_data, "callData")),
        account_gas_limits=HexBytes(account_gas_limits),
        pre_verification_gas=hex_to_int(user_op.pre_verification_gas, "preVerificationGas"),
        gas_fees=HexBytes(gas_fees),
        paymaster_and_data=HexBytes(paymaster_and_data),
        signature=HexBytes(hex_to_bytes(user_op.signature, "signature")),
    )


def encode_user_op_hash_preimage(packed: PackedUserOperation) -> bytes:
    """abi.encode of the packed fields, with dynamic byte fields replaced by their keccak"""
    return encode(
        ["address", "uint256", "bytes32", "bytes32", "bytes32", "uint256", "bytes32", "bytes32"],
        [
            Web3.to_checksum_address(packed.sender),
            packed.nonce,
            Web3.keccak(packed.init_code),
            Web3.keccak(packed.call_data),
            bytes(packed.account_gas_limits),
            packed.pre_verification_gas,
            bytes(packed.gas_fees),
            Web3.keccak(packed.paymaster_and_data),
        ],
    )


def get_user_op_hash(packed: PackedUserOperation, entry_point: str, chain_id: int) -> str:
    """Compute EntryPoint v0.7 getUserOpHash locally"""
    inner_hash = Web3.keccak(encode_user_op_hash_preimage(packed))
    final = Web3.keccak(
        encode(
            ["bytes32", "address", "uint256"],
            [inner_hash, Web3.to_checksum_address(entry_point), chain_id],
        )
    )
    return Web3.to_hex(final)


def encode_handle_ops(packed_ops: Iterable[PackedUserOperation], beneficiary: str) -> str:
    """Calldata of EntryPoint.handleOps, useful to replay a failing operation"""
    encoded = encode(
        [f"{PACKED_USER_OP_TYPE}[]", "address"],
        [[op.to_abi_tuple() for op in packed_ops], Web3.to_checksum_address(beneficiary)],
    )
    return Web3.to_hex(HANDLE_OPS_SELECTOR + encoded)
