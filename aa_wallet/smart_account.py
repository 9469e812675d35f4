"""
Smart account UserOperation orchestration: build, sign, submit and wait
"""

import asyncio
import logging
from typing import Any, Dict, Optional, Sequence, Tuple

from aa_wallet.bundler import BundlerClient
from aa_wallet.chain import ChainClient
from aa_wallet.config import SmartAccountConfig
from aa_wallet.exceptions import InsufficientFundsError, ReceiptTimeoutError, ValidatorError, VendorError
from aa_wallet.packing import get_user_op_hash, hex_to_bytes, pack_user_operation
from aa_wallet.paymaster import PaymasterProvider
from aa_wallet.user_operations import Call, CallReceipt, UserOperation, create_empty_user_operation
from aa_wallet.validators import AccountValidator
from aa_wallet.vendors import AccountVendor

logger = logging.getLogger(__name__)

# eth_estimateUserOperationGas result key -> UserOperation attribute
GAS_ESTIMATE_FIELDS = {
    "preVerificationGas": "pre_verification_gas",
    "verificationGasLimit": "verification_gas_limit",
    "callGasLimit": "call_gas_limit",
}

PAYMASTER_GAS_ESTIMATE_FIELDS = {
    "paymasterVerificationGasLimit": "paymaster_verification_gas_limit",
    "paymasterPostOpGasLimit": "paymaster_post_op_gas_limit",
}


class SmartAccountService:
    """Builds, signs and submits UserOperations through an ERC-4337 bundler"""

    def __init__(
        self,
        config: SmartAccountConfig,
        bundler: Optional[BundlerClient] = None,
        chain: Optional[ChainClient] = None,
    ):
        self.config = config
        self.bundler = bundler or BundlerClient(config.bundler_url, config.request_timeout)
        self.chain = chain or ChainClient(config.rpc_url)

        logger.info(f"Smart account service initialized for chain {config.chain_id}")

    @property
    def entry_point(self) -> str:
        return self.config.entry_point_address

    async def build_user_operation(
        self,
        validator: AccountValidator,
        vendor: AccountVendor,
        sender: str,
        calls: Optional[Sequence[Call]] = None,
        call_data: Optional[str] = None,
        paymaster: Optional[PaymasterProvider] = None,
        init_code: Optional[Tuple[str, str]] = None,
    ) -> Tuple[UserOperation, str]:
        """Build and sign a UserOperation, returning it with its userOpHash.

        Either `calls` (encoded by the vendor) or ready-made `call_data`
        must be given. Call data is built before the first network read so
        vendor errors surface without any I/O.
        """
        if call_data is None:
            if calls is None:
                raise VendorError("Either calls or call_data is required")
            call_data = vendor.build_call_data(sender, calls)

        user_op = create_empty_user_operation()
        user_op.sender = sender
        user_op.call_data = call_data

        nonce_key = int(vendor.nonce_key(validator.address()), 16)
        nonce = await self.chain.get_nonce(self.entry_point, sender, nonce_key)
        user_op.nonce = hex(nonce)

        if init_code is not None:
            user_op.factory, user_op.factory_data = init_code

        dummy_signature = validator.dummy_signature()
        user_op.signature = dummy_signature

        if paymaster is not None:
            await self._apply_paymaster(user_op, paymaster)

        await self._apply_gas_values(user_op)

        user_op_hash = await self.compute_user_op_hash(user_op)
        signature = await validator.sign(user_op_hash)
        if len(hex_to_bytes(signature, "signature")) != len(hex_to_bytes(dummy_signature, "signature")):
            raise ValidatorError(
                f"Signature length mismatch: dummy {len(hex_to_bytes(dummy_signature))} bytes, "
                f"signature {len(hex_to_bytes(signature))} bytes"
            )
        user_op.signature = signature

        logger.info(f"Built UserOperation {user_op_hash} for {sender}")
        return user_op, user_op_hash

    async def _apply_paymaster(self, user_op: UserOperation, paymaster: PaymasterProvider) -> None:
        """Copy paymaster stub fields into the draft, zero-filling the gas limits"""
        stub = await paymaster.get_paymaster_stub_data(user_op, self.entry_point, str(self.config.chain_id), {})
        if not stub.paymaster:
            logger.info("Paymaster returned no sponsor, sending unsponsored")
            user_op.clear_paymaster()
            return

        user_op.set_paymaster(
            stub.paymaster,
            stub.paymaster_data,
            stub.paymaster_verification_gas_limit,
            stub.paymaster_post_op_gas_limit,
        )
        logger.info(f"Paymaster {stub.paymaster} sponsoring {user_op.sender}")

    async def _apply_gas_values(self, user_op: UserOperation) -> None:
        """Update the draft with standard-tier gas prices and bundler gas estimates"""
        gas_prices = await self.bundler.get_user_operation_gas_price()
        standard = gas_prices["standard"]

        # maxFeePerGas must be non-zero during estimation
        user_op.max_fee_per_gas = standard["maxFeePerGas"]
        user_op.max_priority_fee_per_gas = standard["maxPriorityFeePerGas"]

        gas_estimates = await self.bundler.estimate_user_operation_gas(user_op, self.entry_point)
        for key, attribute in GAS_ESTIMATE_FIELDS.items():
            if gas_estimates.get(key) is not None:
                setattr(user_op, attribute, gas_estimates[key])

        if user_op.paymaster:
            for key, attribute in PAYMASTER_GAS_ESTIMATE_FIELDS.items():
                if gas_estimates.get(key) is not None:
                    setattr(user_op, attribute, gas_estimates[key])

        logger.debug(f"Gas estimates for {user_op.sender}: {gas_estimates}")

    async def compute_user_op_hash(self, user_op: UserOperation) -> str:
        packed = pack_user_operation(user_op)
        if self.config.remote_user_op_hash:
            return await self.chain.get_user_op_hash(self.entry_point, packed)
        return get_user_op_hash(packed, self.entry_point, self.config.chain_id)

    async def check_prefund(self, user_op: UserOperation) -> None:
        """Unsponsored operations need the sender to hold the required prefund"""
        if user_op.paymaster:
            return

        required = user_op.required_prefund
        balance = await self.chain.get_balance(user_op.sender)
        logger.info(f"Prefund for {user_op.sender}: required {required} wei, balance {balance} wei")
        if balance < required:
            raise InsufficientFundsError(user_op.sender, required, balance)

    async def submit(self, user_op: UserOperation) -> str:
        logger.info(f"Sending UserOperation from {user_op.sender}")
        return await self.bundler.send_user_operation(user_op, self.entry_point)

    async def send_op(
        self,
        validator: AccountValidator,
        vendor: AccountVendor,
        sender: str,
        calls: Optional[Sequence[Call]] = None,
        call_data: Optional[str] = None,
        paymaster: Optional[PaymasterProvider] = None,
        init_code: Optional[Tuple[str, str]] = None,
    ) -> str:
        """Build, sign and submit; returns the userOpHash"""
        user_op, user_op_hash = await self.build_user_operation(
            validator, vendor, sender, calls, call_data=call_data, paymaster=paymaster, init_code=init_code
        )
        await self.check_prefund(user_op)
        await self.submit(user_op)
        return user_op_hash

    async def send_op_for_account_creation(
        self,
        validator: AccountValidator,
        vendor: AccountVendor,
        address: str,
        owner: str,
        salt: str,
        calls: Optional[Sequence[Call]] = None,
        call_data: str = "0x",
        paymaster: Optional[PaymasterProvider] = None,
    ) -> str:
        """Deploy `address` through the vendor's factory in the first UserOperation"""
        predicted = await vendor.predict_address(self.chain, validator=validator.address(), owner=owner, salt=salt)
        if predicted.lower() != address.lower():
            raise VendorError(f"Sender address mismatch: expected {predicted}, got {address}")

        init_code = vendor.build_init_code(validator=validator.address(), owner=owner, salt=salt)
        logger.info(f"Creating account {address} through factory {init_code[0]}")

        return await self.send_op(
            validator,
            vendor,
            address,
            calls,
            call_data=None if calls else call_data,
            paymaster=paymaster,
            init_code=init_code,
        )

    async def wait_for_receipt(self, user_op_hash: str, timeout: Optional[float] = None) -> Dict[str, Any]:
        """Poll eth_getUserOperationReceipt until the bundler returns a receipt.

        Without a timeout (argument or config) the wait is unbounded.
        """
        if timeout is None:
            timeout = self.config.receipt_timeout

        if timeout is None:
            return await self._poll_receipt(user_op_hash)

        try:
            return await asyncio.wait_for(self._poll_receipt(user_op_hash), timeout)
        except asyncio.TimeoutError:
            raise ReceiptTimeoutError(f"No receipt for {user_op_hash} after {timeout}s") from None

    async def _poll_receipt(self, user_op_hash: str) -> Dict[str, Any]:
        while True:
            receipt = await self.bundler.get_user_operation_receipt(user_op_hash)
            if receipt:
                return receipt
            logger.debug(f"Waiting for receipt of {user_op_hash}...")
            await asyncio.sleep(self.config.poll_interval)

    async def execute(
        self,
        validator: AccountValidator,
        vendor: AccountVendor,
        sender: str,
        calls: Sequence[Call],
        call_data: Optional[str] = None,
        paymaster: Optional[PaymasterProvider] = None,
        timeout: Optional[float] = None,
    ) -> CallReceipt:
        """Full pipeline: send the operation and wait for its normalized receipt"""
        user_op_hash = await self.send_op(validator, vendor, sender, calls, call_data=call_data, paymaster=paymaster)
        logger.info(f"Waiting for receipt of {user_op_hash}")
        receipt = await self.wait_for_receipt(user_op_hash, timeout)
        return CallReceipt.from_user_operation_receipt(receipt, self.config.chain_id)
