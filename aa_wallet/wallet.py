"""
ERC-5792 wallet facade: call batches, call statuses and the EIP-1193 request surface
"""

import asyncio
import logging
import secrets
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Set

from web3 import Web3

from aa_wallet.config import SmartAccountConfig
from aa_wallet.exceptions import InvalidRequestError, NoReceiptsError, ReceiptTimeoutError
from aa_wallet.modules import MODULE_TYPE_VALIDATOR, get_installed_modules
from aa_wallet.paymaster import PaymasterProvider
from aa_wallet.smart_account import SmartAccountService
from aa_wallet.user_operations import (
    AccountInfo,
    Call,
    CallReceipt,
    CallsResult,
    CallStatus,
    SendCallsRequest,
)
from aa_wallet.validators import AccountValidator
from aa_wallet.vendors import AccountVendor

logger = logging.getLogger(__name__)


def parse_chain_id(chain_id: Any) -> int:
    """Chain id tag as an int: hex or decimal strings, or a plain int"""
    if isinstance(chain_id, int) and not isinstance(chain_id, bool):
        return chain_id
    if isinstance(chain_id, str):
        try:
            if chain_id[:2].lower() == "0x":
                return int(chain_id, 16)
            return int(chain_id, 10)
        except ValueError:
            pass
    raise InvalidRequestError(f"Invalid chainId: {chain_id!r}")


def parse_send_calls_params(params: Any) -> SendCallsRequest:
    """Validate wallet_sendCalls parameters.

    Calls tagged with a chainId must all name the same chain, compared as
    integers. Untagged calls (missing or empty chainId) are accepted next to
    tagged ones and run on the wallet's chain.
    """
    if not isinstance(params, dict) or not params.get("from") or not isinstance(params.get("calls"), list):
        raise InvalidRequestError("Invalid request format")
    if not Web3.is_address(params["from"]):
        raise InvalidRequestError(f"Invalid sender: {params['from']!r}")

    calls = [Call.from_dict(call) for call in params["calls"]]

    chain_ids = {parse_chain_id(call.chain_id) for call in calls if call.chain_id not in (None, "")}
    if len(chain_ids) > 1:
        raise InvalidRequestError("All calls must be on the same chain")

    return SendCallsRequest(
        version=params.get("version", "1.0"),
        sender=params["from"],
        calls=calls,
        capabilities=params.get("capabilities") or {},
    )


class WalletService:
    """Smart account wallet exposing ERC-5792 call batches.

    Validators and vendors are registries keyed by validator id and by the
    account's on-chain accountId(). Accounts are resolved to vendors through
    the snapshot built by fetch_accounts_by_validator().
    """

    def __init__(
        self,
        config: SmartAccountConfig,
        validators: Mapping[str, AccountValidator],
        vendors: Mapping[str, AccountVendor],
        paymaster: Optional[PaymasterProvider] = None,
        default_validator_id: Optional[str] = None,
        service: Optional[SmartAccountService] = None,
        accounts: Optional[Mapping[str, str]] = None,
    ):
        if not validators:
            raise ValueError("At least one validator is required")

        self.config = config
        self.service = service or SmartAccountService(config)
        self.validators = dict(validators)
        self.vendors = dict(vendors)
        self.paymaster = paymaster
        self.default_validator_id = default_validator_id or next(iter(self.validators))
        if self.default_validator_id not in self.validators:
            raise ValueError(f"Unknown default validator: {self.default_validator_id}")

        self._accounts: Mapping[str, str] = MappingProxyType(
            {address.lower(): account_id for address, account_id in (accounts or {}).items()}
        )
        self._call_statuses: Dict[str, CallsResult] = {}
        self._tasks: Set[asyncio.Task] = set()

    @property
    def chain_id(self) -> int:
        return self.config.chain_id

    @property
    def is_paymaster_supported(self) -> bool:
        return self.paymaster is not None

    @property
    def accounts(self) -> Mapping[str, str]:
        """Current address -> accountId snapshot (lowercased addresses)"""
        return self._accounts

    def get_validator(self, validator_id: Optional[str] = None) -> AccountValidator:
        validator_id = validator_id or self.default_validator_id
        validator = self.validators.get(validator_id)
        if validator is None:
            raise InvalidRequestError(f"Validator not found: {validator_id}")
        return validator

    def get_vendor_by_address(self, address: str) -> AccountVendor:
        account_id = self._accounts.get(address.lower())
        if account_id is None and len(self.vendors) == 1:
            return next(iter(self.vendors.values()))

        vendor = self.vendors.get(account_id)
        if vendor is None:
            raise InvalidRequestError(f"Vendor not found for {address}")
        return vendor

    # Account registry

    async def fetch_accounts_by_validator(self, validator_id: Optional[str] = None) -> List[AccountInfo]:
        """Rebuild the account snapshot from the validator's known accounts"""
        validator = self.get_validator(validator_id)
        addresses = await validator.discover_accounts()

        accounts = []
        for address in addresses:
            account_id = await self.service.chain.get_account_id(address)
            accounts.append(AccountInfo(address=address, account_id=account_id))

        self._accounts = MappingProxyType({account.address.lower(): account.account_id for account in accounts})
        logger.info(f"Account registry refreshed with {len(accounts)} accounts")
        return accounts

    async def get_validators_by_account(self, address: str) -> List[str]:
        """Validator modules currently installed on the account"""
        return await get_installed_modules(
            self.service.chain, address, MODULE_TYPE_VALIDATOR, from_block=self.config.log_from_block
        )

    # ERC-5792

    async def get_capabilities(self, address: Optional[str] = None) -> Dict[str, Dict[str, Any]]:
        return {
            hex(self.chain_id): {
                "paymasterService": {
                    "supported": self.is_paymaster_supported,
                },
            },
        }

    async def send_calls(self, params: Dict[str, Any], validator_id: Optional[str] = None) -> str:
        """Accept a call batch and run its UserOperation pipeline in the background.

        Validation and call data encoding errors are raised here, before a
        call id exists.
        """
        logger.info("Sending calls...")
        request = parse_send_calls_params(params)
        validator = self.get_validator(validator_id)
        vendor = self.get_vendor_by_address(request.sender)
        call_data = vendor.build_call_data(request.sender, request.calls)

        call_id = "0x" + secrets.token_hex(32)
        self._call_statuses[call_id] = CallsResult(status=CallStatus.PENDING)

        task = asyncio.create_task(self._run_calls(call_id, validator, vendor, request, call_data))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return call_id

    async def _run_calls(
        self,
        call_id: str,
        validator: AccountValidator,
        vendor: AccountVendor,
        request: SendCallsRequest,
        call_data: str,
    ) -> None:
        try:
            receipt = await self.service.execute(
                validator,
                vendor,
                request.sender,
                request.calls,
                call_data=call_data,
                paymaster=self.paymaster,
            )
        except asyncio.CancelledError:
            self._call_statuses[call_id] = CallsResult(status=CallStatus.FAILED, error="Cancelled")
            raise
        except Exception as e:
            logger.exception(f"Call batch {call_id} failed: {e}")
            self._call_statuses[call_id] = CallsResult(status=CallStatus.FAILED, error=str(e))
            return

        self._call_statuses[call_id] = CallsResult(status=CallStatus.CONFIRMED, receipts=[receipt])
        logger.info(f"Call batch {call_id} confirmed in {receipt.transaction_hash}")

    def get_call_status(self, call_id: str) -> Optional[CallsResult]:
        return self._call_statuses.get(call_id)

    async def wait_for_receipts(self, call_id: str, timeout: Optional[float] = None) -> List[CallReceipt]:
        """Wait until the batch leaves PENDING and return its receipts"""
        try:
            result = await asyncio.wait_for(self._poll_status(call_id), timeout)
        except asyncio.TimeoutError:
            raise ReceiptTimeoutError(f"Call batch {call_id} still pending after {timeout}s") from None

        if result.status is CallStatus.CONFIRMED and result.receipts:
            return result.receipts
        raise NoReceiptsError(f"No receipts found for {call_id}: {result.error or 'no receipts'}")

    async def _poll_status(self, call_id: str) -> CallsResult:
        while True:
            result = self.get_call_status(call_id)
            if result is not None and result.is_terminal:
                return result
            await asyncio.sleep(self.config.poll_interval)

    # Direct UserOperation API

    async def send_op(
        self,
        sender: str,
        calls: List[Call],
        validator_id: Optional[str] = None,
    ) -> str:
        validator = self.get_validator(validator_id)
        vendor = self.get_vendor_by_address(sender)
        call_data = vendor.build_call_data(sender, calls)
        return await self.service.send_op(validator, vendor, sender, calls, call_data=call_data, paymaster=self.paymaster)

    async def wait_for_op_receipt(self, user_op_hash: str, timeout: Optional[float] = None) -> Dict[str, Any]:
        return await self.service.wait_for_receipt(user_op_hash, timeout)

    async def send_op_for_account_creation(
        self,
        address: str,
        account_id: str,
        owner: str,
        salt: str,
        validator_id: Optional[str] = None,
        calls: Optional[List[Call]] = None,
    ) -> str:
        vendor = self.vendors.get(account_id)
        if vendor is None:
            raise InvalidRequestError(f"Vendor not found: {account_id}")

        return await self.service.send_op_for_account_creation(
            self.get_validator(validator_id),
            vendor,
            address,
            owner,
            salt,
            calls=calls,
            paymaster=self.paymaster,
        )

    # EIP-1193

    async def request(self, method: str, params: Optional[List[Any]] = None) -> Any:
        params = params or []

        if method == "eth_requestAccounts":
            accounts = await self.fetch_accounts_by_validator()
            return [account.address for account in accounts]

        if method == "eth_accounts":
            return list(self._accounts)

        if method == "eth_chainId":
            return hex(self.chain_id)

        if method == "wallet_getCapabilities":
            return await self.get_capabilities(params[0] if params else None)

        if method == "wallet_sendCalls":
            if not params:
                raise InvalidRequestError("Invalid request format")
            return await self.send_calls(params[0])

        if method == "wallet_getCallsStatus":
            if not params:
                raise InvalidRequestError("Invalid request format")
            result = self.get_call_status(params[0])
            if result is None:
                return None
            return result.to_rpc_dict(legacy=self.config.legacy_failed_status)

        raise InvalidRequestError("Invalid method")
