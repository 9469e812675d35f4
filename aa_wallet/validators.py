"""
Account validators: signature schemes a smart account accepts for its UserOperations
"""

import logging
from abc import ABC, abstractmethod
from typing import List, Optional

from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount
from web3 import Web3

from aa_wallet.chain import ChainClient
from aa_wallet.config import ADDRESSES, DUMMY_ECDSA_SIGNATURE
from aa_wallet.exceptions import ValidatorError
from aa_wallet.packing import concat_hex, hex_to_bytes

logger = logging.getLogger(__name__)

SMART_SESSIONS_USE_MODE = "0x00"
SMART_SESSIONS_ENABLE_MODE = "0x01"
SMART_SESSIONS_UNSAFE_ENABLE_MODE = "0x02"

OWNER_REGISTERED_ABI = [{
    "anonymous": False,
    "inputs": [
        {"indexed": True, "name": "kernel", "type": "address"},
        {"indexed": True, "name": "owner", "type": "address"},
    ],
    "name": "OwnerRegistered",
    "type": "event"
}]


def is_enable_mode(mode: str) -> bool:
    return mode in (SMART_SESSIONS_ENABLE_MODE, SMART_SESSIONS_UNSAFE_ENABLE_MODE)


class AccountValidator(ABC):
    """Validator module installed on a smart account.

    dummy_signature() must have exactly the byte length of sign(): gas is
    estimated with the dummy and never re-estimated after signing.
    """

    @abstractmethod
    def address(self) -> str:
        """On-chain address of the validator module"""

    @abstractmethod
    def dummy_signature(self) -> str:
        """Placeholder signature used for gas estimation"""

    @abstractmethod
    async def sign(self, user_op_hash: str) -> str:
        """Sign a userOpHash"""

    async def discover_accounts(self) -> List[str]:
        """Smart accounts that registered the signer with this validator"""
        raise ValidatorError(f"{type(self).__name__} does not support account discovery")


def sign_user_op_hash(signer: LocalAccount, user_op_hash: str) -> str:
    """EIP-191 personal signature over the raw 32-byte hash"""
    message = encode_defunct(primitive=hex_to_bytes(user_op_hash, "userOpHash"))
    return Web3.to_hex(signer.sign_message(message).signature)


class ECDSAValidator(AccountValidator):
    """Single-owner ECDSA validator"""

    def __init__(
        self,
        signer: LocalAccount,
        address: str = ADDRESSES["ECDSA_VALIDATOR"],
        chain: Optional[ChainClient] = None,
        from_block: int = 0,
    ):
        self._signer = signer
        self._address = address
        self._chain = chain
        self._from_block = from_block

    def address(self) -> str:
        return self._address

    def dummy_signature(self) -> str:
        return DUMMY_ECDSA_SIGNATURE

    async def sign(self, user_op_hash: str) -> str:
        return sign_user_op_hash(self._signer, user_op_hash)

    async def discover_accounts(self) -> List[str]:
        if self._chain is None:
            raise ValidatorError("ECDSAValidator needs a chain client to discover accounts")

        events = await self._chain.get_event_logs(
            self._address,
            OWNER_REGISTERED_ABI,
            "OwnerRegistered",
            argument_filters={"owner": self._signer.address},
            from_block=self._from_block,
        )
        accounts = [event["args"]["kernel"] for event in events]
        logger.info(f"Found {len(accounts)} accounts owned by {self._signer.address}")
        return accounts


class SmartSessionValidator(AccountValidator):
    """Smart sessions validator: mode byte + permission id (USE mode) + session key signature"""

    def __init__(
        self,
        signer: LocalAccount,
        mode: str = SMART_SESSIONS_USE_MODE,
        permission_id: Optional[str] = None,
        address: str = ADDRESSES["SMART_SESSION"],
    ):
        if mode not in (SMART_SESSIONS_USE_MODE, SMART_SESSIONS_ENABLE_MODE, SMART_SESSIONS_UNSAFE_ENABLE_MODE):
            raise ValidatorError(f"Unknown smart sessions mode: {mode}")
        if not is_enable_mode(mode):
            if not permission_id:
                raise ValidatorError("USE mode must have permissionId")
            if len(hex_to_bytes(permission_id, "permissionId")) != 32:
                raise ValidatorError("permissionId must be 32 bytes")

        self._signer = signer
        self._mode = mode
        self._permission_id = permission_id
        self._address = address

    def address(self) -> str:
        return self._address

    def _wrap(self, signature: str) -> str:
        if is_enable_mode(self._mode):
            return concat_hex(self._mode, signature)
        return concat_hex(self._mode, self._permission_id, signature)

    def dummy_signature(self) -> str:
        return self._wrap(DUMMY_ECDSA_SIGNATURE)

    async def sign(self, user_op_hash: str) -> str:
        return self._wrap(sign_user_op_hash(self._signer, user_op_hash))
