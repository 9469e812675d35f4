"""
Configuration for smart account (ERC-4337) wallet operations
"""

import os
from dataclasses import dataclass
from typing import Optional

# Network constants
ENTRYPOINT_V07 = "0x0000000071727De22E5E9d8BAf0edAc6f37da032"
SEPOLIA_CHAIN_ID = 11155111

PIMLICO_BUNDLER_URL = "https://api.pimlico.io/v2/{chain_id}/rpc?apikey={api_key}"

# Deployed module / factory addresses (sepolia)
ADDRESSES = {
    "ENTRY_POINT": ENTRYPOINT_V07,
    "ECDSA_VALIDATOR": "0xd577C0746c19DeB788c0D698EcAf66721DC2F7A4",
    "SMART_SESSION": "0xCF57f874F2fAd43379ac571bDea61B759baDBD9B",
    "SIMPLE_SESSION_VALIDATOR": "0x61246aaA9057c4Df78416Ac1ff047C97b6eF392D",
    "MY_ACCOUNT_FACTORY": "0x7cdf84c1d0915748Df0f1dA6d92701ac6A903E41",
    "KERNEL_FACTORY": "0xaac5D4240AF87249B3f71BC8E4A2cae074A3E419",
    "PAYMASTER": "0xA2E1944eD3294f0202a063cc971ECe09cbd02e43",
}

# 65-byte ECDSA placeholder (r, s, v). Its length must match a real signature.
DUMMY_ECDSA_SIGNATURE = (
    "0xfffffffffffffffffffffffffffffff0000000000000000000000000000000007"
    "aaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaa1c"
)

# Gas limits the allow-list paymaster reserves for itself (999,999)
PAYMASTER_GAS_LIMIT = 999_999

DEFAULT_POLL_INTERVAL = 1.0
DEFAULT_REQUEST_TIMEOUT = 30


def _optional_float(name: str) -> Optional[float]:
    value = os.environ.get(name)
    if value in (None, ""):
        return None
    return float(value)


@dataclass
class SmartAccountConfig:
    """Configuration for smart account wallet operations"""

    rpc_url: str
    bundler_url: str
    chain_id: int = SEPOLIA_CHAIN_ID
    entry_point_address: str = ENTRYPOINT_V07

    # Receipt / status polling
    poll_interval: float = DEFAULT_POLL_INTERVAL
    receipt_timeout: Optional[float] = None

    # Compute userOpHash via EntryPoint.getUserOpHash instead of locally
    remote_user_op_hash: bool = False

    # First block scanned for validator / module event logs
    log_from_block: int = 0

    request_timeout: int = DEFAULT_REQUEST_TIMEOUT

    # Report FAILED call statuses as CONFIRMED without receipts
    legacy_failed_status: bool = False

    @classmethod
    def from_env(cls) -> "SmartAccountConfig":
        """Build configuration from environment variables"""
        rpc_url = os.environ.get("RPC_URL")
        if not rpc_url:
            raise ValueError("RPC_URL environment variable is required")

        chain_id = int(os.environ.get("CHAIN_ID", SEPOLIA_CHAIN_ID))

        bundler_url = os.environ.get("BUNDLER_URL")
        if not bundler_url:
            pimlico_api_key = os.environ.get("PIMLICO_API_KEY")
            if not pimlico_api_key:
                raise ValueError("BUNDLER_URL or PIMLICO_API_KEY environment variable is required")
            bundler_url = PIMLICO_BUNDLER_URL.format(chain_id=chain_id, api_key=pimlico_api_key)

        poll_interval = _optional_float("POLL_INTERVAL")

        return cls(
            rpc_url=rpc_url,
            bundler_url=bundler_url,
            chain_id=chain_id,
            entry_point_address=os.environ.get("ENTRY_POINT_ADDRESS", ENTRYPOINT_V07),
            poll_interval=DEFAULT_POLL_INTERVAL if poll_interval is None else poll_interval,
            receipt_timeout=_optional_float("RECEIPT_TIMEOUT"),
            remote_user_op_hash=os.environ.get("REMOTE_USER_OP_HASH", "").lower() in ("1", "true", "yes"),
            log_from_block=int(os.environ.get("LOG_FROM_BLOCK", 0)),
            legacy_failed_status=os.environ.get("LEGACY_FAILED_STATUS", "").lower() in ("1", "true", "yes"),
        )
