"""
Smart Account Wallet Client

A modular ERC-4337 (EntryPoint v0.7) client for ERC-7579 smart accounts:
building, signing and submitting UserOperations through a bundler, with
pluggable validators, account vendors and paymasters behind an ERC-5792
call batch interface.
"""

# Main services
from aa_wallet.wallet import WalletService
from aa_wallet.smart_account import SmartAccountService

# Configuration
from aa_wallet.config import SmartAccountConfig

# Individual components for advanced usage
from aa_wallet.bundler import BundlerClient, convert_user_operation_to_rpc_format
from aa_wallet.chain import ChainClient
from aa_wallet.packing import PackedUserOperation, get_user_op_hash, pack_user_operation
from aa_wallet.paymaster import AllowlistPaymaster, PaymasterProvider, PaymasterServiceClient
from aa_wallet.user_operations import Call, CallReceipt, CallsResult, CallStatus, UserOperation
from aa_wallet.validators import AccountValidator, ECDSAValidator, SmartSessionValidator
from aa_wallet.vendors import AccountVendor, Kernel, MyAccount

__version__ = "1.0.0"

__all__ = [
    "WalletService",
    "SmartAccountService",
    "SmartAccountConfig",
    "BundlerClient",
    "convert_user_operation_to_rpc_format",
    "ChainClient",
    "PackedUserOperation",
    "get_user_op_hash",
    "pack_user_operation",
    "AllowlistPaymaster",
    "PaymasterProvider",
    "PaymasterServiceClient",
    "Call",
    "CallReceipt",
    "CallsResult",
    "CallStatus",
    "UserOperation",
    "AccountValidator",
    "ECDSAValidator",
    "SmartSessionValidator",
    "AccountVendor",
    "Kernel",
    "MyAccount",
]
