"""
Error types raised by the smart account wallet client
"""

from typing import Any, Optional


class WalletError(Exception):
    """Base class for wallet client errors"""


class InvalidRequestError(WalletError, ValueError):
    """Malformed request, rejected before any network call"""


class InvalidHexError(InvalidRequestError):
    """Value is not a 0x-prefixed hex string of the expected shape"""


class VendorError(WalletError):
    """Account vendor rejected the requested calls"""


class ValidatorError(WalletError):
    """Account validator failed to produce a usable signature"""


class BundlerError(WalletError):
    """Bundler request failed"""


class BundlerMethodNotAllowed(BundlerError):
    def __init__(self, method: str):
        super().__init__(f"Invalid method: {method}")
        self.method = method


class BundlerTransportError(BundlerError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class BundlerRpcError(BundlerError):
    """JSON-RPC error object returned by the bundler"""

    def __init__(self, method: str, error: Any):
        message = error.get("message", error) if isinstance(error, dict) else error
        super().__init__(f"JSON-RPC error: {method} - {message}")
        self.method = method
        self.error = error


class UserOperationRejected(BundlerError):
    """Bundler returned an empty result for a user operation request"""


class PaymasterError(WalletError):
    """Paymaster refused or failed to sponsor the user operation"""


class InsufficientFundsError(WalletError):
    def __init__(self, sender: str, required: int, balance: int):
        super().__init__(
            f"Sender {sender} does not have enough native tokens: "
            f"required prefund {required} wei, balance {balance} wei"
        )
        self.sender = sender
        self.required = required
        self.balance = balance


class ReceiptTimeoutError(WalletError, TimeoutError):
    """No receipt observed before the caller's deadline"""


class NoReceiptsError(WalletError):
    """Call batch reached a terminal status without receipts"""
