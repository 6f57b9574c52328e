"""
Custom exception classes for the verification pipeline.
"""


class ClientVerificationError(Exception):
    """Base exception for verification pipeline errors."""


class DecodeError(ClientVerificationError, ValueError):
    """Raised when a queue payload cannot be decoded into a verification result."""

    def __init__(self, reason: str):
        super().__init__(f"Malformed verification result: {reason}")
        self.reason = reason


class UnknownReceiptHandleError(ClientVerificationError, KeyError):
    """Raised when deleting or releasing a message this client did not receive."""

    def __init__(self, receipt_handle: str):
        super().__init__(receipt_handle)
        self.receipt_handle = receipt_handle

    def __str__(self) -> str:
        return f"Unknown receipt handle '{self.receipt_handle}'"
