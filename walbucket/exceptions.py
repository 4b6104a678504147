"""Exception taxonomy raised by the SDK."""

import re
from typing import Optional


class ErrorCode:
    """Error codes surfaced on WalbucketError.code."""

    # SDK-level
    VALIDATION_ERROR = 'E_VALIDATION_ERROR'
    NETWORK_ERROR = 'E_NETWORK_ERROR'
    ENCRYPTION_ERROR = 'E_ENCRYPTION_ERROR'
    BLOCKCHAIN_ERROR = 'E_BLOCKCHAIN_ERROR'
    CONFIGURATION_ERROR = 'E_CONFIGURATION_ERROR'

    # Ledger contract
    NOT_OWNER = 'E_NOT_OWNER'
    ASSET_NOT_FOUND = 'E_ASSET_NOT_FOUND'
    INVALID_PERMISSION = 'E_INVALID_PERMISSION'
    POLICY_EXPIRED = 'E_POLICY_EXPIRED'
    ACCESS_DENIED = 'E_ACCESS_DENIED'
    INVALID_API_KEY = 'E_INVALID_API_KEY'
    API_KEY_EXPIRED = 'E_API_KEY_EXPIRED'
    API_KEY_INACTIVE = 'E_API_KEY_INACTIVE'
    PERMISSION_DENIED = 'E_PERMISSION_DENIED'
    FOLDER_NOT_EMPTY = 'E_FOLDER_NOT_EMPTY'

    LEDGER_CODES = frozenset({
        NOT_OWNER, ASSET_NOT_FOUND, INVALID_PERMISSION, POLICY_EXPIRED, ACCESS_DENIED,
        INVALID_API_KEY, API_KEY_EXPIRED, API_KEY_INACTIVE, PERMISSION_DENIED, FOLDER_NOT_EMPTY,
    })


_ABORT_CODE = re.compile(r'\bE_[A-Z_]+\b')


def ledger_error_code(error: Optional[str]) -> Optional[str]:
    """
    Return the contract error code named in a ledger abort message.

    Returns:
        The matching ErrorCode value, or None if the message names no known code
    """
    for match in _ABORT_CODE.findall(error or ''):
        if match in ErrorCode.LEDGER_CODES:
            return match
    return None


class WalbucketError(Exception):
    """
    Base exception class for all SDK errors.

    Attributes:
        code: Stable error code (see ErrorCode)
        message: Human readable description
        cause: Lower-level exception this error wraps, if any
    """

    default_code = ErrorCode.BLOCKCHAIN_ERROR

    def __init__(self, message: str, code: Optional[str] = None, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


class ValidationError(WalbucketError):
    """
    Raised for bad input, missing permission, not-found-after-lookup and
    missing decryption material.
    """
    default_code = ErrorCode.VALIDATION_ERROR


class NetworkError(WalbucketError):
    """
    Raised when the blob store (or any HTTP collaborator) fails.
    """
    default_code = ErrorCode.NETWORK_ERROR

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message, code=code, cause=cause)
        self.status_code = status_code


class EncryptionError(WalbucketError):
    """
    Raised when encryption or decryption fails.
    """
    default_code = ErrorCode.ENCRYPTION_ERROR


class BlockchainError(WalbucketError):
    """
    Raised when a ledger mutation or query fails.

    Carries the transaction digest whenever one is known, so a failed but
    possibly committed mutation can still be looked up.
    """
    default_code = ErrorCode.BLOCKCHAIN_ERROR

    def __init__(
        self,
        message: str,
        transaction_digest: Optional[str] = None,
        code: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message, code=code, cause=cause)
        self.transaction_digest = transaction_digest


class ConfigurationError(WalbucketError):
    """
    Raised when the SDK configuration cannot be satisfied.
    """
    default_code = ErrorCode.CONFIGURATION_ERROR


class EncryptedUploadError(BlockchainError):
    """
    Raised when an encrypted upload fails after the asset was registered.

    The asset still points at its provisional plaintext blob. The attached
    checkpoint names every identifier created so far; pass it to
    Walbucket.resume_encrypted_upload() to finish the remaining steps.
    """

    def __init__(
        self,
        message: str,
        checkpoint,
        transaction_digest: Optional[str] = None,
        code: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message, transaction_digest=transaction_digest, code=code, cause=cause)
        self.checkpoint = checkpoint

    @property
    def asset_id(self) -> str:
        return self.checkpoint.asset_id

    @property
    def blob_id(self) -> str:
        return self.checkpoint.plaintext_blob_id
