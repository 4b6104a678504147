"""Walbucket: asset storage SDK over a ledger, a blob store and threshold encryption."""

from walbucket.config import GasStrategy, WalbucketConfig, load_config
from walbucket.core import Walbucket
from walbucket.exceptions import (
    BlockchainError,
    ConfigurationError,
    EncryptedUploadError,
    EncryptionError,
    ErrorCode,
    NetworkError,
    ValidationError,
    WalbucketError,
)
from walbucket.schemas import (
    BucketOptions,
    EncryptionPolicy,
    LinkOptions,
    ListOptions,
    RetrieveOptions,
    SharePermissions,
    ShareOptions,
    UploadOptions,
)
from walbucket.services.seal_service import ThresholdCipher
from walbucket.transactions import MoveCall
from walbucket.types import (
    AccessGrant,
    AssetMetadata,
    BucketMetadata,
    FolderMetadata,
    LinkResult,
    Page,
    PolicyData,
    RetrieveResult,
    ShareableLink,
    UploadCheckpoint,
    UploadResult,
    UploadStep,
)

__version__ = '0.1.0'

__all__ = [
    'Walbucket',
    'WalbucketConfig',
    'GasStrategy',
    'load_config',
    'WalbucketError',
    'ValidationError',
    'NetworkError',
    'EncryptionError',
    'BlockchainError',
    'ConfigurationError',
    'EncryptedUploadError',
    'ErrorCode',
    'UploadOptions',
    'RetrieveOptions',
    'EncryptionPolicy',
    'ShareOptions',
    'LinkOptions',
    'SharePermissions',
    'BucketOptions',
    'ListOptions',
    'ThresholdCipher',
    'MoveCall',
    'AssetMetadata',
    'UploadResult',
    'RetrieveResult',
    'FolderMetadata',
    'BucketMetadata',
    'AccessGrant',
    'ShareableLink',
    'LinkResult',
    'PolicyData',
    'Page',
    'UploadCheckpoint',
    'UploadStep',
]
