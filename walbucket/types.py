"""Domain types shared across the SDK."""

from dataclasses import dataclass
from enum import IntEnum
from typing import Generic, Optional, Tuple, TypeVar

T = TypeVar('T')


@dataclass(frozen=True)
class CredentialRecord:
    """Validated on-ledger API credential."""
    key_id: str
    developer_address: str
    name: str
    permissions: int
    rate_limit: int
    created_at: int
    expires_at: int
    is_active: bool
    usage_count: int = 0
    last_used_at: int = 0

    def has_permission(self, permission: int) -> bool:
        return (self.permissions & permission) == permission

    def is_expired(self, now_seconds: float) -> bool:
        return self.expires_at != 0 and now_seconds >= self.expires_at


@dataclass(frozen=True)
class AssetMetadata:
    """
    Ledger record of one stored file.

    Timestamps are milliseconds since the epoch.
    """
    asset_id: str
    owner: str
    blob_id: str
    name: str
    content_type: str
    size: int
    created_at: int
    updated_at: int
    url: str
    policy_id: Optional[str] = None
    tags: Tuple[str, ...] = ()
    description: str = ''
    category: str = ''
    width: Optional[int] = None
    height: Optional[int] = None
    thumbnail_blob_id: Optional[str] = None
    folder_id: Optional[str] = None

    @property
    def encrypted(self) -> bool:
        return self.policy_id is not None


@dataclass(frozen=True)
class UploadResult:
    """Result of a successful upload."""
    asset_id: str
    blob_id: str
    url: str
    size: int
    content_type: str
    created_at: int
    encrypted: bool = False
    policy_id: Optional[str] = None


@dataclass(frozen=True)
class RetrieveResult:
    """Bytes and metadata returned by retrieve()."""
    data: bytes
    metadata: AssetMetadata
    decrypted: bool = False

    @property
    def url(self) -> str:
        return self.metadata.url


@dataclass(frozen=True)
class FolderMetadata:
    """Ledger record of a folder."""
    folder_id: str
    owner: str
    name: str
    description: str
    parent_folder_id: Optional[str]
    asset_count: int
    created_at: int
    updated_at: int


@dataclass(frozen=True)
class BucketMetadata:
    """Ledger record of a collaborative bucket."""
    bucket_id: str
    owner: str
    name: str
    description: str
    tags: Tuple[str, ...]
    category: str
    collaborator_count: int
    asset_count: int
    total_size: int
    storage_limit: Optional[int]
    created_at: int
    updated_at: int


@dataclass(frozen=True)
class AccessGrant:
    """Directed permission grant over one asset."""
    grant_id: str
    asset_id: str
    granted_by: str
    granted_to: str
    can_read: bool
    can_write: bool
    can_admin: bool
    expires_at: Optional[int]
    created_at: int


@dataclass(frozen=True)
class ShareableLink:
    """Token-keyed permission grant over one asset."""
    link_id: str
    asset_id: str
    creator: str
    share_token: str
    can_read: bool
    can_write: bool
    can_admin: bool
    expires_at: Optional[int]
    is_active: bool
    created_at: int
    last_accessed_at: Optional[int]
    access_count: int


@dataclass(frozen=True)
class PolicyData:
    """On-ledger encryption policy."""
    policy_id: str
    asset_id: str
    owner: str
    policy_type: int
    allowed_addresses: Tuple[str, ...] = ()
    expiration: int = 0
    password_hash: str = ''
    created_at: int = 0


@dataclass(frozen=True)
class TransactionOutcome:
    """
    Normalized result of a ledger mutation.

    Produced once by the reconciler whatever response shape the submission
    path returned.
    """
    digest: str
    status: str = 'success'
    created_ids: Tuple[str, ...] = ()
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == 'success'

    @property
    def created_id(self) -> Optional[str]:
        return self.created_ids[0] if self.created_ids else None


@dataclass(frozen=True)
class Page(Generic[T]):
    """One page of a paginated listing."""
    items: Tuple[T, ...]
    next_cursor: Optional[str] = None
    has_next_page: bool = False


class UploadStep(IntEnum):
    """Committed steps of the encrypted upload saga, in order."""
    PLAINTEXT_STORED = 1
    ASSET_REGISTERED = 2
    POLICY_CREATED = 3
    POLICY_APPLIED = 4
    CIPHERTEXT_STORED = 5
    BLOB_SWAPPED = 6


@dataclass(frozen=True)
class UploadCheckpoint:
    """
    Identifiers committed by a partially completed encrypted upload.

    Attributes:
        asset_id: Registered asset (points at the plaintext blob until BLOB_SWAPPED)
        plaintext_blob_id: Provisional blob holding unencrypted bytes
        completed: Last step that committed
        policy_id: Encryption policy, once POLICY_CREATED
        encrypted_blob_id: Ciphertext blob, once CIPHERTEXT_STORED
    """
    asset_id: str
    plaintext_blob_id: str
    completed: UploadStep
    policy_id: Optional[str] = None
    encrypted_blob_id: Optional[str] = None
    content_type: str = ''
    size: int = 0
    created_at: int = 0


@dataclass(frozen=True)
class LinkResult:
    """Identifiers of a newly created shareable link."""
    link_id: str
    share_token: str
