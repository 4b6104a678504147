"""Pydantic models for SDK call options."""

from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

PolicyType = Literal['public', 'wallet-gated', 'time-limited', 'password-protected']


class EncryptionPolicy(BaseModel):
    """Access rule for an encrypted asset."""
    type: PolicyType
    addresses: List[str] = Field(default_factory=list)
    expiration: Optional[int] = Field(default=None, ge=0, description='Expiry in milliseconds')
    password: Optional[str] = Field(default=None, repr=False)

    @model_validator(mode='after')
    def _check_required_material(self) -> 'EncryptionPolicy':
        if self.type == 'wallet-gated' and not self.addresses:
            raise ValueError('wallet-gated policy requires at least one address')
        if self.type == 'time-limited' and not self.expiration:
            raise ValueError('time-limited policy requires an expiration')
        if self.type == 'password-protected' and not self.password:
            raise ValueError('password-protected policy requires a password')
        return self


class UploadOptions(BaseModel):
    """Options for upload()."""
    name: Optional[str] = None
    content_type: Optional[str] = None
    folder_id: Optional[str] = None
    policy: Optional[EncryptionPolicy] = None
    encryption: Optional[bool] = None
    tags: List[str] = Field(default_factory=list)
    description: str = ''
    category: str = ''
    width: Optional[int] = Field(default=None, ge=0)
    height: Optional[int] = Field(default=None, ge=0)
    thumbnail_blob_id: Optional[str] = None


class RetrieveOptions(BaseModel):
    """Options for retrieve(). decrypt defaults to True when the asset has a policy."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    decrypt: Optional[bool] = None
    session_key: Optional[Any] = Field(default=None, repr=False)
    password: Optional[str] = Field(
        default=None, repr=False, description='Checked against a password-protected policy before decryption'
    )


class SharePermissions(BaseModel):
    """Read/write/admin flags for grants, links and collaborators."""
    can_read: bool = True
    can_write: bool = False
    can_admin: bool = False


class ShareOptions(SharePermissions):
    """Options for share_asset()."""
    expires_at: Optional[int] = Field(default=None, ge=0, description='Expiry in milliseconds')
    password: Optional[str] = Field(default=None, repr=False)


class LinkOptions(ShareOptions):
    """Options for create_shareable_link(). A token is generated when omitted."""
    share_token: Optional[str] = Field(default=None, repr=False)


class BucketOptions(BaseModel):
    """Options for create_bucket()."""
    description: str = ''
    tags: List[str] = Field(default_factory=list)
    category: str = ''
    storage_limit: Optional[int] = Field(default=None, ge=0)


class ListOptions(BaseModel):
    """Pagination options for owned-object listings."""
    owner: Optional[str] = None
    cursor: Optional[str] = None
    limit: Optional[int] = Field(default=None, ge=1, le=50)
