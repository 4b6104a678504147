"""
Asset lifecycle orchestration.

Walbucket sequences credential validation, blob store transfers, encryption
and ledger mutations for every public operation. No collaborator offers
transactions across the others, so each operation is a saga: steps run
strictly in order, committed steps are never rolled back, and failures
surface as exactly one WalbucketError subclass with the cause attached.
"""

import asyncio
import functools
from dataclasses import replace
from typing import Any, Awaitable, Callable, List, Optional, Type, TypeVar, Union

import httpx
from pydantic import BaseModel, ValidationError as PydanticValidationError

from common.constants import PERMISSION_DELETE, PERMISSION_READ, PERMISSION_UPLOAD
from common.logging_config import get_logger
from common.ttl_cache import TTLCache
from walbucket.clients.blob_client import BlobClient
from walbucket.clients.ledger_client import LedgerClient
from walbucket.config import WalbucketConfig, load_config
from walbucket.exceptions import (
    BlockchainError,
    EncryptedUploadError,
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
from walbucket.services.credential_service import CredentialService
from walbucket.services.gas_strategy import Authorization, resolve_authorization
from walbucket.services.ledger_service import LedgerService
from walbucket.services.reconciler import TransactionReconciler
from walbucket.services.seal_service import SealService, ThresholdCipher
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
from walbucket.utils import (
    FileInput,
    file_to_bytes,
    generate_share_token,
    get_file_name,
    guess_content_type,
    now_ms,
    sha256_hex,
)

logger = get_logger(__name__)

M = TypeVar('M', bound=BaseModel)


def _coerce(model: Type[M], value: Union[M, dict, None]) -> M:
    if value is None:
        return model()
    if isinstance(value, model):
        return value
    if isinstance(value, dict):
        return model.model_validate(value)
    raise ValidationError(f"Expected {model.__name__} or dict, got {type(value).__name__}")


def saga(action: str):
    """
    Translate every failure of a public operation into the error taxonomy.

    SDK errors pass through unchanged. Option validation failures become
    ValidationError, transport failures NetworkError, and anything else
    BlockchainError, each keeping the original exception as cause.
    """
    def decorator(func: Callable[..., Awaitable[Any]]):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            try:
                return await func(*args, **kwargs)
            except WalbucketError as e:
                logger.debug(f"{action} failed: {e}")
                raise
            except PydanticValidationError as e:
                raise ValidationError(f"Invalid options for {action}: {e}", cause=e) from e
            except httpx.HTTPError as e:
                raise NetworkError(f"{action} failed: {e}", cause=e) from e
            except Exception as e:
                logger.error(f"{action} failed unexpectedly: {type(e).__name__}: {e}")
                raise BlockchainError(f"{action} failed: {e}", cause=e) from e
        return wrapper
    return decorator


class Walbucket:
    """
    Client SDK for storing, encrypting, sharing and organizing assets.

    Example:
        async with Walbucket(api_key='...', sponsor_private_key='...') as wb:
            result = await wb.upload(b'hello', {'name': 'hello.txt'})
            data = (await wb.retrieve(result.asset_id)).data
    """

    def __init__(
        self,
        config: Optional[WalbucketConfig] = None,
        *,
        cipher: Optional[ThresholdCipher] = None,
        ledger_client: Optional[LedgerClient] = None,
        blob_client: Optional[BlobClient] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        cache_clock: Optional[Callable[[], float]] = None,
        **config_fields,
    ):
        """
        Initialize the SDK.

        Args:
            config: Prebuilt configuration; alternatively pass its fields as keywords
            cipher: Threshold encryption backend, required for encrypted uploads and decryption
            ledger_client: Ledger client override
            blob_client: Blob store client override
            sleep: Awaitable sleep used for the indexing grace interval
            cache_clock: Monotonic clock for the metadata caches

        Raises:
            ConfigurationError: If the configuration or authorization material is invalid
        """
        self.config = load_config(config, **config_fields)
        self.auth: Authorization = resolve_authorization(self.config)

        self.ledger = ledger_client or LedgerClient(self.config)
        self.blobs = blob_client or BlobClient(self.config)
        self.seal = SealService(
            cipher,
            self.config.package_id,
            self.config.seal_threshold,
            server_ids=self.config.seal_server_ids,
        )
        self.credentials = CredentialService(
            self.ledger,
            self.config.package_id,
            cache_ttl=self.config.cache_ttl,
            cache_max_entries=self.config.cache_max_entries,
            salt=self.config.credential_salt,
            cache_clock=cache_clock,
        )
        self.reconciler = TransactionReconciler(self.ledger, self.config.indexing_grace_seconds, sleep)
        self.contract = LedgerService(
            self.ledger,
            self.reconciler,
            self.credentials,
            self.config.package_id,
            self.config.api_key,
            self.blobs.file_url,
        )
        self._assets: TTLCache[str, AssetMetadata] = TTLCache(
            self.config.cache_ttl,
            self.config.cache_max_entries,
            clock=cache_clock,
            name='assets',
        )

        logger.info(
            f"Walbucket ready [network={self.config.network}, "
            f"strategy={self.auth.strategy.value}, address={self.auth.address}]"
        )

    async def __aenter__(self) -> 'Walbucket':
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        await self.ledger.close()
        await self.blobs.close()

    @property
    def address(self) -> str:
        """Address that signs mutations and owns what they create."""
        return self.auth.address

    def _owner(self, owner: Optional[str]) -> str:
        return owner or self.auth.address

    async def _authorize(self, permission: int) -> None:
        record = await self.credentials.validate(self.config.api_key)
        self.credentials.require_permission(record, permission)

    async def _load_asset(self, asset_id: str) -> AssetMetadata:
        asset = await self.get_asset(asset_id)
        if asset is None:
            raise ValidationError(f"Asset not found: {asset_id}", code=ErrorCode.ASSET_NOT_FOUND)
        return asset

    def _created_id(self, outcome, what: str) -> str:
        if not outcome.created_id:
            raise BlockchainError(f"No {what} id returned", transaction_digest=outcome.digest)
        return outcome.created_id

    # Upload

    @saga('upload')
    async def upload(self, file: FileInput, options: Union[UploadOptions, dict, None] = None) -> UploadResult:
        """
        Upload a file and register it as an asset.

        Without a policy (or with encryption disabled) the bytes are stored
        as-is. With a policy the encrypted saga runs: plaintext is stored and
        registered, the policy is created and applied, the ciphertext is
        stored and swapped in, and the plaintext blob is deleted.

        Args:
            file: Bytes, a filesystem path or a binary file object
            options: UploadOptions or an equivalent dict

        Returns:
            Upload result

        Raises:
            ValidationError: On bad input or missing upload permission
            NetworkError: If the blob store fails
            EncryptedUploadError: If the encrypted saga fails after registration
        """
        opts = _coerce(UploadOptions, options)
        await self._authorize(PERMISSION_UPLOAD)

        data = file_to_bytes(file)
        name = opts.name or get_file_name(file)
        content_type = opts.content_type or guess_content_type(name)

        encryption_enabled = self.config.encryption if opts.encryption is None else opts.encryption
        if encryption_enabled and opts.policy is not None:
            return await self._upload_encrypted(data, name, content_type, opts)

        blob_id = await self.blobs.upload(data)
        outcome = await self.contract.register_asset(self.auth, blob_id, name, content_type, len(data), opts)
        asset_id = self._created_id(outcome, 'asset')

        logger.info(f"Asset uploaded [asset_id={asset_id}, blob_id={blob_id}, size={len(data)}]")
        return UploadResult(
            asset_id=asset_id,
            blob_id=blob_id,
            url=self.blobs.file_url(blob_id),
            size=len(data),
            content_type=content_type,
            created_at=now_ms(),
            encrypted=False,
        )

    async def _upload_encrypted(
        self, data: bytes, name: str, content_type: str, opts: UploadOptions
    ) -> UploadResult:
        # Fail before anything is committed if encryption cannot happen.
        self.seal.require_cipher()

        plaintext_blob_id = await self.blobs.upload(data)
        logger.info(f"Encrypted upload: plaintext stored [blob_id={plaintext_blob_id}]")

        outcome = await self.contract.register_asset(
            self.auth, plaintext_blob_id, name, content_type, len(data), opts
        )
        asset_id = self._created_id(outcome, 'asset')
        logger.info(f"Encrypted upload: asset registered [asset_id={asset_id}]")

        checkpoint = UploadCheckpoint(
            asset_id=asset_id,
            plaintext_blob_id=plaintext_blob_id,
            completed=UploadStep.ASSET_REGISTERED,
            content_type=content_type,
            size=len(data),
            created_at=now_ms(),
        )
        return await self._finish_encrypted_upload(checkpoint, data, opts.policy)

    async def _finish_encrypted_upload(
        self, checkpoint: UploadCheckpoint, data: bytes, policy: EncryptionPolicy
    ) -> UploadResult:
        """Run every step after the checkpoint, then drop the plaintext blob."""
        try:
            if checkpoint.completed < UploadStep.POLICY_CREATED:
                outcome = await self.contract.create_policy(self.auth, checkpoint.asset_id, policy)
                checkpoint = replace(
                    checkpoint,
                    policy_id=self._created_id(outcome, 'policy'),
                    completed=UploadStep.POLICY_CREATED,
                )
                logger.info(f"Encrypted upload: policy created [policy_id={checkpoint.policy_id}]")

            if checkpoint.completed < UploadStep.POLICY_APPLIED:
                await self.contract.apply_policy(self.auth, checkpoint.asset_id, checkpoint.policy_id)
                checkpoint = replace(checkpoint, completed=UploadStep.POLICY_APPLIED)
                self._assets.delete(checkpoint.asset_id)

            if checkpoint.completed < UploadStep.CIPHERTEXT_STORED:
                ciphertext = await self.seal.encrypt(data, checkpoint.policy_id)
                encrypted_blob_id = await self.blobs.upload(ciphertext)
                checkpoint = replace(
                    checkpoint,
                    encrypted_blob_id=encrypted_blob_id,
                    completed=UploadStep.CIPHERTEXT_STORED,
                )
                logger.info(f"Encrypted upload: ciphertext stored [blob_id={encrypted_blob_id}]")

            if checkpoint.completed < UploadStep.BLOB_SWAPPED:
                await self.contract.update_blob_id(self.auth, checkpoint.asset_id, checkpoint.encrypted_blob_id)
                checkpoint = replace(checkpoint, completed=UploadStep.BLOB_SWAPPED)
                self._assets.delete(checkpoint.asset_id)
        except Exception as e:
            code = e.code if isinstance(e, WalbucketError) else ErrorCode.BLOCKCHAIN_ERROR
            digest = getattr(e, 'transaction_digest', None)
            logger.error(
                f"Encrypted upload stopped after {checkpoint.completed.name} "
                f"[asset_id={checkpoint.asset_id}, plaintext_blob_id={checkpoint.plaintext_blob_id}, "
                f"policy_id={checkpoint.policy_id}]: {e}"
            )
            raise EncryptedUploadError(
                f"Encrypted upload incomplete: asset {checkpoint.asset_id} still references "
                f"plaintext blob {checkpoint.plaintext_blob_id} ({e})",
                checkpoint=checkpoint,
                transaction_digest=digest,
                code=code,
                cause=e,
            ) from e

        try:
            await self.blobs.delete(checkpoint.plaintext_blob_id)
        except NetworkError as e:
            logger.warning(f"Could not delete plaintext blob {checkpoint.plaintext_blob_id}: {e}")

        logger.info(
            f"Asset uploaded encrypted [asset_id={checkpoint.asset_id}, "
            f"blob_id={checkpoint.encrypted_blob_id}, policy_id={checkpoint.policy_id}]"
        )
        return UploadResult(
            asset_id=checkpoint.asset_id,
            blob_id=checkpoint.encrypted_blob_id,
            url=self.blobs.file_url(checkpoint.encrypted_blob_id),
            size=checkpoint.size,
            content_type=checkpoint.content_type,
            created_at=checkpoint.created_at,
            encrypted=True,
            policy_id=checkpoint.policy_id,
        )

    @saga('resume encrypted upload')
    async def resume_encrypted_upload(
        self,
        checkpoint: UploadCheckpoint,
        file: FileInput,
        policy: Union[EncryptionPolicy, dict],
    ) -> UploadResult:
        """
        Finish an encrypted upload from the checkpoint of an EncryptedUploadError.

        Steps already committed are not repeated.

        Args:
            checkpoint: Checkpoint attached to the failed upload's error
            file: The original plaintext
            policy: The policy the upload was started with

        Returns:
            Upload result of the completed saga
        """
        policy = _coerce(EncryptionPolicy, policy)
        await self._authorize(PERMISSION_UPLOAD)
        self.seal.require_cipher()

        data = file_to_bytes(file)
        if checkpoint.size and len(data) != checkpoint.size:
            raise ValidationError(
                f"File size {len(data)} does not match the interrupted upload ({checkpoint.size} bytes)"
            )
        logger.info(f"Resuming encrypted upload after {checkpoint.completed.name} [asset_id={checkpoint.asset_id}]")
        return await self._finish_encrypted_upload(replace(checkpoint, size=len(data)), data, policy)

    # Retrieve / delete / read

    @saga('retrieve')
    async def retrieve(
        self, asset_id: str, options: Union[RetrieveOptions, dict, None] = None
    ) -> RetrieveResult:
        """
        Fetch an asset's bytes, decrypting them when the asset has a policy.

        Raises:
            ValidationError: If the asset does not exist, read permission is
                missing, decryption is implied but no session_key was given, or
                a password-protected policy's password is missing or wrong
        """
        opts = _coerce(RetrieveOptions, options)
        await self._authorize(PERMISSION_READ)

        asset = await self._load_asset(asset_id)
        data = await self.blobs.retrieve(asset.blob_id)

        decrypt = asset.encrypted if opts.decrypt is None else opts.decrypt
        if not (decrypt and asset.encrypted):
            return RetrieveResult(data=data, metadata=asset, decrypted=False)

        if opts.session_key is None:
            raise ValidationError(f"session_key is required to decrypt asset {asset_id}")

        policy = await self.contract.get_policy(asset.policy_id)
        if policy is not None and policy.password_hash:
            if opts.password is None:
                raise ValidationError(f"password is required to decrypt asset {asset_id}")
            if sha256_hex(opts.password) != policy.password_hash:
                raise ValidationError(f"Incorrect password for asset {asset_id}")

        plaintext = await self.seal.decrypt(data, asset.policy_id, opts.session_key)
        return RetrieveResult(data=plaintext, metadata=asset, decrypted=True)

    @saga('delete')
    async def delete(self, asset_id: str) -> None:
        """
        Delete an asset record, then its blob.

        The ledger enforces ownership. Blob deletion is best-effort: failures,
        including not-found and method-not-allowed responses, are logged only.
        """
        await self._authorize(PERMISSION_DELETE)
        asset = await self._load_asset(asset_id)

        await self.contract.delete_asset(self.auth, asset_id)
        self._assets.delete(asset_id)
        logger.info(f"Asset deleted [asset_id={asset_id}]")

        try:
            await self.blobs.delete(asset.blob_id)
        except NetworkError as e:
            logger.warning(f"Blob delete failed for {asset.blob_id} (asset already deleted): {e}")

    @saga('get asset')
    async def get_asset(self, asset_id: str) -> Optional[AssetMetadata]:
        """Return asset metadata, served from cache within the TTL."""
        cached = self._assets.get(asset_id)
        if cached is not None:
            logger.debug(f"Asset cache hit [asset_id={asset_id}]")
            return cached

        asset = await self.contract.get_asset(asset_id)
        if asset is not None:
            self._assets.set(asset_id, asset)
        return asset

    @saga('list assets')
    async def list(self, options: Union[ListOptions, dict, None] = None) -> Page[AssetMetadata]:
        """List assets owned by an address (default: this instance's address)."""
        opts = _coerce(ListOptions, options)
        page = await self.contract.list_assets(self._owner(opts.owner), opts.cursor, opts.limit)
        for asset in page.items:
            self._assets.set(asset.asset_id, asset)
        return page

    @saga('rename')
    async def rename(self, asset_id: str, new_name: str) -> None:
        if not new_name:
            raise ValidationError('new_name is required')
        await self.contract.rename_asset(self.auth, asset_id, new_name)
        self._assets.delete(asset_id)

    @saga('copy')
    async def copy(self, asset_id: str, new_name: str) -> str:
        """
        Copy an asset record under a new name.

        Returns:
            Id of the new asset
        """
        if not new_name:
            raise ValidationError('new_name is required')
        outcome = await self.contract.copy_asset(self.auth, asset_id, new_name)
        return self._created_id(outcome, 'asset')

    # Folders

    @saga('create folder')
    async def create_folder(
        self, name: str, parent_folder_id: Optional[str] = None, description: str = ''
    ) -> str:
        """
        Create a folder.

        Returns:
            Id of the new folder
        """
        if not name:
            raise ValidationError('Folder name is required')
        outcome = await self.contract.create_folder(self.auth, name, description, parent_folder_id)
        return self._created_id(outcome, 'folder')

    @saga('delete folder')
    async def delete_folder(self, folder_id: str) -> None:
        """Delete a folder. The ledger rejects folders that still hold assets."""
        await self.contract.delete_folder(self.auth, folder_id)

    @saga('move to folder')
    async def move_to_folder(self, asset_id: str, folder_id: Optional[str] = None) -> None:
        """Move an asset into a folder, or out of any folder when folder_id is None."""
        await self.contract.move_asset_to_folder(self.auth, asset_id, folder_id)
        self._assets.delete(asset_id)

    @saga('get folder')
    async def get_folder(self, folder_id: str) -> Optional[FolderMetadata]:
        return await self.contract.get_folder(folder_id)

    @saga('list folders')
    async def list_folders(self, owner: Optional[str] = None) -> List[FolderMetadata]:
        return await self.contract.list_folders(self._owner(owner))

    # Policies

    @saga('get policy')
    async def get_policy(self, policy_id: str) -> Optional[PolicyData]:
        return await self.contract.get_policy(policy_id)

    # Buckets

    @saga('create bucket')
    async def create_bucket(self, name: str, options: Union[BucketOptions, dict, None] = None) -> str:
        """
        Create a collaborative bucket.

        Returns:
            Id of the new bucket
        """
        if not name:
            raise ValidationError('Bucket name is required')
        outcome = await self.contract.create_bucket(self.auth, name, _coerce(BucketOptions, options))
        return self._created_id(outcome, 'bucket')

    @saga('list buckets')
    async def list_buckets(self, owner: Optional[str] = None) -> List[BucketMetadata]:
        return await self.contract.list_buckets(self._owner(owner))

    @saga('get bucket')
    async def get_bucket(self, bucket_id: str) -> Optional[BucketMetadata]:
        return await self.contract.get_bucket(bucket_id)

    @saga('add collaborator')
    async def add_collaborator(
        self,
        bucket_id: str,
        collaborator: str,
        permissions: Union[SharePermissions, dict, None] = None,
    ) -> None:
        await self.contract.add_collaborator(
            self.auth, bucket_id, collaborator, _coerce(SharePermissions, permissions)
        )

    @saga('remove collaborator')
    async def remove_collaborator(self, bucket_id: str, collaborator: str) -> None:
        await self.contract.remove_collaborator(self.auth, bucket_id, collaborator)

    @saga('update collaborator permissions')
    async def update_collaborator_permissions(
        self,
        bucket_id: str,
        collaborator: str,
        permissions: Union[SharePermissions, dict],
    ) -> None:
        await self.contract.update_collaborator_permissions(
            self.auth, bucket_id, collaborator, _coerce(SharePermissions, permissions)
        )

    @saga('add asset to bucket')
    async def add_asset_to_bucket(self, bucket_id: str, asset_id: str) -> None:
        await self.contract.add_asset_to_bucket(self.auth, bucket_id, asset_id)

    @saga('remove asset from bucket')
    async def remove_asset_from_bucket(self, bucket_id: str, asset_id: str) -> None:
        await self.contract.remove_asset_from_bucket(self.auth, bucket_id, asset_id)

    # Sharing

    @saga('share asset')
    async def share_asset(
        self,
        asset_id: str,
        granted_to: str,
        options: Union[ShareOptions, dict, None] = None,
    ) -> str:
        """
        Grant another address access to an asset.

        Returns:
            Id of the access grant
        """
        if not granted_to:
            raise ValidationError('granted_to is required')
        outcome = await self.contract.share_asset(self.auth, asset_id, granted_to, _coerce(ShareOptions, options))
        return self._created_id(outcome, 'access grant')

    @saga('create shareable link')
    async def create_shareable_link(
        self, asset_id: str, options: Union[LinkOptions, dict, None] = None
    ) -> LinkResult:
        """
        Create a token-keyed link to an asset. A random token is generated
        unless one is supplied.
        """
        opts = _coerce(LinkOptions, options)
        share_token = opts.share_token or generate_share_token()
        outcome = await self.contract.create_shareable_link(self.auth, asset_id, share_token, opts)
        return LinkResult(link_id=self._created_id(outcome, 'shareable link'), share_token=share_token)

    @saga('revoke share')
    async def revoke_share(self, grant_id: str) -> None:
        await self.contract.revoke_share(self.auth, grant_id)

    @saga('deactivate shareable link')
    async def deactivate_shareable_link(self, link_id: str) -> None:
        await self.contract.deactivate_shareable_link(self.auth, link_id)

    @saga('track link access')
    async def track_link_access(self, link_id: str) -> None:
        await self.contract.track_link_access(self.auth, link_id)

    @saga('list access grants')
    async def list_access_grants(self, owner: Optional[str] = None) -> List[AccessGrant]:
        return await self.contract.list_access_grants(self._owner(owner))

    @saga('list shareable links')
    async def list_shareable_links(self, owner: Optional[str] = None) -> List[ShareableLink]:
        return await self.contract.list_shareable_links(self._owner(owner))

    @saga('get access grant')
    async def get_access_grant(self, grant_id: str) -> Optional[AccessGrant]:
        return await self.contract.get_access_grant(grant_id)

    @saga('get shareable link')
    async def get_shareable_link(self, link_id: str) -> Optional[ShareableLink]:
        return await self.contract.get_shareable_link(link_id)

    def clear_cache(self) -> None:
        self._assets.clear()
        self.credentials.clear_cache()
