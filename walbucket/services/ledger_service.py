"""
Ledger entry points and record parsing for the asset contract.

Every mutation exists in two variants. Under sponsored authorization the
credentialed '<function>_with_api_key' entry point is called with the
credential object, its hash and the developer account appended; under
self-pay the credential-free entry point is called and the ledger
attributes ownership to the wallet that signed. The variant is chosen only
from the resolved Authorization value.
"""

from typing import Any, Callable, Dict, List, Optional, Sequence

from common.constants import (
    BUCKET_EVENT_SCAN_LIMIT,
    DEFAULT_CONTENT_TYPE,
    PERMISSION_DELETE,
    PERMISSION_UPLOAD,
)
from common.logging_config import get_logger
from walbucket.clients.ledger_client import LedgerClient, LedgerRpcError
from walbucket.exceptions import BlockchainError
from walbucket.schemas import BucketOptions, EncryptionPolicy, SharePermissions, ShareOptions, UploadOptions
from walbucket.services.credential_service import CredentialService
from walbucket.services.gas_strategy import Authorization, SponsoredAuthorization
from walbucket.services.reconciler import TransactionReconciler
from walbucket.services.seal_service import (
    policy_expiration_seconds,
    policy_password_hash,
    policy_type_code,
)
from walbucket.transactions import (
    Argument,
    clock,
    obj,
    pure_address,
    pure_addresses,
    pure_bool,
    pure_byte_vectors,
    pure_bytes,
    pure_option,
    pure_u8,
    pure_u64,
    MoveCall,
)
from walbucket.types import (
    AccessGrant,
    AssetMetadata,
    BucketMetadata,
    FolderMetadata,
    Page,
    PolicyData,
    ShareableLink,
    TransactionOutcome,
)
from walbucket.utils import sha256_hex

logger = get_logger(__name__)

ASSET_TYPE = '::asset::Asset'
FOLDER_TYPE = '::folder::Folder'
POLICY_TYPE = '::policy::EncryptionPolicy'
GRANT_TYPE = '::share::AccessGrant'
LINK_TYPE = '::share::ShareableLink'
BUCKET_TYPE = '::bucket::Bucket'


def _text(value: Any) -> str:
    """Decode a ledger string field, which may arrive as a byte list."""
    if isinstance(value, list):
        return bytes(value).decode('utf-8', errors='replace')
    return value or ''


def _optional_id(value: Any) -> Optional[str]:
    """Decode an Option<ID>/ID field in either its wrapped or flat JSON form."""
    if isinstance(value, dict):
        inner = value.get('fields', value)
        if not isinstance(inner, dict):
            return None
        if inner.get('id'):
            return inner['id']
        vec = inner.get('vec') or []
        return vec[0] if vec else None
    if isinstance(value, list):
        return value[0] if value else None
    return value or None


def _optional_int(value: Any) -> Optional[int]:
    if value in (None, '', 0, '0', []):
        return None
    if isinstance(value, list):
        return int(value[0])
    return int(value)


def _content_fields(obj_data: Optional[Dict[str, Any]], type_suffix: str) -> Optional[Dict[str, Any]]:
    if not obj_data:
        return None
    content = obj_data.get('content') or {}
    if content.get('dataType', 'moveObject') != 'moveObject':
        return None
    object_type = content.get('type') or obj_data.get('type') or ''
    if object_type and not object_type.endswith(type_suffix):
        return None
    return content.get('fields') or {}


def _hash_bytes(password: Optional[str]) -> Optional[bytes]:
    return bytes.fromhex(sha256_hex(password)) if password else None


def parse_asset(object_id: str, fields: Dict[str, Any], url_for: Callable[[str], str]) -> AssetMetadata:
    blob_id = _text(fields.get('blob_id'))
    created_at = int(fields.get('created_at') or 0) * 1000
    thumbnail = fields.get('thumbnail_blob_id')
    if isinstance(thumbnail, list) and thumbnail and isinstance(thumbnail[0], list):
        thumbnail = thumbnail[0]
    return AssetMetadata(
        asset_id=object_id,
        owner=fields.get('owner') or '',
        blob_id=blob_id,
        name=_text(fields.get('name')),
        content_type=_text(fields.get('content_type')) or DEFAULT_CONTENT_TYPE,
        size=int(fields.get('size') or 0),
        created_at=created_at,
        updated_at=int(fields.get('updated_at') or 0) * 1000 or created_at,
        url=url_for(blob_id),
        policy_id=_optional_id(fields.get('policy_id')),
        tags=tuple(_text(tag) for tag in fields.get('tags') or []),
        description=_text(fields.get('description')),
        category=_text(fields.get('category')),
        width=_optional_int(fields.get('width')),
        height=_optional_int(fields.get('height')),
        thumbnail_blob_id=_text(thumbnail) or None,
        folder_id=_optional_id(fields.get('folder_id')),
    )


def parse_folder(object_id: str, fields: Dict[str, Any]) -> FolderMetadata:
    return FolderMetadata(
        folder_id=object_id,
        owner=fields.get('owner') or '',
        name=_text(fields.get('name')),
        description=_text(fields.get('description')),
        parent_folder_id=_optional_id(fields.get('parent_folder_id')),
        asset_count=int(fields.get('asset_count') or 0),
        created_at=int(fields.get('created_at') or 0),
        updated_at=int(fields.get('updated_at') or 0),
    )


def parse_bucket(object_id: str, fields: Dict[str, Any]) -> BucketMetadata:
    return BucketMetadata(
        bucket_id=object_id,
        owner=fields.get('owner') or '',
        name=_text(fields.get('name')),
        description=_text(fields.get('description')),
        tags=tuple(_text(tag) for tag in fields.get('tags') or []),
        category=_text(fields.get('category')),
        collaborator_count=len(fields.get('collaborators') or []),
        asset_count=len(fields.get('asset_ids') or []),
        total_size=int(fields.get('total_size') or 0),
        storage_limit=_optional_int(fields.get('storage_limit')),
        created_at=int(fields.get('created_at') or 0),
        updated_at=int(fields.get('updated_at') or 0),
    )


def _permission_flags(fields: Dict[str, Any]) -> Dict[str, bool]:
    permission = fields.get('permission') or {}
    permission = permission.get('fields', permission)
    return {
        'can_read': bool(permission.get('can_read')),
        'can_write': bool(permission.get('can_write')),
        'can_admin': bool(permission.get('can_admin')),
    }


def parse_grant(object_id: str, fields: Dict[str, Any]) -> AccessGrant:
    return AccessGrant(
        grant_id=object_id,
        asset_id=_optional_id(fields.get('asset_id')) or '',
        granted_by=fields.get('granted_by') or '',
        granted_to=fields.get('granted_to') or '',
        expires_at=_optional_int(fields.get('expires_at')),
        created_at=int(fields.get('created_at') or 0),
        **_permission_flags(fields),
    )


def parse_link(object_id: str, fields: Dict[str, Any]) -> ShareableLink:
    return ShareableLink(
        link_id=object_id,
        asset_id=_optional_id(fields.get('asset_id')) or '',
        creator=fields.get('creator') or '',
        share_token=_text(fields.get('share_token')),
        expires_at=_optional_int(fields.get('expires_at')),
        is_active=bool(fields.get('is_active')),
        created_at=int(fields.get('created_at') or 0),
        last_accessed_at=_optional_int(fields.get('last_accessed_at')),
        access_count=int(fields.get('access_count') or 0),
        **_permission_flags(fields),
    )


def parse_policy(object_id: str, fields: Dict[str, Any]) -> PolicyData:
    password_hash = fields.get('password_hash') or ''
    if isinstance(password_hash, list):
        password_hash = bytes(password_hash).hex()
    return PolicyData(
        policy_id=object_id,
        asset_id=_optional_id(fields.get('asset_id')) or '',
        owner=fields.get('owner') or '',
        policy_type=int(fields.get('policy_type') or 0),
        allowed_addresses=tuple(fields.get('allowed_addresses') or []),
        expiration=int(fields.get('expiration') or 0) * 1000,
        password_hash=password_hash,
        created_at=int(fields.get('created_at') or 0) * 1000,
    )


class LedgerService:
    """Builds and submits contract calls and reads contract objects."""

    def __init__(
        self,
        ledger: LedgerClient,
        reconciler: TransactionReconciler,
        credentials: CredentialService,
        package_id: str,
        api_key: str,
        url_for: Callable[[str], str],
    ):
        """
        Initialize ledger service.

        Args:
            ledger: Ledger client for queries
            reconciler: Submits mutations and normalizes results
            credentials: Resolves credential context for sponsored calls
            package_id: Deployed contract package
            api_key: Credential presented by this SDK instance
            url_for: Maps a blob id to its public URL
        """
        self.ledger = ledger
        self.reconciler = reconciler
        self.credentials = credentials
        self.package_id = package_id
        self._api_key = api_key
        self._url_for = url_for

    def struct_type(self, suffix: str) -> str:
        return f"{self.package_id}{suffix}"

    async def build_call(
        self,
        auth: Authorization,
        module: str,
        function: str,
        arguments: Sequence[Argument],
        permission: Optional[int] = None,
    ) -> MoveCall:
        """
        Build the entry-point call matching the authorization variant.

        Sponsored calls target '<function>_with_api_key' and carry the
        credential object, its hash and the developer account. Self-pay calls
        never reference a credential. Both end with the system clock.
        """
        args = list(arguments)
        if isinstance(auth, SponsoredAuthorization):
            context = await self.credentials.resolve_context(self._api_key, permission)
            target = f"{self.package_id}::{module}::{function}_with_api_key"
            args += [
                obj(context.record.key_id),
                pure_bytes(bytes.fromhex(context.key_hash)),
                obj(context.developer_account_id),
            ]
        else:
            target = f"{self.package_id}::{module}::{function}"
        args.append(clock())
        return MoveCall(target=target, arguments=tuple(args))

    async def _mutate(
        self,
        auth: Authorization,
        module: str,
        function: str,
        arguments: Sequence[Argument],
        permission: Optional[int] = PERMISSION_UPLOAD,
        created_type: Optional[str] = None,
    ) -> TransactionOutcome:
        call = await self.build_call(auth, module, function, arguments, permission)
        logger.debug(f"Submitting {call.target} [strategy={auth.strategy.value}]")
        return await self.reconciler.execute(
            call,
            auth,
            require_created=created_type is not None,
            object_type=created_type,
        )

    async def _query(self, description: str, coro):
        try:
            return await coro
        except LedgerRpcError as e:
            raise BlockchainError(f"Failed to {description}: {e.rpc_message}", cause=e) from e

    # Assets

    async def register_asset(
        self,
        auth: Authorization,
        blob_id: str,
        name: str,
        content_type: str,
        size: int,
        options: UploadOptions,
    ) -> TransactionOutcome:
        """Register a new asset. The owner is whoever signs the transaction."""
        arguments = [
            pure_bytes(blob_id),
            pure_bytes(name),
            pure_bytes(content_type),
            pure_u64(size),
            pure_byte_vectors(options.tags),
            pure_bytes(options.description),
            pure_bytes(options.category),
            pure_option('u64', options.width or None),
            pure_option('u64', options.height or None),
            pure_option('vector<u8>', options.thumbnail_blob_id),
            pure_option('address', options.folder_id),
        ]
        return await self._mutate(auth, 'asset', 'upload_asset', arguments, PERMISSION_UPLOAD, ASSET_TYPE)

    async def delete_asset(self, auth: Authorization, asset_id: str) -> TransactionOutcome:
        return await self._mutate(auth, 'asset', 'delete_asset', [obj(asset_id)], PERMISSION_DELETE)

    async def rename_asset(self, auth: Authorization, asset_id: str, new_name: str) -> TransactionOutcome:
        return await self._mutate(auth, 'asset', 'rename_asset', [obj(asset_id), pure_bytes(new_name)])

    async def copy_asset(self, auth: Authorization, asset_id: str, new_name: str) -> TransactionOutcome:
        return await self._mutate(
            auth, 'asset', 'copy_asset', [obj(asset_id), pure_bytes(new_name)], created_type=ASSET_TYPE
        )

    async def update_blob_id(self, auth: Authorization, asset_id: str, blob_id: str) -> TransactionOutcome:
        """Point an asset at a different blob (used to swap in ciphertext)."""
        return await self._mutate(auth, 'asset', 'update_blob_id', [obj(asset_id), pure_bytes(blob_id)])

    async def move_asset_to_folder(
        self, auth: Authorization, asset_id: str, folder_id: Optional[str]
    ) -> TransactionOutcome:
        return await self._mutate(
            auth, 'asset', 'move_asset_to_folder', [obj(asset_id), pure_option('address', folder_id)]
        )

    async def get_asset(self, asset_id: str) -> Optional[AssetMetadata]:
        data = await self._query(f"get asset {asset_id}", self.ledger.get_object(asset_id))
        fields = _content_fields(data, ASSET_TYPE)
        if fields is None:
            return None
        return parse_asset(asset_id, fields, self._url_for)

    async def list_assets(
        self, owner: str, cursor: Optional[str] = None, limit: Optional[int] = None
    ) -> Page[AssetMetadata]:
        page = await self._query(
            'list assets',
            self.ledger.get_owned_objects(owner, self.struct_type(ASSET_TYPE), cursor, limit),
        )
        assets = []
        for item in page.get('data') or []:
            data = item.get('data') or {}
            fields = _content_fields(data, ASSET_TYPE)
            if fields is not None and data.get('objectId'):
                assets.append(parse_asset(data['objectId'], fields, self._url_for))
        return Page(
            items=tuple(assets),
            next_cursor=page.get('nextCursor'),
            has_next_page=bool(page.get('hasNextPage')),
        )

    # Folders

    async def create_folder(
        self, auth: Authorization, name: str, description: str, parent_id: Optional[str]
    ) -> TransactionOutcome:
        arguments = [pure_bytes(name), pure_bytes(description), pure_option('address', parent_id)]
        return await self._mutate(auth, 'folder', 'create_folder', arguments, created_type=FOLDER_TYPE)

    async def delete_folder(self, auth: Authorization, folder_id: str) -> TransactionOutcome:
        return await self._mutate(auth, 'folder', 'delete_folder', [obj(folder_id)], PERMISSION_DELETE)

    async def get_folder(self, folder_id: str) -> Optional[FolderMetadata]:
        data = await self._query(f"get folder {folder_id}", self.ledger.get_object(folder_id))
        fields = _content_fields(data, FOLDER_TYPE)
        return parse_folder(folder_id, fields) if fields is not None else None

    async def list_folders(self, owner: str) -> List[FolderMetadata]:
        return await self._list_owned(owner, FOLDER_TYPE, parse_folder, 'list folders')

    # Policies

    async def create_policy(
        self, auth: Authorization, asset_id: str, policy: EncryptionPolicy
    ) -> TransactionOutcome:
        password_hash = policy_password_hash(policy)
        arguments = [
            obj(asset_id),
            pure_u8(policy_type_code(policy)),
            pure_addresses(policy.addresses),
            pure_u64(policy_expiration_seconds(policy)),
            pure_bytes(bytes.fromhex(password_hash) if password_hash else b''),
        ]
        return await self._mutate(
            auth, 'policy', 'create_encryption_policy', arguments, created_type=POLICY_TYPE
        )

    async def apply_policy(self, auth: Authorization, asset_id: str, policy_id: str) -> TransactionOutcome:
        return await self._mutate(auth, 'policy', 'apply_policy_to_asset', [obj(asset_id), obj(policy_id)])

    async def get_policy(self, policy_id: str) -> Optional[PolicyData]:
        data = await self._query(f"get policy {policy_id}", self.ledger.get_object(policy_id))
        fields = _content_fields(data, POLICY_TYPE)
        return parse_policy(policy_id, fields) if fields is not None else None

    # Sharing

    async def share_asset(
        self, auth: Authorization, asset_id: str, granted_to: str, options: ShareOptions
    ) -> TransactionOutcome:
        arguments = [
            pure_address(asset_id),
            pure_address(granted_to),
            pure_bool(options.can_read),
            pure_bool(options.can_write),
            pure_bool(options.can_admin),
            pure_option('u64', options.expires_at or None),
            pure_option('vector<u8>', _hash_bytes(options.password)),
        ]
        return await self._mutate(auth, 'share', 'share_asset', arguments, created_type=GRANT_TYPE)

    async def create_shareable_link(
        self, auth: Authorization, asset_id: str, share_token: str, options: ShareOptions
    ) -> TransactionOutcome:
        arguments = [
            pure_address(asset_id),
            pure_bytes(share_token),
            pure_bool(options.can_read),
            pure_bool(options.can_write),
            pure_bool(options.can_admin),
            pure_option('u64', options.expires_at or None),
            pure_option('vector<u8>', _hash_bytes(options.password)),
        ]
        return await self._mutate(auth, 'share', 'create_shareable_link', arguments, created_type=LINK_TYPE)

    async def revoke_share(self, auth: Authorization, grant_id: str) -> TransactionOutcome:
        return await self._mutate(auth, 'share', 'revoke_share', [obj(grant_id)])

    async def deactivate_shareable_link(self, auth: Authorization, link_id: str) -> TransactionOutcome:
        return await self._mutate(auth, 'share', 'deactivate_shareable_link', [obj(link_id)])

    async def track_link_access(self, auth: Authorization, link_id: str) -> TransactionOutcome:
        return await self._mutate(auth, 'share', 'track_link_access', [obj(link_id)], permission=None)

    async def get_access_grant(self, grant_id: str) -> Optional[AccessGrant]:
        data = await self._query(f"get access grant {grant_id}", self.ledger.get_object(grant_id))
        fields = _content_fields(data, GRANT_TYPE)
        return parse_grant(grant_id, fields) if fields is not None else None

    async def get_shareable_link(self, link_id: str) -> Optional[ShareableLink]:
        data = await self._query(f"get shareable link {link_id}", self.ledger.get_object(link_id))
        fields = _content_fields(data, LINK_TYPE)
        return parse_link(link_id, fields) if fields is not None else None

    async def list_access_grants(self, owner: str) -> List[AccessGrant]:
        return await self._list_owned(owner, GRANT_TYPE, parse_grant, 'list access grants')

    async def list_shareable_links(self, owner: str) -> List[ShareableLink]:
        return await self._list_owned(owner, LINK_TYPE, parse_link, 'list shareable links')

    # Buckets

    async def create_bucket(self, auth: Authorization, name: str, options: BucketOptions) -> TransactionOutcome:
        arguments = [
            pure_bytes(name),
            pure_bytes(options.description),
            pure_byte_vectors(options.tags),
            pure_bytes(options.category),
            pure_u64(options.storage_limit or 0),
        ]
        return await self._mutate(auth, 'bucket', 'create_bucket', arguments, created_type=BUCKET_TYPE)

    async def add_collaborator(
        self, auth: Authorization, bucket_id: str, collaborator: str, permissions: SharePermissions
    ) -> TransactionOutcome:
        arguments = [
            obj(bucket_id),
            pure_address(collaborator),
            pure_bool(permissions.can_read),
            pure_bool(permissions.can_write),
            pure_bool(permissions.can_admin),
        ]
        return await self._mutate(auth, 'bucket', 'add_collaborator', arguments)

    async def remove_collaborator(
        self, auth: Authorization, bucket_id: str, collaborator: str
    ) -> TransactionOutcome:
        return await self._mutate(
            auth, 'bucket', 'remove_collaborator', [obj(bucket_id), pure_address(collaborator)]
        )

    async def update_collaborator_permissions(
        self, auth: Authorization, bucket_id: str, collaborator: str, permissions: SharePermissions
    ) -> TransactionOutcome:
        arguments = [
            obj(bucket_id),
            pure_address(collaborator),
            pure_bool(permissions.can_read),
            pure_bool(permissions.can_write),
            pure_bool(permissions.can_admin),
        ]
        return await self._mutate(auth, 'bucket', 'update_collaborator_permissions', arguments)

    async def add_asset_to_bucket(self, auth: Authorization, bucket_id: str, asset_id: str) -> TransactionOutcome:
        return await self._mutate(auth, 'bucket', 'add_asset_to_bucket', [obj(bucket_id), obj(asset_id)])

    async def remove_asset_from_bucket(
        self, auth: Authorization, bucket_id: str, asset_id: str
    ) -> TransactionOutcome:
        return await self._mutate(auth, 'bucket', 'remove_asset_from_bucket', [obj(bucket_id), obj(asset_id)])

    async def get_bucket(self, bucket_id: str) -> Optional[BucketMetadata]:
        data = await self._query(f"get bucket {bucket_id}", self.ledger.get_object(bucket_id))
        fields = _content_fields(data, BUCKET_TYPE)
        return parse_bucket(bucket_id, fields) if fields is not None else None

    async def list_buckets(self, owner: str) -> List[BucketMetadata]:
        """
        List buckets owned by an address.

        Buckets are shared objects, so they are found through their creation
        events rather than by ownership.
        """
        events = await self._query(
            'list buckets',
            self.ledger.query_events(
                self.struct_type('::events::BucketCreatedEvent'),
                limit=BUCKET_EVENT_SCAN_LIMIT,
                descending=True,
            ),
        )
        bucket_ids = [
            (event.get('parsedJson') or {}).get('bucket_id')
            for event in events.get('data') or []
            if (event.get('parsedJson') or {}).get('owner') == owner
        ]
        bucket_ids = [bucket_id for bucket_id in bucket_ids if bucket_id]
        if not bucket_ids:
            return []

        objects = await self._query('list buckets', self.ledger.multi_get_objects(bucket_ids))
        buckets = []
        for bucket_id, data in zip(bucket_ids, objects):
            fields = _content_fields(data, BUCKET_TYPE)
            if fields is not None:
                buckets.append(parse_bucket(bucket_id, fields))
        return buckets

    async def _list_owned(self, owner: str, type_suffix: str, parse, description: str) -> list:
        page = await self._query(
            description,
            self.ledger.get_owned_objects(owner, self.struct_type(type_suffix)),
        )
        records = []
        for item in page.get('data') or []:
            data = item.get('data') or {}
            fields = _content_fields(data, type_suffix)
            if fields is not None and data.get('objectId'):
                records.append(parse(data['objectId'], fields))
        return records
