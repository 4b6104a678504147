"""In-memory test doubles for the ledger, the blob store, a wallet and a cipher."""

import base64
import itertools
import json
import time
from typing import Any, Dict, List, Optional

import httpx

from walbucket.signer import verify_transaction_signature
from walbucket.transactions import MoveCall
from walbucket.utils import sha256_hex

PACKAGE_ID = '0x481a774f5cf0a3437a6f9623604874681943950bb82c146051afdec74f0c9b26'

API_KEY = 'wb_live_test_key_0001'
SPONSOR_KEY = '11' * 32
USER_ADDRESS = '0x' + 'ab' * 32

OBJECT_TYPES = {
    'asset': 'Asset',
    'folder': 'Folder',
    'policy': 'EncryptionPolicy',
    'grant': 'AccessGrant',
    'link': 'ShareableLink',
    'bucket': 'Bucket',
}


class MoveAbort(Exception):
    """Entry point aborted; surfaces as a failed transaction."""


def _text(value: Any) -> str:
    if isinstance(value, list):
        return bytes(value).decode('utf-8')
    return value


def _option(value: list) -> Optional[Any]:
    return value[0] if value else None


def _rpc_result(request_id, result) -> httpx.Response:
    return httpx.Response(200, json={'jsonrpc': '2.0', 'id': request_id, 'result': result})


def _rpc_error(request_id, code, message) -> httpx.Response:
    return httpx.Response(200, json={'jsonrpc': '2.0', 'id': request_id, 'error': {'code': code, 'message': message}})


class FakeLedger:
    """
    Minimal Sui full node: objects with owners, an event log, and the asset
    contract's entry points. The sender of every transaction is derived from
    its signature (or from the wallet that submitted it), never from arguments.
    """

    def __init__(self, package_id: str = PACKAGE_ID):
        self.package_id = package_id
        self.objects: Dict[str, Dict[str, Any]] = {}
        self.events: List[Dict[str, Any]] = []
        self.transactions: Dict[str, Dict[str, Any]] = {}
        self.executed: List[Dict[str, Any]] = []
        self.rpc_log: List[str] = []
        self.now_seconds = int(time.time())
        self.omit_effects_created = False
        self.unindexed_polls = 0
        self._ids = itertools.count(0x1000)
        self._digests = itertools.count(1)

    # Seeding

    def new_id(self) -> str:
        return f"0x{next(self._ids):064x}"

    def add_object(self, kind: str, owner: str, fields: Dict[str, Any], object_id: Optional[str] = None) -> str:
        object_id = object_id or self.new_id()
        module = 'share' if kind in ('grant', 'link') else kind
        struct = OBJECT_TYPES.get(kind, kind)
        self.objects[object_id] = {
            'type': f"{self.package_id}::{module}::{struct}",
            'owner': owner,
            'fields': fields,
        }
        return object_id

    def add_credential(
        self,
        api_key: str,
        developer_address: str,
        permissions: int = 31,
        expires_at: int = 0,
        is_active: bool = True,
        salt: str = '',
    ) -> str:
        key_id = self.add_object('api_key', developer_address, {
            'developer_address': developer_address,
            'name': 'test key',
            'api_key_hash': list(bytes.fromhex(sha256_hex(salt + api_key))),
            'permissions': str(permissions),
            'rate_limit': '1000',
            'created_at': str(self.now_seconds - 60),
            'expires_at': str(expires_at),
            'is_active': is_active,
            'usage_count': '0',
            'last_used_at': '0',
        })
        self.objects[key_id]['type'] = f"{self.package_id}::api_key::ApiKey"
        self.emit('ApiKeyCreated', {'api_key_id': key_id, 'developer': developer_address})
        return key_id

    def add_developer_account(self, owner: str) -> str:
        account_id = self.add_object('developer_account', owner, {'owner': owner})
        self.objects[account_id]['type'] = f"{self.package_id}::developer::DeveloperAccount"
        self.emit('DeveloperAccountCreated', {'account_id': account_id, 'owner': owner})
        return account_id

    def emit(self, name: str, parsed: Dict[str, Any]) -> None:
        self.events.append({'type': f"{self.package_id}::events::{name}", 'parsedJson': parsed})

    def fields(self, object_id: str) -> Dict[str, Any]:
        return self.objects[object_id]['fields']

    def calls_to(self, function: str) -> List[Dict[str, Any]]:
        return [call for call in self.executed if call['function'] == function]

    # JSON-RPC surface

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        method, params, request_id = body['method'], body['params'], body['id']
        self.rpc_log.append(method)

        if method == 'sui_getObject':
            return _rpc_result(request_id, self._get_object(params[0]))
        if method == 'suix_getOwnedObjects':
            return _rpc_result(request_id, self._owned_objects(*params))
        if method == 'suix_queryEvents':
            return _rpc_result(request_id, self._query_events(*params))
        if method == 'unsafe_moveCall':
            sender, package, module, function, _, arguments = params[:6]
            tx = {'sender': sender, 'target': f"{package}::{module}::{function}", 'arguments': arguments}
            return _rpc_result(request_id, {'txBytes': base64.b64encode(json.dumps(tx).encode()).decode()})
        if method == 'sui_executeTransactionBlock':
            tx_bytes = base64.b64decode(params[0])
            try:
                signer = verify_transaction_signature(tx_bytes, params[1][0])
            except ValueError as e:
                return _rpc_error(request_id, -32002, str(e))
            tx = json.loads(tx_bytes)
            if tx['sender'] != signer:
                return _rpc_error(request_id, -32002, 'Signer does not match transaction sender')
            return _rpc_result(request_id, self.apply(signer, tx['target'], tx['arguments']))
        if method == 'sui_getTransactionBlock':
            if self.unindexed_polls > 0:
                self.unindexed_polls -= 1
                return _rpc_error(request_id, -32602, 'Could not find the referenced transaction')
            if params[0] not in self.transactions:
                return _rpc_error(request_id, -32602, 'Could not find the referenced transaction')
            return _rpc_result(request_id, self.transactions[params[0]])
        return _rpc_error(request_id, -32601, f"Method not found: {method}")

    def _object_data(self, object_id: str) -> Dict[str, Any]:
        obj = self.objects[object_id]
        owner = {'Shared': {}} if obj['owner'] == 'shared' else {'AddressOwner': obj['owner']}
        return {
            'objectId': object_id,
            'type': obj['type'],
            'owner': owner,
            'content': {'dataType': 'moveObject', 'type': obj['type'], 'fields': json.loads(json.dumps(obj['fields']))},
        }

    def _get_object(self, object_id: str) -> Dict[str, Any]:
        if object_id not in self.objects:
            return {'error': {'code': 'notExists', 'object_id': object_id}}
        return {'data': self._object_data(object_id)}

    def _owned_objects(self, owner, query, cursor=None, limit=None) -> Dict[str, Any]:
        struct_type = ((query or {}).get('filter') or {}).get('StructType')
        matches = [
            object_id for object_id, obj in self.objects.items()
            if obj['owner'] == owner and (struct_type is None or obj['type'] == struct_type)
        ]
        start = int(cursor) if cursor else 0
        limit = limit or 50
        page = matches[start:start + limit]
        has_next = start + limit < len(matches)
        return {
            'data': [{'data': self._object_data(object_id)} for object_id in page],
            'nextCursor': str(start + limit) if has_next else None,
            'hasNextPage': has_next,
        }

    def _query_events(self, query, cursor=None, limit=None, descending=False) -> Dict[str, Any]:
        events = [event for event in self.events if event['type'] == query.get('MoveEventType')]
        if descending:
            events = list(reversed(events))
        return {'data': events[:limit or 50], 'nextCursor': None, 'hasNextPage': False}

    # Transaction execution

    def apply(self, sender: str, target: str, arguments: list) -> Dict[str, Any]:
        """Execute one entry point and record the full transaction response."""
        digest = f"digest{next(self._digests)}"
        package, module, function = target.split('::')
        credentialed = function.endswith('_with_api_key')
        base = function[:-len('_with_api_key')] if credentialed else function
        self.executed.append({
            'sender': sender,
            'target': target,
            'function': base,
            'credentialed': credentialed,
            'arguments': arguments,
        })

        created: List[str] = []
        status = {'status': 'success'}
        try:
            if package != self.package_id:
                raise MoveAbort('E_UNKNOWN_PACKAGE')
            if arguments[-1] != '0x6':
                raise MoveAbort('E_MISSING_CLOCK')
            args = arguments[:-1]
            if credentialed:
                args = self._check_credential(args)
            entry = getattr(self, f"_{module}_{base}", None)
            if entry is None:
                raise MoveAbort(f"E_UNKNOWN_FUNCTION {target}")
            result = entry(sender, *args)
            if result:
                created.append(result)
        except MoveAbort as e:
            status = {'status': 'failure', 'error': f"MoveAbort in {module}::{base}: {e}"}
            created = []

        response = {
            'digest': digest,
            'effects': {
                'transactionDigest': digest,
                'status': status,
                'created': [] if self.omit_effects_created else [
                    {'owner': {'AddressOwner': sender}, 'reference': {'objectId': object_id, 'version': 1, 'digest': 'x'}}
                    for object_id in created
                ],
            },
            'objectChanges': [
                {'type': 'created', 'sender': sender, 'objectId': object_id, 'objectType': self.objects[object_id]['type']}
                for object_id in created
            ],
            'events': [],
        }
        self.transactions[digest] = response
        return response

    def _check_credential(self, args: list) -> list:
        key_id, key_hash, account_id = args[-3:]
        key = self.objects.get(key_id)
        if key is None or account_id not in self.objects:
            raise MoveAbort('E_INVALID_API_KEY')
        if key['fields']['api_key_hash'] != key_hash:
            raise MoveAbort('E_INVALID_API_KEY')
        if not key['fields']['is_active']:
            raise MoveAbort('E_API_KEY_INACTIVE')
        return args[:-3]

    def _owned(self, object_id: str, sender: str, owner_field: str = 'owner') -> Dict[str, Any]:
        obj = self.objects.get(object_id)
        if obj is None:
            raise MoveAbort('E_ASSET_NOT_FOUND')
        if obj['fields'].get(owner_field) != sender:
            raise MoveAbort('E_NOT_OWNER')
        return obj['fields']

    def _adjust_folder(self, folder_id: Optional[str], delta: int) -> None:
        if folder_id:
            if folder_id not in self.objects:
                raise MoveAbort('E_FOLDER_NOT_FOUND')
            fields = self.fields(folder_id)
            fields['asset_count'] = str(int(fields['asset_count']) + delta)

    # asset module

    def _asset_upload_asset(self, sender, blob_id, name, content_type, size, tags, description,
                            category, width, height, thumbnail, folder):
        folder_id = _option(folder)
        self._adjust_folder(folder_id, 1)
        return self.add_object('asset', sender, {
            'owner': sender,
            'blob_id': blob_id,
            'name': _text(name),
            'content_type': _text(content_type),
            'size': size,
            'tags': [_text(tag) for tag in tags],
            'description': _text(description),
            'category': _text(category),
            'width': _option(width),
            'height': _option(height),
            'thumbnail_blob_id': _option(thumbnail),
            'folder_id': folder_id,
            'policy_id': None,
            'created_at': str(self.now_seconds),
            'updated_at': str(self.now_seconds),
        })

    def _asset_delete_asset(self, sender, asset_id):
        fields = self._owned(asset_id, sender)
        self._adjust_folder(fields.get('folder_id'), -1)
        del self.objects[asset_id]

    def _asset_rename_asset(self, sender, asset_id, name):
        fields = self._owned(asset_id, sender)
        fields['name'] = _text(name)
        fields['updated_at'] = str(self.now_seconds)

    def _asset_copy_asset(self, sender, asset_id, name):
        fields = dict(self._owned(asset_id, sender))
        fields.update({'name': _text(name), 'folder_id': None})
        return self.add_object('asset', sender, fields)

    def _asset_update_blob_id(self, sender, asset_id, blob_id):
        fields = self._owned(asset_id, sender)
        fields['blob_id'] = blob_id

    def _asset_move_asset_to_folder(self, sender, asset_id, folder):
        fields = self._owned(asset_id, sender)
        new_folder = _option(folder)
        self._adjust_folder(fields.get('folder_id'), -1)
        self._adjust_folder(new_folder, 1)
        fields['folder_id'] = new_folder

    # folder module

    def _folder_create_folder(self, sender, name, description, parent):
        return self.add_object('folder', sender, {
            'owner': sender,
            'name': _text(name),
            'description': _text(description),
            'parent_folder_id': _option(parent),
            'asset_count': '0',
            'created_at': str(self.now_seconds * 1000),
            'updated_at': str(self.now_seconds * 1000),
        })

    def _folder_delete_folder(self, sender, folder_id):
        fields = self._owned(folder_id, sender)
        if int(fields['asset_count']) != 0:
            raise MoveAbort('E_FOLDER_NOT_EMPTY')
        del self.objects[folder_id]

    # policy module

    def _policy_create_encryption_policy(self, sender, asset_id, policy_type, addresses, expiration, password_hash):
        self._owned(asset_id, sender)
        return self.add_object('policy', sender, {
            'asset_id': asset_id,
            'owner': sender,
            'policy_type': policy_type,
            'allowed_addresses': addresses,
            'expiration': expiration,
            'password_hash': password_hash,
            'created_at': str(self.now_seconds),
        })

    def _policy_apply_policy_to_asset(self, sender, asset_id, policy_id):
        fields = self._owned(asset_id, sender)
        if policy_id not in self.objects:
            raise MoveAbort('E_POLICY_NOT_FOUND')
        fields['policy_id'] = policy_id

    # share module

    def _permission(self, can_read, can_write, can_admin):
        return {'fields': {'can_read': can_read, 'can_write': can_write, 'can_admin': can_admin}}

    def _share_share_asset(self, sender, asset_id, granted_to, can_read, can_write, can_admin, expires_at, password):
        self._owned(asset_id, sender)
        return self.add_object('grant', sender, {
            'asset_id': asset_id,
            'granted_by': sender,
            'granted_to': granted_to,
            'permission': self._permission(can_read, can_write, can_admin),
            'expires_at': _option(expires_at),
            'password_hash': _option(password),
            'created_at': str(self.now_seconds * 1000),
        })

    def _share_create_shareable_link(self, sender, asset_id, token, can_read, can_write, can_admin, expires_at, password):
        self._owned(asset_id, sender)
        return self.add_object('link', sender, {
            'asset_id': asset_id,
            'creator': sender,
            'share_token': token,
            'permission': self._permission(can_read, can_write, can_admin),
            'expires_at': _option(expires_at),
            'password_hash': _option(password),
            'is_active': True,
            'created_at': str(self.now_seconds * 1000),
            'last_accessed_at': None,
            'access_count': '0',
        })

    def _share_revoke_share(self, sender, grant_id):
        self._owned(grant_id, sender, owner_field='granted_by')
        del self.objects[grant_id]

    def _share_deactivate_shareable_link(self, sender, link_id):
        fields = self._owned(link_id, sender, owner_field='creator')
        fields['is_active'] = False

    def _share_track_link_access(self, sender, link_id):
        if link_id not in self.objects:
            raise MoveAbort('E_LINK_NOT_FOUND')
        fields = self.fields(link_id)
        if not fields['is_active']:
            raise MoveAbort('E_ACCESS_DENIED')
        fields['access_count'] = str(int(fields['access_count']) + 1)
        fields['last_accessed_at'] = str(self.now_seconds * 1000)

    # bucket module

    def _bucket_create_bucket(self, sender, name, description, tags, category, storage_limit):
        bucket_id = self.add_object('bucket', 'shared', {
            'owner': sender,
            'name': _text(name),
            'description': _text(description),
            'tags': tags,
            'category': _text(category),
            'collaborators': [],
            'asset_ids': [],
            'total_size': '0',
            'storage_limit': storage_limit,
            'created_at': str(self.now_seconds * 1000),
            'updated_at': str(self.now_seconds * 1000),
        })
        self.emit('BucketCreatedEvent', {'bucket_id': bucket_id, 'owner': sender})
        return bucket_id

    def _bucket_fields(self, bucket_id, sender):
        if bucket_id not in self.objects:
            raise MoveAbort('E_BUCKET_NOT_FOUND')
        fields = self.fields(bucket_id)
        if fields['owner'] != sender:
            raise MoveAbort('E_NOT_OWNER')
        return fields

    def _bucket_add_collaborator(self, sender, bucket_id, collaborator, can_read, can_write, can_admin):
        fields = self._bucket_fields(bucket_id, sender)
        fields['collaborators'].append(
            {'fields': {'address': collaborator, 'can_read': can_read, 'can_write': can_write, 'can_admin': can_admin}}
        )

    def _bucket_remove_collaborator(self, sender, bucket_id, collaborator):
        fields = self._bucket_fields(bucket_id, sender)
        fields['collaborators'] = [c for c in fields['collaborators'] if c['fields']['address'] != collaborator]

    def _bucket_update_collaborator_permissions(self, sender, bucket_id, collaborator, can_read, can_write, can_admin):
        fields = self._bucket_fields(bucket_id, sender)
        for entry in fields['collaborators']:
            if entry['fields']['address'] == collaborator:
                entry['fields'].update({'can_read': can_read, 'can_write': can_write, 'can_admin': can_admin})
                return
        raise MoveAbort('E_NOT_COLLABORATOR')

    def _bucket_add_asset_to_bucket(self, sender, bucket_id, asset_id):
        fields = self._bucket_fields(bucket_id, sender)
        asset = self._owned(asset_id, sender)
        fields['asset_ids'].append(asset_id)
        fields['total_size'] = str(int(fields['total_size']) + int(asset['size']))

    def _bucket_remove_asset_from_bucket(self, sender, bucket_id, asset_id):
        fields = self._bucket_fields(bucket_id, sender)
        if asset_id not in fields['asset_ids']:
            raise MoveAbort('E_ASSET_NOT_IN_BUCKET')
        fields['asset_ids'].remove(asset_id)


class FakeWallet:
    """
    Self-pay submission function. Signs as its own address and answers with
    only a digest, the way wallets do before the transaction is indexed.
    """

    def __init__(self, ledger: FakeLedger, address: str, full_response: bool = False):
        self.ledger = ledger
        self.address = address
        self.full_response = full_response
        self.submitted: List[MoveCall] = []
        self.reject_with: Optional[Exception] = None

    async def __call__(self, call: MoveCall, options: Dict[str, bool]) -> Dict[str, Any]:
        self.submitted.append(call)
        if self.reject_with is not None:
            raise self.reject_with
        response = self.ledger.apply(self.address, call.target, call.json_arguments())
        if self.full_response:
            return response
        return {'digest': response['digest']}


class FakeBlobStore:
    """Walrus publisher and aggregator backed by a dict."""

    def __init__(self, delete_status: int = 405):
        self.blobs: Dict[str, bytes] = {}
        self.delete_status = delete_status
        self.deleted: List[str] = []
        self.upload_status: Optional[int] = None
        self.fail_uploads_after: Optional[int] = None
        self.uploads = 0
        self._ids = itertools.count(1)

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if request.method == 'PUT' and path == '/v1/blobs':
            self.uploads += 1
            if self.upload_status is not None:
                return httpx.Response(self.upload_status)
            if self.fail_uploads_after is not None and self.uploads > self.fail_uploads_after:
                return httpx.Response(503)
            blob_id = f"blob{next(self._ids):04d}"
            self.blobs[blob_id] = request.content
            return httpx.Response(200, json={
                'newlyCreated': {'blobObject': {'id': '0xabc', 'blobId': blob_id, 'storage': {'endEpoch': 10}}},
            })
        if request.method == 'GET' and path.startswith('/v1/blobs/'):
            blob_id = path.rsplit('/', 1)[-1]
            if blob_id not in self.blobs:
                return httpx.Response(404)
            return httpx.Response(200, content=self.blobs[blob_id])
        if request.method == 'DELETE' and path.startswith('/v1/blobs/'):
            blob_id = path.rsplit('/', 1)[-1]
            self.deleted.append(blob_id)
            if self.delete_status < 300:
                self.blobs.pop(blob_id, None)
            return httpx.Response(self.delete_status)
        return httpx.Response(404)


class FakeCipher:
    """
    Reversible stand-in for threshold encryption. Decryption requires the
    expected session key and an approval call for the same policy identity.
    """

    SESSION_KEY = 'session-key-ok'

    def __init__(self):
        self.encrypt_calls = 0
        self.fail_encrypt = False
        self.server_ids_seen = []

    async def encrypt(self, data: bytes, *, package_id: str, identity: bytes, threshold: int, server_ids) -> bytes:
        self.server_ids_seen.append(server_ids)
        self.encrypt_calls += 1
        if self.fail_encrypt:
            raise RuntimeError('key servers unavailable')
        return b'SEAL:' + identity.hex().encode() + b':' + bytes(b ^ 0x5A for b in data)

    async def decrypt(self, data: bytes, *, session_key: Any, approval: MoveCall, server_ids) -> bytes:
        self.server_ids_seen.append(server_ids)
        if session_key != self.SESSION_KEY:
            raise PermissionError('session key rejected')
        prefix, identity_hex, payload = data.split(b':', 2)
        if prefix != b'SEAL':
            raise ValueError('not a ciphertext')
        if not approval.target.endswith('::policy::seal_approve'):
            raise PermissionError('missing approval')
        if bytes(approval.arguments[0].value).hex() != identity_hex.decode():
            raise PermissionError('approval is for a different policy')
        return bytes(b ^ 0x5A for b in payload)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds
