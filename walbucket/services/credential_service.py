"""
API credential validation against the ledger.

A presented credential is identified on-ledger by its salted SHA-256 hash.
When the credential's object id is not known, the most recent credential
creation events are scanned and each candidate object's stored hash is
compared. Validated records are cached by fingerprint.
"""

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from common.constants import (
    ACCOUNT_EVENT_SCAN_LIMIT,
    CREDENTIAL_EVENT_SCAN_LIMIT,
    PERMISSION_NAMES,
)
from common.logging_config import get_logger
from common.ttl_cache import TTLCache
from walbucket.clients.ledger_client import LedgerClient, LedgerRpcError
from walbucket.exceptions import BlockchainError, ErrorCode, ValidationError
from walbucket.types import CredentialRecord
from walbucket.utils import sha256_hex

logger = get_logger(__name__)


@dataclass(frozen=True)
class CredentialContext:
    """Everything a credentialed ledger entry point needs."""
    record: CredentialRecord
    key_hash: str
    developer_account_id: str


def bytes_field_to_hex(value: Any) -> str:
    """Ledger vector<u8> fields arrive as int lists; some nodes return hex strings."""
    if isinstance(value, list):
        return bytes(value).hex()
    if isinstance(value, str):
        return value[2:] if value.startswith('0x') else value
    return ''


def parse_credential(key_id: str, fields: Dict[str, Any]) -> CredentialRecord:
    return CredentialRecord(
        key_id=key_id,
        developer_address=fields.get('developer_address') or '',
        name=fields.get('name') or '',
        permissions=int(fields.get('permissions') or 0),
        rate_limit=int(fields.get('rate_limit') or 0),
        created_at=int(fields.get('created_at') or 0),
        expires_at=int(fields.get('expires_at') or 0),
        is_active=bool(fields.get('is_active')),
        usage_count=int(fields.get('usage_count') or 0),
        last_used_at=int(fields.get('last_used_at') or 0),
    )


def _fields(obj: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not obj or not obj.get('content'):
        return None
    return obj['content'].get('fields') or {}


class CredentialService:
    """Validates API credentials and resolves the developer account they belong to."""

    def __init__(
        self,
        ledger: LedgerClient,
        package_id: str,
        cache_ttl: float,
        cache_max_entries: int,
        salt: str = '',
        now: Callable[[], float] = time.time,
        cache_clock: Optional[Callable[[], float]] = None,
    ):
        """
        Initialize credential service.

        Args:
            ledger: Ledger client
            package_id: Deployed package whose events and objects are queried
            cache_ttl: Lifetime of cached records in seconds
            cache_max_entries: Capacity of each cache
            salt: Prefix mixed into the credential hash
            now: Wall clock in seconds, used for expiry checks
            cache_clock: Monotonic clock for the caches
        """
        self.ledger = ledger
        self.package_id = package_id
        self.salt = salt
        self._now = now
        self._records: TTLCache[str, CredentialRecord] = TTLCache(
            cache_ttl, cache_max_entries, clock=cache_clock, name='credentials'
        )
        self._accounts: TTLCache[str, str] = TTLCache(
            cache_ttl, cache_max_entries, clock=cache_clock, name='developer-accounts'
        )

    def hash_credential(self, api_key: str) -> str:
        return sha256_hex(self.salt + api_key)

    def _check_usable(self, record: CredentialRecord) -> None:
        if not record.is_active:
            raise ValidationError('API key is not active', code=ErrorCode.API_KEY_INACTIVE)
        if record.is_expired(self._now()):
            raise ValidationError('API key has expired', code=ErrorCode.API_KEY_EXPIRED)

    async def validate(self, api_key: str, key_id: Optional[str] = None) -> CredentialRecord:
        """
        Resolve a presented credential to its validated ledger record.

        Args:
            api_key: Presented secret
            key_id: Ledger id of the credential object, when already known

        Returns:
            Validated credential record

        Raises:
            ValidationError: If not found, expired or inactive
            BlockchainError: If the ledger could not be queried
        """
        key_hash = self.hash_credential(api_key)

        cached = self._records.get(key_hash)
        if cached is not None:
            # Expiry is re-checked because a record may expire while cached.
            self._check_usable(cached)
            logger.debug(f"Credential cache hit [fingerprint={key_hash[:8]}]")
            return cached

        try:
            if key_id is None:
                key_id = await self._find_credential_id(key_hash)
            if key_id is None:
                raise ValidationError('API key not found', code=ErrorCode.INVALID_API_KEY)

            fields = _fields(await self.ledger.get_object(key_id))
        except LedgerRpcError as e:
            raise BlockchainError(f"Failed to validate API key: {e.rpc_message}", cause=e) from e

        if fields is None:
            raise ValidationError('API key object not found', code=ErrorCode.INVALID_API_KEY)
        if bytes_field_to_hex(fields.get('api_key_hash')) != key_hash:
            raise ValidationError('API key not found', code=ErrorCode.INVALID_API_KEY)

        record = parse_credential(key_id, fields)
        self._check_usable(record)

        self._records.set(key_hash, record)
        logger.info(f"Credential validated [key_id={key_id}, fingerprint={key_hash[:8]}]")
        return record

    async def _find_credential_id(self, key_hash: str) -> Optional[str]:
        """
        Scan recent credential creation events for an object whose stored hash matches.

        Returns the first active match. An inactive match is returned only if
        no active one exists, so the caller reports it as inactive.
        """
        events = await self.ledger.query_events(
            f"{self.package_id}::events::ApiKeyCreated",
            limit=CREDENTIAL_EVENT_SCAN_LIMIT,
            descending=True,
        )

        inactive_match = None
        for event in events.get('data') or []:
            candidate_id = (event.get('parsedJson') or {}).get('api_key_id')
            if not candidate_id:
                continue
            try:
                fields = _fields(await self.ledger.get_object(candidate_id))
            except LedgerRpcError as e:
                logger.debug(f"Skipping unreadable credential object {candidate_id}: {e}")
                continue
            if fields is None or bytes_field_to_hex(fields.get('api_key_hash')) != key_hash:
                continue
            if fields.get('is_active'):
                return candidate_id
            inactive_match = inactive_match or candidate_id

        return inactive_match

    @staticmethod
    def require_permission(record: CredentialRecord, permission: int) -> None:
        """
        Raises:
            ValidationError: If the record lacks the permission bit
        """
        if not record.has_permission(permission):
            name = PERMISSION_NAMES.get(permission, str(permission))
            raise ValidationError(
                f"API key does not have {name} permission",
                code=ErrorCode.PERMISSION_DENIED,
            )

    async def get_developer_account_id(self, developer_address: str) -> Optional[str]:
        """Find the developer account object created for an address."""
        cached = self._accounts.get(developer_address)
        if cached is not None:
            return cached

        try:
            events = await self.ledger.query_events(
                f"{self.package_id}::events::DeveloperAccountCreated",
                limit=ACCOUNT_EVENT_SCAN_LIMIT,
                descending=True,
            )
        except LedgerRpcError as e:
            raise BlockchainError(f"Failed to query developer accounts: {e.rpc_message}", cause=e) from e

        for event in events.get('data') or []:
            parsed = event.get('parsedJson') or {}
            if parsed.get('owner') == developer_address and parsed.get('account_id'):
                self._accounts.set(developer_address, parsed['account_id'])
                return parsed['account_id']
        return None

    async def resolve_context(self, api_key: str, permission: Optional[int] = None) -> CredentialContext:
        """
        Validate a credential and gather the objects credentialed entry points take.

        The credential and developer account objects are fetched concurrently
        to confirm both still exist before a mutation is built.

        Raises:
            ValidationError: If the credential is unusable, lacks permission,
                or has no developer account
            BlockchainError: If a prerequisite object is missing
        """
        record = await self.validate(api_key)
        if permission is not None:
            self.require_permission(record, permission)

        account_id = await self.get_developer_account_id(record.developer_address)
        if not account_id:
            raise ValidationError('Developer account not found for API key')

        try:
            key_obj, account_obj = await self.ledger.multi_get_objects([record.key_id, account_id])
        except LedgerRpcError as e:
            raise BlockchainError(f"Failed to load credential objects: {e.rpc_message}", cause=e) from e
        if key_obj is None or account_obj is None:
            raise BlockchainError('Required credential objects not found')

        return CredentialContext(
            record=record,
            key_hash=self.hash_credential(api_key),
            developer_account_id=account_id,
        )

    def clear_cache(self) -> None:
        self._records.clear()
        self._accounts.clear()
