"""Async JSON-RPC client for the Sui ledger."""

import asyncio
import base64
import itertools
import uuid
from typing import Any, Dict, List, Optional, Sequence

import httpx

from common.constants import WAIT_FOR_TRANSACTION_POLL_SECONDS, WAIT_FOR_TRANSACTION_TIMEOUT_SECONDS
from common.logging_config import get_logger
from walbucket.config import WalbucketConfig
from walbucket.exceptions import BlockchainError
from walbucket.signer import Ed25519Signer
from walbucket.transactions import MoveCall

logger = get_logger(__name__)

OBJECT_OPTIONS = {'showContent': True, 'showOwner': True, 'showType': True}

FULL_TRANSACTION_OPTIONS = {
    'showEffects': True,
    'showObjectChanges': True,
    'showEvents': True,
}


class LedgerRpcError(Exception):
    """JSON-RPC error object returned by the full node."""

    def __init__(self, method: str, code: Any, message: str):
        super().__init__(f"{method} failed: {message} (code={code})")
        self.method = method
        self.code = code
        self.rpc_message = message


class LedgerClient:
    """
    Async client for the ledger's JSON-RPC API.

    Read-only queries are retried on connectivity failures according to the
    configured retry policy. Transaction submission is never retried.
    """

    def __init__(self, config: WalbucketConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Initialize ledger client.

        Args:
            config: SDK configuration
            transport: Optional httpx transport (used to inject test doubles)
        """
        self.config = config
        self.session = httpx.AsyncClient(
            base_url=config.sui_rpc_url,
            timeout=config.request_timeout,
            transport=transport,
        )
        self._ids = itertools.count(1)
        logger.info(f"Initialized LedgerClient [rpc_url={config.sui_rpc_url}]")

    async def close(self) -> None:
        await self.session.aclose()

    async def _rpc(self, method: str, params: list, retry: bool = True) -> Any:
        """
        Call one JSON-RPC method.

        Args:
            method: RPC method name
            params: Positional parameters
            retry: Whether connectivity failures may be retried

        Returns:
            The 'result' member of the response

        Raises:
            LedgerRpcError: If the node returned a JSON-RPC error
            BlockchainError: If the node could not be reached or answered garbage
        """
        retry_config = self.config.get_retry_config()
        max_retries = retry_config['max_retries'] if retry else 0
        backoff = retry_config['retry_backoff_multiplier']

        request_id = str(uuid.uuid4())
        payload = {'jsonrpc': '2.0', 'id': next(self._ids), 'method': method, 'params': params}
        headers = {'X-Request-ID': request_id}

        logger.debug(f"RPC call: {method} [request_id={request_id}]")

        for attempt in range(max_retries + 1):
            try:
                response = await self.session.post('', json=payload, headers=headers)
                break
            except (httpx.ConnectError, httpx.TimeoutException) as e:
                if attempt < max_retries:
                    delay = backoff ** attempt
                    logger.warning(
                        f"Ledger unreachable (attempt {attempt + 1}/{max_retries + 1}): "
                        f"{method} error={type(e).__name__}, retrying in {delay}s [request_id={request_id}]"
                    )
                    await asyncio.sleep(delay)
                    continue
                logger.error(f"Ledger unreachable: {method} error={e} [request_id={request_id}]")
                raise BlockchainError(f"Cannot reach ledger node for {method}", cause=e) from e
            except httpx.HTTPError as e:
                # The request may have reached the node; never retried.
                logger.error(f"Ledger transport failed: {method} error={type(e).__name__}: {e} [request_id={request_id}]")
                raise BlockchainError(f"Ledger transport failed for {method}: {e}", cause=e) from e

        if response.status_code >= 400:
            raise BlockchainError(f"Ledger node returned HTTP {response.status_code} for {method}")

        try:
            body = response.json()
        except ValueError as e:
            raise BlockchainError(f"Ledger node returned a non-JSON body for {method}", cause=e) from e

        if body.get('error'):
            error = body['error']
            raise LedgerRpcError(method, error.get('code'), error.get('message', 'unknown error'))

        return body.get('result')

    async def get_object(self, object_id: str) -> Optional[Dict[str, Any]]:
        """
        Fetch one object with content, owner and type.

        Returns:
            The object's 'data' member, or None if the object does not exist
        """
        result = await self._rpc('sui_getObject', [object_id, OBJECT_OPTIONS])
        if not result or result.get('error') or not result.get('data'):
            return None
        return result['data']

    async def multi_get_objects(self, object_ids: Sequence[str]) -> List[Optional[Dict[str, Any]]]:
        """Fetch several independent objects concurrently."""
        return list(await asyncio.gather(*(self.get_object(object_id) for object_id in object_ids)))

    async def get_owned_objects(
        self,
        owner: str,
        struct_type: Optional[str] = None,
        cursor: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        List objects owned by an address.

        Returns:
            Page dictionary with 'data', 'nextCursor' and 'hasNextPage'
        """
        query: Dict[str, Any] = {'options': OBJECT_OPTIONS}
        if struct_type:
            query['filter'] = {'StructType': struct_type}
        result = await self._rpc('suix_getOwnedObjects', [owner, query, cursor, limit])
        return result or {'data': [], 'nextCursor': None, 'hasNextPage': False}

    async def query_events(
        self,
        event_type: str,
        limit: int,
        descending: bool = True,
        cursor: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Query the event log by Move event type.

        Returns:
            Page dictionary with 'data', 'nextCursor' and 'hasNextPage'
        """
        result = await self._rpc(
            'suix_queryEvents',
            [{'MoveEventType': event_type}, cursor, limit, descending],
        )
        return result or {'data': [], 'nextCursor': None, 'hasNextPage': False}

    async def build_move_call(self, call: MoveCall, sender: str) -> bytes:
        """Have the node build transaction bytes for a single Move call."""
        result = await self._rpc(
            'unsafe_moveCall',
            [
                sender,
                call.package,
                call.module,
                call.function,
                list(call.type_arguments),
                call.json_arguments(),
                None,
                str(self.config.gas_budget),
            ],
            retry=False,
        )
        if not result or 'txBytes' not in result:
            raise BlockchainError(f"Ledger node did not build a transaction for {call.target}")
        return base64.b64decode(result['txBytes'])

    async def execute(
        self,
        call: MoveCall,
        signer: Ed25519Signer,
        options: Optional[Dict[str, bool]] = None,
    ) -> Dict[str, Any]:
        """
        Build, sign and submit a Move call with the held signer.

        Returns:
            Raw transaction block response
        """
        tx_bytes = await self.build_move_call(call, signer.address)
        signature = signer.sign_transaction(tx_bytes)
        logger.debug(f"Submitting {call.target} [sender={signer.address}]")
        return await self._rpc(
            'sui_executeTransactionBlock',
            [
                base64.b64encode(tx_bytes).decode('ascii'),
                [signature],
                options or FULL_TRANSACTION_OPTIONS,
                'WaitForLocalExecution',
            ],
            retry=False,
        )

    async def get_transaction(self, digest: str, options: Optional[Dict[str, bool]] = None) -> Dict[str, Any]:
        return await self._rpc('sui_getTransactionBlock', [digest, options or FULL_TRANSACTION_OPTIONS])

    async def wait_for_transaction(
        self,
        digest: str,
        options: Optional[Dict[str, bool]] = None,
        timeout: float = WAIT_FOR_TRANSACTION_TIMEOUT_SECONDS,
        poll_interval: float = WAIT_FOR_TRANSACTION_POLL_SECONDS,
    ) -> Dict[str, Any]:
        """
        Poll until a transaction is queryable.

        Raises:
            BlockchainError: If the transaction is still unknown after timeout
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            try:
                return await self.get_transaction(digest, options)
            except LedgerRpcError as e:
                if loop.time() >= deadline:
                    raise BlockchainError(
                        f"Transaction {digest} not indexed after {timeout}s",
                        transaction_digest=digest,
                        cause=e,
                    ) from e
                logger.debug(f"Transaction not yet indexed, polling again [digest={digest}]")
                await asyncio.sleep(poll_interval)
