"""
Transaction result reconciliation.

Submits a Move call through the resolved authorization path and normalizes
whatever comes back into a TransactionOutcome. Submission responses come in
two shapes: the held-signer path returns full effects, while an external
wallet may return little more than a digest because indexing lags
submission. When effects or the created object are missing, the reconciler
waits a grace interval and re-queries the transaction once by digest.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional

from common.logging_config import get_logger
from walbucket.clients.ledger_client import FULL_TRANSACTION_OPTIONS, LedgerClient, LedgerRpcError
from walbucket.exceptions import BlockchainError, WalbucketError, ledger_error_code
from walbucket.services.gas_strategy import Authorization, SelfPayAuthorization, signer_for
from walbucket.transactions import MoveCall
from walbucket.types import TransactionOutcome

logger = get_logger(__name__)


def extract_digest(response: Dict[str, Any]) -> Optional[str]:
    effects = response.get('effects') or {}
    return response.get('digest') or effects.get('transactionDigest')


def extract_status(response: Dict[str, Any]) -> tuple:
    """
    Returns:
        (status, error) where status is 'success', 'failure' or 'unknown'
    """
    effects = response.get('effects')
    if not effects:
        return 'unknown', None
    status = effects.get('status') or {}
    return status.get('status', 'unknown'), status.get('error')


def extract_created_ids(response: Dict[str, Any], object_type: Optional[str] = None) -> List[str]:
    """
    Collect created object ids from a transaction response.

    effects.created is checked first. If it yields nothing, objectChanges
    entries of type 'created' are used, preferring those whose objectType
    ends with object_type when one is given.
    """
    effects = response.get('effects') or {}
    from_effects = [
        created['reference']['objectId']
        for created in effects.get('created') or []
        if (created.get('reference') or {}).get('objectId')
    ]
    if from_effects:
        return from_effects

    changes = [
        change for change in response.get('objectChanges') or []
        if change.get('type') == 'created' and change.get('objectId')
    ]
    if object_type:
        typed = [change for change in changes if str(change.get('objectType', '')).endswith(object_type)]
        if typed:
            changes = typed
    return [change['objectId'] for change in changes]


class TransactionReconciler:
    """Submits mutations and produces one normalized outcome per call."""

    def __init__(
        self,
        ledger: LedgerClient,
        grace_seconds: float,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Initialize reconciler.

        Args:
            ledger: Ledger client used for direct submission and re-queries
            grace_seconds: Wait before re-querying a lagging transaction
            sleep: Awaitable sleep (injectable for tests)
        """
        self.ledger = ledger
        self.grace_seconds = grace_seconds
        self._sleep = sleep

    async def _submit(self, call: MoveCall, auth: Authorization) -> Dict[str, Any]:
        signer = signer_for(auth)
        if signer is not None:
            try:
                return await self.ledger.execute(call, signer, FULL_TRANSACTION_OPTIONS)
            except LedgerRpcError as e:
                raise BlockchainError(f"Transaction {call.target} rejected: {e.rpc_message}", cause=e) from e

        if isinstance(auth, SelfPayAuthorization):
            # External signers may prompt the user; a rejection must not be resubmitted.
            try:
                response = await auth.submit(call, FULL_TRANSACTION_OPTIONS)
            except WalbucketError:
                raise
            except Exception as e:
                raise BlockchainError(f"Wallet submission of {call.target} failed: {e}", cause=e) from e
            if not isinstance(response, dict):
                raise BlockchainError(f"Wallet returned an unexpected response for {call.target}")
            return response

        raise BlockchainError(f"Unsupported authorization: {type(auth).__name__}")

    async def execute(
        self,
        call: MoveCall,
        auth: Authorization,
        require_created: bool = False,
        object_type: Optional[str] = None,
    ) -> TransactionOutcome:
        """
        Submit a call and reconcile its result.

        Args:
            call: Move call to submit
            auth: Resolved authorization path
            require_created: Fail unless the transaction created an object
            object_type: Type suffix (e.g. '::asset::Asset') preferred among created objects

        Returns:
            Normalized transaction outcome

        Raises:
            BlockchainError: On submission failure, on-ledger failure, or when a
                required created id cannot be found (with the digest attached)
        """
        response = await self._submit(call, auth)

        digest = extract_digest(response)
        if not digest:
            raise BlockchainError(f"No transaction digest returned for {call.target}")

        created_ids = extract_created_ids(response, object_type)
        status, _ = extract_status(response)
        needs_requery = status == 'unknown' or (
            status == 'success' and require_created and not created_ids
        )

        if needs_requery:
            logger.debug(
                f"Incomplete result for {call.target}, re-querying in {self.grace_seconds}s [digest={digest}]"
            )
            await self._sleep(self.grace_seconds)
            try:
                response = await self.ledger.wait_for_transaction(digest, FULL_TRANSACTION_OPTIONS) or {}
            except LedgerRpcError as e:
                raise BlockchainError(
                    f"Could not query transaction {digest}: {e.rpc_message}",
                    transaction_digest=digest,
                    cause=e,
                ) from e
            except BlockchainError as e:
                if e.transaction_digest is None:
                    e.transaction_digest = digest
                raise
            created_ids = extract_created_ids(response, object_type)

        status, error = extract_status(response)
        if status == 'failure':
            logger.error(f"Transaction failed on ledger: {call.target} error={error} [digest={digest}]")
            raise BlockchainError(
                f"Transaction {call.target} failed: {error or 'unknown error'}",
                transaction_digest=digest,
                code=ledger_error_code(error),
            )

        if require_created and not created_ids:
            raise BlockchainError(
                f"Could not extract created object id from transaction {digest}",
                transaction_digest=digest,
            )

        logger.debug(f"Transaction reconciled: {call.target} [digest={digest}, created={created_ids}]")
        return TransactionOutcome(
            digest=digest,
            status='success' if status == 'unknown' else status,
            created_ids=tuple(created_ids),
            error=error,
        )
