"""Unit tests for transaction reconciliation."""

import json

import httpx
import pytest

from fakes import FakeLedger, FakeWallet, PACKAGE_ID
from walbucket.clients.ledger_client import LedgerClient
from walbucket.exceptions import BlockchainError, ErrorCode, ledger_error_code
from walbucket.services.gas_strategy import SelfPayAuthorization, SponsoredAuthorization
from walbucket.services.reconciler import TransactionReconciler, extract_created_ids, extract_status
from walbucket.signer import Ed25519Signer
from walbucket.transactions import MoveCall, clock, obj, pure_bytes, pure_option

USER = '0x' + 'cd' * 32


def create_folder_call(name='docs'):
    return MoveCall(
        target=f"{PACKAGE_ID}::folder::create_folder",
        arguments=(pure_bytes(name), pure_bytes(''), pure_option('address', None), clock()),
    )


@pytest.fixture
def fake():
    return FakeLedger()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def reconciler(fake, make_config, sleeps):
    async def record_sleep(seconds):
        sleeps.append(seconds)

    client = LedgerClient(make_config(), transport=httpx.MockTransport(fake.handler))
    return TransactionReconciler(client, grace_seconds=3.0, sleep=record_sleep)


@pytest.fixture
def sponsored():
    return SponsoredAuthorization(signer=Ed25519Signer.generate())


class TestSponsoredPath:
    @pytest.mark.asyncio
    async def test_full_effects_need_no_requery(self, reconciler, sponsored, fake, sleeps):
        outcome = await reconciler.execute(create_folder_call(), sponsored, require_created=True)

        assert outcome.succeeded
        assert outcome.created_id in fake.objects
        assert sleeps == []
        assert 'sui_getTransactionBlock' not in fake.rpc_log

    @pytest.mark.asyncio
    async def test_created_id_from_object_changes_only(self, reconciler, sponsored, fake, sleeps):
        fake.omit_effects_created = True

        outcome = await reconciler.execute(
            create_folder_call(), sponsored, require_created=True, object_type='::folder::Folder'
        )

        assert fake.objects[outcome.created_id]['type'].endswith('::folder::Folder')

    @pytest.mark.asyncio
    async def test_failed_transaction_raises_with_digest(self, reconciler, sponsored, fake):
        call = MoveCall(target=f"{PACKAGE_ID}::folder::delete_folder", arguments=(obj('0x' + '9' * 64), clock()))

        with pytest.raises(BlockchainError) as exc_info:
            await reconciler.execute(call, sponsored)

        assert exc_info.value.transaction_digest in fake.transactions
        assert exc_info.value.code == ErrorCode.ASSET_NOT_FOUND


class TestSelfPayPath:
    @pytest.mark.asyncio
    async def test_digest_only_response_is_requeried_once(self, reconciler, fake, sleeps):
        wallet = FakeWallet(fake, USER)
        auth = SelfPayAuthorization(submit=wallet, address=USER)

        outcome = await reconciler.execute(create_folder_call(), auth, require_created=True)

        assert sleeps == [3.0]
        assert fake.rpc_log.count('sui_getTransactionBlock') == 1
        assert fake.fields(outcome.created_id)['owner'] == USER

    @pytest.mark.asyncio
    async def test_requeried_id_found_in_object_changes_only(self, reconciler, fake, sleeps):
        fake.omit_effects_created = True
        wallet = FakeWallet(fake, USER)
        auth = SelfPayAuthorization(submit=wallet, address=USER)

        outcome = await reconciler.execute(
            create_folder_call(), auth, require_created=True, object_type='::folder::Folder'
        )

        assert sleeps == [3.0]
        assert fake.rpc_log.count('sui_getTransactionBlock') == 1
        assert fake.transactions[outcome.digest]['effects']['created'] == []
        assert fake.objects[outcome.created_id]['type'].endswith('::folder::Folder')
        assert fake.fields(outcome.created_id)['owner'] == USER

    @pytest.mark.asyncio
    async def test_null_requery_result_fails_with_digest(self, fake, make_config, sleeps):
        def handler(request):
            body = json.loads(request.content)
            if body['method'] == 'sui_getTransactionBlock':
                return httpx.Response(200, json={'jsonrpc': '2.0', 'id': body['id'], 'result': None})
            return fake.handler(request)

        async def record_sleep(seconds):
            sleeps.append(seconds)

        client = LedgerClient(make_config(), transport=httpx.MockTransport(handler))
        reconciler = TransactionReconciler(client, grace_seconds=3.0, sleep=record_sleep)
        auth = SelfPayAuthorization(submit=FakeWallet(fake, USER), address=USER)

        with pytest.raises(BlockchainError) as exc_info:
            await reconciler.execute(create_folder_call(), auth, require_created=True)

        assert exc_info.value.transaction_digest in fake.transactions
        assert 'created object id' in exc_info.value.message
        assert sleeps == [3.0]

    @pytest.mark.asyncio
    async def test_full_wallet_response_skips_requery(self, reconciler, fake, sleeps):
        wallet = FakeWallet(fake, USER, full_response=True)
        auth = SelfPayAuthorization(submit=wallet, address=USER)

        outcome = await reconciler.execute(create_folder_call(), auth, require_created=True)

        assert outcome.created_id
        assert sleeps == []

    @pytest.mark.asyncio
    async def test_wallet_rejection_is_not_resubmitted(self, reconciler, fake):
        wallet = FakeWallet(fake, USER)
        wallet.reject_with = RuntimeError('user rejected the request')
        auth = SelfPayAuthorization(submit=wallet, address=USER)

        with pytest.raises(BlockchainError, match='user rejected'):
            await reconciler.execute(create_folder_call(), auth)

        assert len(wallet.submitted) == 1
        assert fake.executed == []

    @pytest.mark.asyncio
    async def test_missing_digest_fails(self, reconciler):
        async def submit(call, options):
            return {}

        auth = SelfPayAuthorization(submit=submit, address=USER)

        with pytest.raises(BlockchainError, match='No transaction digest'):
            await reconciler.execute(create_folder_call(), auth)

    @pytest.mark.asyncio
    async def test_required_id_missing_after_requery(self, reconciler, fake):
        wallet = FakeWallet(fake, USER)
        auth = SelfPayAuthorization(submit=wallet, address=USER)
        call = MoveCall(
            target=f"{PACKAGE_ID}::asset::rename_asset",
            arguments=(obj('0x' + '9' * 64), pure_bytes('x'), clock()),
        )
        fake.objects['0x' + '9' * 64] = {
            'type': f"{PACKAGE_ID}::asset::Asset", 'owner': USER, 'fields': {'owner': USER, 'name': 'a'},
        }

        with pytest.raises(BlockchainError) as exc_info:
            await reconciler.execute(call, auth, require_created=True)

        assert exc_info.value.transaction_digest in fake.transactions
        assert 'created object id' in exc_info.value.message


def test_extract_created_ids_prefers_matching_type():
    response = {
        'effects': {'status': {'status': 'success'}, 'created': []},
        'objectChanges': [
            {'type': 'created', 'objectId': '0xcoin', 'objectType': '0x2::coin::Coin<0x2::sui::SUI>'},
            {'type': 'mutated', 'objectId': '0xmutated', 'objectType': '0xpkg::asset::Asset'},
            {'type': 'created', 'objectId': '0xasset', 'objectType': '0xpkg::asset::Asset'},
        ],
    }

    assert extract_created_ids(response, '::asset::Asset') == ['0xasset']
    assert extract_created_ids(response) == ['0xcoin', '0xasset']


def test_extract_status_without_effects_is_unknown():
    assert extract_status({'digest': 'abc'}) == ('unknown', None)
    assert extract_status({'effects': {'status': {'status': 'failure', 'error': 'boom'}}}) == ('failure', 'boom')


@pytest.mark.parametrize('error,expected', [
    ('MoveAbort in folder::delete_folder: E_FOLDER_NOT_EMPTY', ErrorCode.FOLDER_NOT_EMPTY),
    ('MoveAbort in asset::delete_asset: E_NOT_OWNER', ErrorCode.NOT_OWNER),
    ('MoveAbort in share::track_link_access: E_ACCESS_DENIED', ErrorCode.ACCESS_DENIED),
    ('MoveAbort in folder::move_asset_to_folder: E_FOLDER_NOT_FOUND', None),
    ('InsufficientGas', None),
    (None, None),
])
def test_ledger_error_code(error, expected):
    assert ledger_error_code(error) == expected
