"""Shared pytest fixtures for all tests."""

import httpx
import pytest

from fakes import (
    API_KEY,
    PACKAGE_ID,
    SPONSOR_KEY,
    USER_ADDRESS,
    FakeBlobStore,
    FakeCipher,
    FakeClock,
    FakeLedger,
    FakeWallet,
)
from walbucket import Walbucket, WalbucketConfig
from walbucket.clients.blob_client import BlobClient
from walbucket.clients.ledger_client import LedgerClient
from walbucket.signer import Ed25519Signer


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep WALBUCKET_* variables from the host out of every test."""
    for name in (
        'WALBUCKET_NETWORK',
        'WALBUCKET_PACKAGE_ID',
        'WALBUCKET_SUI_RPC_URL',
        'WALBUCKET_PUBLISHER_URL',
        'WALBUCKET_AGGREGATOR_URL',
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def sponsor():
    return Ed25519Signer(SPONSOR_KEY)


@pytest.fixture
def ledger(sponsor):
    """
    Fake ledger seeded with an active full-permission credential owned by
    the sponsor and its developer account.
    """
    fake = FakeLedger(PACKAGE_ID)
    fake.developer_account_id = fake.add_developer_account(sponsor.address)
    fake.credential_id = fake.add_credential(API_KEY, sponsor.address)
    return fake


@pytest.fixture
def blob_store():
    return FakeBlobStore()


@pytest.fixture
def cipher():
    return FakeCipher()


@pytest.fixture
def cache_clock():
    return FakeClock()


@pytest.fixture
def sleeps():
    """Records every grace interval the reconciler waits."""
    return []


@pytest.fixture
def wallet(ledger):
    return FakeWallet(ledger, USER_ADDRESS)


@pytest.fixture
def make_config():
    def factory(**overrides):
        fields = {'api_key': API_KEY, 'sponsor_private_key': SPONSOR_KEY}
        fields.update(overrides)
        return WalbucketConfig(**fields)
    return factory


@pytest.fixture
def make_walbucket(ledger, blob_store, cipher, cache_clock, sleeps, wallet, make_config):
    """
    Build Walbucket instances wired to the fakes.

    Pass gas_strategy='self-pay' to route mutations through the fake wallet.
    """
    async def record_sleep(seconds):
        sleeps.append(seconds)

    def factory(with_cipher=True, **overrides):
        if overrides.get('gas_strategy') == 'self-pay':
            overrides.setdefault('sponsor_private_key', None)
            overrides.setdefault('sign_and_execute', wallet)
            overrides.setdefault('user_address', wallet.address)
        config = make_config(**overrides)
        wb = Walbucket(
            config,
            cipher=cipher if with_cipher else None,
            ledger_client=LedgerClient(config, transport=httpx.MockTransport(ledger.handler)),
            blob_client=BlobClient(config, transport=httpx.MockTransport(blob_store.handler)),
            sleep=record_sleep,
            cache_clock=cache_clock,
        )
        return wb

    return factory


@pytest.fixture
def sample_file(tmp_path):
    """
    Create a sample file for testing path uploads.

    Returns:
        Path to a 10-byte text file named a.txt
    """
    file_path = tmp_path / 'a.txt'
    file_path.write_bytes(b'0123456789')
    return file_path
