"""Project-wide constants (networks, endpoints, permission bits, limits)."""

# Credential permission bits
PERMISSION_UPLOAD: int = 1
PERMISSION_READ: int = 2
PERMISSION_DELETE: int = 4
PERMISSION_TRANSFORM: int = 8
PERMISSION_ADMIN: int = 16

PERMISSION_NAMES = {
    PERMISSION_UPLOAD: 'upload',
    PERMISSION_READ: 'read',
    PERMISSION_DELETE: 'delete',
    PERMISSION_TRANSFORM: 'transform',
    PERMISSION_ADMIN: 'admin',
}

# Shared system clock object on the ledger
CLOCK_OBJECT_ID: str = '0x6'

NETWORKS = ('testnet', 'mainnet', 'devnet', 'localnet')
DEFAULT_NETWORK: str = 'testnet'

PACKAGE_IDS = {
    'testnet': '0x481a774f5cf0a3437a6f9623604874681943950bb82c146051afdec74f0c9b26',
    'mainnet': '',
    'devnet': '',
    'localnet': '',
}

SUI_RPC_URLS = {
    'testnet': 'https://fullnode.testnet.sui.io:443',
    'mainnet': 'https://fullnode.mainnet.sui.io:443',
    'devnet': 'https://fullnode.devnet.sui.io:443',
    'localnet': 'http://127.0.0.1:9000',
}

WALRUS_URLS = {
    'testnet': {
        'publisher': 'https://publisher.walrus-01.tududes.com',
        'aggregator': 'https://aggregator.walrus-testnet.walrus.space',
    },
    'mainnet': {
        'publisher': 'https://publisher.mainnet.walrus.space',
        'aggregator': 'https://aggregator.mainnet.walrus.space',
    },
    'devnet': {
        'publisher': 'https://publisher.walrus-01.tududes.com',
        'aggregator': 'https://aggregator.walrus-testnet.walrus.space',
    },
    'localnet': {
        'publisher': 'http://localhost:8080',
        'aggregator': 'http://localhost:8081',
    },
}

# Blob store limits
MAX_SINGLE_BLOB_SIZE: int = 100 * 1024 * 1024
MAX_ABSOLUTE_BLOB_SIZE: int = int(13.3 * 1024 * 1024 * 1024)
DEFAULT_STORAGE_EPOCHS: int = 5

# (upper bound in bytes, timeout in seconds); last entry applies above all bounds
BLOB_TIMEOUT_STEPS = (
    (1 * 1024 * 1024, 30.0),
    (5 * 1024 * 1024, 60.0),
    (10 * 1024 * 1024, 120.0),
    (50 * 1024 * 1024, 300.0),
    (100 * 1024 * 1024, 600.0),
)
BLOB_TIMEOUT_MAX_SECONDS: float = 900.0

# Ledger
DEFAULT_GAS_BUDGET: int = 100_000_000
DEFAULT_REQUEST_TIMEOUT_SECONDS: float = 30.0
INDEXING_GRACE_SECONDS: float = 3.0
WAIT_FOR_TRANSACTION_TIMEOUT_SECONDS: float = 60.0
WAIT_FOR_TRANSACTION_POLL_SECONDS: float = 2.0
CREDENTIAL_EVENT_SCAN_LIMIT: int = 1000
ACCOUNT_EVENT_SCAN_LIMIT: int = 100
BUCKET_EVENT_SCAN_LIMIT: int = 100

# Caches
DEFAULT_CACHE_TTL_SECONDS: float = 3600.0
DEFAULT_CACHE_MAX_ENTRIES: int = 1024

# Encryption
DEFAULT_SEAL_THRESHOLD: int = 2

POLICY_TYPES = {
    'public': 0,
    'wallet-gated': 1,
    'time-limited': 2,
    'password-protected': 3,
}

DEFAULT_CONTENT_TYPE: str = 'application/octet-stream'
