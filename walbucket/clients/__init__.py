"""HTTP clients for the ledger and blob store collaborators."""

from walbucket.clients.blob_client import BlobClient
from walbucket.clients.ledger_client import LedgerClient, LedgerRpcError

__all__ = ['BlobClient', 'LedgerClient', 'LedgerRpcError']
