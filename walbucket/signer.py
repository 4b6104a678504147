"""Ed25519 signer for sponsored ledger transactions."""

import base64
import hashlib
from typing import Tuple

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from walbucket.exceptions import ConfigurationError

ED25519_FLAG = 0x00

# Intent prefix for transaction data: scope=TransactionData, version=V0, app=Sui
TRANSACTION_INTENT = bytes([0, 0, 0])


def _blake2b256(data: bytes) -> bytes:
    return hashlib.blake2b(data, digest_size=32).digest()


def _decode_private_key(private_key: str) -> bytes:
    """Decode a 32-byte seed from hex (optionally 0x-prefixed) or flagged base64."""
    text = private_key.strip()
    hex_text = text[2:] if text.lower().startswith('0x') else text
    try:
        raw = bytes.fromhex(hex_text)
    except ValueError:
        try:
            raw = base64.b64decode(text, validate=True)
        except ValueError as e:
            raise ConfigurationError('Sponsor private key is neither hex nor base64', cause=e) from e
        if len(raw) == 33 and raw[0] == ED25519_FLAG:
            raw = raw[1:]

    if len(raw) == 64:
        raw = raw[:32]
    if len(raw) != 32:
        raise ConfigurationError('Sponsor private key must be a 32-byte Ed25519 seed')
    return raw


def address_from_public_key(public_key: bytes) -> str:
    return '0x' + _blake2b256(bytes([ED25519_FLAG]) + public_key).hex()


def transaction_digest_message(tx_bytes: bytes) -> bytes:
    """Return the 32-byte message that is actually signed for a transaction."""
    return _blake2b256(TRANSACTION_INTENT + tx_bytes)


def parse_serialized_signature(signature: str) -> Tuple[bytes, bytes]:
    """
    Split a serialized signature into (raw signature, public key).

    Raises:
        ValueError: If the encoding or scheme flag is wrong
    """
    raw = base64.b64decode(signature)
    if len(raw) != 1 + 64 + 32 or raw[0] != ED25519_FLAG:
        raise ValueError('Not a serialized Ed25519 signature')
    return raw[1:65], raw[65:]


def verify_transaction_signature(tx_bytes: bytes, signature: str) -> str:
    """
    Verify a serialized transaction signature.

    Returns:
        Address of the signer

    Raises:
        ValueError: If the signature does not verify
    """
    sig, public_key = parse_serialized_signature(signature)
    try:
        Ed25519PublicKey.from_public_bytes(public_key).verify(sig, transaction_digest_message(tx_bytes))
    except InvalidSignature as e:
        raise ValueError('Invalid transaction signature') from e
    return address_from_public_key(public_key)


class Ed25519Signer:
    """
    Held signing key for the sponsored authorization path.

    Read-only after construction, so concurrent sagas may share one instance.
    """

    def __init__(self, private_key: str):
        """
        Initialize signer.

        Args:
            private_key: 32-byte Ed25519 seed as hex, or flagged base64

        Raises:
            ConfigurationError: If the key cannot be decoded
        """
        self._key = Ed25519PrivateKey.from_private_bytes(_decode_private_key(private_key))
        self._public_key = self._key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
        self._address = address_from_public_key(self._public_key)

    @classmethod
    def generate(cls) -> 'Ed25519Signer':
        seed = Ed25519PrivateKey.generate().private_bytes_raw()
        return cls(seed.hex())

    @property
    def address(self) -> str:
        return self._address

    @property
    def public_key(self) -> bytes:
        return self._public_key

    def sign_transaction(self, tx_bytes: bytes) -> str:
        """
        Sign transaction bytes with the transaction intent.

        Returns:
            base64(flag || signature || public key)
        """
        signature = self._key.sign(transaction_digest_message(tx_bytes))
        return base64.b64encode(bytes([ED25519_FLAG]) + signature + self._public_key).decode('ascii')

    def __repr__(self) -> str:
        return f"Ed25519Signer(address={self._address})"
