"""
Threshold encryption service adapter.

The threshold cryptography itself lives in an external backend implementing
ThresholdCipher. This module maps policies to their on-ledger encoding,
derives the encryption identity from the policy id, and builds the approval
call key servers evaluate before releasing decryption shares.
"""

from typing import Any, Optional, Protocol, Sequence, Tuple, runtime_checkable

from common.constants import POLICY_TYPES
from common.logging_config import get_logger
from walbucket.exceptions import ConfigurationError, EncryptionError, WalbucketError
from walbucket.schemas import EncryptionPolicy
from walbucket.transactions import MoveCall, clock, obj, pure_bytes
from walbucket.utils import sha256_hex, strip_hex_prefix

logger = get_logger(__name__)


@runtime_checkable
class ThresholdCipher(Protocol):
    """Backend performing threshold encryption against a set of key servers."""

    async def encrypt(
        self, data: bytes, *, package_id: str, identity: bytes, threshold: int, server_ids: Tuple[str, ...]
    ) -> bytes:
        ...

    async def decrypt(
        self, data: bytes, *, session_key: Any, approval: MoveCall, server_ids: Tuple[str, ...]
    ) -> bytes:
        ...


def policy_type_code(policy: EncryptionPolicy) -> int:
    return POLICY_TYPES[policy.type]


def policy_password_hash(policy: EncryptionPolicy) -> str:
    """SHA-256 hex of the policy password, or '' when there is none."""
    return sha256_hex(policy.password) if policy.password else ''


def policy_expiration_seconds(policy: EncryptionPolicy) -> int:
    """Policy expiration converted from milliseconds to ledger seconds; 0 means none."""
    return policy.expiration // 1000 if policy.expiration else 0


def policy_identity(policy_id: str) -> bytes:
    return bytes.fromhex(strip_hex_prefix(policy_id))


class SealService:
    """Encrypts and decrypts asset bytes under on-ledger policies."""

    def __init__(
        self,
        cipher: Optional[ThresholdCipher],
        package_id: str,
        threshold: int,
        server_ids: Sequence[str] = (),
    ):
        """
        Initialize the service.

        Args:
            cipher: Threshold encryption backend, or None when encryption is unavailable
            package_id: Package that defines the policy module
            threshold: Key server shares required to decrypt
            server_ids: Key server object ids forwarded to the backend
        """
        self.cipher = cipher
        self.package_id = package_id
        self.threshold = threshold
        self.server_ids: Tuple[str, ...] = tuple(server_ids)

    @property
    def available(self) -> bool:
        return self.cipher is not None

    def require_cipher(self) -> ThresholdCipher:
        if self.cipher is None:
            raise ConfigurationError('Encryption requested but no threshold cipher backend is configured')
        return self.cipher

    def approval_call(self, policy_id: str) -> MoveCall:
        """Build the seal_approve call that authorizes decryption under a policy."""
        return MoveCall(
            target=f"{self.package_id}::policy::seal_approve",
            arguments=(pure_bytes(policy_identity(policy_id)), obj(policy_id), clock()),
        )

    async def encrypt(self, data: bytes, policy_id: str) -> bytes:
        """
        Encrypt bytes under an existing policy.

        Raises:
            ConfigurationError: If no cipher backend is configured
            EncryptionError: If the backend fails
        """
        cipher = self.require_cipher()
        try:
            ciphertext = await cipher.encrypt(
                data,
                package_id=self.package_id,
                identity=policy_identity(policy_id),
                threshold=self.threshold,
                server_ids=self.server_ids,
            )
        except WalbucketError:
            raise
        except Exception as e:
            raise EncryptionError(f"Encryption failed: {e}", cause=e) from e

        logger.debug(f"Encrypted {len(data)} bytes under policy {policy_id}")
        return bytes(ciphertext)

    async def decrypt(self, data: bytes, policy_id: str, session_key: Any) -> bytes:
        """
        Decrypt bytes encrypted under a policy.

        Raises:
            ConfigurationError: If no cipher backend is configured
            EncryptionError: If the backend refuses or fails
        """
        cipher = self.require_cipher()
        try:
            plaintext = await cipher.decrypt(
                data,
                session_key=session_key,
                approval=self.approval_call(policy_id),
                server_ids=self.server_ids,
            )
        except WalbucketError:
            raise
        except Exception as e:
            raise EncryptionError(f"Decryption failed: {e}", cause=e) from e
        return bytes(plaintext)
