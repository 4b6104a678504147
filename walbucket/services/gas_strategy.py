"""
Authorization and gas-payment resolution.

An SDK instance runs under exactly one of two authorization paths, resolved
once from configuration:

- SponsoredAuthorization: a held developer signer signs and pays for every
  mutation, which goes through the credentialed ledger entry points.
- SelfPayAuthorization: an external sign-and-submit function (typically a
  wallet) signs and pays as the invoking address, and mutations go through
  the credential-free entry points.

The result is an immutable value passed explicitly into every saga.
"""

from dataclasses import dataclass
from typing import Optional, Union

from common.logging_config import get_logger
from walbucket.config import GasStrategy, SignAndExecute, WalbucketConfig
from walbucket.exceptions import ConfigurationError
from walbucket.signer import Ed25519Signer

logger = get_logger(__name__)


@dataclass(frozen=True)
class SponsoredAuthorization:
    """Developer-held signer pays for and signs every mutation."""
    signer: Ed25519Signer

    @property
    def address(self) -> str:
        return self.signer.address

    @property
    def strategy(self) -> GasStrategy:
        return GasStrategy.SPONSORED


@dataclass(frozen=True)
class SelfPayAuthorization:
    """Invoking wallet signs and pays through an external submission function."""
    submit: SignAndExecute
    address: str

    @property
    def strategy(self) -> GasStrategy:
        return GasStrategy.SELF_PAY


Authorization = Union[SponsoredAuthorization, SelfPayAuthorization]


def resolve_authorization(config: WalbucketConfig) -> Authorization:
    """
    Resolve the authorization path for a configuration.

    Args:
        config: SDK configuration

    Returns:
        Exactly one authorization variant

    Raises:
        ConfigurationError: If the material the strategy requires is absent
    """
    if config.gas_strategy == GasStrategy.SPONSORED:
        if not config.sponsor_private_key:
            raise ConfigurationError('sponsor_private_key is required for the sponsored gas strategy')
        auth = SponsoredAuthorization(signer=Ed25519Signer(config.sponsor_private_key))
    elif config.gas_strategy == GasStrategy.SELF_PAY:
        if config.sign_and_execute is None:
            raise ConfigurationError('sign_and_execute is required for the self-pay gas strategy')
        if not callable(config.sign_and_execute):
            raise ConfigurationError('sign_and_execute must be callable')
        if not config.user_address:
            raise ConfigurationError('user_address is required for the self-pay gas strategy')
        auth = SelfPayAuthorization(submit=config.sign_and_execute, address=config.user_address)
    else:
        raise ConfigurationError(f"Unknown gas strategy: {config.gas_strategy}")

    logger.info(f"Authorization resolved [strategy={auth.strategy.value}, address={auth.address}]")
    return auth


def signer_for(auth: Authorization) -> Optional[Ed25519Signer]:
    """Return the held signer for sponsored authorization, None for self-pay."""
    if isinstance(auth, SponsoredAuthorization):
        return auth.signer
    return None
