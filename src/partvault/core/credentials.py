"""Credential resolution for remote backends.

An explicitly configured pair wins. When either half of the explicit pair is
blank, both values come from the provider's environment variables, so an
explicit account name is never combined with another account's key. Whatever
is still blank afterwards is an immediate :class:`MissingCredentialsError`
rather than a later authentication failure at the provider.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from partvault.core.exceptions import MissingCredentialsError
from partvault.logging import get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class Credentials:
    """An identity/secret pair (account name + key, access key id + secret)."""

    identity: str
    secret: str = field(repr=False)


AZURE_ACCOUNT_ENV = "AZURE_STORAGE_ACCOUNT"
AZURE_KEY_ENV = "AZURE_STORAGE_ACCESS_KEY"
AWS_KEY_ID_ENV = "AWS_ACCESS_KEY_ID"
AWS_SECRET_ENV = "AWS_SECRET_ACCESS_KEY"


def resolve_credentials(
        identity: str | None,
        secret: str | None,
        *,
        identity_env: str,
        secret_env: str,
        provider: str,
        required: bool = True,
) -> Credentials | None:
    """Resolve a credential pair from explicit values, then the environment.

    Args:
        identity: Explicitly configured account name / key id.
        secret: Explicitly configured secret.
        identity_env: Environment variable holding the identity fallback.
        secret_env: Environment variable holding the secret fallback.
        provider: Provider name used in error messages.
        required: When False, an empty explicit pair with an empty
            environment yields ``None`` so the provider SDK may use its own
            default credential chain.

    Raises:
        MissingCredentialsError: If the pair is incomplete after fallback.
    """
    if identity and secret:
        return Credentials(identity=identity, secret=secret)

    if identity or secret:
        log.warning(
            "partial_credentials_ignored",
            provider=provider,
            fallback=f"{identity_env}/{secret_env}",
        )
    env_identity = os.environ.get(identity_env, "")
    env_secret = os.environ.get(secret_env, "")

    if env_identity and env_secret:
        return Credentials(identity=env_identity, secret=env_secret)
    if not required and not (identity or secret or env_identity or env_secret):
        return None

    missing = [name for name, value in ((identity_env, env_identity), (secret_env, env_secret)) if not value]
    raise MissingCredentialsError(
        f"Missing {provider} credentials: configure both values "
        f"or set {' and '.join(missing)}"
    )
