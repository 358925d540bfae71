"""Client authentication for outgoing token requests.

The broker authenticates to the external token endpoint with a static
client secret (form parameters or HTTP Basic) or with a signed JWT
client assertion.
"""

from __future__ import annotations

import base64
import logging
import os
import stat
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

import httpx
import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from fedbroker.broker.errors import CredentialError
from fedbroker.broker.models import (
    CLIENT_ASSERTION,
    CLIENT_ASSERTION_TYPE,
    CLIENT_ASSERTION_TYPE_JWT,
    OAUTH2_PARAMETER_CLIENT_ID,
    OAUTH2_PARAMETER_CLIENT_SECRET,
    ClientAuthMethod,
    ProviderConfig,
    RealmContext,
)
from fedbroker.core.logging import fingerprint_secret

if TYPE_CHECKING:
    from fedbroker.broker.collaborators import SecretVault, Signer

logger = logging.getLogger(__name__)

HS256 = "HS256"
RS256 = "RS256"


@dataclass
class TokenRequest:
    """An outgoing form POST to a token or profile endpoint."""

    url: str
    params: dict[str, str] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)

    def param(self, name: str, value: str | None) -> TokenRequest:
        if value is not None:
            self.params[name] = value
        return self

    def header(self, name: str, value: str) -> TokenRequest:
        self.headers[name] = value
        return self

    def auth_basic(self, username: str, password: str) -> TokenRequest:
        """Attach HTTP Basic credentials."""
        credentials = f"{username}:{password}".encode()
        return self.header("Authorization", "Basic " + base64.b64encode(credentials).decode("ascii"))

    def send(self, client: httpx.Client) -> httpx.Response:
        headers = {"Accept": "application/json", **self.headers}
        return client.post(self.url, data=self.params, headers=headers)


class JWTSigner:
    """Signs JWT payloads with PyJWT."""

    def sign(self, payload: dict[str, Any], key: Any, algorithm: str) -> str:
        try:
            return jwt.encode(payload, key, algorithm=algorithm, headers={"typ": "JWT"})
        except (jwt.PyJWTError, TypeError, ValueError) as e:
            raise CredentialError(f"Could not sign client assertion with {algorithm}: {e}") from e


def generate_signing_key(key_size: int = 2048) -> rsa.RSAPrivateKey:
    """Generate an RSA private key for realm signatures."""
    return rsa.generate_private_key(public_exponent=65537, key_size=key_size)


def load_signing_key(path: Path, password: bytes | None = None) -> rsa.RSAPrivateKey:
    """Load the realm RSA private key from a PEM file.

    Raises:
        CredentialError: If the key is missing or not an RSA key.
    """
    if not path.exists():
        raise CredentialError(f"Signing key file not found: {path}")
    try:
        key = serialization.load_pem_private_key(path.read_bytes(), password=password)
    except (ValueError, TypeError) as e:
        raise CredentialError(f"Failed to load signing key from {path}: {e}") from e
    if not isinstance(key, rsa.RSAPrivateKey):
        raise CredentialError(f"Expected RSA private key, got {type(key).__name__}")
    return key


def save_signing_key(private_key: rsa.RSAPrivateKey, path: Path) -> None:
    """Save the realm key to a PEM file readable only by the owner."""
    path.parent.mkdir(parents=True, exist_ok=True)

    pem_data = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )

    path.touch(mode=0o600)
    path.write_bytes(pem_data)
    os.chmod(path, stat.S_IRUSR | stat.S_IWUSR)


_process_key: rsa.RSAPrivateKey | None = None


def get_realm_key(path: Path | None = None) -> rsa.RSAPrivateKey:
    """Load the realm key, or generate one for this process when no path is set."""
    global _process_key
    if path is not None:
        return load_signing_key(path)
    if _process_key is None:
        logger.warning("No realm signing key configured, using a key generated for this process")
        _process_key = generate_signing_key()
    return _process_key


class ClientAuthenticator:
    """Attaches client credentials to token requests for one provider."""

    def __init__(
        self,
        config: ProviderConfig,
        realm: RealmContext,
        vault: SecretVault,
        signer: Signer | None = None,
        realm_key: rsa.RSAPrivateKey | None = None,
    ) -> None:
        self.config = config
        self.realm = realm
        self.vault = vault
        self.signer = signer or JWTSigner()
        self.realm_key = realm_key

    @contextmanager
    def client_secret(self) -> Iterator[str]:
        """Resolve the client secret for the duration of a block.

        The vault is asked first; without a vault value the configured
        string itself is used.

        Raises:
            CredentialError: If no secret is configured.
        """
        ref = self.config.secret_for(self.realm.name)
        with self.vault.get_string_secret(ref) as vault_secret:
            secret = vault_secret.get_or(ref)
            if not secret:
                raise CredentialError(f"No client secret configured for provider '{self.config.alias}'")
            logger.debug(
                f"Resolved client secret for provider {self.config.alias} "
                f"(realm={self.realm.name}, fingerprint={fingerprint_secret(secret)})"
            )
            yield secret

    def generate_token(self) -> dict[str, Any]:
        """Claims of a client assertion or locally issued identity token."""
        now = int(time.time())
        return {
            "jti": str(uuid.uuid4()),
            "typ": "JWT",
            "iss": self.config.client_id,
            "sub": self.config.client_id,
            "aud": self.config.token_url,
            "exp": now + self.realm.access_code_lifespan,
            "iat": now,
        }

    def sign(self, payload: dict[str, Any]) -> str:
        """Sign a payload with the provider's signature context.

        ``client_secret_jwt`` signs with HS256 over the client secret; every
        other method signs with RS256 and the realm key.
        """
        if self.config.client_auth_method == ClientAuthMethod.CLIENT_SECRET_JWT:
            with self.client_secret() as secret:
                return self.signer.sign(payload, secret.encode("utf-8"), HS256)

        if self.realm_key is None:
            raise CredentialError(f"No realm signing key available for provider '{self.config.alias}'")
        return self.signer.sign(payload, self.realm_key, RS256)

    def authenticate_token_request(self, request: TokenRequest) -> TokenRequest:
        """Attach client authentication to a token request."""
        if self.config.jwt_authentication:
            assertion = self.sign(self.generate_token())
            logger.debug(f"Authenticating to {self.config.alias} with JWT client assertion")
            return request.param(CLIENT_ASSERTION_TYPE, CLIENT_ASSERTION_TYPE_JWT).param(
                CLIENT_ASSERTION, assertion
            )

        with self.client_secret() as secret:
            if self.config.basic_authentication:
                logger.debug(f"Authenticating to {self.config.alias} with HTTP Basic")
                return request.auth_basic(self.config.client_id, secret)
            logger.debug(f"Authenticating to {self.config.alias} with client secret parameters")
            return request.param(OAUTH2_PARAMETER_CLIENT_ID, self.config.client_id).param(
                OAUTH2_PARAMETER_CLIENT_SECRET, secret
            )
