import hmac
import logging
from typing import Iterable, Optional

from pydantic import BaseModel

from idp.errors import AuthError, AuthErrorKind, TokenError
from idp.models import AuthContext, AuthType
from idp.telemetry import redact
from idp.utils import fingerprint

logger = logging.getLogger(__name__)


class Credentials(BaseModel):
    api_key: Optional[str] = None
    bearer_token: Optional[str] = None

    @classmethod
    def from_headers(cls, authorization: Optional[str], x_api_key: Optional[str]) -> "Credentials":
        bearer = None
        if authorization:
            scheme, _, value = authorization.partition(" ")
            if scheme.lower() == "bearer":
                bearer = value.strip() or None
        return cls(api_key=(x_api_key or "").strip() or None, bearer_token=bearer)


class ApiKeySet:
    """Configured service API keys. Membership is checked in constant time."""

    def __init__(self, keys: Iterable[str] = ()):
        self._keys = [k for k in keys if k]

    async def init(self):
        if not self._keys:
            logger.warning("no API keys configured; API key authentication will reject everything")

    async def teardown(self):
        pass

    def __contains__(self, candidate: str) -> bool:
        found = False
        for key in self._keys:
            if hmac.compare_digest(key.encode(), candidate.encode()):
                found = True
        return found

    def __len__(self):
        return len(self._keys)


class AuthenticationPolicy:
    """Turns request credentials into an AuthContext or an AuthError.

    A bearer token always wins over an API key sent on the same request, and
    a bad bearer token is never rescued by the API key.
    """

    def __init__(self, api_keys: ApiKeySet, token_service):
        self.api_keys = api_keys
        self.token_service = token_service

    async def authenticate(self, credentials: Credentials) -> AuthContext:
        if credentials.bearer_token:
            return await self._authenticate_bearer(credentials.bearer_token)
        if credentials.api_key:
            return self._authenticate_api_key(credentials.api_key)
        raise AuthError(AuthErrorKind.UNAUTHORIZED, "no credentials presented")

    async def _authenticate_bearer(self, bearer: str) -> AuthContext:
        try:
            token = await self.token_service.inspect(bearer)
        except TokenError as exc:
            logger.info("bearer rejected kind=%s reason=%s", exc.kind.value, exc.reason)
            raise AuthError(AuthErrorKind.UNAUTHORIZED, f"token {exc.kind.value}: {exc.reason}") from exc
        return AuthContext(
            auth_type=AuthType.DID,
            principal_id=token.subject_did,
            scope=token.scope,
            token_id=token.id,
        )

    def _authenticate_api_key(self, api_key: str) -> AuthContext:
        if api_key not in self.api_keys:
            logger.info("API key rejected prefix=%s", redact(api_key))
            raise AuthError(AuthErrorKind.INVALID_API_KEY, "unknown API key")
        return AuthContext(auth_type=AuthType.API_KEY, principal_id=f"apikey:{fingerprint(api_key)}")
