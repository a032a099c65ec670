import logging
import uuid
from typing import List, Optional, Union

from jwcrypto import jwk
from opentelemetry import trace

from idp.crypto import sign_claims, verify_claims
from idp.errors import TokenError, TokenErrorKind
from idp.models import Token, VerifiedPrincipal
from idp.telemetry import redact

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

TokenLike = Union[str, Token]


class TokenService:
    """Mints, validates and revokes bearer tokens.

    Tokens are compact JWS objects signed with the active key. Validation
    accepts any of a short, ordered list of recent keys so rotation does not
    invalidate tokens that are still within their lifetime.
    """

    def __init__(
        self,
        keys: List[jwk.JWK],
        revocations,
        clock,
        ttl_seconds: int = 3600,
        issuer: str = "did:web:api-registry",
        default_scope: str = "api:read",
        challenges=None,
        max_keys: int = 3,
    ):
        if not keys:
            raise ValueError("at least one signing key is required")
        self.keys = list(keys)[:max_keys]
        self.revocations = revocations
        self.clock = clock
        self.ttl_seconds = ttl_seconds
        self.issuer = issuer
        self.default_scope = default_scope
        self.challenges = challenges
        self.max_keys = max_keys

    @property
    def active_key(self) -> jwk.JWK:
        return self.keys[0]

    def rotate(self, key: jwk.JWK):
        self.keys = [key] + [k for k in self.keys if k.get("kid") != key.get("kid")]
        self.keys = self.keys[: self.max_keys]
        logger.info("token signing key rotated to kid=%s (%d kept for validation)", key.get("kid"), len(self.keys))

    async def issue(self, principal: VerifiedPrincipal, scope: Optional[str] = None) -> Token:
        with tracer.start_as_current_span("token.issue"):
            now = self.clock.now()
            claims = {
                "jti": str(uuid.uuid4()),
                "sub": principal.did,
                "iss": self.issuer,
                "iat": now,
                "exp": now + self.ttl_seconds,
                "scope": scope or self.default_scope,
            }
            value = sign_claims(claims, self.active_key)
            # the challenge is only spent once a token actually exists
            if principal.challenge_id and self.challenges is not None:
                await self.challenges.consume(principal.challenge_id)
            logger.info("token issued jti=%s sub=%s scope=%s", claims["jti"], principal.did, claims["scope"])
            return Token(
                id=claims["jti"],
                subject_did=claims["sub"],
                issuer=claims["iss"],
                issued_at=claims["iat"],
                expires_at=claims["exp"],
                scope=claims["scope"],
                value=value,
            )

    def _decode(self, token: TokenLike) -> Token:
        value = token.value if isinstance(token, Token) else token
        if not isinstance(value, str) or not value:
            raise TokenError(TokenErrorKind.MALFORMED, "empty token")
        claims = verify_claims(value, self.keys)
        if claims is None:
            raise TokenError(TokenErrorKind.MALFORMED, f"signature check failed for {redact(value, 20)}")
        try:
            decoded = Token(
                id=claims["jti"],
                subject_did=claims["sub"],
                issuer=claims["iss"],
                issued_at=claims["iat"],
                expires_at=claims["exp"],
                scope=claims.get("scope") or self.default_scope,
                value=value,
            )
        except (KeyError, ValueError) as exc:
            raise TokenError(TokenErrorKind.MALFORMED, f"bad claims: {exc}") from exc
        if decoded.issuer != self.issuer:
            raise TokenError(TokenErrorKind.MALFORMED, f"foreign issuer {decoded.issuer}")
        return decoded

    async def inspect(self, token: TokenLike) -> Token:
        decoded = self._decode(token)
        if self.clock.now() > decoded.expires_at:
            raise TokenError(TokenErrorKind.EXPIRED, f"token {decoded.id} expired at {decoded.expires_at}")
        if await self.revocations.contains(decoded.id):
            raise TokenError(TokenErrorKind.REVOKED, f"token {decoded.id} revoked")
        return decoded

    async def validate(self, token: TokenLike) -> str:
        return (await self.inspect(token)).subject_did

    async def revoke(self, token: TokenLike) -> bool:
        """Revoke a token. Returns True only when this call changed state.

        Revoking an expired or already revoked token succeeds without touching
        the revocation set.
        """
        decoded = self._decode(token)
        now = self.clock.now()
        if now > decoded.expires_at:
            logger.info("revoke of expired token jti=%s ignored", decoded.id)
            return False
        added = await self.revocations.add(decoded.id, now, decoded.expires_at)
        if added:
            logger.info("token revoked jti=%s sub=%s", decoded.id, decoded.subject_did)
        else:
            logger.info("token jti=%s already revoked", decoded.id)
        return added
