"""Error taxonomy of the identity core.

Every error carries a public ``code``/``message`` pair that is safe to put in a
response body and a private ``reason`` that only ever reaches server logs.
"""

from enum import Enum
from typing import Any, Dict, Optional


class IdpError(Exception):
    code = "internal-server-error"
    status_code = 500
    message = "An internal server error occurred"

    def __init__(self, reason: str = "", details: Optional[Dict[str, Any]] = None):
        super().__init__(reason or self.message)
        self.reason = reason
        self.details = details or {}

    def to_body(self) -> Dict[str, Any]:
        return {"error": {"code": self.code, "message": self.message, "details": self.details}}


class InvalidInput(IdpError):
    code = "validation/invalid-input"
    status_code = 400
    message = "Invalid request data"


class FeatureDisabled(IdpError):
    code = "auth/did-disabled"
    status_code = 403
    message = "DID authentication is not enabled"


class ResolutionErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    MALFORMED = "malformed"
    UNREACHABLE = "unreachable"


class ResolutionError(IdpError):
    code = "did/resolution-failed"
    status_code = 502
    message = "DID resolution failed"

    def __init__(self, kind: ResolutionErrorKind, reason: str = ""):
        super().__init__(reason or kind.value)
        self.kind = kind


class VerificationErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    SIGNATURE_INVALID = "signature_invalid"
    MALFORMED = "malformed"
    ALREADY_CONSUMED = "already_consumed"
    UNREACHABLE = "unreachable"


class VerificationError(IdpError):
    code = "auth/challenge-verification-failed"
    status_code = 401
    message = "Challenge verification failed"

    def __init__(self, kind: VerificationErrorKind, reason: str = ""):
        super().__init__(reason or kind.value)
        self.kind = kind
        if kind is VerificationErrorKind.NOT_FOUND:
            self.code = "auth/challenge-not-found"
            self.status_code = 404
            self.message = "Challenge not found"
        elif kind is VerificationErrorKind.UNREACHABLE:
            self.code = "auth/resolver-unavailable"
            self.status_code = 503
            self.message = "DID resolver unavailable"


class TokenErrorKind(str, Enum):
    MALFORMED = "malformed"
    EXPIRED = "expired"
    REVOKED = "revoked"


class TokenError(IdpError):
    code = "auth/unauthorized"
    status_code = 401
    message = "Authentication required"

    def __init__(self, kind: TokenErrorKind, reason: str = ""):
        super().__init__(reason or kind.value)
        self.kind = kind


class AuthErrorKind(str, Enum):
    UNAUTHORIZED = "unauthorized"
    INVALID_API_KEY = "invalid_api_key"


class AuthError(IdpError):
    code = "auth/unauthorized"
    status_code = 401
    message = "Authentication required"

    def __init__(self, kind: AuthErrorKind, reason: str = ""):
        super().__init__(reason or kind.value)
        self.kind = kind
        if kind is AuthErrorKind.INVALID_API_KEY:
            self.code = "auth/invalid-api-key"
            self.message = "Invalid API key"
