from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from idp.errors import ResolutionError, ResolutionErrorKind


def _absolute(ref: str, did: str) -> str:
    if ref.startswith("#"):
        return f"{did}{ref}"
    return ref


class VerificationMethod(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")
    id: str
    type: str = ""
    controller: str = ""
    public_key_jwk: Optional[Dict[str, Any]] = Field(default=None, alias="publicKeyJwk")
    public_key_multibase: Optional[str] = Field(default=None, alias="publicKeyMultibase")

    @property
    def has_key_material(self) -> bool:
        return bool(self.public_key_jwk) or bool(self.public_key_multibase)


class ServiceEndpoint(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")
    id: str
    type: str = ""
    service_endpoint: Any = Field(default=None, alias="serviceEndpoint")


class DidDocument(BaseModel):
    model_config = ConfigDict(frozen=True)
    id: str
    verification_methods: Tuple[VerificationMethod, ...]
    authentication_refs: FrozenSet[str]
    services: Tuple[ServiceEndpoint, ...] = ()

    def authentication_methods(self) -> List[VerificationMethod]:
        return [m for m in self.verification_methods if m.id in self.authentication_refs]

    def method(self, method_id: str) -> Optional[VerificationMethod]:
        for candidate in self.verification_methods:
            if candidate.id == method_id:
                return candidate
        return None

    @classmethod
    def from_resolution(cls, raw: Any, requested_did: str) -> "DidDocument":
        """Schema-check a resolver payload before anything trusts it.

        Raises ``ResolutionError(MALFORMED)`` for every structural problem,
        whatever the transport said.
        """
        if not isinstance(raw, dict):
            raise ResolutionError(ResolutionErrorKind.MALFORMED, "document is not an object")
        if raw.get("id") != requested_did:
            raise ResolutionError(ResolutionErrorKind.MALFORMED, "document id does not match DID")

        raw_methods = raw.get("verificationMethod") or []
        raw_auth = raw.get("authentication")
        raw_services = raw.get("service") or []
        if not isinstance(raw_methods, list) or not isinstance(raw_services, list):
            raise ResolutionError(ResolutionErrorKind.MALFORMED, "unexpected document shape")
        if not isinstance(raw_auth, list) or not raw_auth:
            raise ResolutionError(ResolutionErrorKind.MALFORMED, "authentication is missing or empty")

        methods: List[VerificationMethod] = []
        refs = set()
        try:
            for entry in raw_methods:
                methods.append(_parse_method(entry, requested_did))
            for entry in raw_auth:
                if isinstance(entry, str):
                    refs.add(_absolute(entry, requested_did))
                else:
                    embedded = _parse_method(entry, requested_did)
                    methods.append(embedded)
                    refs.add(embedded.id)
            services = tuple(
                ServiceEndpoint.model_validate({**entry, "id": _absolute(entry.get("id", ""), requested_did)})
                for entry in raw_services
            )
        except (ValidationError, AttributeError, TypeError) as exc:
            raise ResolutionError(ResolutionErrorKind.MALFORMED, f"invalid entry: {exc}") from exc

        if not methods:
            raise ResolutionError(ResolutionErrorKind.MALFORMED, "no verification methods")
        known = {m.id: m for m in methods}
        for ref in refs:
            if ref not in known:
                raise ResolutionError(ResolutionErrorKind.MALFORMED, f"dangling authentication ref {ref}")
            if not known[ref].has_key_material:
                raise ResolutionError(ResolutionErrorKind.MALFORMED, f"no key material for {ref}")

        return cls(
            id=requested_did,
            verification_methods=tuple(methods),
            authentication_refs=frozenset(refs),
            services=services,
        )


def _parse_method(entry: Any, did: str) -> VerificationMethod:
    if not isinstance(entry, dict) or not isinstance(entry.get("id"), str):
        raise TypeError("verification method must be an object with an id")
    return VerificationMethod.model_validate({**entry, "id": _absolute(entry["id"], did)})


class ChallengeState(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    EXPIRED = "expired"
    CONSUMED = "consumed"


class Challenge(BaseModel):
    id: str
    nonce: str
    subject_did: str
    created_at: int
    expires_at: int
    state: ChallengeState = ChallengeState.PENDING

    def is_expired(self, now: int) -> bool:
        return now > self.expires_at


class VerifiedPrincipal(BaseModel):
    model_config = ConfigDict(frozen=True)
    did: str
    verified_at: int
    verification_method_id: str
    challenge_id: Optional[str] = None


class Token(BaseModel):
    model_config = ConfigDict(frozen=True)
    id: str
    subject_did: str
    issuer: str
    issued_at: int
    expires_at: int
    scope: str
    value: str


class AuthType(str, Enum):
    API_KEY = "api_key"
    DID = "did"


class AuthContext(BaseModel):
    auth_type: AuthType
    principal_id: str
    scope: Optional[str] = None
    token_id: Optional[str] = None
