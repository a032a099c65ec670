from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from idp.models import AuthType


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ChallengeRequest(_CamelModel):
    did: str


class ChallengeResponse(_CamelModel):
    challenge_id: str = Field(alias="challengeId")
    nonce: str
    did: str
    expires_at: int = Field(alias="expiresAt")
    expires_in: int = Field(alias="expiresIn")


class VerifyRequest(_CamelModel):
    challenge_id: str = Field(alias="challengeId", min_length=1)
    response: str = Field(min_length=1)
    scope: Optional[str] = None


class PrincipalResponse(_CamelModel):
    did: str
    verification_method: str = Field(alias="verificationMethod")
    verified_at: int = Field(alias="verifiedAt")


class VerifyResponse(_CamelModel):
    token: str
    token_type: str = Field(default="Bearer", alias="tokenType")
    expires_in: int = Field(alias="expiresIn")
    scope: str
    principal: PrincipalResponse


class WhoAmIResponse(_CamelModel):
    authenticated: bool = True
    auth_type: AuthType = Field(alias="authType")
    principal_id: str = Field(alias="principalId")
    scope: Optional[str] = None


class MessageResponse(BaseModel):
    message: str


class StatusResponse(BaseModel):
    service: str
    version: str
    status: str
    features: Dict[str, bool]
    endpoints: Dict[str, str]


class ErrorBody(BaseModel):
    code: str
    message: str
    details: Dict[str, Any] = {}


class ErrorResponse(BaseModel):
    error: ErrorBody
