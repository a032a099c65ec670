import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from idp import telemetry
from idp.did import service_did_document
from idp.errors import AuthError, AuthErrorKind, FeatureDisabled, IdpError, InvalidInput
from idp.models import AuthContext, AuthType
from idp.policy import Credentials
from idp.revocation import SqlRevocationSet
from idp.schemas import (
    ChallengeRequest,
    ChallengeResponse,
    ErrorResponse,
    MessageResponse,
    PrincipalResponse,
    StatusResponse,
    VerifyRequest,
    VerifyResponse,
    WhoAmIResponse,
)
from idp.services import IdentityServices, build_services
from idp.settings import Settings

logger = logging.getLogger(__name__)

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}

router = APIRouter(prefix="/auth", responses=ERROR_RESPONSES)


def get_services(request: Request) -> IdentityServices:
    return request.app.state.services


def require_did_auth(services: IdentityServices = Depends(get_services)):
    if not services.settings.enable_did_auth:
        raise FeatureDisabled("DID authentication disabled by configuration")


def get_credentials(
    authorization: Optional[str] = Header(None),
    x_api_key: Optional[str] = Header(None),
) -> Credentials:
    return Credentials.from_headers(authorization, x_api_key)


async def require_auth(
    credentials: Credentials = Depends(get_credentials),
    services: IdentityServices = Depends(get_services),
) -> AuthContext:
    return await services.policy.authenticate(credentials)


@router.post("/challenge", status_code=201, response_model=ChallengeResponse,
             dependencies=[Depends(require_did_auth)])
async def create_challenge(req: ChallengeRequest, services: IdentityServices = Depends(get_services)):
    challenge = await services.challenges.create_challenge(req.did.strip())
    return ChallengeResponse(
        challenge_id=challenge.id,
        nonce=challenge.nonce,
        did=challenge.subject_did,
        expires_at=challenge.expires_at,
        expires_in=challenge.expires_at - challenge.created_at,
    )


@router.post("/challenge/verify", response_model=VerifyResponse,
             dependencies=[Depends(require_did_auth)])
async def verify_challenge(req: VerifyRequest, services: IdentityServices = Depends(get_services)):
    principal, token = await services.challenges.verify_and_consume(
        req.challenge_id, req.response, services.tokens, scope=req.scope
    )
    return VerifyResponse(
        token=token.value,
        expires_in=token.expires_at - token.issued_at,
        scope=token.scope,
        principal=PrincipalResponse(
            did=principal.did,
            verification_method=principal.verification_method_id,
            verified_at=principal.verified_at,
        ),
    )


@router.get("/whoami", response_model=WhoAmIResponse)
@router.get("/user", response_model=WhoAmIResponse, include_in_schema=False)
async def whoami(context: AuthContext = Depends(require_auth)):
    return WhoAmIResponse(
        auth_type=context.auth_type,
        principal_id=context.principal_id,
        scope=context.scope,
    )


@router.post("/token/revoke", response_model=MessageResponse)
async def revoke_token(
    context: AuthContext = Depends(require_auth),
    credentials: Credentials = Depends(get_credentials),
    services: IdentityServices = Depends(get_services),
):
    if context.auth_type is not AuthType.DID:
        raise AuthError(AuthErrorKind.UNAUTHORIZED, "revocation requires a bearer token")
    await services.tokens.revoke(credentials.bearer_token)
    return MessageResponse(message="Token revoked successfully")


@router.get("/did")
def service_did(services: IdentityServices = Depends(get_services)):
    return JSONResponse(service_did_document(services.settings, services.tokens.active_key))


@router.get("/status", response_model=StatusResponse)
def auth_status(services: IdentityServices = Depends(get_services)):
    did_auth = services.settings.enable_did_auth
    return StatusResponse(
        service="auth-service",
        version="1.0.0",
        status="active",
        features={"apiKeyAuth": True, "didAuth": did_auth, "challengeResponse": did_auth},
        endpoints={
            "challenge": "/auth/challenge",
            "verify": "/auth/challenge/verify",
            "revoke": "/auth/token/revoke",
            "whoami": "/auth/whoami",
            "did": "/auth/did",
        },
    )


async def handle_idp_error(request: Request, exc: IdpError):
    log = logger.warning if exc.status_code >= 500 else logger.info
    log("%s %s -> %d %s (%s)", request.method, request.url.path, exc.status_code, exc.code, exc.reason)
    return JSONResponse(status_code=exc.status_code, content=exc.to_body())


async def handle_validation_error(request: Request, exc: RequestValidationError):
    error = InvalidInput("request body failed validation", {"errors": [
        {"loc": list(item.get("loc", ())), "msg": item.get("msg", "")} for item in exc.errors()
    ]})
    return await handle_idp_error(request, error)


def create_app(settings: Optional[Settings] = None, services: Optional[IdentityServices] = None) -> FastAPI:
    settings = settings or (services.settings if services else Settings())
    telemetry.setup_logging(settings)
    telemetry.setup_otel(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.services is None:
            app.state.services = build_services(settings)
        svc = app.state.services
        if not svc.started:
            await svc.startup()
        try:
            yield
        finally:
            await svc.shutdown()

    app = FastAPI(title="Identity Core HTTP v1", version="1.0.0", lifespan=lifespan)
    app.state.services = services
    origins = [origin.strip() for origin in settings.ui_cors_origins.split(",") if origin.strip()]
    if not origins:
        origins = ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(IdpError, handle_idp_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.include_router(router)

    @app.get("/healthz")
    def healthz(request: Request):
        svc = get_services(request)
        if isinstance(svc.revocations, SqlRevocationSet):
            svc.revocations.health_check()
        return {"ok": True, "ts": svc.clock.now()}

    @app.get("/readyz")
    def readyz(request: Request):
        svc = get_services(request)
        return {"ok": bool(svc and svc.started)}

    return app


app = create_app()
