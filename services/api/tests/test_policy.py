import pytest

from idp.crypto import sign_nonce
from idp.errors import AuthError, AuthErrorKind
from idp.models import AuthType
from idp.policy import ApiKeySet, Credentials
from idp.utils import fingerprint

from conftest import API_KEY, SUBJECT_DID


async def mint(core, holder_key):
    challenge = await core.challenges.create_challenge(SUBJECT_DID)
    response = sign_nonce(challenge.nonce, holder_key, kid=f"{SUBJECT_DID}#key-1")
    _, token = await core.challenges.verify_and_consume(challenge.id, response, core.tokens)
    return token


async def expect_auth_error(kind, coro):
    with pytest.raises(AuthError) as exc:
        await coro
    assert exc.value.kind is kind
    return exc.value


def test_credentials_from_headers():
    creds = Credentials.from_headers("Bearer abc.def.ghi", " key ")
    assert creds.bearer_token == "abc.def.ghi"
    assert creds.api_key == "key"
    assert Credentials.from_headers("Basic Zm9vOmJhcg==", None).bearer_token is None
    assert Credentials.from_headers("bearer   ", "").bearer_token is None
    assert Credentials.from_headers(None, None) == Credentials()


def test_api_key_set_membership():
    keys = ApiKeySet(["one", "", "two"])
    assert "one" in keys
    assert "two" in keys
    assert "three" not in keys
    assert len(keys) == 2


async def test_api_key_authenticates(core):
    context = await core.policy.authenticate(Credentials(api_key=API_KEY))
    assert context.auth_type is AuthType.API_KEY
    assert context.principal_id == f"apikey:{fingerprint(API_KEY)}"
    assert API_KEY not in context.principal_id


async def test_unknown_api_key(core):
    error = await expect_auth_error(
        AuthErrorKind.INVALID_API_KEY, core.policy.authenticate(Credentials(api_key="nope"))
    )
    assert error.code == "auth/invalid-api-key"


async def test_missing_credentials(core):
    error = await expect_auth_error(AuthErrorKind.UNAUTHORIZED, core.policy.authenticate(Credentials()))
    assert error.code == "auth/unauthorized"


async def test_bearer_authenticates(core, holder_key):
    token = await mint(core, holder_key)
    context = await core.policy.authenticate(Credentials(bearer_token=token.value))
    assert context.auth_type is AuthType.DID
    assert context.principal_id == SUBJECT_DID
    assert context.token_id == token.id
    assert context.scope == "api:read"


async def test_bearer_wins_over_api_key(core, holder_key):
    token = await mint(core, holder_key)
    context = await core.policy.authenticate(Credentials(bearer_token=token.value, api_key="nope"))
    assert context.auth_type is AuthType.DID


async def test_bad_bearer_is_not_rescued_by_api_key(core):
    error = await expect_auth_error(
        AuthErrorKind.UNAUTHORIZED,
        core.policy.authenticate(Credentials(bearer_token="forged", api_key=API_KEY)),
    )
    assert "malformed" in error.reason


async def test_revoked_bearer_keeps_reason_private(core, holder_key):
    token = await mint(core, holder_key)
    await core.tokens.revoke(token)
    error = await expect_auth_error(
        AuthErrorKind.UNAUTHORIZED, core.policy.authenticate(Credentials(bearer_token=token.value))
    )
    assert "revoked" in error.reason
    assert error.to_body()["error"] == {
        "code": "auth/unauthorized",
        "message": "Authentication required",
        "details": {},
    }


async def test_expired_bearer(core, holder_key, clock):
    token = await mint(core, holder_key)
    clock.set(token.expires_at + 1)
    error = await expect_auth_error(
        AuthErrorKind.UNAUTHORIZED, core.policy.authenticate(Credentials(bearer_token=token.value))
    )
    assert "expired" in error.reason
