import json
from pathlib import Path
import sys

import pytest
from jwcrypto import jwk

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

from idp.clock import FixedClock
from idp.resolver import DidKeyResolver, MethodDispatchResolver, ResolverClient, StaticDidResolver
from idp.revocation import MemoryRevocationSet
from idp.services import build_services
from idp.settings import Settings

SUBJECT_DID = "did:example:abc"
API_KEY = "test-key-123"


def make_document(did, keys, auth=None):
    """DID document with one JsonWebKey2020 method per ``keys`` fragment."""
    methods = [
        {
            "id": f"{did}#{fragment}",
            "type": "JsonWebKey2020",
            "controller": did,
            "publicKeyJwk": json.loads(key.export_public()),
        }
        for fragment, key in keys.items()
    ]
    auth = list(keys) if auth is None else auth
    return {
        "@context": ["https://www.w3.org/ns/did/v1"],
        "id": did,
        "verificationMethod": methods,
        "authentication": [f"#{fragment}" for fragment in auth],
        "service": [{"id": "#inbox", "type": "Inbox", "serviceEndpoint": "https://example.com/inbox"}],
    }


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def holder_key():
    return jwk.JWK.generate(kty="EC", crv="P-256")


@pytest.fixture
def other_key():
    return jwk.JWK.generate(kty="EC", crv="P-256")


@pytest.fixture
def static_resolver(holder_key, other_key):
    registry = StaticDidResolver()
    registry.register(make_document(SUBJECT_DID, {"key-1": holder_key, "key-2": other_key}, auth=["key-1"]))
    return registry


@pytest.fixture
def resolver(static_resolver):
    backend = MethodDispatchResolver({"key": DidKeyResolver()}, fallback=static_resolver)
    return ResolverClient(backend, timeout=1.0, retries=0, backoff=0)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        api_keys=[API_KEY],
        key_store_dir=str(tmp_path / "keys"),
        revocation_backend="memory",
        otlp_endpoint="",
    )


@pytest.fixture
def signing_key():
    return jwk.JWK.generate(kty="EC", crv="P-256", kid="signing-test")


@pytest.fixture
def services(settings, clock, resolver, signing_key):
    return build_services(
        settings,
        clock=clock,
        resolver=resolver,
        revocations=MemoryRevocationSet(),
        signing_keys=[signing_key],
    )


@pytest.fixture
async def core(services):
    await services.startup(run_sweeper=False)
    yield services
    await services.shutdown()
