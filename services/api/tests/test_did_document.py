import pytest
from jwcrypto import jwk

from idp.crypto import ed25519_jwk_from_multibase, jwk_from_verification_method
from idp.did import did_key_document, generate_did_key, service_did_document
from idp.errors import ResolutionError, ResolutionErrorKind
from idp.models import DidDocument
from idp.settings import Settings

from conftest import SUBJECT_DID, make_document


def test_relative_refs_are_expanded(holder_key):
    doc = DidDocument.from_resolution(make_document(SUBJECT_DID, {"key-1": holder_key}), SUBJECT_DID)
    assert doc.authentication_refs == {f"{SUBJECT_DID}#key-1"}
    assert [m.id for m in doc.authentication_methods()] == [f"{SUBJECT_DID}#key-1"]
    assert doc.services[0].id == f"{SUBJECT_DID}#inbox"
    assert doc.services[0].service_endpoint == "https://example.com/inbox"


def test_embedded_authentication_method(holder_key):
    raw = make_document(SUBJECT_DID, {"key-1": holder_key})
    raw["authentication"] = [dict(raw["verificationMethod"][0], id="#embedded")]
    doc = DidDocument.from_resolution(raw, SUBJECT_DID)
    assert doc.authentication_refs == {f"{SUBJECT_DID}#embedded"}
    assert doc.method(f"{SUBJECT_DID}#embedded") is not None


@pytest.mark.parametrize(
    "mutate",
    [
        lambda raw: raw.pop("authentication"),
        lambda raw: raw.update(authentication=[]),
        lambda raw: raw.update(id="did:example:someone-else"),
        lambda raw: raw.update(verificationMethod=[], authentication=["#key-1"]),
        lambda raw: raw.update(authentication=["#missing"]),
        lambda raw: raw["verificationMethod"][0].pop("publicKeyJwk"),
        lambda raw: raw.update(verificationMethod="nope"),
        lambda raw: raw.update(service=[42]),
    ],
)
def test_structurally_invalid_documents_are_malformed(holder_key, mutate):
    raw = make_document(SUBJECT_DID, {"key-1": holder_key})
    mutate(raw)
    with pytest.raises(ResolutionError) as exc:
        DidDocument.from_resolution(raw, SUBJECT_DID)
    assert exc.value.kind is ResolutionErrorKind.MALFORMED


def test_non_object_document_is_malformed():
    with pytest.raises(ResolutionError) as exc:
        DidDocument.from_resolution(["not", "a", "doc"], SUBJECT_DID)
    assert exc.value.kind is ResolutionErrorKind.MALFORMED


def test_public_jwk_strips_private_material(holder_key):
    raw = make_document(SUBJECT_DID, {"key-1": holder_key})
    raw["verificationMethod"][0]["publicKeyJwk"] = holder_key.export(private_key=True, as_dict=True)
    doc = DidDocument.from_resolution(raw, SUBJECT_DID)
    key = jwk_from_verification_method(doc.authentication_methods()[0])
    assert not key.has_private
    assert key.thumbprint() == holder_key.thumbprint()


def test_generated_did_key_round_trips():
    did, private_key, document = generate_did_key()
    assert did.startswith("did:key:z6Mk")
    assert document == did_key_document(did)

    doc = DidDocument.from_resolution(document, did)
    method = doc.authentication_methods()[0]
    assert method.public_key_multibase == did[len("did:key:"):]
    derived = jwk_from_verification_method(method)
    assert derived.thumbprint() == jwk.JWK.from_json(private_key.export_public()).thumbprint()


def test_multibase_rejects_non_ed25519():
    with pytest.raises(ValueError):
        ed25519_jwk_from_multibase("zQ3shokFTS3brHcDQrn82RUDfCZESWL1ZdCEJwekUDPQiYBme")
    with pytest.raises(ValueError):
        ed25519_jwk_from_multibase("uAAAA")


def test_service_did_document_lists_signing_key(signing_key):
    settings = Settings(service_did="did:web:idp.example", base_url="https://idp.example")
    doc = service_did_document(settings, signing_key)
    assert doc["id"] == "did:web:idp.example"
    assert doc["service"][0]["serviceEndpoint"] == "https://idp.example"
    assert doc["verificationMethod"][0]["id"] == "did:web:idp.example#signing-test"
    assert "d" not in doc["verificationMethod"][0]["publicKeyJwk"]
