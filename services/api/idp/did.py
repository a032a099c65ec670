from typing import Any, Dict, Optional, Tuple

import base58
from jwcrypto import jwk

from idp.crypto import ED25519_MULTICODEC
from idp.settings import Settings
from idp.utils import b64url_decode

DID_CONTEXT = "https://www.w3.org/ns/did/v1"


def did_key_from_jwk(key: jwk.JWK) -> str:
    public = key.export(private_key=False, as_dict=True)
    if public.get("kty") != "OKP" or public.get("crv") != "Ed25519":
        raise ValueError("did:key generation supports Ed25519 keys only")
    raw = b64url_decode(public["x"])
    return "did:key:z" + base58.b58encode(ED25519_MULTICODEC + raw).decode()


def generate_did_key() -> Tuple[str, jwk.JWK, Dict[str, Any]]:
    """New Ed25519 did:key; returns the DID, its private JWK and its document."""
    signing = jwk.JWK.generate(kty="OKP", crv="Ed25519")
    did = did_key_from_jwk(signing)
    return did, signing, did_key_document(did)


def did_key_document(did: str) -> Dict[str, Any]:
    """Derive the document of a did:key; the DID itself is the key."""
    if not did.startswith("did:key:z"):
        raise ValueError(f"not a did:key: {did}")
    multibase = did[len("did:key:"):]
    method_id = f"{did}#{multibase}"
    return {
        "@context": [DID_CONTEXT],
        "id": did,
        "verificationMethod": [
            {
                "id": method_id,
                "type": "Ed25519VerificationKey2020",
                "controller": did,
                "publicKeyMultibase": multibase,
            }
        ],
        "authentication": [method_id],
        "assertionMethod": [method_id],
    }


def service_did_document(settings: Settings, signing_key: Optional[jwk.JWK] = None) -> Dict[str, Any]:
    did = settings.service_did
    doc: Dict[str, Any] = {
        "@context": [DID_CONTEXT],
        "id": did,
        "service": [
            {
                "id": f"{did}#api-registry",
                "type": "ApiRegistry",
                "serviceEndpoint": settings.base_url,
            }
        ],
        "verificationMethod": [],
        "authentication": [],
    }
    if signing_key is not None:
        method_id = f"{did}#{signing_key.get('kid')}"
        doc["verificationMethod"].append(
            {
                "id": method_id,
                "type": "JsonWebKey2020",
                "controller": did,
                "publicKeyJwk": signing_key.export(private_key=False, as_dict=True),
            }
        )
        doc["assertionMethod"] = [method_id]
    return doc
