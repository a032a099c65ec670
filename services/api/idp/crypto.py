import json
import logging
import os
from typing import Dict, Iterable, List, Optional, Tuple

import base58
from jwcrypto import jwk, jws
from jwcrypto.common import JWException

from idp.models import VerificationMethod
from idp.settings import Settings
from idp.utils import b64url

logger = logging.getLogger(__name__)

ED25519_MULTICODEC = b"\xed\x01"
# Challenge responses must be signed with a DID key; symmetric algorithms are
# never accepted because the verifier only holds public material.
ASYMMETRIC_ALGS = ["EdDSA", "ES256", "ES256K", "ES384", "ES512", "RS256", "PS256"]
_CURVE_ALGS = {"P-256": "ES256", "P-384": "ES384", "P-521": "ES512", "secp256k1": "ES256K", "Ed25519": "EdDSA"}


class SigningKeyStore:
    """File-backed JWK store holding the token service's signing keys."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.store_dir = settings.key_store_dir

    def _path(self, kid: str) -> str:
        return os.path.join(self.store_dir, f"{kid}.json")

    def gen_keypair(self, kid: str) -> jwk.JWK:
        return jwk.JWK.generate(kty="EC", crv=self.settings.jwk_curve, kid=kid)

    def save_key(self, key: jwk.JWK):
        os.makedirs(self.store_dir, exist_ok=True)
        with open(self._path(key.get("kid")), "w", encoding="utf-8") as handle:
            handle.write(key.export(private_key=True))

    def load_key(self, kid: str) -> jwk.JWK:
        with open(self._path(kid), encoding="utf-8") as handle:
            return jwk.JWK.from_json(handle.read())

    def load_or_create(self, kid: str) -> jwk.JWK:
        try:
            return self.load_key(kid)
        except FileNotFoundError:
            key = self.gen_keypair(kid)
            self.save_key(key)
            logger.info("generated token signing key kid=%s", kid)
            return key

    def load_signing_keys(self) -> List[jwk.JWK]:
        """Active key first, then whichever previous keys are still on disk."""
        keys = [self.load_or_create(self.settings.token_signing_kid)]
        for kid in self.settings.token_previous_kids:
            try:
                keys.append(self.load_key(kid))
            except FileNotFoundError:
                logger.warning("previous signing key kid=%s not found, skipping", kid)
        return keys[: max(1, self.settings.max_verification_keys)]


def alg_for_key(key: jwk.JWK) -> str:
    params = key.export(private_key=False, as_dict=True)
    if params["kty"] == "RSA":
        return "PS256"
    return _CURVE_ALGS[params["crv"]]


def ed25519_jwk_from_multibase(value: str) -> jwk.JWK:
    if not value.startswith("z"):
        raise ValueError("only base58btc multibase keys are supported")
    raw = base58.b58decode(value[1:])
    if raw[:2] != ED25519_MULTICODEC or len(raw) != 34:
        raise ValueError("not an Ed25519 multicodec public key")
    return jwk.JWK(kty="OKP", crv="Ed25519", x=b64url(raw[2:]))


def jwk_from_verification_method(method: VerificationMethod) -> Optional[jwk.JWK]:
    try:
        if method.public_key_jwk:
            key = jwk.JWK(**method.public_key_jwk)
            if key.has_private:
                key = jwk.JWK.from_json(key.export_public())
            return key
        if method.public_key_multibase:
            return ed25519_jwk_from_multibase(method.public_key_multibase)
    except (JWException, ValueError, TypeError, KeyError) as exc:
        logger.warning("unusable key material on %s: %s", method.id, exc)
    return None


def _load_jws(compact: str, allowed_algs: List[str]) -> jws.JWS:
    token = jws.JWS()
    token.allowed_algs = allowed_algs
    token.deserialize(compact)
    return token


def verify_nonce_signature(
    response, nonce: bytes, candidates: Iterable[Tuple[str, jwk.JWK]]
) -> Tuple[Optional[str], str]:
    """Check a compact JWS whose payload must be exactly ``nonce``.

    Returns ``(method_id, "ok")`` for the first candidate key that verifies,
    otherwise ``(None, reason)``. The reason is for server logs only.
    """
    if isinstance(response, bytes):
        try:
            response = response.decode("ascii")
        except UnicodeDecodeError:
            return None, "response is not ascii"
    if not isinstance(response, str) or not response:
        return None, "empty response"
    try:
        kid = _load_jws(response, ASYMMETRIC_ALGS).jose_header.get("kid")
    except (JWException, ValueError) as exc:
        return None, f"undecodable response: {exc}"

    ordered = sorted(candidates, key=lambda item: item[0] != kid)
    for method_id, key in ordered:
        token = _load_jws(response, ASYMMETRIC_ALGS)
        try:
            token.verify(key)
        except JWException:
            continue
        if token.payload != nonce:
            return None, f"signed payload does not match nonce (method {method_id})"
        return method_id, "ok"
    return None, f"no authentication key verified the response ({len(ordered)} tried)"


def sign_nonce(nonce: str, key: jwk.JWK, kid: Optional[str] = None) -> str:
    """Client-side helper: answer a challenge with ``key``."""
    header: Dict[str, str] = {"alg": alg_for_key(key)}
    if kid:
        header["kid"] = kid
    token = jws.JWS(nonce.encode())
    token.add_signature(key, None, json.dumps(header))
    return token.serialize(compact=True)


def sign_claims(claims: dict, key: jwk.JWK) -> str:
    token = jws.JWS(json.dumps(claims, sort_keys=True).encode())
    header = {"alg": alg_for_key(key), "kid": key.get("kid"), "typ": "JWT"}
    token.add_signature(key, None, json.dumps(header))
    return token.serialize(compact=True)


def verify_claims(compact: str, keys: List[jwk.JWK]) -> Optional[dict]:
    """Return the claims of a token signed by any of ``keys``, else None."""
    allowed = sorted({alg_for_key(k) for k in keys})
    try:
        kid = _load_jws(compact, allowed).jose_header.get("kid")
    except (JWException, ValueError):
        return None
    for key in sorted(keys, key=lambda k: k.get("kid") != kid):
        token = _load_jws(compact, allowed)
        try:
            token.verify(key)
        except JWException:
            continue
        try:
            claims = json.loads(token.payload)
        except ValueError:
            return None
        return claims if isinstance(claims, dict) else None
    return None
