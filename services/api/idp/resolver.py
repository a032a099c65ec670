"""Thin client over whatever answers ``resolve(did)`` for us.

Backends only fetch raw JSON. ``ResolverClient`` owns the policy around them:
time bound, bounded retry of transport failures, and schema validation of the
untrusted result.
"""

import asyncio
import copy
import json
import logging
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx
from opentelemetry import trace

from idp.crypto import ed25519_jwk_from_multibase
from idp.did import did_key_document
from idp.errors import ResolutionError, ResolutionErrorKind
from idp.models import DidDocument
from idp.utils import did_method, is_valid_did

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class StaticDidResolver:
    """In-process registry of known documents."""

    def __init__(self, documents: Optional[Dict[str, Dict[str, Any]]] = None):
        self._documents: Dict[str, Dict[str, Any]] = dict(documents or {})

    @classmethod
    def from_file(cls, path: str) -> "StaticDidResolver":
        with open(path, encoding="utf-8") as handle:
            payload = json.load(handle)
        if isinstance(payload, list):
            payload = {doc["id"]: doc for doc in payload}
        return cls(payload)

    def register(self, document: Dict[str, Any], did: Optional[str] = None):
        self._documents[did or document["id"]] = document

    async def fetch(self, did: str) -> Dict[str, Any]:
        if did not in self._documents:
            raise ResolutionError(ResolutionErrorKind.NOT_FOUND, f"{did} not registered")
        return copy.deepcopy(self._documents[did])


class DidKeyResolver:
    async def fetch(self, did: str) -> Dict[str, Any]:
        try:
            document = did_key_document(did)
            ed25519_jwk_from_multibase(did[len("did:key:"):])
        except ValueError as exc:
            raise ResolutionError(ResolutionErrorKind.MALFORMED, str(exc)) from exc
        return document


class HttpDidResolver:
    """Universal-Resolver style ``GET {base_url}/{did}``."""

    def __init__(self, base_url: str, client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient()

    async def fetch(self, did: str) -> Dict[str, Any]:
        url = f"{self.base_url}/{quote(did, safe=':')}"
        try:
            response = await self._client.get(
                url, headers={"Accept": "application/did+ld+json, application/json"}
            )
        except httpx.HTTPError as exc:
            raise ResolutionError(ResolutionErrorKind.UNREACHABLE, f"transport error: {exc}") from exc
        if response.status_code in (404, 410):
            raise ResolutionError(ResolutionErrorKind.NOT_FOUND, f"resolver returned {response.status_code}")
        if response.status_code == 429 or response.status_code >= 500:
            raise ResolutionError(ResolutionErrorKind.UNREACHABLE, f"resolver returned {response.status_code}")
        if response.status_code >= 400:
            raise ResolutionError(ResolutionErrorKind.NOT_FOUND, f"resolver returned {response.status_code}")
        try:
            body = response.json()
        except ValueError as exc:
            raise ResolutionError(ResolutionErrorKind.MALFORMED, "resolver returned non-JSON body") from exc
        if isinstance(body, dict) and "didDocument" in body:
            body = body["didDocument"]
        return body

    async def aclose(self):
        await self._client.aclose()


class MethodDispatchResolver:
    """Routes a DID to a backend by its method name."""

    def __init__(self, routes: Dict[str, Any], fallback=None):
        self.routes = dict(routes)
        self.fallback = fallback

    async def fetch(self, did: str) -> Dict[str, Any]:
        backend = self.routes.get(did_method(did), self.fallback)
        if backend is None:
            raise ResolutionError(ResolutionErrorKind.NOT_FOUND, f"no resolver for method {did_method(did)}")
        return await backend.fetch(did)

    async def aclose(self):
        seen = set()
        for backend in [*self.routes.values(), self.fallback]:
            if backend is None or id(backend) in seen:
                continue
            seen.add(id(backend))
            close = getattr(backend, "aclose", None)
            if close is not None:
                await close()


class ResolverClient:
    def __init__(self, backend, timeout: float = 5.0, retries: int = 2, backoff: float = 0.2):
        self.backend = backend
        self.timeout = timeout
        self.retries = retries
        self.backoff = backoff

    async def resolve(self, did: str) -> DidDocument:
        if not is_valid_did(did):
            raise ResolutionError(ResolutionErrorKind.MALFORMED, "not a DID")
        with tracer.start_as_current_span("did.resolve") as span:
            span.set_attribute("did.method", did_method(did))
            raw = await self._fetch_with_retry(did)
            return DidDocument.from_resolution(raw, did)

    async def _fetch_with_retry(self, did: str) -> Any:
        attempt = 0
        while True:
            try:
                return await asyncio.wait_for(self.backend.fetch(did), timeout=self.timeout)
            except asyncio.TimeoutError:
                error = ResolutionError(
                    ResolutionErrorKind.UNREACHABLE, f"resolution exceeded {self.timeout}s"
                )
            except ResolutionError as exc:
                if exc.kind is not ResolutionErrorKind.UNREACHABLE:
                    raise
                error = exc
            if attempt >= self.retries:
                raise error
            delay = self.backoff * (2 ** attempt)
            attempt += 1
            logger.warning(
                "resolver unreachable for %s (%s), retry %d/%d in %.2fs",
                did, error.reason, attempt, self.retries, delay,
            )
            await asyncio.sleep(delay)

    async def aclose(self):
        close = getattr(self.backend, "aclose", None)
        if close is not None:
            await close()


class FallbackResolver:
    """Asks each backend in turn until one knows the DID."""

    def __init__(self, backends):
        self.backends = [b for b in backends if b is not None]

    async def fetch(self, did: str) -> Dict[str, Any]:
        for backend in self.backends:
            try:
                return await backend.fetch(did)
            except ResolutionError as exc:
                if exc.kind is not ResolutionErrorKind.NOT_FOUND:
                    raise
        raise ResolutionError(ResolutionErrorKind.NOT_FOUND, f"{did} unknown to every resolver")

    async def aclose(self):
        for backend in self.backends:
            close = getattr(backend, "aclose", None)
            if close is not None:
                await close()


def build_resolver(settings) -> ResolverClient:
    if settings.did_documents_path:
        static = StaticDidResolver.from_file(settings.did_documents_path)
    else:
        static = StaticDidResolver()
    http = HttpDidResolver(settings.resolver_url) if settings.resolver_url else None
    backend = MethodDispatchResolver({"key": DidKeyResolver()}, fallback=FallbackResolver([static, http]))
    return ResolverClient(
        backend,
        timeout=settings.resolver_timeout_seconds,
        retries=settings.resolver_retries,
        backoff=settings.resolver_backoff_seconds,
    )
