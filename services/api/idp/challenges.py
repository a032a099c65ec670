import asyncio
import logging
import os
import uuid
from typing import Dict, List, Optional, Tuple

from opentelemetry import trace

from idp.crypto import jwk_from_verification_method, verify_nonce_signature
from idp.errors import (
    InvalidInput,
    ResolutionError,
    ResolutionErrorKind,
    VerificationError,
    VerificationErrorKind,
)
from idp.models import Challenge, ChallengeState, Token, VerifiedPrincipal
from idp.utils import StripedLocks, b64url, is_valid_did

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

NONCE_BYTES = 32

_RESOLUTION_TO_VERIFICATION = {
    ResolutionErrorKind.MALFORMED: VerificationErrorKind.MALFORMED,
    # a DID nobody can resolve cannot prove control of anything
    ResolutionErrorKind.NOT_FOUND: VerificationErrorKind.SIGNATURE_INVALID,
    ResolutionErrorKind.UNREACHABLE: VerificationErrorKind.UNREACHABLE,
}


class ChallengeStore:
    """In-memory challenge table guarded by per-key striped locks."""

    def __init__(self, stripes: int = 64):
        self._entries: Dict[str, Challenge] = {}
        self._locks = StripedLocks(stripes)

    def lock(self, challenge_id: str) -> asyncio.Lock:
        return self._locks.for_key(challenge_id)

    def get(self, challenge_id: str) -> Optional[Challenge]:
        return self._entries.get(challenge_id)

    def put(self, challenge: Challenge):
        self._entries[challenge.id] = challenge

    def evict(self, challenge_id: str):
        self._entries.pop(challenge_id, None)

    def ids(self) -> List[str]:
        return list(self._entries)

    def __len__(self):
        return len(self._entries)

    async def init(self):
        self._entries.clear()

    async def teardown(self):
        self._entries.clear()


class ChallengeManager:
    def __init__(
        self,
        store: ChallengeStore,
        resolver,
        clock,
        ttl_seconds: int = 300,
        retention_seconds: int = 600,
        batch_size: int = 256,
    ):
        self.store = store
        self.resolver = resolver
        self.clock = clock
        self.ttl_seconds = ttl_seconds
        self.retention_seconds = retention_seconds
        self.batch_size = batch_size

    async def create_challenge(self, subject_did: str) -> Challenge:
        if not subject_did:
            raise InvalidInput("did is required", {"field": "did"})
        if not is_valid_did(subject_did):
            raise InvalidInput("did is malformed", {"field": "did"})
        now = self.clock.now()
        challenge = Challenge(
            id=str(uuid.uuid4()),
            nonce=b64url(os.urandom(NONCE_BYTES)),
            subject_did=subject_did,
            created_at=now,
            expires_at=now + self.ttl_seconds,
        )
        self.store.put(challenge)
        logger.info("challenge created id=%s did=%s", challenge.id, subject_did)
        return challenge

    def _check_pending(self, challenge_id: str) -> Challenge:
        """Must be called with the challenge's lock held."""
        challenge = self.store.get(challenge_id)
        if challenge is None:
            raise VerificationError(VerificationErrorKind.NOT_FOUND, f"unknown challenge {challenge_id}")
        if challenge.state in (ChallengeState.VERIFIED, ChallengeState.CONSUMED):
            raise VerificationError(VerificationErrorKind.ALREADY_CONSUMED, f"challenge is {challenge.state.value}")
        if challenge.state is ChallengeState.EXPIRED:
            raise VerificationError(VerificationErrorKind.EXPIRED, "challenge expired")
        if challenge.is_expired(self.clock.now()):
            challenge.state = ChallengeState.EXPIRED
            raise VerificationError(VerificationErrorKind.EXPIRED, "challenge expired")
        return challenge

    async def verify_challenge(self, challenge_id: str, signed_response) -> VerifiedPrincipal:
        with tracer.start_as_current_span("challenge.verify") as span:
            span.set_attribute("challenge.id", challenge_id)
            try:
                return await self._verify(challenge_id, signed_response)
            except VerificationError as exc:
                span.set_attribute("challenge.failure", exc.kind.value)
                logger.warning(
                    "challenge verification failed id=%s kind=%s reason=%s",
                    challenge_id, exc.kind.value, exc.reason,
                )
                raise

    async def _verify(self, challenge_id: str, signed_response) -> VerifiedPrincipal:
        async with self.store.lock(challenge_id):
            challenge = self._check_pending(challenge_id)
            subject_did = challenge.subject_did
            nonce = challenge.nonce.encode()

        # Nothing is mutated while the resolver call is in flight, so a
        # cancelled verification leaves the challenge Pending.
        try:
            document = await self.resolver.resolve(subject_did)
        except ResolutionError as exc:
            raise VerificationError(
                _RESOLUTION_TO_VERIFICATION[exc.kind], f"resolution {exc.kind.value}: {exc.reason}"
            ) from exc

        candidates = []
        for method in document.authentication_methods():
            key = jwk_from_verification_method(method)
            if key is not None:
                candidates.append((method.id, key))
        method_id, reason = verify_nonce_signature(signed_response, nonce, candidates)
        if method_id is None:
            raise VerificationError(VerificationErrorKind.SIGNATURE_INVALID, reason)

        async with self.store.lock(challenge_id):
            challenge = self._check_pending(challenge_id)
            challenge.state = ChallengeState.VERIFIED
            verified_at = self.clock.now()

        logger.info("challenge verified id=%s did=%s method=%s", challenge_id, subject_did, method_id)
        return VerifiedPrincipal(
            did=subject_did,
            verified_at=verified_at,
            verification_method_id=method_id,
            challenge_id=challenge_id,
        )

    async def consume(self, challenge_id: str) -> Challenge:
        async with self.store.lock(challenge_id):
            challenge = self.store.get(challenge_id)
            if challenge is None:
                raise VerificationError(VerificationErrorKind.NOT_FOUND, f"unknown challenge {challenge_id}")
            if challenge.state is ChallengeState.CONSUMED:
                raise VerificationError(VerificationErrorKind.ALREADY_CONSUMED, "challenge already consumed")
            if challenge.state is ChallengeState.EXPIRED:
                raise VerificationError(VerificationErrorKind.EXPIRED, "challenge expired")
            if challenge.state is ChallengeState.PENDING:
                raise VerificationError(VerificationErrorKind.SIGNATURE_INVALID, "challenge was never verified")
            challenge.state = ChallengeState.CONSUMED
        logger.debug("challenge consumed id=%s", challenge_id)
        return challenge

    async def verify_and_consume(
        self, challenge_id: str, signed_response, token_service, scope: Optional[str] = None
    ) -> Tuple[VerifiedPrincipal, Token]:
        principal = await self.verify_challenge(challenge_id, signed_response)
        token = await token_service.issue(principal, scope=scope)
        return principal, token

    async def sweep(self, now: Optional[int] = None) -> Tuple[int, int]:
        """Expire stale Pending challenges and evict ones past retention.

        Works through the table in batches and yields to the event loop in
        between, holding at most one stripe lock at a time.
        """
        now = self.clock.now() if now is None else now
        expired = evicted = 0
        ids = self.store.ids()
        for start in range(0, len(ids), self.batch_size):
            for challenge_id in ids[start:start + self.batch_size]:
                async with self.store.lock(challenge_id):
                    challenge = self.store.get(challenge_id)
                    if challenge is None:
                        continue
                    if now > challenge.expires_at + self.retention_seconds:
                        self.store.evict(challenge_id)
                        evicted += 1
                    elif challenge.state is ChallengeState.PENDING and challenge.is_expired(now):
                        challenge.state = ChallengeState.EXPIRED
                        expired += 1
            await asyncio.sleep(0)
        if expired or evicted:
            logger.info("challenge sweep expired=%d evicted=%d remaining=%d", expired, evicted, len(self.store))
        return expired, evicted
