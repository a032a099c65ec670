import logging
from typing import List, Optional

from jwcrypto import jwk

from idp.challenges import ChallengeManager, ChallengeStore
from idp.clock import SystemClock
from idp.crypto import SigningKeyStore
from idp.policy import ApiKeySet, AuthenticationPolicy
from idp.resolver import ResolverClient, build_resolver
from idp.revocation import build_revocation_set
from idp.settings import Settings
from idp.sweeper import PeriodicSweeper
from idp.tokens import TokenService

logger = logging.getLogger(__name__)


class IdentityServices:
    """Owns every piece of mutable state the identity core needs.

    Nothing here is a module-level singleton; the HTTP app and the tests each
    build their own instance and drive ``startup``/``shutdown`` explicitly.
    """

    def __init__(self, settings, clock, api_keys, resolver, challenge_store, challenges,
                 revocations, tokens, policy, sweeper, key_store=None):
        self.settings = settings
        self.clock = clock
        self.api_keys = api_keys
        self.resolver = resolver
        self.challenge_store = challenge_store
        self.challenges = challenges
        self.revocations = revocations
        self.tokens = tokens
        self.policy = policy
        self.sweeper = sweeper
        self.key_store = key_store
        self.started = False

    async def startup(self, run_sweeper: bool = True):
        await self.api_keys.init()
        await self.challenge_store.init()
        await self.revocations.init()
        if run_sweeper:
            self.sweeper.start()
        self.started = True
        logger.info(
            "identity core started: revocation=%s did_auth=%s api_keys=%d",
            self.settings.revocation_backend, self.settings.enable_did_auth, len(self.api_keys),
        )

    async def shutdown(self):
        await self.sweeper.stop()
        await self.revocations.teardown()
        await self.challenge_store.teardown()
        await self.api_keys.teardown()
        await self.resolver.aclose()
        self.started = False
        logger.info("identity core stopped")


def build_services(
    settings: Optional[Settings] = None,
    clock=None,
    resolver: Optional[ResolverClient] = None,
    revocations=None,
    signing_keys: Optional[List[jwk.JWK]] = None,
) -> IdentityServices:
    settings = settings or Settings()
    clock = clock or SystemClock()
    resolver = resolver or build_resolver(settings)
    revocations = revocations or build_revocation_set(settings)
    key_store = None
    if signing_keys is None:
        key_store = SigningKeyStore(settings)
        signing_keys = key_store.load_signing_keys()

    api_keys = ApiKeySet(settings.api_keys)
    challenge_store = ChallengeStore(stripes=settings.lock_stripes)
    challenges = ChallengeManager(
        challenge_store,
        resolver,
        clock,
        ttl_seconds=settings.challenge_ttl_seconds,
        retention_seconds=settings.challenge_retention_seconds,
        batch_size=settings.sweep_batch_size,
    )
    tokens = TokenService(
        signing_keys,
        revocations,
        clock,
        ttl_seconds=settings.token_ttl_seconds,
        issuer=settings.token_issuer,
        default_scope=settings.token_default_scope,
        challenges=challenges,
        max_keys=settings.max_verification_keys,
    )
    policy = AuthenticationPolicy(api_keys, tokens)

    async def sweep_challenges():
        return await challenges.sweep()

    async def prune_revocations():
        removed = await revocations.prune(clock.now())
        if removed:
            logger.info("pruned %d revocation entries for expired tokens", removed)
        return removed

    sweeper = PeriodicSweeper(settings.sweep_interval_seconds, [sweep_challenges, prune_revocations])
    return IdentityServices(
        settings, clock, api_keys, resolver, challenge_store, challenges,
        revocations, tokens, policy, sweeper, key_store=key_store,
    )
