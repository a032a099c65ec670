import asyncio
import base64
import hashlib
import re
from typing import List

DID_PATTERN = re.compile(r"^did:[a-z0-9]+:[A-Za-z0-9._:%\-]+(#[^\s]*)?$")


def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode().rstrip("=")


def b64url_decode(value: str) -> bytes:
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(value + padding)


def is_valid_did(value) -> bool:
    if not isinstance(value, str) or not value or "#" in value:
        return False
    return bool(DID_PATTERN.match(value))


def did_method(did: str) -> str:
    return did.split(":", 2)[1]


def fingerprint(secret: str, length: int = 12) -> str:
    return hashlib.sha256(secret.encode()).hexdigest()[:length]


class StripedLocks:
    """Fixed pool of asyncio locks addressed by key hash.

    Unrelated keys only contend when they land on the same stripe, so no
    operation ever serializes the whole store.
    """

    def __init__(self, stripes: int = 64):
        if stripes < 1:
            raise ValueError("stripes must be >= 1")
        self._locks: List[asyncio.Lock] = [asyncio.Lock() for _ in range(stripes)]

    def for_key(self, key: str) -> asyncio.Lock:
        digest = hashlib.blake2b(key.encode(), digest_size=8).digest()
        return self._locks[int.from_bytes(digest, "big") % len(self._locks)]
