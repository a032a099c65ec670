import os
from typing import List

from pydantic import BaseModel


def _split(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseModel):
    env: str = os.getenv("ENV", "dev")
    api_keys: List[str] = _split(os.getenv("API_KEYS", ""))
    enable_did_auth: bool = os.getenv("ENABLE_DID_AUTH", "true").lower() == "true"
    service_did: str = os.getenv("SERVICE_DID", "did:web:api-registry")
    base_url: str = os.getenv("BASE_URL", "http://localhost:3005")

    challenge_ttl_seconds: int = int(os.getenv("CHALLENGE_TTL_SECONDS", "300"))
    challenge_retention_seconds: int = int(os.getenv("CHALLENGE_RETENTION_SECONDS", "600"))

    token_ttl_seconds: int = int(os.getenv("TOKEN_TTL_SECONDS", "3600"))
    token_issuer: str = os.getenv("TOKEN_ISSUER", os.getenv("SERVICE_DID", "did:web:api-registry"))
    token_default_scope: str = os.getenv("TOKEN_DEFAULT_SCOPE", "api:read")
    key_store_dir: str = os.getenv("KEY_STORE_DIR", "/app/keys")
    token_signing_kid: str = os.getenv("TOKEN_SIGNING_KID", "token-signing-1")
    token_previous_kids: List[str] = _split(os.getenv("TOKEN_PREVIOUS_KIDS", ""))
    jwk_curve: str = os.getenv("JWK_CURVE", "P-256")
    max_verification_keys: int = int(os.getenv("MAX_VERIFICATION_KEYS", "3"))

    resolver_url: str = os.getenv("RESOLVER_URL", "")
    resolver_timeout_seconds: float = float(os.getenv("RESOLVER_TIMEOUT_SECONDS", "5"))
    resolver_retries: int = int(os.getenv("RESOLVER_RETRIES", "2"))
    resolver_backoff_seconds: float = float(os.getenv("RESOLVER_BACKOFF_SECONDS", "0.2"))
    did_documents_path: str = os.getenv("DID_DOCUMENTS_PATH", "")

    revocation_backend: str = os.getenv("REVOCATION_BACKEND", "memory")
    db_dsn: str = os.getenv("DB_DSN", "postgresql+psycopg2://idp:idp@db:5432/idp")
    redis_url: str = os.getenv("REDIS_URL", "redis://redis:6379/0")

    sweep_interval_seconds: float = float(os.getenv("SWEEP_INTERVAL_SECONDS", "60"))
    sweep_batch_size: int = int(os.getenv("SWEEP_BATCH_SIZE", "256"))
    lock_stripes: int = int(os.getenv("LOCK_STRIPES", "64"))

    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    otlp_endpoint: str = os.getenv("OTLP_ENDPOINT", "")
    ui_cors_origins: str = os.getenv("UI_CORS_ORIGINS", "*")
