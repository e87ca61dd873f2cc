import logging
import os
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()

DATA_DIR = Path(__file__).resolve().parents[1] / "data"


class Settings(BaseModel):
    env: str = os.getenv("ENV", "dev")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # Database
    database_url: str = os.getenv("DATABASE_URL", f"sqlite:///{DATA_DIR / 'notepipe.db'}")

    # ASR (AssemblyAI)
    assemblyai_key: str | None = os.getenv("ASSEMBLYAI_API_KEY")
    assemblyai_base_url: str = os.getenv("ASSEMBLYAI_BASE_URL", "https://api.assemblyai.com/v2")
    webhook_base_url: str = os.getenv("BASE_WEBHOOK_URL", "http://localhost:8000")
    webhook_header_name: str = os.getenv("ASSEMBLYAI_WEBHOOK_HEADER", "x-webhook-secret")
    webhook_secret: str = os.getenv("ASSEMBLYAI_WEBHOOK_SECRET", "")

    # LLM
    llm_key: str | None = os.getenv("LLM_API_KEY", os.getenv("OPENAI_API_KEY"))
    llm_model: str = os.getenv("LLM_MODEL", "gpt-4o-mini")
    summary_chunk_chars: int = int(os.getenv("SUMMARY_CHUNK_CHARS", "10000"))

    # Object storage (S3 / B2 compatible)
    s3_endpoint: str | None = os.getenv("S3_ENDPOINT")
    s3_region: str = os.getenv("S3_REGION", "us-west-004")
    aws_access_key_id: str | None = os.getenv("AWS_ACCESS_KEY_ID")
    aws_secret_access_key: str | None = os.getenv("AWS_SECRET_ACCESS_KEY")
    recordings_bucket: str = os.getenv("RECORDINGS_BUCKET", "recordings")
    exports_bucket: str = os.getenv("EXPORTS_BUCKET", "exports")
    signed_url_ttl: int = int(os.getenv("SIGNED_URL_TTL", "3600"))

    # Queue / worker (Hatchet reads its own HATCHET_CLIENT_* variables)
    queue_concurrency: int = int(os.getenv("QUEUE_CONCURRENCY", "5"))
    queue_max_attempts: int = int(os.getenv("QUEUE_MAX_ATTEMPTS", "3"))
    queue_backoff_factor: float = float(os.getenv("QUEUE_BACKOFF_FACTOR", "2"))
    queue_backoff_max_seconds: int = int(os.getenv("QUEUE_BACKOFF_MAX_SECONDS", "60"))
    queue_execution_timeout: int = int(os.getenv("QUEUE_EXECUTION_TIMEOUT", "900"))

    # Pipeline
    failure_reason_max_len: int = int(os.getenv("FAILURE_REASON_MAX_LEN", "500"))
    # Titles containing this substring fail start_transcription on purpose ("" disables)
    failure_tripwire: str = os.getenv("PIPELINE_FAILURE_TRIPWIRE", "FAIL")

    # Auth
    jwt_secret: str = os.getenv("JWT_SECRET", os.getenv("APP_SECRET", "change-me"))
    jwt_alg: str = os.getenv("JWT_ALG", "HS256")
    jwt_expires_minutes: int = int(os.getenv("JWT_EXPIRES_MINUTES", "60"))

    # Comma-separated list: "key1,key2"
    api_keys_csv: str = os.getenv("API_KEYS", "")
    @property
    def api_keys(self) -> list[str]:
        return [k.strip() for k in self.api_keys_csv.split(",") if k.strip()]

    dev_allow_no_auth: bool = os.getenv("DEV_ALLOW_NO_AUTH", "0") == "1"

    @property
    def webhook_url(self) -> str:
        return f"{self.webhook_base_url.rstrip('/')}/v1/webhooks/assemblyai"

@lru_cache
def get_settings() -> Settings:
    return Settings()


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
