import os
from typing import List, Mapping, Optional
from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

# always load from local file
load_dotenv(".env")

CHAINS = ("domain", "consensus")

# -------- env defaults --------
DEFAULT_OUTPUT_DIR      = "exports"
DEFAULT_BACKOFF_MS      = 1000
DEFAULT_MAX_BACKOFF_MS  = 10000
DEFAULT_CONCURRENCY     = 8
DEFAULT_PROGRESS_EVERY  = 100

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
MCP_HOST  = os.getenv("MCP_HOST", "0.0.0.0")
MCP_PORT  = int(os.getenv("MCP_PORT", "8000"))


class ScanConfig(BaseModel):
    """Everything one scan run needs; built once at startup and passed in."""
    chain: str
    rpc_endpoints: List[str] = Field(min_length=1)
    start: int = Field(ge=0)
    end: int = Field(ge=0)
    db_path: str
    block_concurrency: int = Field(DEFAULT_CONCURRENCY, ge=1)
    retry_backoff_ms: int = Field(DEFAULT_BACKOFF_MS, ge=1)
    retry_max_backoff_ms: int = Field(DEFAULT_MAX_BACKOFF_MS, ge=1)
    progress_every: int = Field(DEFAULT_PROGRESS_EVERY, ge=1)

    @model_validator(mode="after")
    def _check(self):
        if self.chain not in CHAINS:
            raise ValueError(f"unknown chain {self.chain!r}, expected one of {CHAINS}")
        if self.retry_max_backoff_ms < self.retry_backoff_ms:
            raise ValueError("retry_max_backoff_ms must be >= retry_backoff_ms")
        return self

    @property
    def log_prefix(self) -> str:
        return f"[{self.chain}]"


def db_path(env: Mapping[str, str]) -> str:
    if env.get("DB_PATH"):
        return env["DB_PATH"]
    return os.path.join(env.get("OUTPUT_DIR") or DEFAULT_OUTPUT_DIR, "xdm.sqlite")


def split_endpoints(raw: Optional[str]) -> List[str]:
    return [u.strip() for u in (raw or "").split(",") if u.strip()]


def load_scan_config(
    chain: str,
    env: Optional[Mapping[str, str]] = None,
    start: Optional[int] = None,
    end: Optional[int] = None,
    workers: Optional[int] = None,
) -> ScanConfig:
    """
    Build the ScanConfig for `chain` from the environment (or `env`).
    Explicit start/end/workers override the corresponding variables.
    """
    env = os.environ if env is None else env
    key = chain.upper()

    endpoints = split_endpoints(env.get(f"{key}_RPC_URL"))
    raw_start = start if start is not None else env.get(f"{key}_START_HEIGHT")
    raw_end   = end if end is not None else env.get(f"{key}_END_HEIGHT")

    if not endpoints or raw_start in (None, "") or raw_end in (None, ""):
        raise SystemExit(
            f"{key}_RPC_URL, {key}_START_HEIGHT, {key}_END_HEIGHT are required"
        )

    concurrency = workers
    if concurrency is None:
        concurrency = int(env.get("BLOCK_CONCURRENCY") or env.get("RPC_CONCURRENCY") or DEFAULT_CONCURRENCY)

    return ScanConfig(
        chain=chain,
        rpc_endpoints=endpoints,
        start=int(raw_start),
        end=int(raw_end),
        db_path=db_path(env),
        block_concurrency=max(1, concurrency),
        retry_backoff_ms=int(env.get("RPC_BACKOFF_MS") or DEFAULT_BACKOFF_MS),
        retry_max_backoff_ms=int(env.get("RPC_MAX_BACKOFF_MS") or DEFAULT_MAX_BACKOFF_MS),
        progress_every=int(env.get("PROGRESS_EVERY") or DEFAULT_PROGRESS_EVERY),
    )
