from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional


def _float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    try:
        return float(raw) if raw not in (None, "") else default
    except ValueError:
        return default


def _int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    try:
        return int(raw) if raw not in (None, "") else default
    except ValueError:
        return default


@dataclass
class Settings:
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"
    llm_timeout_sec: float = 20.0
    context_ttl_sec: float = 300.0
    follow_up_threshold: float = 0.5
    query_timeout_sec: float = 30.0
    data_dir: str = "./data"
    log_level: str = "INFO"
    log_file: Optional[str] = None
    log_json: bool = False
    runs_dir: str = "runs"
    runs_retention: int = 50
    failure_log: str = "failures.log"

    @property
    def llm_enabled(self) -> bool:
        return bool(self.openai_api_key)

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if env is None else env
        return cls(
            openai_api_key=env.get("OPENAI_API_KEY") or None,
            openai_model=env.get("OPENAI_MODEL", "gpt-4o-mini"),
            llm_timeout_sec=_float(env, "LLM_TIMEOUT_SEC", 20.0),
            context_ttl_sec=_float(env, "CONTEXT_TTL_SEC", 300.0),
            follow_up_threshold=_float(env, "FOLLOW_UP_THRESHOLD", 0.5),
            query_timeout_sec=_float(env, "QUERY_TIMEOUT_SEC", 30.0),
            data_dir=env.get("MINEQUERY_DATA_DIR", "./data"),
            log_level=env.get("LOG_LEVEL", "INFO").upper(),
            log_file=env.get("LOG_FILE") or None,
            log_json=env.get("LOG_JSON", "0").lower() in ("1", "true", "yes"),
            runs_dir=env.get("RUNS_DIR", "runs"),
            runs_retention=_int(env, "RUNS_RETENTION", 50),
            failure_log=env.get("FAILURE_LOG", "failures.log"),
        )
