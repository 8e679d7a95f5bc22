from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List

from dotenv import load_dotenv

load_dotenv()


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass
class CommandSettings:
    ollama_base_url: str = "http://localhost:11434"
    ollama_model: str = "llama3.2:latest"
    llm_timeout_s: float = 60.0
    max_rounds: int = 5
    db_path: str = "data/db.json"
    finnhub_api_key: str = ""
    coingecko_base_url: str = "https://api.coingecko.com/api/v3"
    quote_timeout_s: float = 1.2
    symbol_min_score: float = 0.75
    symbol_min_gap: float = 0.12
    suspicious_low_ratio: float = 0.3
    suspicious_high_ratio: float = 3.0
    suspicious_window_days: int = 7
    cors_origins: List[str] = field(default_factory=lambda: ["http://localhost:3000"])

    @staticmethod
    def from_env() -> "CommandSettings":
        origins = [
            o.strip()
            for o in (os.getenv("CORS_ORIGINS") or "http://localhost:3000").split(",")
            if o.strip()
        ]
        return CommandSettings(
            ollama_base_url=(os.getenv("OLLAMA_BASE_URL") or "http://localhost:11434").rstrip("/"),
            ollama_model=os.getenv("OLLAMA_MODEL") or "llama3.2:latest",
            llm_timeout_s=_env_float("LLM_TIMEOUT_S", 60.0),
            max_rounds=max(1, _env_int("COMMAND_MAX_ROUNDS", 5)),
            db_path=os.getenv("PORTFOLIO_DB_PATH") or "data/db.json",
            finnhub_api_key=(os.getenv("FINNHUB_API_KEY") or "").strip(),
            coingecko_base_url=(
                os.getenv("COINGECKO_BASE_URL") or "https://api.coingecko.com/api/v3"
            ).rstrip("/"),
            quote_timeout_s=_env_float("QUOTE_TIMEOUT_S", 1.2),
            symbol_min_score=_env_float("SYMBOL_MATCH_MIN_SCORE", 0.75),
            symbol_min_gap=_env_float("SYMBOL_MATCH_MIN_GAP", 0.12),
            suspicious_low_ratio=_env_float("QUOTE_SUSPICIOUS_LOW_RATIO", 0.3),
            suspicious_high_ratio=_env_float("QUOTE_SUSPICIOUS_HIGH_RATIO", 3.0),
            suspicious_window_days=_env_int("QUOTE_SUSPICIOUS_WINDOW_DAYS", 7),
            cors_origins=origins,
        )
