from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

load_dotenv()

CONFIG_FILE = Path("proofchain_config.json")

PRICE_SOURCES = ("static", "database", "oracle")

DEFAULT_CONFIG: dict[str, Any] = {
    "database_path": "proofchain.db",
    "consensus_threshold_percent": 0,
    "confidence_scale": 10,
    "min_confidence": 1,
    "max_confidence": 10,
    "claim_delay_hours": 48,
    "default_voting_period_hours": 24,
    "finalization_interval_minutes": 5,
    "initial_finalization_delay_seconds": 5,
    "price_refresh_interval_minutes": 60,
    "price_source": "static",
    "api_host": "127.0.0.1",
    "api_port": 5001,
    "cors_origins": ["http://localhost:3000"],
    "test_mode": False,
}


@dataclass
class Settings:
    """Holds all application configuration loaded from environment variables and config file."""

    database_path: str = "proofchain.db"
    consensus_threshold_percent: float = 0
    confidence_scale: int = 10
    min_confidence: int = 1
    max_confidence: int = 10
    claim_delay_hours: int = 48
    default_voting_period_hours: int = 24
    finalization_interval_minutes: int = 5
    initial_finalization_delay_seconds: int = 5
    price_refresh_interval_minutes: int = 60
    price_source: str = "static"
    price_oracle_url: str | None = None
    price_oracle_api_key: str | None = None
    api_host: str = "127.0.0.1"
    api_port: int = 5001
    cors_origins: list[str] = field(default_factory=list)
    test_mode: bool = False


def _load_config_file(path: Path = CONFIG_FILE) -> dict[str, Any]:
    if path.exists():
        with open(path, encoding="utf-8") as f:
            user_config = json.load(f)
        merged = {**DEFAULT_CONFIG, **user_config}
        return merged
    return dict(DEFAULT_CONFIG)


def _validate(config: dict[str, Any], oracle_url: str | None) -> None:
    threshold = config["consensus_threshold_percent"]
    if not 0 <= threshold <= 100:
        raise ValueError(
            f"consensus_threshold_percent must be between 0 and 100, got {threshold}"
        )
    if config["min_confidence"] > config["max_confidence"]:
        raise ValueError("min_confidence must not exceed max_confidence")
    if config["price_source"] not in PRICE_SOURCES:
        raise ValueError(
            f"price_source must be one of {PRICE_SOURCES}, got {config['price_source']!r}"
        )
    if config["price_source"] == "oracle" and not oracle_url:
        raise EnvironmentError(
            "Missing required environment variable: PRICE_ORACLE_URL. "
            "It must be set when price_source is 'oracle'."
        )


def load_settings(config_path: Path = CONFIG_FILE) -> Settings:
    config = _load_config_file(config_path)
    oracle_url = os.getenv("PRICE_ORACLE_URL")
    _validate(config, oracle_url)

    return Settings(
        database_path=os.getenv("PROOFCHAIN_DB_PATH") or config["database_path"],
        consensus_threshold_percent=config["consensus_threshold_percent"],
        confidence_scale=config["confidence_scale"],
        min_confidence=config["min_confidence"],
        max_confidence=config["max_confidence"],
        claim_delay_hours=config["claim_delay_hours"],
        default_voting_period_hours=config["default_voting_period_hours"],
        finalization_interval_minutes=config["finalization_interval_minutes"],
        initial_finalization_delay_seconds=config["initial_finalization_delay_seconds"],
        price_refresh_interval_minutes=config["price_refresh_interval_minutes"],
        price_source=config["price_source"],
        price_oracle_url=oracle_url,
        price_oracle_api_key=os.getenv("PRICE_ORACLE_API_KEY"),
        api_host=config["api_host"],
        api_port=config["api_port"],
        cors_origins=config.get("cors_origins", DEFAULT_CONFIG["cors_origins"]),
        test_mode=config.get("test_mode", DEFAULT_CONFIG["test_mode"]),
    )
