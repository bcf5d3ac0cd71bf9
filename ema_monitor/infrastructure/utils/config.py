"""Configuration management for the signal monitor.

Rules:
- YAML provides defaults for non-secret config (optional file).
- Secrets (CoinEx keys, Telegram bot) come from .env / environment variables and override YAML.
- Required secrets are checked once at startup; a missing one is fatal.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigError(ValueError):
    """Invalid or incomplete configuration. Fatal at startup."""


def _require_non_empty(v: Any, name: str) -> str:
    if v is None or not str(v).strip():
        raise ValueError(f"{name} must not be empty")
    return str(v).strip()


class ExchangeConfig(BaseModel):
    """CoinEx market data configuration."""

    name: str = Field(default="COINEX")
    market: str = Field(default="ETHUSDT", description="Market id used in API calls")
    pair_label: str = Field(default="ETH/USDT", description="Human readable pair")
    websocket_url: str = Field(default="wss://socket.coinex.com/")
    rest_url: str = Field(default="https://api.coinex.com/v1")
    api_key: str = Field(..., description="CoinEx API key (presence only)")
    api_secret: str = Field(..., description="CoinEx API secret (presence only)")
    history_limit: int = Field(default=250, ge=1, le=1000)
    request_timeout_sec: float = Field(default=10.0, gt=0, le=120)
    reconnect_delay_sec: float = Field(default=5.0, gt=0, le=300)
    heartbeat_interval_sec: float = Field(default=20.0, gt=0, le=300)

    @field_validator("api_key")
    @classmethod
    def validate_api_key(cls, v: Any) -> str:
        return _require_non_empty(v, "exchange.api_key")

    @field_validator("api_secret")
    @classmethod
    def validate_api_secret(cls, v: Any) -> str:
        return _require_non_empty(v, "exchange.api_secret")


class TelegramConfig(BaseModel):
    bot_token: str = Field(..., description="Telegram bot token")
    chat_id: str = Field(..., description="Destination chat id")
    api_url: str = Field(default="https://api.telegram.org")
    timeout_sec: float = Field(default=10.0, gt=0, le=120)

    @field_validator("bot_token")
    @classmethod
    def validate_bot_token(cls, v: Any) -> str:
        return _require_non_empty(v, "telegram.bot_token")

    @field_validator("chat_id", mode="before")
    @classmethod
    def validate_chat_id(cls, v: Any) -> str:
        return _require_non_empty(v, "telegram.chat_id")


class StrategyConfig(BaseModel):
    """EMA crossover parameters."""

    fast_period: int = Field(default=20, ge=2, le=200)
    slow_period: int = Field(default=50, ge=3, le=500)
    trend_period: int = Field(default=200, ge=2, le=1000)
    min_fast_candles: int = Field(default=50, ge=1)
    min_trend_candles: int = Field(default=200, ge=1)
    series_capacity: int = Field(default=300, ge=10, le=5000)
    label: str = Field(default="EMA200(4H) + EMA20/50(15M)")

    @field_validator("slow_period")
    @classmethod
    def validate_ema_periods(cls, v: int, info) -> int:
        if "fast_period" in info.data and v <= info.data["fast_period"]:
            raise ValueError("slow_period must be greater than fast_period")
        return v

    @field_validator("series_capacity")
    @classmethod
    def validate_capacity(cls, v: int, info) -> int:
        needed = max(info.data.get("slow_period", 0), info.data.get("trend_period", 0))
        if v < needed:
            raise ValueError(f"series_capacity must hold at least {needed} candles")
        return v


class SignalsConfig(BaseModel):
    max_history: Optional[int] = Field(default=None, ge=1, description="None = keep every signal")
    status_recent: int = Field(default=5, ge=1, le=100)


class APIConfig(BaseModel):
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=5000, ge=1, le=65535)
    cors_origins: List[str] = Field(default=["*"])


class MonitorConfig(BaseSettings):
    """Main configuration class.

    We parse YAML as base config, then apply env overrides for secrets
    before validation, so a missing secret fails in one place.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")

    exchange: ExchangeConfig
    telegram: TelegramConfig
    strategy: StrategyConfig = Field(default_factory=StrategyConfig)
    signals: SignalsConfig = Field(default_factory=SignalsConfig)
    api: APIConfig = Field(default_factory=APIConfig)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if str(v).upper() not in valid:
            raise ValueError(f"Log level must be one of: {sorted(valid)}")
        return str(v).upper()

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        if str(v).lower() not in {"json", "console"}:
            raise ValueError("log_format must be 'json' or 'console'")
        return str(v).lower()

    @classmethod
    def from_mapping(cls, data: Dict[str, Any], env: Optional[Dict[str, str]] = None) -> "MonitorConfig":
        merged = apply_env_overrides(data, os.environ if env is None else env)
        try:
            return cls.model_validate(merged)
        except ValidationError as e:
            raise ConfigError(f"Configuration validation error: {e}") from e

    @classmethod
    def from_yaml(cls, yaml_path: Path, env: Optional[Dict[str, str]] = None) -> "MonitorConfig":
        if not yaml_path.exists():
            raise ConfigError(f"Configuration file not found: {yaml_path}")

        try:
            with open(yaml_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in configuration file: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError(f"Configuration root must be a mapping: {yaml_path}")
        return cls.from_mapping(data, env)


# (section, key) <- env names, first one set wins
_ENV_OVERRIDES: List[Tuple[Tuple[str, ...], Tuple[str, ...]]] = [
    (("exchange", "api_key"), ("COINEX_API_KEY", "EXCHANGE__API_KEY")),
    (("exchange", "api_secret"), ("COINEX_API_SECRET", "EXCHANGE__API_SECRET")),
    (("exchange", "market"), ("EXCHANGE__MARKET",)),
    (("telegram", "bot_token"), ("TELEGRAM_BOT_TOKEN", "TELEGRAM__BOT_TOKEN")),
    (("telegram", "chat_id"), ("TELEGRAM_CHAT_ID", "TELEGRAM__CHAT_ID")),
    (("api", "port"), ("PORT", "API__PORT")),
    (("log_level",), ("LOG_LEVEL",)),
    (("log_format",), ("LOG_FORMAT",)),
]


def apply_env_overrides(data: Dict[str, Any], env: Any) -> Dict[str, Any]:
    """Return a copy of `data` with env values placed on top (secrets and a few key settings)."""
    out: Dict[str, Any] = {k: (dict(v) if isinstance(v, dict) else v) for k, v in data.items()}
    for path, names in _ENV_OVERRIDES:
        value = next((env.get(n) for n in names if env.get(n)), None)
        if value is None:
            continue
        if len(path) == 1:
            out[path[0]] = value
            continue
        section, key = path
        target = out.get(section)
        if not isinstance(target, dict):
            target = {}
            out[section] = target
        target[key] = value

    # Required sections must exist so validation reports the missing field, not the section.
    out.setdefault("exchange", {})
    out.setdefault("telegram", {})
    return out


def load_config(config_path: Optional[Path] = None) -> MonitorConfig:
    """Load configuration from YAML (optional) + .env (env wins for secrets)."""

    load_dotenv(dotenv_path=Path(".env"))

    if config_path is not None:
        return MonitorConfig.from_yaml(config_path)

    for path in (Path("config/default.yaml"), Path("config/config.yaml"), Path("config.yaml")):
        if path.exists():
            return MonitorConfig.from_yaml(path)

    return MonitorConfig.from_mapping({})
