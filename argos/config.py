from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


BASE_DIR = Path(__file__).resolve().parent.parent
DEFAULT_DATA_DIR = BASE_DIR / "data"


def _resolve_path(raw_path: str | None, default_path: Path) -> Path:
    if not raw_path:
        return default_path
    path = Path(raw_path).expanduser()
    if path.is_absolute():
        return path
    return (BASE_DIR / path).resolve()


# Load .env early so path env vars are available for module-level constants.
load_dotenv()

DATA_DIR = _resolve_path(os.getenv("DATA_DIR"), DEFAULT_DATA_DIR)
EXPORTS_DIR = DATA_DIR / "exports"

FALSY_FLAGS = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class AppConfig:
    telegram_bot_token: str
    openai_api_key: str = ""
    chat_model: str = "gpt-4.1-mini"
    analysis_model: str = "gpt-4.1"
    chat_temperature: float = 0.6
    analysis_temperature: float = 0.3
    access_code: str | None = None
    rotate_strategies: bool = True


class ConfigError(RuntimeError):
    pass


def _parse_temperature(name: str, raw: str) -> float:
    try:
        value = float(raw)
        if value < 0 or value > 2:
            raise ValueError
    except ValueError as exc:
        raise ConfigError(f"{name} must be a float in range [0, 2]") from exc
    return value


def load_config() -> AppConfig:
    load_dotenv()

    telegram_bot_token = os.getenv("TELEGRAM_BOT_TOKEN", "").strip()
    # The OpenAI key is checked when the gateway client is built, so a missing
    # key surfaces as a setup error in the chat instead of a startup crash.
    openai_api_key = os.getenv("OPENAI_API_KEY", "").strip()
    chat_model = os.getenv("OPENAI_CHAT_MODEL", "gpt-4.1-mini").strip() or "gpt-4.1-mini"
    analysis_model = os.getenv("OPENAI_ANALYSIS_MODEL", "gpt-4.1").strip() or "gpt-4.1"
    access_code = os.getenv("ARGOS_ACCESS_CODE", "").strip() or None
    rotation_raw = os.getenv("STRATEGY_ROTATION", "1").strip().lower()

    if not telegram_bot_token:
        raise ConfigError("Missing TELEGRAM_BOT_TOKEN in environment/.env")

    chat_temperature = _parse_temperature(
        "CHAT_TEMPERATURE",
        os.getenv("CHAT_TEMPERATURE", "0.6").strip(),
    )
    analysis_temperature = _parse_temperature(
        "ANALYSIS_TEMPERATURE",
        os.getenv("ANALYSIS_TEMPERATURE", "0.3").strip(),
    )

    return AppConfig(
        telegram_bot_token=telegram_bot_token,
        openai_api_key=openai_api_key,
        chat_model=chat_model,
        analysis_model=analysis_model,
        chat_temperature=chat_temperature,
        analysis_temperature=analysis_temperature,
        access_code=access_code,
        rotate_strategies=rotation_raw not in FALSY_FLAGS,
    )


def ensure_data_dirs() -> None:
    DATA_DIR.mkdir(parents=True, exist_ok=True)
    EXPORTS_DIR.mkdir(parents=True, exist_ok=True)
