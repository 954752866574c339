"""
Centralized configuration with environment variable overrides.

Timer windows, address rules, model settings and delivery pacing are all
configurable here. Nothing is hardcoded in the negotiation or scheduling logic.
"""

import logging
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

from schedulink.logging_context import install_conversation_filter

load_dotenv()

logger = logging.getLogger(__name__)


def _safe_int(env_var: str, default: str) -> int:
    """Parse an integer from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return int(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid integer for {env_var}: {raw!r}"
        ) from None


def _safe_float(env_var: str, default: str) -> float:
    """Parse a float from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return float(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid float for {env_var}: {raw!r}"
        ) from None


def _safe_bool(env_var: str, default: str) -> bool:
    """Parse a boolean flag from an env var (1/true/yes/on)."""
    raw = os.getenv(env_var, default).strip().lower()
    if raw in ("1", "true", "yes", "on"):
        return True
    if raw in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"Invalid boolean for {env_var}: {raw!r}")


@dataclass(frozen=True)
class AddressConfig:
    """Rules for turning raw phone numbers into canonical addresses."""

    domain_suffix: str = os.getenv("ADDRESS_DOMAIN", "@s.whatsapp.net")
    min_digits: int = _safe_int("ADDRESS_MIN_DIGITS", "10")


@dataclass(frozen=True)
class TimeoutConfig:
    """Reminder and escalation windows, measured from the last sent turn."""

    reminder_delay_sec: float = _safe_float("REMINDER_DELAY_SEC", "600")
    escalation_delay_sec: float = _safe_float("ESCALATION_DELAY_SEC", "1200")
    reminder_text: str = os.getenv(
        "REMINDER_TEXT",
        "Merhaba tekrar! Hala müsaitlik durumunuzu merak ediyorum. "
        "Hangi saatler size uygun? 😊",
    )


@dataclass(frozen=True)
class ModelConfig:
    """Text-generation model settings."""

    llm_model: str = os.getenv("LLM_MODEL", "gpt-4o-mini")
    llm_temperature: float = _safe_float("LLM_TEMPERATURE", "0.7")
    llm_max_tokens: int = _safe_int("LLM_MAX_TOKENS", "300")
    llm_timeout_sec: float = _safe_float("LLM_TIMEOUT_SEC", "30")


@dataclass(frozen=True)
class NegotiationConfig:
    """What is being negotiated and how a concluded slot is booked."""

    service_name: str = os.getenv("SERVICE_NAME", "haircut")
    language: str = os.getenv("NEGOTIATION_LANGUAGE", "Turkish")
    max_turns: int = _safe_int("NEGOTIATION_MAX_TURNS", "4")
    appointment_duration_minutes: int = _safe_int("APPOINTMENT_DURATION_MINUTES", "60")
    timezone: str = os.getenv("APPOINTMENT_TIMEZONE", "Europe/Istanbul")
    strip_marker: bool = _safe_bool("STRIP_CONFIRMATION_MARKER", "true")
    rearm_on_recovery: bool = _safe_bool("REARM_TIMERS_ON_RECOVERY", "true")


@dataclass(frozen=True)
class DeliveryConfig:
    """Pacing for human-like delivery of outbound turns."""

    humanize: bool = _safe_bool("HUMANIZE_DELIVERY", "true")
    typing_ms_per_char: float = _safe_float("TYPING_MS_PER_CHAR", "40")
    min_typing_delay_sec: float = _safe_float("MIN_TYPING_DELAY_SEC", "1.0")
    max_typing_delay_sec: float = _safe_float("MAX_TYPING_DELAY_SEC", "8.0")


@dataclass(frozen=True)
class StorageConfig:
    """Persistence backend settings."""

    database_url: str = os.getenv("DATABASE_URL", "sqlite:///schedulink.db")


@dataclass(frozen=True)
class NotifierConfig:
    """Operator notification channel (Telegram Bot API)."""

    telegram_bot_token: str = os.getenv("TELEGRAM_BOT_TOKEN", "")
    telegram_chat_id: str = os.getenv("TELEGRAM_CHAT_ID", "")
    telegram_api_base: str = os.getenv("TELEGRAM_API_BASE", "https://api.telegram.org")
    timeout_sec: float = _safe_float("NOTIFIER_TIMEOUT_SEC", "10")


@dataclass(frozen=True)
class AppConfig:
    """Root configuration aggregating all sub-configs."""

    address: AddressConfig = field(default_factory=AddressConfig)
    timeouts: TimeoutConfig = field(default_factory=TimeoutConfig)
    model: ModelConfig = field(default_factory=ModelConfig)
    negotiation: NegotiationConfig = field(default_factory=NegotiationConfig)
    delivery: DeliveryConfig = field(default_factory=DeliveryConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    notifier: NotifierConfig = field(default_factory=NotifierConfig)
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    agent_name: str = os.getenv("AGENT_NAME", "schedulink")


def _validate_config(config: AppConfig) -> None:
    """Validate configuration values are within acceptable ranges."""
    if not config.address.domain_suffix.startswith("@"):
        raise ValueError(
            f"ADDRESS_DOMAIN must start with '@', got {config.address.domain_suffix!r}"
        )
    if config.address.min_digits < 1:
        raise ValueError(
            f"ADDRESS_MIN_DIGITS must be >= 1, got {config.address.min_digits}"
        )
    if config.timeouts.reminder_delay_sec <= 0:
        raise ValueError(
            f"REMINDER_DELAY_SEC must be > 0, got {config.timeouts.reminder_delay_sec}"
        )
    if config.timeouts.escalation_delay_sec <= config.timeouts.reminder_delay_sec:
        raise ValueError(
            "ESCALATION_DELAY_SEC must be greater than REMINDER_DELAY_SEC, "
            f"got {config.timeouts.escalation_delay_sec} <= {config.timeouts.reminder_delay_sec}"
        )
    if not config.timeouts.reminder_text.strip():
        raise ValueError("REMINDER_TEXT must not be empty")
    if not 0.0 <= config.model.llm_temperature <= 2.0:
        raise ValueError(
            f"LLM_TEMPERATURE must be between 0.0 and 2.0, got {config.model.llm_temperature}"
        )
    if config.model.llm_max_tokens < 1:
        raise ValueError(
            f"LLM_MAX_TOKENS must be >= 1, got {config.model.llm_max_tokens}"
        )
    if config.negotiation.appointment_duration_minutes < 1:
        raise ValueError(
            "APPOINTMENT_DURATION_MINUTES must be >= 1, "
            f"got {config.negotiation.appointment_duration_minutes}"
        )
    if config.negotiation.max_turns < 1:
        raise ValueError(
            f"NEGOTIATION_MAX_TURNS must be >= 1, got {config.negotiation.max_turns}"
        )
    if config.delivery.typing_ms_per_char < 0:
        raise ValueError(
            f"TYPING_MS_PER_CHAR must be >= 0, got {config.delivery.typing_ms_per_char}"
        )
    if not 0 <= config.delivery.min_typing_delay_sec <= config.delivery.max_typing_delay_sec:
        raise ValueError(
            "MIN_TYPING_DELAY_SEC must be between 0 and MAX_TYPING_DELAY_SEC, "
            f"got {config.delivery.min_typing_delay_sec}"
        )
    if not config.storage.database_url:
        raise ValueError("DATABASE_URL must not be empty")


def load_config() -> AppConfig:
    """Load and validate application configuration."""
    config = AppConfig()
    _validate_config(config)
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] [%(conversation_key)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    install_conversation_filter()
    logger.info(
        "Configuration loaded for '%s' (remind after %ss, escalate after %ss)",
        config.agent_name,
        config.timeouts.reminder_delay_sec,
        config.timeouts.escalation_delay_sec,
    )
    return config


# Singleton instance
settings = load_config()
