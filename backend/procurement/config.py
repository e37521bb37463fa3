"""Runtime settings read from the environment once at startup."""
import os
from dataclasses import dataclass, field


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    try:
        return int(raw) if raw else default
    except ValueError:
        return default


@dataclass(frozen=True)
class AISettings:
    base_url: str = ""
    model: str = "llama3"
    api_key: str = ""
    timeout_seconds: int = 120

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)

    @classmethod
    def from_env(cls) -> "AISettings":
        return cls(
            base_url=os.getenv("OLLAMA_BASE_URL", "").strip(),
            model=os.getenv("OLLAMA_MODEL", "llama3").strip() or "llama3",
            api_key=os.getenv("OLLAMA_API_KEY", "").strip(),
            timeout_seconds=_env_int("AI_TIMEOUT_SECONDS", 120),
        )


@dataclass(frozen=True)
class MailSettings:
    smtp_host: str = "localhost"
    smtp_port: int = 587
    smtp_use_tls: bool = True
    imap_host: str = "localhost"
    imap_port: int = 993
    user: str = ""
    password: str = ""
    from_name: str = "RFP System"
    timeout_seconds: int = 30

    @classmethod
    def from_env(cls) -> "MailSettings":
        return cls(
            smtp_host=os.getenv("SMTP_HOST", "localhost").strip(),
            smtp_port=_env_int("SMTP_PORT", 587),
            smtp_use_tls=_env_bool("SMTP_USE_TLS", True),
            imap_host=os.getenv("IMAP_HOST", "localhost").strip(),
            imap_port=_env_int("IMAP_PORT", 993),
            user=os.getenv("EMAIL_USER", "").strip(),
            password=os.getenv("EMAIL_PASSWORD", ""),
            from_name=os.getenv("EMAIL_FROM_NAME", "RFP System").strip() or "RFP System",
            timeout_seconds=_env_int("MAIL_TIMEOUT_SECONDS", 30),
        )


@dataclass(frozen=True)
class Settings:
    app_env: str = "development"
    frontend_url: str = "*"
    ai: AISettings = field(default_factory=AISettings)
    mail: MailSettings = field(default_factory=MailSettings)

    @property
    def expose_errors(self) -> bool:
        """Include exception text in 500 responses outside production."""
        return self.app_env != "production"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            app_env=os.getenv("APP_ENV", "development").strip().lower() or "development",
            frontend_url=os.getenv("FRONTEND_URL", "*").strip() or "*",
            ai=AISettings.from_env(),
            mail=MailSettings.from_env(),
        )


settings = Settings.from_env()
