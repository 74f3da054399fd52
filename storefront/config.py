import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from storefront.errors import ConfigurationError

# Force-load .env (Windows-safe, reload-safe)
BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(dotenv_path=BASE_DIR / ".env")


@dataclass(frozen=True)
class Settings:
    database_url: Optional[str] = None
    jwt_secret: Optional[str] = None
    mercadopago_access_token: Optional[str] = None
    public_base_url: Optional[str] = None
    storefront_url: Optional[str] = None
    twilio_account_sid: Optional[str] = None
    twilio_auth_token: Optional[str] = None
    notification_from: Optional[str] = None
    notification_to: Optional[str] = None
    payment_currency: str = "COP"
    statement_descriptor: Optional[str] = None
    log_level: str = "INFO"
    log_format: str = "console"

    @classmethod
    def from_env(cls) -> "Settings":
        values = {}
        for field in fields(cls):
            raw = os.getenv(field.name.upper())
            if raw:
                values[field.name] = raw.strip()
        return cls(**values)

    def require(self, *names: str):
        """Return the named values, raising ConfigurationError for any that are unset."""
        missing = [name.upper() for name in names if not getattr(self, name)]
        if missing:
            raise ConfigurationError(
                f"Missing required configuration: {', '.join(missing)}"
            )
        values = tuple(getattr(self, name) for name in names)
        return values[0] if len(values) == 1 else values

    @property
    def webhook_url(self) -> str:
        base = self.require("public_base_url")
        return f"{base.rstrip('/')}/payment-webhook"


def get_settings() -> Settings:
    return Settings.from_env()
