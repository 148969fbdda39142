from functools import lru_cache

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(extra="ignore")

    # Supabase
    supabase_url: str = ""
    supabase_key: str = ""
    storage_bucket: str = "uploads"

    # SMTP (email is skipped when host/user/pass are missing)
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_pass: str = ""
    smtp_sender: str = "noreply@homeservice.app"

    # Expo push
    expo_access_token: str = ""

    log_level: str = "INFO"
    cors_origins: list[str] = ["http://localhost:4200"]

    @property
    def smtp_configured(self) -> bool:
        return bool(self.smtp_host and self.smtp_user and self.smtp_pass)


@lru_cache
def get_settings() -> Settings:
    return Settings()
