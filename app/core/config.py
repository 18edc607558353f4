# app/core/config.py
from typing import List, Union, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator


class Settings(BaseSettings):
    # ==== Інфраструктура ====
    database_url: str = "postgresql+asyncpg://app:app@db:5432/ticketing"
    database_echo: bool = False
    redis_url: str = "redis://redis:6379/0"
    notifications_queue: str = "ticket-events"

    # ==== Безпека / Auth ====
    jwt_secret: str = "changeme"
    jwt_alg: str = "HS256"

    # час життя access-токена, хвилини; claims (ролі/відділи/команди) живуть стільки ж
    jwt_expires_min: int = 30

    # розширена сесія для "Запам’ятати мене", хвилини
    jwt_remember_expires_min: int = 60 * 24 * 7

    # перечитувати grant-и з БД перед кожною зміною заявки
    # (False = довіряємо claims токена до кінця його життя)
    recheck_grants_on_write: bool = False

    # ==== CORS ====
    # CORS_ORIGINS=http://localhost:5173,http://127.0.0.1:5173,...
    cors_origins: Union[str, List[str]] = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    # ==== Bootstrap Admin / Demo data ====
    admin_email: str = "admin@example.com"
    admin_password: str = "ChangeMe123!"
    admin_first_name: str = "System"
    admin_last_name: str = "Admin"
    seed_demo_data: bool = True

    # ==== Webhooks (rq worker) ====
    webhook_secret: Optional[str] = None
    webhook_ticket_events: Optional[str] = None

    # ==== UI build (опційно перевизначити директорію зі SPA) ====
    ui_dist_dir: Optional[str] = None

    # ==== Логування / Оточення ====
    env: str = "dev"          # dev|staging|prod
    log_level: str = "INFO"   # DEBUG|INFO|WARNING|ERROR

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        case_sensitive=False,
    )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _parse_cors_origins(cls, v):
        if isinstance(v, str):
            s = v.strip()
            if s.startswith("[") and s.endswith("]"):
                try:
                    import json
                    parsed = json.loads(s)
                    return [str(i).strip() for i in parsed if str(i).strip()]
                except ValueError:
                    pass
            return [i.strip() for i in s.split(",") if i.strip()]
        return v


settings = Settings()
