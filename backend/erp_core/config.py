import os
import secrets
from dataclasses import dataclass, field

from dotenv import load_dotenv

BACKEND_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

load_dotenv(dotenv_path=os.path.join(BACKEND_DIR, ".env"))


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


def _env_list(name: str, default: str) -> tuple[str, ...]:
    return tuple(item.strip() for item in os.getenv(name, default).split(",") if item.strip())


@dataclass(frozen=True)
class Settings:
    database_url: str = field(
        default_factory=lambda: os.getenv(
            "ERP_DATABASE_URL", f"sqlite:///{os.path.join(BACKEND_DIR, 'classbridge_erp.db')}"
        )
    )
    jwt_secret: str = field(default_factory=lambda: os.getenv("ERP_JWT_SECRET", ""))
    jwt_algorithm: str = field(default_factory=lambda: os.getenv("ERP_JWT_ALGORITHM", "HS256"))
    jwt_exp_minutes: int = field(default_factory=lambda: int(os.getenv("ERP_JWT_EXP_MINUTES", "60")))
    reset_token_exp_minutes: int = field(
        default_factory=lambda: int(os.getenv("ERP_RESET_TOKEN_EXP_MINUTES", "15"))
    )
    frontend_url: str = field(default_factory=lambda: os.getenv("ERP_FRONTEND_URL", "http://localhost:5173"))
    enforce_tenant_scope: bool = field(default_factory=lambda: _env_flag("ERP_ENFORCE_TENANT_SCOPE", "true"))
    cors_origins: tuple[str, ...] = field(
        default_factory=lambda: _env_list("ERP_CORS_ORIGINS", "http://localhost:5173")
    )
    log_level: str = field(default_factory=lambda: os.getenv("ERP_LOG_LEVEL", "INFO").upper())
    smtp_host: str = field(default_factory=lambda: os.getenv("SMTP_SERVER", "smtp.gmail.com"))
    smtp_port: int = field(default_factory=lambda: int(os.getenv("SMTP_PORT", "587")))
    smtp_username: str = field(default_factory=lambda: os.getenv("SMTP_EMAIL", ""))
    smtp_password: str = field(default_factory=lambda: os.getenv("SMTP_PASSWORD", "").replace(" ", ""))
    seed_admin_email: str = field(default_factory=lambda: os.getenv("ERP_SEED_ADMIN_EMAIL", ""))
    seed_admin_password: str = field(default_factory=lambda: os.getenv("ERP_SEED_ADMIN_PASSWORD", ""))
    jwt_secret_generated: bool = field(default=False, init=False, repr=False)

    def __post_init__(self) -> None:
        # A missing secret gets a per-process random one: tokens die with the process.
        if not self.jwt_secret:
            object.__setattr__(self, "jwt_secret", secrets.token_urlsafe(32))
            object.__setattr__(self, "jwt_secret_generated", True)

    @property
    def mail_enabled(self) -> bool:
        return bool(self.smtp_username and self.smtp_password)


settings = Settings()


def get_settings() -> Settings:
    return settings
