import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent


@dataclass(frozen=True)
class Settings:
    """Process configuration, built once at startup and passed around explicitly."""

    jwt_secret: str
    database_url: str = "sqlite:///./data/app.db"
    google_client_id: str = ""
    google_client_secret: str = ""
    google_redirect_url: str = ""
    static_dir: Path = BASE_DIR / "static"
    admin_emails: frozenset = field(default_factory=frozenset)
    http_timeout: float = 10.0
    log_level: str = "INFO"


def _database_url() -> str:
    url = os.getenv("DATABASE_URL")
    if not url:
        db_path = os.getenv("DB_PATH", "./data/app.db")
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{db_path}"

    # Render/Heroku hand out 'postgres://' which SQLAlchemy no longer accepts
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    return url


def load_settings() -> Settings:
    load_dotenv()

    secret = os.getenv("JWT_SECRET", "")
    if not secret:
        raise ValueError("JWT_SECRET environment variable is required")

    admins = os.getenv("ADMIN_EMAILS", "")
    return Settings(
        jwt_secret=secret,
        database_url=_database_url(),
        google_client_id=os.getenv("GOOGLE_CLIENT_ID", ""),
        google_client_secret=os.getenv("GOOGLE_CLIENT_SECRET", ""),
        google_redirect_url=os.getenv("GOOGLE_REDIRECT_URL", ""),
        static_dir=Path(os.getenv("STATIC_DIR", str(BASE_DIR / "static"))),
        admin_emails=frozenset(e.strip() for e in admins.split(",") if e.strip()),
        http_timeout=float(os.getenv("HTTP_TIMEOUT", "10")),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
