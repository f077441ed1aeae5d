from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()

SERVICES = ("patients", "doctors", "appointments", "alive", "dashboard")
BACKENDS = ("sql", "mongo")


def _bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _database_url() -> str:
    url = os.getenv("DATABASE_URL")
    if url:
        return url

    host = os.getenv("DB_HOST", "gestmed-postgres")
    port = os.getenv("DB_PORT", "5432")
    name = os.getenv("DB_NAME", "gestmed")
    user = os.getenv("DB_USER", "gestmed_user")
    password = os.getenv("DB_PASSWORD", "gestmed_password")
    return f"postgresql+psycopg2://{user}:{password}@{host}:{port}/{name}"


@dataclass(frozen=True)
class Settings:
    """
    Configurazione di processo.
    Ogni istanza serve un solo modulo REST (SERVICE), oppure tutti con SERVICE=all.
    """
    service: str = "all"
    database_url: str = "sqlite:///gestmed.sqlite"
    appointments_backend: str = "sql"
    mongo_uri: str = "mongodb://appointments_db:27017"
    mongo_db_name: str = "gestmed_appointments_db"
    port: int = 3000
    request_timeout: float = 15.0
    log_level: str = "INFO"
    create_tables: bool = True

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            service=os.getenv("SERVICE", "").strip().lower(),
            database_url=_database_url(),
            appointments_backend=os.getenv("APPOINTMENTS_BACKEND", "sql").strip().lower(),
            mongo_uri=os.getenv("MONGO_URI", "mongodb://appointments_db:27017"),
            mongo_db_name=os.getenv("MONGO_DB_NAME", "gestmed_appointments_db"),
            port=int(os.getenv("PORT", "3000")),
            request_timeout=float(os.getenv("REQUEST_TIMEOUT", "15")),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            create_tables=_bool_env("CREATE_TABLES", True),
        )

    def mounted_services(self) -> tuple[str, ...]:
        if self.service == "all":
            return SERVICES
        if self.service not in SERVICES:
            raise RuntimeError(
                "No service specified in environment variables. "
                f"Please set SERVICE to one of: {', '.join(SERVICES)}, all."
            )
        return (self.service,)


# Lato client (streamlit / CLI remoti)
API_BASE_URL = os.getenv("API_BASE_URL", "http://localhost:3000")
USERINFO_URL = os.getenv("USERINFO_URL")


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    # client HTTP troppo verbosi
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("pymongo").setLevel(logging.WARNING)
