import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _split(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return [item.strip() for item in raw.split(",") if item.strip()]


def _flag(raw: Optional[str]) -> bool:
    return (raw or "").strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    database_url: Optional[str] = None
    sql_echo: bool = False
    cors_origins: List[str] = field(default_factory=lambda: ["http://localhost:5173"])
    admin_user_ids: frozenset = frozenset()
    seed_rooms: List[str] = field(default_factory=list)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.environ.get("DATABASE_URL"),
            sql_echo=_flag(os.environ.get("SQL_ECHO")),
            cors_origins=_split(os.environ.get("CORS_ORIGINS")) or ["http://localhost:5173"],
            admin_user_ids=frozenset(_split(os.environ.get("ADMIN_USER_IDS"))),
            seed_rooms=_split(os.environ.get("SEED_ROOMS")),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        )
