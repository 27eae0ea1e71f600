import logging
import os
import sys
from typing import List, Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from errors import ConfigurationError

REQUIRED_VARIABLES = ("JWT_SECRET", "DATABASE_URL")

LOG_FORMAT = "%(asctime)s - %(name)s - [%(levelname)s] - %(message)s"


class Settings(BaseModel):
    """
    Process-wide configuration.
    Built once at startup and handed to the services that need it.
    """
    jwt_secret: str = Field(..., min_length=1, description="HS256 signing key for bearer tokens")
    database_url: str = Field(..., min_length=1, description="MongoDB connection string")
    database_name: str = Field("marketplace", description="MongoDB database name")
    token_ttl_minutes: int = Field(120, gt=0, description="Bearer token validity")
    log_level: str = Field("INFO")
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    if environ is None:
        load_dotenv()
        environ = os.environ

    missing = [name for name in REQUIRED_VARIABLES if not environ.get(name)]
    if missing:
        raise ConfigurationError(f"Missing required environment variables: {', '.join(missing)}")

    origins = environ.get("CORS_ORIGINS", "*")
    try:
        return Settings(
            jwt_secret=environ["JWT_SECRET"],
            database_url=environ["DATABASE_URL"],
            database_name=environ.get("DATABASE_NAME") or "marketplace",
            token_ttl_minutes=int(environ.get("TOKEN_TTL_MINUTES", 120)),
            log_level=environ.get("LOG_LEVEL", "INFO").upper(),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
        )
    except ValueError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e


def configure_logging(level: str = "INFO"):
    root = logging.getLogger()
    root.setLevel(level)
    if any(getattr(h, "_marketplace", False) for h in root.handlers):
        return
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._marketplace = True
    root.addHandler(handler)
