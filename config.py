import os
from dataclasses import dataclass, fields
from typing import Any, Dict


def _env_flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


@dataclass
class EngineConfig:
    # Guard against rule sets that retrigger themselves forever
    MAX_CASCADE_DEPTH: int = int(os.getenv("CONCEPTS_MAX_CASCADE_DEPTH", "64"))
    # Seconds a single action/query may take; 0 disables the timeout
    ACTION_TIMEOUT: float = float(os.getenv("CONCEPTS_ACTION_TIMEOUT", "10"))
    # Keep a flow's events after its top-level invocation returns
    RETAIN_HISTORY: bool = _env_flag("CONCEPTS_RETAIN_HISTORY")


@dataclass
class ServerConfig:
    HOST: str = os.getenv("CONCEPTS_HOST", "127.0.0.1")
    PORT: int = int(os.getenv("CONCEPTS_PORT", "8000"))
    BASE_URL: str = os.getenv("CONCEPTS_BASE_URL", "/api")


@dataclass
class CatalogConfig:
    CLIENT_ID: str = os.getenv("CLIENT_ID", "")
    CLIENT_SECRET: str = os.getenv("CLIENT_SECRET", "")
    TOKEN_URL: str = "https://accounts.spotify.com/api/token"
    API_URL: str = "https://api.spotify.com/v1"
    SEARCH_LIMIT: int = int(os.getenv("CONCEPTS_SEARCH_LIMIT", "10"))
    TIMEOUT: float = 15.0


@dataclass
class LoggingConfig:
    LEVEL: str = os.getenv("CONCEPTS_LOG_LEVEL", "INFO")
    FORMAT: str = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class Config:
    """Process-wide configuration sections."""
    engine = EngineConfig()
    server = ServerConfig()
    catalog = CatalogConfig()
    logging = LoggingConfig()

    @classmethod
    def to_dict(cls) -> Dict[str, Any]:
        """Serialize all config sections to a flat dictionary."""
        result = {}
        for section_name in ["engine", "server", "catalog", "logging"]:
            section = getattr(cls, section_name)
            for f in fields(section):
                if f.name == "CLIENT_SECRET":
                    continue
                result[f"{section_name}.{f.name}"] = getattr(section, f.name)
        return result
