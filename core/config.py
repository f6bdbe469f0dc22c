"""Centralized configuration management with validation."""
import os
from dataclasses import dataclass, field
from typing import Optional, List
from pathlib import Path


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing."""
    pass


def _parse_list(value: str) -> List[str]:
    """Split a comma-separated env value, dropping blanks."""
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass
class StorageConfig:
    """Storage/persistence configuration."""
    cards_path: str = "data/cards.json"
    cache_path: str = "data/board_cache.json"

    def validate(self) -> List[str]:
        """Validate storage configuration, return list of errors."""
        errors = []
        if not self.cards_path:
            errors.append("CARDS_FILE is required")
        # Ensure parent directories exist or can be created
        for label, raw_path in (("CARDS_FILE", self.cards_path), ("CLIENT_CACHE_FILE", self.cache_path)):
            if not raw_path:
                continue
            parent = Path(raw_path).parent
            if str(parent) != "." and not parent.exists():
                try:
                    parent.mkdir(parents=True, exist_ok=True)
                except OSError as e:
                    errors.append(f"Cannot create {label} directory: {e}")
        return errors


@dataclass
class ServerConfig:
    """HTTP server configuration."""
    host: str = "0.0.0.0"
    port: int = 3000
    cors_origins: List[str] = field(default_factory=lambda: ["*"])

    def validate(self) -> List[str]:
        """Validate server configuration, return list of errors."""
        errors = []
        if not (0 < self.port < 65536):
            errors.append(f"PORT must be between 1 and 65535 (got {self.port})")
        return errors


@dataclass
class BoardConfig:
    """Observer/board client configuration."""
    api_base_url: str = "http://localhost:3000"
    ambassadors_path: Optional[str] = None

    def validate(self) -> List[str]:
        """Validate board configuration, return list of errors."""
        errors = []
        if not self.api_base_url.startswith(("http://", "https://")):
            errors.append(f"BOARD_API_URL must be an http(s) URL (got {self.api_base_url!r})")
        if self.ambassadors_path and not Path(self.ambassadors_path).exists():
            errors.append(f"AMBASSADORS_FILE not found: {self.ambassadors_path}")
        return errors


@dataclass
class AppConfig:
    """Main application configuration."""
    storage: StorageConfig = field(default_factory=StorageConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    board: BoardConfig = field(default_factory=BoardConfig)

    # Runtime settings
    log_level: str = "INFO"
    log_format: str = "text"  # "json" or "text"

    def validate(self, require_board: bool = False) -> None:
        """Validate all configuration, raise ConfigurationError if invalid."""
        errors = []

        errors.extend(self.storage.validate())
        errors.extend(self.server.validate())
        if require_board:
            errors.extend(self.board.validate())

        if self.log_format not in ("json", "text"):
            errors.append(f"LOG_FORMAT must be 'json' or 'text' (got {self.log_format!r})")

        if errors:
            raise ConfigurationError("Configuration errors:\n  - " + "\n  - ".join(errors))

    def __repr__(self) -> str:
        return (f"AppConfig(\n  storage={self.storage},\n  server={self.server},\n  "
                f"board={self.board},\n  log_level={self.log_level}, log_format={self.log_format}\n)")


def load_config_from_env() -> AppConfig:
    """Load configuration from environment variables."""

    # Load .env file if present
    from dotenv import load_dotenv
    load_dotenv()

    config = AppConfig(
        storage=StorageConfig(
            cards_path=os.getenv("CARDS_FILE", "data/cards.json"),
            cache_path=os.getenv("CLIENT_CACHE_FILE", "data/board_cache.json"),
        ),
        server=ServerConfig(
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "3000")),
            cors_origins=_parse_list(os.getenv("CORS_ORIGINS", "*")),
        ),
        board=BoardConfig(
            api_base_url=os.getenv("BOARD_API_URL", "http://localhost:3000").rstrip("/"),
            ambassadors_path=os.getenv("AMBASSADORS_FILE"),
        ),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        log_format=os.getenv("LOG_FORMAT", "text").lower(),
    )

    return config


# Singleton config instance
_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = load_config_from_env()
    return _config


def reset_config() -> None:
    """Reset the global configuration (for testing)."""
    global _config
    _config = None
