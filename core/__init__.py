"""Core modules for configuration, logging and errors."""

from core.config import (
    AppConfig,
    BoardConfig,
    ConfigurationError,
    ServerConfig,
    StorageConfig,
    get_config,
    load_config_from_env,
    reset_config,
)
from core.errors import (
    BoardError,
    CardNotFoundError,
    InvalidBatchShape,
    InvalidEdit,
    InvalidFilter,
    MalformedCachedState,
    MissingTripId,
    PersistenceFailure,
)
from core.logging_config import (
    LogContext,
    generate_upload_id,
    setup_logging,
)

__all__ = [
    "AppConfig",
    "StorageConfig",
    "ServerConfig",
    "BoardConfig",
    "ConfigurationError",
    "load_config_from_env",
    "get_config",
    "reset_config",
    "BoardError",
    "MissingTripId",
    "InvalidBatchShape",
    "InvalidEdit",
    "InvalidFilter",
    "CardNotFoundError",
    "PersistenceFailure",
    "MalformedCachedState",
    "setup_logging",
    "LogContext",
    "generate_upload_id",
]
