"""
Utils Module
通用工具函数
"""
from .logger import setup_logger, get_logger
from .exceptions import (
    SelectionEngineError,
    ConfigurationError,
    StorageError,
    NoCandidatesError,
    EmbeddingError,
    OracleError,
    OracleTimeoutError,
    OracleResponseError,
    CategorizationError,
    CycleInProgressError,
)

__all__ = [
    "setup_logger",
    "get_logger",
    "SelectionEngineError",
    "ConfigurationError",
    "StorageError",
    "NoCandidatesError",
    "EmbeddingError",
    "OracleError",
    "OracleTimeoutError",
    "OracleResponseError",
    "CategorizationError",
    "CycleInProgressError",
]
