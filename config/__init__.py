"""
Configuration Management Module
统一配置管理，环境变量驱动
"""
from .settings import (
    Settings,
    SelectionSettings,
    OracleSettings,
    EmbeddingSettings,
    StoreSettings,
    get_settings,
    get_selection_settings,
    get_oracle_settings,
    get_embedding_settings,
    get_store_settings,
)

__all__ = [
    "Settings",
    "SelectionSettings",
    "OracleSettings",
    "EmbeddingSettings",
    "StoreSettings",
    "get_settings",
    "get_selection_settings",
    "get_oracle_settings",
    "get_embedding_settings",
    "get_store_settings",
]
