"""
Processing Module
文本向量化模块 - 语义去重使用的 Embedding
"""
from .embedder import (
    BaseEmbedder,
    HashingEmbedder,
    OpenAIEmbedder,
    SiliconFlowEmbedder,
    get_embedder,
)

__all__ = [
    "BaseEmbedder",
    "HashingEmbedder",
    "OpenAIEmbedder",
    "SiliconFlowEmbedder",
    "get_embedder",
]
