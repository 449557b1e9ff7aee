"""
Intelligence Module
智能层 - LLM 抽象 (排序 / 分类 Oracle)
"""
from .llm import (
    BaseLLM,
    OpenAILLM,
    PerplexityLLM,
    get_llm,
)

__all__ = [
    "BaseLLM",
    "OpenAILLM",
    "PerplexityLLM",
    "get_llm",
]
