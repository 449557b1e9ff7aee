"""
Perplexity LLM
Perplexity Sonar 模型 (OpenAI 兼容接口)
"""
from typing import Optional

from .openai_llm import OpenAILLM


class PerplexityLLM(OpenAILLM):
    """
    Perplexity LLM 实现

    支持模型:
    - sonar-pro (默认, 排序 Oracle)
    - sonar
    """

    DEFAULT_BASE_URL = "https://api.perplexity.ai"

    def __init__(
        self,
        model: str = "sonar-pro",
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        temperature: float = 0.2,
        max_tokens: int = 1000,
        timeout: float = 30.0,
        **kwargs,
    ):
        super().__init__(model, api_key, base_url, temperature, max_tokens, timeout, **kwargs)

    @property
    def provider(self) -> str:
        return "perplexity"
