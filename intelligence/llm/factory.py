"""
LLM Factory
工厂函数 - 根据配置自动创建 LLM 实例
"""
from typing import Optional
import logging

from .base import BaseLLM
from .openai_llm import OpenAILLM
from .perplexity_llm import PerplexityLLM


logger = logging.getLogger(__name__)


# 默认模型配置
DEFAULT_MODELS = {
    "openai": "gpt-4o-mini",
    "perplexity": "sonar-pro",
}


def get_llm(
    provider: Optional[str] = None,
    model: Optional[str] = None,
    **kwargs,
) -> BaseLLM:
    """
    获取 LLM 实例

    自动从 .env 读取配置 (ORACLE_*)，也可手动指定

    Args:
        provider: LLM 供应商 (perplexity, openai)
        model: 模型名称 (不传则使用默认)
        **kwargs: 额外参数 (temperature, max_tokens, timeout 等)

    Example:
        # 排序 Oracle
        llm = get_llm()

        # 分类 Oracle
        llm = get_llm(provider="openai", temperature=0.3)
    """
    from config import get_oracle_settings

    settings = get_oracle_settings()

    configured = (settings.provider or "perplexity").strip().lower()
    provider = (provider or configured).strip().lower()
    # ORACLE_MODEL_NAME 只对配置的排序供应商生效
    if not model and provider == configured:
        model = settings.model_name
    model = model or DEFAULT_MODELS.get(provider)

    api_keys = {
        "openai": settings.openai_api_key,
        "perplexity": settings.perplexity_api_key,
    }
    api_key = kwargs.pop("api_key", None) or api_keys.get(provider)

    default_params = {
        "temperature": settings.temperature,
        "max_tokens": settings.max_tokens,
        "timeout": settings.timeout_sec,
    }
    for key, value in default_params.items():
        if key not in kwargs:
            kwargs[key] = value

    if provider == "openai":
        return OpenAILLM(model=model, api_key=api_key, base_url=kwargs.pop("base_url", None), **kwargs)
    elif provider == "perplexity":
        return PerplexityLLM(model=model, api_key=api_key, base_url=kwargs.pop("base_url", None), **kwargs)
    else:
        raise ValueError(f"Unsupported LLM provider: {provider}")
