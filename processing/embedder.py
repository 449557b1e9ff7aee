"""
Embedder
稿件文本向量化 - 语义去重使用的可插拔 Embedding 提供商
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Union
import asyncio
import hashlib
import logging
import os
import re

import httpx
import numpy as np

from utils.exceptions import EmbeddingError


logger = logging.getLogger(__name__)


def _ensure_text_list(texts: Union[str, List[str]]) -> List[str]:
    return [texts] if isinstance(texts, str) else list(texts)


def _batched(items: List[str], batch_size: int):
    for i in range(0, len(items), batch_size):
        yield items[i : i + batch_size]


def _sorted_embedding_payload(result: Dict[str, Any]) -> List[List[float]]:
    embeddings = sorted(result["data"], key=lambda x: x["index"])
    return [entry["embedding"] for entry in embeddings]


class BaseEmbedder(ABC):
    """
    Embedder 抽象基类
    """

    def __init__(self, model_name: str):
        self.model_name = model_name

    @property
    @abstractmethod
    def dimension(self) -> int:
        """返回向量维度"""

    @abstractmethod
    def embed(self, texts: Union[str, List[str]]) -> np.ndarray:
        """
        同步嵌入文本

        Args:
            texts: 单个文本或文本列表

        Returns:
            向量数组 (n_texts, dimension)
        """

    async def aembed(self, texts: Union[str, List[str]]) -> np.ndarray:
        """异步嵌入文本 (在线程池中执行同步实现)"""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.embed, texts)


class HashingEmbedder(BaseEmbedder):
    """
    本地确定性 Embedder
    词袋哈希到固定维度并归一化，无外部依赖，用于测试和离线运行
    """

    def __init__(self, model_name: str = "hashing-bow", dimensions: int = 64):
        super().__init__(model_name)
        self._dimensions = max(8, int(dimensions))

    @property
    def dimension(self) -> int:
        return self._dimensions

    def _vector(self, text: str) -> np.ndarray:
        vec = np.zeros(self._dimensions, dtype=float)
        for token in re.findall(r"\w+", str(text or "").lower()):
            digest = hashlib.sha1(token.encode("utf-8")).digest()
            vec[int.from_bytes(digest[:4], "big") % self._dimensions] += 1.0
        norm = float(np.linalg.norm(vec))
        return vec / norm if norm > 0 else vec

    def embed(self, texts: Union[str, List[str]]) -> np.ndarray:
        text_list = _ensure_text_list(texts)
        if not text_list:
            return np.zeros((0, self._dimensions), dtype=float)
        return np.vstack([self._vector(text) for text in text_list])


class OpenAIEmbedder(BaseEmbedder):
    """
    OpenAI Embeddings API
    text-embedding-3 系列支持 dimensions 参数裁剪向量
    """

    DIMENSIONS = {
        "text-embedding-3-small": 1536,
        "text-embedding-3-large": 3072,
        "text-embedding-ada-002": 1536,
    }

    def __init__(
        self,
        model_name: str = "text-embedding-3-small",
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        dimensions: Optional[int] = 512,
        batch_size: int = 100,
    ):
        """
        初始化 OpenAI Embedder

        Args:
            model_name: 模型名称
            api_key: API Key (不传则从环境变量读取)
            base_url: API Base URL (支持兼容 API)
            dimensions: 输出维度 (None 表示模型原生维度)
            batch_size: 批处理大小
        """
        super().__init__(model_name)
        self.api_key = api_key
        self.base_url = base_url
        self.dimensions = dimensions
        self.batch_size = batch_size
        self._client = None

    def _get_client(self):
        if self._client is None:
            from openai import OpenAI

            kwargs = {}
            if self.api_key:
                kwargs["api_key"] = self.api_key
            if self.base_url:
                kwargs["base_url"] = self.base_url
            self._client = OpenAI(**kwargs)
        return self._client

    @property
    def dimension(self) -> int:
        if self.dimensions:
            return int(self.dimensions)
        return self.DIMENSIONS.get(self.model_name, 1536)

    def embed(self, texts: Union[str, List[str]]) -> np.ndarray:
        client = self._get_client()
        text_list = _ensure_text_list(texts)
        all_embeddings: List[List[float]] = []

        for batch in _batched(text_list, self.batch_size):
            kwargs: Dict[str, Any] = {"input": batch, "model": self.model_name}
            if self.dimensions and self.model_name.startswith("text-embedding-3"):
                kwargs["dimensions"] = int(self.dimensions)
            try:
                response = client.embeddings.create(**kwargs)
            except Exception as exc:
                raise EmbeddingError(f"OpenAI API error: {exc}", model=self.model_name) from exc
            all_embeddings.extend([item.embedding for item in response.data])

        return np.array(all_embeddings)


class SiliconFlowEmbedder(BaseEmbedder):
    """
    SiliconFlow API Embedder (OpenAI 兼容的 /embeddings 接口)
    BGE-M3 对中英文混合标题效果较好
    """

    DIMENSIONS = {
        "BAAI/bge-m3": 1024,
        "BAAI/bge-large-zh-v1.5": 1024,
    }

    def __init__(
        self,
        model_name: str = "BAAI/bge-m3",
        api_key: Optional[str] = None,
        base_url: str = "https://api.siliconflow.cn/v1",
        batch_size: int = 32,
        timeout_sec: float = 30.0,
    ):
        super().__init__(model_name)
        self.api_key = api_key or os.getenv("SILICONFLOW_API_KEY")
        self.base_url = base_url
        self.batch_size = batch_size
        self.timeout_sec = timeout_sec

    @property
    def dimension(self) -> int:
        return self.DIMENSIONS.get(self.model_name, 1024)

    def embed(self, texts: Union[str, List[str]]) -> np.ndarray:
        if not self.api_key:
            raise EmbeddingError(
                "SiliconFlow API key not set. Set EMBEDDING_SILICONFLOW_API_KEY or pass api_key.",
                model=self.model_name,
            )

        text_list = _ensure_text_list(texts)
        all_embeddings: List[List[float]] = []
        for batch in _batched(text_list, self.batch_size):
            all_embeddings.extend(self._embed_batch(batch))

        return np.array(all_embeddings)

    def _embed_batch(self, texts: List[str]) -> List[List[float]]:
        url = f"{self.base_url}/embeddings"
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        payload = {
            "model": self.model_name,
            "input": texts,
            "encoding_format": "float",
        }

        try:
            with httpx.Client(timeout=self.timeout_sec) as client:
                response = client.post(url, json=payload, headers=headers)
                response.raise_for_status()
                result = response.json()
            return _sorted_embedding_payload(result)
        except httpx.HTTPError as exc:
            raise EmbeddingError(f"SiliconFlow API error: {exc}", model=self.model_name) from exc
        except (KeyError, TypeError, ValueError) as exc:
            raise EmbeddingError(f"Malformed embedding payload: {exc}", model=self.model_name) from exc


# 工厂函数
def get_embedder(
    provider: Optional[str] = None,
    model_name: Optional[str] = None,
    **kwargs,
) -> BaseEmbedder:
    """
    获取 Embedder 实例

    优先级: 函数参数 > .env 配置 > 默认值

    Args:
        provider: 提供商 (不传则读取 EMBEDDING_PROVIDER)
            - "openai": OpenAI API (默认 text-embedding-3-small, 512 维)
            - "siliconflow": SiliconFlow API
            - "hashing": 本地哈希词袋
        model_name: 模型名称 (不传则读取 EMBEDDING_MODEL_NAME)
    """
    from config import get_embedding_settings

    settings = get_embedding_settings()
    provider_name = (provider or settings.provider or "openai").strip().lower()

    if provider_name == "openai":
        kwargs.setdefault("api_key", settings.openai_api_key)
        kwargs.setdefault("dimensions", settings.dimensions)
        return OpenAIEmbedder(model_name or settings.model_name or "text-embedding-3-small", **kwargs)
    if provider_name == "siliconflow":
        kwargs.setdefault("api_key", settings.siliconflow_api_key)
        return SiliconFlowEmbedder(model_name or settings.model_name or "BAAI/bge-m3", **kwargs)
    if provider_name == "hashing":
        kwargs.setdefault("dimensions", settings.dimensions)
        return HashingEmbedder(model_name or "hashing-bow", **kwargs)

    raise ValueError(f"Unknown provider: {provider_name}. Supported: openai, siliconflow, hashing")
