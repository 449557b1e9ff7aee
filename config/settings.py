"""
Settings Configuration
使用 Pydantic 进行配置验证和管理
"""
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class SelectionSettings(BaseSettings):
    """选稿周期开关与窗口配置"""
    dynamic_threshold: bool = Field(default=True, description="根据分数分布动态计算录用阈值")
    flexible_count: bool = Field(default=False, description="高分稿件较多时最多扩展到 5 篇")
    breaking_fast_lane: bool = Field(default=False, description="突发新闻优先进入候选短名单")
    semantic_dedup: bool = Field(default=True, description="启用跨来源语义去重")
    categorization: bool = Field(default=False, description="启用分类 Oracle 重新归类")
    topic_window_days: int = Field(default=4, description="近期已推广话题窗口(天)")
    staleness_hours: int = Field(default=4, description="未完成选中状态的重置窗口(小时)")
    recent_title_hours: int = Field(default=24, description="近期已选标题过滤窗口(小时)")
    shortlist_size: int = Field(default=15, description="送往 Oracle 的短名单长度")
    target_count: int = Field(default=3, description="每轮目标选中数量")
    commit_concurrency: int = Field(default=8, description="提交阶段并发写入上限")
    semantic_window_hours: int = Field(default=24, description="语义去重比较的时间窗口(小时)")
    semantic_link_threshold: float = Field(default=0.5, description="语义去重合并阈值")
    category_min_confidence: int = Field(default=6, description="采用分类 Oracle 结果的最低置信度")
    tiers_json: Optional[str] = Field(default=None, description="来源分层配置 (JSON, 覆盖默认值)")

    class Config:
        env_prefix = "SELECTION_"


class OracleSettings(BaseSettings):
    """排序 / 分类 Oracle (LLM) 配置"""
    provider: str = Field(default="perplexity", description="LLM提供商: perplexity, openai")
    model_name: Optional[str] = Field(default=None, description="模型名称(不填则使用默认)")
    temperature: float = Field(default=0.2, description="生成温度")
    max_tokens: int = Field(default=1000, description="最大生成token数")
    timeout_sec: float = Field(default=30.0, description="排序调用硬超时(秒)")

    perplexity_api_key: Optional[str] = Field(default=None, description="Perplexity API Key")
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API Key")

    categorizer_provider: str = Field(default="openai", description="分类 Oracle 提供商")
    categorizer_model: Optional[str] = Field(default=None, description="分类模型名称")

    class Config:
        env_prefix = "ORACLE_"


class EmbeddingSettings(BaseSettings):
    """Embedding 服务配置"""
    provider: str = Field(default="openai", description="Embedding提供商: openai, siliconflow, hashing")
    model_name: Optional[str] = Field(default=None, description="模型名称(不填则使用默认)")
    dimensions: int = Field(default=512, description="向量维度 (OpenAI text-embedding-3 支持裁剪)")

    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API Key")
    siliconflow_api_key: Optional[str] = Field(default=None, description="SiliconFlow API Key")

    class Config:
        env_prefix = "EMBEDDING_"


class StoreSettings(BaseSettings):
    """持久化存储配置"""
    backend: str = Field(default="memory", description="存储后端: memory, postgres")
    pg_dsn: Optional[str] = Field(default=None, description="Postgres DSN")
    table: str = Field(default="articles", description="稿件表名")
    statement_timeout_ms: int = Field(default=15000, description="单条语句超时(毫秒)")

    class Config:
        env_prefix = "STORE_"


class Settings(BaseSettings):
    """主配置类 - 聚合所有子配置"""

    selection: SelectionSettings = Field(default_factory=SelectionSettings)
    oracle: OracleSettings = Field(default_factory=OracleSettings)
    embedding: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    @classmethod
    def load_from_env_file(cls, env_path: Optional[Path] = None) -> "Settings":
        """从指定的 .env 文件加载配置"""
        if env_path is None:
            # 默认查找 config/.env
            env_path = Path(__file__).parent / ".env"

        if env_path.exists():
            from dotenv import load_dotenv
            load_dotenv(env_path)

        return cls(
            selection=SelectionSettings(),
            oracle=OracleSettings(),
            embedding=EmbeddingSettings(),
            store=StoreSettings(),
        )


@lru_cache()
def get_settings() -> Settings:
    """获取全局配置单例"""
    return Settings.load_from_env_file()


# 便捷访问
def get_selection_settings() -> SelectionSettings:
    return get_settings().selection


def get_oracle_settings() -> OracleSettings:
    return get_settings().oracle


def get_embedding_settings() -> EmbeddingSettings:
    return get_settings().embedding


def get_store_settings() -> StoreSettings:
    return get_settings().store
