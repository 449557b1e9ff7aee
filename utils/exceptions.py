"""
Custom Exceptions
选稿引擎异常定义
"""


class SelectionEngineError(Exception):
    """选稿引擎基础异常类"""

    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self):
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(SelectionEngineError):
    """配置错误"""
    pass


class StorageError(SelectionEngineError):
    """存储错误"""
    pass


class NoCandidatesError(SelectionEngineError):
    """本轮没有可选候选稿件 (对本轮致命, 对进程无影响)"""

    def __init__(self, message: str = "No candidate articles found for selection", **kwargs):
        super().__init__(message, kwargs)


class EmbeddingError(SelectionEngineError):
    """向量化错误"""

    def __init__(self, message: str, model: str = None, **kwargs):
        super().__init__(message, kwargs)
        self.model = model


class OracleError(SelectionEngineError):
    """排序 Oracle 调用错误"""
    pass


class OracleTimeoutError(OracleError):
    """Oracle 超时"""
    pass


class OracleResponseError(OracleError):
    """Oracle 返回内容无法解析或结构不符"""

    def __init__(self, message: str, raw: str = "", **kwargs):
        super().__init__(message, kwargs)
        self.raw = raw


class CategorizationError(SelectionEngineError):
    """分类 Oracle 错误"""
    pass


class CycleInProgressError(SelectionEngineError):
    """已有选稿周期在运行"""

    def __init__(self, message: str = "A selection cycle is already running", cycle_id: str = None):
        super().__init__(message, {"cycle_id": cycle_id} if cycle_id else None)
        self.cycle_id = cycle_id
