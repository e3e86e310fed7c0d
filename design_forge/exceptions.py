"""
自定义异常类

工作流中的每一种失败都对应一个异常类型，统一继承自 ForgeError，
由 Studio 调度器捕获并转换为唯一一条用户可见的错误消息。
"""

from typing import List, Optional


class ForgeError(Exception):
    """DesignForge 基础异常"""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ConfigurationError(ForgeError):
    """配置错误"""

    def __init__(self, message: str, field: str = None):
        self.field = field
        super().__init__(message)


class PathNotFoundError(ForgeError):
    """路径不存在错误"""

    def __init__(self, path: str, message: str = None):
        self.path = path
        msg = message or f"路径不存在: {path}"
        super().__init__(msg)


class InvalidRequestError(ForgeError):
    """生成请求参数非法"""

    def __init__(self, message: str, field: str = None):
        self.field = field
        super().__init__(message)


class WorkflowStateError(ForgeError):
    """当前工作流状态不允许该操作"""

    def __init__(self, message: str, state: str = None):
        self.state = state
        super().__init__(message)


class SelectionError(ForgeError):
    """候选集选择错误"""

    def __init__(self, message: str, available: int = None, requested: int = None):
        self.available = available
        self.requested = requested
        super().__init__(message)


class InsufficientCredits(ForgeError):
    """本地额度不足（预检失败，请求不会到达服务商）"""

    def __init__(self, required: int, remaining: int, message: str = None):
        self.required = required
        self.remaining = remaining
        msg = message or f"今日额度不足：需要 {required} 点，剩余 {remaining} 点。请选择免费模型或明天再试。"
        super().__init__(msg)


class QuotaExceeded(ForgeError):
    """服务商报告的速率/配额限制"""

    def __init__(self, message: str, operation: str = None):
        self.operation = operation
        super().__init__(message)


class GenerationFailed(ForgeError):
    """其他服务商失败"""

    def __init__(self, message: str, operation: str = None):
        self.operation = operation
        super().__init__(message)


class NoImageReturned(ForgeError):
    """单图操作成功返回但没有图片内容"""

    def __init__(self, message: str, operation: str = None):
        self.operation = operation
        super().__init__(message)


class EmptyBatch(ForgeError):
    """批次内所有调用均未产出图片"""

    def __init__(
        self,
        message: str,
        requested: int,
        failures: Optional[List[ForgeError]] = None,
        operation: str = None,
    ):
        self.requested = requested
        self.failures = list(failures or [])
        self.operation = operation
        super().__init__(message)
