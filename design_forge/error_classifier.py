"""
错误分类器 - 将服务商原始失败映射为 QuotaExceeded / GenerationFailed

服务商不保证结构化的错误通道，这里刻意只做大小写不敏感的子串匹配，
匹配范围覆盖错误对象的完整序列化文本。分类器从不重试。
"""

import json
import logging
from typing import Any, Optional

from .exceptions import ForgeError, GenerationFailed, QuotaExceeded
from .models import WorkflowKind

logger = logging.getLogger(__name__)

QUOTA_INDICATORS = ("quota", "rate limit", "resource_exhausted", "429")

QUOTA_MESSAGE = (
    "已超出该 AI 模型的每日使用上限。请改用其他模型（如 Gemini Nano 或 Gemini Pro），"
    "或等明天额度重置后再试。"
)

CHAT_QUOTA_MESSAGE = "今日与助手的对话次数已达上限，请明天再试。"

OPERATION_NAMES = {
    WorkflowKind.POSTER: "生成海报",
    WorkflowKind.IMAGE: "生成图片",
    WorkflowKind.LOGO: "生成 Logo",
    WorkflowKind.REMIX: "混合图片",
    WorkflowKind.BACKGROUND_REMOVAL: "移除图片背景",
    WorkflowKind.ENHANCE: "提升图片画质",
    WorkflowKind.EDIT: "编辑海报",
    WorkflowKind.PROMPT_FROM_IMAGE: "根据图片生成提示词",
    WorkflowKind.CHAT: "发送消息",
    WorkflowKind.AD_COPY: "生成广告文案",
}


def generic_message(kind: WorkflowKind) -> str:
    """按操作类型给出的兜底错误消息"""
    return f"{OPERATION_NAMES.get(kind, '处理请求')}失败，发生了意外错误，请重试。"


def _flatten(error: Any) -> str:
    """尽量完整地把错误对象序列化为小写文本"""
    if isinstance(error, (dict, list)):
        try:
            return json.dumps(error, ensure_ascii=False, default=str).lower()
        except (TypeError, ValueError):
            return str(error).lower()

    chunks = [str(error)]
    for attr in ("status_code", "code", "status"):
        value = getattr(error, attr, None)
        if value is not None:
            chunks.append(str(value))

    # httpx.HTTPStatusError 等带响应的异常
    response = getattr(error, "response", None)
    if response is not None:
        chunks.append(str(getattr(response, "status_code", "")))
        try:
            chunks.append(response.text)
        except Exception:  # 响应体可能尚未读取
            pass

    body = getattr(error, "body", None)
    if body is not None:
        try:
            chunks.append(json.dumps(body, ensure_ascii=False, default=str))
        except (TypeError, ValueError):
            chunks.append(str(body))

    return " ".join(chunks).lower()


def _payload_message(payload: Any) -> Optional[str]:
    """从 {"error": {"message": ...}} 或 {"message": ...} 中取消息"""
    if not isinstance(payload, dict):
        return None
    nested = payload.get("error")
    if isinstance(nested, dict) and nested.get("message") is not None:
        return nested.get("message")
    return payload.get("message")


def _provider_message(error: Any) -> Optional[str]:
    """优先使用服务商响应体里的错误消息"""
    message = _payload_message(getattr(error, "body", None))
    if message:
        return message

    response = getattr(error, "response", None)
    if response is None:
        return None
    try:
        return _payload_message(response.json())
    except (ValueError, RuntimeError):  # 非 JSON 或响应体尚未读取
        return None


def _specific_message(error: Any) -> Optional[str]:
    """提取最具体的错误消息"""
    if isinstance(error, str):
        return error
    if isinstance(error, dict):
        return _payload_message(error)

    message = _provider_message(error)
    if message:
        return message

    message = getattr(error, "message", None)
    if message is None and isinstance(error, BaseException) and error.args:
        message = error.args[0]
    return message


def is_quota_error(error: Any) -> bool:
    """是否包含配额/限流特征"""
    text = _flatten(error)
    return any(indicator in text for indicator in QUOTA_INDICATORS)


def classify(error: Any, kind: WorkflowKind) -> ForgeError:
    """
    分类服务商失败

    Args:
        error: 原始失败（异常、字典或字符串）
        kind: 触发失败的操作类型

    Returns:
        QuotaExceeded 或 GenerationFailed；已分类的 ForgeError 原样返回
    """
    if isinstance(error, ForgeError):
        return error

    operation = kind.value
    if is_quota_error(error):
        message = CHAT_QUOTA_MESSAGE if kind == WorkflowKind.CHAT else QUOTA_MESSAGE
        logger.warning(f"⚠️ {OPERATION_NAMES.get(kind, operation)}: 触发配额限制")
        return QuotaExceeded(message, operation=operation)

    message = _specific_message(error)
    if not isinstance(message, str) or not message.strip() or message.strip().startswith("{"):
        message = generic_message(kind)

    logger.error(f"❌ {OPERATION_NAMES.get(kind, operation)}失败: {error}")
    return GenerationFailed(message, operation=operation)
