"""
批量执行引擎 - 并发发起 N 次服务商调用并收集成功结果
"""

import asyncio
import logging
from typing import List, Optional

from .candidates import CandidateSet
from .error_classifier import classify, generic_message
from .exceptions import EmptyBatch, ForgeError, GenerationFailed, InvalidRequestError, NoImageReturned
from .models import ImagePayload, ProviderRequest, ProviderResponse, WorkflowKind
from .provider_client import GenerationProvider

logger = logging.getLogger(__name__)

NO_IMAGE_MESSAGES = {
    WorkflowKind.POSTER: "AI 未能生成海报，请尝试其他创意描述。",
    WorkflowKind.IMAGE: "AI 未能用该模型生成图片，请尝试其他提示词或模型。",
    WorkflowKind.LOGO: "AI 未能用该模型生成 Logo，请尝试其他描述或模型。",
    WorkflowKind.REMIX: "AI 无法混合这两张图片，请尝试其他指令或图片。",
    WorkflowKind.BACKGROUND_REMOVAL: "AI 无法处理这张图片，请换一张图片试试。",
    WorkflowKind.ENHANCE: "AI 无法提升这张图片的画质。",
    WorkflowKind.EDIT: "AI 无法应用这些修改，请尝试其他编辑指令。",
}


def no_image_message(kind: WorkflowKind) -> str:
    return NO_IMAGE_MESSAGES.get(kind, generic_message(kind))


def _reraise_classified(error: Exception, kind: WorkflowKind):
    classified = classify(error, kind)
    if classified is error:
        raise error
    raise classified from error


class BatchExecutor:
    """批量执行引擎"""

    def __init__(self, provider: GenerationProvider):
        """
        初始化批量执行引擎

        Args:
            provider: 生成服务商
        """
        self.provider = provider

    async def _generate_one(self, request: ProviderRequest, index: int, total: int) -> Optional[ImagePayload]:
        """单次调用，无图片时返回 None"""
        log_prefix = f"[{request.kind.value}][{index + 1}/{total}]"
        logger.info(f"{log_prefix} 🎨 开始生成...")

        response: ProviderResponse = await self.provider.generate(request)
        if not response.images:
            logger.warning(f"{log_prefix} 未返回图片: {response.text[:100]}")
            return None

        logger.info(f"{log_prefix} ✅ 完成")
        return response.images[0]

    async def execute(self, request: ProviderRequest, variation_count: int) -> CandidateSet:
        """
        并发执行一个批次

        所有调用同时发出并全部结束后才返回，不会因单个成功或失败提前结束。

        Args:
            request: 已构建的服务商请求
            variation_count: 变体数量

        Returns:
            按发出顺序排列的成功结果组成的候选集
        """
        if variation_count < 1:
            raise InvalidRequestError("变体数量至少为 1", field="variations")

        results = await asyncio.gather(
            *(self._generate_one(request, i, variation_count) for i in range(variation_count)),
            return_exceptions=True,
        )

        images: List[ImagePayload] = []
        failures: List[ForgeError] = []
        for i, result in enumerate(results):
            if isinstance(result, BaseException) and not isinstance(result, Exception):
                raise result
            if isinstance(result, Exception):
                logger.error(f"[{request.kind.value}][{i + 1}/{variation_count}] ❌ 失败: {result}")
                failures.append(classify(result, request.kind))
            elif result is not None:
                images.append(result)

        logger.info(f"[{request.kind.value}] 📊 完成: {len(images)}/{variation_count} 张成功")

        if not images:
            message = failures[0].message if failures else no_image_message(request.kind)
            raise EmptyBatch(
                message,
                requested=variation_count,
                failures=failures,
                operation=request.kind.value,
            )

        return CandidateSet(images)

    async def execute_single(self, request: ProviderRequest) -> ImagePayload:
        """单图操作（N=1 的批次），无图片时抛出 NoImageReturned"""
        try:
            response = await self.provider.generate(request)
        except Exception as e:
            _reraise_classified(e, request.kind)

        if not response.images:
            logger.warning(f"[{request.kind.value}] 未返回图片: {response.text[:100]}")
            raise NoImageReturned(no_image_message(request.kind), operation=request.kind.value)
        return response.images[0]

    async def execute_text(self, request: ProviderRequest) -> str:
        """纯文本操作"""
        try:
            response = await self.provider.generate(request)
        except Exception as e:
            _reraise_classified(e, request.kind)

        if not response.text.strip():
            raise GenerationFailed(generic_message(request.kind), operation=request.kind.value)
        return response.text.strip()
