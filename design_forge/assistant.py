"""
AI 助手 - 对话式提示词辅助
"""

import logging
import re
from typing import List, Optional

from .batch_executor import BatchExecutor
from .candidates import CandidateSet
from .error_classifier import classify
from .exceptions import InvalidRequestError
from .models import (
    AspectRatio,
    ChatRole,
    ChatSegment,
    ChatTranscript,
    ChatTurn,
    GenerationRequest,
    ImageModel,
    ImagePayload,
    VisualStyle,
    WorkflowKind,
)
from .prompt_builder import PromptBuilder
from .provider_client import Conversation, GenerationProvider
from .quota_ledger import QuotaLedger
from .workflows import GenerationWorkflow

logger = logging.getLogger(__name__)

_FENCED_BLOCK = re.compile(r"```(.*?)```", re.DOTALL)
_PROMPT_TAG = re.compile(r"^prompt\b\s*")


def extract_prompt_blocks(text: str) -> List[str]:
    """提取回复中用代码块包裹的最终提示词"""
    prompts = []
    for block in _FENCED_BLOCK.findall(text):
        prompt = _PROMPT_TAG.sub("", block.strip(), count=1).strip()
        if prompt:
            prompts.append(prompt)
    return prompts


class AssistantWorkflow:
    """助手流程：对话、图片反推提示词、快速生成"""

    def __init__(
        self,
        provider: GenerationProvider,
        executor: BatchExecutor,
        builder: PromptBuilder,
        ledger: QuotaLedger,
        quick_model: ImageModel = ImageModel.IMAGEN_4,
    ):
        """
        初始化助手流程

        Args:
            provider: 生成服务商（对话直接调用）
            executor: 批量执行引擎
            builder: 请求构建器
            ledger: 额度账本
            quick_model: 助手内快速生成使用的模型
        """
        self.provider = provider
        self.executor = executor
        self.builder = builder
        self.quick_model = quick_model
        self.transcript = ChatTranscript()
        self.generator = GenerationWorkflow(WorkflowKind.IMAGE, executor, builder, ledger)
        self.generated_prompt = ""
        self._conversation: Optional[Conversation] = None

    async def _ensure_conversation(self) -> Conversation:
        if self._conversation is None:
            self._conversation = await self.provider.start_conversation(self.builder.chat_system_prompt())
            logger.info("💬 已创建助手对话")
        return self._conversation

    async def send(self, text: str = "", image: Optional[ImagePayload] = None) -> Optional[ChatTurn]:
        """
        发送一条消息

        失败时不会回滚用户消息，而是追加一条错误回复。
        等待回复期间对话被清空时，回复直接丢弃。

        Returns:
            模型回复（失败时为 is_error=True 的错误回复）；对话已被清空时返回 None
        """
        segments = []
        if text.strip():
            segments.append(ChatSegment(text=text))
        if image is not None:
            segments.append(ChatSegment(image=image))
        if not segments:
            raise InvalidRequestError("消息不能为空", field="text")

        transcript = self.transcript
        transcript.append(ChatTurn(role=ChatRole.USER, segments=tuple(segments)))

        try:
            conversation = await self._ensure_conversation()
            reply = await self.provider.send_turn(conversation, text if text.strip() else None, image)
        except Exception as e:
            if transcript is not self.transcript:
                logger.warning(f"对话已清空，忽略过期的回复失败: {e}")
                return None
            error = classify(e, WorkflowKind.CHAT)
            logger.error(f"助手回复失败: {e}")
            return transcript.append(ChatTurn(
                role=ChatRole.MODEL,
                segments=(ChatSegment(text=error.message),),
                is_error=True,
            ))

        if transcript is not self.transcript:
            logger.info("对话已清空，丢弃过期的回复")
            return None
        return transcript.append(ChatTurn(role=ChatRole.MODEL, segments=(ChatSegment(text=reply),)))

    async def describe_image(self, image: ImagePayload) -> str:
        """根据图片反推提示词"""
        self.generated_prompt = ""
        prompt = await self.executor.execute_text(self.builder.build_prompt_from_image(image))
        self.generated_prompt = prompt
        return prompt

    async def generate_from_prompt(self, prompt: str) -> Optional[CandidateSet]:
        """用默认参数快速生成一张图片"""
        if not prompt.strip():
            raise InvalidRequestError("不能使用空提示词生成图片", field="prompt")
        # 先清掉上一张结果
        self.generator.close()
        return await self.generator.submit(GenerationRequest(
            kind=WorkflowKind.IMAGE,
            prompt=prompt,
            aspect_ratio=AspectRatio.SQUARE,
            style=VisualStyle.NONE,
            model=self.quick_model,
            variations=1,
        ))

    def reset(self):
        """清空对话"""
        self.transcript = ChatTranscript()
        self._conversation = None
        self.generator.close()
