"""
工作流状态机

海报流程：上传 -> 抠图 -> 输入创意 -> 生成 -> 编辑；
其他模式（图片 / Logo / 混合 / 助手生成）：Idle -> Generating -> HasResult。

每个工作流持有一个生成令牌：每次分发、重新开始、关闭结果都会递增令牌，
令牌已过期的批次结果（无论成功还是失败）只记录日志，不再修改状态。
"""

import logging
from typing import Dict, Optional

from .batch_executor import BatchExecutor
from .candidates import CandidateSet, CandidateViewer
from .exceptions import ForgeError, InvalidRequestError, WorkflowStateError
from .models import (
    AspectRatio,
    GenerationRequest,
    ImageModel,
    ImagePayload,
    PosterEngine,
    SimpleState,
    VisualStyle,
    WorkflowKind,
    WorkflowState,
)
from .prompt_builder import PromptBuilder
from .quota_ledger import QuotaLedger

logger = logging.getLogger(__name__)


class _GenerationToken:
    """最后分发者胜出的版本令牌"""

    def __init__(self):
        self.value = 0

    def advance(self) -> int:
        self.value += 1
        return self.value

    def is_current(self, token: int) -> bool:
        return token == self.value


class PosterWorkflow:
    """海报生成流程"""

    def __init__(self, executor: BatchExecutor, builder: PromptBuilder, ledger: QuotaLedger):
        self.executor = executor
        self.builder = builder
        self.ledger = ledger
        self._token = _GenerationToken()
        self._edit_tokens: Dict[int, int] = {}

        self.state = WorkflowState.UPLOADING_SOURCE
        self.source_image: Optional[ImagePayload] = None
        self.processed_image: Optional[ImagePayload] = None
        self.candidates = CandidateSet()
        self.viewer = CandidateViewer(self.candidates)

        # 用户输入
        self.concept = ""
        self.edit_prompt = ""
        self.style = VisualStyle.NONE
        self.aspect_ratio = AspectRatio.PORTRAIT
        self.reference_image: Optional[ImagePayload] = None
        self.variations = 1
        self.model = ImageModel.GEMINI_NANO
        self.poster_engine = PosterEngine.BALANCED

    def _set_candidates(self, candidates: CandidateSet):
        self.candidates = candidates
        self.viewer.bind(candidates)

    async def upload_source(self, image: ImagePayload) -> Optional[ImagePayload]:
        """
        上传产品图并移除背景

        Returns:
            抠图结果；结果已被更新的操作取代时返回 None
        """
        if self.state not in (WorkflowState.UPLOADING_SOURCE, WorkflowState.PROCESSING_SOURCE):
            raise WorkflowStateError("请先重新开始再上传新的产品图", state=self.state.value)

        token = self._token.advance()
        self.source_image = image
        self.processed_image = None
        self.state = WorkflowState.PROCESSING_SOURCE
        logger.info("🔍 分析产品图并移除背景...")

        try:
            processed = await self.executor.execute_single(self.builder.build_background_removal(image))
        except ForgeError as e:
            if not self._token.is_current(token):
                logger.warning(f"忽略已过期的抠图失败: {e}")
                return None
            # 抠图失败需要重新上传
            self.source_image = None
            self.state = WorkflowState.UPLOADING_SOURCE
            raise

        if not self._token.is_current(token):
            logger.info("抠图结果已过期，丢弃")
            return None

        self.processed_image = processed
        self.state = WorkflowState.AWAITING_CONCEPT
        return processed

    def _build_request(self) -> GenerationRequest:
        images = [self.processed_image]
        if self.reference_image is not None:
            images.append(self.reference_image)
        return GenerationRequest(
            kind=WorkflowKind.POSTER,
            prompt=self.concept,
            images=tuple(images),
            style=self.style,
            aspect_ratio=self.aspect_ratio,
            model=self.model,
            poster_engine=self.poster_engine,
            variations=self.variations,
        )

    async def generate(self) -> Optional[CandidateSet]:
        """
        生成海报批次

        额度在分发前一次性扣减（整个批次），失败不退还。

        Returns:
            新的候选集；结果已被更新的操作取代时返回 None
        """
        if self.state not in (WorkflowState.AWAITING_CONCEPT, WorkflowState.GENERATING):
            raise WorkflowStateError("请先上传产品图并等待处理完成", state=self.state.value)
        if self.processed_image is None or not self.concept.strip():
            raise InvalidRequestError("请提供产品图和创意描述", field="prompt")

        request = self.builder.build(self._build_request())
        self.ledger.authorize(self.model, self.variations)

        token = self._token.advance()
        self.state = WorkflowState.GENERATING
        logger.info(f"🎨 正在生成 {self.variations} 张海报...")

        try:
            candidates = await self.executor.execute(request, self.variations)
        except ForgeError as e:
            if not self._token.is_current(token):
                logger.warning(f"忽略已过期的海报批次失败: {e}")
                return None
            self.state = WorkflowState.AWAITING_CONCEPT
            raise

        if not self._token.is_current(token):
            logger.info("海报批次已过期，丢弃结果")
            return None

        self._set_candidates(candidates)
        self._edit_tokens.clear()
        self.state = WorkflowState.EDITING
        self.style = VisualStyle.NONE
        self.edit_prompt = ""
        return candidates

    async def edit(self, prompt: Optional[str] = None) -> Optional[ImagePayload]:
        """
        原地编辑当前选中的海报

        只替换分发时选中的那一张，选中索引不变；失败时原图保持不变。

        Args:
            prompt: 编辑指令，缺省使用 edit_prompt
        """
        if self.state != WorkflowState.EDITING:
            raise WorkflowStateError("没有可编辑的海报", state=self.state.value)
        if self.candidates.is_empty:
            raise WorkflowStateError("没有可编辑的海报", state=self.state.value)

        edit_text = self.edit_prompt if prompt is None else prompt
        if not edit_text.strip() and self.style == VisualStyle.NONE:
            raise InvalidRequestError("请输入编辑指令或选择一种风格", field="prompt")

        target = self.candidates
        index = target.selected_index
        request = self.builder.build(GenerationRequest(
            kind=WorkflowKind.EDIT,
            prompt=edit_text,
            images=(target[index],),
            style=self.style,
        ))

        token = self._token.value
        edit_token = self._edit_tokens.get(index, 0) + 1
        self._edit_tokens[index] = edit_token
        logger.info(f"✏️ 正在编辑第 {index + 1} 张海报...")

        try:
            edited = await self.executor.execute_single(request)
        except ForgeError as e:
            if not self._token.is_current(token):
                logger.warning(f"忽略已过期的编辑失败: {e}")
                return None
            raise

        if (
            not self._token.is_current(token)
            or self.candidates is not target
            or self._edit_tokens.get(index) != edit_token
        ):
            logger.info("编辑结果已过期，丢弃")
            return None

        target.replace_at(index, edited)
        return edited

    def close_canvas(self):
        """关闭当前海报，回到创意输入步骤"""
        if self.state != WorkflowState.EDITING:
            raise WorkflowStateError("当前没有打开的海报", state=self.state.value)
        self._token.advance()
        self._set_candidates(CandidateSet())
        self.state = WorkflowState.AWAITING_CONCEPT

    def start_over(self):
        """重新开始，丢弃海报流程的全部状态"""
        self._token.advance()
        self._edit_tokens.clear()
        self.state = WorkflowState.UPLOADING_SOURCE
        self.source_image = None
        self.processed_image = None
        self.reference_image = None
        self.concept = ""
        self.edit_prompt = ""
        self.style = VisualStyle.NONE
        self._set_candidates(CandidateSet())
        logger.info("🔄 海报流程已重置")


class GenerationWorkflow:
    """单步生成流程（图片 / Logo / 混合 / 助手生成）"""

    def __init__(
        self,
        kind: WorkflowKind,
        executor: BatchExecutor,
        builder: PromptBuilder,
        ledger: QuotaLedger,
    ):
        self.kind = kind
        self.executor = executor
        self.builder = builder
        self.ledger = ledger
        self._token = _GenerationToken()

        self.state = SimpleState.IDLE
        self._settled_state = SimpleState.IDLE
        self.candidates = CandidateSet()
        self.viewer = CandidateViewer(self.candidates)
        self.draft_prompt = ""

    async def submit(self, request: GenerationRequest) -> Optional[CandidateSet]:
        """
        提交生成请求

        付费模型需要先通过额度检查（按变体数量一次性扣减）；失败时回到提交前的状态。

        Returns:
            新的候选集；结果已被更新的提交取代时返回 None
        """
        if request.kind != self.kind:
            raise InvalidRequestError(
                f"{self.kind.value} 流程不接受 {request.kind.value} 请求",
                field="kind",
            )

        provider_request = self.builder.build(request)
        self.ledger.authorize(request.model, request.variations)

        token = self._token.advance()
        self.state = SimpleState.GENERATING
        logger.info(f"🎨 [{self.kind.value}] 正在生成 {request.variations} 张...")

        try:
            candidates = await self.executor.execute(provider_request, request.variations)
        except ForgeError as e:
            if not self._token.is_current(token):
                logger.warning(f"忽略已过期的批次失败: {e}")
                return None
            self.state = self._settled_state
            raise

        if not self._token.is_current(token):
            logger.info(f"[{self.kind.value}] 批次已过期，丢弃结果")
            return None

        self.candidates = candidates
        self.viewer.bind(candidates)
        self.state = self._settled_state = SimpleState.HAS_RESULT
        return candidates

    def close(self):
        """关闭结果，回到 Idle"""
        self._token.advance()
        self.candidates = CandidateSet()
        self.viewer.bind(self.candidates)
        self.state = self._settled_state = SimpleState.IDLE
