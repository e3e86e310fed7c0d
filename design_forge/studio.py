"""
工作室调度器 - 持有各模式的工作流并统一处理错误

每个模式的状态相互隔离，只有当前激活的模式对外展示；
所有操作的 ForgeError 在这里被捕获，只保留一条面向用户的错误消息。
"""

import logging
from pathlib import Path
from typing import Awaitable, Callable, Optional, TypeVar

from .assistant import AssistantWorkflow
from .batch_executor import BatchExecutor
from .candidates import CandidateSet, FavoritesPanel
from .exceptions import ConfigurationError, ForgeError
from .models import (
    AppMode,
    AspectRatio,
    ChatTurn,
    ForgeConfig,
    GenerationRequest,
    ImageModel,
    ImagePayload,
    RemixEngine,
    VisualStyle,
    WorkflowKind,
)
from .prompt_builder import PromptBuilder
from .provider_client import GenerationProvider, OpenRouterProvider
from .quota_ledger import JsonFileStore, QuotaLedger
from .workflows import GenerationWorkflow, PosterWorkflow

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Studio:
    """顶层调度器"""

    def __init__(
        self,
        provider: GenerationProvider,
        ledger: QuotaLedger,
        config: Optional[ForgeConfig] = None,
    ):
        """
        初始化调度器

        Args:
            provider: 生成服务商
            ledger: 额度账本（所有模式共享）
            config: 全局配置
        """
        self.config = config or ForgeConfig()
        if ledger.free_tier_models != frozenset(self.config.free_tier_models):
            raise ConfigurationError(
                "额度账本的免费模型与配置不一致",
                field="quota.free_tier_models",
            )
        self.provider = provider
        self.ledger = ledger
        self.builder = PromptBuilder(self.config)
        self.executor = BatchExecutor(provider)

        self.poster = PosterWorkflow(self.executor, self.builder, ledger)
        self.image = GenerationWorkflow(WorkflowKind.IMAGE, self.executor, self.builder, ledger)
        self.logo = GenerationWorkflow(WorkflowKind.LOGO, self.executor, self.builder, ledger)
        self.remix_flow = GenerationWorkflow(WorkflowKind.REMIX, self.executor, self.builder, ledger)
        self.assistant = AssistantWorkflow(provider, self.executor, self.builder, ledger)
        self.favorites = FavoritesPanel()

        self.mode = AppMode.POSTER
        self.error: Optional[str] = None

    @classmethod
    def from_config(cls, config: ForgeConfig) -> "Studio":
        """按配置创建 OpenRouter 服务商与持久化额度账本"""
        ledger = QuotaLedger(
            JsonFileStore(Path(config.quota_file)),
            capacity=config.daily_credits,
            free_tier_models=config.free_tier_models,
        )
        return cls(OpenRouterProvider.from_config(config), ledger, config)

    async def aclose(self):
        close = getattr(self.provider, "aclose", None)
        if close is not None:
            await close()

    @property
    def active(self):
        """当前模式对应的工作流"""
        return {
            AppMode.POSTER: self.poster,
            AppMode.IMAGE: self.image,
            AppMode.LOGO: self.logo,
            AppMode.REMIX: self.remix_flow,
            AppMode.ASSISTANT: self.assistant,
        }[self.mode]

    def switch_mode(self, mode: AppMode):
        """切换模式，各模式的状态保持不变"""
        if mode != self.mode:
            logger.info(f"切换模式: {self.mode.value} -> {mode.value}")
        self.mode = mode
        self.error = None

    async def _run(self, operation: Callable[[], Awaitable[T]]) -> Optional[T]:
        self.error = None
        try:
            return await operation()
        except ForgeError as e:
            logger.error(f"❌ {e.message}")
            self.error = e.message
            return None

    def _run_sync(self, operation: Callable[[], T]) -> Optional[T]:
        self.error = None
        try:
            return operation()
        except ForgeError as e:
            logger.error(f"❌ {e.message}")
            self.error = e.message
            return None

    # ---- 海报 ----

    async def upload_product(self, image: ImagePayload) -> Optional[ImagePayload]:
        return await self._run(lambda: self.poster.upload_source(image))

    async def generate_poster(self) -> Optional[CandidateSet]:
        return await self._run(self.poster.generate)

    async def edit_poster(self, prompt: Optional[str] = None) -> Optional[ImagePayload]:
        return await self._run(lambda: self.poster.edit(prompt))

    def start_over(self):
        self.error = None
        self.poster.start_over()

    def close_result(self):
        """关闭当前模式的结果画布"""
        self.error = None
        if self.mode == AppMode.POSTER:
            self._run_sync(self.poster.close_canvas)
        elif self.mode == AppMode.ASSISTANT:
            self.assistant.generator.close()
        else:
            self.active.close()

    # ---- 单步生成 ----

    async def generate_image(
        self,
        prompt: str,
        aspect_ratio: AspectRatio = AspectRatio.SQUARE,
        style: VisualStyle = VisualStyle.NONE,
        model: ImageModel = ImageModel.IMAGEN_4,
        variations: int = 1,
        negative_prompt: str = "",
        seed: Optional[int] = None,
    ) -> Optional[CandidateSet]:
        def submit():
            return self.image.submit(GenerationRequest(
                kind=WorkflowKind.IMAGE,
                prompt=prompt,
                aspect_ratio=aspect_ratio,
                style=style,
                model=model,
                variations=variations,
                negative_prompt=negative_prompt,
                seed=seed,
            ))

        self.image.draft_prompt = prompt
        return await self._run(submit)

    async def generate_logo(
        self,
        prompt: str,
        style: VisualStyle = VisualStyle.NONE,
        colors: str = "",
        model: ImageModel = ImageModel.IMAGEN_4,
        variations: int = 1,
        seed: Optional[int] = None,
    ) -> Optional[CandidateSet]:
        def submit():
            return self.logo.submit(GenerationRequest(
                kind=WorkflowKind.LOGO,
                prompt=prompt,
                style=style,
                colors=colors,
                model=model,
                variations=variations,
                seed=seed,
            ))

        self.logo.draft_prompt = prompt
        return await self._run(submit)

    async def remix(
        self,
        base_image: ImagePayload,
        source_image: ImagePayload,
        prompt: str,
        engine: RemixEngine = RemixEngine.SUBTLE,
        model: ImageModel = ImageModel.GEMINI_NANO,
        variations: int = 1,
    ) -> Optional[CandidateSet]:
        def submit():
            return self.remix_flow.submit(GenerationRequest(
                kind=WorkflowKind.REMIX,
                prompt=prompt,
                images=(base_image, source_image),
                remix_engine=engine,
                model=model,
                variations=variations,
            ))

        self.remix_flow.draft_prompt = prompt
        return await self._run(submit)

    # ---- 助手 ----

    async def send_chat(self, text: str = "", image: Optional[ImagePayload] = None) -> Optional[ChatTurn]:
        return await self._run(lambda: self.assistant.send(text, image))

    async def describe_image(self, image: ImagePayload) -> Optional[str]:
        return await self._run(lambda: self.assistant.describe_image(image))

    async def generate_in_assistant(self, prompt: str) -> Optional[CandidateSet]:
        return await self._run(lambda: self.assistant.generate_from_prompt(prompt))

    def use_prompt(self, prompt: str):
        """把助手给出的提示词带到图片模式"""
        self.switch_mode(AppMode.IMAGE)
        self.image.close()
        self.image.draft_prompt = prompt

    # ---- 通用 ----

    async def enhance(self, image: ImagePayload) -> Optional[ImagePayload]:
        """提升画质（按 enhance_model 计费 1 点）"""
        async def run():
            self.ledger.authorize(self.config.enhance_model, 1)
            logger.info("✨ 正在提升画质...")
            return await self.executor.execute_single(self.builder.build_enhance(image))

        return await self._run(run)

    async def generate_ad_copy(self, image: ImagePayload) -> Optional[str]:
        return await self._run(lambda: self.executor.execute_text(self.builder.build_ad_copy(image)))

    def add_to_favorites(self, image: Optional[ImagePayload]) -> bool:
        if image is None:
            self.error = "没有可收藏的图片"
            return False
        added = self.favorites.add(image)
        if not added:
            logger.debug("图片已在收藏中")
        return added
