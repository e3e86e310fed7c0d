"""
DesignForge - AI 创意生成工作流

支持五种模式：
- 海报 (Poster): 产品图抠图 + 创意描述 + 原地编辑
- 图片 (Image): 提示词生成图片
- Logo: 品牌描述生成 Logo
- 混合 (Remix): 基础图 + 参考图
- 助手 (Assistant): 对话式提示词辅助
"""

__version__ = "1.0.0"

from .models import (
    AppMode,
    AspectRatio,
    ChatRole,
    ChatSegment,
    ChatTranscript,
    ChatTurn,
    ForgeConfig,
    GenerationRequest,
    ImageModel,
    ImagePayload,
    PosterEngine,
    ProviderRequest,
    ProviderResponse,
    QuotaState,
    RemixEngine,
    SimpleState,
    ViewTransform,
    VisualStyle,
    WorkflowKind,
    WorkflowState,
)
from .exceptions import (
    ForgeError,
    ConfigurationError,
    PathNotFoundError,
    InvalidRequestError,
    WorkflowStateError,
    SelectionError,
    InsufficientCredits,
    QuotaExceeded,
    GenerationFailed,
    NoImageReturned,
    EmptyBatch,
)
from .config import ConfigManager
from .quota_ledger import QuotaLedger, MemoryStore, JsonFileStore
from .prompt_builder import PromptBuilder
from .error_classifier import classify
from .candidates import CandidateSet, CandidateViewer, FavoritesPanel
from .provider_client import GenerationProvider, OpenRouterProvider
from .batch_executor import BatchExecutor
from .workflows import PosterWorkflow, GenerationWorkflow
from .assistant import AssistantWorkflow, extract_prompt_blocks
from .output_manager import OutputManager
from .studio import Studio

__all__ = [
    # Enums
    "AppMode",
    "AspectRatio",
    "ChatRole",
    "ImageModel",
    "PosterEngine",
    "RemixEngine",
    "SimpleState",
    "VisualStyle",
    "WorkflowKind",
    "WorkflowState",
    # Data Models
    "ChatSegment",
    "ChatTranscript",
    "ChatTurn",
    "ForgeConfig",
    "GenerationRequest",
    "ImagePayload",
    "ProviderRequest",
    "ProviderResponse",
    "QuotaState",
    "ViewTransform",
    # Exceptions
    "ForgeError",
    "ConfigurationError",
    "PathNotFoundError",
    "InvalidRequestError",
    "WorkflowStateError",
    "SelectionError",
    "InsufficientCredits",
    "QuotaExceeded",
    "GenerationFailed",
    "NoImageReturned",
    "EmptyBatch",
    # Components
    "ConfigManager",
    "QuotaLedger",
    "MemoryStore",
    "JsonFileStore",
    "PromptBuilder",
    "classify",
    "CandidateSet",
    "CandidateViewer",
    "FavoritesPanel",
    "GenerationProvider",
    "OpenRouterProvider",
    "BatchExecutor",
    "PosterWorkflow",
    "GenerationWorkflow",
    "AssistantWorkflow",
    "extract_prompt_blocks",
    "OutputManager",
    "Studio",
]
