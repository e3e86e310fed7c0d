"""
数据模型定义
"""

import base64
import binascii
import mimetypes
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from .exceptions import InvalidRequestError

MAX_VARIATIONS = 4
MAX_BASE_IMAGES = 2


class WorkflowKind(Enum):
    """请求类型"""
    POSTER = "poster"
    IMAGE = "image"
    LOGO = "logo"
    REMIX = "remix"
    BACKGROUND_REMOVAL = "background-removal"
    ENHANCE = "enhance"
    EDIT = "edit"
    PROMPT_FROM_IMAGE = "prompt-from-image"
    CHAT = "chat"
    AD_COPY = "ad-copy"


class AspectRatio(Enum):
    """宽高比"""
    SQUARE = "1:1"
    PORTRAIT = "9:16"
    LANDSCAPE = "16:9"
    CLASSIC_PORTRAIT = "3:4"
    CLASSIC_LANDSCAPE = "4:3"


class VisualStyle(Enum):
    """视觉风格，NONE 为哨兵值"""
    NONE = "None"
    MINIMALIST = "Minimalist"
    RETRO = "Retro"
    CYBERPUNK = "Cyberpunk"
    ABSTRACT = "Abstract"
    PHOTOREALISTIC = "Photorealistic"


class ImageModel(Enum):
    """用户可选的图片模型"""
    IMAGEN_4 = "Imagen 4.0"
    GEMINI_NANO = "Gemini Nano (Free)"
    GEMINI_FLASH_EXPERIMENTAL = "Gemini Flash (Experimental)"
    GEMINI_PRO = "Gemini Pro (Free & Unlimited)"


class PosterEngine(Enum):
    """海报引擎"""
    BALANCED = "Balanced"
    VIVID = "Vivid"


class RemixEngine(Enum):
    """混合引擎"""
    SUBTLE = "Subtle"
    ARTISTIC = "Artistic"


class WorkflowState(Enum):
    """海报流程状态"""
    UPLOADING_SOURCE = "uploading_source"
    PROCESSING_SOURCE = "processing_source"
    AWAITING_CONCEPT = "awaiting_concept"
    GENERATING = "generating"
    EDITING = "editing"


class SimpleState(Enum):
    """单步流程状态"""
    IDLE = "idle"
    GENERATING = "generating"
    HAS_RESULT = "has_result"


class AppMode(Enum):
    """应用模式"""
    POSTER = "poster"
    IMAGE = "image"
    LOGO = "logo"
    REMIX = "remix"
    ASSISTANT = "assistant"


class ChatRole(Enum):
    """对话角色"""
    USER = "user"
    MODEL = "model"


@dataclass(frozen=True)
class ImagePayload:
    """已解码的图片数据（base64 + MIME 类型），按字节相等比较"""
    base64: str
    mime_type: str = "image/png"

    @classmethod
    def from_bytes(cls, data: bytes, mime_type: str = "image/png") -> "ImagePayload":
        return cls(base64=base64.b64encode(data).decode("utf-8"), mime_type=mime_type)

    @classmethod
    def from_data_url(cls, data_url: str) -> "ImagePayload":
        """
        解析 data URL (data:image/png;base64,...)，也接受纯 base64

        Args:
            data_url: data URL 或纯 base64 字符串

        Returns:
            ImagePayload
        """
        if data_url.startswith("data:"):
            header, base64_data = data_url.split(",", 1)
            mime_type = header[len("data:"):].split(";")[0] or "image/png"
            return cls(base64=base64_data, mime_type=mime_type)
        return cls(base64=data_url)

    @classmethod
    def from_file(cls, path: Path) -> "ImagePayload":
        """读取本地图片文件"""
        path = Path(path)
        mime_type, _ = mimetypes.guess_type(str(path))
        with open(path, "rb") as f:
            return cls.from_bytes(f.read(), mime_type or "image/png")

    def to_data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.base64}"

    def decode(self) -> bytes:
        try:
            return base64.b64decode(self.base64)
        except (binascii.Error, ValueError) as e:
            raise InvalidRequestError(f"图片数据不是合法的 base64: {e}", field="base64")

    @property
    def extension(self) -> str:
        ext = mimetypes.guess_extension(self.mime_type) or ".png"
        return ".jpg" if ext == ".jpe" else ext


@dataclass(frozen=True)
class GenerationRequest:
    """用户发起的一次生成请求（分发后不可变）"""
    kind: WorkflowKind
    prompt: str = ""
    images: Tuple[ImagePayload, ...] = ()
    style: VisualStyle = VisualStyle.NONE
    aspect_ratio: Optional[AspectRatio] = None
    model: Optional[ImageModel] = None
    poster_engine: PosterEngine = PosterEngine.BALANCED
    remix_engine: RemixEngine = RemixEngine.SUBTLE
    colors: str = ""
    variations: int = 1
    negative_prompt: str = ""
    seed: Optional[int] = None

    def __post_init__(self):
        # 允许传入 list，统一转成 tuple
        if not isinstance(self.images, tuple):
            object.__setattr__(self, "images", tuple(self.images))
        if len(self.images) > MAX_BASE_IMAGES:
            raise InvalidRequestError(f"最多支持 {MAX_BASE_IMAGES} 张输入图片", field="images")
        if isinstance(self.variations, bool) or not isinstance(self.variations, int):
            raise InvalidRequestError("变体数量必须是整数", field="variations")
        if not 1 <= self.variations <= MAX_VARIATIONS:
            raise InvalidRequestError(f"变体数量必须在 1-{MAX_VARIATIONS} 之间", field="variations")
        if self.seed is not None and (isinstance(self.seed, bool) or not isinstance(self.seed, int)):
            raise InvalidRequestError("seed 必须是整数", field="seed")


DEFAULT_MODEL_IDS: Dict[ImageModel, str] = {
    ImageModel.IMAGEN_4: "google/gemini-3-pro-image-preview",
    ImageModel.GEMINI_NANO: "google/gemini-2.5-flash-image-preview",
    ImageModel.GEMINI_FLASH_EXPERIMENTAL: "google/gemini-2.5-flash-image",
    ImageModel.GEMINI_PRO: "google/gemini-2.5-flash-image-preview",
}

DEFAULT_FREE_TIER_MODELS: Tuple[ImageModel, ...] = (
    ImageModel.GEMINI_NANO,
    ImageModel.GEMINI_PRO,
)


@dataclass
class ForgeConfig:
    """全局配置"""
    api_key: str = ""
    base_url: str = "https://openrouter.ai/api/v1"
    site_url: str = ""
    site_name: str = ""
    proxy: str = ""
    timeout: float = 300.0
    model_ids: Dict[ImageModel, str] = field(default_factory=lambda: dict(DEFAULT_MODEL_IDS))
    edit_model_id: str = "google/gemini-2.5-flash-image-preview"
    text_model_id: str = "google/gemini-2.5-flash"
    daily_credits: int = 25
    free_tier_models: Tuple[ImageModel, ...] = DEFAULT_FREE_TIER_MODELS
    enhance_model: ImageModel = ImageModel.IMAGEN_4
    quota_file: str = ".design_forge/quota.json"
    output_dir: str = "./outputs"

    def model_id_for(self, model: ImageModel) -> str:
        return self.model_ids.get(model, self.edit_model_id)


ProviderPart = Union[str, ImagePayload]


@dataclass(frozen=True)
class ProviderRequest:
    """构建完成、发送给服务商的请求"""
    kind: WorkflowKind
    model_id: str
    parts: Tuple[ProviderPart, ...]
    expects_image: bool = True
    aspect_ratio: Optional[str] = None
    seed: Optional[int] = None

    @property
    def text(self) -> str:
        """所有文本片段按顺序拼接"""
        return "\n".join(p for p in self.parts if isinstance(p, str))

    @property
    def images(self) -> List[ImagePayload]:
        return [p for p in self.parts if isinstance(p, ImagePayload)]


@dataclass
class ProviderResponse:
    """服务商响应"""
    images: List[ImagePayload] = field(default_factory=list)
    text: str = ""


@dataclass
class QuotaState:
    """每日额度状态"""
    remaining: int
    capacity: int
    reset_key: date

    def to_dict(self) -> Dict[str, Any]:
        """转换为可持久化的字典"""
        return {
            "date": self.reset_key.isoformat(),
            "remainingCredits": self.remaining,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], capacity: int) -> "QuotaState":
        """从字典创建实例，格式不合法时抛出 ValueError/KeyError/TypeError"""
        remaining = data["remainingCredits"]
        if isinstance(remaining, bool) or not isinstance(remaining, int) or remaining < 0:
            raise ValueError(f"非法的剩余额度: {remaining!r}")
        return cls(
            remaining=min(remaining, capacity),
            capacity=capacity,
            reset_key=date.fromisoformat(data["date"]),
        )


@dataclass(frozen=True)
class ChatSegment:
    """对话片段：文本或图片"""
    text: Optional[str] = None
    image: Optional[ImagePayload] = None


@dataclass(frozen=True)
class ChatTurn:
    """一轮对话"""
    role: ChatRole
    segments: Tuple[ChatSegment, ...]
    is_error: bool = False

    @property
    def text(self) -> str:
        return "\n".join(s.text for s in self.segments if s.text)


class ChatTranscript:
    """只追加的对话记录"""

    def __init__(self):
        self._turns: List[ChatTurn] = []

    def append(self, turn: ChatTurn) -> ChatTurn:
        self._turns.append(turn)
        return turn

    @property
    def turns(self) -> Tuple[ChatTurn, ...]:
        return tuple(self._turns)

    def __len__(self) -> int:
        return len(self._turns)

    def __iter__(self):
        return iter(self._turns)

    def __getitem__(self, index: int) -> ChatTurn:
        return self._turns[index]


@dataclass
class ViewTransform:
    """单张图片的显示变换（缩放 + 平移）"""
    scale: float = 1.0
    x: float = 0.0
    y: float = 0.0

    @property
    def is_identity(self) -> bool:
        return self.scale == 1.0 and self.x == 0.0 and self.y == 0.0
