"""
请求构建器 - 将用户参数翻译为服务商请求

每种请求类型对应一个纯函数式的构建方法：指令文本按固定顺序拼接
（模型 / 引擎 / 风格 / 宽高比），输入图片按固定顺序排列。
"""

import logging
from typing import Dict, List, Optional

from jinja2 import Environment, StrictUndefined, Template

from .exceptions import InvalidRequestError
from .models import (
    AspectRatio,
    ForgeConfig,
    GenerationRequest,
    ImageModel,
    ImagePayload,
    PosterEngine,
    ProviderPart,
    ProviderRequest,
    RemixEngine,
    VisualStyle,
    WorkflowKind,
)

logger = logging.getLogger(__name__)

DIMENSION_HINTS: Dict[str, str] = {
    "1:1": "1024x1024 pixels",
    "9:16": "1080x1920 pixels",
    "16:9": "1920x1080 pixels",
    "3:4": "1080x1440 pixels",
    "4:3": "1440x1080 pixels",
}

# 海报与 Logo 的固定内容约束
NO_TEXT_CONSTRAINT = (
    "Do not add any text, words, letters, or logos to the image. "
    "The result must be purely visual."
)

POSTER_TEMPLATE = """
{% if cinematic %}The poster should have a highly detailed and cinematic feel, with photorealistic lighting and textures.{% endif %}
{% if engine == "Vivid" %}Create a dynamic, vibrant, high-contrast and dramatic product poster featuring the provided product.{% else %}Create a futuristic, visually stunning and catchy product poster featuring the provided product.{% endif %}
Concept: "{{ concept }}".
{% if style %}The overall visual style must be {{ style }}.{% endif %}
This is the most critical instruction: {{ dimensions }} Adhere to these output dimensions strictly.
Integrate the product seamlessly and realistically into the scene, matching lighting, shadows and perspective so it looks naturally part of the environment rather than placed on top.
{{ no_text }}
The final output should be a single, high-quality poster image.
"""

POSTER_REFERENCE_NOTE = "Use the second image as a style and theme reference for the poster."

IMAGE_TEMPLATE = """
{% if cinematic %}The image should be highly detailed with a cinematic feel.{% endif %}
{% if style %}{{ style }} style.{% endif %}
{{ prompt }}
{{ dimensions }}
{% if negative %}Important: Do not include the following elements in the image: {{ negative }}.{% endif %}
"""

LOGO_TEMPLATE = """
A professional, modern, vector-style logo for: "{{ prompt }}".
The logo must be on a clean, solid, plain white background.
It should be simple, iconic, memorable and easily scalable, designed as a flat 2D graphic icon without 3D effects, complex gradients or photorealism.
{{ no_text }}
{% if style %}The visual style should be: {{ style }}.{% endif %}
{% if colors %}Incorporate this color palette: {{ colors }}.{% endif %}
{% if cinematic %}The logo should be abstract and conceptual.{% endif %}
"""

REMIX_TEMPLATE = """
{% if engine == "Artistic" %}You are a creative digital artist. Re-imagine the first image (the base image) using artistic elements from the second image (the source image), guided by the user's instruction: "{{ prompt }}". The result should be a creative and artistic blend.{% else %}You are an expert photo editor. Edit the first image (the base image) according to the user's instruction, using the second image (the source image) as a reference for content, style or objects. The user's instruction is: "{{ prompt }}".{% endif %}
Only output the final edited image.
"""

EDIT_TEMPLATE = """
{% if prompt %}Edit the provided poster based on this instruction: "{{ prompt }}".{% endif %}
{% if style %}Apply a {{ style }} visual style to the image.{% endif %}
Only output the final edited image.
"""

BACKGROUND_REMOVAL_TEXT = "Isolate the main subject from the background. Make the background transparent."

ENHANCE_TEXT = (
    "Upscale this image to a higher resolution, significantly enhancing its quality and detail for printing. "
    "Do not alter the content, composition, or style of the image in any way."
)

PROMPT_FROM_IMAGE_TEXT = (
    "Analyze this image and write a detailed, descriptive and artistic prompt that could be used to generate "
    "a similar image with an AI image generator. Cover the subject, composition, lighting, style, colors and mood "
    "in a single paragraph of text."
)

AD_COPY_TEXT = (
    "You are a world-class marketing expert. Analyze the provided image and write three short, catchy and "
    "persuasive ad copy options for a social media campaign, each with a headline and a body. "
    "Present them in a clean, readable format without markdown formatting."
)

CHAT_SYSTEM_PROMPT = """You are a helpful and creative AI assistant for the DesignForge app. Your goal is to help users craft the perfect prompt for the AI image generator.
- When a user uploads an image and gives instructions, synthesize their request into a single, high-quality, realistic and detailed prompt.
- Be conversational and friendly. Ask clarifying questions if the request is ambiguous.
- When you provide the final, ready-to-use prompt, you MUST enclose it in a fenced markdown code block tagged `prompt`, for example:
```prompt
A photorealistic portrait of a fluffy ginger cat wearing a detailed astronaut helmet, floating inside a spaceship cockpit with Earth visible through the window.
```
- Do not use a code block for anything other than the final prompt."""


def dimension_hint(aspect_ratio: str) -> Optional[str]:
    """宽高比对应的像素尺寸提示，未知宽高比返回 None"""
    return DIMENSION_HINTS.get(aspect_ratio)


def dimension_instruction(aspect_ratio: str, subject: str = "image") -> str:
    """
    生成尺寸指令

    Args:
        aspect_ratio: 宽高比字符串，如 "9:16"
        subject: 指令中的主体名称（poster / image）

    Returns:
        已知宽高比给出精确像素尺寸，未知宽高比退化为纯宽高比描述
    """
    hint = dimension_hint(aspect_ratio)
    if hint:
        return f"The {subject}'s dimensions must be exactly {hint} (a {aspect_ratio} aspect ratio)."
    return f"The {subject}'s aspect ratio must be exactly {aspect_ratio}."


def _style_phrase(style: VisualStyle) -> str:
    """哨兵值 None 不产生风格子句"""
    return "" if style == VisualStyle.NONE else style.value


class PromptBuilder:
    """请求构建器"""

    def __init__(self, config: Optional[ForgeConfig] = None):
        """
        初始化请求构建器

        Args:
            config: 全局配置，用于解析模型 ID
        """
        self.config = config or ForgeConfig()
        # prompt不需要HTML转义
        self.env = Environment(autoescape=False, undefined=StrictUndefined)
        self._templates: Dict[str, Template] = {}

    def _render(self, template_str: str, **context) -> str:
        """渲染模板并去除空行，保证子句顺序固定"""
        template = self._templates.get(template_str)
        if template is None:
            template = self.env.from_string(template_str)
            self._templates[template_str] = template
        rendered = template.render(**context)
        return "\n".join(line.strip() for line in rendered.splitlines() if line.strip())

    def _model_id(self, model: Optional[ImageModel]) -> str:
        if model is None:
            return self.config.edit_model_id
        return self.config.model_id_for(model)

    @staticmethod
    def _is_cinematic(model: Optional[ImageModel]) -> bool:
        return model == ImageModel.GEMINI_FLASH_EXPERIMENTAL

    def build(self, request: GenerationRequest) -> ProviderRequest:
        """按请求类型分发构建"""
        builders = {
            WorkflowKind.POSTER: self.build_poster,
            WorkflowKind.IMAGE: self.build_image,
            WorkflowKind.LOGO: self.build_logo,
            WorkflowKind.REMIX: self.build_remix,
            WorkflowKind.EDIT: self.build_edit,
        }
        builder = builders.get(request.kind)
        if builder is None:
            raise InvalidRequestError(f"不支持的请求类型: {request.kind.value}", field="kind")
        return builder(request)

    def build_poster(self, request: GenerationRequest) -> ProviderRequest:
        if not request.images:
            raise InvalidRequestError("海报生成需要产品图", field="images")
        if not request.prompt.strip():
            raise InvalidRequestError("海报生成需要创意描述", field="prompt")

        ratio = (request.aspect_ratio or AspectRatio.PORTRAIT).value
        text = self._render(
            POSTER_TEMPLATE,
            cinematic=self._is_cinematic(request.model),
            engine=request.poster_engine.value,
            concept=request.prompt.strip(),
            style=_style_phrase(request.style),
            dimensions=dimension_instruction(ratio, "poster"),
            no_text=NO_TEXT_CONSTRAINT,
        )

        parts: List[ProviderPart] = [request.images[0], text]
        if len(request.images) > 1:
            parts.extend([request.images[1], POSTER_REFERENCE_NOTE])

        return ProviderRequest(
            kind=WorkflowKind.POSTER,
            model_id=self._model_id(request.model),
            parts=tuple(parts),
            aspect_ratio=ratio,
            seed=request.seed,
        )

    def build_image(self, request: GenerationRequest) -> ProviderRequest:
        if not request.prompt.strip():
            raise InvalidRequestError("请输入生成图片的提示词", field="prompt")

        ratio = (request.aspect_ratio or AspectRatio.SQUARE).value
        text = self._render(
            IMAGE_TEMPLATE,
            cinematic=self._is_cinematic(request.model),
            style=_style_phrase(request.style),
            prompt=request.prompt.strip(),
            dimensions=dimension_instruction(ratio, "image"),
            negative=request.negative_prompt.strip(),
        )
        return ProviderRequest(
            kind=WorkflowKind.IMAGE,
            model_id=self._model_id(request.model),
            parts=(text,),
            aspect_ratio=ratio,
            seed=request.seed,
        )

    def build_logo(self, request: GenerationRequest) -> ProviderRequest:
        if not request.prompt.strip():
            raise InvalidRequestError("请描述需要生成的 Logo", field="prompt")

        text = self._render(
            LOGO_TEMPLATE,
            prompt=request.prompt.strip(),
            no_text=NO_TEXT_CONSTRAINT,
            style=_style_phrase(request.style),
            colors=request.colors.strip(),
            cinematic=self._is_cinematic(request.model),
        )
        # Logo 固定为正方形
        return ProviderRequest(
            kind=WorkflowKind.LOGO,
            model_id=self._model_id(request.model),
            parts=(text,),
            aspect_ratio=AspectRatio.SQUARE.value,
            seed=request.seed,
        )

    def build_remix(self, request: GenerationRequest) -> ProviderRequest:
        if len(request.images) != 2:
            raise InvalidRequestError("混合需要基础图和参考图两张图片", field="images")
        if not request.prompt.strip():
            raise InvalidRequestError("请输入混合指令", field="prompt")

        text = self._render(
            REMIX_TEMPLATE,
            engine=request.remix_engine.value,
            prompt=request.prompt.strip(),
        )
        return ProviderRequest(
            kind=WorkflowKind.REMIX,
            model_id=self._model_id(request.model),
            parts=(request.images[0], request.images[1], text),
            seed=request.seed,
        )

    def build_edit(self, request: GenerationRequest) -> ProviderRequest:
        if not request.images:
            raise InvalidRequestError("没有可编辑的图片", field="images")
        if not request.prompt.strip() and request.style == VisualStyle.NONE:
            raise InvalidRequestError("请输入编辑指令或选择一种风格", field="prompt")

        text = self._render(
            EDIT_TEMPLATE,
            prompt=request.prompt.strip(),
            style=_style_phrase(request.style),
        )
        return ProviderRequest(
            kind=WorkflowKind.EDIT,
            model_id=self.config.edit_model_id,
            parts=(request.images[0], text),
        )

    def build_background_removal(self, image: ImagePayload) -> ProviderRequest:
        return ProviderRequest(
            kind=WorkflowKind.BACKGROUND_REMOVAL,
            model_id=self.config.edit_model_id,
            parts=(image, BACKGROUND_REMOVAL_TEXT),
        )

    def build_enhance(self, image: ImagePayload) -> ProviderRequest:
        return ProviderRequest(
            kind=WorkflowKind.ENHANCE,
            model_id=self.config.edit_model_id,
            parts=(image, ENHANCE_TEXT),
        )

    def build_prompt_from_image(self, image: ImagePayload) -> ProviderRequest:
        return ProviderRequest(
            kind=WorkflowKind.PROMPT_FROM_IMAGE,
            model_id=self.config.text_model_id,
            parts=(image, PROMPT_FROM_IMAGE_TEXT),
            expects_image=False,
        )

    def build_ad_copy(self, image: ImagePayload) -> ProviderRequest:
        return ProviderRequest(
            kind=WorkflowKind.AD_COPY,
            model_id=self.config.text_model_id,
            parts=(image, AD_COPY_TEXT),
            expects_image=False,
        )

    @staticmethod
    def chat_system_prompt() -> str:
        return CHAT_SYSTEM_PROMPT
