"""
命令行接口
"""

import argparse
import asyncio
import json
import logging
import sys
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Type

from .config import ConfigManager
from .exceptions import ForgeError
from .models import (
    AspectRatio,
    ImageModel,
    ImagePayload,
    PosterEngine,
    RemixEngine,
    VisualStyle,
)
from .output_manager import OutputManager
from .studio import Studio


def setup_logging(level: str = "INFO", log_file: Optional[Path] = None):
    """配置日志"""
    log_level = getattr(logging, level.upper(), logging.INFO)

    handlers = [logging.StreamHandler(sys.stdout)]

    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    # 简化日志格式
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s %(message)s",
        datefmt="%H:%M:%S",
        handlers=handlers,
    )

    # 降低第三方库的日志级别
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)


def _enum_arg(enum_cls: Type[Enum]) -> Callable[[str], Enum]:
    """argparse 类型转换：接受枚举值或枚举名（不区分大小写）"""
    def parse(value: str) -> Enum:
        for member in enum_cls:
            if value == member.value or value.upper().replace("-", "_") == member.name:
                return member
        choices = ", ".join(m.name.lower() for m in enum_cls)
        raise argparse.ArgumentTypeError(f"无效取值 {value!r}，可选: {choices}")
    return parse


def create_studio(config_path: Optional[Path] = None, api_key: Optional[str] = None) -> Studio:
    """创建调度器"""
    config = ConfigManager(config_path=config_path).load_config()

    # 如果提供了API密钥，覆盖配置
    if api_key:
        config.api_key = api_key

    return Studio.from_config(config)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="design-forge",
        description="DesignForge - AI 海报 / 图片 / Logo 生成工具",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
示例:
  # 查看今日剩余额度
  python -m design_forge quota

  # 生成海报
  python -m design_forge poster --product shoe.png --concept "霓虹城市夜景" -n 3

  # 生成图片
  python -m design_forge image "a cat astronaut" --aspect-ratio 16:9 --model gemini_pro
        """,
    )

    parser.add_argument(
        "-c", "--config",
        help="全局配置文件路径 (默认: 当前目录下的 config.json，可选)",
    )
    parser.add_argument(
        "--api-key",
        help="API密钥（覆盖配置文件）",
    )
    parser.add_argument(
        "-o", "--output-dir",
        help="输出目录（覆盖配置文件）",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="日志级别 (默认: INFO)",
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        help="同时写入的日志文件路径",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("quota", help="查看今日剩余额度")

    image = subparsers.add_parser("image", help="根据提示词生成图片")
    image.add_argument("prompt", help="提示词")
    image.add_argument("--aspect-ratio", type=_enum_arg(AspectRatio), default=AspectRatio.SQUARE)
    image.add_argument("--style", type=_enum_arg(VisualStyle), default=VisualStyle.NONE)
    image.add_argument("--model", type=_enum_arg(ImageModel), default=ImageModel.IMAGEN_4)
    image.add_argument("-n", "--variations", type=int, default=1, help="变体数量 (1-4)")
    image.add_argument("--negative", default="", help="不希望出现的元素")
    image.add_argument("--seed", type=int)

    logo = subparsers.add_parser("logo", help="生成 Logo")
    logo.add_argument("prompt", help="品牌或 Logo 描述")
    logo.add_argument("--style", type=_enum_arg(VisualStyle), default=VisualStyle.NONE)
    logo.add_argument("--colors", default="", help="配色")
    logo.add_argument("--model", type=_enum_arg(ImageModel), default=ImageModel.IMAGEN_4)
    logo.add_argument("-n", "--variations", type=int, default=1)
    logo.add_argument("--seed", type=int)

    poster = subparsers.add_parser("poster", help="产品图抠图并生成海报")
    poster.add_argument("--product", required=True, help="产品图路径")
    poster.add_argument("--concept", required=True, help="海报创意描述")
    poster.add_argument("--reference", help="风格参考图路径")
    poster.add_argument("--aspect-ratio", type=_enum_arg(AspectRatio), default=AspectRatio.PORTRAIT)
    poster.add_argument("--style", type=_enum_arg(VisualStyle), default=VisualStyle.NONE)
    poster.add_argument("--model", type=_enum_arg(ImageModel), default=ImageModel.GEMINI_NANO)
    poster.add_argument("--engine", type=_enum_arg(PosterEngine), default=PosterEngine.BALANCED)
    poster.add_argument("-n", "--variations", type=int, default=1)
    poster.add_argument("--edit", help="生成后对第一张海报应用的编辑指令")

    remix = subparsers.add_parser("remix", help="混合两张图片")
    remix.add_argument("--base", required=True, help="基础图路径")
    remix.add_argument("--source", required=True, help="参考图路径")
    remix.add_argument("prompt", help="混合指令")
    remix.add_argument("--engine", type=_enum_arg(RemixEngine), default=RemixEngine.SUBTLE)
    remix.add_argument("-n", "--variations", type=int, default=1)

    describe = subparsers.add_parser("describe", help="根据图片反推提示词")
    describe.add_argument("image", help="图片路径")

    ad_copy = subparsers.add_parser("ad-copy", help="根据图片生成广告文案")
    ad_copy.add_argument("image", help="图片路径")

    return parser


async def run_command(args: argparse.Namespace, studio: Studio, output_manager: OutputManager) -> Dict[str, Any]:
    """执行子命令并返回结果摘要"""
    command = args.command
    images = None
    text = None

    if command == "quota":
        state = studio.ledger.snapshot()
        return {
            "command": command,
            "date": state.reset_key.isoformat(),
            "remaining_credits": state.remaining,
            "capacity": state.capacity,
        }

    if command == "image":
        images = await studio.generate_image(
            args.prompt,
            aspect_ratio=args.aspect_ratio,
            style=args.style,
            model=args.model,
            variations=args.variations,
            negative_prompt=args.negative,
            seed=args.seed,
        )
    elif command == "logo":
        images = await studio.generate_logo(
            args.prompt,
            style=args.style,
            colors=args.colors,
            model=args.model,
            variations=args.variations,
            seed=args.seed,
        )
    elif command == "poster":
        images = await _run_poster(args, studio)
    elif command == "remix":
        images = await studio.remix(
            ImagePayload.from_file(Path(args.base)),
            ImagePayload.from_file(Path(args.source)),
            args.prompt,
            engine=args.engine,
            variations=args.variations,
        )
    elif command == "describe":
        text = await studio.describe_image(ImagePayload.from_file(Path(args.image)))
    elif command == "ad-copy":
        text = await studio.generate_ad_copy(ImagePayload.from_file(Path(args.image)))

    if studio.error:
        raise ForgeError(studio.error)

    summary: Dict[str, Any] = {"command": command}
    if images is not None:
        paths = output_manager.save_images(images, prefix=command)
        summary["images"] = [str(p) for p in paths]
    if text is not None:
        summary["text"] = text
        summary["text_file"] = str(output_manager.save_text(text))
    summary["remaining_credits"] = studio.ledger.remaining
    output_manager.save_summary(summary)
    return summary


async def _run_poster(args: argparse.Namespace, studio: Studio):
    flow = studio.poster
    if await studio.upload_product(ImagePayload.from_file(Path(args.product))) is None:
        return None

    flow.concept = args.concept
    flow.aspect_ratio = args.aspect_ratio
    flow.style = args.style
    flow.model = args.model
    flow.poster_engine = args.engine
    flow.variations = args.variations
    if args.reference:
        flow.reference_image = ImagePayload.from_file(Path(args.reference))

    posters = await studio.generate_poster()
    if posters is None or not args.edit:
        return posters

    if await studio.edit_poster(args.edit) is None:
        return None
    return flow.candidates


async def _main_async(args: argparse.Namespace) -> Dict[str, Any]:
    studio = create_studio(
        config_path=Path(args.config) if args.config else None,
        api_key=args.api_key,
    )
    output_dir = Path(args.output_dir) if args.output_dir else Path(studio.config.output_dir)
    output_manager = OutputManager(base_dir=output_dir, run_name=args.command)
    try:
        return await run_command(args, studio, output_manager)
    finally:
        await studio.aclose()


def main(argv=None):
    """主入口"""
    parser = build_parser()
    args = parser.parse_args(argv)

    # 配置日志
    setup_logging(level=args.log_level, log_file=args.log_file)
    logger = logging.getLogger(__name__)

    try:
        result = asyncio.run(_main_async(args))

        # 输出结果
        print(json.dumps(result, ensure_ascii=False, indent=2))

        return 0

    except ForgeError as e:
        logger.error(f"生成错误: {e}")
        print(json.dumps({"error": str(e)}, ensure_ascii=False))
        return 1

    except Exception as e:
        logger.exception(f"未知错误: {e}")
        print(json.dumps({"error": str(e)}, ensure_ascii=False))
        return 1


if __name__ == "__main__":
    sys.exit(main())
