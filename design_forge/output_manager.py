"""
输出管理器 - 负责输出目录和文件管理
"""

import json
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .models import ImagePayload

logger = logging.getLogger(__name__)


def _safe_slug(s: str) -> str:
    """将字符串转换为安全的文件名"""
    s = s.strip()
    s = re.sub(r"\s+", "_", s)
    s = re.sub(r"[^0-9A-Za-z\u4e00-\u9fff_\-]", "", s)
    return s or "output"


class OutputManager:
    """输出管理器"""

    def __init__(self, base_dir: Path, run_name: str):
        """
        初始化输出管理器

        Args:
            base_dir: 输出基础目录
            run_name: 运行名称（用于创建子目录）
        """
        self.base_dir = Path(base_dir)
        self.run_name = run_name
        self.run_dir: Optional[Path] = None
        self.timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")

    def create_run_directory(self) -> Path:
        """
        创建运行目录

        Returns:
            运行目录路径
        """
        if self.run_dir:
            self.run_dir.mkdir(parents=True, exist_ok=True)
            return self.run_dir

        dir_name = f"{_safe_slug(self.run_name)}_{self.timestamp}"
        self.run_dir = self.base_dir / dir_name
        self.run_dir.mkdir(parents=True, exist_ok=True)

        logger.info(f"创建运行目录: {self.run_dir}")
        return self.run_dir

    def get_output_path(self, image_num: int, extension: str = "png", prefix: str = "") -> Path:
        """
        获取输出文件路径

        Args:
            image_num: 图片号（从1开始）
            extension: 文件扩展名
            prefix: 文件名前缀
        """
        run_dir = self.create_run_directory()
        stem = f"{_safe_slug(prefix)}_{image_num:02d}" if prefix else f"{image_num:02d}"
        return run_dir / f"{stem}.{extension.lstrip('.')}"

    def save_image(self, image: ImagePayload, image_num: int, prefix: str = "") -> Path:
        """解码并保存单张图片"""
        path = self.get_output_path(image_num, image.extension, prefix)
        path.write_bytes(image.decode())
        logger.debug(f"保存图片: {path}")
        return path

    def save_images(self, images: Sequence[ImagePayload], prefix: str = "") -> List[Path]:
        """按候选顺序保存一组图片"""
        return [self.save_image(image, i, prefix) for i, image in enumerate(images, 1)]

    def save_text(self, text: str, filename: str = "result.txt") -> Path:
        path = self.create_run_directory() / filename
        path.write_text(text, encoding="utf-8")
        return path

    def save_summary(self, summary: Dict[str, Any]) -> Path:
        """
        保存运行摘要

        Args:
            summary: 可 JSON 序列化的摘要字典
        """
        summary_path = self.create_run_directory() / "summary.json"

        with open(summary_path, "w", encoding="utf-8") as f:
            json.dump(summary, f, ensure_ascii=False, indent=2)

        logger.info(f"保存运行摘要: {summary_path}")
        return summary_path
