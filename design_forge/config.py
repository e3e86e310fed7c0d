"""
配置管理器 - 负责加载和验证配置
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from .exceptions import ConfigurationError, PathNotFoundError
from .models import DEFAULT_MODEL_IDS, ForgeConfig, ImageModel


def _parse_model(name: str, field: str) -> ImageModel:
    """按显示名称或枚举名解析模型"""
    for model in ImageModel:
        if name in (model.value, model.name):
            return model
    raise ConfigurationError(f"未知的图片模型: {name}", field=field)


class ConfigManager:
    """配置管理器"""

    DEFAULT_CONFIG_NAME = "config.json"

    def __init__(
        self,
        config_path: Optional[Path] = None,
        project_root: Optional[Path] = None,
    ):
        """
        初始化配置管理器

        Args:
            config_path: 全局配置文件路径 (config.json)，不存在时仅使用默认值和环境变量
            project_root: 项目根目录，用于解析相对路径
        """
        self.project_root = project_root or Path.cwd()
        self.config_path = config_path
        self._config: Optional[ForgeConfig] = None

    def _load_json(self, path: Path) -> Dict[str, Any]:
        """加载JSON文件"""
        if not path.exists():
            raise PathNotFoundError(str(path), f"配置文件不存在: {path}")

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ConfigurationError(f"配置文件根对象必须是字典: {path}")
            return data
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"JSON解析错误: {path}, {e}")

    def _resolve_path(self, path_str: str) -> Path:
        """解析路径，相对路径相对于项目根目录"""
        p = Path(path_str)
        if p.is_absolute():
            return p
        return self.project_root / p

    def _read_data(self) -> Dict[str, Any]:
        if self.config_path:
            return self._load_json(self._resolve_path(str(self.config_path)))

        # 尝试默认路径
        default_path = self.project_root / self.DEFAULT_CONFIG_NAME
        if default_path.exists():
            self.config_path = default_path
            return self._load_json(default_path)
        return {}

    def load_config(self) -> ForgeConfig:
        """加载全局配置（API密钥、模型映射、额度等）"""
        if self._config:
            return self._config

        data = self._read_data()
        provider_cfg = data.get("openrouter", {})
        quota_cfg = data.get("quota", {})

        model_ids = dict(DEFAULT_MODEL_IDS)
        for name, model_id in provider_cfg.get("model_ids", {}).items():
            model_ids[_parse_model(name, "openrouter.model_ids")] = model_id

        free_tier_names: List[str] = quota_cfg.get(
            "free_tier_models",
            [m.value for m in ForgeConfig().free_tier_models],
        )
        if not isinstance(free_tier_names, list):
            raise ConfigurationError("free_tier_models 必须是列表", field="quota.free_tier_models")

        daily_credits = os.getenv("DESIGN_FORGE_DAILY_CREDITS") or quota_cfg.get("daily_credits", 25)
        try:
            daily_credits = int(daily_credits)
        except (TypeError, ValueError):
            raise ConfigurationError(f"每日额度必须是整数: {daily_credits!r}", field="quota.daily_credits")
        if daily_credits < 0:
            raise ConfigurationError("每日额度不能为负数", field="quota.daily_credits")

        try:
            timeout = float(provider_cfg.get("timeout", 300.0))
        except (TypeError, ValueError):
            raise ConfigurationError("timeout 必须是数字", field="openrouter.timeout")

        quota_file = os.getenv("DESIGN_FORGE_QUOTA_FILE") or quota_cfg.get("file", ".design_forge/quota.json")

        self._config = ForgeConfig(
            api_key=os.getenv("OPENROUTER_API_KEY") or provider_cfg.get("api_key", ""),
            base_url=os.getenv("OPENROUTER_BASE_URL") or provider_cfg.get("base_url", "https://openrouter.ai/api/v1"),
            site_url=os.getenv("OPENROUTER_SITE_URL") or provider_cfg.get("site_url", ""),
            site_name=os.getenv("OPENROUTER_SITE_NAME") or provider_cfg.get("site_name", ""),
            proxy=os.getenv("OPENROUTER_PROXY") or provider_cfg.get("proxy", ""),
            timeout=timeout,
            model_ids=model_ids,
            edit_model_id=provider_cfg.get("edit_model", "google/gemini-2.5-flash-image-preview"),
            text_model_id=provider_cfg.get("text_model", "google/gemini-2.5-flash"),
            daily_credits=daily_credits,
            free_tier_models=tuple(_parse_model(n, "quota.free_tier_models") for n in free_tier_names),
            enhance_model=_parse_model(quota_cfg.get("enhance_model", ImageModel.IMAGEN_4.value), "quota.enhance_model"),
            quota_file=str(self._resolve_path(quota_file)),
            output_dir=str(self._resolve_path(data.get("output_dir", "./outputs"))),
        )

        return self._config
