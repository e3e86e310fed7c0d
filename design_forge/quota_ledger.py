"""
额度账本 - 每日可重置的生成额度（线程安全）

持久化格式为单个键值对 {"date": "YYYY-MM-DD", "remainingCredits": int}，
读取失败或日期过期一律视为需要重置，写入失败只记录日志。
"""

import json
import logging
import threading
from datetime import date
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Optional, Protocol

from .exceptions import InsufficientCredits
from .models import DEFAULT_FREE_TIER_MODELS, ImageModel, QuotaState

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    """同步、尽力而为的本地键值存储"""

    def get(self, key: str) -> Optional[Any]:
        ...

    def set(self, key: str, value: Any) -> None:
        ...


class MemoryStore:
    """内存存储（测试和无持久化场景）"""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self.data: Dict[str, Any] = dict(initial or {})

    def get(self, key: str) -> Optional[Any]:
        return self.data.get(key)

    def set(self, key: str, value: Any) -> None:
        self.data[key] = value


class JsonFileStore:
    """JSON 文件存储"""

    def __init__(self, path: Path):
        """
        初始化文件存储

        Args:
            path: JSON 文件路径，目录不存在时写入时自动创建
        """
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read_all(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return data if isinstance(data, dict) else {}
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"额度文件无法读取，将重置: {e}")
            return {}

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            return self._read_all().get(key)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            data = self._read_all()
            data[key] = value
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with open(self.path, "w", encoding="utf-8") as f:
                    json.dump(data, f, ensure_ascii=False, indent=2)
            except OSError as e:
                logger.error(f"保存额度失败: {e}")


class QuotaLedger:
    """每日额度账本"""

    STORAGE_KEY = "design_forge.quota"

    def __init__(
        self,
        store: KeyValueStore,
        capacity: int = 25,
        free_tier_models: Iterable[ImageModel] = DEFAULT_FREE_TIER_MODELS,
        today: Callable[[], date] = date.today,
    ):
        """
        初始化额度账本

        Args:
            store: 键值存储
            capacity: 每日额度上限
            free_tier_models: 免费模型集合，使用这些模型的操作不扣额度
            today: 当前日期函数（测试时可替换）
        """
        self.store = store
        self.capacity = capacity
        self.free_tier_models = frozenset(free_tier_models)
        self._today = today
        self._state: Optional[QuotaState] = None
        self._lock = threading.Lock()

    def _restore(self) -> Optional[QuotaState]:
        raw = self.store.get(self.STORAGE_KEY)
        if raw is None:
            return None
        try:
            return QuotaState.from_dict(raw, self.capacity)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"额度记录无效，将重置: {e}")
            return None

    def _persist(self):
        self.store.set(self.STORAGE_KEY, self._state.to_dict())

    def _ensure_current(self) -> QuotaState:
        """按需加载并执行跨日重置（调用方需持有锁）"""
        today = self._today()
        if self._state is None:
            self._state = self._restore()

        if self._state is None or self._state.reset_key != today:
            self._state = QuotaState(remaining=self.capacity, capacity=self.capacity, reset_key=today)
            self._persist()
            logger.info(f"🔄 每日额度已重置: {self.capacity}")

        return self._state

    @property
    def remaining(self) -> int:
        with self._lock:
            return self._ensure_current().remaining

    def snapshot(self) -> QuotaState:
        """获取当前额度状态副本"""
        with self._lock:
            state = self._ensure_current()
            return QuotaState(state.remaining, state.capacity, state.reset_key)

    def is_free_tier(self, model: Optional[ImageModel]) -> bool:
        """模型是否属于免费层"""
        return model is not None and model in self.free_tier_models

    def check(self, cost: int) -> bool:
        """检查额度是否足够（不修改状态）"""
        if cost < 0:
            raise ValueError(f"cost 不能为负数: {cost}")
        with self._lock:
            return self._ensure_current().remaining >= cost

    def consume(self, cost: int) -> bool:
        """
        原子地检查并扣减额度

        Args:
            cost: 扣减点数

        Returns:
            额度不足时返回 False 且状态不变，否则扣减并持久化后返回 True
        """
        if cost < 0:
            raise ValueError(f"cost 不能为负数: {cost}")
        with self._lock:
            state = self._ensure_current()
            if state.remaining < cost:
                logger.warning(f"额度不足: 需要 {cost}，剩余 {state.remaining}")
                return False
            state.remaining -= cost
            self._persist()
            logger.debug(f"扣减额度 {cost}，剩余 {state.remaining}")
            return True

    def authorize(self, model: Optional[ImageModel], cost: int) -> int:
        """
        生成前的额度闸门

        Args:
            model: 本次使用的模型，免费层模型直接放行且不调用 consume
            cost: 需要扣减的点数（整个批次一次性扣减）

        Returns:
            实际扣减的点数
        """
        if self.is_free_tier(model):
            logger.debug(f"免费模型 {model.value}，跳过额度检查")
            return 0
        if not self.consume(cost):
            raise InsufficientCredits(required=cost, remaining=self.remaining)
        return cost
