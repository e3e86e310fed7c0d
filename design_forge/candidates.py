"""
候选集管理 - 一次批量生成的有序结果、当前选中项与查看变换
"""

import logging
from typing import Iterator, List, Optional, Sequence, Tuple

from .exceptions import SelectionError
from .models import ImagePayload, ViewTransform

logger = logging.getLogger(__name__)

MIN_SCALE = 1.0
MAX_SCALE = 8.0
BUTTON_ZOOM_FACTOR = 1.5
WHEEL_ZOOM_FACTOR = 1.1


class CandidateSet:
    """
    候选集

    不变量：集合非空时 0 <= selected_index < len；整体替换会把索引重置为 0，
    原地编辑（replace_at / replace_selected）保持索引不变。
    """

    def __init__(self, images: Sequence[ImagePayload] = ()):
        self._images: List[ImagePayload] = list(images)
        self._index = 0
        self._replacements = 0
        self._element_revisions: List[int] = [0] * len(self._images)

    def __len__(self) -> int:
        return len(self._images)

    def __iter__(self) -> Iterator[ImagePayload]:
        return iter(self._images)

    def __getitem__(self, index: int) -> ImagePayload:
        return self._images[index]

    @property
    def images(self) -> Tuple[ImagePayload, ...]:
        return tuple(self._images)

    @property
    def is_empty(self) -> bool:
        return not self._images

    @property
    def selected_index(self) -> int:
        return self._index

    @property
    def selected(self) -> Optional[ImagePayload]:
        if not self._images:
            return None
        return self._images[self._index]

    def replace(self, images: Sequence[ImagePayload]):
        """整体替换，索引归零"""
        self._images = list(images)
        self._index = 0
        self._replacements += 1
        self._element_revisions = [0] * len(self._images)

    def next(self) -> int:
        """循环选择下一张"""
        if self._images:
            self._index = (self._index + 1) % len(self._images)
        return self._index

    def previous(self) -> int:
        """循环选择上一张"""
        if self._images:
            self._index = (self._index - 1) % len(self._images)
        return self._index

    def select(self, index: int) -> bool:
        """选择指定索引，越界时不做任何改变"""
        if 0 <= index < len(self._images):
            self._index = index
            return True
        logger.debug(f"忽略越界选择: {index} (共 {len(self._images)} 张)")
        return False

    def replace_at(self, index: int, image: ImagePayload):
        """原地替换单个元素，不改变选中索引"""
        if not 0 <= index < len(self._images):
            raise SelectionError(
                f"候选索引越界: {index}",
                available=len(self._images),
                requested=index,
            )
        self._images[index] = image
        self._element_revisions[index] += 1

    def replace_selected(self, image: ImagePayload):
        """替换当前选中的元素"""
        if not self._images:
            raise SelectionError("候选集为空，无法替换", available=0, requested=self._index)
        self.replace_at(self._index, image)

    def view_key(self) -> Tuple[int, int, int]:
        """当前显示内容的标识：整体替换次数、选中索引、选中元素的编辑次数"""
        edits = self._element_revisions[self._index] if self._images else 0
        return (self._replacements, self._index, edits)


class CandidateViewer:
    """
    候选集查看器

    在候选集之上维护一个显示变换；当选中项或候选集本身发生变化时，
    变换自动回到单位变换。
    """

    def __init__(self, candidates: Optional[CandidateSet] = None):
        self._candidates = candidates if candidates is not None else CandidateSet()
        self._transform = ViewTransform()
        self._seen = self._identity_key()

    def _identity_key(self):
        return (id(self._candidates), self._candidates.view_key())

    def _sync(self):
        key = self._identity_key()
        if key != self._seen:
            self._transform = ViewTransform()
            self._seen = key

    @property
    def candidates(self) -> CandidateSet:
        return self._candidates

    def bind(self, candidates: CandidateSet):
        """绑定新的候选集"""
        self._candidates = candidates
        self._sync()

    @property
    def transform(self) -> ViewTransform:
        self._sync()
        return ViewTransform(self._transform.scale, self._transform.x, self._transform.y)

    @property
    def selected_index(self) -> int:
        return self._candidates.selected_index

    @property
    def selected(self) -> Optional[ImagePayload]:
        return self._candidates.selected

    def next(self) -> int:
        index = self._candidates.next()
        self._sync()
        return index

    def previous(self) -> int:
        index = self._candidates.previous()
        self._sync()
        return index

    def select(self, index: int) -> bool:
        changed = self._candidates.select(index)
        self._sync()
        return changed

    def replace_selected(self, image: ImagePayload):
        self._candidates.replace_selected(image)
        self._sync()

    def zoom_to(self, scale: float, point_x: float, point_y: float):
        """以指定点为中心缩放，缩放回 1 时回到单位变换"""
        self._sync()
        new_scale = max(MIN_SCALE, min(scale, MAX_SCALE))
        current = self._transform
        if new_scale == MIN_SCALE:
            self._transform = ViewTransform()
            return
        ratio = new_scale / current.scale
        self._transform = ViewTransform(
            scale=new_scale,
            x=point_x - (point_x - current.x) * ratio,
            y=point_y - (point_y - current.y) * ratio,
        )

    def zoom_in(self, center_x: float = 0.0, center_y: float = 0.0):
        self._sync()
        self.zoom_to(self._transform.scale * BUTTON_ZOOM_FACTOR, center_x, center_y)

    def zoom_out(self, center_x: float = 0.0, center_y: float = 0.0):
        self._sync()
        self.zoom_to(self._transform.scale / BUTTON_ZOOM_FACTOR, center_x, center_y)

    def wheel(self, delta_y: float, point_x: float, point_y: float):
        """滚轮缩放：向上滚放大，向下滚缩小"""
        self._sync()
        scale = self._transform.scale
        new_scale = scale * WHEEL_ZOOM_FACTOR if delta_y < 0 else scale / WHEEL_ZOOM_FACTOR
        if max(MIN_SCALE, min(new_scale, MAX_SCALE)) == scale:
            return
        self.zoom_to(new_scale, point_x, point_y)

    def pan(self, dx: float, dy: float):
        """平移（仅在放大状态下生效）"""
        self._sync()
        if self._transform.scale <= MIN_SCALE:
            return
        self._transform = ViewTransform(
            scale=self._transform.scale,
            x=self._transform.x + dx,
            y=self._transform.y + dy,
        )

    def reset_zoom(self):
        self._transform = ViewTransform()


class FavoritesPanel:
    """收藏面板（按字节去重）"""

    def __init__(self):
        self._images: List[ImagePayload] = []

    def add(self, image: ImagePayload) -> bool:
        """添加图片，重复图片返回 False"""
        if image in self._images:
            return False
        self._images.append(image)
        return True

    @property
    def images(self) -> Tuple[ImagePayload, ...]:
        return tuple(self._images)

    def __len__(self) -> int:
        return len(self._images)
