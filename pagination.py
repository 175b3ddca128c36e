import math
from dataclasses import dataclass
from typing import Generic, Optional, Sequence, TypeVar, Union

from config import get_settings

T = TypeVar("T")


@dataclass(frozen=True)
class PageWindow:
    page: int
    per_page: int

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.per_page

    def total_pages(self, total_count: int) -> int:
        return max(1, math.ceil(total_count / self.per_page))

    def slice(self, items: Sequence[T]) -> list[T]:
        return list(items[self.offset : self.offset + self.per_page])


@dataclass
class Page(Generic[T]):
    data: list[T]
    total_count: int
    current_page: int
    per_page: int
    total_pages: int

    @classmethod
    def build(cls, data: list[T], total_count: int, window: PageWindow) -> "Page[T]":
        return cls(
            data=data,
            total_count=total_count,
            current_page=window.page,
            per_page=window.per_page,
            total_pages=window.total_pages(total_count),
        )


def _as_int(value: Union[str, int, None], name: str) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"The {name} must be an integer") from exc


def resolve_page(
    page: Union[str, int, None] = None,
    per_page: Union[str, int, None] = None,
) -> PageWindow:
    """Build a 1-indexed page window, clamping values into the allowed range."""
    settings = get_settings()
    page_num = _as_int(page, "page") or 1
    size = _as_int(per_page, "per_page") or settings.default_per_page
    return PageWindow(
        page=max(page_num, 1),
        per_page=min(max(size, 1), settings.max_per_page),
    )
