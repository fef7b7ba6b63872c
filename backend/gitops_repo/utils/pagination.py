"""Page slicing and branch-name ordering helpers."""
from typing import Callable, Iterable, Sequence, TypeVar

T = TypeVar("T")

DEFAULT_BRANCH_NAMES = ("main", "master")


def get_page(items: Sequence[T], page: int, per_page: int) -> tuple[list[T], int]:
    """Return the 1-based ``page`` of ``items`` and the total item count.

    A page past the end yields an empty list; the total is always computed
    before slicing.
    """
    total = len(items)
    start = (page - 1) * per_page
    end = start + per_page
    if start < 0 or start >= total:
        return [], total
    return list(items[start:min(end, total)]), total


def is_default_branch(name: str) -> bool:
    return name.lower() in DEFAULT_BRANCH_NAMES


def sort_by_short_name(items: Iterable[T], short_name: Callable[[T], str] = str) -> list[T]:
    """Sort branches with main/master first, the rest alphabetically by short name."""
    return sorted(items, key=lambda item: (not is_default_branch(short_name(item)), short_name(item)))
