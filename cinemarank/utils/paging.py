import math
from typing import List, Sequence, Tuple, TypeVar

T = TypeVar("T")


def total_pages(n_items: int, page_size: int) -> int:
    return max(1, math.ceil(n_items / page_size))


def paginate(items: Sequence[T], page: int, page_size: int) -> Tuple[List[T], int, int]:
    """Slice one page out of an already-fetched list.

    The requested page is clamped into [1, total_pages], so a list that shrank
    under the caller still yields its last page rather than an empty one.
    Returns (page_items, page, total_pages).
    """
    if page_size < 1:
        raise ValueError("page_size must be >= 1")
    pages = total_pages(len(items), page_size)
    page = min(max(1, page), pages)
    start = (page - 1) * page_size
    return list(items[start:start + page_size]), page, pages
