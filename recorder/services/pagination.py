# recorder/services/pagination.py
import math
from typing import Sequence, TypeVar, Union

T = TypeVar("T")

ITEMS_PER_PAGE = 10
DOTS = "dots"

def total_pages(total_items: int, per_page: int = ITEMS_PER_PAGE) -> int:
    return math.ceil(total_items / per_page) if total_items > 0 else 0

def clamp_page(page: int, pages: int) -> int:
    """Pages are 1-based; a page past the end snaps to the last page."""
    if page < 1:
        return 1
    if pages > 0 and page > pages:
        return pages
    return page

def page_slice(items: Sequence[T], page: int, per_page: int = ITEMS_PER_PAGE) -> list[T]:
    start = (page - 1) * per_page
    return list(items[start:start + per_page])

def pagination_range(current_page: int, pages: int, delta: int = 1) -> list[Union[int, str]]:
    """
    Page buttons to show: first page, current page +/- delta, last page,
    with "dots" where pages are skipped. e.g. (5, 10) -> [1, "dots", 4, 5, 6, "dots", 10]
    """
    if pages <= 1:
        return [1]

    out: list[Union[int, str]] = [1]
    left = max(2, current_page - delta)
    right = min(pages - 1, current_page + delta)

    if left > 2:
        out.append(DOTS)
    for page in range(left, right + 1):
        if page not in out:
            out.append(page)
    if right < pages - 1:
        out.append(DOTS)
    if pages not in out:
        out.append(pages)
    return out
