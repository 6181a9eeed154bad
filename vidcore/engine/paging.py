from typing import List, Sequence, TypeVar

from vidcore.engine.errors import InvalidArgument

T = TypeVar("T")


def check_page(page_size: int, page_num: int) -> None:
    if page_size is None or page_num is None or page_size <= 0 or page_num <= 0:
        raise InvalidArgument(f"invalid page_size {page_size} or page_num {page_num}")


def offset(page_size: int, page_num: int) -> int:
    return (page_num - 1) * page_size


def page_slice(items: Sequence[T], page_size: int, page_num: int) -> List[T]:
    start = offset(page_size, page_num)
    return list(items[start:start + page_size])
