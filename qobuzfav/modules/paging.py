"""Offset/limit pagination over Qobuz listings."""
import asyncio
import logging
from typing import Awaitable, Callable, List, TypeVar

from .qobuz import QobuzAPIError, QobuzAuthError

T = TypeVar("T")

DEFAULT_PAGE_SIZE = 50
DEFAULT_PAGE_DELAY_SECONDS = 0.5


async def walk_pages(
    fetch_page: Callable[[int, int], Awaitable[List[T]]],
    page_size: int = DEFAULT_PAGE_SIZE,
    delay_seconds: float = DEFAULT_PAGE_DELAY_SECONDS,
    description: str = "items",
) -> List[T]:
    """Collect every item returned by ``fetch_page(offset, limit)``.

    The walk ends on the first page shorter than ``page_size`` or on the
    first failed call. A failure is logged and whatever was collected so far
    is returned; nothing is retried here.
    """
    items: List[T] = []
    offset = 0

    while True:
        try:
            page = await fetch_page(offset, page_size)
        except (QobuzAuthError, QobuzAPIError) as e:
            logging.error(
                "Stopped loading %s at offset %d: %s", description, offset, e
            )
            break
        except Exception as e:
            logging.error(
                "Unexpected error loading %s at offset %d: %s",
                description, offset, e,
            )
            break

        items.extend(page)
        if len(page) < page_size:
            break

        offset += page_size
        await asyncio.sleep(delay_seconds)

    logging.debug("Loaded %d %s", len(items), description)
    return items
