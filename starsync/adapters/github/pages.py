"""Page walker over the starred listing.

``StarredPages`` is a finite async iterable. Each ``async for`` starts a new walk
from page 1, so the same object can be iterated again after a failure. Once a
walk stops, ``termination`` says why.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable

    from starsync.adapters.github.models import FetchStarredResult, StarredItem

logger = logging.getLogger(__name__)


class PageWalkEnd(StrEnum):
    END_OF_DATA = "end_of_data"
    EARLY_STOP = "early_stop"
    PAGE_CAP = "page_cap"
    NOT_MODIFIED = "not_modified"
    RATE_LIMITED = "rate_limited"
    ERROR = "error"


@dataclass
class StarPage:
    number: int
    result: FetchStarredResult
    items: list[StarredItem] = field(default_factory=list)
    stopped_early: bool = False

    @property
    def not_modified(self) -> bool:
        return self.result.not_modified

    @property
    def rate_limited(self) -> bool:
        return self.result.secondary_rate_limited


class StarredPages:
    """Walk pages in ascending order until the data, the cap or the caller says stop.

    Args:
        fetch_page: ``(page, etag) -> FetchStarredResult``
        per_page: Page size already clamped to the API bounds
        max_pages: Page cap, 0 means no cap
        etag: Conditional token sent with page 1 only
        stop_when: Early-stop predicate; the first matching item and everything
            after it are dropped and the walk ends
    """

    def __init__(
        self,
        fetch_page: Callable[[int, str | None], Awaitable[FetchStarredResult]],
        *,
        per_page: int,
        max_pages: int = 0,
        etag: str | None = None,
        stop_when: Callable[[StarredItem], bool] | None = None,
    ) -> None:
        self._fetch_page = fetch_page
        self.per_page = per_page
        self.max_pages = max(0, max_pages)
        self.etag = etag
        self.stop_when = stop_when
        self.termination: PageWalkEnd | None = None
        self.pages_fetched = 0

    @property
    def reached_end(self) -> bool:
        """True only when the walk proved it saw the tail of the collection."""
        return self.termination is PageWalkEnd.END_OF_DATA

    def __aiter__(self) -> AsyncIterator[StarPage]:
        return self._walk()

    async def _walk(self) -> AsyncIterator[StarPage]:
        self.termination = None
        self.pages_fetched = 0
        page = 1

        try:
            while self.max_pages == 0 or page <= self.max_pages:
                result = await self._fetch_page(page, self.etag if page == 1 else None)
                self.pages_fetched += 1

                if result.not_modified:
                    self.termination = PageWalkEnd.NOT_MODIFIED
                    yield StarPage(number=page, result=result)
                    return

                if result.secondary_rate_limited:
                    self.termination = PageWalkEnd.RATE_LIMITED
                    yield StarPage(number=page, result=result)
                    return

                items = list(result.items)
                if self.stop_when is not None:
                    for index, item in enumerate(items):
                        if self.stop_when(item):
                            self.termination = PageWalkEnd.EARLY_STOP
                            yield StarPage(
                                number=page,
                                result=result,
                                items=items[:index],
                                stopped_early=True,
                            )
                            return

                yield StarPage(number=page, result=result, items=items)

                if len(result.items) < self.per_page:
                    self.termination = PageWalkEnd.END_OF_DATA
                    return
                page += 1

            self.termination = PageWalkEnd.PAGE_CAP
            logger.info(
                "starred_walk_page_cap",
                extra={"max_pages": self.max_pages, "pages": self.pages_fetched},
            )
        except Exception:
            self.termination = PageWalkEnd.ERROR
            raise
