"""Page batch planning.

Pages are grouped greedily, in order, so that each text-generation request
stays under a character budget (a proxy for the response token ceiling) and
a page-count cap (a proxy for the request's image payload). Text-heavy pages
get small batches, sparse pages get large ones.
"""

from collections.abc import Sequence
from dataclasses import dataclass

import anyio

from magtoepub.config.constants import (
    FALLBACK_PAGE_WEIGHT,
    MAX_CHARS_PER_BATCH,
    MAX_PAGES_PER_BATCH,
)
from magtoepub.document import DocumentHandle
from magtoepub.utils.logging import get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class PageBatch:
    """Contiguous, non-empty run of 1-based page numbers."""

    pages: tuple[int, ...]
    chars: int = 0

    def __post_init__(self) -> None:
        if not self.pages:
            raise ValueError("PageBatch must contain at least one page")

    @property
    def first_page(self) -> int:
        return self.pages[0]

    @property
    def last_page(self) -> int:
        return self.pages[-1]

    def __len__(self) -> int:
        return len(self.pages)


def plan_batches(
    weights: Sequence[int],
    max_chars: int = MAX_CHARS_PER_BATCH,
    max_pages: int = MAX_PAGES_PER_BATCH,
) -> list[PageBatch]:
    """Partition pages ``1..len(weights)`` into batches.

    A page is added to the open batch unless the batch is non-empty and the
    page would push it over ``max_chars`` or the batch is already at
    ``max_pages``; then the batch is closed and the page starts a new one.
    A page heavier than ``max_chars`` on its own becomes a singleton batch.

    Args:
        weights: Estimated character count of each page, page 1 first
        max_chars: Character budget per batch
        max_pages: Page cap per batch

    Returns:
        Ordered batches covering every page exactly once
    """
    batches: list[PageBatch] = []
    current: list[int] = []
    current_chars = 0

    for page_number, weight in enumerate(weights, start=1):
        is_text_full = current_chars + weight > max_chars
        is_pages_full = len(current) >= max_pages

        if current and (is_text_full or is_pages_full):
            batches.append(PageBatch(pages=tuple(current), chars=current_chars))
            current = [page_number]
            current_chars = weight
        else:
            current.append(page_number)
            current_chars += weight

    if current:
        batches.append(PageBatch(pages=tuple(current), chars=current_chars))

    return batches


class BatchPlanner:
    """Plans page batches from a document's text density."""

    def __init__(
        self,
        max_chars: int = MAX_CHARS_PER_BATCH,
        max_pages: int = MAX_PAGES_PER_BATCH,
        fallback_weight: int = FALLBACK_PAGE_WEIGHT,
    ) -> None:
        self.max_chars = max_chars
        self.max_pages = max_pages
        self.fallback_weight = fallback_weight

    def page_weights(self, document: DocumentHandle) -> list[int]:
        """Estimate each page's character count.

        A page whose text cannot be read gets ``fallback_weight`` instead of
        aborting the plan.
        """
        weights: list[int] = []
        with document.open_surface() as surface:
            for page_number in range(1, document.page_count + 1):
                try:
                    weight = sum(len(run) for run in surface.text_runs(page_number))
                except Exception as e:
                    log.warning(
                        "Could not analyze text density, assuming average",
                        page=page_number,
                        fallback=self.fallback_weight,
                        error=str(e),
                    )
                    weight = self.fallback_weight
                weights.append(weight)
        return weights

    def plan_sync(self, document: DocumentHandle) -> list[PageBatch]:
        batches = plan_batches(self.page_weights(document), self.max_chars, self.max_pages)
        log.info(
            "Planned processing batches",
            batches=len(batches),
            pages=document.page_count,
            layout=[f"{b.first_page}-{b.last_page}" for b in batches],
        )
        return batches

    async def plan(self, document: DocumentHandle) -> list[PageBatch]:
        """Plan batches without blocking the event loop."""
        return await anyio.to_thread.run_sync(self.plan_sync, document)
