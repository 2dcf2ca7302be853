"""Conversion run state, stage results and progress events."""

import math
import re
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Generic, Literal, TypeVar

import anyio
from anyio.streams.memory import MemoryObjectSendStream

from magtoepub.config.constants import WORDS_PER_MINUTE
from magtoepub.utils.logging import get_logger

if TYPE_CHECKING:
    from magtoepub.image.models import ExtractedImage

log = get_logger(__name__)

T = TypeVar("T")

_IMAGE_REF_PATTERN = re.compile(r"!\[[^\]]*\]\(\s*(?:images/)?([^)\s]+)")


class Stage(StrEnum):
    """Stages of a conversion run, in order."""

    IDLE = "idle"
    LOADING = "loading"
    EXTRACTING_IMAGES = "extracting_images"
    ANALYZING_IMAGES = "analyzing_images"
    GENERATING_TEXT = "generating_text"
    COMPLETE = "complete"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (Stage.COMPLETE, Stage.ERROR)


EventKind = Literal["stage", "progress", "chunk", "retry", "usage"]


@dataclass(frozen=True)
class ProgressEvent:
    """One ordered notification emitted while a run progresses."""

    kind: EventKind
    stage: Stage
    message: str = ""
    progress: int | None = None  # percentage, 0-100
    text: str | None = None  # streamed markdown chunk
    tokens: int | None = None  # tokens added to the run total
    delay: float | None = None  # seconds before a rate-limit retry


class ProgressChannel:
    """Emits progress events onto an anyio memory object stream.

    Emission never blocks and never fails the stage that emits: once the
    consumer has gone away, events are dropped.
    """

    def __init__(self, send_stream: MemoryObjectSendStream[ProgressEvent] | None = None) -> None:
        self._send_stream = send_stream
        self._closed = send_stream is None

    def emit(self, event: ProgressEvent) -> None:
        if self._closed or self._send_stream is None:
            return
        try:
            self._send_stream.send_nowait(event)
        except (anyio.BrokenResourceError, anyio.ClosedResourceError):
            log.debug("Progress consumer closed, dropping further events")
            self._closed = True
        except anyio.WouldBlock:
            log.debug("Progress buffer full, dropping event", kind=event.kind)


def percent(done: int, total: int) -> int:
    """Rounded percentage of ``done`` over ``total``; 100 when total is zero."""
    if total <= 0:
        return 100
    return round(done / total * 100)


StageStatus = Literal["ok", "partial", "failed"]


@dataclass
class StageResult(Generic[T]):
    """Outcome of a best-effort stage.

    ``partial`` means some items failed and were skipped; ``failed`` means the
    stage produced nothing usable. The orchestrator decides what each means.
    """

    value: T
    status: StageStatus = "ok"
    errors: list[str] = field(default_factory=list)
    token_usage: int = 0

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @property
    def failed(self) -> bool:
        return self.status == "failed"


@dataclass
class ConversionStats:
    """Summary shown after a successful run."""

    total_pages: int
    word_count: int
    read_time_minutes: int
    images_extracted: int
    images_used: int
    token_usage: int


@dataclass
class ConversionState:
    """Accumulator for one conversion run.

    Owned and mutated only by the orchestrator's sequential control flow.
    """

    stage: Stage = Stage.IDLE
    title: str = ""
    total_pages: int = 0
    markdown: str = ""
    images: list["ExtractedImage"] = field(default_factory=list)
    token_usage: int = 0
    progress: int = 0
    message: str = ""
    error: str | None = None

    def reset(self, title: str = "") -> None:
        """Start over; nothing from a previous run survives."""
        self.stage = Stage.IDLE
        self.title = title
        self.total_pages = 0
        self.markdown = ""
        self.images = []
        self.token_usage = 0
        self.progress = 0
        self.message = ""
        self.error = None

    @property
    def images_used(self) -> set[str]:
        """Names of extracted images that the markdown references."""
        known = {image.name for image in self.images}
        return {name for name in _IMAGE_REF_PATTERN.findall(self.markdown) if name in known}

    @property
    def word_count(self) -> int:
        return len(self.markdown.split())

    def stats(self) -> ConversionStats:
        words = self.word_count
        return ConversionStats(
            total_pages=self.total_pages,
            word_count=words,
            read_time_minutes=math.ceil(words / WORDS_PER_MINUTE),
            images_extracted=len(self.images),
            images_used=len(self.images_used),
            token_usage=self.token_usage,
        )
