"""Generation port — abstract interface to the remote guide capability.

Core modules depend on this protocol, never on the HTTP client.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, AsyncIterator, Protocol, Union

if TYPE_CHECKING:
    from src.core.guide_request import GuideRequest
    from src.data.models import NoteAnalysis, PartialGuide, RelatedArticle, SmallTalkGuide


class InvalidInputError(Exception):
    """Raised when a request cannot be built from the given records."""


class GenerationError(Exception):
    """Raised when the remote capability fails to produce a guide.

    `message` is the server-supplied text when there is one.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class TransportError(GenerationError):
    """Non-success HTTP status or network failure."""


class StreamProtocolError(GenerationError):
    """The server signalled an error (error frame or error body)."""


class MalformedResponseError(GenerationError):
    """The final text could not be parsed into a guide."""


@dataclass
class GuideProgress:
    """A new best-known partial guide."""

    partial: PartialGuide


@dataclass
class GuideCompleted:
    """The stream ended and produced a complete guide."""

    guide: SmallTalkGuide


GuideEvent = Union[GuideProgress, GuideCompleted]


class GuideGenerator(Protocol):
    """Abstract guide generation interface used by core modules."""

    async def generate_guide(self, request: GuideRequest) -> SmallTalkGuide: ...

    def stream_guide(self, request: GuideRequest) -> AsyncIterator[GuideEvent]: ...

    async def analyze_note(self, note: str) -> NoteAnalysis: ...

    async def search_related(
        self, tip_content: str, tip_type: str
    ) -> list[RelatedArticle]: ...

    async def assistant_chat(self, request: GuideRequest) -> str: ...
