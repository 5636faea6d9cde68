"""
Pytest configuration and fixtures for Cardflow tests.

The pipeline only reaches the outside world through the collaborators on
``PipelineContext``; every one of them has an in-memory stand-in here.
"""

import heapq
import itertools
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
from pydantic import BaseModel

from cardflow.core.exceptions import CardNotFoundError
from cardflow.core.models import Card, CardType
from cardflow.core.processing_status import build_initial_processing_status
from cardflow.jobs.card_processing_job import extract_link_metadata, process_card
from cardflow.jobs.context import PipelineContext
from cardflow.services.ai.gateway import Generation, NoProviderAvailableError
from cardflow.services.ai.schemas import CardMetadataResult, LinkCategoryResult
from cardflow.services.card_store import CardStore, serialize_fields
from cardflow.services.html_fetcher import FetchedPage, FetchError
from cardflow.services.scheduler import Scheduler
from cardflow.services.storage import BlobNotFoundError, BlobStorage

FIXED_NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

JOB_FUNCTIONS = {
    "process_card": process_card,
    "extract_link_metadata": extract_link_metadata,
}


# =============================================================================
# Store
# =============================================================================


class InMemoryCardStore(CardStore):
    """Card store keeping the serialized documents in a dict.

    Patches go through the same JSON serialization as the SQL store, so a
    field that would not survive the database does not survive here either.
    """

    def __init__(self):
        self.documents: dict[str, dict[str, Any]] = {}
        self.patches: list[tuple[str, dict[str, Any]]] = []

    def add(self, card: Card) -> Card:
        self.documents[card.id] = card.model_dump(mode="json")
        return card

    async def get(self, card_id: str) -> Card | None:
        document = self.documents.get(card_id)
        return Card.model_validate(document) if document is not None else None

    async def patch(self, card_id: str, fields: dict[str, Any]) -> None:
        if card_id not in self.documents:
            raise CardNotFoundError(card_id)
        serialized = serialize_fields(fields)
        merged = {**self.documents[card_id], **serialized}
        self.documents[card_id] = Card.model_validate(merged).model_dump(mode="json")
        self.patches.append((card_id, fields))

    async def insert(self, card: Card) -> str:
        self.add(card)
        return card.id

    async def list_missing_ai(self, created_before: datetime, limit: int) -> list[Card]:
        cards = [Card.model_validate(doc) for doc in self.documents.values()]
        missing = [
            card
            for card in cards
            if not card.is_deleted and card.ai_model_meta is None and card.created_at < created_before
        ]
        return sorted(missing, key=lambda card: card.created_at)[:limit]

    async def list_by_owner(self, owner_id: str, include_deleted: bool = False) -> list[Card]:
        cards = [Card.model_validate(doc) for doc in self.documents.values()]
        owned = [
            card
            for card in cards
            if card.owner_id == owner_id and (include_deleted or not card.is_deleted)
        ]
        return sorted(owned, key=lambda card: card.created_at, reverse=True)

    def patches_for(self, card_id: str) -> list[dict[str, Any]]:
        return [fields for patched_id, fields in self.patches if patched_id == card_id]


# =============================================================================
# Scheduler
# =============================================================================


@dataclass
class ScheduledJob:
    delay_ms: int
    function: str
    args: tuple


class FakeScheduler(Scheduler):
    """Records scheduled jobs and runs them on a virtual clock."""

    def __init__(self):
        self.history: list[ScheduledJob] = []
        self._queue: list[tuple[int, int, ScheduledJob]] = []
        self._sequence = itertools.count()
        self.clock_ms = 0

    async def run_after(self, delay_ms: int, function: str, *args: Any) -> None:
        job = ScheduledJob(delay_ms=delay_ms, function=function, args=args)
        self.history.append(job)
        heapq.heappush(self._queue, (self.clock_ms + delay_ms, next(self._sequence), job))

    @property
    def pending(self) -> list[ScheduledJob]:
        return [job for _, _, job in sorted(self._queue)]

    def delays_for(self, function: str) -> list[int]:
        return [job.delay_ms for job in self.history if job.function == function]

    async def drain(self, pipeline: PipelineContext, limit: int = 50) -> list[dict]:
        """Run due jobs in order until the queue is empty; return job results."""
        results = []
        for _ in range(limit):
            if not self._queue:
                return results
            due_ms, _, job = heapq.heappop(self._queue)
            self.clock_ms = max(self.clock_ms, due_ms)
            results.append(await JOB_FUNCTIONS[job.function]({"pipeline": pipeline}, *job.args))
        raise AssertionError(f"Scheduler did not drain within {limit} jobs")


# =============================================================================
# AI gateway
# =============================================================================


class FakeGateway:
    """Scripted stand-in for ``AIGateway``.

    Each schema answers with a fixed value. ``fail(schema, times)`` makes
    the next calls raise ``NoProviderAvailableError`` like a gateway whose
    providers all failed.
    """

    provider = "fake"
    model = "fake-model"

    def __init__(self):
        self.calls: list[tuple[str, type, str]] = []
        self.responses: dict[type, BaseModel] = {
            CardMetadataResult: CardMetadataResult(
                tags=["Wisdom", "quotes"], summary="A short thought worth keeping."
            ),
            LinkCategoryResult: LinkCategoryResult(category="article", confidence=0.8),
        }
        self.failures: dict[type, int] = {}
        self.transcript = "hello from the recording"

    def respond(self, schema: type, value: BaseModel) -> None:
        self.responses[schema] = value

    def fail(self, schema: type, times: int = 1) -> None:
        self.failures[schema] = times

    def calls_for(self, schema: type) -> list[tuple[str, type, str]]:
        return [call for call in self.calls if call[1] is schema]

    def _answer(self, schema: type):
        remaining = self.failures.get(schema, 0)
        if remaining:
            self.failures[schema] = remaining - 1
            raise NoProviderAvailableError("All providers failed. Last error: boom")
        if schema not in self.responses:
            raise NoProviderAvailableError("No AI providers configured. Set OPENAI_API_KEY.")
        return Generation(value=self.responses[schema], provider=self.provider, model=self.model)

    async def generate_structured(self, system_prompt: str, user_prompt: str, schema: type):
        self.calls.append(("structured", schema, user_prompt))
        return self._answer(schema)

    async def generate_structured_vision(
        self, system_prompt: str, user_prompt: str, image_url: str, schema: type
    ):
        self.calls.append(("vision", schema, image_url))
        return self._answer(schema)

    async def transcribe(self, audio: bytes, filename: str, mime_type: str | None = None):
        self.calls.append(("transcribe", str, filename))
        return Generation(value=self.transcript, provider=self.provider, model="fake-whisper")


# =============================================================================
# Fetcher / storage
# =============================================================================


class FakeFetcher:
    """Serves registered pages; anything else fails like an unreachable host."""

    def __init__(self):
        self.pages: dict[str, tuple[str, str]] = {}
        self.requested: list[str] = []

    def add_page(self, url: str, html: str, content_type: str = "text/html; charset=utf-8") -> None:
        self.pages[url] = (html, content_type)

    async def fetch(self, url: str, max_bytes: int | None = None) -> FetchedPage:
        self.requested.append(url)
        if url not in self.pages:
            raise FetchError(f"Request failed for {url}: connection refused")
        html, content_type = self.pages[url]
        return FetchedPage(
            url=url,
            final_url=url,
            status_code=200,
            content_type=content_type,
            body=html.encode("utf-8"),
            etag='"abc123"',
        )

    async def close(self) -> None:
        pass


class InMemoryBlobStorage(BlobStorage):
    def __init__(self):
        self.blobs: dict[str, bytes] = {}
        self._counter = itertools.count(1)

    async def get_url(self, key: str) -> str | None:
        return f"https://files.test/{key}" if key in self.blobs else None

    async def read(self, key: str) -> bytes:
        if key not in self.blobs:
            raise BlobNotFoundError(f"No blob stored under {key}")
        return self.blobs[key]

    async def store(self, data: bytes, suffix: str = "") -> str:
        key = f"blob-{next(self._counter)}{suffix}"
        self.blobs[key] = data
        return key

    async def delete(self, key: str) -> None:
        self.blobs.pop(key, None)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def store() -> InMemoryCardStore:
    return InMemoryCardStore()


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def storage() -> InMemoryBlobStorage:
    return InMemoryBlobStorage()


@pytest.fixture
def pipeline(store, scheduler, gateway, fetcher, storage) -> PipelineContext:
    """Pipeline context over the fakes with a frozen clock."""
    return PipelineContext.build(
        store=store,
        scheduler=scheduler,
        gateway=gateway,
        fetcher=fetcher,
        storage=storage,
        now=lambda: FIXED_NOW,
    )


@pytest.fixture
def make_card(store):
    """Insert a card with freshly seeded stages and return it."""
    counter = itertools.count(1)

    def _make(card_type: CardType = CardType.TEXT, **fields: Any) -> Card:
        card_id = fields.pop("id", f"card-{next(counter)}")
        card = Card(
            id=card_id,
            owner_id=fields.pop("owner_id", "user-1"),
            type=card_type,
            processing_status=fields.pop(
                "processing_status", build_initial_processing_status(card_type, FIXED_NOW)
            ),
            created_at=fields.pop("created_at", FIXED_NOW - timedelta(hours=1)),
            **fields,
        )
        return store.add(card)

    return _make
