"""
Worker dependency container.

Built once by the worker's startup hook and handed to every job through
the arq ``ctx`` dict under ``"pipeline"``. Tests build one from fakes.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from cardflow.core.models import utc_now
from cardflow.services.ai.gateway import AIGateway
from cardflow.services.card_store import CardStore
from cardflow.services.html_fetcher import HtmlFetcher
from cardflow.services.link_preview import LinkPreviewService
from cardflow.services.scheduler import Scheduler
from cardflow.services.storage import BlobStorage
from cardflow.services.thumbnails import ThumbnailService
from cardflow.services.transcription import TranscriptionService


@dataclass
class PipelineContext:
    store: CardStore
    scheduler: Scheduler
    gateway: AIGateway
    fetcher: HtmlFetcher
    storage: BlobStorage
    transcriber: TranscriptionService
    thumbnails: ThumbnailService
    link_previews: LinkPreviewService
    now: Callable[[], datetime] = field(default=utc_now)

    @classmethod
    def build(
        cls,
        store: CardStore,
        scheduler: Scheduler,
        gateway: AIGateway,
        fetcher: HtmlFetcher,
        storage: BlobStorage,
        now: Callable[[], datetime] = utc_now,
    ) -> "PipelineContext":
        """Wire the derived services from the base collaborators."""
        return cls(
            store=store,
            scheduler=scheduler,
            gateway=gateway,
            fetcher=fetcher,
            storage=storage,
            transcriber=TranscriptionService(gateway),
            thumbnails=ThumbnailService(store, storage, now=now),
            link_previews=LinkPreviewService(store, fetcher, now=now),
            now=now,
        )
