"""Wires the pipeline components from settings.

The API and the worker build one Pipeline at startup. The extraction
provider is chosen here, once, and handed to the orchestrator.
"""

import logging

from services.extraction.entrypoints import ExtractionEntryPoints
from services.extraction.factory import create_document_classifier, create_extraction_provider
from services.extraction.orchestrator import ExtractionOrchestrator
from services.matching.service import MatchingService
from services.reconciliation.localize import GlobalPartnerLocalizer
from services.shared.config import Settings
from services.storage.service import StorageService
from services.store.base import RecordStore
from services.store.memory import InMemoryStore
from services.store.redis_store import RedisStore
from services.usage.logger import UsageLogger

logger = logging.getLogger(__name__)


def create_store(settings: Settings) -> RecordStore:
    """Create the record store selected by ``store_backend``."""
    if settings.store_backend == "redis":
        logger.info(f"Using Redis record store at {settings.redis_url}")
        return RedisStore(settings.redis_url)
    logger.info("Using in-memory record store")
    return InMemoryStore()


class Pipeline:
    """Fully wired pipeline components."""

    def __init__(
        self,
        settings: Settings,
        store: RecordStore | None = None,
        storage: StorageService | None = None,
    ) -> None:
        self.settings = settings
        self.store = store or create_store(settings)
        self.storage = storage or StorageService(settings)
        self.usage_logger = UsageLogger(self.store)
        self.orchestrator = ExtractionOrchestrator(
            settings=settings,
            store=self.store,
            storage=self.storage,
            provider=create_extraction_provider(settings),
            classifier=create_document_classifier(settings),
            usage_logger=self.usage_logger,
        )
        self.entrypoints = ExtractionEntryPoints(self.store, self.orchestrator)
        self.matching = MatchingService(self.store)
        self.localizer = GlobalPartnerLocalizer(self.store, settings)


def build_pipeline(settings: Settings) -> Pipeline:
    return Pipeline(settings)
