"""Wiring of the processing services, built once per application."""
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from dualscan.backends import BackendFactory, VisionBackend
from dualscan.config import Config, config
from dualscan.document_processor import DocumentProcessor
from dualscan.field_detector import FieldDetector
from dualscan.reconciler import Reconciler
from dualscan.store import DocumentStore
from dualscan.templates import TemplateService
from dualscan.uploads import UploadStorage

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """The capability objects the API layer talks to."""
    store: DocumentStore
    backends: Mapping[str, VisionBackend]
    templates: TemplateService
    processor: DocumentProcessor
    detector: FieldDetector
    uploads: UploadStorage
    
    async def shutdown(self) -> None:
        """Let in-flight batches finish, then release backend clients."""
        await self.processor.drain()
        for backend in self.backends.values():
            await backend.close()
        logger.info("Services shut down")


def build_services(
    settings: Optional[Config] = None,
    backends: Optional[Mapping[str, VisionBackend]] = None,
    upload_dir: Optional[Path] = None
) -> Services:
    """
    Build the service graph.
    
    Args:
        settings: Configuration (defaults to the global config)
        backends: Backend adapters; created from the configuration when omitted
        upload_dir: Where originals are stored (defaults to the configured directory)
    
    Returns:
        Services container
    """
    settings = settings or config
    if backends is None:
        backends = BackendFactory.create_backends(settings)
    
    store = DocumentStore()
    reconciler = Reconciler(backends)
    uploads = UploadStorage(upload_dir or settings.upload_dir)
    return Services(
        store=store,
        backends=backends,
        templates=TemplateService(store),
        processor=DocumentProcessor(store, backends, reconciler, uploads=uploads),
        detector=FieldDetector(store, backends, reconciler, arbiter=settings.detection_arbiter, uploads=uploads),
        uploads=uploads,
    )
