"""Field schema detection from an example document image."""
import logging
from typing import List, Mapping, Optional, Tuple

from dualscan.backends import VisionBackend
from dualscan.constants import BACKEND_GEMINI, BACKEND_OPENAI, DEFAULT_DETECTION_ARBITER, TEMPLATE_DETECTING_FIELDS
from dualscan.exceptions import ExtractionBackendError, FieldDetectionError
from dualscan.models import DocumentTemplate, FieldDefinition, ImageUpload, MergedExtraction, StructuredExtraction
from dualscan.normalizer import FieldList, FieldListOutcome, normalize_fields
from dualscan.prompts import FIELD_DETECTION_MERGE_INSTRUCTION, FIELD_DETECTION_PROMPT
from dualscan.reconciler import Reconciler
from dualscan.store import DocumentStore
from dualscan.templates import advance_status, ensure_fields_editable
from dualscan.uploads import UploadStorage, store_original
from dualscan.utils import gather_all, validate_image

logger = logging.getLogger(__name__)


class FieldDetector:
    """Infers a template's field list by running both backends over an example image."""

    def __init__(
        self,
        store: DocumentStore,
        backends: Mapping[str, VisionBackend],
        reconciler: Optional[Reconciler] = None,
        arbiter: str = DEFAULT_DETECTION_ARBITER,
        uploads: Optional[UploadStorage] = None
    ) -> None:
        self.store = store
        self.backends = backends
        self.reconciler = reconciler or Reconciler(backends)
        self.arbiter = arbiter
        self.uploads = uploads

    @staticmethod
    def recover_fields(
        merged: MergedExtraction,
        gemini_data: StructuredExtraction,
        openai_data: StructuredExtraction
    ) -> FieldListOutcome:
        """
        Normalize the merged field array, falling back to each side's own reply.

        Returns:
            The first FieldList recovered, or the Empty outcome of the merged reply
        """
        outcome = normalize_fields(merged)
        if isinstance(outcome, FieldList):
            return outcome
        logger.warning(f"Merged field detection unusable ({outcome.reason}); trying individual replies")
        for candidate in (gemini_data, openai_data):
            fallback = normalize_fields(candidate)
            if isinstance(fallback, FieldList):
                return fallback
        return outcome

    async def detect_fields(
        self,
        owner_id: int,
        template_id: int,
        upload: ImageUpload
    ) -> Tuple[List[FieldDefinition], DocumentTemplate]:
        """
        Detect the form fields visible in an example image.

        On success the template's field list is replaced, the example image
        path recorded and the status advanced to detecting-fields. On any
        failure the template is left untouched.

        Args:
            owner_id: Calling user
            template_id: Template to populate
            upload: Example document image

        Returns:
            Tuple of (detected fields, updated template)

        Raises:
            ValidationError: If the image is invalid or the template is complete
            ExtractionBackendError: If an extraction call fails
            ReconciliationError: If the merge call fails
            FieldDetectionError: If no field array could be recovered
        """
        template = self.store.get_owned_template(owner_id, template_id)
        ensure_fields_editable(template)
        validate_image(upload)
        store_original(self.uploads, upload)

        backends = []
        for name in (BACKEND_GEMINI, BACKEND_OPENAI):
            backend = self.backends.get(name)
            if backend is None:
                raise ExtractionBackendError(name, "No such backend configured")
            backends.append(backend)

        logger.info(f"Detecting fields for template {template.id} from {upload.filename}")
        gemini_data, openai_data = await gather_all(
            *[b.extract(upload.content, upload.mime_type, FIELD_DETECTION_PROMPT) for b in backends]
        )
        merged = await self.reconciler.reconcile(
            gemini_data,
            openai_data,
            self.arbiter,
            FIELD_DETECTION_MERGE_INSTRUCTION,
        )

        outcome = self.recover_fields(merged, gemini_data, openai_data)
        if not isinstance(outcome, FieldList):
            logger.error(f"Field detection for template {template.id} recovered no fields: {outcome.reason}")
            raise FieldDetectionError("Failed to detect form fields: no usable field list in the responses")

        updated = self.store.update_template(
            template.id,
            fields=outcome.fields,
            example_image_path=upload.path,
            status=advance_status(template.status, TEMPLATE_DETECTING_FIELDS),
        )
        logger.info(f"Detected {len(outcome.fields)} fields for template {template.id}")
        return outcome.fields, updated
