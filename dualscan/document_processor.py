"""Document processing service: dual extraction, reconciliation and batch runs."""
import asyncio
import logging
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple

from dualscan.backends import VisionBackend
from dualscan.constants import (
    BACKEND_GEMINI,
    BACKEND_OPENAI,
    BACKENDS,
    MAX_BATCH_FILES,
    STATUS_COMPLETE,
    TEMPLATE_COMPLETE,
)
from dualscan.exceptions import (
    ExtractionBackendError,
    NotFoundError,
    ValidationError,
)
from dualscan.models import DocumentResult, DocumentTemplate, ImageUpload, MergedExtraction, StructuredExtraction
from dualscan.normalizer import FieldValues, normalize_values
from dualscan.prompts import build_field_extraction_prompt
from dualscan.reconciler import Reconciler
from dualscan.store import DocumentStore
from dualscan.templates import advance_status
from dualscan.uploads import UploadStorage, store_original
from dualscan.utils import gather_all, validate_image

logger = logging.getLogger(__name__)


def _field_map(merged: Any, result_id: int) -> Dict[str, Any]:
    outcome = normalize_values(merged)
    if isinstance(outcome, FieldValues):
        return dict(outcome.values)
    logger.warning(f"Result {result_id}: no field values recovered ({outcome.reason})")
    return {}


def _backend_columns(
    backend: str,
    extraction: StructuredExtraction,
    merged: MergedExtraction
) -> Dict[str, str]:
    if backend == BACKEND_GEMINI:
        return {"gemini_data": extraction.to_json(), "gemini_result": merged.to_json()}
    return {"openai_data": extraction.to_json(), "openai_result": merged.to_json()}


class DocumentProcessor:
    """
    Owns the per-document state machine ``processing -> complete | failed``.

    A single document can be tested interactively against both backends, or
    many documents can be run in the background against the template's
    preferred backend. Each document gets its own result record before any
    backend is called, and a failure only ever fails that one record.
    """

    def __init__(
        self,
        store: DocumentStore,
        backends: Mapping[str, VisionBackend],
        reconciler: Optional[Reconciler] = None,
        uploads: Optional[UploadStorage] = None
    ) -> None:
        self.store = store
        self.backends = backends
        self.reconciler = reconciler or Reconciler(backends)
        self.uploads = uploads
        self._tasks: Set["asyncio.Task[None]"] = set()

    def _get_backend(self, name: str) -> VisionBackend:
        backend = self.backends.get(name)
        if backend is None:
            raise ExtractionBackendError(name, "No such backend configured")
        return backend

    @staticmethod
    def _require_fields(template: DocumentTemplate) -> None:
        if not template.fields:
            raise ValidationError(
                "No form fields defined for this template. Please complete field detection first."
            )

    async def test_document(
        self,
        owner_id: int,
        template_id: int,
        upload: ImageUpload
    ) -> DocumentResult:
        """
        Run one document through both backends and both reconciliations.

        Both extractions run concurrently; once both are in, each backend
        reconciles the pair as arbiter, also concurrently. The two merged
        candidates are stored so the user can pick a winner. Any failure
        after the result is created marks it failed before propagating.

        Args:
            owner_id: Calling user
            template_id: Template whose fields are extracted
            upload: The document image

        Returns:
            The completed result

        Raises:
            ValidationError: If the template has no fields or the image is invalid
            ExtractionBackendError: If an extraction fails (result recorded as failed)
            ReconciliationError: If a reconciliation fails (result recorded as failed)
        """
        template = self.store.get_owned_template(owner_id, template_id)
        self._require_fields(template)
        validate_image(upload)
        store_original(self.uploads, upload)

        result = self.store.create_result(
            template_id=template.id,
            filename=upload.filename,
            file_size=upload.size,
            original_image_path=upload.path,
        )
        prompt = build_field_extraction_prompt(template.fields)

        try:
            gemini_data, openai_data = await gather_all(
                self._get_backend(BACKEND_GEMINI).extract(upload.content, upload.mime_type, prompt),
                self._get_backend(BACKEND_OPENAI).extract(upload.content, upload.mime_type, prompt),
            )
            self.store.update_result(
                result.id,
                gemini_data=gemini_data.to_json(),
                openai_data=openai_data.to_json(),
            )
            logger.info(f"Result {result.id}: both extractions received")

            gemini_merged, openai_merged = await gather_all(
                self.reconciler.reconcile(gemini_data, openai_data, BACKEND_GEMINI, template.custom_prompt),
                self.reconciler.reconcile(gemini_data, openai_data, BACKEND_OPENAI, template.custom_prompt),
            )
        except Exception as e:
            logger.error(f"Test processing of {upload.filename} failed: {str(e)}", exc_info=True)
            self.store.mark_failed(result.id, str(e))
            raise

        completed = self.store.update_result(
            result.id,
            gemini_result=gemini_merged.to_json(),
            openai_result=openai_merged.to_json(),
            status=STATUS_COMPLETE,
        )
        logger.info(f"Result {result.id}: test processing complete")
        return completed

    def select_winner(
        self,
        owner_id: int,
        template_id: int,
        result_id: int,
        backend: str
    ) -> DocumentResult:
        """
        Adopt one backend's merged candidate for a tested document.

        The candidate is normalized into the result's field map, the result is
        stamped with the selection, and the template is completed with the
        backend recorded as preferred. Repeating the call is harmless.

        Raises:
            ValidationError: If the backend is unknown, the result belongs to
                another template or has no candidate for that backend
            NotFoundError: If the result does not exist
        """
        if backend not in BACKENDS:
            raise ValidationError(f"Invalid backend selection: {backend}")

        template = self.store.get_owned_template(owner_id, template_id)
        result = self.store.get_result(result_id)
        if result is None:
            raise NotFoundError("Result", result_id)
        if result.template_id != template.id:
            raise ValidationError("Result does not belong to the specified template")
        if result.status != STATUS_COMPLETE:
            raise ValidationError(f"Result {result_id} is {result.status}; only complete results can be selected")

        candidate = result.merged_output(backend)
        if candidate is None:
            raise ValidationError(f"Result {result_id} has no {backend} candidate")

        updated = self.store.update_result(
            result_id,
            selected_result=backend,
            extracted_data=_field_map(candidate, result_id),
        )
        self.store.update_template(
            template.id,
            preferred_backend=backend,
            status=advance_status(template.status, TEMPLATE_COMPLETE),
        )
        logger.info(f"Result {result_id}: selected {backend}; template {template.id} complete")
        return updated

    async def start_batch(
        self,
        owner_id: int,
        template_id: int,
        uploads: List[ImageUpload]
    ) -> List[int]:
        """
        Accept a batch of documents and process them in the background.

        All results are created in the processing state before this returns;
        callers poll ``get_results`` until each one is complete or failed.

        Returns:
            Result identifiers, in upload order

        Raises:
            ValidationError: If the batch or template preconditions are not met
        """
        template = self.store.get_owned_template(owner_id, template_id)
        if not uploads:
            raise ValidationError("No images uploaded")
        if len(uploads) > MAX_BATCH_FILES:
            raise ValidationError(f"At most {MAX_BATCH_FILES} images can be processed per batch")
        if not template.preferred_backend:
            raise ValidationError(
                "No preferred backend set for this template. Please test and select a backend first."
            )
        self._require_fields(template)
        for upload in uploads:
            validate_image(upload)
        for upload in uploads:
            store_original(self.uploads, upload)

        results = [
            self.store.create_result(
                template_id=template.id,
                filename=upload.filename,
                file_size=upload.size,
                original_image_path=upload.path,
            )
            for upload in uploads
        ]

        task = asyncio.create_task(
            self.process_batch(template, list(zip([r.id for r in results], uploads)))
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        logger.info(
            f"Started batch of {len(results)} documents for template {template.id} "
            f"using {template.preferred_backend}"
        )
        return [r.id for r in results]

    async def process_batch(
        self,
        template: DocumentTemplate,
        items: List[Tuple[int, ImageUpload]]
    ) -> None:
        """
        Process every (result_id, upload) pair concurrently.

        ``template`` is the snapshot taken when the batch was accepted.
        """
        prompt = build_field_extraction_prompt(template.fields)
        await asyncio.gather(
            *[
                self.process_document(
                    result_id=result_id,
                    upload=upload,
                    backend=template.preferred_backend,
                    prompt=prompt,
                    custom_prompt=template.custom_prompt,
                )
                for result_id, upload in items
            ],
            return_exceptions=True
        )
        logger.info(f"Completed batch of {len(items)} documents for template {template.id}")

    async def process_document(
        self,
        result_id: int,
        upload: ImageUpload,
        backend: str,
        prompt: str,
        custom_prompt: Optional[str] = None
    ) -> None:
        """
        Process one batch document with a single backend and update its result.

        The backend extracts, then reconciles its own extraction as arbiter
        with the other side left empty. Any failure marks only this result
        as failed.
        """
        try:
            extraction = await self._get_backend(backend).extract(upload.content, upload.mime_type, prompt)
            if backend == BACKEND_GEMINI:
                merged = await self.reconciler.reconcile(extraction, "", backend, custom_prompt)
            else:
                merged = await self.reconciler.reconcile("", extraction, backend, custom_prompt)

            self.store.update_result(
                result_id,
                extracted_data=_field_map(merged, result_id),
                selected_result=backend,
                status=STATUS_COMPLETE,
                **_backend_columns(backend, extraction, merged)
            )
            logger.info(f"Successfully processed {upload.filename} as result {result_id}")

        except Exception as e:
            logger.error(f"Error processing {upload.filename} (result {result_id}): {str(e)}", exc_info=True)
            self.store.mark_failed(result_id, str(e))

    async def drain(self) -> None:
        """Wait for every background batch to settle."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def get_results(self, owner_id: int, template_id: int) -> List[DocumentResult]:
        """List a template's results; the poll target for batch progress."""
        template = self.store.get_owned_template(owner_id, template_id)
        return self.store.list_results(template.id)

    def get_result(self, owner_id: int, template_id: int, result_id: int) -> DocumentResult:
        """
        Raises:
            NotFoundError: If the result does not exist under this template
        """
        template = self.store.get_owned_template(owner_id, template_id)
        result = self.store.get_result(result_id)
        if result is None or result.template_id != template.id:
            raise NotFoundError("Result", result_id)
        return result
