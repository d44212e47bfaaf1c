"""In-memory persistence for document templates and document results."""
import logging
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, List, Optional

from dualscan.constants import STATUS_COMPLETE, STATUS_FAILED, STATUS_PROCESSING
from dualscan.exceptions import AuthorizationError, NotFoundError
from dualscan.models import DocumentResult, DocumentTemplate

logger = logging.getLogger(__name__)


class DocumentStore:
    """
    Keeps templates and results keyed by integer identifiers.

    Updates replace the stored record with a modified copy, so a record handed
    out earlier is a stable snapshot.
    """

    def __init__(self) -> None:
        """Initialize an empty store."""
        self._templates: Dict[int, DocumentTemplate] = {}
        self._results: Dict[int, DocumentResult] = {}
        self._next_template_id = 1
        self._next_result_id = 1

    def create_template(
        self,
        owner_id: int,
        name: str,
        description: Optional[str] = None,
        custom_prompt: Optional[str] = None
    ) -> DocumentTemplate:
        """
        Create a new template in the drafting state.

        Args:
            owner_id: Identifier of the owning user
            name: Human label
            description: Free-text description
            custom_prompt: Custom reconciliation instruction

        Returns:
            The created template
        """
        template = DocumentTemplate(
            id=self._next_template_id,
            owner_id=owner_id,
            name=name,
            description=description,
            custom_prompt=custom_prompt,
        )
        self._next_template_id += 1
        self._templates[template.id] = template
        logger.info(f"Created template {template.id} for user {owner_id}")
        return template

    def get_template(self, template_id: int) -> Optional[DocumentTemplate]:
        """Get a template by ID, or None if not found."""
        return self._templates.get(template_id)

    def get_owned_template(self, owner_id: int, template_id: int) -> DocumentTemplate:
        """
        Get a template and verify the caller owns it.

        Raises:
            NotFoundError: If the template does not exist
            AuthorizationError: If the template belongs to another user
        """
        template = self._templates.get(template_id)
        if template is None:
            raise NotFoundError("Template", template_id)
        if template.owner_id != owner_id:
            logger.warning(f"User {owner_id} denied access to template {template_id}")
            raise AuthorizationError("Forbidden")
        return template

    def list_templates(self, owner_id: int) -> List[DocumentTemplate]:
        """List the templates owned by a user."""
        return [t for t in self._templates.values() if t.owner_id == owner_id]

    def update_template(self, template_id: int, **changes: Any) -> DocumentTemplate:
        """
        Apply changes to a template.

        Raises:
            NotFoundError: If the template does not exist
        """
        template = self._templates.get(template_id)
        if template is None:
            raise NotFoundError("Template", template_id)
        updated = replace(template, **changes)
        self._templates[template_id] = updated
        return updated

    def delete_template(self, template_id: int) -> bool:
        """
        Delete a template and all of its results.

        Returns:
            True if the template existed
        """
        if template_id not in self._templates:
            return False
        del self._templates[template_id]
        result_ids = [r.id for r in self._results.values() if r.template_id == template_id]
        for result_id in result_ids:
            del self._results[result_id]
        logger.info(f"Deleted template {template_id} and {len(result_ids)} results")
        return True

    def create_result(
        self,
        template_id: int,
        filename: str,
        file_size: Optional[int] = None,
        original_image_path: Optional[str] = None
    ) -> DocumentResult:
        """
        Create a result in the processing state.

        Args:
            template_id: Owning template
            filename: Source filename
            file_size: Size of the original in bytes
            original_image_path: Where the original is stored

        Returns:
            The created result
        """
        result = DocumentResult(
            id=self._next_result_id,
            template_id=template_id,
            filename=filename,
            file_size=file_size,
            original_image_path=original_image_path,
            status=STATUS_PROCESSING,
        )
        self._next_result_id += 1
        self._results[result.id] = result
        logger.info(f"Created result {result.id} for {filename} in template {template_id}")
        return result

    def get_result(self, result_id: int) -> Optional[DocumentResult]:
        """Get a result by ID, or None if not found."""
        return self._results.get(result_id)

    def list_results(self, template_id: int) -> List[DocumentResult]:
        """List the results of a template in creation order."""
        results = [r for r in self._results.values() if r.template_id == template_id]
        return sorted(results, key=lambda r: r.id)

    def update_result(self, result_id: int, **changes: Any) -> Optional[DocumentResult]:
        """
        Apply changes to a result.

        Returns:
            The updated result, or None if the result no longer exists
        """
        result = self._results.get(result_id)
        if result is None:
            logger.warning(f"Attempted to update unknown result: {result_id}")
            return None
        if changes.get("status") in (STATUS_COMPLETE, STATUS_FAILED) and not result.completed_at:
            changes.setdefault("completed_at", datetime.now().isoformat())
        updated = replace(result, **changes)
        self._results[result_id] = updated
        return updated

    def mark_failed(self, result_id: int, error: str) -> Optional[DocumentResult]:
        """
        Move a result to failed unless it already completed.

        Returns:
            The stored result after the call, or None if it no longer exists
        """
        result = self._results.get(result_id)
        if result is None:
            logger.warning(f"Attempted to fail unknown result: {result_id}")
            return None
        if result.status == STATUS_COMPLETE:
            logger.warning(f"Result {result_id} already complete; not marking failed")
            return result
        return self.update_result(result_id, status=STATUS_FAILED, error=error)
