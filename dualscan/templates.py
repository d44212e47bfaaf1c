"""Template management: basic info, field schema and lifecycle status."""
import logging
from dataclasses import replace
from typing import Any, Dict, List, Optional, Sequence, Union

from dualscan.constants import FIELD_TYPES, TEMPLATE_COMPLETE, TEMPLATE_EDITING_FIELDS, TEMPLATE_STATUS_ORDER
from dualscan.exceptions import ValidationError
from dualscan.models import DocumentTemplate, FieldDefinition
from dualscan.store import DocumentStore

logger = logging.getLogger(__name__)


def advance_status(current: str, target: str) -> str:
    """Return the later of two template statuses; status never moves backwards."""
    if TEMPLATE_STATUS_ORDER.index(target) > TEMPLATE_STATUS_ORDER.index(current):
        return target
    return current


def ensure_fields_editable(template: DocumentTemplate) -> None:
    """
    Raises:
        ValidationError: If the template is complete and its fields are locked
    """
    if template.status == TEMPLATE_COMPLETE:
        raise ValidationError(
            f"Template {template.id} is complete; its fields can no longer be changed"
        )


def validate_fields(fields: Sequence[FieldDefinition]) -> List[FieldDefinition]:
    """
    Check a submitted field list and renumber it.

    Names must be unique, name and label non-empty and the type supported.
    The submitted ``order`` values decide the sequence, ties keep their
    submitted position, and the result is numbered densely from 1.

    Args:
        fields: Field definitions as submitted

    Returns:
        Copies of the fields with dense 1-based order

    Raises:
        ValidationError: If any constraint is broken
    """
    if not fields:
        raise ValidationError("At least one field is required")

    errors: List[str] = []
    seen = set()
    for index, definition in enumerate(fields, start=1):
        name = (definition.name or "").strip()
        if not name:
            errors.append(f"Field {index}: name is required")
        elif name in seen:
            errors.append(f"Field {index}: duplicate name '{name}'")
        seen.add(name)
        if not (definition.label or "").strip():
            errors.append(f"Field {index}: label is required")
        if definition.field_type not in FIELD_TYPES:
            errors.append(f"Field {index}: unsupported type '{definition.field_type}'")

    if errors:
        raise ValidationError("; ".join(errors))

    ordered = sorted(enumerate(fields), key=lambda item: (item[1].order <= 0, max(item[1].order, 0), item[0]))
    return [
        replace(definition, name=definition.name.strip(), label=definition.label.strip(), order=position)
        for position, (_, definition) in enumerate(ordered, start=1)
    ]


class TemplateService:
    """Template-level operations, scoped by the owning user."""

    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    @staticmethod
    def _check_name(name: Optional[str]) -> str:
        if not name or not name.strip():
            raise ValidationError("Name is required")
        return name.strip()

    def create_template(
        self,
        owner_id: int,
        name: str,
        description: Optional[str] = None,
        custom_prompt: Optional[str] = None
    ) -> DocumentTemplate:
        """Create a template in the drafting state."""
        return self.store.create_template(
            owner_id=owner_id,
            name=self._check_name(name),
            description=description,
            custom_prompt=custom_prompt or None,
        )

    def list_templates(self, owner_id: int) -> List[DocumentTemplate]:
        return self.store.list_templates(owner_id)

    def get_template(self, owner_id: int, template_id: int) -> DocumentTemplate:
        return self.store.get_owned_template(owner_id, template_id)

    def update_template(
        self,
        owner_id: int,
        template_id: int,
        name: str,
        description: Optional[str] = None,
        custom_prompt: Optional[str] = None
    ) -> DocumentTemplate:
        """Replace a template's basic info (name, description, custom instruction)."""
        self.store.get_owned_template(owner_id, template_id)
        return self.store.update_template(
            template_id,
            name=self._check_name(name),
            description=description,
            custom_prompt=custom_prompt or None,
        )

    def delete_template(self, owner_id: int, template_id: int) -> None:
        """Delete a template together with its results."""
        self.store.get_owned_template(owner_id, template_id)
        self.store.delete_template(template_id)

    def save_fields(
        self,
        owner_id: int,
        template_id: int,
        fields: Sequence[Union[FieldDefinition, Dict[str, Any]]]
    ) -> DocumentTemplate:
        """
        Store an edited field list and move the template to editing-fields.

        Args:
            owner_id: Calling user
            template_id: Template to update
            fields: Field definitions or their dictionary form

        Returns:
            The updated template

        Raises:
            ValidationError: If the fields are invalid or the template is complete
        """
        template = self.store.get_owned_template(owner_id, template_id)
        ensure_fields_editable(template)

        definitions = [
            f if isinstance(f, FieldDefinition) else FieldDefinition.from_dict(f)
            for f in fields
        ]
        validated = validate_fields(definitions)

        updated = self.store.update_template(
            template_id,
            fields=validated,
            status=advance_status(template.status, TEMPLATE_EDITING_FIELDS),
        )
        logger.info(f"Saved {len(validated)} fields for template {template_id}")
        return updated
