"""Data models for the dual-model extraction service."""
import json
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any
from datetime import datetime

from dualscan.constants import (
    BACKEND_GEMINI,
    BACKEND_OPENAI,
    DEFAULT_FIELD_TYPE,
    FIELD_TYPES,
    FIELD_TYPE_ALIASES,
    STATUS_PROCESSING,
    TEMPLATE_DRAFTING,
    TERMINAL_STATUSES,
)


def _now() -> str:
    return datetime.now().isoformat()


def normalize_field_type(value: Any) -> str:
    """Map a loosely-named field type onto one of the supported types."""
    if not isinstance(value, str):
        return DEFAULT_FIELD_TYPE
    field_type = value.strip().lower()
    field_type = FIELD_TYPE_ALIASES.get(field_type, field_type)
    return field_type if field_type in FIELD_TYPES else DEFAULT_FIELD_TYPE


@dataclass
class FieldDefinition:
    """One named, typed slot to extract from every document of a template."""
    name: str
    label: str
    field_type: str = DEFAULT_FIELD_TYPE
    required: bool = False
    options: Optional[List[str]] = None
    default_value: Optional[Any] = None
    placeholder: Optional[str] = None
    order: int = 0
    
    def to_dict(self) -> Dict[str, Any]:
        """Serialize using the camelCase keys the backends are prompted with."""
        return {
            "name": self.name,
            "label": self.label,
            "fieldType": self.field_type,
            "required": self.required,
            "options": self.options,
            "defaultValue": self.default_value,
            "placeholder": self.placeholder,
            "order": self.order,
        }
    
    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FieldDefinition":
        """
        Build a field definition from a backend or client payload.
        
        Accepts camelCase or snake_case keys. Missing labels fall back to the
        machine name and unknown types fall back to text.
        """
        name = data.get("name")
        name = str(name).strip() if name is not None else ""
        label = data.get("label")
        label = str(label).strip() if label else name
        
        raw_type = data.get("fieldType", data.get("field_type", data.get("type")))
        
        options = data.get("options")
        if isinstance(options, list):
            options = [str(option) for option in options]
        else:
            options = None
        
        try:
            order = int(data.get("order") or 0)
        except (TypeError, ValueError, OverflowError):
            order = 0
        
        placeholder = data.get("placeholder")
        return cls(
            name=name,
            label=label,
            field_type=normalize_field_type(raw_type),
            required=bool(data.get("required", False)),
            options=options,
            default_value=data.get("defaultValue", data.get("default_value")),
            placeholder=str(placeholder) if placeholder is not None else None,
            order=order,
        )


@dataclass
class DocumentTemplate:
    """A user-defined document type with its field schema and processing preferences."""
    id: int
    owner_id: int
    name: str
    description: Optional[str] = None
    custom_prompt: Optional[str] = None
    preferred_backend: Optional[str] = None
    fields: List[FieldDefinition] = field(default_factory=list)
    status: str = TEMPLATE_DRAFTING
    example_image_path: Optional[str] = None
    created_at: str = field(default_factory=_now)
    
    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "name": self.name,
            "description": self.description,
            "custom_prompt": self.custom_prompt,
            "preferred_backend": self.preferred_backend,
            "fields": [f.to_dict() for f in self.fields],
            "status": self.status,
            "example_image_path": self.example_image_path,
            "created_at": self.created_at,
        }


@dataclass
class DocumentResult:
    """Outcome of running one document image through the pipeline."""
    id: int
    template_id: int
    filename: str
    file_size: Optional[int] = None
    original_image_path: Optional[str] = None
    gemini_data: Optional[str] = None
    openai_data: Optional[str] = None
    gemini_result: Optional[str] = None
    openai_result: Optional[str] = None
    selected_result: Optional[str] = None
    extracted_data: Optional[Dict[str, Any]] = None
    status: str = STATUS_PROCESSING
    error: Optional[str] = None
    created_at: str = field(default_factory=_now)
    completed_at: Optional[str] = None
    
    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
    
    def merged_output(self, backend: str) -> Optional[str]:
        """Return the merged candidate produced with the given backend as arbiter."""
        if backend == BACKEND_GEMINI:
            return self.gemini_result
        if backend == BACKEND_OPENAI:
            return self.openai_result
        return None
    
    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "template_id": self.template_id,
            "filename": self.filename,
            "file_size": self.file_size,
            "original_image_path": self.original_image_path,
            "gemini_data": self.gemini_data,
            "openai_data": self.openai_data,
            "gemini_result": self.gemini_result,
            "openai_result": self.openai_result,
            "selected_result": self.selected_result,
            "extracted_data": self.extracted_data,
            "status": self.status,
            "error": self.error,
            "created_at": self.created_at,
            "completed_at": self.completed_at,
        }


@dataclass
class StructuredExtraction:
    """Envelope every backend extraction is coerced into."""
    text: str
    confidence: float
    metadata: Dict[str, Any] = field(default_factory=dict)
    
    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "confidence": self.confidence,
            "metadata": self.metadata,
        }
    
    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)


@dataclass
class MergeAnalysis:
    """Arbiter's scoring of the two candidate extractions."""
    source_a_score: float
    source_b_score: float
    reasoning: str
    
    def to_dict(self) -> Dict[str, Any]:
        return {
            "sourceAScore": self.source_a_score,
            "sourceBScore": self.source_b_score,
            "reasoning": self.reasoning,
        }


@dataclass
class MergedExtraction:
    """Envelope every reconciliation is coerced into."""
    merged_text: str
    analysis: MergeAnalysis
    
    def to_dict(self) -> Dict[str, Any]:
        return {
            "mergedText": self.merged_text,
            "analysis": self.analysis.to_dict(),
        }
    
    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)


@dataclass
class ImageUpload:
    """An uploaded document image handed to the pipeline."""
    filename: str
    content: bytes
    mime_type: str
    path: Optional[str] = None
    
    @property
    def size(self) -> int:
        return len(self.content)
