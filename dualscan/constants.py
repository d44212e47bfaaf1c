"""Constants for the dual-model document extraction service."""
from typing import Dict, FrozenSet, List, Tuple

# Environment variable names
ENV_GEMINI_KEY = "GEMINI_API_KEY"
ENV_OPENAI_KEY = "OPENAI_API_KEY"
ENV_GEMINI_MODEL_ID = "GEMINI_MODEL_ID"
ENV_OPENAI_MODEL_ID = "OPENAI_MODEL_ID"
ENV_BACKEND_TIMEOUT = "BACKEND_TIMEOUT_SECONDS"
ENV_BACKEND_MAX_TOKENS = "BACKEND_MAX_TOKENS"
ENV_DETECTION_ARBITER = "DETECTION_ARBITER"
ENV_UPLOAD_DIR = "UPLOAD_DIR"
ENV_LOG_DIR = "LOG_DIR"
ENV_LOG_LEVEL = "LOG_LEVEL"

# Default values
DEFAULT_GEMINI_MODEL_ID = "gemini-1.5-pro"
DEFAULT_OPENAI_MODEL_ID = "gpt-4o"
DEFAULT_BACKEND_TIMEOUT = 120.0
DEFAULT_BACKEND_MAX_TOKENS = 1500
DEFAULT_UPLOAD_DIR = "uploads"
DEFAULT_LOG_DIR = "logs"
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8000

# Backend identifiers
BACKEND_GEMINI = "gemini"
BACKEND_OPENAI = "openai"
BACKENDS: Tuple[str, ...] = (BACKEND_GEMINI, BACKEND_OPENAI)
BACKEND_LABELS: Dict[str, str] = {
    BACKEND_GEMINI: "Gemini",
    BACKEND_OPENAI: "GPT",
}
DEFAULT_DETECTION_ARBITER = BACKEND_GEMINI

# Upload validation
ALLOWED_IMAGE_TYPES: FrozenSet[str] = frozenset({"image/jpeg", "image/png", "image/webp"})
MAX_UPLOAD_BYTES = 10 * 1024 * 1024
MAX_BATCH_FILES = 10

# Document result status values
STATUS_PROCESSING = "processing"
STATUS_COMPLETE = "complete"
STATUS_FAILED = "failed"
TERMINAL_STATUSES: FrozenSet[str] = frozenset({STATUS_COMPLETE, STATUS_FAILED})

# Template status values, in lifecycle order
TEMPLATE_DRAFTING = "drafting"
TEMPLATE_DETECTING_FIELDS = "detecting-fields"
TEMPLATE_EDITING_FIELDS = "editing-fields"
TEMPLATE_COMPLETE = "complete"
TEMPLATE_STATUS_ORDER: List[str] = [
    TEMPLATE_DRAFTING,
    TEMPLATE_DETECTING_FIELDS,
    TEMPLATE_EDITING_FIELDS,
    TEMPLATE_COMPLETE,
]

# Field definitions
FIELD_TYPES: Tuple[str, ...] = (
    "text",
    "number",
    "date",
    "email",
    "phone",
    "checkbox",
    "radio",
    "select",
    "textarea",
)
FIELD_TYPE_ALIASES: Dict[str, str] = {
    "tel": "phone",
    "telephone": "phone",
    "string": "text",
    "integer": "number",
    "float": "number",
}
DEFAULT_FIELD_TYPE = "text"

# Keys that never hold form data in a reconciled payload
NON_FIELD_KEYS: FrozenSet[str] = frozenset({"analysis", "error", "success", "message", "details"})

# Envelope defaults for responses that do not follow the requested shape
DEGRADED_CONFIDENCE = 0.5
DEGRADED_SCORE = 0.5

# Export formats
EXPORT_JSON = "json"
EXPORT_CSV = "csv"
EXPORT_FILENAME_KEY = "fileName"

# API endpoints
API_PREFIX = "/api"
USER_HEADER = "X-User-Id"

# Logging
APP_LOG_FILE = "app.log"
ERROR_LOG_FILE = "error.log"
APP_LOG_RETENTION_DAYS = 30
ERROR_LOG_RETENTION_DAYS = 90
QUIET_LOGGERS: Tuple[str, ...] = ("uvicorn", "uvicorn.access", "httpx", "httpcore", "openai", "google_genai")
