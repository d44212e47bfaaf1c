"""Instruction texts sent to the extraction backends."""
import json
from typing import List, Optional

from dualscan.constants import BACKEND_GEMINI, BACKEND_LABELS, BACKEND_OPENAI, FIELD_TYPES
from dualscan.models import FieldDefinition

EXTRACTION_ENVELOPE_INSTRUCTION = """
Respond with ONLY a JSON object of this exact shape, with no text before or after it:
{
  "text": "<the requested result; if the result is JSON, encode it as a JSON string>",
  "confidence": <number between 0 and 1>,
  "metadata": {"contentType": "<kind of document>", "imageQuality": "<good|fair|poor>"}
}
"""

MERGE_ENVELOPE_INSTRUCTION = """
Respond with ONLY a JSON object of this exact shape, with no text before or after it:
{
  "mergedText": "<the merged result; if the result is JSON, encode it as a JSON string>",
  "analysis": {
    "sourceAScore": <number between 0 and 1 rating extraction 1>,
    "sourceBScore": <number between 0 and 1 rating extraction 2>,
    "reasoning": "<short explanation of the choices made>"
  }
}
"""

MERGE_SYSTEM_PROMPT = (
    "You are an OCR expert that compares multiple text extractions "
    "and creates the most accurate version."
)

DEFAULT_MERGE_INSTRUCTION = (
    "You are an expert OCR analyst. Analyze both extractions and create a merged, "
    "improved version that takes the most accurate parts from each. For every field, "
    "prefer the more complete and accurate value."
)

FIELD_DETECTION_PROMPT = f"""
Analyze this document image and identify all form fields.

IMPORTANT: The result must be ONLY a JSON array of field objects.
Do NOT wrap the array in another object. The array must start with '[' and end with ']'.

For each field, include these properties:
- name: camelCase identifier
- label: Human-readable field label
- fieldType: one of [{", ".join(FIELD_TYPES)}]
- required: boolean whether field appears required
- options: array of option values for select/radio/checkbox, otherwise null
- defaultValue: any detected default value
- placeholder: detected placeholder text
- order: position in the form (1-based)

Example result (just this array, nothing else):
[
  {{"name": "fullName", "label": "Full Name", "fieldType": "text", "required": true,
   "options": null, "defaultValue": "", "placeholder": "Enter your full name", "order": 1}},
  {{"name": "email", "label": "Email Address", "fieldType": "email", "required": true,
   "options": null, "defaultValue": "", "placeholder": "example@domain.com", "order": 2}}
]
"""

FIELD_DETECTION_MERGE_INSTRUCTION = """
Analyze both field detection results and create one accurate JSON array of form fields.
Fix any field type errors or name inconsistencies.

EXTREMELY IMPORTANT:
1. The merged result must be ONLY a valid JSON array starting with [ and ending with ]
2. Do NOT wrap the array in another JSON object with properties
3. The array must directly contain field objects
4. NO explanatory text inside the merged result

Example of a correct merged result:
[{"name":"field1","label":"Field 1","fieldType":"text","required":true}]
"""


def with_extraction_envelope(instruction: str) -> str:
    """Append the extraction envelope contract to an instruction."""
    return f"{instruction.strip()}\n{EXTRACTION_ENVELOPE_INSTRUCTION}"


def build_field_extraction_prompt(fields: List[FieldDefinition]) -> str:
    """
    Build the instruction that extracts a template's field values from a document.

    Args:
        fields: Template field definitions

    Returns:
        Instruction text
    """
    schema = json.dumps([f.to_dict() for f in fields], ensure_ascii=False, indent=2)
    return (
        "Extract data from this document according to these form fields:\n"
        f"{schema}\n\n"
        "The result must be a JSON object where keys are the field names and values are "
        "the extracted data. Ensure all data types match the field types. Use null for "
        "fields that are not present in the document."
    )


def build_merge_prompt(
    gemini_text: str,
    openai_text: str,
    custom_instruction: Optional[str] = None
) -> str:
    """
    Build the arbiter prompt embedding both candidate extractions.

    Args:
        gemini_text: Text extracted by Gemini, or "" when that side was not run
        openai_text: Text extracted by GPT, or "" when that side was not run
        custom_instruction: Replaces the default arbitration guidance when set

    Returns:
        Prompt text
    """
    instruction = (custom_instruction or "").strip() or DEFAULT_MERGE_INSTRUCTION
    not_run = "(no extraction available)"
    return (
        f"{instruction}\n\n"
        "Here are two extractions of the same document:\n\n"
        f"Extraction 1 ({BACKEND_LABELS[BACKEND_GEMINI]}):\n{gemini_text or not_run}\n\n"
        f"Extraction 2 ({BACKEND_LABELS[BACKEND_OPENAI]}):\n{openai_text or not_run}\n\n"
        "Produce a single merged version that takes the most accurate parts from each. "
        "When only one extraction is available, correct and return that one.\n"
        f"{MERGE_ENVELOPE_INSTRUCTION}"
    )
