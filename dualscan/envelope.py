"""
Parsing of the JSON envelopes the backends are asked to answer with.

Backends are instructed to reply with a ``StructuredExtraction`` or
``MergedExtraction`` object but do not always comply. Everything here is
total: a reply that cannot be read as the requested envelope is wrapped into
one with a degraded confidence instead of raising.
"""
import json
import logging
import re
from typing import Any, Dict, Optional, Union

from dualscan.constants import DEGRADED_CONFIDENCE, DEGRADED_SCORE
from dualscan.models import MergeAnalysis, MergedExtraction, StructuredExtraction

logger = logging.getLogger(__name__)

_FENCE_PATTERN = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)


def load_json(raw: Any) -> Optional[Any]:
    """
    Best-effort JSON decoding of a backend reply.
    
    Tries the whole string, then a fenced ```json block, then the widest
    object slice and the widest array slice.
    
    Args:
        raw: Reply text (non-strings are returned unchanged)
        
    Returns:
        Decoded value, or None if nothing could be decoded
    """
    if not isinstance(raw, str):
        return raw
    
    text = raw.strip()
    if not text:
        return None
    
    candidates = [text]
    
    fenced = _FENCE_PATTERN.search(text)
    if fenced and fenced.group(1):
        candidates.append(fenced.group(1).strip())
    
    start_obj = text.find("{")
    end_obj = text.rfind("}")
    if start_obj != -1 and end_obj > start_obj:
        candidates.append(text[start_obj:end_obj + 1])
    
    start_arr = text.find("[")
    end_arr = text.rfind("]")
    if start_arr != -1 and end_arr > start_arr:
        candidates.append(text[start_arr:end_arr + 1])
    
    for candidate in candidates:
        try:
            return json.loads(candidate)
        except (ValueError, RecursionError):
            continue
    return None


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False)


def _as_score(value: Any, default: float) -> float:
    if isinstance(value, bool):
        return default
    try:
        score = float(value)
    except (TypeError, ValueError):
        return default
    return min(max(score, 0.0), 1.0)


def parse_extraction(raw: Optional[str], backend: str = "") -> StructuredExtraction:
    """
    Read a backend reply as a ``StructuredExtraction`` envelope.
    
    Args:
        raw: Reply text from the backend
        backend: Backend identifier, recorded when the reply is degraded
        
    Returns:
        The parsed envelope, or the raw text wrapped with confidence 0.5
        and ``metadata.nonConforming`` set
    """
    data = load_json(raw)
    if isinstance(data, dict) and "text" in data:
        metadata = data.get("metadata")
        return StructuredExtraction(
            text=_as_text(data["text"]),
            confidence=_as_score(data.get("confidence"), DEGRADED_CONFIDENCE),
            metadata=metadata if isinstance(metadata, dict) else {},
        )
    
    logger.warning(f"{backend or 'backend'} reply is not an extraction envelope; wrapping raw text")
    return StructuredExtraction(
        text=_as_text(raw),
        confidence=DEGRADED_CONFIDENCE,
        metadata={"nonConforming": True, "source": backend},
    )


def parse_merged(raw: Optional[str], arbiter: str = "") -> MergedExtraction:
    """
    Read an arbiter reply as a ``MergedExtraction`` envelope.
    
    Args:
        raw: Reply text from the arbiter
        arbiter: Arbiter backend identifier, recorded when the reply is degraded
        
    Returns:
        The parsed envelope, or the raw text wrapped with neutral scores
    """
    data = load_json(raw)
    if isinstance(data, dict) and "mergedText" in data:
        analysis = data.get("analysis")
        if not isinstance(analysis, dict):
            analysis = {}
        return MergedExtraction(
            merged_text=_as_text(data["mergedText"]),
            analysis=MergeAnalysis(
                source_a_score=_as_score(analysis.get("sourceAScore"), DEGRADED_SCORE),
                source_b_score=_as_score(analysis.get("sourceBScore"), DEGRADED_SCORE),
                reasoning=_as_text(analysis.get("reasoning")),
            ),
        )
    
    logger.warning(f"{arbiter or 'arbiter'} reply is not a merge envelope; wrapping raw text")
    return MergedExtraction(
        merged_text=_as_text(raw),
        analysis=MergeAnalysis(
            source_a_score=DEGRADED_SCORE,
            source_b_score=DEGRADED_SCORE,
            reasoning=f"Response from {arbiter or 'arbiter'} did not follow the merge format",
        ),
    )


def unwrap_text(value: Union[StructuredExtraction, str, None]) -> str:
    """
    Return the extracted text carried by a stored extraction.
    
    Envelopes are unwrapped to their ``text``; anything else is returned as-is.
    """
    if isinstance(value, StructuredExtraction):
        return value.text
    if not value:
        return ""
    data = load_json(value)
    if isinstance(data, dict) and "text" in data:
        return _as_text(data["text"])
    return value

