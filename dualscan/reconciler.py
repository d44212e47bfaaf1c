"""Reconciliation of two candidate extractions into one merged result."""
import logging
from typing import Mapping, Optional, Union

from dualscan.backends import VisionBackend
from dualscan.envelope import parse_merged, unwrap_text
from dualscan.exceptions import ExtractionBackendError, ReconciliationError
from dualscan.models import MergedExtraction, StructuredExtraction
from dualscan.prompts import MERGE_SYSTEM_PROMPT, build_merge_prompt

logger = logging.getLogger(__name__)

Candidate = Union[StructuredExtraction, str, None]


class Reconciler:
    """Asks an arbiter backend to merge the Gemini and GPT extractions."""

    def __init__(self, backends: Mapping[str, VisionBackend]) -> None:
        self.backends = backends

    async def reconcile(
        self,
        gemini_candidate: Candidate,
        openai_candidate: Candidate,
        arbiter: str,
        custom_instruction: Optional[str] = None
    ) -> MergedExtraction:
        """
        Merge two candidate extractions with the given backend as arbiter.

        Either candidate may be empty, meaning that side was not run.

        Args:
            gemini_candidate: Gemini extraction (envelope, raw text or empty)
            openai_candidate: GPT extraction (envelope, raw text or empty)
            arbiter: Identifier of the backend performing the merge
            custom_instruction: Replaces the default arbitration guidance

        Returns:
            MergedExtraction envelope (degraded when the reply does not conform)

        Raises:
            ReconciliationError: If the arbiter is unknown or its call fails
        """
        backend = self.backends.get(arbiter)
        if backend is None:
            raise ReconciliationError(arbiter, "No such backend configured")

        prompt = build_merge_prompt(
            unwrap_text(gemini_candidate),
            unwrap_text(openai_candidate),
            custom_instruction,
        )

        try:
            raw = await backend.generate(prompt, system_prompt=MERGE_SYSTEM_PROMPT)
        except ExtractionBackendError as e:
            raise ReconciliationError(arbiter, e.message) from e

        merged = parse_merged(raw, arbiter)
        logger.debug(
            f"{arbiter} merge scored gemini={merged.analysis.source_a_score:.2f} "
            f"openai={merged.analysis.source_b_score:.2f}"
        )
        return merged
