"""Export of completed document results as JSON or CSV."""
import csv
import io
import json
from typing import Any, Dict, List

from dualscan.constants import EXPORT_CSV, EXPORT_FILENAME_KEY, EXPORT_JSON, STATUS_COMPLETE
from dualscan.exceptions import ValidationError
from dualscan.models import DocumentResult
from dualscan.normalizer import FieldValues, normalize_values


def result_field_map(result: DocumentResult) -> Dict[str, Any]:
    """
    Field values of a result, for export.

    Uses the stored field map when present, otherwise the first merged
    candidate that normalizes to a field map.
    """
    if result.extracted_data:
        return dict(result.extracted_data)
    for candidate in (result.gemini_result, result.openai_result):
        outcome = normalize_values(candidate)
        if isinstance(outcome, FieldValues):
            return dict(outcome.values)
    return {}


def export_rows(results: List[DocumentResult]) -> List[Dict[str, Any]]:
    """One row per completed result, file name first."""
    rows = []
    for result in results:
        if result.status != STATUS_COMPLETE:
            continue
        row: Dict[str, Any] = {EXPORT_FILENAME_KEY: result.filename}
        for key, value in result_field_map(result).items():
            if key != EXPORT_FILENAME_KEY:
                row[key] = value
        rows.append(row)
    return rows


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, dict)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def to_csv(rows: List[Dict[str, Any]]) -> str:
    """Render rows with the union of their keys as columns."""
    if not rows:
        return ""
    headers = [EXPORT_FILENAME_KEY]
    for row in rows:
        for key in row:
            if key not in headers:
                headers.append(key)

    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(headers)
    for row in rows:
        writer.writerow([_cell(row.get(header)) for header in headers])
    return buffer.getvalue()


def export_results(results: List[DocumentResult], export_format: str) -> str:
    """
    Serialize the completed results of a template.

    Args:
        results: Results of one template
        export_format: "json" or "csv"

    Returns:
        Export document as text

    Raises:
        ValidationError: If the format is not supported
    """
    rows = export_rows(results)
    if export_format == EXPORT_JSON:
        return json.dumps(rows, ensure_ascii=False, indent=2)
    if export_format == EXPORT_CSV:
        return to_csv(rows)
    raise ValidationError(f"Unsupported export format: {export_format}")
