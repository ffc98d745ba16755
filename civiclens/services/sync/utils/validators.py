"""Structural guards run on fetched payloads before anything is written.

Two levels:

- Batch guards (``validate_*_data``) check the envelope of one fetched
  document. A failing batch is rejected whole, never partially applied.
- Record checks (``validate_*_record``) flag individual malformed records,
  which are logged and skipped without aborting the batch.
"""
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import urlparse


@dataclass
class ValidationResult:
    """Result of a record-level validation check."""
    is_valid: bool = True
    errors: List[str] = field(default_factory=list)

    def add_error(self, error: str):
        self.errors.append(error)
        self.is_valid = False

    def __repr__(self):
        return f"ValidationResult(valid={self.is_valid}, errors={len(self.errors)})"


def _is_record_list(value: Any, required: Sequence[str] = ()) -> bool:
    if not isinstance(value, list):
        return False
    for item in value:
        if not isinstance(item, dict):
            return False
        if any(not item.get(key) for key in required):
            return False
    return True


def validate_election_data(payload: Any) -> bool:
    """Timetable batch: ``elections`` and ``deadlines`` lists, every election named."""
    return (
        isinstance(payload, dict)
        and _is_record_list(payload.get('elections'), required=('name',))
        and _is_record_list(payload.get('deadlines'))
    )


def validate_candidate_data(payload: Any) -> bool:
    """Candidate batch: a ``candidates`` list whose entries all carry a name.

    ``races`` is optional but must be a list when present, in which case
    the top-level ``candidates`` list may be omitted.
    """
    if not isinstance(payload, dict):
        return False
    if 'races' in payload and not _is_record_list(payload['races']):
        return False
    candidates = payload.get('candidates', [] if 'races' in payload else None)
    return _is_record_list(candidates, required=('full_name',))


def validate_manifesto_data(payload: Any) -> bool:
    """Manifesto batch: a ``manifestos`` list of mappings carrying text."""
    return isinstance(payload, dict) and _is_record_list(payload.get('manifestos'), required=('raw_text',))


def validate_fact_check_data(payload: Any) -> bool:
    """Fact-check batch: a ``fact_checks`` list of mappings carrying a source URL."""
    return isinstance(payload, dict) and _is_record_list(payload.get('fact_checks'), required=('source_url',))


def parse_date(value: Any) -> Optional[date]:
    """Parse an ISO date (or datetime) string; None for empty input.

    Raises:
        ValueError: If the value is present but not a recognisable date
    """
    if value in (None, ''):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if 'T' in text:
        return datetime.fromisoformat(text.replace('Z', '+00:00')).date()
    return date.fromisoformat(text)


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO datetime (or date) into a naive UTC datetime."""
    if value in (None, ''):
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    else:
        parsed = datetime.fromisoformat(str(value).strip().replace('Z', '+00:00'))
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _check_text_fields(
    record: Dict[str, Any],
    result: ValidationResult,
    required: Sequence[str] = (),
    optional: Sequence[str] = ()
) -> None:
    """Required fields must be non-blank text; optional ones text when present."""
    for name in required:
        value = record.get(name)
        if value is None or (isinstance(value, str) and not value.strip()):
            result.add_error(f"Missing required field: {name}")
        elif not isinstance(value, str):
            result.add_error(f"Field {name} must be text, got {type(value).__name__}")
    for name in optional:
        value = record.get(name)
        if value not in (None, '') and not isinstance(value, str):
            result.add_error(f"Field {name} must be text, got {type(value).__name__}")


def validate_candidate_record(record: Dict[str, Any]) -> ValidationResult:
    result = ValidationResult()
    _check_text_fields(
        record, result,
        required=('full_name', 'party', 'office'),
        optional=('constituency', 'state', 'bio', 'photo_url', 'avatar_url')
    )
    for name in ('external_id', 'id'):
        value = record.get(name)
        if value is not None and (isinstance(value, bool) or not isinstance(value, (str, int))):
            result.add_error(f"Field {name} must be text or a number, got {type(value).__name__}")
    try:
        parse_date(record.get('election_date'))
    except ValueError:
        result.add_error(f"Invalid election_date: {record.get('election_date')!r}")
    return result


def validate_election_record(record: Dict[str, Any]) -> ValidationResult:
    result = ValidationResult()
    _check_text_fields(
        record, result,
        required=('name',),
        optional=('scope', 'state_code', 'status', 'source_url')
    )
    for name in ('date_start', 'date_end'):
        try:
            parse_date(record.get(name))
        except ValueError:
            result.add_error(f"Invalid {name}: {record.get(name)!r}")
    return result


def validate_deadline_record(record: Dict[str, Any]) -> ValidationResult:
    result = ValidationResult()
    _check_text_fields(record, result, required=('election', 'kind'))
    try:
        if parse_datetime(record.get('due_at')) is None:
            result.add_error("Missing required field: due_at")
    except ValueError:
        result.add_error(f"Invalid due_at: {record.get('due_at')!r}")
    return result


def validate_manifesto_record(record: Dict[str, Any], require_candidate_name: bool = True) -> ValidationResult:
    result = ValidationResult()
    required = ['party', 'office', 'raw_text']
    optional = ['constituency', 'source_url', 'version_label', 'title']
    if require_candidate_name:
        required.insert(0, 'candidate_name')
    else:
        optional.append('candidate_name')
    _check_text_fields(record, result, required=required, optional=optional)
    try:
        parse_datetime(record.get('published_at'))
    except ValueError:
        result.add_error(f"Invalid published_at: {record.get('published_at')!r}")
    return result


def validate_fact_check_record(record: Dict[str, Any]) -> ValidationResult:
    result = ValidationResult()
    _check_text_fields(record, result, required=('headline', 'claim', 'rating', 'source_url'))

    subjects = record.get('subjects')
    if subjects is not None:
        if not isinstance(subjects, dict):
            result.add_error(f"Field subjects must be a mapping, got {type(subjects).__name__}")
        else:
            _check_text_fields(subjects, result, optional=('candidate_name', 'party_code'))
    return result


def validate_results_link(url: Any) -> ValidationResult:
    """A results portal link must be an absolute http(s) URL."""
    result = ValidationResult()
    if not isinstance(url, str) or not url.strip():
        result.add_error(f"Results link must be text, got {url!r}")
        return result
    parsed = urlparse(url.strip())
    if parsed.scheme not in ('http', 'https') or not parsed.netloc:
        result.add_error(f"Results link is not an http(s) URL: {url!r}")
    return result
