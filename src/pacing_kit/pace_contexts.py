from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from datetime import tzinfo
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
from urllib.parse import urlencode

import jsonschema
import requests

from .config import get_settings
from .relative_time import Timestamp, format_relative_time

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).resolve().parent / "schemas" / "pace_contexts.schema.json"

SECTION = "section"
STUDENT_ENROLLMENT = "student_enrollment"
CONTEXT_TYPES = (SECTION, STUDENT_ENROLLMENT)

PACE_TYPE_LABELS = {
    "Course": "Default",
    "Section": "Section",
    "StudentEnrollment": "Individual",
}

TABLE_HEADERS = {
    SECTION: ["Section", "Section Size", "Pace Type", "Last Modified"],
    STUDENT_ENROLLMENT: ["Student", "Assigned Pace", "Pace Type", "Last Modified"],
}


@dataclass(frozen=True)
class PaceContextRow:
    name: str
    size_or_pace: str
    pace_type: str
    last_modified: str

    def as_dict(self) -> Dict[str, str]:
        return asdict(self)


def _check_context_type(context_type: str) -> None:
    if context_type not in CONTEXT_TYPES:
        raise ValueError(f"context_type must be one of {CONTEXT_TYPES}, got {context_type!r}")


def pace_contexts_url(course_id: Union[int, str], context_type: str, page: int = 1, per_page: int = 10) -> str:
    _check_context_type(context_type)
    query = urlencode({"type": context_type, "page": page, "per_page": per_page})
    return f"/api/v1/courses/{course_id}/pace_contexts?{query}"


def table_headers(context_type: str) -> List[str]:
    _check_context_type(context_type)
    return list(TABLE_HEADERS[context_type])


def _load_schema() -> Dict[str, Any]:
    with SCHEMA_PATH.open("r", encoding="utf-8") as f:
        return json.load(f)


def validate_pace_contexts(payload: Dict[str, Any]) -> None:
    jsonschema.validate(payload, _load_schema())


def fetch_pace_contexts(
    course_id: Union[int, str],
    context_type: str,
    *,
    base_url: Optional[str] = None,
    session: Optional[requests.Session] = None,
    page: int = 1,
    per_page: int = 10,
    timeout: float = 30,
) -> Dict[str, Any]:
    base = (base_url or get_settings().base_url).rstrip("/")
    url = base + pace_contexts_url(course_id, context_type, page=page, per_page=per_page)
    logger.info("fetching pace contexts: %s", url)
    get = session.get if session is not None else requests.get
    response = get(url, headers={"Accept": "application/json"}, timeout=timeout)
    response.raise_for_status()
    payload = response.json()
    validate_pace_contexts(payload)
    return payload


def _size_or_pace(context: Dict[str, Any], context_type: str) -> str:
    if context_type == SECTION:
        return f"{context.get('associated_student_count', 0)} Students"
    applied = context.get("applied_pace") or {}
    return str(applied.get("name", ""))


def build_row(
    context: Dict[str, Any],
    context_type: str,
    now: Optional[Timestamp] = None,
    tz: Union[tzinfo, str, None] = None,
) -> PaceContextRow:
    applied = context.get("applied_pace") or {}
    last_modified = applied.get("last_modified")
    return PaceContextRow(
        name=context["name"],
        size_or_pace=_size_or_pace(context, context_type),
        pace_type=PACE_TYPE_LABELS.get(applied.get("type", ""), ""),
        last_modified=format_relative_time(last_modified, now=now, tz=tz) if last_modified else "",
    )


def build_rows(
    payload: Dict[str, Any],
    context_type: str,
    now: Optional[Timestamp] = None,
    tz: Union[tzinfo, str, None] = None,
) -> List[PaceContextRow]:
    """Validate a pace contexts page and turn it into table rows."""
    _check_context_type(context_type)
    validate_pace_contexts(payload)
    return [build_row(context, context_type, now=now, tz=tz) for context in payload["pace_contexts"]]
