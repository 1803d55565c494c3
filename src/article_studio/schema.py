"""JSON Schema checks for the persisted article history.

The models already validate fields one article at a time; this module checks
the document that actually lands on disk, including what no single article
can see (every id in history must be unique).
"""

from __future__ import annotations

import json
from collections import Counter
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Sequence

from jsonschema import Draft202012Validator, FormatChecker
from jsonschema.exceptions import ValidationError

SCHEMA_PATH = Path(__file__).resolve().parent / "schemas" / "generated_article.json"


@lru_cache(maxsize=1)
def load_schema() -> Dict[str, Any]:
    return json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))


@lru_cache(maxsize=1)
def article_validator() -> Draft202012Validator:
    schema = load_schema()
    Draft202012Validator.check_schema(schema)
    return Draft202012Validator(schema, format_checker=FormatChecker())


def _location(error: ValidationError, prefix: str = "") -> str:
    path = ".".join(str(piece) for piece in error.absolute_path)
    if prefix and path:
        return f"{prefix}.{path}"
    return prefix or path or "<root>"


def record_errors(record: Dict[str, Any], prefix: str = "") -> List[str]:
    """Return ``location: message`` strings for one serialized article, sorted by location."""
    errors = sorted(article_validator().iter_errors(record), key=_location)
    return [f"{_location(err, prefix)}: {err.message}" for err in errors]


def validate_article_record(record: Dict[str, Any]) -> Dict[str, Any]:
    """Raise ValueError if one serialized GeneratedArticle breaks the schema."""
    problems = record_errors(record)
    if problems:
        raise ValueError(f"Article record failed validation: {'; '.join(problems)}")
    return record


def validate_history(records: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Validate a full history document before it replaces the file on disk.

    Every record must match the article schema and ids must be unique, so a
    later edit or export by id can never hit the wrong article. Problems are
    reported together, each prefixed with the record's index.
    """
    problems: List[str] = []
    for idx, record in enumerate(records):
        problems.extend(record_errors(record, prefix=f"[{idx}]"))

    counts = Counter(record.get("id") for record in records if isinstance(record, dict))
    for article_id, count in sorted(counts.items(), key=lambda item: str(item[0])):
        if article_id and count > 1:
            problems.append(f"id {article_id!r} appears {count} times")

    if problems:
        raise ValueError(f"History failed validation: {'; '.join(problems)}")
    return list(records)
