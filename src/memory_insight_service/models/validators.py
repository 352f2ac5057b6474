"""Shared Pydantic types and validators for reuse across models.

Centralises tag normalisation, range-clamped floats, and Literal enums so
every model speaks the same language.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BeforeValidator, Field

# ---------------------------------------------------------------------------
# Tag normalisation
# ---------------------------------------------------------------------------


def normalize_tags(v: Any) -> list[str]:
    """Accept ``str | list | None`` and return a clean, ordered, de-duplicated ``list[str]``.

    * ``"a, b, c"`` → ``["a", "b", "c"]``
    * ``["a", None, " b ", "a"]`` → ``["a", "b"]``
    * ``None`` → ``[]``
    """
    if v is None:
        return []
    if isinstance(v, str):
        items = [t.strip() for t in v.split(",")]
    elif isinstance(v, (list, tuple, set, frozenset)):
        items = [str(item).strip() for item in v if item is not None]
    else:
        return []
    return list(dict.fromkeys(t for t in items if t))


Tags = Annotated[list[str], BeforeValidator(normalize_tags)]
"""Flexible tag input: accepts str, list, or None; always outputs an ordered set as list[str]."""


# ---------------------------------------------------------------------------
# Numeric types
# ---------------------------------------------------------------------------

UnitFloat = Annotated[float, Field(ge=0.0, le=1.0)]
"""Float clamped to [0.0, 1.0] for scores, thresholds, similarities."""


# ---------------------------------------------------------------------------
# Literal enums
# ---------------------------------------------------------------------------

SearchMode = Literal["content_only", "tags_only", "hybrid"]
ResultSearchMode = Literal["content_only", "tags_only", "hybrid", "unknown"]
ProcessingStatus = Literal["pending", "processing", "ready", "failed", "failed_permanent"]
JobStatus = Literal["pending", "processing", "completed", "failed"]
TaskType = Literal["batch_memory_processing", "memory_retry"]

FAILED_STATUSES: frozenset[str] = frozenset({"failed", "failed_permanent"})
