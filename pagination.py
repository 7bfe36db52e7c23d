"""
Sorting and offset/limit pagination shared by the product and order listings.
"""
from typing import Any, Dict, Iterable, List, Optional, Tuple

from errors import ValidationError

MAX_LIMIT = 100
DEFAULT_LIMIT = 20


def clamp_page(limit: Optional[int], offset: Optional[int]) -> Tuple[int, int]:
    limit = DEFAULT_LIMIT if limit is None else limit
    return max(1, min(MAX_LIMIT, limit)), max(0, offset or 0)


def resolve_sort(sort_by: str, sort_order: str, allowed: Iterable[str]) -> Tuple[str, bool]:
    """Map a case-insensitive sort field onto its canonical name; returns (field, descending)."""
    fields = {f.lower(): f for f in allowed}
    field = fields.get((sort_by or "").strip().lower())
    if field is None:
        raise ValidationError("Invalid sort field", errors=[{"field": "sortBy", "message": f"Allowed: {', '.join(fields.values())}"}])
    order = (sort_order or "").strip().lower()
    if order not in ("asc", "desc"):
        raise ValidationError("Invalid sort order", errors=[{"field": "sortOrder", "message": "Allowed: asc, desc"}])
    return field, order == "desc"


def _sort_key(field: str):
    def key(doc: Dict[str, Any]):
        value = doc.get(field)
        if value is None:
            return (0, "")
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return (1, value)
        return (2, str(value).lower())
    return key


def sort_docs(docs: List[Dict[str, Any]], field: str, descending: bool) -> List[Dict[str, Any]]:
    return sorted(docs, key=_sort_key(field), reverse=descending)


def paginate(docs: List[Dict[str, Any]], limit: int, offset: int) -> Tuple[List[Dict[str, Any]], Dict[str, Any]]:
    total = len(docs)
    return docs[offset:offset + limit], {
        "total": total,
        "limit": limit,
        "offset": offset,
        "hasMore": offset + limit < total,
    }
