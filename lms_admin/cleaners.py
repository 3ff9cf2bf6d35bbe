"""
Response cleaners for LMS records.

Each cleaner takes one raw record from the API and returns the compact summary
the tools hand back: nested objects flattened to names, nulls and empty lists
dropped, HTML stripped, dates shortened.
"""

import re
from typing import Any


def _strip_html(text: str) -> str:
    """Remove HTML tags and decode common entities."""
    if not text:
        return ""
    text = re.sub(r'<br\s*/?>', '\n', text)
    text = re.sub(r'</?p>', '\n', text)
    text = re.sub(r'<[^>]+>', '', text)
    text = text.replace('&nbsp;', ' ').replace('&#160;', ' ')
    text = text.replace('&#39;', "'").replace('&quot;', '"')
    text = text.replace('&amp;', '&').replace('&lt;', '<').replace('&gt;', '>')
    # Collapse whitespace
    text = re.sub(r'\n{3,}', '\n\n', text)
    return text.strip()


def _date_short(date_str: str | None) -> str | None:
    """Shorten ISO date to YYYY-MM-DD."""
    if not date_str:
        return None
    return date_str[:10]


def _name(obj: Any) -> str | None:
    """Name of a nested {id, name} object."""
    if not isinstance(obj, dict):
        return None
    return obj.get("name")


def _compact(d: dict) -> dict:
    return {k: v for k, v in d.items() if v is not None and v != [] and v != ""}


# ==================== Individual Cleaners ====================


def clean_course(c: dict) -> dict:
    """Clean a course record to essential fields."""
    return _compact({
        "id": c.get("id"),
        "title": c.get("title"),
        "subTitle": c.get("sub_title"),
        "level": c.get("level"),
        "status": c.get("status_text") or c.get("status"),
        "price": c.get("price"),
        "discount": c.get("discount"),
        "category": _name(c.get("category")),
        "branches": [b.get("name") for b in c.get("branches") or []],
        "enrolled": c.get("total_enrolled"),
        "language": c.get("language"),
        "endDate": _date_short(c.get("end_date")),
        "isDefault": c.get("is_default"),
        "shortDescription": _strip_html(c.get("short_description") or "")[:300],
        "batches": [
            _compact({
                "id": b.get("id"),
                "name": b.get("name"),
                "price": b.get("price"),
                "duration": b.get("duration"),
                "online": b.get("is_online"),
                "offline": b.get("is_offline"),
            })
            for b in c.get("batches") or []
        ],
    })


def clean_group(g: dict) -> dict:
    """Clean a group record to essential fields."""
    return _compact({
        "id": g.get("id"),
        "name": g.get("group_name"),
        "active": g.get("is_active"),
        "course": _name(g.get("course")),
        "batch": _name(g.get("batch")),
        "branch": _name(g.get("branch")),
        "students": g.get("total_students"),
    })


def clean_lookup(r: dict) -> dict:
    """Lookup records only need id and name."""
    return _compact({"id": r.get("id"), "name": r.get("name")})


# ==================== Registry ====================

CLEANERS = {
    "courses": clean_course,
    "groups": clean_group,
}


def clean_record(resource: str, record: dict) -> dict:
    """Clean a raw record using the cleaner for its resource."""
    cleaner = CLEANERS.get(resource, clean_lookup)
    return cleaner(record)


def clean_page(resource: str, records: list[dict], pagination: dict, total: int | None = None) -> dict:
    """Clean a listing. Pagination passes through unchanged."""
    result = {
        resource: [clean_record(resource, r) for r in records],
        "pagination": pagination,
    }
    if total is not None:
        result["total"] = total
    return result
