"""Resource definitions: endpoint names, cache tags and list filter schemas."""

from dataclasses import dataclass, field
from typing import Any

JSON = "json"
MULTIPART = "multipart"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class ResourceSpec:
    """One REST resource family, e.g. /courses and /courses/{id}."""
    name: str
    label: str
    filters: dict[str, type] = field(default_factory=dict)
    encoding: str = JSON
    list_key: str | None = None

    @property
    def tag(self) -> str:
        return f"{self.name}-list"

    @property
    def records_key(self) -> str:
        return self.list_key or self.name

    @property
    def path(self) -> str:
        return f"/{self.name}"

    def item_path(self, record_id: int | str) -> str:
        return f"/{self.name}/{record_id}"

    def query(self, page: int = 1, filters: dict[str, Any] | None = None) -> dict[str, str]:
        """Query parameters for a listing.

        Filters whose value is None or "" are left out. Unknown filter names and
        values that don't fit the declared type raise ValueError.
        """
        if isinstance(page, bool):
            raise ValueError(f"page must be a positive integer, got {page!r}")
        if not isinstance(page, int):
            try:
                page = int(page)
            except (TypeError, ValueError):
                raise ValueError(f"page must be a positive integer, got {page!r}")
        if page < 1:
            raise ValueError(f"page must be a positive integer, got {page!r}")

        query = {"page": str(page)}
        for name, value in (filters or {}).items():
            if value is None or value == "":
                continue
            if name not in self.filters:
                raise ValueError(
                    f"Unknown filter '{name}' for {self.name}. "
                    f"Allowed: {', '.join(sorted(self.filters)) or 'none'}"
                )
            query[name] = coerce_filter(name, value, self.filters[name])
        return query


def coerce_filter(name: str, value: Any, kind: type) -> str:
    """Render a filter value as a query string value of the declared kind."""
    if kind is bool:
        if isinstance(value, bool):
            return "1" if value else "0"
        text = str(value).strip().lower()
        if text in _TRUE:
            return "1"
        if text in _FALSE:
            return "0"
        raise ValueError(f"Filter '{name}' expects a boolean, got {value!r}")
    if kind is int:
        if isinstance(value, bool):
            raise ValueError(f"Filter '{name}' expects an integer, got {value!r}")
        try:
            return str(int(str(value).strip()))
        except ValueError:
            raise ValueError(f"Filter '{name}' expects an integer, got {value!r}")
    return str(value)
