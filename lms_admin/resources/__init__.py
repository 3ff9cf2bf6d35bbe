"""LMS REST resource definitions."""

from .base import JSON, MULTIPART, ResourceSpec, coerce_filter  # noqa: F401
from .course import COURSES  # noqa: F401
from .group import GROUPS  # noqa: F401
from .lookup import BATCHES, BRANCHES, CATEGORIES, DISTRICTS, DIVISIONS  # noqa: F401

LOOKUPS = {spec.name: spec for spec in (DIVISIONS, DISTRICTS, BRANCHES, BATCHES, CATEGORIES)}

ALL = {spec.name: spec for spec in (COURSES, GROUPS, *LOOKUPS.values())}
