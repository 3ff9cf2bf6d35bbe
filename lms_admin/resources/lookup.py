"""Lookup resources used to fill the course and group form selects.

Each depends on the one above it: districts are filtered by division, branches
by district, batches by course.
"""

from .base import ResourceSpec

DIVISIONS = ResourceSpec(name="divisions", label="division", filters={"search": str})

DISTRICTS = ResourceSpec(
    name="districts",
    label="district",
    filters={"search": str, "division_id": int},
)

BRANCHES = ResourceSpec(
    name="branches",
    label="branch",
    filters={"search": str, "district_id": int},
)

BATCHES = ResourceSpec(
    name="batches",
    label="batch",
    filters={"search": str, "lm_course_id": int},
)

CATEGORIES = ResourceSpec(name="categories", label="category", filters={"search": str})
