"""Course resource."""

from .base import MULTIPART, ResourceSpec

COURSES = ResourceSpec(
    name="courses",
    label="course",
    encoding=MULTIPART,
    filters={
        "search": str,
        "sort_order": str,
        "level": str,
        "division_id": int,
        "branch_id": int,
        "category_id": int,
    },
)
