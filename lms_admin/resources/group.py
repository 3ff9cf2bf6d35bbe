"""Group resource."""

from .base import JSON, ResourceSpec

GROUPS = ResourceSpec(
    name="groups",
    label="group",
    encoding=JSON,
    filters={
        "search": str,
        "division_id": int,
        "district_id": int,
        "branch_id": int,
        "lm_course_id": int,
        "lm_batch_id": int,
        "is_active": bool,
    },
)
