"""
Form controllers: editable field sets bound to a resource's create/update.

A controller keeps values in their form representation (select ids are
strings, checkboxes booleans), serializes them into the payload the API
expects on submit, and maps a ValidationError back onto per-field errors.

State machine:
    IDLE -> SUBMITTING -> IDLE   (success: values reset)
                       -> IDLE   (validation errors shown on fields)
                       -> IDLE   (top-level error shown)
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from loguru import logger

from .attachments import Attachment
from .client import ResourceClient
from .normalizer import Failure, Ok, Result, ValidationError
from .request import LmsAPIError

TEXT = "text"
INTEGER = "integer"
NUMBER = "number"
BOOLEAN = "boolean"
INTEGER_LIST = "integer_list"
FILE = "file"


class FormState(Enum):
    IDLE = "idle"
    SUBMITTING = "submitting"


class FormBusyError(RuntimeError):
    """Raised when submit() is called while a submission is already in flight."""


@dataclass(frozen=True)
class Field:
    name: str
    kind: str = TEXT
    default: Any = ""
    required: bool = False
    label: str | None = None

    @property
    def required_message(self) -> str:
        return f"{self.label or self.name.replace('_', ' ').capitalize()} is required"

    def is_blank(self, value: Any) -> bool:
        if value is None:
            return True
        if isinstance(value, str):
            return not value.strip()
        if isinstance(value, (list, tuple)):
            return not value
        return False


def to_int(value: Any) -> int | None:
    """Form string -> int. Blank is None; anything non-numeric raises ValueError."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if isinstance(value, bool):
        raise ValueError(f"not a number: {value!r}")
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return int(str(value).strip())


def to_bool(value: Any, default: bool = False) -> bool:
    """Checkbox value -> bool. The API sends flags as 0/1, "0"/"1" or booleans."""
    if value is None or value == "":
        return default
    if isinstance(value, str):
        return value.strip().lower() not in ("0", "false", "no", "off")
    return bool(value)


def _status(value: Any) -> str:
    return "1" if value is None or value == "" else str(value)


def to_number(value: Any) -> float | int | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    number = float(value)
    return int(number) if number.is_integer() else number


class FormController:
    """Binds a field set to ResourceClient.create (new record) or update (existing)."""

    def __init__(
        self,
        fields: list[Field],
        client: ResourceClient,
        serializer: Callable[[dict[str, Any]], dict[str, Any]],
        record_id: int | str | None = None,
        initial: dict[str, Any] | None = None,
    ):
        self.fields = {f.name: f for f in fields}
        self.client = client
        self.record_id = record_id
        self._serializer = serializer
        self._defaults = {f.name: f.default for f in fields}
        if initial:
            self._defaults.update({k: v for k, v in initial.items() if k in self.fields})
        self.values: dict[str, Any] = dict(self._defaults)
        self.errors: dict[str, str] = {}
        self.form_error: str | None = None
        self.state = FormState.IDLE
        self.last_result: Result | None = None

    # --- Field state ---

    def set(self, name: str, value: Any) -> None:
        if name not in self.fields:
            raise KeyError(f"Unknown field '{name}'")
        self.values[name] = value
        self.errors.pop(name, None)

    def update(self, values: dict[str, Any]) -> None:
        for name, value in values.items():
            self.set(name, value)

    def load(self, values: dict[str, Any]) -> None:
        """Use values as the new defaults (edit mode) and reset to them."""
        self._defaults.update({k: v for k, v in values.items() if k in self.fields})
        self.reset()

    def reset(self) -> None:
        self.values = dict(self._defaults)
        self.errors = {}
        self.form_error = None

    def set_error(self, name: str, message: str) -> None:
        """Show message under field name; names the form doesn't have go top-level."""
        field_name = name.split(".", 1)[0].removesuffix("[]")
        if field_name in self.fields:
            self.errors[field_name] = message
        else:
            self.form_error = message if not self.form_error else f"{self.form_error}\n{message}"

    @property
    def is_submitting(self) -> bool:
        return self.state is FormState.SUBMITTING

    # --- Submission ---

    def _check_required(self) -> dict[str, list[str]]:
        missing = {}
        for field in self.fields.values():
            if field.required and field.is_blank(self.values.get(field.name)):
                missing[field.name] = [field.required_message]
        return missing

    def _apply(self, result: Result) -> None:
        if isinstance(result, Ok):
            self.reset()
        elif isinstance(result, ValidationError):
            for name, messages in result.field_errors.items():
                self.set_error(name, messages[0] if messages else result.message)
        elif isinstance(result, Failure):
            self.form_error = result.message

    async def submit(self, values: dict[str, Any] | None = None) -> Result:
        """Validate, serialize and send the form. Returns the Result it applied."""
        if self.state is FormState.SUBMITTING:
            raise FormBusyError("A submission is already in progress")
        if values:
            self.update(values)

        self.errors = {}
        self.form_error = None

        missing = self._check_required()
        if missing:
            result = ValidationError(missing)
            self._apply(result)
            self.last_result = result
            return result

        try:
            payload = self._serializer(self.values)
        except ValueError as e:
            result = ValidationError(getattr(e, "field_errors", None) or {"__all__": [str(e)]})
            self._apply(result)
            self.last_result = result
            return result

        self.state = FormState.SUBMITTING
        try:
            if self.record_id is None:
                result = await self.client.create(payload)
            else:
                result = await self.client.update(self.record_id, payload)
        except LmsAPIError as e:
            self.form_error = "; ".join(e.messages)
            raise
        finally:
            self.state = FormState.IDLE

        logger.debug("{} form submit -> {}", self.client.spec.label, type(result).__name__)
        self._apply(result)
        self.last_result = result
        return result


class FieldValueError(ValueError):
    """Serializer error that names the offending fields."""

    def __init__(self, field_errors: dict[str, list[str]]):
        self.field_errors = field_errors
        super().__init__("; ".join(f"{k}: {v[0]}" for k, v in field_errors.items()))


def _coerce_all(values: dict[str, Any], names: list[str], convert: Callable[[Any], Any]) -> dict[str, Any]:
    coerced, bad = {}, {}
    for name in names:
        try:
            coerced[name] = convert(values.get(name))
        except (TypeError, ValueError):
            bad[name] = ["Must be a number"]
    if bad:
        raise FieldValueError(bad)
    return coerced


def _ints(values: dict[str, Any], names: list[str]) -> dict[str, int | None]:
    return _coerce_all(values, names, to_int)


def _numbers(values: dict[str, Any], names: list[str]) -> dict[str, float | int | None]:
    return _coerce_all(values, names, to_number)


# ==================== Course form ====================

COURSE_FIELDS = [
    Field("lm_category_id", INTEGER, "", required=True, label="Category"),
    Field("title", TEXT, "", required=True, label="Title"),
    Field("sub_title"),
    Field("slug"),
    Field("short_description"),
    Field("description"),
    Field("featured_image", FILE, None),
    Field("video_link"),
    Field("level", TEXT, "beginner"),
    Field("end_date"),
    Field("status", TEXT, "1"),
    Field("is_default", BOOLEAN, False),
    Field("branch_ids", INTEGER_LIST, []),
    Field("price", NUMBER, 0),
    Field("discount", NUMBER, 0),
]

_COURSE_OPTIONAL_TEXT = ["sub_title", "slug", "short_description", "description", "video_link", "end_date"]


def serialize_course(values: dict[str, Any]) -> dict[str, Any]:
    """Course values -> multipart payload.

    Optional text is only sent when filled in; price and discount only when non-zero.
    """
    ids = _ints(values, ["lm_category_id"])
    try:
        branch_ids = [to_int(b) for b in values.get("branch_ids") or []]
    except (TypeError, ValueError):
        raise FieldValueError({"branch_ids": ["Must be a list of numbers"]})
    amounts = _numbers(values, ["price", "discount"])
    price, discount = amounts["price"], amounts["discount"]

    payload: dict[str, Any] = {
        "lm_category_id": ids["lm_category_id"],
        "title": values.get("title", ""),
    }
    for name in _COURSE_OPTIONAL_TEXT:
        if values.get(name):
            payload[name] = values[name]

    image = values.get("featured_image")
    if image is not None:
        if not isinstance(image, Attachment):
            image = Attachment.from_path(image)
        payload["featured_image"] = image

    payload["level"] = values.get("level") or "beginner"
    payload["status"] = _status(values.get("status"))
    payload["is_default"] = "1" if to_bool(values.get("is_default")) else "0"
    payload["branch_ids[]"] = [b for b in branch_ids if b is not None]
    if price:
        payload["price"] = price
    if discount:
        payload["discount"] = discount
    return payload


def course_values(record: dict) -> dict[str, Any]:
    """Form values for editing an existing course record."""
    category = record.get("category") or {}
    return {
        "lm_category_id": str(category["id"]) if category.get("id") is not None else "",
        "title": record.get("title") or "",
        "sub_title": record.get("sub_title") or "",
        "slug": record.get("slug") or "",
        "short_description": record.get("short_description") or "",
        "description": record.get("description") or "",
        "video_link": record.get("video_link") or "",
        "level": record.get("level") or "beginner",
        "end_date": record.get("end_date") or "",
        "status": _status(record.get("status")),
        "is_default": to_bool(record.get("is_default")),
        "branch_ids": [b["id"] for b in record.get("branches") or [] if "id" in b],
        "price": record.get("price") or 0,
        "discount": record.get("discount") or 0,
    }


def course_form(client: ResourceClient, record: dict | None = None) -> FormController:
    """Add form when record is None, edit form otherwise."""
    return FormController(
        COURSE_FIELDS,
        client,
        serialize_course,
        record_id=record.get("id") if record else None,
        initial=course_values(record) if record else None,
    )


# ==================== Group form ====================

GROUP_ID_FIELDS = ["division_id", "district_id", "branch_id", "lm_course_id", "lm_batch_id"]

GROUP_FIELDS = [
    Field("group_name", TEXT, "", required=True, label="Group name"),
    *[Field(name, INTEGER, "") for name in GROUP_ID_FIELDS],
    Field("is_active", BOOLEAN, True),
]


def serialize_group(values: dict[str, Any]) -> dict[str, Any]:
    """Group values -> JSON payload. Select ids become ints; unselected ones are left out."""
    ids = _ints(values, GROUP_ID_FIELDS)
    payload: dict[str, Any] = {"group_name": str(values.get("group_name") or "").strip()}
    payload.update({k: v for k, v in ids.items() if v is not None})
    payload["is_active"] = to_bool(values.get("is_active"))
    return payload


def _nested_id(record: dict, key: str) -> str:
    obj = record.get(key)
    if isinstance(obj, dict) and obj.get("id") is not None:
        return str(obj["id"])
    return ""


def group_values(record: dict) -> dict[str, Any]:
    """Form values for editing an existing group record."""
    return {
        "group_name": record.get("group_name") or "",
        "division_id": str(record["division_id"]) if record.get("division_id") is not None else "",
        "district_id": str(record["district_id"]) if record.get("district_id") is not None else "",
        "branch_id": _nested_id(record, "branch"),
        "lm_course_id": _nested_id(record, "course"),
        "lm_batch_id": _nested_id(record, "batch"),
        "is_active": to_bool(record.get("is_active"), default=True),
    }


def group_form(client: ResourceClient, record: dict | None = None) -> FormController:
    """Add form when record is None, edit form otherwise."""
    return FormController(
        GROUP_FIELDS,
        client,
        serialize_group,
        record_id=record.get("id") if record else None,
        initial=group_values(record) if record else None,
    )
