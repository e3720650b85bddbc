"""Placement transform of the overlay image.

A Transform records where the editor put the image: offset, per-axis scale
and clockwise rotation about the image's own top-left corner, relative to the
coordinate frame it was captured in. Derived sizes are always recomputed
from ``original * scale``; values sent by the editor are never trusted.

The wire format is the editor's camelCase JSON (``scaleX``,
``originalWidth`` ...). snake_case keys are accepted as well.
"""

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from mockify.exceptions import InvalidTransformError

REQUIRED_FIELDS = ("left", "top", "scaleX", "scaleY", "originalWidth", "originalHeight")


class Frame(BaseModel):
    """A coordinate frame: editor container, preview or output buffer."""

    model_config = ConfigDict(allow_inf_nan=False)

    width: float | None = None
    height: float | None = None


class Transform(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        allow_inf_nan=False,
    )

    left: float
    top: float
    scale_x: float = Field(gt=0)
    scale_y: float = Field(gt=0)
    original_width: float = Field(gt=0)
    original_height: float = Field(gt=0)
    angle: float = 0.0
    frame: Frame | None = None

    @model_validator(mode="before")
    @classmethod
    def _fold_container_dimensions(cls, data: Any) -> Any:
        # Older editor payloads send the capture frame as flat keys.
        if isinstance(data, Mapping) and data.get("frame") is None:
            width = data.get("containerWidth", data.get("container_width"))
            height = data.get("containerHeight", data.get("container_height"))
            if width is not None or height is not None:
                data = {**data, "frame": {"width": width, "height": height}}
        return data

    @field_validator("left", "top", "scale_x", "scale_y", "original_width", "original_height", mode="before")
    @classmethod
    def _reject_bool(cls, v: Any) -> Any:
        if isinstance(v, bool):
            raise ValueError("expected a number")
        return v

    @field_validator("angle", mode="before")
    @classmethod
    def _default_angle(cls, v: Any) -> Any:
        if v is None or v == "":
            return 0.0
        if isinstance(v, bool):
            raise ValueError("expected a number")
        return v

    @computed_field
    @property
    def width(self) -> float:
        return self.original_width * self.scale_x

    @computed_field
    @property
    def height(self) -> float:
        return self.original_height * self.scale_y

    @computed_field
    @property
    def scale(self) -> float:
        return max(self.scale_x, self.scale_y)

    def to_wire(self) -> dict[str, Any]:
        """Serialize to the editor's camelCase JSON, derived fields included."""
        return self.model_dump(by_alias=True, exclude_none=True)


def validate_transform(raw: Any) -> Transform:
    """Validate raw editor output into a Transform.

    Numeric strings are coerced; anything that cannot be read as a finite
    number is rejected. ``angle`` defaults to 0.

    Raises:
        InvalidTransformError: if a required field is missing or invalid
    """
    if isinstance(raw, Transform):
        return clone_transform(raw)
    if not isinstance(raw, Mapping):
        raise InvalidTransformError(f"Transform must be an object, got {type(raw).__name__}")

    missing = [
        name for name in REQUIRED_FIELDS
        if raw.get(name, raw.get(_to_snake(name))) is None
    ]
    if missing:
        raise InvalidTransformError(
            f"Missing required transform fields: {', '.join(missing)}",
            field=missing[0],
        )

    try:
        return Transform.model_validate(dict(raw))
    except PydanticValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ()))
        raise InvalidTransformError(
            f"Invalid transform field {field}: {first.get('msg', 'invalid value')}",
            field=field or None,
        ) from e


def clone_transform(transform: Transform) -> Transform:
    """Return a copy sharing no mutable state with ``transform``."""
    return transform.model_copy(deep=True)


def _to_snake(name: str) -> str:
    return "".join(f"_{c.lower()}" if c.isupper() else c for c in name)
