from collections.abc import Mapping
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from mockify.exceptions import InvalidRenderRequestError
from mockify.schemas.job import JobParams
from mockify.schemas.transform import Frame, Transform, validate_transform

Quality = Literal["low", "standard", "high"]
Container = Literal["mp4", "webm"]


class RenderRequest(BaseModel):
    """One render submission: media references, placement and options."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )

    background: str
    overlay_image: str
    overlay_video: str | None = None
    transform: Transform
    aspect_ratio: float = Field(default=16 / 9, gt=0, allow_inf_nan=False)
    quality: Quality = "standard"
    preserve_original_speed: bool = True
    exact_positioning: bool = True
    # Editor container the transform was captured in, when the transform
    # does not carry its own frame
    container: Frame | None = None
    preview: bool = False
    preferred_container: Container = "mp4"

    @field_validator("transform", mode="before")
    @classmethod
    def _validate_transform(cls, v: Any) -> Transform:
        return validate_transform(v)

    @property
    def params(self) -> JobParams:
        return JobParams(
            aspect_ratio=self.aspect_ratio,
            quality=self.quality,
            preserve_original_speed=self.preserve_original_speed,
            exact_positioning=self.exact_positioning,
        )

    @property
    def capture_frame(self) -> Frame | None:
        """Frame the transform coordinates refer to."""
        return self.transform.frame or self.container


def parse_render_request(data: RenderRequest | Mapping[str, Any]) -> RenderRequest:
    """Validate a submission.

    Raises:
        InvalidTransformError: if the transform is rejected
        InvalidRenderRequestError: if any other field is invalid
    """
    if isinstance(data, RenderRequest):
        return data.model_copy(update={"transform": validate_transform(data.transform)})
    try:
        return RenderRequest.model_validate(dict(data))
    except PydanticValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ()))
        raise InvalidRenderRequestError(
            f"Invalid render request field {field}: {first.get('msg', 'invalid value')}",
            field=field or None,
        ) from e
