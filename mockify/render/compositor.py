"""Single-frame compositing with Pillow.

Layer structure (bottom to top, fixed):
L1: Background - video frame or still backdrop, stretched to the frame
L2: Image - the positioned overlay image (translate -> rotate -> scale)
L3: Overlay video - stretched to the frame at reduced opacity

The same order and transform semantics are used by the editor preview, so
the composited pixels line up with what the user positioned.
"""

import math

from PIL import Image

from mockify.render.scale import ScaleFactor
from mockify.schemas.transform import Transform

OVERLAY_OPACITY = 0.6
OVERLAY_OPACITY_EDITING = 0.2

# Quality tier -> resampling filter. Geometry is identical across tiers.
QUALITY_RESAMPLE: dict[str, Image.Resampling] = {
    "low": Image.Resampling.NEAREST,
    "standard": Image.Resampling.BILINEAR,
    "high": Image.Resampling.BICUBIC,
}


def image_layer_matrix(
    transform: Transform,
    scale_factor: ScaleFactor,
    image_size: tuple[int, int],
) -> tuple[float, float, float, float, float, float]:
    """Inverse affine coefficients (output pixel -> image pixel) for the image layer.

    Forward mapping is ``translate(left*sx, top*sy) . rotate(angle) .
    scale(scaleX, scaleY)`` applied to the image drawn at its original
    dimensions. Pillow's AFFINE transform wants the inverse.
    """
    natural_w, natural_h = image_size
    # The image is drawn at originalWidth x originalHeight, then scaled.
    kx = transform.scale_x * transform.original_width / natural_w
    ky = transform.scale_y * transform.original_height / natural_h

    tx = transform.left * scale_factor.x
    ty = transform.top * scale_factor.y
    theta = math.radians(transform.angle)
    cos_t = math.cos(theta)
    sin_t = math.sin(theta)

    return (
        cos_t / kx,
        sin_t / kx,
        -(cos_t * tx + sin_t * ty) / kx,
        -sin_t / ky,
        cos_t / ky,
        (sin_t * tx - cos_t * ty) / ky,
    )


def draw_frame(
    target: Image.Image,
    background: Image.Image | None,
    transform: Transform | None,
    overlay_image: Image.Image | None,
    overlay_video: Image.Image | None,
    scale_factor: ScaleFactor,
    *,
    editing: bool = False,
    resample: Image.Resampling = Image.Resampling.BICUBIC,
) -> Image.Image:
    """Composite one output frame into ``target`` (RGBA, modified in place).

    Inputs are never modified. Nothing is remembered between calls.

    Args:
        target: Output buffer, sized to the output resolution
        background: Bottom layer, stretched to fill the frame
        transform: Placement of ``overlay_image``
        overlay_image: Image drawn at its original dimensions under ``transform``
        overlay_video: Top layer, stretched to fill the frame at reduced opacity
        scale_factor: Capture frame -> output frame factor for the translation
        editing: Use the low editing opacity for the overlay video
        resample: Filter used for every resampling step

    Returns:
        The composited ``target``
    """
    size = target.size

    # 1. Clear
    target.paste((0, 0, 0, 0), (0, 0, size[0], size[1]))

    # 2. Background
    if background is not None:
        layer = background.convert("RGBA")
        if layer.size != size:
            layer = layer.resize(size, resample)
        target.alpha_composite(layer)

    # 3. Positioned image
    if overlay_image is not None and transform is not None:
        source = overlay_image.convert("RGBA")
        coeffs = image_layer_matrix(transform, scale_factor, source.size)
        layer = source.transform(
            size,
            Image.Transform.AFFINE,
            data=coeffs,
            resample=resample,
            fillcolor=(0, 0, 0, 0),
        )
        target.alpha_composite(layer)

    # 4. Overlay video
    if overlay_video is not None:
        opacity = OVERLAY_OPACITY_EDITING if editing else OVERLAY_OPACITY
        layer = overlay_video.convert("RGBA")
        if layer.size != size:
            layer = layer.resize(size, resample)
        layer.putalpha(layer.getchannel("A").point(lambda a: round(a * opacity)))
        target.alpha_composite(layer)

    return target


def new_frame_buffer(width: int, height: int) -> Image.Image:
    """Allocate a transparent RGBA output buffer."""
    return Image.new("RGBA", (width, height), (0, 0, 0, 0))
