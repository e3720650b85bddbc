from mockify.render.compositor import draw_frame, new_frame_buffer
from mockify.render.driver import RenderLoopDriver, RenderOptions, resolve_duration
from mockify.render.encoder import EncoderHost, FFmpegEncoderHost, open_encoder
from mockify.render.scale import ScaleFactor, resolve_scale_factor

__all__ = [
    "RenderLoopDriver",
    "RenderOptions",
    "EncoderHost",
    "FFmpegEncoderHost",
    "ScaleFactor",
    "draw_frame",
    "new_frame_buffer",
    "open_encoder",
    "resolve_duration",
    "resolve_scale_factor",
]
