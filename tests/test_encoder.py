"""Tests for codec negotiation and the encoder handle."""

import pytest
from PIL import Image

from mockify.exceptions import EncoderUnsupportedError
from mockify.render.encoder import (
    ENCODER_BITRATE,
    H264_MP4,
    MP4,
    MP4_FIRST,
    PLATFORM_DEFAULT,
    VP8_WEBM,
    VP9_WEBM,
    WEBM,
    WEBM_FIRST,
    FFmpegEncoderHost,
    NegotiatedCodec,
    _parse_encoder_list,
    candidate_order,
    negotiate_codec,
    open_encoder,
)

FFMPEG_ENCODERS_OUTPUT = """Encoders:
 V..... = Video
 A..... = Audio
 ------
 V....D libx264              libx264 H.264 / AVC / MPEG-4 AVC / MPEG-4 part 10 (codec h264)
 V....D libvpx-vp9           libvpx VP9 (codec vp9)
 V....D mpeg4                MPEG-4 part 2
 A....D aac                  AAC (Advanced Audio Coding)
"""


class TestCandidateOrder:
    """Tests for the static candidate lists."""

    def test_webm_first_order(self):
        assert [c.name for c in WEBM_FIRST] == ["vp9-webm", "vp8-webm", "webm", "mp4", "platform-default"]

    def test_mp4_first_order(self):
        assert MP4_FIRST[0] is H264_MP4
        assert MP4_FIRST[1] is MP4
        assert MP4_FIRST[2:5] == (VP9_WEBM, VP8_WEBM, WEBM)
        assert MP4_FIRST[-1] is PLATFORM_DEFAULT

    def test_preference_selects_list(self):
        assert candidate_order("mp4") is MP4_FIRST
        assert candidate_order("webm") is WEBM_FIRST
        assert candidate_order(None) is WEBM_FIRST

    def test_bitrate_is_fixed(self):
        assert ENCODER_BITRATE == 5_000_000


class TestNegotiateCodec:
    """Tests for the capability query."""

    def test_first_supported_wins_webm(self, make_encoder_host):
        host = make_encoder_host(encoders=("libvpx", "libx264"))
        codec = negotiate_codec(host, "webm")
        assert codec.candidate is VP8_WEBM
        assert codec.encoder == "libvpx"
        assert codec.container == "webm"

    def test_first_supported_wins_mp4(self, make_encoder_host):
        host = make_encoder_host(encoders=("libvpx-vp9", "libx264"))
        codec = negotiate_codec(host, "mp4")
        assert codec.candidate is H264_MP4
        assert codec.mime_type == "video/mp4;codecs=avc1"

    def test_mp4_preference_falls_back_to_webm(self, make_encoder_host):
        host = make_encoder_host(encoders=("libvpx-vp9",))
        codec = negotiate_codec(host, "mp4")
        assert codec.candidate is VP9_WEBM

    def test_generic_mp4_uses_native_encoder(self, make_encoder_host):
        host = make_encoder_host(encoders=("mpeg4",))
        codec = negotiate_codec(host, "mp4")
        assert codec.candidate is MP4
        assert codec.encoder == "mpeg4"

    def test_platform_default_when_nothing_specific(self, make_encoder_host):
        host = make_encoder_host(encoders=())
        codec = negotiate_codec(host, "webm")
        assert codec.candidate is PLATFORM_DEFAULT
        assert codec.encoder is None

    def test_no_candidate_raises(self, make_encoder_host):
        host = make_encoder_host(encoders=None)
        with pytest.raises(EncoderUnsupportedError) as exc_info:
            negotiate_codec(host, "mp4")
        assert exc_info.value.code == "ENCODER_UNSUPPORTED"
        assert "h264-mp4" in exc_info.value.message
        assert "platform-default" in exc_info.value.message

    def test_supports(self, make_encoder_host):
        host = make_encoder_host(encoders=("libx264",))
        assert host.supports(H264_MP4)
        assert not host.supports(VP9_WEBM)


class TestEncoderHandle:
    """Tests for EncoderHandle."""

    @pytest.mark.asyncio
    async def test_frames_written_in_order(self, encoder_host):
        handle = await open_encoder(encoder_host, 4, 2, 30, "mp4")
        for value in (10, 20, 30):
            await handle.write(Image.new("RGBA", (4, 2), (value, 0, 0, 255)))

        session = encoder_host.sessions[0]
        assert [frame[0] for frame in session.frames] == [10, 20, 30]
        assert handle.frame_count == 3

    @pytest.mark.asyncio
    async def test_frames_converted_to_rgb24(self, encoder_host):
        handle = await open_encoder(encoder_host, 4, 2, 30)
        await handle.write(Image.new("RGBA", (4, 2), (1, 2, 3, 255)))
        assert len(encoder_host.sessions[0].frames[0]) == 4 * 2 * 3

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, encoder_host):
        handle = await open_encoder(encoder_host, 4, 2, 30, "mp4")
        await handle.write(Image.new("RGBA", (4, 2)))

        first = await handle.close()
        second = await handle.close()

        assert first == second == b"FAKE-mp4-1"
        assert encoder_host.sessions[0].finish_calls == 1
        assert handle.closed

    @pytest.mark.asyncio
    async def test_wrong_frame_size_rejected(self, encoder_host):
        handle = await open_encoder(encoder_host, 4, 2, 30)
        with pytest.raises(ValueError):
            await handle.write(Image.new("RGBA", (5, 2)))

    @pytest.mark.asyncio
    async def test_write_after_close_rejected(self, encoder_host):
        handle = await open_encoder(encoder_host, 4, 2, 30)
        await handle.close()
        with pytest.raises(RuntimeError):
            await handle.write(Image.new("RGBA", (4, 2)))

    @pytest.mark.asyncio
    async def test_abort(self, encoder_host):
        handle = await open_encoder(encoder_host, 4, 2, 30)
        await handle.abort()
        await handle.abort()

        assert encoder_host.sessions[0].aborted
        with pytest.raises(RuntimeError):
            await handle.close()

    @pytest.mark.asyncio
    async def test_open_encoder_unsupported(self, make_encoder_host):
        host = make_encoder_host(encoders=None)
        with pytest.raises(EncoderUnsupportedError):
            await open_encoder(host, 4, 2, 30)
        assert host.sessions == []


class TestFFmpegEncoderHost:
    """Tests for the ffmpeg-backed host."""

    def test_parse_encoder_list(self):
        encoders = _parse_encoder_list(FFMPEG_ENCODERS_OUTPUT)
        assert encoders == {"libx264", "libvpx-vp9", "mpeg4"}

    def test_missing_binary_supports_nothing(self):
        host = FFmpegEncoderHost("/nonexistent/ffmpeg")
        assert host.available_encoders() is None
        assert not host.supports(PLATFORM_DEFAULT)

    def test_mp4_command_is_fragmented(self):
        host = FFmpegEncoderHost("ffmpeg")
        cmd = host.build_command(NegotiatedCodec(H264_MP4, "libx264"), 64, 36, 30, ENCODER_BITRATE)
        assert cmd[cmd.index("-c:v") + 1] == "libx264"
        assert cmd[cmd.index("-b:v") + 1] == "5000000"
        assert cmd[cmd.index("-s") + 1] == "64x36"
        assert "frag_keyframe" in cmd[cmd.index("-movflags") + 1]
        assert cmd[-1] == "pipe:1"

    def test_webm_command(self):
        host = FFmpegEncoderHost("ffmpeg")
        cmd = host.build_command(NegotiatedCodec(VP8_WEBM, "libvpx"), 64, 36, 30, ENCODER_BITRATE)
        assert cmd[cmd.index("-f", cmd.index("-b:v")) + 1] == "webm"
        assert "-movflags" not in cmd

    def test_platform_default_omits_codec(self):
        host = FFmpegEncoderHost("ffmpeg")
        cmd = host.build_command(NegotiatedCodec(PLATFORM_DEFAULT, None), 64, 36, 30, ENCODER_BITRATE)
        assert "-c:v" not in cmd

    @pytest.mark.requires_ffmpeg
    @pytest.mark.asyncio
    async def test_real_encode(self):
        host = FFmpegEncoderHost("ffmpeg")
        handle = await open_encoder(host, 64, 36, 10, "mp4")
        for i in range(10):
            await handle.write(Image.new("RGBA", (64, 36), (i * 20, 0, 0, 255)))
        data = await handle.close()

        assert len(data) > 0
        if handle.codec.container == "mp4":
            assert b"ftyp" in data[:64]
        else:
            assert data[:4] == b"\x1a\x45\xdf\xa3"
