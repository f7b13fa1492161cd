"""Tests for the ffmpeg adapter's subtitle rendering and command building."""

import asyncio
from pathlib import Path

import pytest

from rinkreel.encoder import FfmpegEncoder, format_srt_time, media_info_from_probe, render_srt
from rinkreel.errors import EncoderError
from rinkreel.schemas import Caption


def test_format_srt_time():
    assert format_srt_time(0) == "00:00:00,000"
    assert format_srt_time(3_723_045) == "01:02:03,045"
    assert format_srt_time(-5) == "00:00:00,000"


def test_render_srt_numbers_blocks():
    srt = render_srt([Caption(start_ms=0, end_ms=5_000, text="faceoff"), Caption(start_ms=35_000, end_ms=40_000, text="goal")])

    assert srt == (
        "1\n00:00:00,000 --> 00:00:05,000\nfaceoff\n"
        "\n"
        "2\n00:00:35,000 --> 00:00:40,000\ngoal\n"
    )


def test_concat_command_reencodes_by_default():
    cmd = FfmpegEncoder().concat_command(Path("list.txt"), Path("out.mp4"))

    assert cmd[0] == "ffmpeg"
    assert ["-f", "concat", "-safe", "0"] == cmd[cmd.index("-f"):cmd.index("-f") + 4]
    assert "libx264" in cmd
    assert cmd[-1] == "out.mp4"


def test_concat_command_stream_copy():
    cmd = FfmpegEncoder(reencode=False).concat_command(Path("list.txt"), Path("out.mp4"))

    assert ["-c", "copy"] == cmd[cmd.index("-c"):cmd.index("-c") + 2]
    assert "libx264" not in cmd


def test_captions_command_uses_subtitles_filter():
    encoder = FfmpegEncoder(caption_style="FontSize=24")
    cmd = encoder.captions_command(Path("in.mp4"), Path("C:/work/final.srt"), Path("final.mp4"))

    vf = cmd[cmd.index("-vf") + 1]
    assert vf == "subtitles=C\\:/work/final.srt:force_style='FontSize=24'"
    assert cmd[cmd.index("-c:a") + 1] == "copy"


def test_media_info_from_probe():
    info = media_info_from_probe(
        {
            "format": {"duration": "61.5", "size": "2048"},
            "streams": [{"codec_type": "audio"}, {"codec_type": "video", "width": 1920, "height": 1080}],
        }
    )

    assert info.duration_ms == 61_500
    assert info.resolution == "1920x1080"
    assert info.size_bytes == 2048


def test_media_info_tolerates_missing_fields():
    info = media_info_from_probe({"format": {"duration": "N/A"}})

    assert info.duration_ms == 0
    assert info.resolution == "unknown"


def test_missing_binary_is_encoder_error(tmp_path):
    encoder = FfmpegEncoder(ffmpeg_bin=str(tmp_path / "no-such-ffmpeg"))
    source = tmp_path / "a.mp4"
    source.write_bytes(b"x")

    with pytest.raises(EncoderError, match="was not found"):
        asyncio.run(encoder.concatenate([source], tmp_path / "out.mp4"))
    assert not (tmp_path / "out.mp4.list.txt").exists()
