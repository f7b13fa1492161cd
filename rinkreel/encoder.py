"""ffmpeg/ffprobe adapter that concatenates media and burns in captions."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import shlex
from pathlib import Path
from typing import List, Optional, Protocol, Sequence

from .errors import EncoderError
from .schemas import Caption, MediaInfo

logger = logging.getLogger(__name__)


class MediaEncoder(Protocol):
    """Interface for the external tool doing the actual decode/encode work."""

    async def concatenate(self, inputs: Sequence[Path], output: Path) -> Path:
        """Join ``inputs`` in order into a new file at ``output``."""

    async def burn_captions(self, source: Path, captions: Sequence[Caption], output: Path) -> Path:
        """Render ``captions`` onto ``source`` into a new file at ``output``."""

    async def probe(self, path: Path) -> MediaInfo:
        """Return duration, resolution and size of ``path``."""


def format_srt_time(milliseconds: int) -> str:
    milliseconds = max(0, int(milliseconds))
    total_seconds, ms = divmod(milliseconds, 1000)
    hours, remainder = divmod(total_seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d},{ms:03d}"


def render_srt(captions: Sequence[Caption]) -> str:
    blocks: List[str] = []
    for index, caption in enumerate(captions, start=1):
        text = caption.text.replace("\r\n", "\n").strip() or " "
        blocks.append(
            f"{index}\n"
            f"{format_srt_time(caption.start_ms)} --> {format_srt_time(caption.end_ms)}\n"
            f"{text}\n"
        )
    return "\n".join(blocks)


def _write_concat_list(paths: Sequence[Path], list_path: Path) -> None:
    """Write an ffmpeg concat list file referencing each input path."""

    with open(list_path, "w", encoding="utf-8") as fh:
        for path in paths:
            fh.write(f"file {shlex.quote(str(Path(path).resolve()))}\n")


def _subtitles_filter_path(path: Path) -> str:
    # libavfilter option syntax treats ':' and '\'' as separators
    return str(path).replace("\\", "/").replace(":", "\\:").replace("'", "\\'")


def _ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


class FfmpegEncoder:
    def __init__(
        self,
        *,
        ffmpeg_bin: str = "ffmpeg",
        ffprobe_bin: str = "ffprobe",
        reencode: bool = True,
        vcodec: str = "libx264",
        preset: str = "medium",
        crf: int = 23,
        acodec: str = "aac",
        abitrate: str = "128k",
        caption_style: Optional[str] = None,
    ) -> None:
        self.ffmpeg_bin = ffmpeg_bin
        self.ffprobe_bin = ffprobe_bin
        self.reencode = reencode
        self.vcodec = vcodec
        self.preset = preset
        self.crf = crf
        self.acodec = acodec
        self.abitrate = abitrate
        self.caption_style = caption_style

    async def _run(self, cmd: List[str]) -> bytes:
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            raise EncoderError(
                f"{cmd[0]} executable was not found. Install FFmpeg so it is available on PATH."
            ) from exc
        out, err = await proc.communicate()
        if proc.returncode != 0:
            raise EncoderError(
                f"{os.path.basename(cmd[0])} error ({proc.returncode}): {err.decode(errors='ignore')[:400]}"
            )
        return out

    def concat_command(self, list_file: Path, output: Path) -> List[str]:
        cmd = [
            self.ffmpeg_bin,
            "-y",
            "-hide_banner",
            "-loglevel",
            "error",
            "-f",
            "concat",
            "-safe",
            "0",
            "-i",
            str(list_file),
        ]
        if self.reencode:
            cmd += [
                "-c:v",
                self.vcodec,
                "-preset",
                self.preset,
                "-crf",
                str(self.crf),
                "-c:a",
                self.acodec,
                "-b:a",
                self.abitrate,
            ]
        else:
            cmd += ["-c", "copy"]
        cmd += ["-movflags", "+faststart", str(output)]
        return cmd

    def captions_command(self, source: Path, subtitle_file: Path, output: Path) -> List[str]:
        vf = f"subtitles={_subtitles_filter_path(subtitle_file)}"
        if self.caption_style:
            vf += f":force_style='{self.caption_style}'"
        return [
            self.ffmpeg_bin,
            "-y",
            "-hide_banner",
            "-loglevel",
            "error",
            "-i",
            str(source),
            "-vf",
            vf,
            "-c:v",
            self.vcodec,
            "-preset",
            self.preset,
            "-crf",
            str(self.crf),
            "-c:a",
            "copy",
            "-movflags",
            "+faststart",
            str(output),
        ]

    async def concatenate(self, inputs: Sequence[Path], output: Path) -> Path:
        if not inputs:
            raise EncoderError("No inputs to concatenate")
        output = Path(output)
        _ensure_parent(output)
        list_file = output.with_name(output.name + ".list.txt")
        _write_concat_list(inputs, list_file)
        logger.info("encoder_concat", extra={"inputs": len(inputs), "output": str(output)})
        try:
            await self._run(self.concat_command(list_file, output))
        finally:
            try:
                list_file.unlink()
            except FileNotFoundError:
                pass
        return output

    async def burn_captions(self, source: Path, captions: Sequence[Caption], output: Path) -> Path:
        output = Path(output)
        _ensure_parent(output)
        subtitle_file = output.with_suffix(".srt")
        subtitle_file.write_text(render_srt(captions), encoding="utf-8")
        logger.info("encoder_captions", extra={"captions": len(captions), "output": str(output)})
        await self._run(self.captions_command(Path(source), subtitle_file, output))
        return output

    async def probe(self, path: Path) -> MediaInfo:
        out = await self._run(
            [
                self.ffprobe_bin,
                "-v",
                "error",
                "-print_format",
                "json",
                "-show_format",
                "-show_streams",
                str(path),
            ]
        )
        try:
            payload = json.loads(out or b"{}")
        except json.JSONDecodeError as exc:
            raise EncoderError("ffprobe returned invalid JSON output.") from exc
        return media_info_from_probe(payload)


def media_info_from_probe(payload: dict) -> MediaInfo:
    format_entry = payload.get("format") or {}
    video = next(
        (stream for stream in payload.get("streams") or [] if stream.get("codec_type") == "video"),
        None,
    )
    resolution = "unknown"
    if video and video.get("width") and video.get("height"):
        resolution = f"{video['width']}x{video['height']}"
    return MediaInfo(
        duration_ms=int(round(_to_float(format_entry.get("duration")) * 1000)),
        resolution=resolution,
        size_bytes=int(_to_float(format_entry.get("size"))),
    )


def _to_float(raw_value) -> float:
    if raw_value in (None, "N/A", ""):
        return 0.0
    try:
        return float(raw_value)
    except (TypeError, ValueError):
        return 0.0
