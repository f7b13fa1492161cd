"""Stitch downloaded segments and burn comment captions on top."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Sequence

from .encoder import MediaEncoder
from .errors import AssemblyFailed, OverlayFailed, RinkReelError
from .schemas import Caption, Comment, MediaInfo, Segment

logger = logging.getLogger(__name__)

DEFAULT_CAPTION_MS = 5_000


def caption_text(comment: Comment) -> str:
    text = comment.text.strip()
    if comment.game_time:
        return f"[{comment.game_time.strip()}] {text}"
    return text


def build_captions(segments: Sequence[Segment], caption_ms: int = DEFAULT_CAPTION_MS) -> List[Caption]:
    """One caption per comment, timed on the stitched video's timeline.

    Segments play back to back, so a comment shows at the running offset of
    its segment plus its distance from the segment start. A comment sitting on
    the segment's end boundary is pulled back so its caption closes with the clip.
    """

    captions: List[Caption] = []
    offset = 0
    for segment in segments:
        for comment in segment.comments:
            relative = comment.timestamp - segment.start_ms
            if relative >= segment.duration_ms:
                relative = max(0, segment.duration_ms - caption_ms)
            start = offset + relative
            captions.append(Caption(start_ms=start, end_ms=start + caption_ms, text=caption_text(comment)))
        offset += segment.duration_ms
    return captions


class VideoAssembler:
    def __init__(self, encoder: MediaEncoder, *, caption_ms: int = DEFAULT_CAPTION_MS) -> None:
        self.encoder = encoder
        self.caption_ms = caption_ms

    async def stitch(self, segments: Sequence[Segment], output_path: Path | str) -> Path:
        """Concatenate segment artifacts, in the given order, into a new file."""

        if not segments:
            raise AssemblyFailed("No segments to stitch")

        inputs: List[Path] = []
        for segment in segments:
            if not segment.artifact_path:
                raise AssemblyFailed(f"Segment {segment.id} has no downloaded artifact")
            path = Path(segment.artifact_path)
            if not path.exists():
                raise AssemblyFailed(f"Segment {segment.id} artifact is missing: {path}")
            inputs.append(path)

        output = Path(output_path)
        logger.info("stitch_start", extra={"segments": len(inputs), "output": str(output)})
        try:
            result = await self.encoder.concatenate(inputs, output)
        except (RinkReelError, OSError) as exc:
            raise AssemblyFailed(f"Failed to stitch video segments: {exc}") from exc
        logger.info("stitch_ok", extra={"output": str(result)})
        return Path(result)

    async def overlay(
        self,
        stitched_path: Path | str,
        segments: Sequence[Segment],
        output_path: Path | str,
    ) -> Path:
        """Burn comment captions into a copy of the stitched video.

        The stitched file is only read; it stays usable if this step fails.
        """

        captions = build_captions(segments, self.caption_ms)
        output = Path(output_path)
        logger.info("overlay_start", extra={"captions": len(captions), "output": str(output)})
        try:
            result = await self.encoder.burn_captions(Path(stitched_path), captions, output)
        except (RinkReelError, OSError) as exc:
            raise OverlayFailed(f"Failed to add comment overlays: {exc}") from exc
        logger.info("overlay_ok", extra={"output": str(result)})
        return Path(result)

    async def probe(self, path: Path | str) -> MediaInfo:
        return await self.encoder.probe(Path(path))
