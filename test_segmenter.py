"""Tests for grouping comments into download windows."""

import pytest

from rinkreel.errors import ValidationError
from rinkreel.schemas import Comment
from rinkreel.segmenter import build_segments


def _comments(*timestamps):
    return [Comment(id=f"c{i}", timestamp=ts, text=f"t{i}") for i, ts in enumerate(timestamps)]


def test_two_windows_from_three_comments():
    segments = build_segments("s1", _comments(0, 10_000, 40_000), 30_000)

    assert [(s.start_ms, s.end_ms) for s in segments] == [(0, 30_000), (40_000, 70_000)]
    assert [c.id for c in segments[0].comments] == ["c0", "c1"]
    assert [c.id for c in segments[1].comments] == ["c2"]
    assert all(s.session_id == "s1" and s.status == "pending" for s in segments)


def test_empty_comments_produce_no_segments():
    assert build_segments("s1", [], 30_000) == []


def test_unsorted_input_is_ordered_and_windows_do_not_overlap():
    segments = build_segments("s1", _comments(95_000, 5_000, 31_000, 34_000, 61_000), 30_000)

    assert [s.start_ms for s in segments] == [5_000, 61_000, 95_000]
    for earlier, later in zip(segments, segments[1:]):
        assert earlier.end_ms < later.start_ms


def test_every_comment_lands_in_exactly_one_segment():
    comments = _comments(0, 1, 29_999, 30_000, 30_001, 120_000, 120_000)
    segments = build_segments("s1", comments, 30_000)

    seen = [c.id for s in segments for c in s.comments]
    assert sorted(seen) == sorted(c.id for c in comments)
    assert len(seen) == len(set(seen))
    for segment in segments:
        for comment in segment.comments:
            assert segment.start_ms <= comment.timestamp <= segment.end_ms


def test_comment_on_window_boundary_joins_open_segment():
    segments = build_segments("s1", _comments(0, 30_000), 30_000)

    assert [(s.start_ms, s.end_ms) for s in segments] == [(0, 30_000)]
    assert [c.id for c in segments[0].comments] == ["c0", "c1"]


def test_comment_past_window_boundary_starts_new_segment():
    segments = build_segments("s1", _comments(0, 30_001), 30_000)

    assert [(s.start_ms, s.end_ms) for s in segments] == [(0, 30_000), (30_001, 60_001)]


def test_equal_timestamps_keep_input_order():
    comments = [
        Comment(id="b", timestamp=500, text="second"),
        Comment(id="a", timestamp=500, text="first"),
    ]
    segments = build_segments("s1", comments, 30_000)

    assert [c.id for c in segments[0].comments] == ["b", "a"]


def test_segment_ids_are_stable_across_runs():
    comments = _comments(0, 40_000)

    first = [s.id for s in build_segments("s1", comments, 30_000)]
    second = [s.id for s in build_segments("s1", comments, 30_000)]
    assert first == second == ["segment_c0", "segment_c1"]


def test_window_must_be_positive():
    with pytest.raises(ValidationError):
        build_segments("s1", _comments(0), 0)
