"""Cut-range normalization and kept-segment derivation."""

from typing import Iterable

from cutlist.models import TimeRange, as_range

# Ranges this short (seconds) after clamping are dropped.
MIN_CUT_LENGTH = 0.001

# Cuts separated by a gap up to this size (seconds) are merged into one.
MERGE_TOLERANCE = 0.005


def normalize_cuts(
    cuts: Iterable[TimeRange | tuple[float, float]], duration: float
) -> list[TimeRange]:
    """Clamp, sort and merge cut ranges against ``[0, duration]``.

    Inverted pairs are swapped, endpoints are clamped into the timeline,
    ranges no longer than ``MIN_CUT_LENGTH`` are dropped, and ranges that
    overlap or sit within ``MERGE_TOLERANCE`` of each other are merged.
    Returns an empty list when ``duration`` is not positive.
    """
    if duration <= 0:
        return []

    clamped: list[TimeRange] = []
    for cut in cuts:
        r = as_range(cut)
        start, end = (r.end, r.start) if r.end < r.start else (r.start, r.end)
        start = max(start, 0.0)
        end = min(end, duration)
        if end > start + MIN_CUT_LENGTH:
            clamped.append(TimeRange(start=start, end=end))

    clamped.sort(key=lambda r: r.start)

    merged: list[TimeRange] = []
    for r in clamped:
        if merged and r.start <= merged[-1].end + MERGE_TOLERANCE:
            last = merged[-1]
            merged[-1] = TimeRange(start=last.start, end=max(last.end, r.end))
        else:
            merged.append(r)
    return merged


def kept_segments(cuts: list[TimeRange], duration: float) -> list[TimeRange]:
    """Return the complement of normalized ``cuts`` over ``[0, duration]``.

    An empty result means every second of the source was cut.
    """
    if duration <= 0:
        return []
    if not cuts:
        return [TimeRange(start=0.0, end=duration)]

    segments: list[TimeRange] = []
    cursor = 0.0
    for cut in cuts:
        if cut.start > cursor:
            segments.append(TimeRange(start=cursor, end=cut.start))
        cursor = cut.end

    if cursor < duration:
        segments.append(TimeRange(start=cursor, end=duration))
    return segments
