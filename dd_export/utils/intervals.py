"""
Interval Partitioner

Splits a query time range into consecutive sub-ranges so each one can be
fetched by its own worker.
"""

from dd_export.utils.schemas import Interval

DEFAULT_PARTITION_COUNT = 10
DEFAULT_MIN_SPAN_MS = 10 * 60 * 1000


def partition_interval(
    from_ms: int,
    to_ms: int,
    count: int = DEFAULT_PARTITION_COUNT,
    min_span_ms: int = DEFAULT_MIN_SPAN_MS,
) -> list[Interval]:
    """
    Split [from_ms, to_ms] into `count` consecutive intervals.

    Ranges shorter than `min_span_ms` (or than `count` milliseconds) are
    returned whole. Otherwise the range is cut every `(to_ms - from_ms) // count`
    milliseconds and the last interval is stretched to end exactly at `to_ms`
    to absorb the division remainder.
    Bounds are inclusive, so each interval starts one millisecond after the
    previous one ends and no timestamp belongs to two intervals.

    Args:
        from_ms: Range start in epoch milliseconds
        to_ms: Range end in epoch milliseconds
        count: Number of partitions for ranges above the threshold
        min_span_ms: Smallest range worth partitioning

    Returns:
        Intervals ordered by start time

    Raises:
        ValueError: If count is not positive or the range is inverted
    """
    if count < 1:
        raise ValueError(f"partition count must be positive, got {count}")
    if from_ms > to_ms:
        raise ValueError(f"invalid range: {from_ms} > {to_ms}")

    span = to_ms - from_ms
    # Too short to split into non-empty steps
    if span < min_span_ms or span < count:
        return [Interval(from_ms=from_ms, to_ms=to_ms)]

    step = span // count
    intervals = []
    start = from_ms
    for index in range(1, count + 1):
        end = from_ms + index * step
        intervals.append(Interval(from_ms=start, to_ms=end))
        start = end + 1

    intervals[-1] = Interval(from_ms=intervals[-1].from_ms, to_ms=to_ms)
    return intervals
