"""
HLS master playlist generation.
"""

from typing import List, Sequence

from .models import StreamResult

HEADER = "#EXTM3U"

# Placeholder step for positional bandwidth hints (bits/s)
BANDWIDTH_STEP = 1_000_000


def positional_bandwidth(position: int) -> int:
    """Bandwidth hint for the 1-indexed ladder position."""
    return position * BANDWIDTH_STEP


def build_manifest(
    results: Sequence[StreamResult],
    use_measured_bandwidth: bool = False
) -> str:
    """
    Render a master playlist for results already in ladder order.

    The i-th entry gets ``i * 1_000_000`` as its BANDWIDTH unless
    ``use_measured_bandwidth`` is set and the result carries a measured value.
    """
    lines: List[str] = [HEADER]

    for position, result in enumerate(results, start=1):
        if not result.succeeded:
            raise ValueError(
                f"Cannot reference failed stream {result.resolution.label} in master playlist"
            )

        bandwidth = positional_bandwidth(position)
        if use_measured_bandwidth and result.bandwidth:
            bandwidth = result.bandwidth

        lines.append(
            f"#EXT-X-STREAM-INF:BANDWIDTH={bandwidth},"
            f"RESOLUTION={result.resolution.dimensions}"
        )
        lines.append(result.playlist_url)

    return "\n".join(lines) + "\n"
