"""Course pacing browser-test helpers."""

__all__ = [
    "config",
    "waiting",
    "relative_time",
    "page_ready",
    "pace_contexts",
]
