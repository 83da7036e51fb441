from __future__ import annotations

from datetime import datetime, timezone

import pytest


def make_listen(ts: str, artist: str | None, track: str | None, ms: int | None) -> dict:
    """Create a listen row the way the store returns it."""
    return {
        "ts": datetime.fromisoformat(ts).replace(tzinfo=timezone.utc),
        "artist": artist,
        "track": track,
        "ms_played": ms,
    }


@pytest.fixture
def worked_example_rows() -> list[dict]:
    """Four listens: 1.0h Artist B, 0.5h + 0.25h Artist A, 0.667h Artist C."""
    return [
        make_listen("2024-01-15T10:00:00", "Artist B", "Track 1", 3_600_000),
        make_listen("2024-01-20T08:00:00", "Artist A", "Track 2", 1_800_000),
        make_listen("2024-01-21T21:30:00", "Artist A", "Track 3", 900_000),
        make_listen("2023-12-25T12:00:00", "Artist C", "Track 4", 2_401_200),
    ]
