"""Tests for node id generation."""

from __future__ import annotations

import re
import threading
from datetime import datetime, timedelta, timezone

from libreta.ids import NodeIDGenerator
from tests.conftest import FixedClock

_ID_RE = re.compile(r"^\d{8}-\d{6}(-\d+)?$")


class TestNodeIDGenerator:
    """Ids are second-resolution timestamps with a same-second counter."""

    def test_format(self) -> None:
        gen = NodeIDGenerator(FixedClock(datetime(2024, 1, 5, 14, 30, 0)))
        assert gen.generate() == "20240105-143000"

    def test_real_clock_format(self) -> None:
        assert _ID_RE.match(NodeIDGenerator().generate())

    def test_same_second_counter(self) -> None:
        gen = NodeIDGenerator(FixedClock(datetime(2024, 1, 5, 14, 30, 0)))
        assert [gen() for _ in range(3)] == [
            "20240105-143000",
            "20240105-143000-1",
            "20240105-143000-2",
        ]

    def test_counter_resets_on_new_second(self) -> None:
        clock = FixedClock(datetime(2024, 1, 5, 14, 30, 0))
        gen = NodeIDGenerator(clock)
        gen()
        gen()
        clock.now += timedelta(seconds=1)
        assert gen() == "20240105-143001"
        assert gen() == "20240105-143001-1"

    def test_ids_sort_by_time(self) -> None:
        clock = FixedClock(datetime(2024, 1, 5, 14, 30, 0))
        gen = NodeIDGenerator(clock)
        ids = []
        for _ in range(3):
            ids.append(gen())
            ids.append(gen())
            clock.now += timedelta(seconds=1)
        assert ids == sorted(ids)

    def test_generators_are_independent(self) -> None:
        clock = FixedClock(datetime(2024, 1, 5, 14, 30, 0))
        first, second = NodeIDGenerator(clock), NodeIDGenerator(clock)
        assert first() == second() == "20240105-143000"

    def test_unique_across_threads(self) -> None:
        gen = NodeIDGenerator(FixedClock(datetime(2024, 1, 5, 14, 30, 0)))
        results: list[str] = []
        lock = threading.Lock()

        def _worker() -> None:
            for _ in range(50):
                node_id = gen()
                with lock:
                    results.append(node_id)

        threads = [threading.Thread(target=_worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(results) == 400
        assert len(set(results)) == 400

    def test_clock_stepping_back_never_repeats(self) -> None:
        clock = FixedClock(datetime(2024, 1, 5, 1, 30, 0))
        gen = NodeIDGenerator(clock)
        ids = [gen()]
        clock.now = datetime(2024, 1, 5, 1, 59, 59)
        ids.append(gen())
        clock.now = datetime(2024, 1, 5, 1, 30, 0)
        ids.append(gen())
        assert ids == ["20240105-013000", "20240105-015959", "20240105-015959-1"]
        assert len(set(ids)) == 3

    def test_counter_resets_once_clock_catches_up(self) -> None:
        clock = FixedClock(datetime(2024, 1, 5, 14, 30, 5))
        gen = NodeIDGenerator(clock)
        gen()
        clock.now = datetime(2024, 1, 5, 14, 30, 1)
        assert gen() == "20240105-143005-1"
        clock.now = datetime(2024, 1, 5, 14, 30, 6)
        assert gen() == "20240105-143006"

    def test_aware_clock_formatted_in_utc(self) -> None:
        plus_two = timezone(timedelta(hours=2))
        gen = NodeIDGenerator(FixedClock(datetime(2024, 1, 5, 14, 30, 0, tzinfo=plus_two)))
        assert gen() == "20240105-123000"

    def test_dst_fall_back_stays_unique(self) -> None:
        """Local 01:30 repeats across a fall-back; UTC stamps do not."""
        cest, cet = timezone(timedelta(hours=2)), timezone(timedelta(hours=1))
        clock = FixedClock(datetime(2024, 10, 27, 1, 30, 0, tzinfo=cest))
        gen = NodeIDGenerator(clock)
        before = gen()
        clock.now = datetime(2024, 10, 27, 1, 30, 0, tzinfo=cet)
        after = gen()
        assert (before, after) == ("20241026-233000", "20241027-003000")
