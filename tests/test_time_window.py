"""Tests for time_window.py: window selection."""

import itertools

import pytest

from activitystats.time_window import (
    TIME_1_HOUR_MS,
    TIME_7_DAYS_MS,
    TIME_24_HOUR_MS,
    TimeCategory,
    TimeWindow,
    TimeWindowStore,
    now_ms,
)


class TestTimeCategory:
    def test_durations(self):
        assert TimeCategory.ONE_HOUR.duration_ms == 3_600_000
        assert TimeCategory.TWENTY_FOUR_HOUR.duration_ms == 86_400_000
        assert TimeCategory.SEVEN_DAYS.duration_ms == 604_800_000

    def test_lookup_by_value(self):
        assert TimeCategory("24h") is TimeCategory.TWENTY_FOUR_HOUR


class TestTimeWindow:
    def test_valid(self):
        assert TimeWindow(1, 2).is_valid
        assert TimeWindow(2, 2).is_valid
        assert not TimeWindow(3, 2).is_valid

    def test_immutable(self):
        window = TimeWindow(1, 2)
        with pytest.raises(AttributeError):
            window.start = 0


class TestTimeWindowStore:
    def test_unset_until_selected(self):
        assert TimeWindowStore().window is None

    @pytest.mark.parametrize("category,duration", [
        (TimeCategory.ONE_HOUR, TIME_1_HOUR_MS),
        (TimeCategory.TWENTY_FOUR_HOUR, TIME_24_HOUR_MS),
        (TimeCategory.SEVEN_DAYS, TIME_7_DAYS_MS),
    ])
    def test_window_spans_duration(self, category, duration):
        store = TimeWindowStore(clock=lambda: 10_000_000_000)
        window = store.select(category)
        assert window.end == 10_000_000_000
        assert window.end - window.start == duration
        assert store.window == window

    def test_repeated_selection_slides(self):
        store = TimeWindowStore(clock=itertools.count(5_000_000, 250).__next__)
        first = store.select(TimeCategory.ONE_HOUR)
        second = store.select(TimeCategory.ONE_HOUR)
        assert second.start == first.start + 250
        assert second.end == first.end + 250
        assert second.end - second.start == TIME_1_HOUR_MS

    def test_listeners_get_new_window(self):
        store = TimeWindowStore(clock=lambda: 7_200_000)
        seen = []
        store.add_listener(seen.append)
        window = store.select(TimeCategory.ONE_HOUR)
        assert seen == [window]
        assert window == TimeWindow(start=3_600_000, end=7_200_000)

    def test_removed_listener_is_not_called(self):
        store = TimeWindowStore(clock=lambda: 7_200_000)
        seen = []
        store.add_listener(seen.append)
        store.remove_listener(seen.append)
        store.remove_listener(seen.append)
        store.select(TimeCategory.ONE_HOUR)
        assert seen == []

    def test_default_clock_is_epoch_ms(self):
        before = now_ms()
        window = TimeWindowStore().select(TimeCategory.ONE_HOUR)
        assert before <= window.end <= now_ms()
