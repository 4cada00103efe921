import unittest

from teelottery.errors import InvalidConfiguration
from teelottery.lottery.windows import (
    calculate_time_windows,
    format_minutes_12h,
    is_lottery_available,
    parse_time_to_minutes,
    window_for_minutes,
    windows_for_config,
)
from teelottery.models import ConfigType, TeesheetConfig, TimeWindow


def _config(config_type=ConfigType.REGULAR, start="06:00", end="18:00") -> TeesheetConfig:
    return TeesheetConfig(
        club_id="c",
        name="cfg",
        config_type=config_type,
        start_time=start,
        end_time=end,
        interval_minutes=10,
        max_members_per_block=4,
    )


class CalculateTimeWindowsTests(unittest.TestCase):
    def test_regular_day_splits_into_four_equal_windows(self) -> None:
        windows = calculate_time_windows("06:00", "18:00")
        self.assertEqual(
            [w.value for w in windows],
            [TimeWindow.MORNING, TimeWindow.MIDDAY, TimeWindow.AFTERNOON, TimeWindow.EVENING],
        )
        self.assertEqual(
            [(w.start_minutes, w.end_minutes) for w in windows],
            [(360, 540), (540, 720), (720, 900), (900, 1080)],
        )
        self.assertEqual(windows[0].time_range, "6:00 AM - 9:00 AM")
        self.assertEqual(windows[3].time_range, "3:00 PM - 6:00 PM")
        self.assertEqual(windows[0].label, "Morning")
        self.assertEqual(windows[3].description, "Latest times")

    def test_remainder_goes_to_last_window(self) -> None:
        windows = calculate_time_windows("06:00", "18:03")
        self.assertEqual([w.duration for w in windows], [180, 180, 180, 183])
        self.assertEqual(windows[-1].end_minutes, 1083)

    def test_windows_tile_the_day_exactly(self) -> None:
        for start, end in (("05:30", "19:47"), ("07:00", "07:07"), ("00:00", "24:00")):
            windows = calculate_time_windows(start, end)
            self.assertEqual(windows[0].start_minutes, parse_time_to_minutes(start))
            self.assertEqual(
                windows[-1].end_minutes, parse_time_to_minutes(end, allow_end_of_day=True)
            )
            for left, right in zip(windows, windows[1:]):
                self.assertEqual(left.end_minutes, right.start_minutes)

    def test_start_not_before_end_raises(self) -> None:
        with self.assertRaises(InvalidConfiguration):
            calculate_time_windows("18:00", "06:00")
        with self.assertRaises(InvalidConfiguration):
            calculate_time_windows("08:00", "08:00")

    def test_unparsable_times_raise(self) -> None:
        for bad in ("25:00", "7pm", "06:60", "", "6"):
            with self.subTest(bad=bad), self.assertRaises(InvalidConfiguration):
                calculate_time_windows(bad, "18:00")


class WindowHelpersTests(unittest.TestCase):
    def test_format_minutes_12h(self) -> None:
        self.assertEqual(format_minutes_12h(0), "12:00 AM")
        self.assertEqual(format_minutes_12h(720), "12:00 PM")
        self.assertEqual(format_minutes_12h(780), "1:00 PM")
        self.assertEqual(format_minutes_12h(365), "6:05 AM")

    def test_window_for_minutes(self) -> None:
        windows = calculate_time_windows("06:00", "18:00")
        self.assertEqual(window_for_minutes(windows, 360), TimeWindow.MORNING)
        self.assertEqual(window_for_minutes(windows, 539), TimeWindow.MORNING)
        self.assertEqual(window_for_minutes(windows, 540), TimeWindow.MIDDAY)
        self.assertEqual(window_for_minutes(windows, 1080), TimeWindow.EVENING)
        self.assertIsNone(window_for_minutes(windows, 359))
        self.assertIsNone(window_for_minutes([], 600))

    def test_custom_config_has_no_lottery(self) -> None:
        custom = _config(ConfigType.CUSTOM, start=None, end=None)
        self.assertFalse(is_lottery_available(custom))
        self.assertEqual(windows_for_config(custom), [])
        self.assertEqual(windows_for_config(None), [])

    def test_regular_config_without_hours_raises(self) -> None:
        with self.assertRaises(InvalidConfiguration):
            windows_for_config(_config(start=None))

    def test_time_window_parse(self) -> None:
        self.assertIs(TimeWindow.parse(" morning "), TimeWindow.MORNING)
        self.assertIs(TimeWindow.parse(TimeWindow.EVENING), TimeWindow.EVENING)
        with self.assertRaises(ValueError):
            TimeWindow.parse("NIGHT")


if __name__ == "__main__":
    unittest.main()
