from core.progress import ProgressTracker, clamp_progress, parse_duration, parse_time


def test_clamp_progress_caps_at_99_until_completion() -> None:
    assert clamp_progress(0.0) == 0.0
    assert clamp_progress(0.5) == 50.0
    assert clamp_progress(0.995) == 99.0
    assert clamp_progress(1.7) == 99.0


def test_clamp_progress_floors_negative_fractions() -> None:
    assert clamp_progress(-0.2) == 0.0


def test_tracker_drops_values_that_move_backwards() -> None:
    seen = []
    tracker = ProgressTracker(seen.append)

    tracker.update(0.2)
    tracker.update(0.6)
    assert tracker.update(0.4) is False
    tracker.update(2.0)

    assert seen == [20.0, 60.0, 99.0]


def test_tracker_only_reports_100_on_finish() -> None:
    seen = []
    tracker = ProgressTracker(seen.append)

    tracker.update(1.0)
    tracker.finish()
    tracker.update(0.5)

    assert seen == [99.0, 100.0]


def test_parse_duration_from_input_header() -> None:
    line = "Duration: 00:01:02.50, start: 0.000000, bitrate: 1205 kb/s"

    assert parse_duration(line) == 62.5
    assert parse_duration("Duration: N/A, bitrate: N/A") is None


def test_parse_time_from_stats_line() -> None:
    line = "frame=  123 fps= 45 q=28.0 size=    1024kB time=00:00:05.12 bitrate=1638.4kbits/s speed=1.8x"

    assert parse_time(line) == 5.12
    assert parse_time("Stream mapping:") is None


def test_parse_time_handles_negative_timestamps() -> None:
    assert parse_time("size=0kB time=-00:00:00.02 bitrate=N/A") == -0.02
