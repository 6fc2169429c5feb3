import unittest

from src.checkpointer.observability.metrics import (
    LoggerBackend,
    MetricsCollector,
    NullBackend,
    get_global_collector,
)


class TestLoggerBackend(unittest.TestCase):
    def test_increment_counter(self):
        backend = LoggerBackend()
        backend.increment("test_counter", 1)
        backend.increment("test_counter", 2, tags={"status": "ok"})

        counters = backend.get_summary()["counters"]

        self.assertEqual(counters["test_counter"], 1)
        self.assertEqual(counters["test_counter[status=ok]"], 2)

    def test_tags_are_sorted(self):
        backend = LoggerBackend()
        backend.increment("c", tags={"z": "1", "a": "2"})

        self.assertIn("c[a=2,z=1]", backend.get_summary()["counters"])

    def test_timing(self):
        backend = LoggerBackend()
        backend.timing("test_timer", 100)
        backend.timing("test_timer", 200)

        timings = backend.get_summary()["timings"]

        self.assertEqual(timings["test_timer"]["count"], 2)
        self.assertEqual(timings["test_timer"]["avg"], 150.0)
        self.assertEqual(timings["test_timer"]["min"], 100)
        self.assertEqual(timings["test_timer"]["max"], 200)


class TestMetricsCollector(unittest.TestCase):
    def test_singleton(self):
        c1 = get_global_collector()
        c2 = get_global_collector()
        self.assertIs(c1, c2)

    def test_count_capture(self):
        collector = MetricsCollector(backend="logger")
        collector.count_capture("captured", "Fields")
        collector.count_capture("captured", "Fields")
        collector.count_capture("lost", "Views")

        counters = collector.get_summary()["counters"]

        self.assertEqual(counters["checkpoint_capture_total[outcome=captured,table=Fields]"], 2)
        self.assertEqual(counters["checkpoint_capture_total[outcome=lost,table=Views]"], 1)

    def test_count_transition_and_replay(self):
        collector = MetricsCollector()
        collector.count_transition("active", "historical")
        collector.count_replay("success", 3)
        collector.count_replay("success", 2)
        collector.count_session_warning("nested_begin")
        collector.record_replay_latency(12.5)

        summary = collector.get_summary()

        self.assertEqual(
            summary["counters"]["checkpoint_transition_total[from=active,to=historical]"], 1
        )
        self.assertEqual(summary["counters"]["checkpoint_replay_entries_total[status=success]"], 5)
        self.assertEqual(
            summary["counters"]["checkpoint_session_warning_total[reason=nested_begin]"], 1
        )
        self.assertEqual(summary["timings"]["checkpoint_replay_duration_ms"]["count"], 1)

    def test_null_backend(self):
        collector = MetricsCollector(backend="none")
        collector.count_capture("captured", "Fields")

        self.assertIsInstance(collector.backend, NullBackend)
        self.assertEqual(collector.get_summary(), {})

    def test_unknown_backend_defaults_to_logger(self):
        collector = MetricsCollector(backend="statsd")

        self.assertIsInstance(collector.backend, LoggerBackend)
