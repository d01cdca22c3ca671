"""MetricsCollector tests: counters, category labels, latency summaries, thread safety."""

import threading

from phi_guard.observability.metrics import MetricsCollector


def test_metrics_counter_increment():
    """Counter increments correctly."""
    m = MetricsCollector()
    m.increment("audit_records_written")
    m.increment("audit_records_written", 2)
    assert m.export_metrics()["counters"]["audit_records_written"] == 3
    assert m.count("audit_records_written") == 3


def test_metrics_count_by_category():
    """Decisions are counted per outcome category."""
    m = MetricsCollector()
    m.increment("decisions", category="denied")
    m.increment("decisions", category="denied")
    m.increment("decisions", category="success")
    out = m.export_metrics()
    assert out["counters_by_label"]["decisions"] == {"denied": 2, "success": 1}
    assert m.count("decisions", "denied") == 2
    assert m.count("decisions", "failure") == 0


def test_metrics_latency_summary_per_operation():
    m = MetricsCollector()
    m.observe_latency("mediate_latency_ms", 10.5, operation="PHI_READ")
    m.observe_latency("mediate_latency_ms", 20.0, operation="PHI_READ")
    m.observe_latency("mediate_latency_ms", 3.0, operation="AUDIT_VIEW")
    histograms = m.export_metrics()["histograms"]
    read = histograms["mediate_latency_ms:operation=PHI_READ"]
    assert read == {"count": 2, "sum": 30.5, "max": 20.0}
    assert histograms["mediate_latency_ms:operation=AUDIT_VIEW"]["count"] == 1


def test_metrics_thread_safe():
    """Concurrent increments are safe."""
    m = MetricsCollector()

    def inc():
        for _ in range(100):
            m.increment("alerts_raised", category="DENIED_BURST")

    threads = [threading.Thread(target=inc) for _ in range(10)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert m.count("alerts_raised", "DENIED_BURST") == 1000


def test_metrics_reset():
    """Reset clears all metrics."""
    m = MetricsCollector()
    m.increment("x")
    m.increment("y", category="z")
    m.observe_latency("w", 1.0)
    m.reset()
    out = m.export_metrics()
    assert out == {"counters": {}, "counters_by_label": {}, "histograms": {}}
