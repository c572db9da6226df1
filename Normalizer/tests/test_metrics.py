"""Metrics collector tests."""


class TestNormalizerMetrics:

    def test_counters_and_rates(self):
        from normalizer.metrics import NormalizerMetrics
        metrics = NormalizerMetrics()
        metrics.record_received("FLEET_MDM_EVENT")
        metrics.record_received("FLEET_MDM_EVENT")
        metrics.record_normalized(unknown=False)
        metrics.record_normalized(unknown=True)
        metrics.record_sink_write(success=True)
        metrics.record_sink_write(success=False)
        metrics.record_sink_write(success=True, filtered=True)

        summary = metrics.get_summary()
        assert summary["by_message_type"] == {"FLEET_MDM_EVENT": 2}
        assert summary["unknown_rate"] == 0.5
        assert summary["write_success_rate"] == 0.5
        assert summary["sink_writes_filtered"] == 1

    def test_latency_percentiles(self):
        from normalizer.metrics import NormalizerMetrics
        metrics = NormalizerMetrics()
        for value in range(1, 101):
            metrics.record_latency(float(value))
        summary = metrics.get_summary()
        assert summary["avg_latency_ms"] == 50.5
        assert summary["p50_latency_ms"] == 51.0
        assert summary["p95_latency_ms"] == 96.0

    def test_error_window_keeps_last_ten(self):
        from normalizer.metrics import NormalizerMetrics
        metrics = NormalizerMetrics()
        for i in range(15):
            metrics.record_error("sink_write", f"error {i}")
        assert len(metrics.recent_errors) == 10
        assert metrics.recent_errors[0]["message"] == "error 5"

    def test_reset_keeps_rolling_windows(self):
        from normalizer.metrics import NormalizerMetrics
        metrics = NormalizerMetrics()
        metrics.record_received("MESHCENTRAL_EVENT")
        metrics.record_latency(3.0)
        metrics.reset()
        assert metrics.records_received == 0
        assert metrics.by_message_type == {}
        assert metrics.processing_latencies_ms == [3.0]
