"""Tests for the diagnostics sink."""

import logging

from offline_layer.utils.diagnostics import Diagnostics


class TestDiagnostics:
    def test_emit_records_event(self):
        diagnostics = Diagnostics()
        event = diagnostics.emit("probe.timeout", "Probe timed out", url="http://x")

        assert diagnostics.events() == [event]
        assert event.kind == "probe.timeout"
        assert event.details == {"url": "http://x"}

    def test_filter_and_count(self):
        diagnostics = Diagnostics()
        diagnostics.emit("a", "one")
        diagnostics.emit("b", "two")
        diagnostics.emit("a", "three")

        assert [e.message for e in diagnostics.events("a")] == ["one", "three"]
        assert diagnostics.count("b") == 1
        assert diagnostics.count("missing") == 0

    def test_history_is_bounded(self):
        diagnostics = Diagnostics(history_size=3)
        for i in range(5):
            diagnostics.emit("n", str(i))
        assert [e.message for e in diagnostics.events()] == ["2", "3", "4"]

    def test_listeners(self):
        diagnostics = Diagnostics()
        seen = []
        diagnostics.add_listener(seen.append)
        diagnostics.emit("a", "one")
        diagnostics.remove_listener(seen.append)
        diagnostics.remove_listener(seen.append)
        diagnostics.emit("a", "two")

        assert [e.message for e in seen] == ["one"]

    def test_failing_listener_does_not_propagate(self):
        diagnostics = Diagnostics()
        seen = []

        def broken(event):
            raise RuntimeError("listener down")

        diagnostics.add_listener(broken)
        diagnostics.add_listener(seen.append)
        diagnostics.emit("a", "one")

        assert len(seen) == 1

    def test_logged_as_warning(self, caplog):
        with caplog.at_level(logging.WARNING, logger="offline_layer.diagnostics"):
            Diagnostics().emit("cache.store_failed", "Could not cache response")
        assert "[cache.store_failed] Could not cache response" in caplog.text

    def test_clear(self):
        diagnostics = Diagnostics()
        diagnostics.emit("a", "one")
        diagnostics.clear()
        assert diagnostics.events() == []
