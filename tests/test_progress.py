"""Tests for vol2mesh.progress."""
from __future__ import annotations

import io
import logging

import pytest

from vol2mesh.progress import (
    CallbackProgress,
    LoggingProgress,
    NullProgress,
    ProgressEvent,
    ProgressReporter,
    RecordingProgress,
    TqdmProgress,
    ensure_reporter,
)


class TestProtocol:
    @pytest.mark.parametrize("reporter", [
        NullProgress(), CallbackProgress(lambda s, f: None), RecordingProgress(),
        LoggingProgress(), TqdmProgress(file=io.StringIO()),
    ])
    def test_implementations_satisfy_protocol(self, reporter):
        assert isinstance(reporter, ProgressReporter)

    def test_ensure_reporter_default(self):
        assert isinstance(ensure_reporter(None), NullProgress)

    def test_ensure_reporter_passthrough(self):
        rec = RecordingProgress()
        assert ensure_reporter(rec) is rec


class TestRecording:
    def test_records_and_clamps(self):
        rec = RecordingProgress()
        rec.update("a", -0.5)
        rec.update("a", 0.5)
        rec.update("b", 3.0)
        assert rec.events == [ProgressEvent("a", 0.0), ProgressEvent("a", 0.5), ProgressEvent("b", 1.0)]

    def test_stages_first_seen_order(self):
        rec = RecordingProgress()
        for stage in ["load", "extract", "load", "export"]:
            rec.update(stage, 1.0)
        assert rec.stages() == ["load", "extract", "export"]

    def test_fractions(self):
        rec = RecordingProgress()
        rec.update("x", 0.25)
        rec.update("y", 0.1)
        rec.update("x", 1.0)
        assert rec.fractions("x") == [0.25, 1.0]


class TestCallback:
    def test_forwards_clamped(self):
        seen = []
        cb = CallbackProgress(lambda stage, frac: seen.append((stage, frac)))
        cb.update("s", 1.5)
        assert seen == [("s", 1.0)]


class TestLogging:
    def test_throttled(self, caplog):
        log = logging.getLogger("vol2mesh.test_progress")
        rep = LoggingProgress(step=0.5, log=log)
        with caplog.at_level(logging.DEBUG, logger="vol2mesh.test_progress"):
            for i in range(11):
                rep.update("work", i / 10)
        messages = [r.getMessage() for r in caplog.records]
        assert messages == ["work: 0.0%", "work: 50.0%", "work: 100.0%"]


class TestTqdm:
    def test_one_bar_per_stage(self):
        out = io.StringIO()
        rep = TqdmProgress(file=out)
        rep.update("first", 0.3)
        assert rep._bar is not None and rep._bar.n == 30
        rep.update("second", 0.1)
        assert rep._bar.desc.startswith("second")
        rep.update("second", 1.0)
        assert rep._bar is None

    def test_update_after_close_reopens_bar(self):
        rep = TqdmProgress(file=io.StringIO())
        rep.update("stage", 0.5)
        rep.close()
        rep.update("stage", 0.2)
        assert rep._bar is not None and rep._bar.n == 20
        rep.close()

    def test_close_idempotent(self):
        rep = TqdmProgress(file=io.StringIO())
        rep.close()
        rep.close()
