"""
Tests for the session controller lifecycle and tick pipeline.
Run with: pytest tests/test_session_controller.py -v
"""
import threading
import time

import pytest


def _controller(sampler, clock=None, **config):
    from smartproctor.config import SessionConfig
    from smartproctor.session.controller import SessionController
    return SessionController(
        sampler,
        SessionConfig(**config),
        session_id="sess-1",
        run_scheduler=False,
        clock=clock,
    )


class TestLifecycle:
    def test_start_opens_sampler(self, scripted_sampler):
        from smartproctor.session.controller import SessionState
        sampler = scripted_sampler()
        controller = _controller(sampler)
        assert controller.state == SessionState.IDLE
        controller.start()
        assert controller.state == SessionState.ACTIVE
        assert sampler.open_calls == 1
        assert sampler.sample_calls == 0

    def test_start_twice_raises(self, scripted_sampler):
        from smartproctor.errors import InvalidStateError
        controller = _controller(scripted_sampler())
        controller.start()
        with pytest.raises(InvalidStateError):
            controller.start()

    def test_stop_from_idle_raises(self, scripted_sampler):
        from smartproctor.errors import InvalidStateError
        with pytest.raises(InvalidStateError):
            _controller(scripted_sampler()).stop()

    def test_stop_returns_summary_and_releases_sampler(self, scripted_sampler, scenario_a, scenario_b):
        from smartproctor.session.controller import SessionState
        sampler = scripted_sampler([scenario_a, scenario_b])
        controller = _controller(sampler)
        controller.start()
        controller.tick()
        controller.tick()
        summary = controller.stop()

        assert controller.state == SessionState.STOPPED
        assert sampler.close_calls == 1
        assert summary.session_id == "sess-1"
        assert summary.violation_count == 3
        assert summary.final_suspicion_score == 79
        assert summary.alert_count == 7
        assert summary.total_elapsed_seconds == pytest.approx(2.0)
        assert summary.suspicion_history == [70, 79]
        assert summary.recent_alerts[0].type.value == "behavioral_anomaly"
        assert summary.report is not None
        assert summary.report.alert_breakdown["identity_verification_failed"] == 2

    def test_stop_is_idempotent(self, scripted_sampler):
        from smartproctor.config import SessionConfig
        from smartproctor.session.controller import SessionController
        completed = []
        sampler = scripted_sampler()
        controller = SessionController(
            sampler, SessionConfig(), on_session_complete=completed.append, run_scheduler=False,
        )
        controller.start()
        first = controller.stop()
        second = controller.stop()
        assert first is second
        assert completed == [first]
        assert sampler.close_calls == 1

    def test_restart_after_stop_has_no_side_effects(self, scripted_sampler):
        from smartproctor.errors import InvalidStateError
        from smartproctor.session.controller import SessionState
        sampler = scripted_sampler()
        controller = _controller(sampler)
        controller.start()
        controller.stop()

        with pytest.raises(InvalidStateError):
            controller.start()
        assert controller.state == SessionState.STOPPED
        assert sampler.open_calls == 1
        assert controller.tick() is None
        assert sampler.sample_calls == 0

    def test_tick_before_start_is_noop(self, scripted_sampler):
        sampler = scripted_sampler()
        controller = _controller(sampler)
        assert controller.tick() is None
        assert sampler.sample_calls == 0
        assert controller.elapsed_seconds == 0

    def test_context_manager_stops_on_error(self, scripted_sampler):
        from smartproctor.session.controller import SessionState
        sampler = scripted_sampler()
        controller = _controller(sampler)
        with pytest.raises(RuntimeError):
            with controller:
                controller.start()
                controller.tick()
                raise RuntimeError("host crashed")
        assert controller.state == SessionState.STOPPED
        assert sampler.is_open is False
        assert controller.summary is not None

    def test_snapshot(self, scripted_sampler, scenario_a):
        controller = _controller(scripted_sampler([scenario_a]), tick_interval_ms=500)
        controller.start()
        controller.tick()
        snap = controller.snapshot()
        assert snap["state"] == "ACTIVE"
        assert snap["elapsedSeconds"] == pytest.approx(0.5)
        assert snap["violationCount"] == 1
        assert snap["assessment"]["suspicionScore"] == 70


class TestSamplerFailures:
    def test_unavailable_at_start_stays_idle(self, scripted_sampler):
        from smartproctor.errors import SamplerUnavailable
        from smartproctor.session.controller import SessionState
        sampler = scripted_sampler(fail_open=True)
        controller = _controller(sampler)
        with pytest.raises(SamplerUnavailable):
            controller.start()
        assert controller.state == SessionState.IDLE
        assert sampler.close_calls == 1

        sampler.fail_open = False
        controller.start()
        assert controller.state == SessionState.ACTIVE

    def test_unexpected_open_error_is_wrapped(self):
        from smartproctor.errors import SamplerUnavailable
        from smartproctor.modules.signal_sampler import SignalReading, SignalSampler

        class BrokenSampler(SignalSampler):
            def open(self):
                raise OSError("device busy")

            def sample(self):
                return SignalReading()

        with pytest.raises(SamplerUnavailable, match="device busy"):
            _controller(BrokenSampler()).start()

    def test_lost_reading_raises_critical_alert(self, scripted_sampler, scenario_a):
        from smartproctor.errors import SamplerUnavailable
        from smartproctor.session.controller import SessionState
        sampler = scripted_sampler([SamplerUnavailable("camera unplugged"), scenario_a])
        controller = _controller(sampler)
        controller.start()

        controller.tick()
        lost = controller.alert_log.recent(1)[0]
        assert lost.type.value == "sampler_lost"
        assert lost.severity.value == "critical"
        assert controller.violation_count == 0
        assert controller.state == SessionState.ACTIVE

        controller.tick()
        assert controller.violation_count == 1
        summary = controller.stop()
        assert summary.sampler_failures == 1
        assert summary.total_elapsed_seconds == pytest.approx(2.0)
        assert summary.suspicion_history == [70]


class TestAlertPolicy:
    def test_repeat_alerts_fire_every_tick(self, scripted_sampler, scenario_a):
        controller = _controller(scripted_sampler(default=scenario_a))
        controller.start()
        controller.tick()
        controller.tick()
        assert controller.alert_count == 6
        assert controller.violation_count == 2

    def test_debounced_alerts_fire_on_onset_only(self, scripted_sampler, scenario_a, clean_reading):
        sampler = scripted_sampler([scenario_a, scenario_a, clean_reading, scenario_a])
        controller = _controller(sampler, repeat_alerts=False)
        controller.start()
        for _ in range(4):
            controller.tick()
        assert controller.alert_count == 6
        assert controller.violation_count == 2

    def test_log_capacity_bounds_recent_alerts(self, scripted_sampler, scenario_a):
        controller = _controller(scripted_sampler(default=scenario_a), alert_capacity=3)
        controller.start()
        controller.tick()
        controller.tick()
        assert len(controller.alert_log) == 3
        assert controller.alert_count == 6

    def test_on_alert_receives_alerts_in_order(self, scripted_sampler, scenario_b, step_clock):
        from smartproctor.config import SessionConfig
        from smartproctor.session.controller import SessionController
        received = []
        controller = SessionController(
            scripted_sampler([scenario_b]), SessionConfig(),
            on_alert=received.append, run_scheduler=False, clock=step_clock,
        )
        controller.start()
        controller.tick()
        assert [a.type.value for a in received] == [
            "identity_verification_failed",
            "risk_prediction",
            "connection_unstable",
            "behavioral_anomaly",
        ]
        assert controller.alert_log.recent() == list(reversed(received))

    def test_failing_callback_does_not_break_tick(self, scripted_sampler, scenario_a):
        from smartproctor.config import SessionConfig
        from smartproctor.session.controller import SessionController

        def explode(alert):
            raise RuntimeError("dashboard offline")

        controller = SessionController(
            scripted_sampler([scenario_a]), SessionConfig(),
            on_alert=explode, on_session_complete=explode, run_scheduler=False,
        )
        controller.start()
        assessment = controller.tick()
        assert assessment.suspicion_score == 70
        assert controller.alert_count == 3
        assert controller.stop().violation_count == 1


class TestTicker:
    def test_background_ticks_stop_with_session(self, scripted_sampler):
        from smartproctor.config import SessionConfig
        from smartproctor.session.controller import SessionController
        sampler = scripted_sampler()
        controller = SessionController(sampler, SessionConfig(tick_interval_ms=10))
        controller.start()
        thread = controller._thread

        deadline = time.monotonic() + 5.0
        while sampler.sample_calls < 3 and time.monotonic() < deadline:
            time.sleep(0.01)
        assert sampler.sample_calls >= 3

        summary = controller.stop()
        ticks = sampler.sample_calls
        time.sleep(0.1)
        assert sampler.sample_calls == ticks
        assert not thread.is_alive()
        assert summary.total_elapsed_seconds == pytest.approx(ticks * 0.01)

    def test_stop_from_alert_callback(self, scripted_sampler, scenario_b):
        from smartproctor.config import SessionConfig
        from smartproctor.session.controller import SessionController, SessionState
        done = threading.Event()
        holder = {}

        def stop_on_violation(alert):
            if alert.is_violation and "summary" not in holder:
                holder["summary"] = holder["controller"].stop()
                done.set()

        controller = SessionController(
            scripted_sampler(default=scenario_b),
            SessionConfig(tick_interval_ms=10),
            on_alert=stop_on_violation,
        )
        holder["controller"] = controller
        controller.start()
        assert done.wait(5.0)

        assert controller.state == SessionState.STOPPED
        assert holder["summary"].violation_count == 2
        # alerts after the stopping one are dropped
        assert controller.alert_count == 1
        assert controller.stop() is holder["summary"]

    def test_host_stop_while_callback_stops(self, scripted_sampler, scenario_b):
        from smartproctor.config import SessionConfig
        from smartproctor.session.controller import SessionController, SessionState
        in_callback = threading.Event()
        results = {}
        sampler = scripted_sampler(default=scenario_b)

        def slow_stop(alert):
            if "inner" in results:
                return
            results["inner"] = None
            in_callback.set()
            time.sleep(0.3)
            results["inner"] = controller.stop()

        controller = SessionController(
            sampler, SessionConfig(), on_alert=slow_stop, run_scheduler=False,
        )
        controller.start()

        ticker = threading.Thread(target=controller.tick)
        ticker.start()
        assert in_callback.wait(5.0)

        host = threading.Thread(target=lambda: results.setdefault("host", controller.stop()))
        host.start()
        host.join(3.0)
        ticker.join(3.0)

        assert not host.is_alive()
        assert not ticker.is_alive()
        assert controller.state == SessionState.STOPPED
        assert sampler.close_calls == 1
        assert results["host"] is controller.summary
        assert results["inner"] in (None, controller.summary)

    def test_concurrent_stops_share_one_summary(self, scripted_sampler):
        from smartproctor.config import SessionConfig
        from smartproctor.session.controller import SessionController
        completed = []
        controller = SessionController(
            scripted_sampler(), SessionConfig(tick_interval_ms=5),
            on_session_complete=completed.append,
        )
        controller.start()

        summaries = []
        threads = [threading.Thread(target=lambda: summaries.append(controller.stop())) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(3.0)

        assert len(summaries) == 4
        assert all(s is summaries[0] for s in summaries)
        assert completed == [summaries[0]]


class TestRecordings:
    def test_recordings_raise_report_confidence(self, scripted_sampler):
        controller = _controller(scripted_sampler())
        controller.start()
        controller.add_recording()
        assert controller.add_recording(2) == 3
        assert controller.snapshot()["recordings"] == 3

        summary = controller.stop()
        # no alerts: 70 + 5 per recording
        assert summary.report.confidence == 85.0

    def test_recording_requires_active_session(self, scripted_sampler):
        from smartproctor.errors import InvalidStateError
        controller = _controller(scripted_sampler())
        with pytest.raises(InvalidStateError):
            controller.add_recording()
        controller.start()
        controller.stop()
        with pytest.raises(InvalidStateError):
            controller.add_recording()

    def test_rejects_non_positive_count(self, scripted_sampler):
        controller = _controller(scripted_sampler())
        controller.start()
        with pytest.raises(ValueError):
            controller.add_recording(0)
