"""
Cycle Scheduler Tests
=====================

Invariantes testeadas:
1. Fallo del source → FetchFailed, sin publish, el loop sigue
2. Lecturas inválidas se descartan individualmente, el resto se publica
3. El sleep entre ciclos es interrumpible por shutdown_event
4. Intervalo medido de inicio a inicio
5. Cada ciclo corre con su propio trace_id
"""
import json
import threading
import time

import pytest

from router2mqtt.app.scheduler import CycleScheduler
from router2mqtt.exceptions import FetchError
from router2mqtt.logging import get_trace_id
from router2mqtt.outcomes import AllSucceeded, FetchFailed, Skipped


@pytest.fixture
def scheduler_factory(device, converter, tracker_factory, shutdown_event):
    def make(source, connection, interval=0.05, **tracker_kwargs):
        return CycleScheduler(
            source=source,
            converter=converter,
            device=device,
            tracker=tracker_factory(connection, **tracker_kwargs),
            interval=interval,
            shutdown_event=shutdown_event,
        )
    return make


@pytest.mark.unit
class TestRunCycle:
    """Tests de un ciclo individual"""

    def test_fetch_error_gives_fetch_failed(self, connected, fake_client, make_source, scheduler_factory):
        """
        Invariante: FetchError → FetchFailed(cause) y cero publish.
        """
        error = FetchError("login failed")
        scheduler = scheduler_factory(make_source(error=error), connected)

        outcome = scheduler.run_cycle()

        assert outcome == FetchFailed(cause=error)
        assert fake_client.published == []

    def test_unexpected_source_exception_gives_fetch_failed(self, connected, make_source, scheduler_factory):
        error = RuntimeError("browser crashed")
        scheduler = scheduler_factory(make_source(error=error), connected)

        outcome = scheduler.run_cycle()

        assert isinstance(outcome, FetchFailed)
        assert outcome.cause is error

    def test_publishes_discovery_and_state(self, connected, fake_client, make_source, scheduler_factory):
        fake_client.auto_ack = True
        source = make_source({"ponBytesSent": 1073741824, "ponBytesReceived": 0})

        outcome = scheduler_factory(source, connected).run_cycle()

        assert outcome == AllSucceeded(total=4)
        topics = [topic for topic, _, _, _ in fake_client.published]
        assert topics == [
            "homeassistant/sensor/router_hg6145f/ponbytessent/config",
            "homeassistant/sensor/router_hg6145f/ponbytessent/state",
            "homeassistant/sensor/router_hg6145f/ponbytesreceived/config",
            "homeassistant/sensor/router_hg6145f/ponbytesreceived/state",
        ]
        assert all(qos == 1 and retain for _, _, qos, retain in fake_client.published)
        assert json.loads(fake_client.published[1][1]) == {"ponBytesSent": "1.00"}

    def test_invalid_name_dropped_others_published(self, connected, fake_client, make_source, scheduler_factory):
        """
        Invariante: un nombre inválido no aborta el ciclo.
        """
        fake_client.auto_ack = True
        source = make_source({"bad/name": 1, "ponBytesSent": 2})

        outcome = scheduler_factory(source, connected).run_cycle()

        assert outcome == AllSucceeded(total=2)
        assert all("ponbytessent" in topic for topic, _, _, _ in fake_client.published)

    @pytest.mark.parametrize("raw", [-5, float("nan"), "abc", None])
    def test_invalid_value_dropped(self, connected, fake_client, make_source, scheduler_factory, raw):
        fake_client.auto_ack = True
        source = make_source({"ponBytesSent": raw, "ponBytesReceived": 10})

        outcome = scheduler_factory(source, connected).run_cycle()

        assert outcome == AllSucceeded(total=2)
        assert len(fake_client.published) == 2

    def test_all_readings_invalid_is_empty_batch(self, connection, fake_client, make_source, scheduler_factory):
        source = make_source({"ponBytesSent": -1})

        outcome = scheduler_factory(source, connection).run_cycle()

        assert outcome == AllSucceeded(total=0)
        assert fake_client.published == []

    def test_skipped_when_broker_unavailable(self, connection, fake_client, make_source, scheduler_factory):
        connection.connect()
        source = make_source({"ponBytesSent": 1})

        outcome = scheduler_factory(source, connection, ready_timeout=0.1).run_cycle()

        assert isinstance(outcome, Skipped)
        assert fake_client.published == []

    def test_invalid_interval_rejected(self, connected, make_source, device, converter, tracker_factory):
        with pytest.raises(ValueError):
            CycleScheduler(make_source(), converter, device, tracker_factory(connected), interval=0)


@pytest.mark.unit
class TestRunLoop:
    """Tests del loop de ciclos"""

    def test_max_cycles(self, connected, fake_client, make_source, scheduler_factory):
        fake_client.auto_ack = True
        scheduler = scheduler_factory(make_source({"ponBytesSent": 1}), connected, interval=0.01)

        scheduler.run(max_cycles=3)

        assert scheduler.cycles_run == 3
        assert scheduler.last_outcome == AllSucceeded(total=2)
        assert len(fake_client.published) == 6

    def test_fetch_failure_does_not_stop_loop(self, connected, make_source, scheduler_factory):
        """
        Invariante: un scrape fallido no termina el proceso.
        """
        source = make_source(error=FetchError("timeout"))
        scheduler = scheduler_factory(source, connected, interval=0.01)

        scheduler.run(max_cycles=3)

        assert source.calls == 3
        assert isinstance(scheduler.last_outcome, FetchFailed)

    def test_no_cycle_when_already_shut_down(self, connected, make_source, scheduler_factory, shutdown_event):
        source = make_source({"ponBytesSent": 1})
        shutdown_event.set()

        scheduler_factory(source, connected).run()

        assert source.calls == 0

    def test_sleep_is_interruptible(self, connected, fake_client, make_source, scheduler_factory, shutdown_event):
        """
        Invariante: shutdown durante el sleep corta la espera (no bloquea el intervalo).
        """
        fake_client.auto_ack = True
        source = make_source({"ponBytesSent": 1})
        scheduler = scheduler_factory(source, connected, interval=30.0)
        timer = threading.Timer(0.1, shutdown_event.set)
        timer.start()

        started = time.monotonic()
        try:
            scheduler.run()
        finally:
            timer.cancel()

        assert time.monotonic() - started < 2.0
        assert source.calls == 1

    def test_interval_start_to_start(self, connected, fake_client, make_source, scheduler_factory):
        fake_client.auto_ack = True
        starts = []

        class RecordingSource(make_source):
            def fetch_counters(self):
                starts.append(time.monotonic())
                return super().fetch_counters()

        scheduler = scheduler_factory(RecordingSource({"ponBytesSent": 1}), connected, interval=0.2)

        scheduler.run(max_cycles=3)

        gaps = [b - a for a, b in zip(starts, starts[1:])]
        assert len(gaps) == 2
        assert all(gap >= 0.19 for gap in gaps)

    def test_each_cycle_has_own_trace_id(self, connected, make_source, scheduler_factory):
        trace_ids = []

        class TracingSource(make_source):
            def fetch_counters(self):
                trace_ids.append(get_trace_id())
                return {}

        scheduler = scheduler_factory(TracingSource(), connected, interval=0.01)

        scheduler.run(max_cycles=2)

        assert len(trace_ids) == 2
        assert all(trace_id.startswith("cycle-") for trace_id in trace_ids)
        assert trace_ids[0] != trace_ids[1]
        assert get_trace_id() is None
