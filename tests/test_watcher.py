"""
Tests for the periodic domain state watcher.
"""

import asyncio

import libvirt
import pytest

from virt_lifecycle.core.event_stream import EventStream
from virt_lifecycle.libvirt.state import DomainState
from virt_lifecycle.libvirt.watcher import (
    DomainStateWatcher,
    active_watchers,
    schedule_watcher,
    shutdown_watchers,
)

from tests.conftest import TEST_URI
from tests.fakes import domain_xml


@pytest.fixture
def watcher(hypervisor):
    return DomainStateWatcher(
        TEST_URI,
        "vm1",
        hypervisor="virt01",
        connection_factory=hypervisor.connection_factory,
    )


class TestPollOnce:
    """Tests for DomainStateWatcher.poll_once."""

    def test_reports_current_state(self, watcher, hypervisor):
        hypervisor.add_domain(domain_xml("vm1"), state=libvirt.VIR_DOMAIN_RUNNING)

        event = watcher.poll_once()

        assert event.state == DomainState.RUNNING
        payload = event.as_dict()
        assert payload["type"] == "domain_state"
        assert payload["hypervisor"] == "virt01"
        assert payload["name"] == "vm1"
        assert payload["state"] == "Running"
        assert payload["timestamp"]
        assert hypervisor.opened == hypervisor.closed == 1

    def test_missing_domain_yields_none(self, watcher, hypervisor):
        assert watcher.poll_once() is None
        assert hypervisor.opened == hypervisor.closed

    def test_connection_failure_yields_none(self, watcher, hypervisor):
        hypervisor.refuse_connections = True

        assert watcher.poll_once() is None


class TestScheduling:
    """Tests for the background watcher tasks."""

    @pytest.mark.asyncio
    async def test_scheduled_watcher_publishes_events(self, watcher, hypervisor):
        hypervisor.add_domain(domain_xml("vm1"), state=libvirt.VIR_DOMAIN_PAUSED)
        stream = EventStream(history=10)

        try:
            schedule_watcher(watcher, 0.01, stream.publish)
            schedule_watcher(watcher, 0.01, stream.publish)
            assert active_watchers() == [("virt01", "vm1")]

            for _ in range(100):
                if stream.history():
                    break
                await asyncio.sleep(0.01)
        finally:
            shutdown_watchers()
            # let the cancelled task unwind before the loop closes
            await asyncio.sleep(0.05)

        events = stream.history()
        assert events
        assert events[0]["state"] == "Paused"
        assert active_watchers() == []

    @pytest.mark.asyncio
    async def test_subscribers_receive_published_events(self):
        stream = EventStream(history=2)
        stream.publish({"seq": 1})
        queue, history = stream.register()

        stream.publish({"seq": 2})
        stream.publish({"seq": 3})

        assert history == [{"seq": 1}]
        assert await queue.get() == {"seq": 2}
        assert stream.history() == [{"seq": 2}, {"seq": 3}]
        assert stream.subscriber_count == 1
        stream.unregister(queue)
        assert stream.subscriber_count == 0
