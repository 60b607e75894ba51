"""
Tests for the exponential-backoff state waiter.
"""

# pylint: disable=redefined-outer-name

import threading
import time
from datetime import timedelta

import pytest

from virt_lifecycle.core.config import WaitSettings
from virt_lifecycle.libvirt.errors import (
    NonConvergentStateError,
    WaitCancelledError,
    WaitTimeoutError,
)
from virt_lifecycle.libvirt.state import DomainState
from virt_lifecycle.libvirt.waiter import ExponentialBackoff, to_seconds, wait_for_state

from tests.conftest import FAST_BACKOFF


class ScriptedDomain:
    """Domain stub that reports a scripted sequence of states, repeating the last."""

    def __init__(self, *states, name="vm1"):
        self.name = name
        self._states = list(states)
        self.polls = 0

    def current_state(self):
        self.polls += 1
        if len(self._states) > 1:
            return self._states.pop(0)
        return self._states[0]


class TestExponentialBackoff:
    """Tests for ExponentialBackoff delay generation."""

    def test_doubles_until_capped(self):
        delays = ExponentialBackoff().delays()

        assert [round(next(delays), 3) for _ in range(7)] == [0.1, 0.2, 0.4, 0.8, 1.6, 2.0, 2.0]

    def test_from_settings(self):
        settings = WaitSettings(initial_interval=0.5, max_interval=4.0, factor=3.0)

        backoff = ExponentialBackoff.from_settings(settings)

        delays = backoff.delays()
        assert [next(delays) for _ in range(4)] == [0.5, 1.5, 4.0, 4.0]

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"initial_interval": 0},
            {"initial_interval": -0.5},
            {"factor": 0.5},
            {"initial_interval": 1.0, "max_interval": 0.5},
            {"max_interval": 0},
        ],
    )
    def test_rejects_settings_that_would_busy_poll(self, kwargs):
        with pytest.raises(ValueError):
            ExponentialBackoff(**kwargs)

    def test_to_seconds_accepts_timedelta(self):
        assert to_seconds(timedelta(minutes=1)) == 60.0
        assert to_seconds(5) == 5.0


class TestWaitForState:
    """Tests for wait_for_state exits."""

    def test_returns_immediately_when_target_reached(self):
        domain = ScriptedDomain(DomainState.RUNNING)

        state = wait_for_state(domain, {DomainState.RUNNING}, {DomainState.PAUSED}, 5, backoff=FAST_BACKOFF)

        assert state == DomainState.RUNNING
        assert domain.polls == 1

    def test_keeps_polling_through_transitional_states(self):
        domain = ScriptedDomain(
            DomainState.IN_SHUTDOWN,
            DomainState.IN_SHUTDOWN,
            DomainState.DEFINED_STOPPED,
        )

        state = wait_for_state(
            domain,
            {DomainState.DEFINED_STOPPED},
            {DomainState.PAUSED, DomainState.CRASHED},
            5,
            backoff=FAST_BACKOFF,
        )

        assert state == DomainState.DEFINED_STOPPED
        assert domain.polls == 3

    def test_non_convergent_state_fails_before_budget(self):
        domain = ScriptedDomain(DomainState.PAUSED)

        start = time.monotonic()
        with pytest.raises(NonConvergentStateError) as excinfo:
            wait_for_state(domain, {DomainState.RUNNING}, {DomainState.PAUSED}, 10, backoff=FAST_BACKOFF)
        elapsed = time.monotonic() - start

        assert elapsed < 1.0
        assert excinfo.value.state == DomainState.PAUSED
        assert excinfo.value.step == "wait"
        assert excinfo.value.name == "vm1"

    def test_defined_stopped_is_non_convergent_when_waiting_for_running(self):
        domain = ScriptedDomain(DomainState.IN_SHUTDOWN, DomainState.DEFINED_STOPPED)

        with pytest.raises(NonConvergentStateError):
            wait_for_state(
                domain,
                {DomainState.RUNNING},
                {DomainState.PAUSED, DomainState.CRASHED, DomainState.DEFINED_STOPPED},
                5,
                backoff=FAST_BACKOFF,
            )

        assert domain.polls == 2

    def test_times_out_at_budget(self):
        domain = ScriptedDomain(DomainState.IN_SHUTDOWN)
        budget = 0.3

        start = time.monotonic()
        with pytest.raises(WaitTimeoutError) as excinfo:
            wait_for_state(domain, {DomainState.DEFINED_STOPPED}, {DomainState.CRASHED}, budget, backoff=FAST_BACKOFF)
        elapsed = time.monotonic() - start

        assert elapsed >= budget
        assert elapsed < budget + 0.25
        assert excinfo.value.last_state == DomainState.IN_SHUTDOWN
        assert isinstance(excinfo.value, TimeoutError)
        assert domain.polls > 2

    def test_sleep_never_overshoots_remaining_budget(self):
        domain = ScriptedDomain(DomainState.IN_SHUTDOWN)
        slow_backoff = ExponentialBackoff(initial_interval=5.0, max_interval=5.0)

        start = time.monotonic()
        with pytest.raises(WaitTimeoutError):
            wait_for_state(domain, {DomainState.RUNNING}, set(), 0.2, backoff=slow_backoff)

        assert time.monotonic() - start < 1.0
        assert domain.polls <= 3

    def test_zero_budget_polls_once(self):
        domain = ScriptedDomain(DomainState.IN_SHUTDOWN)

        with pytest.raises(WaitTimeoutError):
            wait_for_state(domain, {DomainState.RUNNING}, set(), 0, backoff=FAST_BACKOFF)

        assert domain.polls == 1

    def test_target_wins_over_non_convergent_overlap(self):
        domain = ScriptedDomain(DomainState.DEFINED_STOPPED)

        state = wait_for_state(
            domain,
            {DomainState.DEFINED_STOPPED},
            {DomainState.DEFINED_STOPPED},
            1,
            backoff=FAST_BACKOFF,
        )

        assert state == DomainState.DEFINED_STOPPED

    def test_preset_cancel_event_aborts_before_polling(self):
        domain = ScriptedDomain(DomainState.IN_SHUTDOWN)
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(WaitCancelledError):
            wait_for_state(domain, {DomainState.RUNNING}, set(), 5, cancel_event=cancel)

        assert domain.polls == 0

    def test_cancel_during_sleep_aborts_promptly(self):
        domain = ScriptedDomain(DomainState.IN_SHUTDOWN)
        cancel = threading.Event()
        slow_backoff = ExponentialBackoff(initial_interval=5.0, max_interval=5.0)
        timer = threading.Timer(0.1, cancel.set)

        start = time.monotonic()
        timer.start()
        try:
            with pytest.raises(WaitCancelledError):
                wait_for_state(domain, {DomainState.RUNNING}, set(), 30, backoff=slow_backoff, cancel_event=cancel)
        finally:
            timer.cancel()

        assert time.monotonic() - start < 2.0
