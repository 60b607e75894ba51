"""
Pytest configuration and shared fixtures for virt-lifecycle tests.
"""

import pytest

from virt_lifecycle.libvirt.domain.lifecycle import DomainLifecycle
from virt_lifecycle.libvirt.waiter import ExponentialBackoff

from tests.fakes import FakeHypervisor

TEST_URI = "qemu+ssh://root@virt01.example.net/system"

# Small intervals keep wait-based tests fast.
FAST_BACKOFF = ExponentialBackoff(initial_interval=0.01, max_interval=0.05, factor=2.0)


@pytest.fixture
def hypervisor():
    """Create an empty in-memory hypervisor."""
    return FakeHypervisor()


@pytest.fixture
def lifecycle(hypervisor):
    """Create a DomainLifecycle bound to the fake hypervisor."""
    return DomainLifecycle(
        TEST_URI,
        connection_factory=hypervisor.connection_factory,
        backoff=FAST_BACKOFF,
        default_timeout=1.0,
    )
