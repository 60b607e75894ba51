"""
Tests for configuration loading and the hypervisor registry.
"""

# pylint: disable=redefined-outer-name

import libvirt
import pytest

from virt_lifecycle.core.config import (
    WaitSettings,
    load_wait_settings,
    load_watcher_settings,
    load_yaml_config,
)
from virt_lifecycle.libvirt.registry import HypervisorRegistry
from virt_lifecycle.libvirt.waiter import ExponentialBackoff

from tests.fakes import domain_xml

CONFIG = """
hypervisors:
  - name: local
    uri: qemu:///system
  - name: virt01
    hostname: virt01.example.net
    user: root
    ssh:
      known_hosts_verify: ignore
  - name: broken
wait:
  initial_interval: 0.5
  max_interval: 4
  timeout: 120
watchers:
  - hypervisor: virt01
    domain: web01
    interval: 15
  - domain: missing-hypervisor
"""


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(CONFIG)
    return path


class TestConfigLoading:
    """Tests for YAML configuration helpers."""

    def test_missing_file_returns_empty_mapping(self, tmp_path):
        assert load_yaml_config(str(tmp_path / "absent.yaml")) == {}

    def test_malformed_file_returns_empty_mapping(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("hypervisors: [unclosed\n")

        assert load_yaml_config(str(path)) == {}

    def test_wait_settings(self, config_file):
        settings = load_wait_settings(load_yaml_config(str(config_file)))

        assert settings == WaitSettings(initial_interval=0.5, max_interval=4.0, factor=2.0, default_timeout=120.0)

    def test_wait_settings_defaults(self):
        assert load_wait_settings({}) == WaitSettings()

    def test_wait_settings_replace_values_that_would_busy_poll(self):
        settings = load_wait_settings({"wait": {"initial_interval": 0, "factor": 0.5, "max_interval": -1}})

        assert settings.initial_interval == WaitSettings().initial_interval
        assert settings.factor == WaitSettings().factor
        assert settings.max_interval == settings.initial_interval
        # the resulting backoff is valid and never yields a zero delay
        delays = ExponentialBackoff.from_settings(settings).delays()
        assert all(next(delays) > 0 for _ in range(5))

    def test_wait_settings_raise_max_interval_to_initial(self):
        settings = load_wait_settings({"wait": {"initial_interval": 3, "max_interval": 1}})

        assert settings.max_interval == 3.0

    def test_watcher_settings_skip_invalid_entries(self, config_file):
        watchers = load_watcher_settings(load_yaml_config(str(config_file)))

        assert len(watchers) == 1
        assert watchers[0].hypervisor == "virt01"
        assert watchers[0].domain == "web01"
        assert watchers[0].interval == 15.0


class TestHypervisorRegistry:
    """Tests for HypervisorRegistry."""

    def test_load_from_yaml(self, config_file):
        registry = HypervisorRegistry()

        registry.load_from_yaml(str(config_file))

        assert registry.hypervisors == {
            "local": "qemu:///system",
            "virt01": "qemu+ssh://root@virt01.example.net/system?known_hosts_verify=ignore",
        }
        assert registry.wait_settings.default_timeout == 120.0

    def test_uri_expands_environment_variables(self, monkeypatch):
        monkeypatch.setenv("VIRT_HOST", "virt02.example.net")
        registry = HypervisorRegistry()

        registry.add_hypervisor("virt02", "qemu+ssh://root@${VIRT_HOST}/system")

        assert registry.hypervisors["virt02"] == "qemu+ssh://root@virt02.example.net/system"

    def test_duplicate_name_keeps_first(self):
        registry = HypervisorRegistry()
        registry.add_hypervisor("local", "qemu:///system")
        registry.add_hypervisor("local", "qemu:///session")

        assert registry.summary() == [{"name": "local", "uri": "qemu:///system"}]

    def test_unknown_hypervisor_raises_key_error(self):
        registry = HypervisorRegistry()

        with pytest.raises(KeyError):
            registry.lifecycle("nowhere")
        with pytest.raises(KeyError):
            registry.watcher("nowhere", "vm1")

    def test_lifecycle_uses_registry_factory(self, hypervisor):
        hypervisor.add_domain(domain_xml("vm1"), state=libvirt.VIR_DOMAIN_RUNNING)
        registry = HypervisorRegistry(connection_factory=hypervisor.connection_factory)
        registry.add_hypervisor("local", "qemu:///system")

        entry = registry.lifecycle("local").get_vm_state("vm1")

        assert str(entry.state) == "Running"
        assert hypervisor.opened == 1

    def test_cancel_pending_waits_reaches_lifecycles(self):
        registry = HypervisorRegistry()
        registry.add_hypervisor("local", "qemu:///system")
        lifecycle = registry.lifecycle("local")

        registry.cancel_pending_waits()

        assert lifecycle.cancel_event.is_set()
