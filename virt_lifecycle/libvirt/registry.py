import os
import logging
import threading
from typing import Any, Dict, List, Optional

from ..core.config import WaitSettings, load_wait_settings, load_yaml_config
from .connection import ConnectionFactory, build_ssh_uri, open_connection
from .domain.lifecycle import DomainLifecycle
from .waiter import ExponentialBackoff
from .watcher import DomainStateWatcher

logger = logging.getLogger(__name__)


class HypervisorRegistry:
    """Maps configured hypervisor names to their connection URIs."""

    def __init__(
        self,
        *,
        wait_settings: Optional[WaitSettings] = None,
        connection_factory: ConnectionFactory = open_connection,
    ):
        self.hypervisors: Dict[str, str] = {}
        self.wait_settings = wait_settings or WaitSettings()
        self._connection_factory = connection_factory
        # Shared by every lifecycle handed out, so shutdown can abort pending waits.
        self.cancel_event = threading.Event()

    def _require_uri(self, name: str) -> str:
        uri = self.hypervisors.get(name)
        if uri is None:
            raise KeyError(f"Hypervisor {name} not found")
        return uri

    # --------------------------------------------------------------
    # Hypervisor management
    # --------------------------------------------------------------
    def add_hypervisor(self, name: str, uri: str):
        """
        Register a hypervisor.
        :param name: Name used in API paths and watcher configuration
        :param uri: libvirt connection URI; environment variables are expanded
        """
        if name in self.hypervisors:
            logger.warning("Hypervisor %s already added, skipping.", name)
            return
        self.hypervisors[name] = os.path.expandvars(uri)
        logger.info("Added hypervisor %s (%s)", name, self.hypervisors[name])

    # --------------------------------------------------------------
    # YAML loader
    # --------------------------------------------------------------
    def load_from_yaml(self, config_path: str):
        """
        Load hypervisor configuration from a YAML file.
        Expected structure:
          hypervisors:
            - name: local
              uri: qemu:///system
            - name: virt01
              hostname: virt01.example.net
              user: root
              ssh:
                known_hosts_verify: ignore
          wait:
            initial_interval: 0.1
            max_interval: 2
            timeout: 60
        """
        data = load_yaml_config(config_path)
        self.load_from_mapping(data)

    def load_from_mapping(self, data: Dict[str, Any]):
        self.wait_settings = load_wait_settings(data)
        for entry in data.get("hypervisors", []) or []:
            name = entry.get("name") or entry.get("hostname")
            uri = entry.get("uri")
            if not uri and entry.get("hostname"):
                uri = build_ssh_uri(entry["hostname"], entry.get("user"), entry.get("ssh", {}) or {})
            if not name or not uri:
                logger.warning("Invalid hypervisor entry (needs name and uri or hostname): %s", entry)
                continue
            self.add_hypervisor(name, uri)

    # --------------------------------------------------------------
    # Accessors
    # --------------------------------------------------------------
    def lifecycle(self, name: str) -> DomainLifecycle:
        return DomainLifecycle(
            self._require_uri(name),
            connection_factory=self._connection_factory,
            backoff=ExponentialBackoff.from_settings(self.wait_settings),
            default_timeout=self.wait_settings.default_timeout,
            cancel_event=self.cancel_event,
        )

    def watcher(self, name: str, domain: str) -> DomainStateWatcher:
        return DomainStateWatcher(
            self._require_uri(name),
            domain,
            hypervisor=name,
            connection_factory=self._connection_factory,
        )

    def summary(self) -> List[Dict[str, str]]:
        return [{"name": name, "uri": uri} for name, uri in self.hypervisors.items()]

    def cancel_pending_waits(self):
        """Abort in-flight state waits (used on app shutdown)."""
        self.cancel_event.set()
