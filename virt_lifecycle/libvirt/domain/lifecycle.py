from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, ContextManager, Dict, FrozenSet, List, Optional

import libvirt

from ...core.config import DEFAULT_WAIT_SECONDS
from ..connection import ConnectionFactory, LibvirtConnection, open_connection
from ..descriptor import descriptor_name, volumes_by_pool, with_identity_injected
from ..errors import AlreadyActiveError, DescriptorMismatchError, DomainNotFoundError
from ..waiter import Duration, ExponentialBackoff, wait_for_state
from ..state import DomainState
from .handle import LibvirtDomain

logger = logging.getLogger(__name__)

_START_FAILURE_STATES: FrozenSet[DomainState] = frozenset(
    {DomainState.PAUSED, DomainState.CRASHED, DomainState.DEFINED_STOPPED}
)
_STOP_FAILURE_STATES: FrozenSet[DomainState] = frozenset({DomainState.PAUSED, DomainState.CRASHED})
_RESTARTABLE_STATES: FrozenSet[DomainState] = frozenset({DomainState.RUNNING, DomainState.PAUSED})


@dataclass(frozen=True)
class CreateResult:
    name: str
    identity: str
    state: DomainState

    def as_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "identity": self.identity, "state": str(self.state)}


@dataclass(frozen=True)
class UpdateResult:
    name: str
    was_restarted: bool
    state: DomainState

    def as_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "was_restarted": self.was_restarted, "state": str(self.state)}


@dataclass(frozen=True)
class PowerResult:
    name: str
    state: DomainState

    def as_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "state": str(self.state)}


@dataclass(frozen=True)
class DeleteResult:
    success: bool
    deleted_volumes: List[str] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {"success": self.success, "deleted_volumes": list(self.deleted_volumes)}


@dataclass(frozen=True)
class VmEntry:
    name: str
    identity: Optional[str]
    state: DomainState

    def as_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "identity": self.identity, "state": str(self.state)}


class DomainLifecycle:
    """Idempotent lifecycle operations against the domains of one hypervisor.

    Every call opens its own connection through ``connection_factory`` and
    closes it before returning, including when the call raises.
    """

    def __init__(
        self,
        uri: Optional[str],
        *,
        connection_factory: ConnectionFactory = open_connection,
        backoff: Optional[ExponentialBackoff] = None,
        default_timeout: Duration = DEFAULT_WAIT_SECONDS,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        self.uri = uri
        self._connection_factory = connection_factory
        self._backoff = backoff or ExponentialBackoff()
        self._default_timeout = default_timeout
        self._cancel_event = cancel_event or threading.Event()

    @property
    def cancel_event(self) -> threading.Event:
        return self._cancel_event

    def cancel(self) -> None:
        """Abort any wait currently in progress on this instance."""
        self._cancel_event.set()

    # ------------------------------------------------------------------
    # High-level lifecycle operations
    # ------------------------------------------------------------------

    def create_vm(self, name: str, descriptor: str, *, start_after_create: bool = False) -> CreateResult:
        """Ensure ``name`` exists, defining it from ``descriptor`` only when absent."""
        self._check_declared_name(name, descriptor)

        with self._connect() as connection:
            try:
                domain = LibvirtDomain.lookup(connection.conn, name)
                logger.info("Domain %s already defined on %s; keeping existing definition", name, self.uri)
            except DomainNotFoundError:
                domain = LibvirtDomain.define(connection.conn, descriptor, name=name)
                logger.info("Defined domain %s on %s", name, self.uri)

            if start_after_create and domain.current_state() != DomainState.RUNNING:
                self._boot(domain)
                logger.info("Domain %s booted on %s", name, self.uri)

            return CreateResult(domain.name, domain.identity, domain.current_state())

    def update_vm(self, name: str, descriptor: str, *, restart: bool = False) -> UpdateResult:
        """Redefine an existing domain, keeping its identity, optionally hard-restarting it."""
        self._check_declared_name(name, descriptor)

        with self._connect() as connection:
            existing = LibvirtDomain.lookup(connection.conn, name)
            prior_state = existing.current_state()
            merged = with_identity_injected(descriptor, existing.identity)

            domain = LibvirtDomain.define(connection.conn, merged, name=name)
            logger.info("Updated definition for domain %s on %s", name, self.uri)

            was_restarted = False
            if restart:
                if prior_state in _RESTARTABLE_STATES:
                    logger.info("Restarting domain %s to apply the new definition", name)
                    domain.destroy()
                    domain.create()
                    was_restarted = True
                else:
                    logger.info("Domain %s is %s; new definition applies on next boot", name, prior_state)

            return UpdateResult(domain.name, was_restarted, domain.current_state())

    def start_vm(
        self,
        name: str,
        *,
        wait_for_running: bool = False,
        time_to_wait: Optional[Duration] = None,
    ) -> PowerResult:
        with self._connect() as connection:
            domain = LibvirtDomain.lookup(connection.conn, name)
            if domain.current_state() == DomainState.RUNNING:
                logger.info("Domain %s is already running; skipping start", name)
                return PowerResult(domain.name, DomainState.RUNNING)

            self._boot(domain)
            logger.info("Start requested for domain %s on %s", name, self.uri)

            if wait_for_running:
                state = self._wait(domain, {DomainState.RUNNING}, _START_FAILURE_STATES, time_to_wait)
                return PowerResult(domain.name, state)
            return PowerResult(domain.name, domain.current_state())

    def stop_vm(
        self,
        name: str,
        *,
        force: bool = False,
        wait_for_stopped: bool = False,
        time_to_wait: Optional[Duration] = None,
    ) -> PowerResult:
        with self._connect() as connection:
            domain = LibvirtDomain.lookup(connection.conn, name)
            if domain.current_state() == DomainState.DEFINED_STOPPED:
                logger.info("Domain %s is already stopped; skipping stop", name)
                return PowerResult(domain.name, DomainState.DEFINED_STOPPED)

            if force:
                logger.info("Calling destroy on %s", name)
                domain.destroy()
            else:
                logger.info("Calling shutdown on %s", name)
                domain.shutdown()

            if wait_for_stopped:
                state = self._wait(domain, {DomainState.DEFINED_STOPPED}, _STOP_FAILURE_STATES, time_to_wait)
                return PowerResult(domain.name, state)
            return PowerResult(domain.name, domain.current_state())

    def delete_vm(
        self,
        name: str,
        *,
        delete_storage: bool = False,
        fail_if_not_found: bool = True,
    ) -> DeleteResult:
        with self._connect() as connection:
            try:
                domain = LibvirtDomain.lookup(connection.conn, name)
            except DomainNotFoundError:
                if fail_if_not_found:
                    raise
                logger.warning("Domain %s not found on %s; skipping deletion", name, self.uri)
                return DeleteResult(success=False, deleted_volumes=[])

            deleted_volumes: List[str] = []
            if delete_storage:
                deleted_volumes = self._delete_volumes(connection, domain)

            # A domain must be stopped before it can be undefined
            if domain.current_state() != DomainState.DEFINED_STOPPED:
                domain.destroy()
            domain.undefine()

            logger.info(
                "Deleted domain %s on %s (removed_volumes=%d)",
                name,
                self.uri,
                len(deleted_volumes),
            )
            return DeleteResult(success=True, deleted_volumes=deleted_volumes)

    # ------------------------------------------------------------------
    # Read-only helpers
    # ------------------------------------------------------------------

    def list_vms(self, status_filter: Optional[str] = None) -> List[VmEntry]:
        wanted = DomainState.from_label(status_filter) if status_filter else None
        active_flag = getattr(libvirt, "VIR_CONNECT_LIST_DOMAINS_ACTIVE", 1)
        inactive_flag = getattr(libvirt, "VIR_CONNECT_LIST_DOMAINS_INACTIVE", 2)

        entries: List[VmEntry] = []
        with self._connect() as connection:
            for flag in (active_flag, inactive_flag):
                for raw in connection.conn.listAllDomains(flag) or []:
                    domain = LibvirtDomain(raw)
                    entry = VmEntry(domain.name, domain.identity, domain.current_state())
                    if wanted is None or entry.state == wanted:
                        entries.append(entry)

        logger.debug("Listed %d domain(s) on %s (filter=%s)", len(entries), self.uri, status_filter)
        return entries

    def get_vm_state(self, name: str) -> VmEntry:
        with self._connect() as connection:
            domain = LibvirtDomain.lookup(connection.conn, name)
            return VmEntry(domain.name, domain.identity, domain.current_state())

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _connect(self) -> ContextManager[LibvirtConnection]:
        return self._connection_factory(self.uri)

    @staticmethod
    def _check_declared_name(name: str, descriptor: str) -> None:
        declared = descriptor_name(descriptor)
        if declared != name:
            raise DescriptorMismatchError(name, declared)

    @staticmethod
    def _boot(domain: LibvirtDomain) -> None:
        try:
            domain.create()
        except AlreadyActiveError:
            logger.info("Domain %s was already active when booted", domain.name)

    def _wait(
        self,
        domain: LibvirtDomain,
        targets,
        non_convergent,
        time_to_wait: Optional[Duration],
    ) -> DomainState:
        budget = self._default_timeout if time_to_wait is None else time_to_wait
        return wait_for_state(
            domain,
            targets,
            non_convergent,
            budget,
            backoff=self._backoff,
            cancel_event=self._cancel_event,
        )

    def _delete_volumes(self, connection: LibvirtConnection, domain: LibvirtDomain) -> List[str]:
        grouped = volumes_by_pool(domain.descriptor())
        delete_flags = getattr(libvirt, "VIR_STORAGE_VOL_DELETE_NORMAL", 0)
        deleted: List[str] = []

        for pool_name, volume_names in grouped.items():
            try:
                pool = connection.conn.storagePoolLookupByName(pool_name)
            except libvirt.libvirtError as exc:
                logger.error("Could not access pool %s on %s: %s", pool_name, self.uri, exc)
                continue

            removed_from_pool = False
            for volume_name in volume_names:
                try:
                    volume = pool.storageVolLookupByName(volume_name)
                    volume.delete(delete_flags)
                except libvirt.libvirtError as exc:
                    logger.warning(
                        "Failed to delete volume %s in pool %s on %s: %s",
                        volume_name,
                        pool_name,
                        self.uri,
                        exc,
                    )
                    continue
                deleted.append(f"{pool_name}/{volume_name}")
                removed_from_pool = True
                logger.info("Deleted volume %s from pool %s", volume_name, pool_name)

            if removed_from_pool:
                try:
                    pool.refresh(0)
                except libvirt.libvirtError as refresh_exc:
                    logger.debug("refresh() failed for pool %s after volume delete: %s", pool_name, refresh_exc)

        return deleted


__all__ = [
    "CreateResult",
    "DeleteResult",
    "DomainLifecycle",
    "PowerResult",
    "UpdateResult",
    "VmEntry",
]
