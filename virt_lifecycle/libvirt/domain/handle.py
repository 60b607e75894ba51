from __future__ import annotations

import logging
from typing import Optional

import libvirt

from ..errors import (
    AlreadyActiveError,
    DomainBusyError,
    DomainNotFoundError,
    DomainOperationError,
)
from ..state import DomainState, map_domain_state

logger = logging.getLogger(__name__)

_NO_DOMAIN = getattr(libvirt, "VIR_ERR_NO_DOMAIN", 42)
_OPERATION_INVALID = getattr(libvirt, "VIR_ERR_OPERATION_INVALID", 55)


def error_code(exc: "libvirt.libvirtError") -> Optional[int]:
    try:
        return exc.get_error_code()
    except Exception:  # pragma: no cover - malformed error objects
        return None


def is_missing_domain(exc: "libvirt.libvirtError") -> bool:
    return error_code(exc) == _NO_DOMAIN


class LibvirtDomain:
    """Reference to one libvirt domain, translating libvirt failures into lifecycle errors."""

    def __init__(self, domain: "libvirt.virDomain", name: Optional[str] = None) -> None:
        self._domain = domain
        self._name = name or domain.name()
        self._undefined = False

    @classmethod
    def lookup(cls, conn: "libvirt.virConnect", name: str) -> "LibvirtDomain":
        try:
            domain = conn.lookupByName(name)
        except libvirt.libvirtError as exc:
            if is_missing_domain(exc):
                raise DomainNotFoundError(name) from exc
            logger.error("lookupByName(%s) failed: %s", name, exc)
            raise DomainOperationError("lookup", name, exc) from exc
        if domain is None:
            raise DomainNotFoundError(name)
        return cls(domain, name)

    @classmethod
    def define(cls, conn: "libvirt.virConnect", descriptor: str, *, name: Optional[str] = None) -> "LibvirtDomain":
        """Define (or redefine in place) a persistent domain. Never starts it."""
        try:
            domain = conn.defineXML(descriptor)
        except libvirt.libvirtError as exc:
            logger.error("defineXML failed for %s: %s", name or "<descriptor>", exc)
            raise DomainOperationError("define", name, exc) from exc
        if domain is None:
            raise DomainOperationError("define", name, "hypervisor returned no domain")
        return cls(domain)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def name(self) -> str:
        return self._name

    @property
    def identity(self) -> str:
        try:
            return self._domain.UUIDString()
        except libvirt.libvirtError as exc:
            raise DomainOperationError("inspect", self._name, exc) from exc

    def descriptor(self) -> str:
        try:
            return self._domain.XMLDesc(0)
        except libvirt.libvirtError as exc:
            if is_missing_domain(exc):
                raise DomainNotFoundError(self._name) from exc
            raise DomainOperationError("inspect", self._name, exc) from exc

    def current_state(self) -> DomainState:
        if self._undefined:
            return DomainState.DESTROYED
        try:
            code = self._domain.state()[0]
        except libvirt.libvirtError as exc:
            if is_missing_domain(exc):
                return DomainState.DESTROYED
            raise DomainOperationError("read state of", self._name, exc) from exc
        return map_domain_state(code)

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def create(self) -> None:
        try:
            self._domain.create()
        except libvirt.libvirtError as exc:
            if error_code(exc) == _OPERATION_INVALID and self._is_active():
                raise AlreadyActiveError(self._name) from exc
            logger.error("Failed to start domain %s: %s", self._name, exc)
            raise DomainOperationError("create", self._name, exc) from exc

    def shutdown(self) -> None:
        try:
            self._domain.shutdown()
        except libvirt.libvirtError as exc:
            logger.error("Failed to shutdown domain %s: %s", self._name, exc)
            raise DomainOperationError("shutdown", self._name, exc) from exc

    def destroy(self) -> None:
        try:
            self._domain.destroy()
        except libvirt.libvirtError as exc:
            logger.error("Failed to destroy domain %s: %s", self._name, exc)
            raise DomainOperationError("destroy", self._name, exc) from exc

    def undefine(self) -> None:
        state = self.current_state()
        if state != DomainState.DEFINED_STOPPED:
            raise DomainBusyError(self._name, state)

        undefine_flags = 0
        for attr in ("VIR_DOMAIN_UNDEFINE_MANAGED_SAVE", "VIR_DOMAIN_UNDEFINE_NVRAM"):
            undefine_flags |= getattr(libvirt, attr, 0)

        try:
            if undefine_flags and hasattr(self._domain, "undefineFlags"):
                self._domain.undefineFlags(undefine_flags)
            else:
                self._domain.undefine()
        except libvirt.libvirtError as exc:
            logger.error("Failed to undefine domain %s: %s", self._name, exc)
            raise DomainOperationError("undefine", self._name, exc) from exc
        self._undefined = True

    def _is_active(self) -> bool:
        try:
            return bool(self._domain.isActive())
        except libvirt.libvirtError:
            return False

    def __repr__(self) -> str:
        return f"LibvirtDomain(name={self._name!r})"


__all__ = ["LibvirtDomain", "error_code", "is_missing_domain"]
