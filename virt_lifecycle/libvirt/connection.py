from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Callable, ContextManager, Dict, Iterator, Optional
from urllib.parse import urlencode

import libvirt

from .errors import HypervisorConnectionError

logger = logging.getLogger(__name__)
libvirt_logger = logging.getLogger("libvirt")


def _forward_libvirt_error(_ctx, err) -> None:
    # libvirt prints every error to stderr unless a handler is registered;
    # the same error is raised to the caller as libvirtError.
    try:
        message = err[2]
    except (TypeError, IndexError):
        message = err
    libvirt_logger.debug("libvirt: %s", message)


# Register once at import (prevents libvirt from writing errors to stderr)
try:
    libvirt.registerErrorHandler(_forward_libvirt_error, None)
except libvirt.libvirtError as exc:
    logger.debug("Unable to register libvirt error handler: %s", exc)


def build_ssh_uri(hostname: str, user: Optional[str] = None, ssh_opts: Optional[Dict] = None) -> str:
    """Build a qemu+ssh URI for a remote hypervisor."""
    ssh_opts = ssh_opts or {}
    base = f"qemu+ssh://{user + '@' if user else ''}{hostname}/system"
    # Only include supported ssh params; ignore empties
    query = {}
    khv = ssh_opts.get("known_hosts_verify")
    if khv in {"normal", "auto", "ignore"}:
        query["known_hosts_verify"] = khv
    kh_path = ssh_opts.get("known_hosts")
    if kh_path:
        query["known_hosts"] = kh_path
    return f"{base}?{urlencode(query)}" if query else base


class LibvirtConnection:
    """Owns a single libvirt connection; close() is safe to call repeatedly."""

    def __init__(self, uri: Optional[str], conn: "libvirt.virConnect") -> None:
        self.uri = uri
        self._conn: Optional[libvirt.virConnect] = conn

    @property
    def conn(self) -> "libvirt.virConnect":
        if self._conn is None:
            raise HypervisorConnectionError(self.uri, "connection already closed")
        return self._conn

    @property
    def closed(self) -> bool:
        return self._conn is None

    def close(self) -> None:
        if self._conn is None:
            return
        conn, self._conn = self._conn, None
        logger.debug("Disconnecting from %s", self.uri)
        try:
            conn.close()
        except libvirt.libvirtError as exc:
            logger.warning("Error while closing connection to %s: %s", self.uri, exc)

    def __enter__(self) -> "LibvirtConnection":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def connect(uri: Optional[str]) -> LibvirtConnection:
    logger.info("Connecting to %s", uri or "<default>")
    try:
        conn = libvirt.open(uri)
    except libvirt.libvirtError as exc:
        logger.error("Connection to %s failed: %s", uri, exc)
        raise HypervisorConnectionError(uri, exc) from exc
    if conn is None:
        logger.error("Failed to connect to %s", uri)
        raise HypervisorConnectionError(uri)
    return LibvirtConnection(uri, conn)


@contextmanager
def open_connection(uri: Optional[str]) -> Iterator[LibvirtConnection]:
    """Open a connection for the duration of the block and always close it."""
    connection = connect(uri)
    try:
        yield connection
    finally:
        connection.close()


ConnectionFactory = Callable[[Optional[str]], ContextManager[LibvirtConnection]]


__all__ = [
    "ConnectionFactory",
    "LibvirtConnection",
    "build_ssh_uri",
    "connect",
    "open_connection",
]
