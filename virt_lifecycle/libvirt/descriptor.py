"""Narrow field extraction from libvirt domain XML descriptors."""

from __future__ import annotations

import re
import xml.etree.ElementTree as ET
from typing import Dict, List, Optional
from xml.sax.saxutils import escape

from .errors import DescriptorParseError


def _parse(descriptor: str) -> ET.Element:
    if not descriptor or not descriptor.strip():
        raise DescriptorParseError("descriptor is empty")
    try:
        return ET.fromstring(descriptor)
    except ET.ParseError as exc:
        raise DescriptorParseError(exc) from exc


def _root_text(root: ET.Element, tag: str) -> Optional[str]:
    node = root.find(tag)
    if node is None or node.text is None:
        return None
    text = node.text.strip()
    return text or None


def descriptor_name(descriptor: str) -> Optional[str]:
    return _root_text(_parse(descriptor), "name")


def descriptor_identity(descriptor: str) -> Optional[str]:
    return _root_text(_parse(descriptor), "uuid")


def volumes_by_pool(descriptor: str) -> Dict[str, List[str]]:
    """Group the pool-backed disk volumes referenced by a descriptor.

    Only ``<disk type='volume' device='disk'>`` entries are considered; CD-ROMs
    and file/block backed disks are ignored. Pools keep first-seen order and
    volumes keep declaration order within their pool.
    """
    root = _parse(descriptor)
    grouped: Dict[str, List[str]] = {}
    for disk in root.findall("./devices/disk"):
        if disk.get("type") != "volume" or disk.get("device") != "disk":
            continue
        source = disk.find("source")
        if source is None:
            continue
        pool = source.get("pool")
        volume = source.get("volume")
        if not pool or not volume:
            continue
        grouped.setdefault(pool, []).append(volume)
    return grouped


def with_identity_injected(descriptor: str, identity: str) -> str:
    """Return the descriptor with ``<uuid>`` placed before ``<name>`` if it has none.

    The insertion is textual so the rest of the document is passed to libvirt
    byte for byte.
    """
    if descriptor_identity(descriptor) is not None:
        return descriptor
    root = _parse(descriptor)
    if root.find("uuid") is not None:
        raise DescriptorParseError("descriptor has an empty <uuid> element")
    if root.find("name") is None:
        raise DescriptorParseError("descriptor has no <name> element")

    position = _root_child_start(descriptor, "name")
    if position is None:
        raise DescriptorParseError("unable to locate <name> element")

    line_start = descriptor.rfind("\n", 0, position) + 1
    indent = descriptor[line_start:position]
    element = f"<uuid>{escape(identity)}</uuid>"
    if indent.strip() == "" and line_start > 0:
        element = f"{element}\n{indent}"
    return descriptor[:position] + element + descriptor[position:]


# Element tags, plus comments, processing instructions and CDATA sections so
# that markup inside them is consumed whole and never counted as an element.
_TAG = re.compile(r"<(/?)([A-Za-z_][\w.:-]*)[^>]*?(/?)>|<!--.*?-->|<\?.*?\?>|<!\[CDATA\[.*?\]\]>", re.S)


def _root_child_start(text: str, tag_name: str) -> Optional[int]:
    """Offset of the first opening ``tag_name`` tag that is a direct child of the root."""
    depth = 0
    for tag in _TAG.finditer(text):
        closing, name, self_closing = tag.groups()
        if name is None:
            continue
        if closing:
            depth -= 1
            continue
        if depth == 1 and name == tag_name:
            return tag.start()
        if not self_closing:
            depth += 1
    return None


__all__ = [
    "descriptor_identity",
    "descriptor_name",
    "volumes_by_pool",
    "with_identity_injected",
]
