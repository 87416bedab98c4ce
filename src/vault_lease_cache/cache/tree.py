"""Dotted-address helpers for the nested secret cache.

The cache is a plain nested ``dict``.  An address such as ``db.primary``
names the value at ``tree["db"]["primary"]``; the root address ``.`` names
the tree itself.  Writes replace exactly the subtree at their address and
never touch siblings or ancestors beyond creating missing levels.
"""

from __future__ import annotations

import copy
from typing import Any

from vault_lease_cache.errors import NotFound, ValidationError

ROOT = "."


def split_address(address: str) -> list[str]:
    """Return the path segments of *address*; the root address has none."""
    if not isinstance(address, str) or not address:
        raise ValidationError(f"Address must be a non-empty string, got {address!r}")
    if address == ROOT:
        return []
    segments = address.split(".")
    if any(not segment for segment in segments):
        raise ValidationError(f"Malformed address '{address}': empty segment")
    return segments


def get_at(tree: dict[str, Any], address: str) -> Any:
    """Return the live value stored at *address*.

    Raises ``NotFound`` when any segment is missing.
    """
    node: Any = tree
    for segment in split_address(address):
        if not isinstance(node, dict) or segment not in node:
            raise NotFound(address)
        node = node[segment]
    return node


def set_at(tree: dict[str, Any], address: str, value: Any) -> Any:
    """Store a private copy of *value* at *address* and return that copy.

    The root address merges the keys of a mapping into *tree*.  Any other
    address replaces the subtree at its last segment, creating intermediate
    mappings and replacing non-mapping values found on the way.
    """
    fresh = copy.deepcopy(value)
    segments = split_address(address)

    if not segments:
        if not isinstance(fresh, dict):
            raise ValidationError(
                f"Only a mapping can be merged at the root, got {type(value).__name__}"
            )
        tree.update(fresh)
        return fresh

    node = tree
    for segment in segments[:-1]:
        child = node.get(segment)
        if not isinstance(child, dict):
            child = {}
            node[segment] = child
        node = child
    node[segments[-1]] = fresh
    return fresh


def snapshot(tree: dict[str, Any], address: str | None = None) -> Any:
    """Deep copy of the subtree at *address*, or of the whole tree."""
    if address is None:
        return copy.deepcopy(tree)
    return copy.deepcopy(get_at(tree, address))
