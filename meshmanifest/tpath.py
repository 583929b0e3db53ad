"""Traversal and in-place update of trees built from parsed YAML or JSON.

Nodes in such trees are dicts, lists and scalar leaves. Paths are sequences of
string elements of the form ``a.b.[key:value].c.[list_entry_regex]`` where:

* ``[key:value]`` selects the entry of a list of maps whose ``key`` equals ``value``;
* ``[value]`` selects the entry of a leaf list that matches the regular expression ``value``.

A ``:`` inside a key or value must be escaped as ``\\:``; a ``.`` inside a path
element must be escaped as ``\\.``.

Some updates (deleting a list entry, replacing it) need access to the parent of a
node. :class:`PathContext` records the chain of ancestors seen while walking the
tree so that such updates can be made.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pprint import pformat
from typing import Any, Iterable, List, Optional, Sequence

logger = logging.getLogger(__name__)

PATH_SEPARATOR = "."
_ESCAPED_PATH_SEPARATOR = "\\" + PATH_SEPARATOR
_KV_SEPARATOR = ":"

Path = List[str]


class TreePathError(Exception):
    """Raised when a path cannot be resolved or written in a tree."""


@dataclass(eq=False)
class PathContext:
    """A node reached during traversal, linked to its ancestors."""

    node: Any = None
    parent: Optional["PathContext"] = None
    key_to_child: Any = field(default=None)

    def __str__(self) -> str:
        lines = ["", "--------------- NodeContext ------------------"]
        if self.parent is not None:
            lines.append(f"Parent.Node=\n{pformat(self.parent.node)}")
            lines.append(f"KeyToChild={self.parent.key_to_child}")
        lines.append(f"Node=\n{pformat(self.node)}")
        lines.append("----------------------------------------------")
        return "\n".join(lines) + "\n"


def _split_escaped(text: str, separator: str) -> List[str]:
    """Split text on separator, ignoring separators preceded by a backslash."""
    parts: List[str] = []
    current: List[str] = []
    previous = ""
    for char in text:
        if char == separator and previous != "\\":
            parts.append("".join(current))
            current = []
        else:
            current.append(char)
        previous = char
    parts.append("".join(current))
    return parts


def path_from_string(path: str) -> Path:
    """Convert a dotted path string into a list of path elements."""
    return [
        element.replace(_ESCAPED_PATH_SEPARATOR, PATH_SEPARATOR)
        for element in _split_escaped(path, PATH_SEPARATOR)
        if element
    ]


def path_to_string(path: Iterable[str]) -> str:
    """Join path elements back into a dotted path string."""
    return PATH_SEPARATOR.join(path)


def _is_bracketed(element: str) -> bool:
    return len(element) >= 2 and element.startswith("[") and element.endswith("]")


def _remove_brackets(element: str) -> str:
    return element[1:-1]


def _is_kv_path_element(element: str) -> bool:
    if not _is_bracketed(element):
        return False
    kv = _split_escaped(_remove_brackets(element), _KV_SEPARATOR)
    return len(kv) == 2 and bool(kv[0]) and bool(kv[1])


def _path_kv(element: str) -> tuple[str, str]:
    if not _is_kv_path_element(element):
        raise TreePathError(f"{element} is not a valid key:value path element")
    key, value = _split_escaped(_remove_brackets(element), _KV_SEPARATOR)
    unescape = "\\" + _KV_SEPARATOR
    return key.replace(unescape, _KV_SEPARATOR), value.replace(unescape, _KV_SEPARATOR)


def _path_v(element: str) -> str:
    if not _is_bracketed(element):
        # A leaf list entry may be addressed by its bare value.
        return element
    inner = _remove_brackets(element)
    if not inner or _is_kv_path_element(element):
        raise TreePathError(f"{element} is not a valid value path element")
    return inner


def _to_str(value: Any) -> str:
    """Render a scalar the way it appears in YAML text, for comparisons."""
    if value is None:
        return "<nil>"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer() and abs(value) < 1e21:
        return str(int(value))
    return str(value)


def _matches_regex(pattern: Any, value: Any) -> bool:
    pattern_text = _to_str(pattern)
    try:
        return re.search(pattern_text, _to_str(value)) is not None
    except re.error:
        logger.error("bad regex expression %s", pattern_text)
        return False


def get_path_context(root: Any, path: Sequence[str]) -> PathContext:
    """Return the PathContext of the node at path from root.

    Raises TreePathError if the path does not exist or is malformed.
    """
    path = list(path)
    return _get_path_context(PathContext(node=root), path, path, create_missing=False)


def _get_path_context(
    nc: PathContext, full_path: Path, remain_path: Path, create_missing: bool
) -> PathContext:
    while remain_path:
        element = remain_path[0]
        node = nc.node

        if isinstance(node, list):
            nc = _select_list_entry(nc, node, element, full_path)
            remain_path = remain_path[1:]
            continue

        if isinstance(node, dict):
            if element not in node:
                if not create_missing:
                    raise TreePathError(
                        f"path not found at element {element} in path {path_to_string(full_path)}"
                    )
                node[element] = {}
            nc.key_to_child = element
            nc = PathContext(node=node[element], parent=nc)
            remain_path = remain_path[1:]
            continue

        raise TreePathError(
            f"leaf type {type(node).__name__} in non-leaf node {path_to_string(remain_path)}"
        )
    return nc


def _select_list_entry(nc: PathContext, entries: list, element: str, full_path: Path) -> PathContext:
    use_kv = _is_kv_path_element(element)
    for index, entry in enumerate(entries):
        if isinstance(entry, dict) and use_kv:
            key, value = _path_kv(element)
            if key in entry and _to_str(entry[key]) == value:
                nc.key_to_child = index
                return PathContext(node=entry, parent=nc, key_to_child=key)
            continue
        try:
            value = _path_v(element)
        except TreePathError as err:
            raise TreePathError(f"path {path_to_string(full_path)}: {err}") from None
        if _matches_regex(value, entry):
            nc.key_to_child = index
            return PathContext(node=entry, parent=nc)
    raise TreePathError(f"path {path_to_string(full_path)}: element {element} not found")


def write_node(root: Any, path: Sequence[str], value: Any) -> None:
    """Write value at path in root, creating any missing intermediate maps."""
    path = list(path)
    nc = _get_path_context(PathContext(node=root), path, path, create_missing=True)
    write_path_context(nc, value)


def write_path_context(nc: PathContext, value: Any) -> None:
    """Write value to the node held by nc; a value of None deletes a list entry."""
    parent = nc.parent
    if value is None:
        # Only list entries can be deleted; other nodes are left untouched.
        if parent is not None and isinstance(parent.node, list):
            index = parent.key_to_child
            if not 0 <= index < len(parent.node):
                raise TreePathError(f"index {index} out of range for list of length {len(parent.node)}")
            del parent.node[index]
        return

    if parent is None:
        raise TreePathError("cannot write a value to the root node")
    if isinstance(parent.node, list):
        index = parent.key_to_child
        if not 0 <= index < len(parent.node):
            raise TreePathError(f"index {index} out of range for list of length {len(parent.node)}")
        parent.node[index] = value
    elif isinstance(parent.node, dict):
        parent.node[parent.key_to_child] = value
    nc.node = value


def delete_from_tree(value_tree: dict, path: Sequence[str], remain_path: Sequence[str]) -> bool:
    """Set the value at remain_path in value_tree to None.

    Returns True if a value was found and cleared. Raises TreePathError when a
    list on the way holds entries that are not maps.
    """
    remain_path = list(remain_path)
    if not remain_path:
        return False
    key = remain_path[0]
    if key not in value_tree:
        return False
    if len(remain_path) == 1:
        value_tree[key] = None
        return True
    rest = remain_path[1:]
    node = value_tree[key]
    if isinstance(node, dict):
        return delete_from_tree(node, path, rest)
    if isinstance(node, list):
        for entry in node:
            if not isinstance(entry, dict):
                raise TreePathError("fail to convert list entry to a map")
            try:
                if delete_from_tree(entry, path, rest):
                    return True
            except TreePathError:
                continue
    return False