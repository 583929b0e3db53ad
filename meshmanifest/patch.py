"""Patching of Kubernetes resources in a YAML manifest.

Paths have the form ``a.b.c.[key:value].d.[list_entry_value]``, where:

* ``[key:value]`` selects the entry of list ``c`` that holds ``key: value``;
* ``[list_entry_value]`` selects the entry of leaf list ``d`` that matches the
  regular expression ``list_entry_value``.

Values and list entries can be modified, deleted (a patch with no value) or
replaced. Keys and values in paths are written without quotes, and a ``:``
inside them must be escaped as ``\\:``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List

import yaml

from meshmanifest.objects import (
    K8sObject,
    ManifestError,
    object_hash,
    parse_k8s_objects_from_yaml_manifest,
)
from meshmanifest.tpath import (
    TreePathError,
    get_path_context,
    path_from_string,
    write_path_context,
)

logger = logging.getLogger(__name__)

_DOCUMENT_END = "\n---\n"


class PatchError(Exception):
    """Raised when one or more overlays could not be applied.

    ``errors`` holds every message; ``output`` holds the manifest rendered from
    the objects that could be processed.
    """

    def __init__(self, errors: List[str], output: str = ""):
        super().__init__("\n".join(errors))
        self.errors = list(errors)
        self.output = output


@dataclass
class PathValue:
    """A single patch: the path to a node and the value to write there.

    A value of None deletes the selected list entry.
    """

    path: str = ""
    value: Any = None


@dataclass
class K8sObjectOverlay:
    """A list of patches for the object with the given kind and name."""

    kind: str = ""
    name: str = ""
    patches: List[PathValue] = field(default_factory=list)
    api_version: str = ""


def yaml_manifest_patch(base_yaml: str, namespace: str, overlays: Iterable[K8sObjectOverlay]) -> str:
    """Apply overlays to the objects of base_yaml in namespace and return the patched manifest.

    Patched objects come first, followed by the objects that have no overlay.
    Raises PatchError listing every failure if any overlay could not be applied.
    """
    base_objects = parse_k8s_objects_from_yaml_manifest(base_yaml).to_map()
    overlay_map = _object_override_map(overlays, namespace)

    parts: List[str] = []
    errors: List[str] = []

    for key, patches in overlay_map.items():
        base = base_objects.get(key)
        if base is None:
            available = "".join(k + "\n" for k in base_objects)
            errors.append(
                f"overlay for {key} does not match any object in output manifest:\n"
                f"{patches!r}\n\nAvailable objects are:\n{available}"
            )
            continue
        try:
            patched = _apply_patches(base, patches)
        except PatchError as err:
            errors.append(f"patch error: {err}")
            continue
        parts.append(patched + _DOCUMENT_END)

    for key, obj in base_objects.items():
        if key in overlay_map:
            continue
        try:
            rendered = obj.yaml()
        except ManifestError as err:
            errors.append(f"object to YAML error ({err}) for base object: \n{obj!r}")
            continue
        parts.append(rendered + _DOCUMENT_END)

    output = "".join(parts)
    if errors:
        raise PatchError(errors, output)
    return output


def _apply_patches(base: K8sObject, patches: Iterable[PathValue]) -> str:
    """Apply patches to base and return the resulting YAML; raise PatchError on any failure."""
    try:
        tree = yaml.safe_load(base.yaml())
    except (ManifestError, yaml.YAMLError) as err:
        raise PatchError([str(err)]) from err
    if tree is None:
        tree = {}

    errors: List[str] = []
    for patch in patches:
        logger.debug("applying path=%s, value=%r", patch.path, patch.value)
        try:
            context = get_path_context(tree, path_from_string(patch.path or ""))
            write_path_context(context, patch.value)
        except TreePathError as err:
            errors.append(str(err))
    if errors:
        raise PatchError(errors)
    return yaml.safe_dump(tree, default_flow_style=False, sort_keys=True)


def _object_override_map(
    overlays: Iterable[K8sObjectOverlay], namespace: str
) -> Dict[str, List[PathValue]]:
    return {object_hash(o.kind, namespace, o.name): list(o.patches) for o in overlays}