"""In-memory Kubernetes objects and their JSON and YAML representations.

A :class:`K8sObject` wraps the parsed mapping of one Kubernetes resource and
caches its rendered JSON and YAML text. :class:`K8sObjects` is an ordered
collection of them that can be sorted, indexed by hash and rendered back into a
multi-document manifest. The module also compares two manifests object by
object.
"""

from __future__ import annotations

import difflib
import json
import logging
import re
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

import yaml

from meshmanifest.tpath import path_from_string

logger = logging.getLogger(__name__)

YAML_SEPARATOR = "\n---\n"

_CLUSTER_SCOPED_KINDS = frozenset({"ClusterRole", "ClusterRoleBinding"})


class ManifestError(ValueError):
    """Raised when a manifest or object cannot be parsed, rendered or compared."""


def object_hash(kind: str, namespace: str, name: str) -> str:
    """Return an identifying key built from kind, namespace and name."""
    if kind in _CLUSTER_SCOPED_KINDS:
        namespace = ""
    return ":".join((kind, namespace, name))


def hash_name_kind(kind: str, name: str) -> str:
    """Return an identifying key built from kind and name only."""
    return ":".join((kind, name))


def _string_field(mapping: Any, key: str) -> str:
    if not isinstance(mapping, dict):
        return ""
    value = mapping.get(key)
    return value if isinstance(value, str) else ""


def _to_json(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str)


def _to_yaml(obj: Any) -> str:
    return yaml.safe_dump(obj, default_flow_style=False, sort_keys=True)


class K8sObject:
    """A single Kubernetes resource with cached JSON and YAML renderings."""

    def __init__(self, obj: dict, json_text: Optional[str] = None, yaml_text: Optional[str] = None):
        self.object = obj
        self._json = json_text
        self._yaml = yaml_text

        api_version = _string_field(obj, "apiVersion")
        group, _, version = api_version.rpartition("/")
        self.group = group
        self.version = version
        self.kind = _string_field(obj, "kind")
        metadata = obj.get("metadata") if isinstance(obj, dict) else None
        self.name = _string_field(metadata, "name")
        self.namespace = _string_field(metadata, "namespace")

    def __repr__(self) -> str:
        return f"K8sObject({self.hash()!r})"

    def hash(self) -> str:
        """Return the kind:namespace:name key of this object."""
        return object_hash(self.kind, self.namespace, self.name)

    def hash_name_kind(self) -> str:
        """Return the kind:name key of this object."""
        return hash_name_kind(self.kind, self.name)

    def json(self) -> str:
        """Return the JSON text of this object, using the cache when present."""
        if self._json is not None:
            return self._json
        try:
            return _to_json(self.object)
        except (TypeError, ValueError) as err:
            raise ManifestError(f"error building json: {err}") from err

    def yaml(self) -> str:
        """Return the YAML text of this object, using the cache when present."""
        if self._yaml is not None:
            return self._yaml
        self._json = self.json()
        try:
            rendered = _to_yaml(json.loads(self._json))
        except (yaml.YAMLError, ValueError) as err:
            raise ManifestError(f"error building yaml: {err}") from err
        self._yaml = rendered
        return rendered

    def add_labels(self, labels: Dict[str, str]) -> None:
        """Merge labels into the object's labels, overriding existing keys."""
        metadata = self.object.get("metadata")
        if not isinstance(metadata, dict):
            metadata = {}
            self.object["metadata"] = metadata
        existing = metadata.get("labels")
        merged = dict(existing) if isinstance(existing, dict) else {}
        merged.update(labels)
        metadata["labels"] = merged
        self._json = None
        self._yaml = None

    def valid(self) -> bool:
        """Report whether both kind and name are set."""
        return bool(self.kind) and bool(self.name)


class K8sObjects(list):
    """An ordered collection of :class:`K8sObject`."""

    def json_manifest(self) -> str:
        """Render all objects as JSON documents separated by blank lines."""
        return "\n\n".join(item.json() for item in self)

    def yaml_manifest(self) -> str:
        """Render all objects as a multi-document YAML manifest."""
        return "\n\n".join(item.yaml() + YAML_SEPARATOR for item in self)

    def sort_by_score(self, score: Callable[[K8sObject], int]) -> None:
        """Order objects in place by score, then group, kind and name."""
        self.sort(key=lambda o: (score(o), o.group, o.kind, o.name))

    def to_map(self) -> Dict[str, K8sObject]:
        """Map each valid object's kind:namespace:name key to the object."""
        return {o.hash(): o for o in self if o.valid()}

    def to_name_kind_map(self) -> Dict[str, K8sObject]:
        """Map each valid object's kind:name key to the object."""
        return {o.hash_name_kind(): o for o in self if o.valid()}


def k8s_objects_from_dicts(objs: Iterable[dict]) -> K8sObjects:
    """Build a K8sObjects collection from already parsed object mappings."""
    return K8sObjects(K8sObject(o) for o in objs)


def _check_object(obj: Any) -> dict:
    if not isinstance(obj, dict):
        raise ManifestError(f"parsed unexpected type {type(obj).__name__}")
    if not _string_field(obj, "kind"):
        raise ManifestError("Object 'Kind' is missing")
    return obj


def parse_json_to_k8s_object(data: str | bytes) -> K8sObject:
    """Parse JSON text into a K8sObject."""
    text = data.decode() if isinstance(data, bytes) else data
    try:
        obj = json.loads(text)
    except ValueError as err:
        raise ManifestError(f"error parsing json into unstructured object: {err}") from err
    try:
        _check_object(obj)
    except ManifestError as err:
        raise ManifestError(f"error parsing json into unstructured object: {err}") from err
    if obj["kind"].endswith("List") and isinstance(obj.get("items"), list):
        raise ManifestError("parsed unexpected type list")
    return K8sObject(obj, json_text=text)


def parse_yaml_to_k8s_object(data: str | bytes) -> K8sObject:
    """Parse the first YAML (or JSON) document in data into a K8sObject."""
    text = data.decode() if isinstance(data, bytes) else data
    try:
        obj = next(iter(yaml.safe_load_all(text)), None)
        _check_object(obj)
    except (yaml.YAMLError, ManifestError) as err:
        raise ManifestError(f"error decoding object: {err}") from err
    return K8sObject(obj, yaml_text=text)


def _remove_non_yaml_lines(text: str) -> str:
    kept = (line + "\n" for line in text.split("\n") if not line.startswith("#"))
    # Chart rendering sometimes emits blank objects holding only a comment.
    return "".join(kept).strip()


def _split_documents(manifest: str) -> List[str]:
    documents: List[str] = []
    current: List[str] = []
    lines = manifest.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    for line in lines:
        line = line.rstrip("\r")
        if line == "---":
            documents.append("".join(current))
            current = []
        else:
            current.append(line + "\n")
    documents.append("".join(current))
    return documents


def parse_k8s_objects_from_yaml_manifest(manifest: str) -> K8sObjects:
    """Parse a multi-document YAML manifest; documents that fail to parse are skipped."""
    objects = K8sObjects()
    for document in _split_documents(manifest):
        document = _remove_non_yaml_lines(document)
        if not document:
            continue
        try:
            objects.append(parse_yaml_to_k8s_object(document))
        except ManifestError as err:
            logger.error("Failed to parse YAML to a k8s object: %s", err)
    return objects


def manifest_diff(a: str, b: str, verbose: bool) -> str:
    """Compare two manifests object by object and describe the differences."""
    aom = parse_k8s_objects_from_yaml_manifest(a).to_map()
    bom = parse_k8s_objects_from_yaml_manifest(b).to_map()
    return _manifest_diff(aom, bom, None, verbose)


def manifest_diff_with_rename_select_ignore(
    a: str,
    b: str,
    rename_resources: str,
    select_resources: str,
    ignore_resources: str,
    verbose: bool,
) -> str:
    """Compare two manifests after renaming, selecting and ignoring resources.

    The selection is applied before the ignore filter. Renames apply to the
    objects of manifest ``a`` only.
    """
    renames = _get_key_value_map(rename_resources)
    selected = _get_obj_path_map(select_resources)
    ignored = _get_obj_path_map(ignore_resources)

    aom = parse_k8s_objects_from_yaml_manifest(a).to_map()
    bom = parse_k8s_objects_from_yaml_manifest(b).to_map()

    if renames:
        aom = _rename_resources(aom, renames)

    aosm = _filter_select_ignore(aom, selected, ignored)
    bosm = _filter_select_ignore(bom, selected, ignored)
    return _manifest_diff(aosm, bosm, ignored, verbose)


def _build_resource_regexp(pattern: str) -> re.Pattern:
    parts = [".*" if part in ("", "*") else part for part in pattern.split(":")]
    try:
        return re.compile(":".join(parts))
    except re.error as err:
        raise ManifestError(f"error building the resource regexp: {err}") from err


def _rename_resources(objects: Dict[str, K8sObject], renames: Dict[str, str]) -> Dict[str, K8sObject]:
    result: Dict[str, K8sObject] = {}
    for key, obj in objects.items():
        renamed = False
        for from_pattern, to_pattern in renames.items():
            try:
                from_re = _build_resource_regexp(from_pattern.strip())
            except ManifestError as err:
                raise ManifestError(
                    f"error building the regexp from rename-from string: {from_pattern}, error: {err}"
                ) from err
            if not from_re.search(key):
                continue
            from_parts = key.split(":")
            if len(from_parts) != 3:
                raise ManifestError(f"failed to split the old name, length != 3: {key}")
            to_parts = to_pattern.split(":")
            if len(to_parts) != 3:
                raise ManifestError(f"failed to split the rename-to string, length != 3: {to_pattern}")
            new_key = ":".join(
                old if new in ("", "*") else new for old, new in zip(from_parts, to_parts)
            )
            result[new_key] = obj
            renamed = True
        if not renamed:
            result[key] = obj
    return result


def _filter_select_ignore(
    objects: Dict[str, K8sObject], selected: Dict[str, str], ignored: Dict[str, str]
) -> Dict[str, K8sObject]:
    result: Dict[str, K8sObject] = {}
    for key, obj in objects.items():
        for pattern in selected:
            if _build_resource_regexp(pattern.strip()).search(key):
                result[key] = obj
        for pattern in ignored:
            if _build_resource_regexp(pattern.strip()).search(key):
                result.pop(key, None)
    return result


def _get_obj_path_map(resources: str) -> Dict[str, str]:
    result: Dict[str, str] = {}
    if not resources:
        return result
    for entry in resources.split(","):
        parts = entry.split(":")
        if len(parts) < 4:
            result[entry] = ""
            continue
        kind, namespace, name, path = parts[:4]
        result[f"{kind}:{namespace}:{name}"] = path
    return result


def _get_key_value_map(resources: str) -> Dict[str, str]:
    result: Dict[str, str] = {}
    if not resources:
        return result
    for entry in resources.split(","):
        parts = entry.split("->")
        if len(parts) == 2:
            result[parts[0]] = parts[1]
    return result


def _object_ignore_paths(object_name: str, ignored: Optional[Dict[str, str]]) -> List[str]:
    paths: List[str] = []
    for obj, path in (ignored or {}).items():
        if not path:
            continue
        try:
            pattern = _build_resource_regexp(obj.strip())
        except ManifestError:
            continue
        if pattern.search(object_name):
            paths.append(path)
    return paths


def _manifest_diff(
    aom: Dict[str, K8sObject],
    bom: Dict[str, K8sObject],
    ignored: Optional[Dict[str, str]],
    verbose: bool,
) -> str:
    out: Dict[str, str] = {}
    for key, a_obj in aom.items():
        a_yaml = a_obj.yaml()
        b_obj = bom.get(key)
        if b_obj is None:
            out[key] = f"\n\nObject {key} is missing in B:\n\n"
            continue
        b_yaml = b_obj.yaml()
        if verbose:
            diff = _yaml_text_diff(a_yaml, b_yaml)
        else:
            diff = _yaml_compare(a_yaml, b_yaml, _object_ignore_paths(key, ignored))
        if diff:
            out[key] = f"\n\nObject {key} has diffs:\n\n{diff}"
    for key in bom:
        if key not in aom:
            out[key] = f"\n\nObject {key} is missing in A:\n\n"
    return "".join(out[key] for key in sorted(out))


def _load_yaml(text: str) -> Any:
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as err:
        raise ManifestError(f"error parsing yaml: {err}") from err


def _yaml_text_diff(a: str, b: str) -> str:
    a_lines = _to_yaml(_load_yaml(a)).splitlines(keepends=True)
    b_lines = _to_yaml(_load_yaml(b)).splitlines(keepends=True)
    return "".join(difflib.unified_diff(a_lines, b_lines, fromfile="a", tofile="b"))


class _Missing:
    def __repr__(self) -> str:
        return "<empty>"


_MISSING = _Missing()


class _Change:
    __slots__ = ("old", "new")

    def __init__(self, old: Any, new: Any):
        self.old = old
        self.new = new


def _scalars_equal(a: Any, b: Any) -> bool:
    if isinstance(a, bool) or isinstance(b, bool):
        return type(a) is type(b) and a == b
    return a == b


def _is_ignored(path: Sequence[str], ignore_paths: Sequence[List[str]]) -> bool:
    for pattern in ignore_paths:
        if len(pattern) <= len(path) and all(
            p == "*" or p == element for p, element in zip(pattern, path)
        ):
            return True
    return False


def _diff_tree(a: Any, b: Any, path: List[str], ignore_paths: Sequence[List[str]]) -> Any:
    if path and _is_ignored(path, ignore_paths):
        return None
    if isinstance(a, dict) and isinstance(b, dict):
        changes = {}
        for key in sorted(set(a) | set(b), key=str):
            sub = _diff_tree(a.get(key, _MISSING), b.get(key, _MISSING), path + [str(key)], ignore_paths)
            if sub is not None:
                changes[str(key)] = sub
        return changes or None
    if isinstance(a, list) and isinstance(b, list):
        changes = {}
        for index in range(max(len(a), len(b))):
            left = a[index] if index < len(a) else _MISSING
            right = b[index] if index < len(b) else _MISSING
            sub = _diff_tree(left, right, path + [f"[{index}]"], ignore_paths)
            if sub is not None:
                changes[f"[{index}]"] = sub
        return changes or None
    if _scalars_equal(a, b):
        return None
    return _Change(a, b)


def _format_value(value: Any) -> str:
    if value is _MISSING:
        return "<empty>"
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)
    return str(value)


def _render_diff(tree: Dict[str, Any], indent: int) -> List[str]:
    pad = "  " * indent
    lines: List[str] = []
    for key, sub in tree.items():
        if isinstance(sub, _Change):
            lines.append(f"{pad}{key}: {_format_value(sub.old)} -> {_format_value(sub.new)}")
        else:
            lines.append(f"{pad}{key}:")
            lines.extend(_render_diff(sub, indent + 1))
    return lines


def _yaml_compare(a: str, b: str, ignore_paths: Sequence[str]) -> str:
    """Describe the differences between two YAML texts, skipping ignored paths."""
    patterns = [path_from_string(p) for p in ignore_paths]
    tree = _diff_tree(_load_yaml(a), _load_yaml(b), [], patterns)
    if tree is None:
        return ""
    if isinstance(tree, _Change):
        return f"{_format_value(tree.old)} -> {_format_value(tree.new)}\n"
    return "\n".join(_render_diff(tree, 0)) + "\n"