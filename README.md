# meshmanifest

A small library for working with multi-document Kubernetes YAML manifests:

- parse a manifest into objects keyed by `Kind:namespace:name`;
- compare two manifests object by object, optionally selecting, ignoring or
  renaming resources;
- apply path-based overlays that modify or delete values and list entries
  inside the objects of a manifest.

It has three modules: `meshmanifest.tpath`, `meshmanifest.objects` and
`meshmanifest.patch`. The only dependency is PyYAML.

## Installation

From a checkout of the project:

```
pip install .
```

To run the tests, install the `test` extra and run pytest:

```
pip install ".[test]"
pytest
```

## Objects and manifests (`meshmanifest.objects`)

```python
from meshmanifest.objects import (
    parse_k8s_objects_from_yaml_manifest,
    manifest_diff,
    manifest_diff_with_rename_select_ignore,
)

objects = parse_k8s_objects_from_yaml_manifest(manifest_text)
by_hash = objects.to_map()   # {"Deployment:istio-system:istio-citadel": K8sObject, ...}
```

- `parse_k8s_objects_from_yaml_manifest(text)` splits the text on `---` lines,
  drops lines starting with `#`, and parses each remaining document. Documents
  that fail to parse (or have no `kind`) are logged and skipped.
- `parse_yaml_to_k8s_object(data)` and `parse_json_to_k8s_object(data)` parse a
  single object and raise `ManifestError` on failure. `k8s_objects_from_dicts`
  wraps already parsed mappings.
- A `K8sObject` exposes `group`, `version`, `kind`, `name`, `namespace` and the
  parsed `object`; `json()` and `yaml()` render it (caching the result);
  `add_labels(labels)` merges labels into its metadata; `valid()` reports
  whether kind and name are both set.
- `object_hash(kind, namespace, name)` builds the `Kind:namespace:name` key;
  for `ClusterRole` and `ClusterRoleBinding` the namespace is left empty.
  `hash_name_kind(kind, name)` builds `Kind:name`.
- `K8sObjects` is a list of objects with `to_map()`, `to_name_kind_map()`
  (valid objects only), `json_manifest()`, `yaml_manifest()` and
  `sort_by_score(score)`, which orders by score, then group, kind and name.

### Comparing manifests

```python
print(manifest_diff(old_text, new_text, verbose=False))

print(manifest_diff_with_rename_select_ignore(
    old_text,
    new_text,
    rename_resources="Deployment::istio-citadel->::istio-ca",
    select_resources="::",
    ignore_resources="Pod:*:*",
    verbose=False,
))
```

The result holds one section per differing object, sorted by key:
`Object <key> has diffs:`, `Object <key> is missing in A:` or
`Object <key> is missing in B:`. It is the empty string when the manifests
match. With `verbose=False` each change is shown as `path: old -> new`; with
`verbose=True` a unified diff of the normalised YAML is shown.

Selectors have the form `Kind:namespace:name` and are comma separated. An
empty part or `*` matches anything; other parts are regular expressions. The
select filter is applied before the ignore filter. An ignore selector may carry
a fourth part, a dotted path inside the object that is left out of the
comparison when `verbose` is false. Renames have the form `from->to`; an empty
or `*` part of `to` keeps the old part, and renames apply to the objects of the
first manifest only.

## Tree paths (`meshmanifest.tpath`)

Paths are dotted, as in `a.b.[name:n1].value`:

- `[key:value]` selects the entry of a list of mappings whose `key` equals
  `value`;
- `[pattern]` (or a bare element) selects the first entry of a list of scalars
  that the regular expression `pattern` matches.

A `:` inside a key or value is escaped as `\:`, a `.` inside an element as `\.`.

```python
from meshmanifest.tpath import path_from_string, get_path_context, write_path_context, write_node

tree = {"a": {"b": [{"name": "n1", "value": "v1"}]}}
ctx = get_path_context(tree, path_from_string("a.b.[name:n1].value"))
write_path_context(ctx, "v2")                   # modify
write_node(tree, path_from_string("x.y"), 1)    # creates missing maps
```

Writing `None` through `write_path_context` deletes the selected list entry.
`delete_from_tree(tree, path, remain_path)` sets the value at `remain_path` to
`None` and returns whether it was found. Paths that do not exist or are
malformed raise `TreePathError`.

## Patching a manifest (`meshmanifest.patch`)

```python
from meshmanifest.patch import K8sObjectOverlay, PathValue, yaml_manifest_patch

overlays = [
    K8sObjectOverlay(
        kind="Deployment",
        name="istio-citadel",
        patches=[PathValue(
            path="spec.template.spec.containers.[name:galley].command.[--livenessProbeInterval]",
            value="--livenessProbeInterval=1111s",
        )],
    )
]
patched = yaml_manifest_patch(base_yaml, "istio-system", overlays)
```

Overlays are matched to objects by kind, the given namespace and name. Patched
objects come first in the output, followed by the objects without an overlay.
A `PathValue` with `value=None` deletes the selected list entry. If any overlay
matches no object or any patch fails, `PatchError` is raised; its `errors`
attribute lists every message and `output` holds what could be rendered.

## What it does not do

This is a library only: there is no command-line tool, it does not talk to a
cluster, and it does not render charts, translate configuration into chart
values or perform strategic merge patches.