import pytest
import yaml

from meshmanifest.tpath import (
    PathContext,
    TreePathError,
    delete_from_tree,
    get_path_context,
    path_from_string,
    path_to_string,
    write_node,
    write_path_context,
)

ROOT_YAML = """
a:
  b:
  - name: n1
    value: v1
  - name: n2
    list:
    - v1
    - v2
    - v3_regex
"""

TREE_YAML = """
a:
  b:
    c: val1
    list1:
    - i1: val1
    - i2: val2
    - i3a: key1
      i3b:
        list2:
        - i1: val1
        - i2: val2
        - i3a: key1
          i3b:
            i1: va11
"""


@pytest.mark.parametrize(
    "path, value, want",
    [
        (
            "a.b.[name:n1].value",
            "v2",
            """
a:
  b:
  - name: n1
    value: v2
  - list:
    - v1
    - v2
    - v3_regex
    name: n2
""",
        ),
        (
            "a.b.[name:n1].value",
            "v2",
            """
a:
  b:
  - name: "n1"
    value: v2
  - list:
    - v1
    - v2
    - v3_regex
    name: n2
""",
        ),
        (
            "a.b.[name:n2].list.[v2]",
            "v3",
            """
a:
  b:
  - name: n1
    value: v1
  - list:
    - v1
    - v3
    - v3_regex
    name: n2
""",
        ),
        (
            "a.b.[name:n1]",
            None,
            """
a:
  b:
  - list:
    - v1
    - v2
    - v3_regex
    name: n2
""",
        ),
        (
            "a.b.[name:n2].list.[v2]",
            None,
            """
a:
  b:
  - name: n1
    value: v1
  - list:
    - v1
    - v3_regex
    name: n2
""",
        ),
        (
            "a.b.[name:n2].list.[v3]",
            None,
            """
a:
  b:
  - name: n1
    value: v1
  - list:
    - v1
    - v2
    name: n2
""",
        ),
    ],
    ids=[
        "ModifyListEntryValue",
        "ModifyListEntryValueQuoted",
        "ModifyListEntry",
        "DeleteListEntry",
        "DeleteListEntryValue",
        "DeleteListEntryValueRegex",
    ],
)
def test_write_path_context(path, value, want):
    root = yaml.safe_load(ROOT_YAML)
    pc = get_path_context(root, path_from_string(path))
    write_path_context(pc, value)
    assert root == yaml.safe_load(want)


def test_get_path_context_path_not_found():
    root = yaml.safe_load(ROOT_YAML)
    with pytest.raises(TreePathError) as excinfo:
        get_path_context(root, path_from_string("a.c.[name:n2].list.[v3]"))
    assert str(excinfo.value) == "path not found at element c in path a.c.[name:n2].list.[v3]"


def test_get_path_context_error_key():
    root = yaml.safe_load(ROOT_YAML)
    with pytest.raises(TreePathError) as excinfo:
        get_path_context(root, path_from_string("a.b.[].list"))
    assert str(excinfo.value) == "path a.b.[].list: [] is not a valid value path element"


def test_get_path_context_element_not_found():
    root = yaml.safe_load(ROOT_YAML)
    with pytest.raises(TreePathError) as excinfo:
        get_path_context(root, path_from_string("a.b.[name:n9]"))
    assert str(excinfo.value) == "path a.b.[name:n9]: element [name:n9] not found"


def test_get_path_context_leaf_in_non_leaf():
    root = yaml.safe_load(ROOT_YAML)
    with pytest.raises(TreePathError) as excinfo:
        get_path_context(root, path_from_string("a.b.[name:n1].value.deeper"))
    assert "in non-leaf node deeper" in str(excinfo.value)


def test_get_path_context_returns_node_and_parent():
    root = yaml.safe_load(ROOT_YAML)
    pc = get_path_context(root, path_from_string("a.b.[name:n2]"))
    assert pc.node == {"name": "n2", "list": ["v1", "v2", "v3_regex"]}
    assert pc.parent.key_to_child == 1


def test_kv_match_on_integer_value():
    root = {"ports": [{"containerPort": 443}, {"containerPort": 15014}]}
    pc = get_path_context(root, path_from_string("ports.[containerPort:15014].containerPort"))
    write_path_context(pc, 22222)
    assert root == {"ports": [{"containerPort": 443}, {"containerPort": 22222}]}


@pytest.mark.parametrize(
    "base_yaml, path, value, want",
    [
        (
            "",
            "a.b.c",
            "val1",
            """
a:
  b:
    c: val1
""",
        ),
        (
            TREE_YAML,
            "a.b.c",
            "val2",
            """
a:
  b:
    c: val2
    list1:
    - i1: val1
    - i2: val2
    - i3a: key1
      i3b:
        list2:
        - i1: val1
        - i2: val2
        - i3a: key1
          i3b:
            i1: va11
""",
        ),
        (
            TREE_YAML,
            "a.b.d",
            "val3",
            """
a:
  b:
    c: val1
    d: val3
    list1:
    - i1: val1
    - i2: val2
    - i3a: key1
      i3b:
        list2:
        - i1: val1
        - i2: val2
        - i3a: key1
          i3b:
            i1: va11
""",
        ),
        (
            TREE_YAML,
            "a.b.list1.[i3a:key1].i3b.list2.[i3a:key1].i3b.i1",
            "val2",
            """
a:
  b:
    c: val1
    list1:
    - i1: val1
    - i2: val2
    - i3a: key1
      i3b:
        list2:
        - i1: val1
        - i2: val2
        - i3a: key1
          i3b:
            i1: val2
""",
        ),
    ],
    ids=["insert empty", "overwrite", "partial create", "list keys"],
)
def test_write_node(base_yaml, path, value, want):
    root = yaml.safe_load(base_yaml) if base_yaml else {}
    write_node(root, path_from_string(path), value)
    assert root == yaml.safe_load(want)


def test_write_node_does_not_create_list_entries():
    root = yaml.safe_load(TREE_YAML)
    with pytest.raises(TreePathError):
        write_node(root, path_from_string("a.b.list1.[i9:missing].x"), "v")


def test_write_to_root_raises():
    with pytest.raises(TreePathError):
        write_path_context(PathContext(node={}), "value")


def test_path_from_string_and_back():
    assert path_from_string("a.b.[name:n1].value") == ["a", "b", "[name:n1]", "value"]
    assert path_to_string(["a", "b", "[name:n1]", "value"]) == "a.b.[name:n1].value"


def test_path_from_string_drops_empty_and_unescapes_dots():
    assert path_from_string(".a..b.") == ["a", "b"]
    assert path_from_string("metadata.labels.app\\.kubernetes\\.io") == [
        "metadata",
        "labels",
        "app.kubernetes.io",
    ]


def test_escaped_colon_in_kv_element():
    root = {"items": [{"name": "a:b", "v": 1}, {"name": "c", "v": 2}]}
    pc = get_path_context(root, path_from_string("items.[name:a\\:b].v"))
    write_path_context(pc, 5)
    assert root["items"][0] == {"name": "a:b", "v": 5}


def test_delete_from_tree_sets_none():
    tree = {"pilot": {"env": {"A": "1"}, "image": "pilot"}}
    path = path_from_string("pilot.env")
    assert delete_from_tree(tree, path, path) is True
    assert tree == {"pilot": {"env": None, "image": "pilot"}}


def test_delete_from_tree_missing_returns_false():
    tree = {"pilot": {"image": "pilot"}}
    path = path_from_string("pilot.env")
    assert delete_from_tree(tree, path, path) is False
    assert tree == {"pilot": {"image": "pilot"}}


def test_delete_from_tree_through_list():
    tree = {"gateways": [{"a": 1}, {"b": {"c": 2}}]}
    path = path_from_string("gateways.b.c")
    assert delete_from_tree(tree, path, path) is True
    assert tree == {"gateways": [{"a": 1}, {"b": {"c": None}}]}


def test_delete_from_tree_list_of_scalars_raises():
    tree = {"names": ["x", "y"]}
    path = path_from_string("names.x")
    with pytest.raises(TreePathError):
        delete_from_tree(tree, path, path)


def test_delete_from_tree_empty_path():
    tree = {"a": 1}
    assert delete_from_tree(tree, [], []) is False
    assert tree == {"a": 1}