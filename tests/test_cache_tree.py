"""Tests for dotted-address reads and writes on the cache tree."""

from __future__ import annotations

import pytest

from vault_lease_cache.cache import tree
from vault_lease_cache.errors import NotFound, ValidationError


class TestSplitAddress:
    def test_root(self) -> None:
        assert tree.split_address(".") == []

    def test_nested(self) -> None:
        assert tree.split_address("db.primary.password") == ["db", "primary", "password"]

    @pytest.mark.parametrize("address", ["", "a..b", ".a", "a.", None])
    def test_malformed(self, address: object) -> None:
        with pytest.raises(ValidationError):
            tree.split_address(address)  # type: ignore[arg-type]


class TestSetAt:
    def test_root_merges_keys(self) -> None:
        data = {"existing": 1}
        tree.set_at(data, ".", {"foo": "bar"})
        assert data == {"existing": 1, "foo": "bar"}

    def test_root_requires_mapping(self) -> None:
        with pytest.raises(ValidationError):
            tree.set_at({}, ".", "scalar")

    def test_creates_intermediate_levels(self) -> None:
        data: dict = {}
        tree.set_at(data, "a.b.c", {"k": "v"})
        assert data == {"a": {"b": {"c": {"k": "v"}}}}

    def test_replaces_only_own_subtree(self) -> None:
        data = {"db": {"primary": {"user": "old"}, "replica": {"user": "r"}}, "other": 1}
        tree.set_at(data, "db.primary", {"user": "new"})
        assert data == {"db": {"primary": {"user": "new"}, "replica": {"user": "r"}}, "other": 1}

    def test_full_replace_not_deep_merge(self) -> None:
        data = {"db": {"user": "u", "password": "p"}}
        tree.set_at(data, "db", {"user": "u2"})
        assert data == {"db": {"user": "u2"}}

    def test_scalar_on_path_replaced(self) -> None:
        data = {"a": "scalar"}
        tree.set_at(data, "a.b", {"k": 1})
        assert data == {"a": {"b": {"k": 1}}}

    def test_stores_private_copy(self) -> None:
        data: dict = {}
        value = {"nested": {"k": 1}}
        tree.set_at(data, "x", value)
        value["nested"]["k"] = 2
        assert data["x"]["nested"]["k"] == 1


class TestReads:
    def test_get_at(self) -> None:
        assert tree.get_at({"a": {"b": 2}}, "a.b") == 2

    def test_get_root(self) -> None:
        data = {"a": 1}
        assert tree.get_at(data, ".") is data

    @pytest.mark.parametrize("address", ["missing", "a.missing", "a.b.c"])
    def test_missing_raises_not_found(self, address: str) -> None:
        with pytest.raises(NotFound) as excinfo:
            tree.get_at({"a": {"b": 2}}, address)
        assert excinfo.value.address == address
        assert isinstance(excinfo.value, KeyError)

    def test_empty_subtree_is_not_missing(self) -> None:
        assert tree.snapshot({"a": {}}, "a") == {}

    def test_snapshot_is_deep_copy(self) -> None:
        data = {"a": {"b": [1, 2]}}
        copy = tree.snapshot(data)
        copy["a"]["b"].append(3)
        assert data == {"a": {"b": [1, 2]}}
