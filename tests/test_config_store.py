"""Tests for administrators and the main channel."""

import json

from shared.config_store import ConfigStore


def test_missing_file_is_created_from_defaults(tmp_path):
    path = tmp_path / "data" / "config.json"

    store = ConfigStore.load(str(path), [1, 2], -100500)

    assert store.get_admin_ids() == [1, 2]
    assert json.loads(path.read_text(encoding="utf-8")) == {"adminIds": [1, 2], "mainChannelId": -100500}


def test_file_values_override_defaults(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"adminIds": [5, "6", "junk", 5], "mainChannelId": None}), encoding="utf-8")

    store = ConfigStore.load(str(path), [1], -100500)

    assert store.get_admin_ids() == [5, 6]
    assert store.get_main_channel_id() is None


def test_malformed_file_values_fall_back(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"adminIds": [], "mainChannelId": "abc"}), encoding="utf-8")

    store = ConfigStore.load(str(path), [1], -100500)

    assert store.get_admin_ids() == [1]
    assert store.get_main_channel_id() == -100500


def test_corrupt_file_uses_defaults(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{broken", encoding="utf-8")

    store = ConfigStore.load(str(path), [1], None)

    assert store.get_admin_ids() == [1]


def test_changes_are_persisted(tmp_path):
    path = tmp_path / "config.json"
    store = ConfigStore.load(str(path), [1], None)

    assert store.add_admin(2) is True
    assert store.add_admin(2) is False
    assert store.remove_admin(1) is True
    assert store.remove_admin(1) is False
    store.set_main_channel_id(-1001)

    reloaded = ConfigStore.load(str(path), [1], None)
    assert reloaded.get_admin_ids() == [2]
    assert reloaded.get_main_channel_id() == -1001


def test_production_never_writes(tmp_path):
    path = tmp_path / "config.json"
    store = ConfigStore.load(str(path), [1], None, is_prod=True)
    store.add_admin(2)

    assert not path.exists()
    assert store.is_admin(2)


def test_bootstrap_admin_only_when_empty():
    store = ConfigStore([], None)
    assert store.ensure_bootstrap_admin(7) is True
    assert store.ensure_bootstrap_admin(8) is False
    assert store.get_admin_ids() == [7]


def test_no_bootstrap_in_production():
    store = ConfigStore([], None, is_prod=True)
    assert store.ensure_bootstrap_admin(7) is False
    assert not store.is_admin(7)
