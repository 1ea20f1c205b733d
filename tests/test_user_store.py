import json

import pytest

from src.reportwizard.infrastructure.user_store import (
    FileUserStore,
    InMemoryUserStore,
    get_user_store,
    reset_user_store,
)


def test_in_memory_store_basics():
    store = InMemoryUserStore()
    rec = store.create("Ada@Example.com", "hash")
    assert rec.email == "ada@example.com"
    assert store.get("ADA@example.com") is rec
    with pytest.raises(ValueError, match="exists"):
        store.create("ada@example.com", "other")
    with pytest.raises(KeyError):
        store.set_hubspot_token("ghost@example.com", "t")
    assert store.list_emails() == ["ada@example.com"]


def test_state_is_copied_in_and_out():
    store = InMemoryUserStore()
    store.create("a@example.com", "h")
    state = {"storyPath": {"business_focus": "Revenue"}}
    store.save_state("a@example.com", state)
    state["storyPath"]["business_focus"] = "Changed"
    out = store.get_state("a@example.com")
    assert out == {"storyPath": {"business_focus": "Revenue"}}
    out["storyPath"]["business_focus"] = "Mutated"
    assert store.get_state("a@example.com")["storyPath"]["business_focus"] == "Revenue"
    store.save_state("a@example.com", None)
    assert store.get_state("a@example.com") is None


def test_lock_is_per_user():
    store = InMemoryUserStore()
    assert store.lock("a@example.com") is store.lock("A@example.com")
    assert store.lock("a@example.com") is not store.lock("b@example.com")


def test_file_store_persists(tmp_path):
    path = tmp_path / "users.json"
    store = FileUserStore(str(path))
    store.create("a@example.com", "h")
    store.set_hubspot_token("a@example.com", "pat-1")
    store.save_state("a@example.com", {"selectedObjects": ["deals"]})

    on_disk = json.loads(path.read_text(encoding="utf-8"))
    assert on_disk["a@example.com"]["hubspot_token"] == "pat-1"

    reloaded = FileUserStore(str(path))
    assert reloaded.get("a@example.com").hubspot_token == "pat-1"
    assert reloaded.get_state("a@example.com") == {"selectedObjects": ["deals"]}


def test_file_store_survives_corrupt_file(tmp_path):
    path = tmp_path / "users.json"
    path.write_text("{not json", encoding="utf-8")
    assert FileUserStore(str(path)).list_emails() == []


def test_factory_selects_implementation(monkeypatch, tmp_path):
    monkeypatch.setenv("RW_USER_STORE_IMPL", "file")
    monkeypatch.setenv("RW_USERS_FILE", str(tmp_path / "u.json"))
    reset_user_store()
    assert isinstance(get_user_store(), FileUserStore)
    assert get_user_store() is get_user_store()
    monkeypatch.setenv("RW_USER_STORE_IMPL", "memory")
    reset_user_store()
    assert type(get_user_store()) is InMemoryUserStore
