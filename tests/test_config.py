import json

import pytest

from nodeship import config as config_module
from nodeship.config import (
    ConfigStore,
    Paths,
    add_domain,
    add_project,
    find_project,
    is_webhook_configured,
    new_pid,
    remove_domain_record,
    remove_project,
    touch_project,
)
from nodeship.utils import ConfigError, ProjectExistsError


@pytest.fixture
def store(tmp_path):
    return ConfigStore(tmp_path / "config.json")


def test_load_creates_default(store):
    assert store.load() == {"projects": [], "domains": []}
    assert store.path.exists()


def test_unknown_keys_survive_a_save(store):
    store.path.write_text(json.dumps({"projects": [], "dashboard": {"theme": "dark"}}))
    config = store.load()
    store.save(config)
    saved = json.loads(store.path.read_text())
    assert saved["dashboard"] == {"theme": "dark"}
    assert saved["domains"] == []


def test_full_config_round_trip(store):
    original = {
        "projects": [
            {"pid": "a1b2c", "owner": "acme", "repo": "site", "port": 3000, "webhookId": 123,
             "type": "next.js", "last_updated": "2026-01-01T00:00:00+00:00"},
            {"pid": "d4e5f", "owner": "acme", "repo": "worker", "port": None, "webhookId": None,
             "type": "node.js", "last_updated": "2026-02-01T00:00:00+00:00"},
        ],
        "domains": [{"pid": "a1b2c", "domain": "app.example.com"}],
        "github": {"username": "acme", "access_token": "ghp_secret"},
        "packageManager": "bun",
        "webhook": {"webhookUrl": "https://hooks.example.com/webhook", "webhookPort": 41234,
                    "secret": "s3cret", "pm2Name": "nodeship-webhook-server"},
        "email": "ops@example.com",
        "dashboard": {"enabled": True, "users": [{"name": "admin"}]},
    }
    store.path.write_text(json.dumps(original))
    store.save(store.load())
    assert json.loads(store.path.read_text()) == original
    assert store.load() == original


def test_malformed_file_raises(store):
    store.path.write_text("{not json")
    with pytest.raises(ConfigError):
        store.load()


def test_non_object_raises(store):
    store.path.write_text("[]")
    with pytest.raises(ConfigError):
        store.load()


def test_transaction_saves(store):
    with store.transaction() as config:
        config["email"] = "ops@example.com"
    assert store.load()["email"] == "ops@example.com"


def test_failed_transaction_writes_nothing(store):
    store.save({"projects": [], "domains": [], "email": "old@example.com"})
    with pytest.raises(RuntimeError):
        with store.transaction() as config:
            config["email"] = "new@example.com"
            raise RuntimeError("interrupted")
    assert store.load()["email"] == "old@example.com"
    assert not list(store.path.parent.glob(".config-*"))


def test_add_project_record_shape():
    config = {"projects": [], "domains": []}
    project = add_project(config, owner="acme", repo="site", port=3000, project_type="next.js")
    assert len(project["pid"]) == 5
    assert project["webhookId"] is None
    assert project["type"] == "next.js"
    assert project["last_updated"]
    assert find_project(config, pid=project["pid"]) is project


def test_duplicate_repo_rejected():
    config = {"projects": [], "domains": []}
    add_project(config, owner="acme", repo="site", port=3000, project_type="next.js")
    with pytest.raises(ProjectExistsError):
        add_project(config, owner="other", repo="site", port=4000, project_type="node.js")
    assert len(config["projects"]) == 1


def test_new_pid_skips_taken(monkeypatch):
    pids = iter(["aaaaa", "aaaaa", "bbbbb"])
    monkeypatch.setattr(config_module, "generate_pid", lambda: next(pids))
    config = {"projects": [{"pid": "aaaaa", "repo": "one"}]}
    assert new_pid(config) == "bbbbb"


def test_touch_project_updates_timestamp():
    config = {"projects": [{"pid": "p1", "repo": "site", "last_updated": "2020-01-01T00:00:00+00:00"}]}
    project = touch_project(config, "site", port=4000)
    assert project["port"] == 4000
    assert project["last_updated"] != "2020-01-01T00:00:00+00:00"
    assert touch_project(config, "missing") is None


def test_remove_project_cascades_domains():
    config = {
        "projects": [{"pid": "p1", "repo": "site"}, {"pid": "p2", "repo": "api"}],
        "domains": [
            {"pid": "p1", "domain": "site.example.com"},
            {"pid": "p2", "domain": "api.example.com"},
        ],
    }
    removed = remove_project(config, "site")
    assert removed["pid"] == "p1"
    assert [p["repo"] for p in config["projects"]] == ["api"]
    assert config["domains"] == [{"pid": "p2", "domain": "api.example.com"}]


def test_add_domain_moves_existing_record():
    config = {"projects": [], "domains": [{"pid": "p1", "domain": "a.example.com"}]}
    add_domain(config, "p2", "a.example.com")
    assert config["domains"] == [{"pid": "p2", "domain": "a.example.com"}]
    assert remove_domain_record(config, "a.example.com")
    assert not remove_domain_record(config, "a.example.com")


def test_webhook_configured_needs_all_fields():
    assert not is_webhook_configured({})
    assert not is_webhook_configured({"webhook": {"webhookUrl": "https://h/webhook", "secret": "x"}})
    assert is_webhook_configured(
        {"webhook": {"webhookUrl": "https://h/webhook", "webhookPort": 4000, "secret": "x"}}
    )


def test_paths_from_env(monkeypatch, tmp_path):
    monkeypatch.setenv("NODESHIP_HOME", str(tmp_path / "state"))
    paths = Paths.from_env()
    assert paths.config_file == tmp_path / "state" / "config.json"
    assert paths.project_dir("site") == tmp_path / "state" / "projects" / "site"
