"""Persistent state: projects, domains, credentials and relay settings.

Everything lives in one JSON file under ``~/.nodeship`` (or ``NODESHIP_HOME``).
Records are kept as plain dicts so that keys written by other tools, such as
the webhook relay dashboard, survive a load/save cycle.
"""

import fcntl
import json
import os
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from .utils import ConfigError, ProjectExistsError, generate_pid, now_iso

PROJECT_TYPES = ("next.js", "node.js")
PACKAGE_MANAGERS = ("npm", "bun")


@dataclass
class Paths:
    home: Path

    @classmethod
    def from_env(cls) -> "Paths":
        base = os.environ.get("NODESHIP_HOME")
        return cls(Path(base) if base else Path.home() / ".nodeship")

    @property
    def config_file(self) -> Path:
        return self.home / "config.json"

    @property
    def projects_dir(self) -> Path:
        return self.home / "projects"

    @property
    def temp_dir(self) -> Path:
        return self.home / "temp"

    @property
    def webhook_dir(self) -> Path:
        return self.home / "webhook"

    def project_dir(self, repo: str) -> Path:
        return self.projects_dir / repo

    def ensure(self):
        self.projects_dir.mkdir(parents=True, exist_ok=True)


def default_config() -> dict:
    return {"projects": [], "domains": []}


class ConfigStore:
    def __init__(self, path: Path):
        self.path = Path(path)
        self.lock_path = self.path.with_name(self.path.name + ".lock")

    def load(self) -> dict:
        if not self.path.exists():
            self.save(default_config())
        try:
            config = json.loads(self.path.read_text())
        except json.JSONDecodeError as e:
            raise ConfigError(f"Config file {self.path} is not valid JSON: {e}") from e
        if not isinstance(config, dict):
            raise ConfigError(f"Config file {self.path} must contain a JSON object")
        config.setdefault("projects", [])
        config.setdefault("domains", [])
        return config

    def save(self, config: dict):
        """Writes to a temp file next to the config and renames it into place."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            "w", dir=self.path.parent, prefix=".config-", suffix=".json", delete=False
        ) as tmp:
            tmp.write(json.dumps(config, indent=2))
            tmp_path = Path(tmp.name)
        try:
            tmp_path.replace(self.path)
        finally:
            tmp_path.unlink(missing_ok=True)

    @contextmanager
    def transaction(self):
        """Yields the latest config and saves it if the block succeeds."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.lock_path, "w") as lock:
            fcntl.flock(lock, fcntl.LOCK_EX)
            try:
                config = self.load()
                yield config
                self.save(config)
            finally:
                fcntl.flock(lock, fcntl.LOCK_UN)


def find_project(config: dict, *, repo: str | None = None, pid: str | None = None) -> dict | None:
    for project in config.get("projects", []):
        if repo is not None and project.get("repo") == repo:
            return project
        if pid is not None and project.get("pid") == pid:
            return project
    return None


def new_pid(config: dict) -> str:
    taken = {p.get("pid") for p in config.get("projects", [])}
    pid = generate_pid()
    while pid in taken:
        pid = generate_pid()
    return pid


def add_project(
    config: dict,
    *,
    owner: str,
    repo: str,
    port: int | None,
    project_type: str,
    webhook_id: int | None = None,
    pid: str | None = None,
) -> dict:
    if find_project(config, repo=repo):
        raise ProjectExistsError(f"Project '{repo}' already exists")
    project = {
        "pid": pid or new_pid(config),
        "owner": owner,
        "repo": repo,
        "port": port,
        "webhookId": webhook_id,
        "type": project_type,
        "last_updated": now_iso(),
    }
    config["projects"].append(project)
    return project


def touch_project(config: dict, repo: str, **fields) -> dict | None:
    project = find_project(config, repo=repo)
    if project is None:
        return None
    project.update(fields)
    project["last_updated"] = now_iso()
    return project


def remove_project(config: dict, repo: str) -> dict | None:
    """Removes the project and every domain record pointing at it."""
    project = find_project(config, repo=repo)
    if project is None:
        return None
    config["projects"] = [p for p in config["projects"] if p.get("repo") != repo]
    config["domains"] = [d for d in config.get("domains", []) if d.get("pid") != project.get("pid")]
    return project


def project_domains(config: dict, pid: str) -> list[dict]:
    return [d for d in config.get("domains", []) if d.get("pid") == pid]


def find_domain(config: dict, domain: str) -> dict | None:
    return next((d for d in config.get("domains", []) if d.get("domain") == domain), None)


def add_domain(config: dict, pid: str, domain: str) -> dict:
    existing = find_domain(config, domain)
    if existing:
        existing["pid"] = pid
        return existing
    record = {"pid": pid, "domain": domain}
    config.setdefault("domains", []).append(record)
    return record


def remove_domain_record(config: dict, domain: str) -> bool:
    before = len(config.get("domains", []))
    config["domains"] = [d for d in config.get("domains", []) if d.get("domain") != domain]
    return len(config["domains"]) != before


def is_webhook_configured(config: dict) -> bool:
    webhook = config.get("webhook") or {}
    return all(webhook.get(key) for key in ("webhookUrl", "webhookPort", "secret"))
