import json
import shutil
from pathlib import Path

import pytest

from nodeship.config import ConfigStore, Paths
from nodeship.context import Context
from nodeship.nginx import Certbot, NginxProxy
from nodeship.utils import CommandError, DeployError, GitHubError, Shell

NEXT_PACKAGE_JSON = json.dumps({"scripts": {"build": "next build", "start": "next start"}})


class FakeShell(Shell):
    """Records commands; ``mv``, ``ln`` and ``rm`` really touch the filesystem."""

    def __init__(self):
        super().__init__(sudo=False)
        self.calls = []
        self.edited = []
        self.failures = set()
        self.outputs = {
            ("swapon", "--show"): "/swapfile file 1G 0B -2",
            ("certbot", "plugins"): "* nginx",
            ("pm2", "jlist"): "[]",
        }
        self.hooks = {("npm", "run", "build"): self._fake_next_build}

    @staticmethod
    def _fake_next_build(args, cwd):
        if cwd is not None:
            (Path(cwd) / ".next").mkdir(exist_ok=True)

    @staticmethod
    def _lookup(table, args):
        for prefix, value in table.items():
            if tuple(args[: len(prefix)]) == prefix:
                return value
        return None

    def fail(self, *prefix: str):
        self.failures.add(tuple(prefix))

    def ran(self, *prefix: str) -> bool:
        return any(tuple(call[: len(prefix)]) == prefix for call in self.calls)

    def run(self, *args, cwd=None, check=True, capture=True):
        self.calls.append(tuple(args))
        if any(tuple(args[: len(p)]) == p for p in self.failures):
            if check:
                raise CommandError(list(args), 1, "boom")
            return ""
        hook = self._lookup(self.hooks, args)
        if hook:
            hook(args, cwd)
        return self._lookup(self.outputs, args) or ""

    def run_privileged(self, *args, check=True, capture=True):
        self.run(*args, check=check, capture=capture)
        if args[0] == "mv":
            shutil.move(args[1], args[2])
        elif args[0] == "ln":
            target, link = Path(args[-2]), Path(args[-1])
            if link.is_symlink() or link.exists():
                link.unlink()
            link.symlink_to(target)
        elif args[0] == "rm":
            for path in args[1:]:
                if not path.startswith("-"):
                    Path(path).unlink(missing_ok=True)
        return ""

    def edit(self, path):
        self.edited.append(Path(path))


class FakeSupervisor:
    def __init__(self):
        self.processes = {}
        self.calls = []
        self.crashes = {}

    def _maybe_crash(self, name):
        if self.crashes.get(name, 0) > 0:
            self.crashes[name] -= 1
            self.processes.setdefault(name, {})["status"] = "errored"
            raise CommandError(["pm2", "start", name], 1, "crashed")

    def ensure_installed(self):
        self.calls.append(("ensure_installed",))

    def start(self, name, command, cwd):
        self.calls.append(("start", name, list(command)))
        self.processes[name] = {"command": list(command), "cwd": Path(cwd), "status": "launching"}
        self._maybe_crash(name)
        self.processes[name]["status"] = "online"

    def stop(self, name):
        self.calls.append(("stop", name))
        if name not in self.processes:
            raise CommandError(["pm2", "stop", name], 1, "not found")
        self.processes[name]["status"] = "stopped"

    def restart(self, name):
        self.calls.append(("restart", name))
        if name not in self.processes:
            raise CommandError(["pm2", "restart", name], 1, "not found")
        self._maybe_crash(name)
        self.processes[name]["status"] = "online"

    def delete(self, name):
        self.calls.append(("delete", name))
        if name not in self.processes:
            raise CommandError(["pm2", "delete", name], 1, "not found")
        del self.processes[name]

    def exists(self, name):
        return name in self.processes

    def status(self, name):
        return self.processes.get(name, {}).get("status")

    def restart_count(self, name):
        return self.processes.get(name, {}).get("restarts", 0)

    def list_processes(self):
        return [
            {"name": name, "pm2_env": {"status": p["status"]}, "monit": {"memory": 64 * 1024 * 1024}}
            for name, p in self.processes.items()
        ]

    def logs(self, name, *, errors_only=False, lines=100):
        self.calls.append(("logs", name, errors_only))


class FakeGit:
    def __init__(self):
        self.clones = []
        self.files = {"package.json": NEXT_PACKAGE_JSON, "index.js": "console.log('v2')\n"}
        self.error = None

    def clone(self, url, dest, *, secret=None):
        self.clones.append((url, Path(dest)))
        if self.error:
            raise DeployError(self.error)
        dest = Path(dest)
        dest.mkdir(parents=True, exist_ok=True)
        for name, content in self.files.items():
            (dest / name).write_text(content)


class FakeGitHub:
    def __init__(self):
        self.hooks = {}
        self.deleted = []
        self.updated = []
        self.next_id = 1000
        self.fail = False

    def create_webhook(self, repo, url, secret):
        if self.fail:
            raise GitHubError("GitHub POST failed: 401")
        self.next_id += 1
        self.hooks[self.next_id] = (repo, url, secret)
        return self.next_id

    def update_webhook(self, repo, webhook_id, url, secret):
        if self.fail:
            raise GitHubError("GitHub PATCH failed: 404")
        self.updated.append((repo, webhook_id, url, secret))

    def delete_webhook(self, repo, webhook_id):
        if self.fail:
            raise GitHubError("GitHub DELETE failed: 404")
        self.deleted.append((repo, webhook_id))


class ScriptedPrompter:
    """Answers prompts from queues; unanswered confirms return their default."""

    def __init__(self):
        self.confirms = []
        self.texts = []
        self.ports = []
        self.choices = []
        self.emails = ["ops@example.com"]
        self.asked = []

    def confirm(self, message, default=False):
        self.asked.append(message)
        return self.confirms.pop(0) if self.confirms else default

    def ask_text(self, message, validate=None, default=None):
        self.asked.append(message)
        value = self.texts.pop(0)
        if validate:
            assert validate(value) is None, validate(value)
        return value

    def ask_port(self, busy_port=None):
        self.asked.append(f"port {busy_port}")
        return self.ports.pop(0)

    def ask_email(self):
        self.asked.append("email")
        return self.emails.pop(0)

    def ask_domain(self):
        return self.texts.pop(0)

    def choose(self, message, choices):
        self.asked.append(message)
        value = self.choices.pop(0)
        assert value in choices
        return value


@pytest.fixture
def github():
    return FakeGitHub()


@pytest.fixture
def ctx(tmp_path, github):
    paths = Paths(tmp_path / "home")
    paths.ensure()
    nginx_root = tmp_path / "nginx"
    (nginx_root / "sites-available").mkdir(parents=True)
    (nginx_root / "sites-enabled").mkdir(parents=True)
    shell = FakeShell()
    return Context(
        paths=paths,
        store=ConfigStore(paths.config_file),
        shell=shell,
        supervisor=FakeSupervisor(),
        proxy=NginxProxy(nginx_root, shell=shell),
        certbot=Certbot(shell),
        git=FakeGit(),
        prompter=ScriptedPrompter(),
        github_factory=lambda token: github,
    )


@pytest.fixture
def configured(ctx):
    """Context with credentials, a running relay and a certificate email."""
    with ctx.store.transaction() as config:
        config["github"] = {"username": "acme", "access_token": "ghp_secret"}
        config["packageManager"] = "npm"
        config["email"] = "ops@example.com"
        config["webhook"] = {
            "webhookUrl": "https://hooks.example.com/webhook",
            "webhookPort": 41234,
            "secret": "s3cret",
            "pm2Name": "nodeship-webhook-server",
        }
    return ctx

