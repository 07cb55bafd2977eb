import json
import os
import shutil
import subprocess
import sys
import uuid
from datetime import datetime, timezone

from rich import print


class NodeshipError(Exception):
    """Base for errors the CLI reports and exits on."""


class ConfigError(NodeshipError):
    pass


class DeployError(NodeshipError):
    pass


class ProjectExistsError(DeployError):
    pass


class UpdateError(DeployError):
    pass


class GitHubError(NodeshipError):
    pass


class CommandError(NodeshipError):
    def __init__(self, args: list[str], returncode: int, output: str = ""):
        self.cmd = list(args)
        self.returncode = returncode
        self.output = output
        detail = f": {output}" if output else ""
        super().__init__(
            f"Command failed ({returncode}): {' '.join(self.cmd)}{detail}"
        )


def log(msg: str):
    print(f"[green][INFO][/green] {msg}")


def warn(msg: str):
    print(f"[yellow][WARN][/yellow] {msg}")


def error(msg: str):
    print(f"[red][ERROR][/red] {msg}")
    sys.exit(1)


def mask_secret(text: str, secret: str | None) -> str:
    if not secret:
        return text
    return text.replace(secret, "***")


class Shell:
    """Runs external programs on the local machine.

    Commands given to ``run_privileged`` are prefixed with ``sudo`` unless the
    process already runs as root.
    """

    def __init__(self, sudo: bool | None = None):
        if sudo is None:
            sudo = hasattr(os, "geteuid") and os.geteuid() != 0
        self.sudo = sudo

    def run(
        self,
        *args: str,
        cwd: str | os.PathLike | None = None,
        check: bool = True,
        capture: bool = True,
    ) -> str:
        """:param capture: when False output streams to the terminal"""
        try:
            if capture:
                result = subprocess.run(args, cwd=cwd, capture_output=True, text=True)
            else:
                result = subprocess.run(args, cwd=cwd)
        except OSError as e:
            raise CommandError(list(args), 127, str(e)) from e
        if check and result.returncode != 0:
            output = (result.stderr or result.stdout or "").strip() if capture else ""
            raise CommandError(list(args), result.returncode, output)
        return (result.stdout or "").strip() if capture else ""

    def run_json(self, *args: str) -> dict | list:
        output = self.run(*args)
        return json.loads(output) if output else []

    def run_privileged(self, *args: str, check: bool = True, capture: bool = True) -> str:
        if self.sudo:
            args = ("sudo", *args)
        return self.run(*args, check=check, capture=capture)

    def run_script(self, script: str, cwd: str | os.PathLike | None = None, check: bool = True) -> str:
        return self.run("bash", "-c", script, cwd=cwd, check=check, capture=False)

    def succeeds(self, *args: str) -> bool:
        try:
            self.run(*args)
        except (CommandError, OSError):
            return False
        return True

    def which(self, name: str) -> bool:
        return shutil.which(name) is not None

    def edit(self, path: str | os.PathLike):
        editor = os.environ.get("EDITOR", "nano")
        self.run(editor, str(path), capture=False, check=False)


def generate_pid() -> str:
    return uuid.uuid4().hex[:5]


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def parse_iso(value: str) -> datetime | None:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_age(value: str | None, now: datetime | None = None) -> str:
    """Renders an ISO timestamp as e.g. ``5 minutes ago``."""
    parsed = parse_iso(value) if value else None
    if parsed is None:
        return "unknown"
    now = now or datetime.now(timezone.utc)
    seconds = max(0, int((now - parsed).total_seconds()))
    for unit, size in [("day", 86400), ("hour", 3600), ("minute", 60)]:
        if seconds >= size:
            count = seconds // size
            return f"{count} {unit}{'s' if count != 1 else ''} ago"
    return "less than a minute ago"
