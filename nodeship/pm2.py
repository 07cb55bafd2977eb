from pathlib import Path
from typing import Protocol

from .utils import CommandError, Shell


class Supervisor(Protocol):
    def ensure_installed(self) -> None: ...

    def start(self, name: str, command: list[str], cwd: Path) -> None:
        """:param command: program and arguments handed to ``pm2 start``"""
        ...

    def stop(self, name: str) -> None: ...

    def restart(self, name: str) -> None: ...

    def delete(self, name: str) -> None: ...

    def exists(self, name: str) -> bool: ...

    def status(self, name: str) -> str | None:
        """:return: e.g. 'online', 'stopped', 'errored', or None if unknown"""
        ...

    def restart_count(self, name: str) -> int | None:
        """:return: PM2's ``restart_time`` counter, None if unknown"""
        ...

    def list_processes(self) -> list[dict]: ...

    def logs(self, name: str, *, errors_only: bool = False, lines: int = 100) -> None: ...


class Pm2Supervisor:
    def __init__(self, shell: Shell | None = None):
        self.shell = shell or Shell()

    def is_installed(self) -> bool:
        return self.shell.succeeds("pm2", "-v")

    def ensure_installed(self):
        if not self.is_installed():
            self.shell.run("npm", "install", "-g", "pm2", capture=False)

    def start(self, name: str, command: list[str], cwd: Path) -> None:
        program, *args = command
        cmd = ["pm2", "start", program, "--name", name]
        if args:
            cmd += ["--", *args]
        self.shell.run(*cmd, cwd=cwd, capture=False)

    def stop(self, name: str) -> None:
        self.shell.run("pm2", "stop", name)

    def restart(self, name: str) -> None:
        self.shell.run("pm2", "restart", name, capture=False)

    def delete(self, name: str) -> None:
        self.shell.run("pm2", "delete", name)

    def exists(self, name: str) -> bool:
        return self.shell.succeeds("pm2", "describe", name)

    def list_processes(self) -> list[dict]:
        return self.shell.run_json("pm2", "jlist")

    def find(self, name: str) -> dict | None:
        return next((p for p in self.list_processes() if p.get("name") == name), None)

    def status(self, name: str) -> str | None:
        try:
            process = self.find(name)
        except (CommandError, ValueError):
            return None
        if process is None:
            return None
        return process.get("pm2_env", {}).get("status")

    def restart_count(self, name: str) -> int | None:
        try:
            process = self.find(name)
        except (CommandError, ValueError):
            return None
        if process is None:
            return None
        return process.get("pm2_env", {}).get("restart_time")

    def logs(self, name: str, *, errors_only: bool = False, lines: int = 100):
        cmd = ["pm2", "logs", name, "--lines", str(lines), "--nostream"]
        if errors_only:
            cmd.append("--err")
        self.shell.run(*cmd, capture=False, check=False)


def process_memory_mb(process: dict) -> int:
    return round(process.get("monit", {}).get("memory", 0) / (1024 * 1024))


def process_error_log(process: dict) -> Path | None:
    path = process.get("pm2_env", {}).get("pm_err_log_path")
    return Path(path) if path else None
