from pathlib import Path

from rich.console import Console
from rich.table import Table

from .context import Context
from .pm2 import process_error_log, process_memory_mb
from .utils import CommandError, format_age

ERROR_PREVIEW = 25


def _truncate(text: str, size: int = ERROR_PREVIEW) -> str:
    return text[:size] + ("..." if len(text) > size else "")


def last_error_line(path: Path | None) -> str:
    if path is None or not path.exists():
        return ""
    lines = path.read_text(errors="replace").strip().splitlines()
    return lines[-1] if lines else ""


def disk_usage(ctx: Context, path: Path) -> str:
    if not path.exists():
        return "N/A"
    try:
        return ctx.shell.run("du", "-sh", str(path)).split()[0]
    except (CommandError, IndexError, OSError):
        return "N/A"


def collect_status(ctx: Context) -> list[dict]:
    """One row per project, merging the config record with ``pm2 jlist``."""
    config = ctx.store.load()
    try:
        processes = {p.get("name"): p for p in ctx.supervisor.list_processes()}
        list_error = ""
    except (CommandError, OSError, ValueError) as e:
        processes = {}
        list_error = str(e)

    rows = []
    for project in config["projects"]:
        row = {
            "pid": project.get("pid", ""),
            "owner": project.get("owner", ""),
            "repo": project.get("repo", ""),
            "port": project.get("port"),
            "status": "Error" if list_error else "Not Running",
            "memory": "N/A",
            "disk": "N/A",
            "updated": format_age(project.get("last_updated")),
            "error": _truncate(list_error) if list_error else "",
        }
        process = processes.get(project.get("repo"))
        if process:
            row["status"] = process.get("pm2_env", {}).get("status", "unknown")
            row["memory"] = f"{process_memory_mb(process)}MB"
            row["disk"] = disk_usage(ctx, ctx.paths.project_dir(project["repo"]))
            if row["status"] != "online":
                row["error"] = _truncate(last_error_line(process_error_log(process)))
        rows.append(row)
    return rows


def render_status(rows: list[dict], console: Console | None = None):
    table = Table(header_style="bold cyan")
    for column in ["PID", "Owner", "Repository", "Port", "Status", "Memory", "Disk Space", "Last Updated", "Errors"]:
        table.add_column(column)
    for row in rows:
        status_color = "green" if row["status"] == "online" else "red"
        table.add_row(
            f"[bold yellow]{row['pid']}[/bold yellow]",
            row["owner"],
            row["repo"],
            f"[bold bright_green]{row['port']}[/bold bright_green]" if row["port"] else "[grey50]N/A[/grey50]",
            f"[{status_color}]{row['status']}[/{status_color}]",
            row["memory"],
            row["disk"],
            row["updated"],
            f"[grey50]{row['error'] or '-'}[/grey50]",
        )
    (console or Console()).print(table)


def render_domains(config: dict, console: Console | None = None):
    table = Table(title="Domains Configuration", header_style="bold cyan")
    table.add_column("Project")
    table.add_column("Domain")
    table.add_column("Port")
    by_pid = {p.get("pid"): p for p in config["projects"]}
    for record in config.get("domains", []):
        project = by_pid.get(record.get("pid"), {})
        table.add_row(
            project.get("repo", "?"),
            f"[blue]{record['domain']}[/blue]",
            str(project.get("port") or "N/A"),
        )
    (console or Console()).print(table)
