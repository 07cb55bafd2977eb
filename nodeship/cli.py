#!/usr/bin/env python3
"""Deploy Next.js and Node.js apps from GitHub onto this server.

Prerequisites: a GitHub personal access token, Node.js, sudo rights for nginx and certbot.

Usage: nodeship <command> [options]

Examples:
    nodeship init
    nodeship deploy --owner acme --repo site --port 3000
    nodeship manage site restart
    nodeship domains add --repo site --domain app.example.com
    nodeship update a1b2c
"""

import shutil
import sys
from typing import Literal
from urllib.parse import urlparse

import cyclopts
import requests
from packaging.version import InvalidVersion, Version
from rich import print

from . import __version__
from .config import find_project, project_domains
from .context import Context
from .deploy import (
    LIFECYCLE_ACTIONS,
    control_project,
    delete_project,
    deploy_project,
    update_project,
)
from .domains import remove_domain, setup_domain
from .nginx import validate_domain
from .prompts import ConsolePrompter, collect_credentials, collect_deploy_params
from .status import collect_status, render_domains, render_status
from .utils import CommandError, NodeshipError, error, log, warn
from .webhooks import (
    RELAY_ACTIONS,
    ensure_relay,
    is_relay_running,
    manage_relay,
    relay_name,
    setup_webhook_server,
)

PACKAGE_NAME = "nodeship"
PYPI_URL = f"https://pypi.org/pypi/{PACKAGE_NAME}/json"
NO_UPDATE_CHECK = ("upgrade", "uninstall")

ProjectType = Literal["next.js", "node.js"]
PackageManager = Literal["npm", "bun"]
ManageAction = Literal["start", "stop", "restart", "update", "delete"]
DomainAction = Literal["list", "add", "remove"]
RelayAction = Literal["setup", "restart", "status", "stop", "logs"]

app = cyclopts.App(
    name="nodeship",
    help="Deploy Next.js and Node.js projects from GitHub",
    version=__version__,
    version_flags=["--version", "-v"],
    sort_key=None,
)


def get_context() -> Context:
    return Context.create(ConsolePrompter())


def select_project(ctx: Context, config: dict, repo: str | None, message: str) -> dict:
    if not repo:
        repo = ctx.prompter.choose(message, [p["repo"] for p in config["projects"]])
    project = find_project(config, repo=repo)
    if project is None:
        error(f"Project {repo} not found")
    return project


@app.command
def init(
    *,
    username: str | None = None,
    token: str | None = None,
    package_manager: PackageManager | None = None,
    no_webhook: bool = False,
):
    """Save GitHub credentials, install PM2 and start the webhook server.

    :param username: GitHub username
    :param token: GitHub personal access token
    :param package_manager: Package manager used to install and build projects
    :param no_webhook: Skip webhook server setup
    """
    ctx = get_context()
    config = ctx.store.load()
    username, token, package_manager = collect_credentials(
        ctx.prompter,
        username=username,
        token=token,
        package_manager=package_manager or config.get("packageManager"),
        existing=config.get("github"),
    )
    with ctx.store.transaction() as config:
        config["github"] = {"username": username, "access_token": token}
        config["packageManager"] = package_manager
    log("GitHub account details saved")

    try:
        ctx.supervisor.ensure_installed()
    except CommandError as e:
        error(f"Failed to install PM2, please ensure npm is installed: {e}")

    if not no_webhook:
        ensure_relay(ctx)

    print(f"\nConfiguration is stored at: [green]{ctx.store.path}[/green]")
    print(f"Projects will be stored in: [green]{ctx.paths.projects_dir}[/green]")
    print("\nYou can now deploy your projects using [green]nodeship deploy[/green]")

    if ctx.prompter.confirm("Do you want to deploy a project now?", default=False):
        deploy()


@app.command
def deploy(
    *,
    owner: str | None = None,
    repo: str | None = None,
    port: int | None = None,
    project_type: ProjectType | None = None,
    env: bool | None = None,
):
    """Deploy a Next.js or Node.js project from GitHub.

    :param owner: GitHub repository owner or organisation
    :param repo: GitHub repository name
    :param port: Port the app listens on (required for Next.js)
    :param project_type: Project type
    :param env: Create and edit a .env file before building
    """
    ctx = get_context()
    config = ctx.store.load()
    params = collect_deploy_params(
        ctx.prompter,
        owner=owner,
        repo=repo,
        port=port,
        project_type=project_type,
        add_env=env,
        default_owner=(config.get("github") or {}).get("username"),
    )
    deploy_project(ctx, params)


@app.command(name="list")
def list_projects():
    """List deployed projects with their PM2 status."""
    ctx = get_context()
    if not ctx.store.load()["projects"]:
        warn("No projects found.")
        return
    render_status(collect_status(ctx))
    print(
        "\nTo manage your projects use [blue]nodeship manage[/blue]. You can "
        "[blue]start[/blue], [blue]stop[/blue], [blue]restart[/blue], "
        "[blue]update[/blue], or [red]delete[/red] them."
    )


app.command(list_projects, name="status")


@app.command
def manage(repo: str | None = None, action: ManageAction | None = None, *, force: bool = False):
    """Start, stop, restart, update, or delete a project.

    :param repo: Project repository name (prompted if omitted)
    :param action: Action to perform (prompted if omitted)
    :param force: Skip delete confirmation
    """
    ctx = get_context()
    config = ctx.store.load()
    if not config["projects"]:
        warn("No projects found to manage.")
        return
    if not repo:
        render_status(collect_status(ctx))
    project = select_project(ctx, config, repo, "Select a project to manage")
    if not action:
        action = ctx.prompter.choose(
            "What action would you like to perform?", [*LIFECYCLE_ACTIONS, "update", "delete"]
        )

    if action == "update":
        update_project(ctx, project, prompt_env=True)
    elif action == "delete":
        if not force and not ctx.prompter.confirm(
            f"Are you sure you want to delete the project {project['repo']}?", default=False
        ):
            log("Project deletion cancelled")
            return
        problems = delete_project(ctx, project["repo"])
        if problems:
            warn(f"Project {project['repo']} deleted with {len(problems)} cleanup problem(s)")
    else:
        control_project(ctx, project, action)


@app.command
def update(pid: str):
    """Update a project by its PID. Used by the webhook server on push.

    :param pid: Project id shown by ``nodeship list``
    """
    ctx = get_context()
    project = find_project(ctx.store.load(), pid=pid)
    if project is None:
        error(f"Project with PID {pid} not found")
    update_project(ctx, project)


@app.command
def domains(
    action: DomainAction | None = None,
    *,
    repo: str | None = None,
    domain: str | None = None,
    wait_dns: bool = False,
):
    """Add or remove domains for projects, with nginx and SSL.

    :param action: list, add or remove (prompted if omitted)
    :param repo: Project repository name
    :param domain: Domain or subdomain
    :param wait_dns: Wait (bounded) for the domain to resolve before requesting a certificate
    """
    ctx = get_context()
    config = ctx.store.load()
    if not config["projects"]:
        warn("No projects found. Please deploy a project first.")
        return
    if config["domains"]:
        render_domains(config)
    if action == "list":
        if not config["domains"]:
            log("No domains configured")
        return
    if not action:
        action = ctx.prompter.choose("What would you like to do?", ["add", "remove"])

    if action == "add":
        project = select_project(ctx, config, repo, "Select a project to associate the domain with")
        if domain and not validate_domain(domain):
            error(f"Invalid domain: {domain}")
        domain = domain or ctx.prompter.ask_domain()
        if setup_domain(ctx, domain, project.get("port"), project["pid"], wait_dns=wait_dns):
            log(f"Domain {domain} added to project {project['repo']}")
            log(f"You can now access your project at https://{domain}")
            print(
                "Make sure the domain points to this server's IP address. "
                "DNS changes can take up to 48 hours to take effect."
            )
        return

    project = select_project(ctx, config, repo, "Select the project you want to remove a domain from")
    names = [d["domain"] for d in project_domains(config, project["pid"])]
    if not names:
        error("Selected project has no associated domains.")
    domain = domain or ctx.prompter.choose("Select the domain you want to remove", names)
    if domain not in names:
        error(f"Domain {domain} is not attached to {project['repo']}")
    remove_domain(ctx, domain)
    log(f"Domain {domain} removed from project {project['repo']}")


@app.command
def webhooks(action: RelayAction | None = None, *, errors: bool = False):
    """Manage the webhook server that triggers updates on push.

    :param action: setup, restart, status, stop or logs (prompted if omitted)
    :param errors: With logs, show the error log
    """
    ctx = get_context()
    if action is None:
        if not is_relay_running(ctx):
            setup_webhook_server(ctx)
            return
        action = ctx.prompter.choose(
            "Webhook server is running. What would you like to do?", list(RELAY_ACTIONS)
        )
        if action == "logs":
            errors = ctx.prompter.choose("Which logs would you like to see?", ["output", "error"]) == "error"
    if action == "setup":
        setup_webhook_server(ctx)
    else:
        manage_relay(ctx, action, errors_only=errors)


@app.command
def install():
    """Install nodeship as a uv tool."""
    ctx = get_context()
    ctx.shell.run("uv", "tool", "install", PACKAGE_NAME, capture=False)
    log("nodeship has been installed globally")


def fetch_latest_version() -> str:
    response = requests.get(PYPI_URL, timeout=10)
    response.raise_for_status()
    return response.json()["info"]["version"]


def is_newer(latest: str, current: str = __version__) -> bool:
    try:
        return Version(latest) > Version(current)
    except InvalidVersion:
        return False


def upgrade_tool(ctx: Context):
    ctx.shell.run("uv", "tool", "upgrade", PACKAGE_NAME, capture=False)
    log("nodeship has been upgraded. Your configuration is preserved.")


def check_for_updates():
    """Offers to upgrade when PyPI has a newer release; never fails the command."""
    try:
        latest = fetch_latest_version()
    except (requests.RequestException, KeyError, ValueError) as e:
        warn(f"Could not check for updates: {e}")
        return
    if not is_newer(latest):
        return
    ctx = get_context()
    print(f"\nA new version of nodeship ([bold blue]v{latest}[/bold blue]) is available!")
    if not ctx.prompter.confirm(
        "Would you like to update nodeship to the latest version? Your configuration will be preserved.",
        default=True,
    ):
        warn("You can upgrade later by running 'nodeship upgrade'.")
        return
    try:
        upgrade_tool(ctx)
    except CommandError as e:
        warn(f"Failed to upgrade nodeship: {e}")


@app.command
def upgrade():
    """Upgrade nodeship to the latest release. Configuration is preserved."""
    try:
        latest = fetch_latest_version()
    except requests.RequestException as e:
        error(f"Could not check the latest version: {e}")
    if not is_newer(latest):
        log(f"nodeship is already at the latest version ({__version__})")
        return
    log(f"Upgrading nodeship {__version__} -> {latest}...")
    upgrade_tool(get_context())


@app.command
def uninstall(*, force: bool = False):
    """Remove every project, nginx site and the nodeship tool itself.

    :param force: Skip confirmation
    """
    print("[bold red]WARNING: This action is irreversible![/bold red]")
    print("[bold red]All projects and configurations will be permanently deleted.[/bold red]")
    ctx = get_context()
    if not force and not ctx.prompter.confirm("Are you sure you want to uninstall nodeship?", default=False):
        log("Cancelled")
        return

    config = ctx.store.load()
    names = [p["repo"] for p in config["projects"]]
    if config.get("webhook"):
        names.append(relay_name(config))
    for name in names:
        try:
            ctx.supervisor.delete(name)
        except (CommandError, OSError) as e:
            warn(f"Failed to delete PM2 process {name}: {e}")

    sites = [d["domain"] for d in config.get("domains", [])]
    relay_host = urlparse((config.get("webhook") or {}).get("webhookUrl", "")).hostname
    if relay_host:
        sites.append(relay_host)
    try:
        for site in sites:
            ctx.proxy.remove_site(site)
        if sites:
            ctx.proxy.reload()
        log("Nginx configurations removed")
    except (CommandError, OSError) as e:
        warn(f"Failed to delete nginx configurations: {e}")

    try:
        shutil.rmtree(ctx.paths.home)
    except OSError as e:
        warn(f"Failed to delete {ctx.paths.home}: {e}")

    try:
        ctx.shell.run("uv", "tool", "uninstall", PACKAGE_NAME, capture=False)
    except (CommandError, OSError) as e:
        warn(f"Failed to uninstall the nodeship tool: {e}")
    log("nodeship has been uninstalled")


def should_check_for_updates(tokens: list[str]) -> bool:
    return bool(tokens) and not tokens[0].startswith("-") and tokens[0] not in NO_UPDATE_CHECK


def main(tokens: list[str] | None = None):
    tokens = sys.argv[1:] if tokens is None else list(tokens)
    try:
        app(tokens)
    except NodeshipError as e:
        error(str(e))
    except KeyboardInterrupt:
        warn("Cancelled")
        sys.exit(130)
    except SystemExit as e:
        if e.code not in (None, 0):
            raise
    if should_check_for_updates(tokens):
        check_for_updates()


if __name__ == "__main__":
    main()
