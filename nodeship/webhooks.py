"""Push webhooks: the relay service that receives them, and the per-repo hooks.

The relay is a separate Node.js app cloned from ``NODESHIP_WEBHOOK_REPO`` and
run under PM2. On a push it calls ``nodeship update <pid>``.
"""

import os
import shutil
import uuid

from .config import find_domain, is_webhook_configured
from .context import Context
from .domains import setup_domain
from .ports import find_free_port
from .utils import CommandError, DeployError, GitHubError, log, warn

DEFAULT_WEBHOOK_REPO = "https://github.com/alohe/quicky-webhook.git"
RELAY_PM2_NAME = "nodeship-webhook-server"
RELAY_ACTIONS = ("restart", "status", "stop", "logs")


def webhook_repo_url() -> str:
    return os.environ.get("NODESHIP_WEBHOOK_REPO", DEFAULT_WEBHOOK_REPO)


def relay_name(config: dict) -> str:
    return (config.get("webhook") or {}).get("pm2Name") or RELAY_PM2_NAME


def is_relay_running(ctx: Context) -> bool:
    config = ctx.store.load()
    if not config.get("webhook"):
        return False
    return ctx.supervisor.status(relay_name(config)) == "online"


def rotate_project_webhooks(ctx: Context, url: str, secret: str):
    """Re-points every existing project hook at the relay; failures only warn."""
    config = ctx.store.load()
    projects = [p for p in config["projects"] if p.get("webhookId")]
    if not projects:
        return
    github = ctx.github(config)
    for project in projects:
        repo = f"{project['owner']}/{project['repo']}"
        try:
            github.update_webhook(repo, project["webhookId"], url, secret)
            log(f"Webhook updated for project: {project['repo']}")
        except GitHubError as e:
            warn(f"Error updating webhook for project {project['repo']}: {e}")


def _validate_relay_host(ctx: Context):
    def validate(value: str) -> str | None:
        if not value.strip():
            return "URL is required."
        if find_domain(ctx.store.load(), value.strip()):
            return "This domain is already in use. Please enter a different URL."
        return None

    return validate


def setup_webhook_server(ctx: Context) -> dict:
    """Clones, configures and starts the relay, then records it in the config.

    :return: the ``webhook`` config block
    """
    host = ctx.prompter.ask_text(
        "Enter the host where webhooks will be received (e.g., hooks.example.com)",
        validate=_validate_relay_host(ctx),
    ).strip()
    port = find_free_port()
    config = ctx.store.load()
    name = relay_name(config)
    relay_dir = ctx.paths.webhook_dir

    if relay_dir.exists() and any(relay_dir.iterdir()):
        warn(f"Directory {relay_dir} already exists and is not empty. Deleting...")
        try:
            ctx.supervisor.delete(name)
        except (CommandError, OSError) as e:
            warn(f"Failed to stop/delete PM2 process {name}: {e}")
        shutil.rmtree(relay_dir)

    log("Cloning the webhook server...")
    ctx.git.clone(webhook_repo_url(), relay_dir)
    ctx.shell.run("npm", "install", cwd=relay_dir, capture=False)

    setup_domain(ctx, host, port)

    secret = str(uuid.uuid4())
    url = f"https://{host}/webhook"
    (relay_dir / ".env").write_text(
        f"WEBHOOK_URL={host}\nWEBHOOK_PORT={port}\nWEBHOOK_SECRET={secret}"
    )

    rotate_project_webhooks(ctx, url, secret)

    if ctx.supervisor.exists(name):
        ctx.supervisor.restart(name)
    else:
        ctx.supervisor.start(name, [str(relay_dir / "index.js")], relay_dir)

    webhook = {"webhookUrl": url, "webhookPort": port, "secret": secret, "pm2Name": name}
    with ctx.store.transaction() as config:
        config["webhook"] = webhook
    log(f"Webhook server set up and running at {url}")
    return webhook


def ensure_relay(ctx: Context):
    """Makes sure the relay is running, setting it up again if it is gone."""
    config = ctx.store.load()
    if not config.get("webhook"):
        log("Webhook server is not configured. Setting up...")
        setup_webhook_server(ctx)
        return
    name = relay_name(config)
    if ctx.supervisor.status(name) == "online":
        log("Webhook server is already running")
        return
    if ctx.supervisor.exists(name):
        warn("Webhook server is not running. Restarting...")
        try:
            ctx.supervisor.restart(name)
            log("Webhook server restarted")
            return
        except CommandError as e:
            warn(f"Failed to restart webhook server: {e}")
    log("Setting up the webhook server again...")
    setup_webhook_server(ctx)


def setup_webhook(ctx: Context, repo: str) -> int | None:
    """Creates a push hook on ``owner/name``, provisioning the relay if needed.

    :return: hook id, or None if the relay is declined or GitHub refuses
    """
    config = ctx.store.load()
    if not is_webhook_configured(config):
        warn("Webhook server is not fully configured.")
        if not ctx.prompter.confirm("Do you want to set up the webhook server now?", default=True):
            warn("Skipping webhook setup")
            return None
        try:
            setup_webhook_server(ctx)
        except (DeployError, CommandError) as e:
            warn(f"Webhook server setup failed: {e}")
            return None
        config = ctx.store.load()

    webhook = config["webhook"]
    try:
        return ctx.github(config).create_webhook(repo, webhook["webhookUrl"], webhook["secret"])
    except (GitHubError, DeployError, KeyError) as e:
        warn(f"Error creating webhook: {e}")
        return None


def remove_webhook(ctx: Context, repo: str, webhook_id: int) -> bool:
    try:
        ctx.github(ctx.store.load()).delete_webhook(repo, webhook_id)
    except (GitHubError, DeployError) as e:
        warn(f"Error removing webhook: {e}")
        return False
    log(f"Webhook {webhook_id} removed")
    return True


def manage_relay(ctx: Context, action: str, *, errors_only: bool = False):
    name = relay_name(ctx.store.load())
    if action == "restart":
        relay_dir = ctx.paths.webhook_dir
        if not (relay_dir / "node_modules").exists():
            log("node_modules not found. Running npm install...")
            ctx.shell.run("npm", "install", cwd=relay_dir, capture=False)
        ctx.supervisor.restart(name)
        log("Webhook server restarted")
    elif action == "status":
        if ctx.supervisor.status(name) == "online":
            log("Webhook server is running")
        else:
            warn("Webhook server is not running")
    elif action == "stop":
        ctx.supervisor.stop(name)
        log("Webhook server stopped")
    elif action == "logs":
        ctx.supervisor.logs(name, errors_only=errors_only)
    else:
        raise DeployError(f"Unknown webhook action: {action}")
