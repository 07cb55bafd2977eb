"""Deploy, update and delete sequences for a single project.

Deploys clone straight into ``projects/<repo>``. Updates are staged in
``temp/<repo>`` and only swapped in once they have installed and built; if
the new version does not come up under PM2 the previous directory is put
back and the broken one is kept as ``<repo>_failed``.
"""

import shutil
import time
from dataclasses import dataclass
from pathlib import Path

from .apps import Toolchain
from .config import (
    PROJECT_TYPES,
    add_project,
    find_project,
    project_domains,
    remove_project,
    touch_project,
)
from .context import Context
from .domains import remove_domain
from .github import clone_url
from .ports import validate_port
from .utils import (
    CommandError,
    DeployError,
    NodeshipError,
    ProjectExistsError,
    UpdateError,
    log,
    warn,
)
from .webhooks import remove_webhook, setup_webhook

HEALTH_CHECK_RETRIES = 5
HEALTH_CHECK_DELAY = 2
HEALTH_CHECK_STABLE_POLLS = 3
ENV_TEMPLATE = "# Add your environment variables below\n"
LIFECYCLE_ACTIONS = ("start", "stop", "restart")


@dataclass
class DeployParams:
    owner: str
    repo: str
    project_type: str = "next.js"
    port: int | None = None
    add_env: bool = False


def normalize_type(value: str | None) -> str:
    """Older records store ``nextjs``; anything else unknown is treated as Next.js."""
    value = (value or "").lower()
    if value in ("node.js", "nodejs", "node"):
        return "node.js"
    return "next.js"


def validate_params(params: DeployParams):
    if not params.owner or not params.owner.strip() or not params.repo or not params.repo.strip():
        raise DeployError("Repository owner and name are required")
    if params.project_type not in PROJECT_TYPES:
        raise DeployError(f"Unknown project type '{params.project_type}'")
    if params.port is not None and validate_port(params.port) is None:
        raise DeployError(f"Invalid port {params.port}, expected 1-65535")
    if params.project_type == "next.js" and not params.port:
        raise DeployError("Port is required for Next.js projects")


def access_token(config: dict) -> str:
    token = (config.get("github") or {}).get("access_token")
    if not token:
        raise DeployError("GitHub access token not found. Run 'nodeship init' first.")
    return token


def edit_env_file(ctx: Context, env_path: Path):
    if not env_path.exists():
        env_path.write_text(ENV_TEMPLATE)
    ctx.shell.edit(env_path)


def prepare_project_dir(ctx: Context, config: dict, repo: str) -> Path:
    project_dir = ctx.paths.project_dir(repo)
    if not (project_dir.exists() and any(project_dir.iterdir())):
        return project_dir
    if find_project(config, repo=repo):
        raise DeployError(
            f"Directory {project_dir} exists and is not empty. Use 'nodeship manage' to manage the project."
        )
    warn(f"Directory {project_dir} exists and is not linked to any project.")
    if not ctx.prompter.confirm(f"Delete {project_dir} and continue?", default=False):
        raise DeployError("Operation cancelled")
    shutil.rmtree(project_dir)
    return project_dir


def deploy_project(ctx: Context, params: DeployParams) -> dict:
    """Clones, builds and starts a new project, then records it.

    :return: the stored project record
    """
    validate_params(params)
    owner, repo = params.owner.strip(), params.repo.strip()

    config = ctx.store.load()
    if find_project(config, repo=repo):
        raise ProjectExistsError(
            f"Project {repo} already exists. Use 'nodeship manage' to manage it "
            "or 'nodeship list' to view all deployed projects."
        )
    token = access_token(config)
    project_dir = prepare_project_dir(ctx, config, repo)

    log(f"Cloning {owner}/{repo}...")
    ctx.git.clone(clone_url(owner, repo, token), project_dir, secret=token)
    if params.add_env:
        edit_env_file(ctx, project_dir / ".env")
    log(f"Project {repo} cloned successfully. Deploying...")

    toolchain = Toolchain(ctx.shell, config.get("packageManager") or "npm")
    toolchain.ensure_package_manager()
    toolchain.ensure_swap()
    toolchain.install(project_dir)
    toolchain.build(project_dir, params.project_type)

    ctx.supervisor.ensure_installed()
    ctx.supervisor.start(
        repo, toolchain.start_command(params.project_type, params.port), project_dir
    )

    webhook_id = setup_webhook(ctx, f"{owner}/{repo}")

    with ctx.store.transaction() as config:
        project = add_project(
            config,
            owner=owner,
            repo=repo,
            port=params.port,
            project_type=params.project_type,
            webhook_id=webhook_id,
        )
    port_info = f" on port {params.port}" if params.port else ""
    log(f"{params.project_type} project {repo} deployed successfully{port_info} (pid {project['pid']})")
    return project


def validate_project_shape(project: dict):
    missing = [key for key in ("pid", "owner", "repo") if not project.get(key)]
    if missing:
        raise UpdateError(f"Project record is missing {', '.join(missing)}")
    if normalize_type(project.get("type")) == "next.js" and not project.get("port"):
        raise UpdateError(f"Next.js project {project['repo']} has no port recorded")


def stage_env_file(ctx: Context, live: Path, staging: Path, prompt_env: bool):
    """Carries the live ``.env`` into the staged checkout."""
    live_env = live / ".env"
    staged_env = staging / ".env"
    if live_env.exists():
        shutil.copy2(live_env, staged_env)
    if not prompt_env:
        return
    if staged_env.exists():
        question = f"Do you want to update the .env file for {live.name}?"
    else:
        question = f"Do you want to add a .env file for {live.name}?"
    if ctx.prompter.confirm(question, default=False):
        edit_env_file(ctx, staged_env)


def start_or_restart(ctx: Context, project: dict, toolchain: Toolchain, cwd: Path):
    name = project["repo"]
    if ctx.supervisor.exists(name):
        ctx.supervisor.restart(name)
    else:
        command = toolchain.start_command(normalize_type(project.get("type")), project.get("port"))
        ctx.supervisor.start(name, command, cwd)


def wait_until_online(ctx: Context, name: str):
    """Waits for ``online``, then requires it to stay so without PM2 restarts.

    PM2 marks a process online as soon as it spawns.
    """
    status = None
    for _ in range(HEALTH_CHECK_RETRIES):
        status = ctx.supervisor.status(name)
        if status == "online":
            break
        time.sleep(HEALTH_CHECK_DELAY)
    else:
        raise UpdateError(f"PM2 reports {name} as {status or 'missing'}")

    restarts = ctx.supervisor.restart_count(name)
    for _ in range(HEALTH_CHECK_STABLE_POLLS):
        time.sleep(HEALTH_CHECK_DELAY)
        status = ctx.supervisor.status(name)
        if status != "online":
            raise UpdateError(f"{name} went {status or 'missing'} after starting")
        if ctx.supervisor.restart_count(name) != restarts:
            raise UpdateError(f"{name} was restarted by PM2 while starting up")


def rollback(ctx: Context, project: dict, toolchain: Toolchain, live: Path, backup: Path, failed: Path):
    warn(f"Rolling back {project['repo']} to the previous version...")
    if failed.exists():
        shutil.rmtree(failed)
    if live.exists():
        live.rename(failed)
    if backup.exists():
        backup.rename(live)
    try:
        start_or_restart(ctx, project, toolchain, live)
    except (NodeshipError, OSError) as e:
        warn(f"Previous version of {project['repo']} failed to restart: {e}")
    warn(f"Failed version kept at {failed}")


def update_project(ctx: Context, project: dict, prompt_env: bool = False) -> dict:
    """Pulls the latest code and swaps it in only once it installs, builds and starts.

    :param prompt_env: offer to edit the ``.env`` file (interactive updates)
    :return: the updated project record
    """
    validate_project_shape(project)
    config = ctx.store.load()
    token = access_token(config)
    repo = project["repo"]
    project_type = normalize_type(project.get("type"))
    toolchain = Toolchain(ctx.shell, config.get("packageManager") or "npm")

    live = ctx.paths.project_dir(repo)
    staging = ctx.paths.temp_dir / repo
    backup = live.with_name(f"{repo}_backup")
    failed = live.with_name(f"{repo}_failed")

    if staging.exists():
        shutil.rmtree(staging)
    try:
        log(f"Cloning {project['owner']}/{repo} into {staging}...")
        ctx.git.clone(clone_url(project["owner"], repo, token), staging, secret=token)
        stage_env_file(ctx, live, staging, prompt_env)
        toolchain.install(staging)
        toolchain.build(staging, project_type, verify=True)
    except (NodeshipError, OSError):
        shutil.rmtree(staging, ignore_errors=True)
        raise

    if ctx.supervisor.exists(repo):
        try:
            ctx.supervisor.stop(repo)
        except CommandError as e:
            warn(f"Failed to stop {repo}: {e}")

    if backup.exists():
        shutil.rmtree(backup)
    if live.exists():
        live.rename(backup)
    staging.rename(live)

    try:
        start_or_restart(ctx, project, toolchain, live)
        wait_until_online(ctx, repo)
    except (NodeshipError, OSError) as e:
        rollback(ctx, project, toolchain, live, backup, failed)
        raise UpdateError(f"Update of {repo} failed to start, previous version restored: {e}") from e

    if backup.exists():
        shutil.rmtree(backup)

    with ctx.store.transaction() as config:
        updated = touch_project(config, repo, type=project_type) or project
    log(f"Project {repo} updated successfully")
    return updated


def delete_project(ctx: Context, repo: str) -> list[str]:
    """Removes everything belonging to a project; each step runs regardless.

    :return: warnings for the steps that failed
    """
    config = ctx.store.load()
    project = find_project(config, repo=repo)
    if project is None:
        raise DeployError(f"Project {repo} not found")
    problems = []

    try:
        ctx.supervisor.delete(repo)
    except (CommandError, OSError) as e:
        problems.append(f"PM2 process {repo} not removed: {e}")

    project_dir = ctx.paths.project_dir(repo)
    try:
        if project_dir.exists():
            shutil.rmtree(project_dir)
    except OSError as e:
        problems.append(f"Directory {project_dir} not removed: {e}")

    for problem in problems:
        warn(problem)

    for record in project_domains(config, project["pid"]):
        problems += remove_domain(ctx, record["domain"])

    webhook_id = project.get("webhookId")
    if webhook_id and not remove_webhook(ctx, f"{project['owner']}/{repo}", webhook_id):
        problems.append(f"Webhook {webhook_id} not removed")

    with ctx.store.transaction() as config:
        remove_project(config, repo)
    log(f"Project {repo} deleted")
    return problems


def control_project(ctx: Context, project: dict, action: str):
    """start, stop or restart the project's PM2 process."""
    name = project["repo"]
    if action == "start":
        toolchain = Toolchain(ctx.shell, ctx.store.load().get("packageManager") or "npm")
        start_or_restart(ctx, project, toolchain, ctx.paths.project_dir(name))
    elif action == "stop":
        ctx.supervisor.stop(name)
    elif action == "restart":
        ctx.supervisor.restart(name)
    else:
        raise DeployError(f"Unknown action: {action}")
    log(f"Project {name}: {action} complete")
