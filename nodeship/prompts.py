"""Interactive input collection.

Nothing here touches state; the results are handed to the sequences in
``deploy``, ``domains`` and ``webhooks``.
"""

from typing import Callable

from rich import print
from rich.prompt import Confirm, Prompt

from .config import PACKAGE_MANAGERS, PROJECT_TYPES
from .deploy import DeployParams
from .nginx import validate_domain, validate_email
from .ports import get_available_port, validate_port


class ConsolePrompter:
    def confirm(self, message: str, default: bool = False) -> bool:
        return Confirm.ask(message, default=default)

    def ask_text(
        self,
        message: str,
        validate: Callable[[str], str | None] | None = None,
        default: str | None = None,
    ) -> str:
        while True:
            if default:
                value = Prompt.ask(message, default=default)
            else:
                value = Prompt.ask(message)
            problem = validate(value) if validate else None
            if problem is None:
                return value
            print(f"[red]{problem}[/red]")

    def ask_port(self, busy_port: int | None = None) -> int:
        message = (
            f"Port {busy_port} is already in use. Please enter another port"
            if busy_port
            else "Enter the port to deploy the application"
        )
        value = self.ask_text(
            message,
            validate=lambda v: None if validate_port(v) else "Please enter a valid port number (1-65535).",
        )
        return validate_port(value)

    def ask_email(self) -> str:
        return self.ask_text(
            "Enter your email address for SSL certificates",
            validate=lambda v: None if validate_email(v) else "Please enter a valid email.",
        ).strip()

    def ask_domain(self) -> str:
        return self.ask_text(
            "Enter the domain or subdomain you want to add",
            validate=lambda v: None if validate_domain(v) else "Please enter a valid domain.",
        ).strip()

    def choose(self, message: str, choices: list[str]) -> str:
        return Prompt.ask(message, choices=list(choices))


def collect_deploy_params(
    prompter: ConsolePrompter,
    *,
    owner: str | None = None,
    repo: str | None = None,
    port: int | None = None,
    project_type: str | None = None,
    add_env: bool | None = None,
    default_owner: str | None = None,
) -> DeployParams:
    """Asks for whatever was not given on the command line.

    The returned port is free: a busy one triggers a prompt for another.
    """
    if not owner:
        owner = prompter.ask_text(
            "Enter the GitHub repository owner/org name",
            validate=lambda v: None if v.strip() else "Owner is required.",
            default=default_owner,
        ).strip()
    if not repo:
        repo = prompter.ask_text(
            "Enter the GitHub repository name",
            validate=lambda v: None if v.strip() else "Repository is required.",
        ).strip()
    if not project_type:
        project_type = prompter.choose("What type of project is this?", list(PROJECT_TYPES))
    if port is None:
        if project_type == "next.js" or prompter.confirm(
            "Do you want to specify a port for this Node.js application?", default=False
        ):
            port = prompter.ask_port()
    if port is not None and validate_port(port) is None:
        print(f"[red]Invalid port {port}.[/red]")
        port = prompter.ask_port()
    if port is not None:
        port = get_available_port(port, prompter.ask_port)
    if add_env is None:
        add_env = prompter.confirm("Do you want to add a .env file?", default=False)
    return DeployParams(
        owner=owner, repo=repo, project_type=project_type, port=port, add_env=add_env
    )


def collect_credentials(
    prompter: ConsolePrompter,
    *,
    username: str | None = None,
    token: str | None = None,
    package_manager: str | None = None,
    existing: dict | None = None,
) -> tuple[str, str, str]:
    existing = existing or {}
    if not username:
        username = prompter.ask_text(
            "Enter your GitHub username",
            validate=lambda v: None if v.strip() else "Username is required.",
            default=existing.get("username"),
        ).strip()
    if not token:
        token = prompter.ask_text(
            "Enter your GitHub personal access token",
            validate=lambda v: None if v.strip() else "Token is required.",
            default=existing.get("access_token"),
        ).strip()
    if not package_manager:
        package_manager = prompter.choose("Choose your package manager", list(PACKAGE_MANAGERS))
    return username, token, package_manager
