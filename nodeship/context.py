from dataclasses import dataclass, field
from typing import Callable, Protocol

from .config import ConfigStore, Paths
from .github import GitClient, GitHubClient
from .nginx import Certbot, NginxProxy
from .pm2 import Pm2Supervisor, Supervisor
from .utils import DeployError, Shell


class Prompter(Protocol):
    def confirm(self, message: str, default: bool = False) -> bool: ...

    def ask_port(self, busy_port: int) -> int:
        """Asks for a replacement for ``busy_port``, validated to 1-65535."""
        ...

    def ask_email(self) -> str: ...

    def ask_text(self, message: str, validate: Callable[[str], str | None] | None = None) -> str:
        """:param validate: returns an error message, or None to accept"""
        ...

    def choose(self, message: str, choices: list[str]) -> str: ...


@dataclass
class Context:
    """Everything a command needs: state, collaborators and the user."""

    paths: Paths
    store: ConfigStore
    shell: Shell
    supervisor: Supervisor
    proxy: NginxProxy
    certbot: Certbot
    git: GitClient
    prompter: Prompter
    github_factory: Callable[[str], GitHubClient] = field(default=GitHubClient)

    @classmethod
    def create(cls, prompter: Prompter, paths: Paths | None = None) -> "Context":
        paths = paths or Paths.from_env()
        paths.ensure()
        shell = Shell()
        return cls(
            paths=paths,
            store=ConfigStore(paths.config_file),
            shell=shell,
            supervisor=Pm2Supervisor(shell),
            proxy=NginxProxy(shell=shell),
            certbot=Certbot(shell),
            git=GitClient(shell),
            prompter=prompter,
        )

    def github(self, config: dict) -> GitHubClient:
        token = (config.get("github") or {}).get("access_token")
        if not token:
            raise DeployError(
                "GitHub access token not found. Run 'nodeship init' first."
            )
        return self.github_factory(token)
