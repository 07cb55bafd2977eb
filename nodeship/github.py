from pathlib import Path

import requests

from .utils import CommandError, DeployError, GitHubError, Shell, log, mask_secret

GITHUB_API = "https://api.github.com"
HTTP_TIMEOUT = 15


def clone_url(owner: str, repo: str, token: str) -> str:
    return f"https://{token}@github.com/{owner}/{repo}.git"


class GitClient:
    def __init__(self, shell: Shell | None = None):
        self.shell = shell or Shell()

    def clone(self, url: str, dest: Path, *, secret: str | None = None):
        """Error messages have ``secret`` masked out."""
        Path(dest).parent.mkdir(parents=True, exist_ok=True)
        try:
            self.shell.run("git", "clone", url, str(dest))
        except CommandError as e:
            raise DeployError(mask_secret(f"git clone failed: {e}", secret)) from None


class GitHubClient:
    """Repository webhooks through the GitHub REST API."""

    def __init__(self, access_token: str, session: requests.Session | None = None):
        self.access_token = access_token
        self.session = session or requests.Session()

    def _request(self, method: str, path: str, payload: dict | None = None) -> dict | None:
        headers = {
            "Authorization": f"Bearer {self.access_token}",
            "Accept": "application/vnd.github+json",
        }
        try:
            response = self.session.request(
                method, f"{GITHUB_API}{path}", json=payload, headers=headers, timeout=HTTP_TIMEOUT
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise GitHubError(f"GitHub {method} {path} failed: {e}") from None
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    def create_webhook(self, repo: str, url: str, secret: str) -> int:
        """:param repo: ``owner/name``"""
        payload = {
            "name": "web",
            "active": True,
            "events": ["push"],
            "config": {"url": url, "content_type": "json", "secret": secret},
        }
        data = self._request("POST", f"/repos/{repo}/hooks", payload)
        log(f"Webhook created: {data['id']}")
        return data["id"]

    def update_webhook(self, repo: str, webhook_id: int, url: str, secret: str):
        payload = {"config": {"url": url, "content_type": "json", "secret": secret}}
        self._request("PATCH", f"/repos/{repo}/hooks/{webhook_id}", payload)

    def delete_webhook(self, repo: str, webhook_id: int):
        self._request("DELETE", f"/repos/{repo}/hooks/{webhook_id}")
