import json
import os
from pathlib import Path
from textwrap import dedent

from .utils import CommandError, DeployError, Shell, log, warn

SWAP_FILE = "/swapfile"
SWAP_SIZE = "1G"
NEXT_BUILD_DIR = ".next"
BUN_BIN = Path.home() / ".bun" / "bin"


def install_command(package_manager: str) -> list[str]:
    return [package_manager, "install"]


def build_command(package_manager: str) -> list[str]:
    return [package_manager, "run", "build"]


def start_command(package_manager: str, project_type: str, port: int | None) -> list[str]:
    """Next.js always gets ``--port``; Node.js runs ``index.js`` without one."""
    if project_type == "next.js" and not port:
        raise DeployError("Port must be specified for Next.js applications")
    if port:
        return [package_manager, "start", "--", "--port", str(port)]
    return ["index.js"]


def read_package_json(source: Path) -> dict | None:
    package_json = Path(source) / "package.json"
    if not package_json.exists():
        return None
    try:
        return json.loads(package_json.read_text())
    except json.JSONDecodeError as e:
        warn(f"Could not read package.json: {e}")
        return None


def has_build_script(source: Path) -> bool:
    data = read_package_json(source) or {}
    return bool((data.get("scripts") or {}).get("build"))


def add_to_path(directory: Path):
    """Prepends ``directory`` to this process's PATH so later commands find it."""
    entries = os.environ.get("PATH", "").split(os.pathsep)
    if str(directory) not in entries:
        os.environ["PATH"] = os.pathsep.join([str(directory), *filter(None, entries)])


class Toolchain:
    """Package manager, swap space and build steps for one server."""

    def __init__(self, shell: Shell, package_manager: str = "npm"):
        self.shell = shell
        self.package_manager = package_manager

    def ensure_package_manager(self):
        if self.package_manager == "bun":
            if BUN_BIN.is_dir():
                add_to_path(BUN_BIN)
            if self.shell.succeeds("bun", "-v"):
                return
            if not self.shell.succeeds("unzip", "-v"):
                log("Unzip is not installed. Installing unzip...")
                self.shell.run_privileged("apt-get", "install", "-y", "unzip", capture=False)
            log("Installing bun...")
            self.shell.run_script("curl -fsSL https://bun.sh/install | bash")
            add_to_path(BUN_BIN)
        elif not self.shell.succeeds("npm", "-v"):
            raise DeployError("npm is not installed. Please install Node.js to use npm.")

    def has_swap(self) -> bool:
        try:
            return SWAP_FILE in self.shell.run("swapon", "--show")
        except (CommandError, OSError):
            return False

    def ensure_swap(self):
        """Failures only warn, a missing swap file does not stop a deploy."""
        if self.has_swap():
            return
        log("Creating swap space...")
        script = dedent(f"""
            set -e
            fallocate -l {SWAP_SIZE} {SWAP_FILE}
            chmod 600 {SWAP_FILE}
            mkswap {SWAP_FILE}
            swapon {SWAP_FILE}
            echo '{SWAP_FILE} none swap sw 0 0' >> /etc/fstab
        """).strip()
        try:
            self.shell.run_privileged("bash", "-c", script)
            log("Swap space created and enabled")
        except (CommandError, OSError) as e:
            warn(f"Failed to create swap space: {e}")

    def install(self, source: Path):
        log("Installing dependencies...")
        self.shell.run(*install_command(self.package_manager), cwd=source, capture=False)

    def build(self, source: Path, project_type: str, *, verify: bool = False) -> bool:
        """
        :param verify: require Next.js builds to leave a ``.next`` directory
        :return: True if a build script ran
        """
        ran = has_build_script(source)
        if ran:
            log("Building the project...")
            self.shell.run(*build_command(self.package_manager), cwd=source, capture=False)
        if verify and project_type == "next.js" and not (Path(source) / NEXT_BUILD_DIR).is_dir():
            raise DeployError(f"Build failed - no {NEXT_BUILD_DIR} directory")
        return ran

    def start_command(self, project_type: str, port: int | None) -> list[str]:
        return start_command(self.package_manager, project_type, port)
