"""Helpers for writing multi-peer scenarios."""

from __future__ import annotations

import shutil
import tempfile
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from packaging.specifiers import SpecifierSet
from packaging.version import InvalidVersion, Version

from upstream_devnet.errors import PrerequisiteError, ProcessFailedError
from upstream_devnet.peer_runner import UpstreamPeer
from upstream_devnet.process import ProcessSupervisor, StdioMode
from upstream_devnet.retry import retry, retry_on_error
from upstream_devnet.settings import Settings, get_settings


@dataclass
class CreatedProject:
    urn: str
    checkout_path: Path


def random_tag() -> str:
    """Short random string to make names unique across runs."""
    return uuid.uuid4().hex[:8]


async def assert_git_server_running(supervisor: ProcessSupervisor, settings: Optional[Settings] = None) -> None:
    """Raise ``PrerequisiteError`` if the test git-server container is not running."""
    settings = settings or get_settings()
    container = settings.git_server_container
    not_running_message = (
        "The git-server test container is required for this test. "
        "You can run it with `./scripts/git-server-test.sh`"
    )
    try:
        result = await supervisor.run(
            "docker", ["container", "inspect", container, "--format", "{{.State.Running}}"]
        )
    except ProcessFailedError as err:
        if err.stderr.strip() == f"Error: No such container: {container}":
            raise PrerequisiteError(not_running_message) from err
        raise
    if result.stdout.strip() != "true":
        raise PrerequisiteError(not_running_message)


async def assert_rad_installed(supervisor: ProcessSupervisor, settings: Optional[Settings] = None) -> None:
    """Raise ``PrerequisiteError`` unless a supported `rad` CLI is installed."""
    settings = settings or get_settings()
    constraint = SpecifierSet(settings.rad_version_constraint)
    result = await supervisor.run("rad", ["--version"])
    raw_version = result.stdout.strip().replace("rad ", "")
    try:
        version = Version(raw_version)
    except InvalidVersion as err:
        raise PrerequisiteError(f"Cannot parse rad version {raw_version!r}") from err
    if version not in constraint:
        raise PrerequisiteError(f"rad version {version} does not satisfy {constraint}")


def prepare_state_dir(base_path: Path, test_name: str) -> Path:
    """Return an empty directory where a test can store files."""
    state_dir = Path(f"{base_path}--state", test_name).resolve()
    shutil.rmtree(state_dir, ignore_errors=True)
    state_dir.mkdir(parents=True)
    return state_dir


async def start_ssh_agent(supervisor: ProcessSupervisor, settings: Optional[Settings] = None) -> Path:
    """Start an ssh-agent and return the path of its socket."""
    settings = settings or get_settings()
    # Not using the state directory because socket paths have a size limit.
    ssh_auth_sock = Path(tempfile.mkdtemp(prefix="upstream-test")) / "ssh-agent.sock"
    await supervisor.spawn("ssh-agent", ["-D", "-a", str(ssh_auth_sock)], stdio=StdioMode.INHERIT)

    async def socket_exists() -> None:
        if not ssh_auth_sock.exists():
            raise FileNotFoundError(ssh_auth_sock)

    interval = 0.1
    await retry_on_error(
        socket_exists,
        lambda err: isinstance(err, FileNotFoundError),
        interval,
        max(1, int(settings.ssh_agent_timeout_seconds / interval)),
    )
    return ssh_auth_sock


async def create_project(peer: UpstreamPeer, name: str) -> CreatedProject:
    """Create a project in the peer's checkout directory using the rad CLI."""
    checkout_path = peer.checkout_path / name
    await peer.spawn("git", ["init", str(checkout_path), "--initial-branch", "main"])
    await peer.spawn("git", ["commit", "--allow-empty", "--message", "initial commit"], cwd=checkout_path)
    await peer.spawn(
        "rad",
        ["init", "--name", name, "--default-branch", "main", "--description", ""],
        cwd=checkout_path,
    )
    result = await peer.spawn("rad", ["inspect"], cwd=checkout_path)
    urn = result.stdout.strip()
    await peer.spawn("git", ["config", "--add", "rad.seed", peer.settings.seed_url], cwd=checkout_path)
    return CreatedProject(urn=urn, checkout_path=checkout_path)


async def create_and_publish_project(peer: UpstreamPeer, name: str) -> CreatedProject:
    """Create a project, push it to the seed and wait until the peer knows its seed."""
    project = await create_project(peer, name)
    await peer.spawn("rad", ["push"], cwd=project.checkout_path)

    async def seed_recorded() -> None:
        remote = await peer.proxy_client.project.get(project.urn)
        if remote.seed is None:
            raise RuntimeError("Proxy hasn't set the project seed yet.")

    await retry(seed_recorded)
    return project


async def fork_project(project_urn: str, project_name: str, peer: UpstreamPeer) -> Path:
    """Fork a project with the commands behind the UI's Fork button.

    Returns the project checkout path.
    """
    project_checkout_path = peer.checkout_path / project_name
    seed = peer.settings.seed_address

    await peer.spawn("rad", ["checkout", project_urn], cwd=peer.checkout_path)
    # Publish the peer's default branch.
    # See <https://github.com/radicle-dev/radicle-upstream/issues/2795>.
    await peer.spawn("rad", ["push", "--seed", seed], cwd=project_checkout_path)
    await peer.spawn("rad", ["sync", "--self", "--seed", seed], cwd=project_checkout_path)
    return project_checkout_path


async def create_or_update_patch(title: str,
                                 description: str,
                                 peer: UpstreamPeer,
                                 project_checkout_path: Path,
                                 commit_message: str = "changes",
                                 branch_name: Optional[str] = None) -> str:
    """Create a patch with the upstream CLI, or update it if ``branch_name`` is given.

    Returns the patch branch name.
    """
    patch_branch = branch_name or f"patch-branch-{random_tag()}"
    checkout_args = [patch_branch] if branch_name else ["-b", patch_branch]

    # Starting from main allows creating several independent patches.
    await peer.spawn("git", ["checkout", "main"], cwd=project_checkout_path)
    await peer.spawn("git", ["checkout", *checkout_args], cwd=project_checkout_path)
    await peer.spawn("git", ["commit", "--allow-empty", "--message", commit_message], cwd=project_checkout_path)

    action = "update" if branch_name else "create"
    await peer.spawn("upstream", ["patch", action, "-m", f"{title}\n\n{description}"], cwd=project_checkout_path)
    return patch_branch


async def merge_own_patch(peer: UpstreamPeer, project_checkout_path: Path, branch_name: str) -> None:
    """Merge a patch into main and publish the result."""
    seed = peer.settings.seed_address
    await peer.spawn("git", ["checkout", "main"], cwd=project_checkout_path)
    await peer.spawn("git", ["merge", "--ff-only", branch_name], cwd=project_checkout_path)
    await peer.spawn("rad", ["push", "--seed", seed], cwd=project_checkout_path)
    await peer.spawn("rad", ["push", "--seed", seed], cwd=project_checkout_path)
