"""
Two-peer example for upstream-devnet.

Starts a maintainer and a contributor peer, publishes a project from the
maintainer and waits until the contributor has fetched it from the seed.

Needs built proxy binaries (`inv build-proxy`), the `rad` CLI and the
git-server test container (`inv git-server`).
"""

import asyncio

from upstream_devnet import (
    EventType,
    ProcessSupervisor,
    UpstreamPeer,
    make_peer_config,
)
from upstream_devnet.observability import setup_logging
from upstream_devnet.settings import get_settings
from upstream_devnet.support import create_and_publish_project, start_ssh_agent


async def main():
    settings = get_settings()
    setup_logging(settings.log_level)

    async with ProcessSupervisor() as supervisor:
        ssh_auth_sock = await start_ssh_agent(supervisor, settings)
        maintainer = UpstreamPeer(make_peer_config(1), supervisor, settings, ssh_auth_sock=ssh_auth_sock)
        contributor = UpstreamPeer(
            make_peer_config(2),
            supervisor,
            settings,
            seeds=[settings.seed_url],
            ssh_auth_sock=ssh_auth_sock,
        )
        await maintainer.start()
        await contributor.start()

        project = await create_and_publish_project(maintainer, "example")
        print(f"📦 Published {project.urn}")

        updated = contributor.events().filter(
            lambda event: event.type == EventType.PROJECT_UPDATED.value and event.urn == project.urn
        ).first_match()
        await updated.attached()
        await contributor.proxy_client.project.request_submit(project.urn)
        await asyncio.wait_for(updated, timeout=settings.event_timeout_seconds)
        print("✅ Contributor fetched the project")

        await contributor.stop()
        await maintainer.stop()


if __name__ == "__main__":
    asyncio.run(main())
