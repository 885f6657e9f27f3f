"""Queries against the local Docker daemon."""

from __future__ import annotations

import subprocess
from typing import List

__all__ = ["get_control_plane_nodes_ids"]


def get_control_plane_nodes_ids(prefix: str) -> List[str]:
    """IDs of running containers whose ``docker ps`` line mentions ``prefix``.

    Load balancer (``-lb``) and worker containers are left out. Raises
    :class:`subprocess.CalledProcessError` if ``docker ps`` fails.
    """
    result = subprocess.run(
        ["docker", "ps"], capture_output=True, text=True, check=True
    )
    return [
        line.split()[0]
        for line in result.stdout.splitlines()
        if prefix in line
        and "-lb" not in line
        and "worker" not in line
        and line.split()
    ]