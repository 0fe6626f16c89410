"""
GitHub Pages deployment polling.

A snapshot commit triggers a Pages build. The poller waits for the deployment
whose ``sha`` equals that commit, so an earlier deployment's ``success`` status
is never mistaken for the new one.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

from ..clock import Clock, SystemClock
from ..errors import DeploymentFailedError, DeploymentTimeoutError, PublishError
from .github_client import GitHubClient

logger = logging.getLogger(__name__)

TERMINAL_FAILURE_STATES = frozenset({"error", "failure"})


@dataclass(frozen=True, slots=True)
class DeploymentPolicy:
    """
    Timing of the deployment wait.

    Attributes
    ----------
    timeout_seconds:
        Total time budget, measured from the start of the wait.
    interval_seconds:
        Pause between polls.
    initial_delay_seconds:
        Pause before the first poll, giving the provider time to create the
        deployment for a fresh commit.
    """

    timeout_seconds: float = 300.0
    interval_seconds: float = 5.0
    initial_delay_seconds: float = 10.0


def wait_for_deployment(
    client: GitHubClient,
    commit_sha: str | None,
    *,
    policy: DeploymentPolicy | None = None,
    clock: Clock | None = None,
    sleep: Callable[[float], None] = time.sleep,
    on_progress: Callable[[float], None] | None = None,
) -> None:
    """
    Block until the Pages deployment of ``commit_sha`` succeeds.

    Parameters
    ----------
    client:
        Client of the published repository.
    commit_sha:
        Commit to wait for. Without it the newest deployment is used.
    policy:
        Timing (defaults: 300 s timeout, 5 s interval, 10 s initial delay).
    clock:
        Time source for the timeout.
    sleep:
        Sleep function; tests pass one that advances a manual clock.
    on_progress:
        Called with elapsed seconds before every poll.

    Raises
    ------
    DeploymentFailedError
        If the deployment reports ``error`` or ``failure``.
    DeploymentTimeoutError
        If no terminal state is reached within the timeout.
    """
    opts = policy or DeploymentPolicy()
    time_source = clock or SystemClock()
    started = time_source.now()

    def _elapsed() -> float:
        return (time_source.now() - started).total_seconds()

    if commit_sha:
        sleep(opts.initial_delay_seconds)

    while _elapsed() < opts.timeout_seconds:
        if on_progress is not None:
            on_progress(_elapsed())
        try:
            state = _poll_once(client, commit_sha)
        except PublishError as exc:
            logger.warning("Error checking deployment status, retrying: %s", exc)
            state = None

        if state is not None:
            if state.state == "success":
                logger.info("Deployment of %s succeeded", (commit_sha or "latest")[:7])
                return
            if state.state in TERMINAL_FAILURE_STATES:
                raise DeploymentFailedError(
                    f"Deployment failed: {state.description or 'Unknown error'}"
                )
        sleep(opts.interval_seconds)

    raise DeploymentTimeoutError(
        "Deployment timeout: the Pages build may still be running. "
        "Check the repository Actions tab."
    )


@dataclass(frozen=True, slots=True)
class _DeploymentState:
    state: str
    description: str | None


def _poll_once(client: GitHubClient, commit_sha: str | None) -> _DeploymentState | None:
    deployments = client.list_deployments()
    if not deployments:
        return None
    target = deployments[0]
    if commit_sha:
        target = next((d for d in deployments if d.get("sha") == commit_sha), None)
        if target is None:
            return None
    statuses = client.list_deployment_statuses(target["id"])
    if not statuses:
        return None
    latest = statuses[0]
    return _DeploymentState(
        state=str(latest.get("state", "")),
        description=latest.get("description"),
    )
