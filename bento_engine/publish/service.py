"""
Publish pipeline: bake live state into a snapshot and ship it.

Steps
-----
exporting  -> full export from the live adapter, repository metadata refreshed
uploading  -> snapshot upserted into the hosting repository
committing -> commit sha reported
deploying  -> Pages deployment for that commit awaited
complete   -> terminal success (with the public URL) or failure (with a cause)

Each step is reported through an optional status callback. The run is
synchronous and ends only by terminal status or by timeout.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from ..clock import Clock, SystemClock
from ..data_models import ENRICHED_VERSION, ProfileConfig, SnapshotMetadata, datetime_to_iso_utc
from ..errors import BentoError, PublishError
from ..http import HttpTransport
from ..persistence.api import PersistenceAdapter
from ..persistence.snapshot_io import SNAPSHOT_FILENAME
from .deployment import DeploymentPolicy, wait_for_deployment
from .enrichment import enrich_items
from .github_client import CommitInfo, GitHubClient, pages_url

logger = logging.getLogger(__name__)

ENRICHED_FROM = "github-api"
DEFAULT_COMMIT_MESSAGE = "chore: update profile data"


class PublishStep(str, Enum):
    """Stages of a publish run, in order."""

    EXPORTING = "exporting"
    UPLOADING = "uploading"
    COMMITTING = "committing"
    DEPLOYING = "deploying"
    COMPLETE = "complete"


@dataclass(frozen=True, slots=True)
class PublishStatus:
    """
    One progress report.

    Attributes
    ----------
    step:
        Current stage.
    progress:
        Overall progress in percent (0-100).
    message:
        Short human-readable status.
    details:
        Optional extra detail (commit sha, elapsed time, failure cause).
    """

    step: PublishStep
    progress: float
    message: str
    details: str | None = None


StatusCallback = Callable[[PublishStatus], None]


@dataclass(frozen=True, slots=True)
class PublishResult:
    """Terminal outcome of a publish run."""

    success: bool
    message: str
    commit_sha: str | None = None
    deployment_url: str | None = None
    error: BaseException | None = None


@dataclass(frozen=True, slots=True)
class ValidationResult:
    """Outcome of the publish pre-flight check."""

    valid: bool
    error: str | None = None
    default_branch: str | None = None


@dataclass(frozen=True, slots=True)
class PublishOptions:
    """
    Publish settings.

    Attributes
    ----------
    snapshot_path:
        Repository path of the snapshot file.
    commit_message:
        Message of the snapshot commit.
    wait_for_deployment:
        When False the run completes right after the commit.
    deployment:
        Timing of the deployment wait.
    """

    snapshot_path: str = SNAPSHOT_FILENAME
    commit_message: str = DEFAULT_COMMIT_MESSAGE
    wait_for_deployment: bool = True
    deployment: DeploymentPolicy = field(default_factory=DeploymentPolicy)


def _deploy_progress(elapsed_seconds: float) -> float:
    # Scales 75 -> 95 over the first three minutes of the wait.
    return min(95.0, 75.0 + (elapsed_seconds / 180.0) * 20.0)


class PublishPipeline:
    """
    Publishes the state of a live adapter to a GitHub Pages repository.

    Parameters
    ----------
    adapter:
        Source of the state. Must not be read-only.
    client:
        Client of the target repository; its token is also used for
        repository metadata enrichment.
    options:
        Publish settings.
    clock:
        Time source for metadata stamps and the deployment timeout.
    sleep:
        Sleep function used while polling.
    enrichment_transport:
        Transport for enrichment requests (defaults to the client's).

    Raises
    ------
    PublishError
        If ``adapter`` is read-only.
    """

    def __init__(
        self,
        adapter: PersistenceAdapter,
        client: GitHubClient,
        *,
        options: PublishOptions | None = None,
        clock: Clock | None = None,
        sleep: Callable[[float], None] = time.sleep,
        enrichment_transport: HttpTransport | None = None,
    ) -> None:
        if adapter.read_only:
            raise PublishError(
                f"Publishing requires an editable store; {adapter.get_adapter_name()} is read-only"
            )
        self._adapter = adapter
        self._client = client
        self._options = options or PublishOptions()
        self._clock = clock or SystemClock()
        self._sleep = sleep
        self._enrichment_transport = enrichment_transport or client.transport

    @property
    def pages_url(self) -> str:
        return pages_url(self._client.ref)

    def validate(self) -> ValidationResult:
        """Check that the token can read the repository and report its default branch."""
        try:
            info = self._client.get_repository()
        except PublishError as exc:
            return ValidationResult(valid=False, error=str(exc))
        return ValidationResult(valid=True, default_branch=str(info.get("default_branch") or "main"))

    def publish_history(self, limit: int = 10) -> list[CommitInfo]:
        """Recent commits that touched the snapshot file. Errors yield an empty list."""
        try:
            return self._client.list_commits(self._options.snapshot_path, limit)
        except PublishError as exc:
            logger.error("Error fetching publish history: %s", exc)
            return []

    def build_snapshot(self, on_status: StatusCallback | None = None) -> ProfileConfig:
        """Export the live state and refresh repository metadata."""
        emit = on_status or (lambda _status: None)
        base = self._adapter.export_config()

        def _progress(index: int, total: int, name: str) -> None:
            emit(PublishStatus(PublishStep.EXPORTING, 5 + 15 * index / total, f"Fetching {name}..."))

        items, summary = enrich_items(
            base.items,
            token=self._client.token,
            transport=self._enrichment_transport,
            on_progress=_progress,
        )
        if summary.attempted:
            logger.info(
                "Refreshed %s of %s repository card(s)", summary.refreshed, summary.attempted
            )
        return ProfileConfig(
            profile=base.profile,
            items=tuple(items),
            metadata=SnapshotMetadata(
                version=ENRICHED_VERSION,
                last_modified=self._clock.now(),
                enriched_from=ENRICHED_FROM,
            ),
        )

    def publish(self, on_status: StatusCallback | None = None) -> PublishResult:
        """
        Run the full pipeline.

        Returns
        -------
        PublishResult
            Success with commit sha and Pages URL, or failure with the cause.
            Domain failures never raise out of this method.
        """
        emit = on_status or (lambda _status: None)
        try:
            emit(PublishStatus(PublishStep.EXPORTING, 0, "Exporting profile data..."))
            config = self.build_snapshot(emit)
            emit(
                PublishStatus(
                    PublishStep.EXPORTING,
                    25,
                    "Repository metadata pre-fetched",
                    f"{len(config.items)} items ready",
                )
            )

            emit(PublishStatus(PublishStep.UPLOADING, 30, "Uploading to GitHub..."))
            content = json.dumps(config.to_dict(), indent=2, ensure_ascii=False)
            emit(PublishStatus(PublishStep.UPLOADING, 50, f"Uploading {self._options.snapshot_path}..."))
            response = self._client.upsert_file(
                self._options.snapshot_path, content, self._options.commit_message
            )
            commit_sha = str((response.get("commit") or {}).get("sha") or "")
            if not commit_sha:
                raise PublishError("Upload response did not include a commit sha")
            emit(PublishStatus(PublishStep.COMMITTING, 70, "Commit created", f"SHA: {commit_sha[:7]}"))

            if self._options.wait_for_deployment:
                emit(
                    PublishStatus(
                        PublishStep.DEPLOYING,
                        75,
                        "Waiting for GitHub Pages deployment...",
                        "The Pages build usually takes 1-3 minutes",
                    )
                )

                def _on_wait(elapsed: float) -> None:
                    emit(
                        PublishStatus(
                            PublishStep.DEPLOYING,
                            _deploy_progress(elapsed),
                            "Waiting for GitHub Pages deployment...",
                            f"Building and deploying... ({int(elapsed)}s elapsed)",
                        )
                    )

                wait_for_deployment(
                    self._client,
                    commit_sha,
                    policy=self._options.deployment,
                    clock=self._clock,
                    sleep=self._sleep,
                    on_progress=_on_wait,
                )
        except BentoError as exc:
            logger.error("Publish failed: %s", exc)
            emit(PublishStatus(PublishStep.COMPLETE, 100, "Publish failed", str(exc)))
            return PublishResult(success=False, message="Failed to publish profile", error=exc)

        url = self.pages_url
        self._record_publish(commit_sha)
        emit(PublishStatus(PublishStep.COMPLETE, 100, "Published successfully!", f"View at {url}"))
        return PublishResult(
            success=True,
            message="Profile published successfully",
            commit_sha=commit_sha,
            deployment_url=url,
        )

    def _record_publish(self, commit_sha: str) -> None:
        # lastModified must not be older than the published snapshot, or the
        # next edit session would re-seed from it.
        now = datetime_to_iso_utc(self._clock.now())
        try:
            self._adapter.update_metadata(
                {
                    "lastModified": now,
                    "lastPublished": now,
                    "lastPublishedCommit": commit_sha,
                }
            )
        except BentoError as exc:
            logger.warning("Could not record publish in the live store: %s", exc)
