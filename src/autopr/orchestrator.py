"""Modification pipeline connecting all stages of a change request run.

Drives one dispatch task through the full pipeline:
validate → fork → clone & reset → branch → analyze → read → plan →
generate → write → commit & push → reconcile → create PR → collaborator.

Each stage delegates to an injected dependency. The run state machine
records progress and the event emitter reports it. The pipeline writes its
own terminal record and never raises, so the dispatcher that invoked it has
nothing to retry.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional

from src.autopr.events.emitter import EventEmitter
from src.autopr.events.models import EventType, PipelineEvent
from src.autopr.github.client import GitHubAPIError, GitHubClient
from src.autopr.github.models import PRCreateRequest, Repository
from src.autopr.github.pr_content import (
    build_commit_message,
    build_pr_body,
    build_pr_title,
)
from src.autopr.github.reconciler import PullRequestReconciler
from src.autopr.intake.models import DispatchTask
from src.autopr.llm.agent import AgentResponseError, ModificationAgent
from src.autopr.llm.client import LLMError
from src.autopr.llm.conversation import Conversation
from src.autopr.state.machine import RunStateMachine
from src.autopr.state.models import Stage
from src.autopr.state.tracker import ProgressTracker
from src.autopr.workspace.files import (
    FileReadError,
    build_file_tree,
    read_file_content,
    write_file,
)
from src.autopr.workspace.git import GitRepository
from src.autopr.workspace.workspace import WorkspaceProvisioner


logger = logging.getLogger(__name__)


BRANCH_PREFIX = "auto-pr-bot"

DEFAULT_AUTHOR_NAME = "Auto PR Bot"
DEFAULT_AUTHOR_EMAIL = "auto-pr-bot@users.noreply.github.com"


class PipelineError(Exception):
    """Raised inside a run when a stage cannot continue.

    Attributes:
        message: Human-readable error message.
        stage: The stage the run was in.
    """

    def __init__(self, message: str, stage: Optional[Stage] = None):
        self.message = message
        self.stage = stage
        super().__init__(message)


class PipelineOutcome(str, Enum):
    COMPLETED = "completed"
    REJECTED = "rejected"
    ERROR = "error"


@dataclass
class PipelineResult:
    """Outcome of one pipeline run.

    Attributes:
        request_id: The request the run served.
        outcome: How the run ended.
        pr_url: Pull request URL when completed.
        fork_url: URL of the bot's fork, once known.
        reused_existing_pr: True when an open PR already satisfied the request.
        files_analyzed: Files the model asked to read.
        files_modified: Files written into the commit.
        explanation: The model's summary of the change.
        error: Failure or rejection detail.
    """

    request_id: str
    outcome: PipelineOutcome = PipelineOutcome.ERROR
    pr_url: Optional[str] = None
    fork_url: Optional[str] = None
    reused_existing_pr: bool = False
    files_analyzed: List[str] = field(default_factory=list)
    files_modified: List[str] = field(default_factory=list)
    explanation: str = ""
    error: Optional[str] = None

    def summary(self) -> str:
        """Human-readable run summary for the logs."""
        lines = [
            "=== MODIFICATION SUMMARY ===",
            f"Request: {self.request_id}",
            f"Outcome: {self.outcome.value}",
        ]
        if self.fork_url:
            lines.append(f"Fork: {self.fork_url}")
        lines.append(f"Files analyzed: {len(self.files_analyzed)}")
        lines.extend(f"  - {path}" for path in self.files_analyzed)
        lines.append(f"Files modified: {len(self.files_modified)}")
        lines.extend(f"  - {path}" for path in self.files_modified)
        if self.explanation:
            lines.append(f"Explanation: {self.explanation}")
        if self.pr_url:
            label = "Existing Pull Request" if self.reused_existing_pr else "Pull Request"
            lines.append(f"{label}: {self.pr_url}")
        if self.error:
            lines.append(f"Error: {self.error}")
        lines.append("=== END SUMMARY ===")
        return "\n".join(lines)


CloneRepository = Callable[..., Awaitable[GitRepository]]


class ModificationPipeline:
    """Runs the modification pipeline for one dispatch task at a time.

    One instance is shared by all runs in a process; per-run state lives in
    local variables and the RunStateMachine.

    Attributes:
        github: GitHub API client for the bot account.
        agent: LLM modification agent.
        tracker: Progress tracker for status records.
        provisioner: Creates and removes run workspaces.
        reconciler: Existing-PR policy.
        event_emitter: Emits pipeline events for observability.
    """

    def __init__(
        self,
        github: GitHubClient,
        agent: ModificationAgent,
        tracker: ProgressTracker,
        provisioner: WorkspaceProvisioner,
        event_emitter: EventEmitter,
        reconciler: Optional[PullRequestReconciler] = None,
        git_author_name: str = DEFAULT_AUTHOR_NAME,
        git_author_email: str = DEFAULT_AUTHOR_EMAIL,
        clone_repository: CloneRepository = GitRepository.clone,
        clock: Callable[[], float] = time.time,
    ):
        self.github = github
        self.agent = agent
        self.tracker = tracker
        self.provisioner = provisioner
        self.event_emitter = event_emitter
        self.reconciler = reconciler or PullRequestReconciler(github)
        self.git_author_name = git_author_name
        self.git_author_email = git_author_email
        self._clone_repository = clone_repository
        self._clock = clock

    def branch_name(self, request_id: str) -> str:
        return f"{BRANCH_PREFIX}/{int(self._clock())}-{request_id[:8]}"

    async def run(self, task: DispatchTask) -> PipelineResult:
        """Drive a dispatch task through the full pipeline.

        Never raises: every failure is recorded as the run's terminal
        status and reported in the returned result.
        """
        started = time.monotonic()
        request_id = task.request_id
        result = PipelineResult(request_id=request_id)
        machine = RunStateMachine(request_id, task.repository_url, self.tracker)

        logger.info(
            "Starting pipeline run",
            extra={"request_id": request_id, "repository": task.repository_url},
        )

        try:
            await self._execute(task, machine, result, started)
        except Exception as exc:
            await self._fail(machine, result, exc, started)

        logger.info(result.summary(), extra={"request_id": request_id})
        return result

    async def _execute(
        self,
        task: DispatchTask,
        machine: RunStateMachine,
        result: PipelineResult,
        started: float,
    ) -> None:
        ref = task.repository
        prompt = task.modification_prompt

        await self._transition(machine, Stage.VALIDATING, "Validating modification request...")
        if not await self._validate(machine, prompt, result, started):
            return

        await self._transition(machine, Stage.FORKING, "Forking repository...")
        login = await self.github.get_authenticated_user()
        fork = await self.github.fork_repository(ref.owner, ref.repo)
        result.fork_url = fork.html_url

        await asyncio.to_thread(self._sweep_workspaces)

        async with self.provisioner.workspace(fork.owner, fork.name, task.request_id) as path:
            await self._transition(machine, Stage.CLONING, "Cloning forked repository...")
            upstream = await self.github.get_repository(ref.owner, ref.repo)
            git = await self._clone_and_reset(fork, upstream, path)

            branch = self.branch_name(task.request_id)
            await git.create_branch(branch)

            await self._transition(machine, Stage.ANALYZING, "Analyzing repository structure...")
            file_tree = await asyncio.to_thread(build_file_tree, path)
            conversation, files_to_read = await self.agent.analyze_repository(file_tree, prompt)
            result.files_analyzed = files_to_read

            file_contents = await asyncio.to_thread(
                self._read_files, path, files_to_read, task.request_id
            )
            if files_to_read and not file_contents:
                raise PipelineError("no files could be read", stage=machine.stage)
            plan = await self.agent.plan_modifications(conversation, file_contents, prompt)
            result.explanation = plan.explanation

            await self._transition(machine, Stage.MODIFYING, "Generating code modifications...")
            generated = await self._generate_files(
                path, conversation, plan.files_to_modify, file_contents, prompt, task.request_id
            )
            if not generated:
                raise PipelineError("no files could be modified", stage=machine.stage)

            for relative_path, content in generated.items():
                try:
                    await asyncio.to_thread(write_file, path, relative_path, content)
                except (FileReadError, OSError) as exc:
                    raise PipelineError(
                        f"failed to write file {relative_path}: {exc}", stage=machine.stage
                    ) from exc
            result.files_modified = list(generated)

            await self._transition(machine, Stage.COMMITTING, "Committing and pushing changes...")
            has_changes = await git.commit_and_push(
                branch, build_commit_message(prompt, plan.explanation)
            )

            reconciliation = await self.reconciler.reconcile(
                ref.owner,
                ref.repo,
                login,
                upstream.default_branch,
                has_changes,
                prompt,
            )
            if reconciliation.satisfied:
                result.reused_existing_pr = True
                await self._complete(
                    machine,
                    result,
                    reconciliation.existing_pr_url,
                    started,
                    "No changes needed - pull request already exists",
                )
                return

            await self._transition(machine, Stage.CREATING_PR, "Creating pull request...")
            pull_request = await self.github.create_pull_request(
                ref.owner,
                ref.repo,
                PRCreateRequest(
                    title=build_pr_title(prompt),
                    body=build_pr_body(prompt, plan.explanation, generated),
                    head=f"{login}:{branch}",
                    base=upstream.default_branch,
                ),
            )
            await self._complete(machine, result, pull_request.html_url, started)

        if task.github_username:
            await self._grant_access(login, fork.name, task.github_username, task.request_id)

    async def _validate(
        self,
        machine: RunStateMachine,
        prompt: str,
        result: PipelineResult,
        started: float,
    ) -> bool:
        """Run prompt validation. Returns False if the run was rejected.

        A validation service or parse failure does not block the run.
        """
        try:
            validation = await self.agent.validate_prompt(prompt)
        except (LLMError, AgentResponseError) as exc:
            logger.warning(
                "Prompt validation failed, continuing",
                extra={"request_id": machine.request_id, "error": str(exc)},
            )
            return True

        if validation.is_valid:
            return True

        reason = validation.reason or "The modification request is not actionable"
        await machine.reject(reason)
        result.outcome = PipelineOutcome.REJECTED
        result.error = reason
        await self._safe_emit(
            PipelineEvent(
                event_type=EventType.REJECTION,
                request_id=machine.request_id,
                repository=machine.repository,
                details={
                    "reason": reason,
                    "stage": Stage.VALIDATING.value,
                    "duration_seconds": time.monotonic() - started,
                },
            )
        )
        return False

    async def _clone_and_reset(
        self, fork: Repository, upstream: Repository, path: Path
    ) -> GitRepository:
        fork_url = fork.clone_url or f"https://github.com/{fork.full_name}.git"
        upstream_url = upstream.clone_url or f"https://github.com/{upstream.full_name}.git"

        git = await self._clone_repository(fork_url, path, token=self.github.token)
        await git.reset_to_upstream(upstream_url, upstream.default_branch)
        await git.configure_identity(self.git_author_name, self.git_author_email)
        return git

    def _sweep_workspaces(self) -> None:
        try:
            self.provisioner.cleanup_old_workspaces()
        except OSError:
            logger.exception("Stale workspace sweep failed")

    def _read_files(
        self, path: Path, files_to_read: List[str], request_id: str
    ) -> Dict[str, str]:
        contents: Dict[str, str] = {}
        for relative_path in files_to_read:
            try:
                contents[relative_path] = read_file_content(path, relative_path)
            except FileReadError as exc:
                logger.warning(
                    "Skipping unreadable file",
                    extra={"request_id": request_id, "path": relative_path, "error": str(exc)},
                )
        return contents

    async def _generate_files(
        self,
        path: Path,
        conversation: Conversation,
        files_to_modify: List[str],
        file_contents: Dict[str, str],
        prompt: str,
        request_id: str,
    ) -> Dict[str, str]:
        generated: Dict[str, str] = {}
        for relative_path in files_to_modify:
            original = file_contents.get(relative_path)
            if original is None:
                try:
                    original = await asyncio.to_thread(read_file_content, path, relative_path)
                except FileReadError as exc:
                    if not exc.missing:
                        logger.warning(
                            "Dropping planned file that cannot be read",
                            extra={"request_id": request_id, "path": relative_path, "error": str(exc)},
                        )
                        continue
                    original = ""

            try:
                generated[relative_path] = await self.agent.generate_file(
                    conversation, relative_path, original, prompt
                )
            except (LLMError, AgentResponseError) as exc:
                logger.warning(
                    "Failed to generate file",
                    extra={"request_id": request_id, "path": relative_path, "error": str(exc)},
                )
                continue

            logger.info(
                "Generated file",
                extra={
                    "request_id": request_id,
                    "path": relative_path,
                    "size": len(generated[relative_path]),
                },
            )
        return generated

    async def _grant_access(
        self, fork_owner: str, repo: str, username: str, request_id: str
    ) -> None:
        try:
            await self.github.add_collaborator(fork_owner, repo, username)
        except GitHubAPIError as exc:
            logger.warning(
                "Failed to add collaborator; the pull request stands",
                extra={"request_id": request_id, "username": username, "error": str(exc)},
            )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _transition(
        self,
        machine: RunStateMachine,
        to_stage: Stage,
        status_message: str,
    ) -> None:
        """Advance the run and emit a state-transition event."""
        from_stage = machine.stage
        await machine.advance(to_stage, status_message)
        await self._safe_emit(
            PipelineEvent(
                event_type=EventType.STATE_TRANSITION,
                request_id=machine.request_id,
                repository=machine.repository,
                details={"from_stage": from_stage.value, "to_stage": to_stage.value},
            )
        )

    async def _complete(
        self,
        machine: RunStateMachine,
        result: PipelineResult,
        pr_url: str,
        started: float,
        status_message: Optional[str] = None,
    ) -> None:
        last_stage = machine.stage
        await machine.complete(pr_url, status_message)
        result.outcome = PipelineOutcome.COMPLETED
        result.pr_url = pr_url
        await self._safe_emit(
            PipelineEvent(
                event_type=EventType.COMPLETION,
                request_id=machine.request_id,
                repository=machine.repository,
                details={
                    "pr_url": pr_url,
                    "reused_existing_pr": result.reused_existing_pr,
                    "stage": last_stage.value,
                    "duration_seconds": time.monotonic() - started,
                },
            )
        )

    async def _fail(
        self,
        machine: RunStateMachine,
        result: PipelineResult,
        exc: Exception,
        started: float,
    ) -> None:
        """Record the run as failed and emit an error event."""
        stage = machine.stage
        detail = f"{stage.value} failed: {exc}"
        logger.exception(
            "Pipeline stage failed",
            extra={"request_id": machine.request_id, "stage": stage.value},
        )

        if machine.is_terminal:
            # Outcome already recorded; only the post-run steps failed
            return

        await machine.fail(detail)
        result.outcome = PipelineOutcome.ERROR
        result.error = detail
        await self._safe_emit(
            PipelineEvent(
                event_type=EventType.ERROR,
                request_id=machine.request_id,
                repository=machine.repository,
                details={
                    "stage": stage.value,
                    "error_message": str(exc),
                    "error_type": type(exc).__name__,
                    "duration_seconds": time.monotonic() - started,
                },
            )
        )

    async def _safe_emit(self, event: PipelineEvent) -> None:
        """Emit an event, swallowing exceptions to avoid disrupting the pipeline."""
        try:
            await self.event_emitter.emit(event)
        except Exception:
            logger.exception(
                "Failed to emit pipeline event",
                extra={
                    "event_type": event.event_type.value,
                    "request_id": event.request_id,
                },
            )
