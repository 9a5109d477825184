"""Workflow coordinator: runs one lifecycle transition end to end.

Every ``execute`` call follows the same pipeline:

    legality check -> lock -> load -> generate -> validate
        -> side effects -> apply_transition + save (commit) -> unlock

The registry write at the end is the only commit point. A failure anywhere
before it leaves the persisted project untouched and unwinds the side
effects applied so far through the compensation stack.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Sequence, TypeVar, Union

from siteforge.config.settings import OrchestratorSettings
from siteforge.errors import (
    AllocationError,
    ConcurrentTransitionError,
    CoordinatorClosedError,
    IllegalTransitionError,
    RollbackFailedError,
    RuntimeAdapterError,
    SiteForgeError,
    StageTimeoutError,
    TransitionCancelledError,
)
from siteforge.lifecycle.compensation import CompensationStack
from siteforge.lifecycle.locks import ProjectLocks
from siteforge.lifecycle.machine import Clock, StateMachine, utc_now
from siteforge.lifecycle.states import Action, ProjectState
from siteforge.models.artifacts import (
    Artifact,
    DeletePlan,
    DeploymentArtifact,
    StartPlan,
    StopPlan,
    UpdatePlan,
)
from siteforge.models.project import Project
from siteforge.models.runtime import DeploymentSpec, PortAllocation, ServiceSpec
from siteforge.models.transitions import (
    StepRecord,
    StepStatus,
    TransitionOutcome,
    TransitionRecord,
    TransitionResult,
)
from siteforge.notifications import EventChannel, EventType
from siteforge.pipeline.generators import ArtifactGenerator
from siteforge.pipeline.loaders import ResourceLoader
from siteforge.pipeline.templates import TemplateStore
from siteforge.registry.projects import ProjectRegistry
from siteforge.runtime.base import ContainerRuntimeAdapter
from siteforge.runtime.ports import PortAllocator
from siteforge.utils.logging import (
    clear_transition_context,
    get_logger,
    log_stage_timing,
    set_correlation_id,
    set_stage,
    set_transition_context,
)
from siteforge.validation.artifact import ArtifactValidator
from siteforge.validation.runtime import DeploymentValidator
from siteforge.validation.schema import SchemaValidator, ValidationReport
from siteforge.validation.template import TemplateValidator

logger = get_logger("lifecycle.coordinator")

T = TypeVar("T")


@dataclass
class _Run:
    """Mutable state of one in-flight transition."""

    project_id: str
    action: Optional[Action]
    config: dict[str, Any]
    record: TransitionRecord
    timeout: Optional[float]
    cancel_event: Optional[asyncio.Event] = None
    compensations: CompensationStack = field(default_factory=CompensationStack)


class WorkflowCoordinator:
    """
    Serializes transitions per project and drives them through the pipeline.

    Transitions for different projects run concurrently; a second call for a
    project that already has one in flight is rejected immediately.
    """

    def __init__(
        self,
        registry: ProjectRegistry,
        runtime: ContainerRuntimeAdapter,
        ports: PortAllocator,
        *,
        settings: Optional[OrchestratorSettings] = None,
        machine: Optional[StateMachine] = None,
        loader: Optional[ResourceLoader] = None,
        generator: Optional[ArtifactGenerator] = None,
        validator: Optional[ArtifactValidator] = None,
        events: Optional[EventChannel] = None,
        locks: Optional[ProjectLocks] = None,
        clock: Optional[Clock] = None,
        history_size: Optional[int] = None,
    ) -> None:
        """
        Initialize the coordinator.

        Args:
            registry: Project document store
            runtime: Container runtime adapter
            ports: Host port allocator
            settings: Orchestrator settings (defaults when omitted)
            machine: State machine (built from ``clock`` when omitted)
            loader: Resource loader
            generator: Artifact generator
            validator: Artifact validator
            events: Notification channel
            locks: Per-project lock table
            clock: Source of "now"
            history_size: Number of transition records kept in memory
        """
        self.settings = settings or OrchestratorSettings()
        self.registry = registry
        self.runtime = runtime
        self.ports = ports
        self.clock = clock or utc_now
        self.machine = machine or StateMachine(clock=self.clock)

        templates = TemplateStore(self.settings.paths.templates_dir)
        self.loader = loader or ResourceLoader(
            templates, runtime=runtime, ports=ports, clock=self.clock
        )
        self.generator = generator or ArtifactGenerator(self.settings.runtime, templates)
        self.validator = validator or ArtifactValidator(
            SchemaValidator(
                max_depth=self.settings.validation.max_depth,
                strict=self.settings.validation.strict,
            ),
            TemplateValidator(),
            DeploymentValidator(ports.ledger),
        )
        self.events = events or EventChannel.from_config(
            self.settings.notifications, timeout=self.settings.timeouts.notification
        )
        self.locks = locks or ProjectLocks()
        self.history: deque[TransitionRecord] = deque(
            maxlen=history_size or self.settings.history_size
        )

        self._in_flight: dict[str, Action] = {}
        self._idle = asyncio.Event()
        self._idle.set()
        self._closed = False

    @property
    def in_flight(self) -> dict[str, Action]:
        return dict(self._in_flight)

    @property
    def closed(self) -> bool:
        return self._closed

    async def __aenter__(self) -> "WorkflowCoordinator":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.drain()
        await self.runtime.close()

    async def drain(self, timeout: Optional[float] = None) -> None:
        """
        Stop admitting transitions and wait for in-flight ones to finish.

        Args:
            timeout: Maximum seconds to wait (None waits indefinitely)
        """
        self._closed = True
        logger.info("coordinator_draining", in_flight=sorted(self._in_flight))
        await asyncio.wait_for(self._idle.wait(), timeout=timeout)
        await self.events.close()
        logger.info("coordinator_drained")

    def available_actions(self, project_id: str) -> list[Action]:
        project = self.registry.get(project_id)
        return self.machine.available_actions(project.state if project else ProjectState.VOID)

    def recent(self, project_id: Optional[str] = None) -> list[TransitionRecord]:
        """Recent transition records, newest last."""
        return [r for r in self.history if project_id is None or r.project_id == project_id]

    async def describe(self, project_id: str) -> dict[str, Any]:
        """Persisted document, observed runtime status and available actions."""
        project = self.registry.load(project_id)
        data: dict[str, Any] = {
            "project": project.to_dict(),
            "available_actions": [a.name for a in self.machine.available_actions(project.state)],
            "ports": self.ports.owned(project_id),
        }
        if project.state.is_deployed():
            status = await self.runtime.status(project_id)
            data["runtime"] = status.to_dict()
        return data

    # Entry point

    async def execute(
        self,
        project_id: str,
        action: Union[Action, str],
        config: Optional[dict[str, Any]] = None,
        *,
        timeout: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> TransitionResult:
        """
        Run one lifecycle transition.

        Errors never escape as exceptions: they come back in the result with
        project id, action and stage filled in.

        Args:
            project_id: Target project
            action: Action to run
            config: Action options (name, template, pages, strategy, image ...)
            timeout: Per-stage timeout in seconds (defaults to settings)
            cancel_event: Checked between stages; setting it aborts the run

        Returns:
            TransitionResult
        """
        set_correlation_id(str(uuid.uuid4())[:8])
        try:
            action = Action.parse(action)
        except ValueError:
            set_transition_context(project_id, str(action))
            result = await self._reject_unknown(project_id, action)
            clear_transition_context()
            return result
        set_transition_context(project_id, action.name)

        run = _Run(
            project_id=project_id,
            action=action,
            config=dict(config or {}),
            record=TransitionRecord(project_id=project_id, action=action),
            timeout=timeout if timeout is not None else self.settings.timeouts.stage,
            cancel_event=cancel_event,
        )

        try:
            # Admission never awaits, so check and lock cannot interleave
            project = self._admit(run)
        except SiteForgeError as e:
            result = await self._reject(run, e)
            clear_transition_context()
            return result

        try:
            return await self._run(run, project)
        finally:
            self.locks.release(project_id)
            self._in_flight.pop(project_id, None)
            if not self._in_flight:
                self._idle.set()
            clear_transition_context()

    def _admit(self, run: _Run) -> Optional[Project]:
        if self._closed:
            raise CoordinatorClosedError(run.project_id, run.action)

        project = self.registry.get(run.project_id)
        state = project.state if project else ProjectState.VOID
        run.record.from_state = state
        run.record.to_state = self.machine.require(state, run.action, project_id=run.project_id)

        if not self.locks.try_acquire(run.project_id):
            raise ConcurrentTransitionError(run.project_id, run.action)
        self._in_flight[run.project_id] = run.action
        self._idle.clear()
        return project

    async def _reject_unknown(self, project_id: str, name: Any) -> TransitionResult:
        """Reject an action outside the table as an illegal transition."""
        run = _Run(
            project_id=project_id,
            action=None,
            config={},
            record=TransitionRecord(project_id=project_id, action=None),
            timeout=None,
        )
        try:
            project = self.registry.get(project_id)
        except SiteForgeError as e:
            return await self._reject(run, e)
        state = project.state if project else ProjectState.VOID
        run.record.from_state = state
        return await self._reject(run, IllegalTransitionError(state, name, project_id=project_id))

    async def _reject(self, run: _Run, error: SiteForgeError) -> TransitionResult:
        error.with_context(run.project_id, run.action, "admission")
        record = run.record
        record.outcome = TransitionOutcome.REJECTED
        record.finished_at = datetime.now(timezone.utc)
        self.history.append(record)

        logger.info(
            "transition_rejected",
            error_type=error.error_type,
            error=error.message,
            state=record.from_state.name if record.from_state else None,
        )
        await self.events.emit(
            EventType.WORKFLOW_FAILED,
            run.project_id,
            action=run.action.name if run.action else error.action,
            outcome=record.outcome.value,
            error=error.to_dict(),
        )
        return TransitionResult(
            success=False,
            project_id=run.project_id,
            action=run.action,
            new_state=record.from_state,
            error=error,
            record=record,
        )

    async def _run(self, run: _Run, project: Optional[Project]) -> TransitionResult:
        record = run.record
        logger.info(
            "transition_started",
            from_state=record.from_state.name,
            to_state=record.to_state.name,
        )
        await self.events.emit(
            EventType.WORKFLOW_STARTED,
            run.project_id,
            action=run.action.name,
            state=record.from_state.name,
        )

        try:
            context = await self._stage(
                run, "load_resources", self.loader.load,
                run.action, run.project_id, run.config, project,
            )
            artifact = await self._stage(
                run, "generate", self._generate, run.action, context, run.config
            )
            report = await self._stage(run, "validate", self._validate, artifact)
            await self._apply_side_effects(run, artifact)
            committed = await self._stage(run, "commit", self._commit, run, artifact)
        except asyncio.CancelledError:
            logger.warning("transition_task_cancelled")
            await run.compensations.unwind()
            raise
        except Exception as e:
            return await self._fail(run, e)

        run.compensations.clear()
        record.outcome = TransitionOutcome.COMMITTED
        record.finished_at = datetime.now(timezone.utc)
        self.history.append(record)

        logger.info(
            "transition_committed",
            from_state=record.from_state.name,
            to_state=record.to_state.name,
            duration_ms=record.duration_ms,
        )
        await self.events.emit(
            EventType.WORKFLOW_COMPLETED,
            run.project_id,
            action=run.action.name,
            state=record.to_state.name,
            duration_ms=record.duration_ms,
        )
        await self.events.emit(
            EventType.PROJECT_STATE_CHANGED,
            run.project_id,
            previous_state=record.from_state.name,
            state=record.to_state.name,
        )

        artifacts: dict[str, Any] = {
            "artifact": artifact.to_dict(),
            "warnings": list(report.warnings),
        }
        if committed is not None:
            artifacts["project"] = committed.to_dict()

        return TransitionResult(
            success=True,
            project_id=run.project_id,
            action=run.action,
            new_state=record.to_state,
            artifacts=artifacts,
            record=record,
        )

    async def _fail(self, run: _Run, error: Exception) -> TransitionResult:
        record = run.record
        stage = record.steps[-1].name if record.steps else None

        if not isinstance(error, SiteForgeError):
            logger.error(
                "transition_unexpected_error",
                stage=stage,
                error=str(error),
                error_type=type(error).__name__,
            )
            wrapped = SiteForgeError(f"Unexpected error: {error}")
            wrapped.__cause__ = error
            error = wrapped
        error.with_context(run.project_id, run.action, stage)

        logger.warning(
            "transition_failed",
            stage=error.stage,
            error_type=error.error_type,
            error=error.message,
            compensations=run.compensations.names,
        )

        set_stage("rollback")
        try:
            applied = await run.compensations.unwind(error)
        except RollbackFailedError as rollback_error:
            rollback_error.with_context(run.project_id, run.action, "rollback")
            logger.error(
                "rollback_failed",
                original_error=error.message,
                failures=[name for name, _ in rollback_error.failures],
            )
            error = rollback_error
            outcome = TransitionOutcome.ROLLBACK_FAILED
        else:
            if isinstance(error, TransitionCancelledError):
                outcome = TransitionOutcome.CANCELLED
            elif applied:
                outcome = TransitionOutcome.ROLLED_BACK
            else:
                outcome = TransitionOutcome.FAILED
            if applied:
                logger.info("rollback_completed", compensations=applied)

        record.compensations = list(run.compensations.completed)
        record.outcome = outcome
        record.finished_at = datetime.now(timezone.utc)
        self.history.append(record)

        await self.events.emit(
            EventType.WORKFLOW_FAILED,
            run.project_id,
            action=run.action.name,
            outcome=outcome.value,
            error=error.to_dict(),
        )
        return TransitionResult(
            success=False,
            project_id=run.project_id,
            action=run.action,
            new_state=record.from_state,
            error=error,
            record=record,
        )

    # Stage runner

    async def _stage(
        self,
        run: _Run,
        name: str,
        fn: Callable[..., Awaitable[T]],
        *args: Any,
    ) -> T:
        """
        Run one pipeline stage with timeout, retries and bookkeeping.

        Retryable errors are retried with exponential backoff up to
        ``retry.max_attempts``; anything else fails the stage at once.

        Raises:
            TransitionCancelledError: If the cancel event is set
            StageTimeoutError: If the stage exceeds the timeout
            SiteForgeError: If the stage fails
        """
        if run.cancel_event is not None and run.cancel_event.is_set():
            logger.info("transition_cancelled", stage=name)
            raise TransitionCancelledError(name)

        set_stage(name)
        step = StepRecord(name=name)
        run.record.steps.append(step)
        retry = self.settings.retry
        started = time.monotonic()

        while True:
            step.attempts += 1
            try:
                result = await asyncio.wait_for(fn(*args), timeout=run.timeout)
                break
            except asyncio.TimeoutError:
                error = StageTimeoutError(name, run.timeout)
                step.finish(StepStatus.FAILED, error.message)
                logger.warning("stage_timeout", timeout=run.timeout)
                raise error from None
            except SiteForgeError as e:
                if e.retryable and step.attempts < retry.max_attempts:
                    delay = retry.delay_for(step.attempts)
                    logger.warning(
                        "stage_retry",
                        attempt=step.attempts,
                        delay=delay,
                        error_type=e.error_type,
                        error=e.message,
                    )
                    await asyncio.sleep(delay)
                    continue
                step.finish(StepStatus.FAILED, e.message)
                logger.warning("stage_failed", error_type=e.error_type, attempts=step.attempts)
                raise e.with_context(run.project_id, run.action, name)
            except Exception as e:
                step.finish(StepStatus.FAILED, str(e))
                raise

        step.finish(StepStatus.COMPLETED)
        log_stage_timing(name, time.monotonic() - started, project_id=run.project_id)
        await self.events.emit(
            EventType.CALL_PROGRESS,
            run.project_id,
            action=run.action.name,
            stage=name,
            status=step.status.value,
            attempts=step.attempts,
        )
        return result

    async def _generate(self, action: Action, context: Any, config: dict[str, Any]) -> Artifact:
        return self.generator.generate(action, context, config)

    async def _validate(self, artifact: Artifact) -> ValidationReport:
        return self.validator.validate(artifact)

    async def _commit(self, run: _Run, artifact: Artifact) -> Optional[Project]:
        if not run.record.to_state.has_record():
            self.registry.delete(run.project_id)
            return None
        committed = self.machine.apply_transition(artifact.project, run.action)
        self.registry.save(committed)
        return committed

    # Side effects

    async def _apply_side_effects(self, run: _Run, artifact: Artifact) -> None:
        if isinstance(artifact, DeploymentArtifact):
            await self._deploy(run, artifact)
        elif isinstance(artifact, StartPlan):
            await self._start(run, artifact)
        elif isinstance(artifact, StopPlan):
            await self._stop(run, artifact)
        elif isinstance(artifact, UpdatePlan):
            await self._update(run, artifact)
        elif isinstance(artifact, DeletePlan):
            await self._delete(run, artifact)

    def _push_port_release(self, run: _Run) -> None:
        """Compensation returning every port claimed from now on."""
        pid = run.project_id
        before = set(self.ports.owned(pid))

        def release_new_ports() -> None:
            self.ports.release(pid, [p for p in self.ports.owned(pid) if p not in before])

        run.compensations.push("release_ports", release_new_ports)

    async def _allocate(
        self, project_id: str, count: int, preferred: Sequence[int] = ()
    ) -> PortAllocation:
        return self.ports.allocate(project_id, count, preferred=preferred)

    async def _verify_ports(self, project_id: str, ports: Sequence[int]) -> None:
        unusable = self.ports.verify(project_id, ports)
        if unusable:
            raise AllocationError(
                f"Ports no longer available: {', '.join(map(str, unusable))}",
                retryable=False,
            )

    async def _release_ports(self, project_id: str, ports: Optional[Sequence[int]]) -> list[int]:
        return self.ports.release(project_id, ports)

    async def _ensure_images(self, images: Sequence[str]) -> list[str]:
        pulled = []
        for image in images:
            if await self.runtime.ensure_image(image):
                pulled.append(image)
        return pulled

    async def _place(
        self,
        project_id: str,
        spec: DeploymentSpec,
        services: Sequence[ServiceSpec],
        running: bool,
    ) -> list[str]:
        """Create containers for ``services``, starting them when ``running``."""
        if running:
            return await self.runtime.run_containers(project_id, services, spec.network, spec.volume)
        return await self.runtime.create_containers(project_id, services, spec.network, spec.volume)

    async def _health_check(self, spec: DeploymentSpec, path: str) -> None:
        urls = [f"http://{self.ports.host}:{port}{path}" for port in spec.host_ports]
        healthy = await self.runtime.check_health(
            urls,
            timeout=self.settings.timeouts.health_check,
            interval=self.settings.timeouts.health_interval,
        )
        if not healthy:
            raise RuntimeAdapterError(
                f"Health check failed for {', '.join(urls)}",
                retryable=False,
            )

    async def _deploy(self, run: _Run, artifact: DeploymentArtifact) -> None:
        pid = run.project_id

        self._push_port_release(run)
        allocation = await self._stage(run, "allocate_ports", self._allocate, pid, artifact.port_count)
        spec = artifact.spec.bind_ports(allocation.ports)

        run.compensations.push("remove_network", lambda: self.runtime.remove_network(pid, spec.network))
        await self._stage(run, "ensure_network", self.runtime.ensure_network, pid, spec.network)

        run.compensations.push("remove_volume", lambda: self.runtime.remove_volume(pid, spec.volume))
        await self._stage(run, "ensure_volume", self.runtime.ensure_volume, pid, spec.volume)

        await self._stage(run, "ensure_image", self._ensure_images, spec.images)

        run.compensations.push(
            "remove_containers",
            lambda: self.runtime.remove_containers(pid, spec.container_names),
        )
        await self._stage(run, "create_containers", self._place, pid, spec, spec.services, False)

        artifact.spec = spec
        artifact.project.deployment.services = list(spec.services)

    async def _start(self, run: _Run, plan: StartPlan) -> None:
        pid = run.project_id

        self._push_port_release(run)
        allocation = await self._stage(
            run, "allocate_ports", self._allocate,
            pid, len(plan.spec.services), plan.preferred_ports,
        )
        await self._stage(run, "verify_ports", self._verify_ports, pid, allocation.ports)
        spec = plan.spec.bind_ports(allocation.ports)

        run.compensations.push(
            "stop_containers",
            lambda: self.runtime.stop_containers(pid, spec.container_names),
        )
        await self._stage(run, "run_containers", self._place, pid, spec, spec.services, True)
        await self._stage(run, "health_check", self._health_check, spec, plan.health_path)

        plan.spec = spec
        plan.project.deployment.services = list(spec.services)

    async def _stop(self, run: _Run, plan: StopPlan) -> None:
        pid = run.project_id
        spec = plan.spec

        run.compensations.push(
            "restart_containers",
            lambda: self._place(pid, spec, spec.services, True),
        )
        await self._stage(run, "stop_containers", self.runtime.stop_containers, pid, spec.container_names)

        run.compensations.push("reserve_ports", lambda: self.ports.reserve(pid, plan.ports))
        await self._stage(run, "release_ports", self._release_ports, pid, plan.ports)

    async def _update(self, run: _Run, plan: UpdatePlan) -> None:
        pid = run.project_id

        await self._stage(run, "ensure_image", self._ensure_images, plan.images)

        run.compensations.push(
            "restore_containers",
            lambda: self._place(pid, plan.previous, plan.previous.services, plan.restart),
        )
        await self._stage(run, "replace_containers", self._replace_containers, pid, plan)

        if plan.restart:
            health_path = run.config.get("health_path") or self.settings.runtime.health_path
            await self._stage(run, "health_check", self._health_check, plan.spec, health_path)

    async def _replace_containers(self, project_id: str, plan: UpdatePlan) -> list[str]:
        logger.info(
            "replacing_containers",
            strategy=plan.strategy,
            version=plan.next_version,
            images=plan.images,
        )
        spec = plan.spec

        if plan.strategy == "recreate":
            if plan.restart:
                await self.runtime.stop_containers(project_id, plan.previous.container_names)
            return await self._place(project_id, spec, spec.services, plan.restart)

        if plan.strategy == "rolling":
            names: list[str] = []
            for service in spec.services:
                names.extend(await self._place(project_id, spec, [service], plan.restart))
                logger.debug("service_replaced", service=service.name)
            return names

        # blue-green: images are already local, switch the whole set at once
        return await self._place(project_id, spec, spec.services, plan.restart)

    async def _delete(self, run: _Run, plan: DeletePlan) -> None:
        pid = run.project_id

        if plan.spec is not None and plan.was_running:
            spec = plan.spec
            run.compensations.push(
                "restart_containers",
                lambda: self._place(pid, spec, spec.services, True),
            )
        await self._stage(run, "stop_containers", self.runtime.stop_containers, pid, None)
        await self._stage(run, "remove_resources", self.runtime.remove_all, pid)

        # Removed resources cannot be restored; a rerun of DELETE finishes the job
        run.compensations.clear()
        await self._stage(run, "release_ports", self._release_ports, pid, None)
