"""Single-flight task dispatch to the external assistant."""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Callable, Sequence
from pathlib import Path

from docpilot.agent.models import (
    GENERIC_AGENT_ERROR,
    GENERIC_DISPATCH_ERROR,
    ActiveTask,
    TaskKind,
    TaskObserver,
    TaskOutcome,
    TaskResult,
    TaskStatus,
    Tier,
)
from docpilot.agent.prompts import (
    build_chat_prompt,
    build_edit_prompt,
    read_document,
    resolve_references,
)
from docpilot.agent.routing import TierProfile, TierRouting
from docpilot.agent.stream import StreamAggregator
from docpilot.agent.transport.base import (
    Transport,
    TransportError,
    TransportHandle,
    TransportRequest,
)
from docpilot.workspace.models import HistoryMessage

logger = logging.getLogger(__name__)


class _TaskListener:
    """Routes one task's transport events back through the dispatcher."""

    def __init__(
        self,
        dispatcher: TaskDispatcher,
        task: ActiveTask,
        observer: TaskObserver,
    ) -> None:
        self._dispatcher = dispatcher
        self._task = task
        self._observer = observer

    def on_data(self, text: str) -> None:
        self._dispatcher._deliver_data(self._task, self._observer, text)

    def on_complete(self, result: TaskResult) -> None:
        self._dispatcher._deliver_complete(self._task, self._observer, result)

    def on_error(self, message: str) -> None:
        self._dispatcher._deliver_error(self._task, self._observer, message)


class TaskDispatcher:
    """Own at most one active assistant task per editing session.

    Every submit kills the running task first; there is no queue and the
    last request always wins. Each task carries the generation it was
    started in, and transport events are delivered under the dispatcher
    lock only while that generation is still current, so callbacks from a
    killed task are dropped. ``submit_*`` never wait for the assistant.
    """

    def __init__(
        self,
        transport: Transport,
        routing: TierRouting,
        *,
        observer: TaskObserver | None = None,
        aggregator: StreamAggregator | None = None,
        task_id_factory: Callable[[], str] | None = None,
    ) -> None:
        self.transport = transport
        self.routing = routing
        self.observer = observer or TaskObserver()
        self.aggregator = aggregator or StreamAggregator()
        self._task_id_factory = task_id_factory or (lambda: uuid.uuid4().hex)
        self._lock = threading.RLock()
        self._generation = 0
        self._active: ActiveTask | None = None
        self._handle: TransportHandle | None = None

    @property
    def lock(self) -> threading.RLock:
        """Lock under which task events are delivered; hosts share it for their own state."""

        return self._lock

    @property
    def active_task(self) -> ActiveTask | None:
        with self._lock:
            return self._active

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    def submit_edit(
        self,
        instructions: str,
        target: Path | str,
        tier: Tier | str | None = None,
        *,
        observer: TaskObserver | None = None,
        request_id: str | None = None,
    ) -> ActiveTask:
        """Start an edit task on ``target``, replacing any active task."""

        if not instructions.strip():
            raise ValueError("Edit instructions must not be empty.")
        target_path = Path(target)
        profile = self.routing.resolve(TaskKind.EDIT, tier)
        prompt = build_edit_prompt(
            target=target_path,
            document=read_document(target_path),
            instructions=instructions,
            references=resolve_references(instructions, target_path.parent),
            fast=profile.tier is Tier.FAST,
        )
        return self._dispatch(
            kind=TaskKind.EDIT,
            profile=profile,
            target=target_path,
            prompt=prompt,
            observer=observer,
            message=instructions,
            request_id=request_id,
        )

    def submit_chat(
        self,
        message: str,
        target: Path | str,
        session_id: int | None = None,
        context_selection: str | None = None,
        history: Sequence[HistoryMessage] = (),
        tier: Tier | str | None = None,
        *,
        observer: TaskObserver | None = None,
        request_id: str | None = None,
    ) -> ActiveTask:
        """Start a chat task about ``target``, replacing any active task."""

        if not message.strip():
            raise ValueError("Chat message must not be empty.")
        target_path = Path(target)
        profile = self.routing.resolve(TaskKind.CHAT, tier)
        prompt = build_chat_prompt(
            target=target_path,
            document=read_document(target_path),
            message=message,
            context_selection=context_selection,
            history=history,
            references=resolve_references(message, target_path.parent),
        )
        return self._dispatch(
            kind=TaskKind.CHAT,
            profile=profile,
            target=target_path,
            prompt=prompt,
            observer=observer,
            message=message,
            session_id=session_id,
            context_selection=context_selection,
            history=list(history),
            request_id=request_id,
        )

    def cancel(self) -> bool:
        """Kill the active task; its late events are discarded."""

        with self._lock:
            if self._active is None:
                return False
            logger.info("Cancelling %s task %s", self._active.kind.value, self._active.task_id)
            self._kill_active_locked()
            self._generation += 1
            return True

    def last_output(self, kind: TaskKind) -> str:
        """Streamed text of the latest task of ``kind``, from memory or the transport."""

        return self.aggregator.current(kind) or self.transport.read_last_output(kind)

    def _dispatch(
        self,
        *,
        kind: TaskKind,
        profile: TierProfile,
        target: Path,
        prompt: str,
        observer: TaskObserver | None,
        message: str,
        session_id: int | None = None,
        context_selection: str | None = None,
        history: list[HistoryMessage] | None = None,
        request_id: str | None = None,
    ) -> ActiveTask:
        task_observer = observer or self.observer
        with self._lock:
            if self._active is not None:
                logger.info(
                    "Replacing active %s task %s",
                    self._active.kind.value,
                    self._active.task_id,
                )
                self._kill_active_locked()
            self._generation += 1
            task = ActiveTask(
                task_id=request_id or self._task_id_factory(),
                kind=kind,
                generation=self._generation,
                tier=profile.tier,
            )
            self._active = task
            self.aggregator.reset(kind)
            request = TransportRequest(
                task_id=task.task_id,
                kind=kind,
                prompt=prompt,
                target=target,
                profile=profile,
                message=message,
                session_id=session_id,
                context_selection=context_selection,
                history=history or [],
            )
            listener = _TaskListener(self, task, task_observer)
            try:
                self._handle = self.transport.send(request, listener)
            except (TransportError, OSError) as error:
                logger.warning("Dispatch of %s task %s failed: %s", kind.value, task.task_id, error)
                task.status = TaskStatus.ERROR
                self._active = None
                self._handle = None
                task_observer.on_error(kind, GENERIC_DISPATCH_ERROR)
                return task
            logger.info(
                "Dispatched %s task %s (tier=%s, generation=%d)",
                kind.value,
                task.task_id,
                profile.tier.value,
                task.generation,
            )
            return task

    def _kill_active_locked(self) -> None:
        handle = self._handle
        self._active = None
        self._handle = None
        if handle is None:
            return
        try:
            handle.kill()
        except OSError as error:
            logger.warning("Failed to kill active task: %s", error)

    def _is_current(self, task: ActiveTask) -> bool:
        return self._active is task and task.generation == self._generation

    def _deliver_data(self, task: ActiveTask, observer: TaskObserver, text: str) -> None:
        with self._lock:
            if not self._is_current(task):
                logger.debug("Discarding stale data event of task %s", task.task_id)
                return
            merged = self.aggregator.update(task.kind, text)
            if merged is None:
                return
            task.status = TaskStatus.STREAMING
            observer.on_data(task.kind, merged)

    def _deliver_complete(
        self,
        task: ActiveTask,
        observer: TaskObserver,
        result: TaskResult,
    ) -> None:
        with self._lock:
            if not self._is_current(task):
                logger.debug("Discarding stale completion of task %s", task.task_id)
                return
            task.status = TaskStatus.COMPLETED
            self._active = None
            self._handle = None
            output = result.output or self.aggregator.current(task.kind)
            logger.info("Task %s completed", task.task_id)
            observer.on_complete(
                TaskOutcome(
                    task_id=task.task_id,
                    kind=task.kind,
                    result=TaskResult(output=output, message=result.message),
                ),
            )

    def _deliver_error(self, task: ActiveTask, observer: TaskObserver, message: str) -> None:
        with self._lock:
            if not self._is_current(task):
                logger.debug("Discarding stale error of task %s", task.task_id)
                return
            task.status = TaskStatus.ERROR
            self._active = None
            self._handle = None
            logger.warning("Task %s failed: %s", task.task_id, message)
            observer.on_error(task.kind, message or GENERIC_AGENT_ERROR)
