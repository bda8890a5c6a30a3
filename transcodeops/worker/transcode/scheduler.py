"""
Transcode scheduler - bounded pool of concurrently running tasks.

Tasks queue FIFO by dispatch order and start while the thread budget allows.
The queue head blocks everything behind it until it fits, except that a task
larger than the whole budget may run when nothing else is running.

Under resource pressure the most recently started task is suspended and
rejoins the queue at its original position. Operator suspensions are held
until resumed explicitly.
"""
import heapq
import asyncio
import itertools
import logging
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from transcodeops.worker.errors import ConflictError, NotFoundError, ValidationError
from transcodeops.worker.ffmpeg.command import Progress
from transcodeops.worker.ffmpeg.target import Target
from transcodeops.worker.rules.engine import first_eligible_workflow
from transcodeops.worker.rules.models import Media, Workflow
from .guardrails import ResourceGuardrail
from .registry import TaskRegistry
from .task import TaskStatus, TranscodeTask

logger = logging.getLogger(__name__)


class TaskScheduler:
    """Dispatches transcode tasks into a bounded set of running slots"""

    def __init__(self, output_path: str, max_thread_consumption: int = 8,
                 ffmpeg_path: str = "ffmpeg", command_factory: Callable[..., Any] = None,
                 guardrail: Optional[ResourceGuardrail] = None,
                 guard_check_interval_sec: float = 5.0,
                 nats_service=None, store=None):
        self.output_path = Path(output_path)
        self.max_thread_consumption = max_thread_consumption
        self.ffmpeg_path = ffmpeg_path
        self.command_factory = command_factory
        self.guardrail = guardrail
        self.guard_check_interval_sec = guard_check_interval_sec
        self.nats = nats_service
        self.store = store

        self.registry = TaskRegistry()
        self._tasks: Dict[str, TranscodeTask] = {}
        self._sequence: Dict[str, int] = {}
        self._counter = itertools.count()
        self._queue: List[Tuple[int, str]] = []
        self._queued: Set[str] = set()
        self._running: Dict[str, asyncio.Task] = {}
        self._held: Set[str] = set()
        self._threads_in_use = 0
        self._under_pressure = False
        self._started = False
        self._guard_task: Optional[asyncio.Task] = None
        self._event_tasks: Set[asyncio.Task] = set()

    # Lifecycle

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        if self.guardrail is not None and self.guardrail.enabled:
            self._guard_task = asyncio.create_task(self._guard_loop())
        logger.info(f"Transcode scheduler started (thread budget {self.max_thread_consumption})")
        self._fill_slots()

    async def stop(self) -> None:
        """Stop scheduling and cancel every running encode"""
        self._started = False
        if self._guard_task:
            self._guard_task.cancel()
            await asyncio.gather(self._guard_task, return_exceptions=True)
            self._guard_task = None

        running = list(self._running.values())
        for job in running:
            job.cancel()
        await asyncio.gather(*running, return_exceptions=True)

        if self._event_tasks:
            await asyncio.gather(*self._event_tasks, return_exceptions=True)
        logger.info("Transcode scheduler stopped")

    # Dispatch

    def output_path_for(self, media: Media, target: Target) -> Path:
        return self.output_path / media.id / f"{target.id}.{target.extension}"

    async def dispatch(self, media: Media, target: Target) -> TranscodeTask:
        """
        Create and queue a task for the pair.

        Raises:
            ConflictError: the pair already has a live task, or a completed
                transcode is on record
        """
        if self.store is not None and await self.store.has_completed(media.id, target.id):
            raise ConflictError(f"media {media.id} already has a completed transcode for target {target.id}")

        kwargs = {"ffmpeg_path": self.ffmpeg_path}
        if self.command_factory is not None:
            kwargs["command_factory"] = self.command_factory
        task = TranscodeTask(media, target, self.output_path_for(media, target), **kwargs)

        self.registry.add(task)
        task.on_update = self._on_task_update
        task.on_progress = self._on_task_progress
        self._tasks[task.id] = task
        self._sequence[task.id] = next(self._counter)

        logger.info(f"Dispatched {task} ({target.label})")
        self._publish("transcode.created", task)
        self._enqueue(task)
        self._fill_slots()
        return task

    async def dispatch_workflows(self, media: Media, workflows: Iterable[Workflow],
                                 targets: Mapping[str, Target]) -> List[TranscodeTask]:
        """
        Dispatch a task per target of the first workflow that accepts the media.

        Targets that already have a live or completed transcode are skipped.

        Raises:
            ValidationError: the matching workflow references an unknown target
        """
        workflow = first_eligible_workflow(workflows, media)
        if workflow is None:
            logger.info(f"No workflow accepted {media}")
            return []

        missing = [target_id for target_id in workflow.target_ids if target_id not in targets]
        if missing:
            raise ValidationError(f"workflow '{workflow.label}' references unknown targets: {missing}")

        tasks = []
        for target_id in workflow.target_ids:
            if self.registry.get(media.id, target_id) is not None:
                continue
            try:
                tasks.append(await self.dispatch(media, targets[target_id]))
            except ConflictError as e:
                logger.info(f"Skipping target {target_id} for {media}: {e.message}")

        logger.info(f"Workflow '{workflow.label}' dispatched {len(tasks)} task(s) for {media}")
        return tasks

    # Queries

    def get_task(self, task_id: str) -> TranscodeTask:
        task = self._tasks.get(task_id)
        if task is None:
            raise NotFoundError(f"Transcode task {task_id} not found")
        return task

    def status(self, task_id: str) -> Tuple[TaskStatus, Optional[Progress]]:
        return self.get_task(task_id).snapshot()

    def list_tasks(self, media_id: Optional[str] = None,
                   status: Optional[TaskStatus] = None) -> List[TranscodeTask]:
        tasks = list(self._tasks.values())
        if media_id is not None:
            tasks = [t for t in tasks if t.media.id == media_id]
        if status is not None:
            tasks = [t for t in tasks if t.status == status]
        return tasks

    @property
    def threads_in_use(self) -> int:
        return self._threads_in_use

    @property
    def running_count(self) -> int:
        return len(self._running)

    @property
    def under_pressure(self) -> bool:
        return self._under_pressure

    # Control

    def set_thread_budget(self, max_thread_consumption: int) -> None:
        """Change the budget. Running tasks keep their slots; a larger budget starts queued ones."""
        if max_thread_consumption < 1:
            raise ValidationError(f"thread budget must be at least 1, got {max_thread_consumption}")
        self.max_thread_consumption = max_thread_consumption
        logger.info(f"Thread budget set to {max_thread_consumption}")
        self._fill_slots()

    async def cancel(self, task_id: str) -> bool:
        """Cancel a task. True if a live encode had to be interrupted."""
        task = self.get_task(task_id)
        interrupted = await task.cancel()
        self._held.discard(task_id)
        if task.status == TaskStatus.cancelled and task_id not in self._running:
            self._finish(task)
        return interrupted

    async def cancel_for_media(self, media_id: str) -> int:
        cancelled = 0
        for task in self.registry.for_media(media_id):
            await self.cancel(task.id)
            cancelled += 1
        return cancelled

    async def suspend(self, task_id: str) -> bool:
        """Suspend a WORKING task until resume() is called"""
        task = self.get_task(task_id)
        self._held.add(task_id)
        if not await task.suspend():
            self._held.discard(task_id)
            return False
        return True

    async def resume(self, task_id: str) -> bool:
        """Requeue a SUSPENDED task. The encode restarts from the beginning."""
        task = self.get_task(task_id)
        self._held.discard(task_id)
        if task.status != TaskStatus.suspended or task_id in self._running:
            return False
        self._enqueue(task)
        self._fill_slots()
        return True

    async def retry(self, task_id: str) -> TranscodeTask:
        """Requeue a TROUBLED task"""
        task = self.get_task(task_id)
        task.retry()
        self._enqueue(task)
        self._fill_slots()
        return task

    def dispose(self, task_id: str) -> None:
        """Forget a task that reached COMPLETE or CANCELLED"""
        task = self.get_task(task_id)
        if not task.is_terminal:
            raise ConflictError(f"{task} is {task.status.value}, only finished tasks can be disposed")
        self._tasks.pop(task_id, None)
        self._sequence.pop(task_id, None)

    # Pressure

    async def apply_pressure(self, under_pressure: bool, reason: Optional[str] = None) -> None:
        """
        React to a resource pressure signal.

        While under pressure no task is started and the most recently started
        WORKING task is suspended on each signal, keeping at least one running.
        """
        was_under_pressure = self._under_pressure
        self._under_pressure = under_pressure

        if not under_pressure:
            if was_under_pressure:
                logger.info("Resource pressure cleared, resuming scheduling")
                self._fill_slots()
            return

        working = [
            self._tasks[task_id] for task_id in self._running
            if self._tasks[task_id].status == TaskStatus.working
        ]
        if len(working) <= 1:
            return

        victim = working[-1]
        logger.warning(f"Suspending {victim} under resource pressure: {reason}")
        await victim.suspend()

    async def _guard_loop(self) -> None:
        while True:
            await asyncio.sleep(self.guard_check_interval_sec)
            try:
                under_pressure, reason = await self.guardrail.check()
            except Exception as e:
                logger.warning(f"Guardrail check failed: {e}")
                continue
            await self.apply_pressure(under_pressure, reason)

    # Internals

    def _enqueue(self, task: TranscodeTask) -> None:
        if task.id in self._queued:
            return
        self._queued.add(task.id)
        heapq.heappush(self._queue, (self._sequence[task.id], task.id))

    def _fill_slots(self) -> None:
        if not self._started or self._under_pressure:
            return

        while self._queue:
            _, task_id = self._queue[0]
            task = self._tasks.get(task_id)
            if (task is None or task_id in self._running or task_id in self._held
                    or task.status not in (TaskStatus.waiting, TaskStatus.suspended)):
                heapq.heappop(self._queue)
                self._queued.discard(task_id)
                continue

            threads = task.target.required_threads
            if self._running and self._threads_in_use + threads > self.max_thread_consumption:
                break

            heapq.heappop(self._queue)
            self._queued.discard(task_id)
            self._threads_in_use += threads
            self._running[task_id] = asyncio.create_task(self._execute(task, threads))

    async def _execute(self, task: TranscodeTask, threads: int) -> None:
        try:
            await task.run()
        except ConflictError as e:
            logger.error(f"Could not start {task}: {e.message}")
        except Exception as e:
            logger.exception(f"Unexpected failure running {task}: {e}")
        finally:
            self._threads_in_use -= threads
            self._running.pop(task.id, None)

        if task.status == TaskStatus.suspended and task.id not in self._held:
            self._enqueue(task)
        elif task.is_terminal:
            self._finish(task)

        if task.status == TaskStatus.complete and self.store is not None:
            try:
                await self.store.save(task)
            except Exception as e:
                logger.error(f"Failed to record completed {task}: {e}")

        self._fill_slots()

    def _finish(self, task: TranscodeTask) -> None:
        if self.registry.remove(task):
            self._held.discard(task.id)
            self._publish(f"transcode.{task.status.value}", task)

    def _on_task_update(self, task: TranscodeTask) -> None:
        self._publish("transcode.updated", task)

    def _on_task_progress(self, task: TranscodeTask) -> None:
        self._publish("transcode.progress", task)

    def _publish(self, event_type: str, task: TranscodeTask) -> None:
        if self.nats is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        event = loop.create_task(self._publish_event(event_type, task.to_dict()))
        self._event_tasks.add(event)
        event.add_done_callback(self._event_tasks.discard)

    async def _publish_event(self, event_type: str, data: Dict[str, Any]) -> None:
        try:
            await self.nats.publish_event(event_type, data)
        except Exception as e:
            logger.error(f"Failed to publish {event_type}: {e}")
