"""
Transcode task state machine.

A task is one attempt to encode one media item against one target. It owns at
most one encoder command at a time. Statuses move only along TRANSITIONS;
anything else raises ConflictError and leaves the task untouched.

Suspending a task stops its encoder and discards partial output. The encoder
has no checkpoint support, so resuming a suspended task restarts the encode
from the beginning.
"""
import os
import asyncio
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

from ulid import ULID

from transcodeops.worker.errors import CommandError, ConflictError, ResourceError
from transcodeops.worker.ffmpeg.command import FFmpegCommand, Progress
from transcodeops.worker.ffmpeg.target import Target
from transcodeops.worker.rules.models import Media

logger = logging.getLogger(__name__)


class TaskStatus(str, Enum):
    """Transcode task status"""
    waiting = "waiting"
    working = "working"
    suspended = "suspended"
    troubled = "troubled"
    cancelled = "cancelled"
    complete = "complete"


TERMINAL_STATUSES = frozenset({TaskStatus.complete, TaskStatus.cancelled})

TRANSITIONS: Dict[TaskStatus, frozenset] = {
    TaskStatus.waiting: frozenset({TaskStatus.working, TaskStatus.cancelled}),
    TaskStatus.working: frozenset({
        TaskStatus.complete,
        TaskStatus.troubled,
        TaskStatus.suspended,
        TaskStatus.cancelled,
    }),
    TaskStatus.suspended: frozenset({TaskStatus.working, TaskStatus.cancelled}),
    TaskStatus.troubled: frozenset({TaskStatus.waiting, TaskStatus.cancelled}),
    TaskStatus.cancelled: frozenset(),
    TaskStatus.complete: frozenset(),
}

TaskListener = Callable[["TranscodeTask"], None]


class TranscodeTask:
    """One (media, target) encode attempt"""

    def __init__(self, media: Media, target: Target, output_path: str,
                 ffmpeg_path: str = "ffmpeg", command_factory: Callable[..., Any] = None):
        self.id = str(ULID())
        self.media = media
        self.target = target
        self.output_path = str(output_path)
        self.ffmpeg_path = ffmpeg_path
        self.command_factory = command_factory or FFmpegCommand
        self.error: Optional[str] = None
        self.created_at = datetime.utcnow()
        self.started_at: Optional[datetime] = None
        self.finished_at: Optional[datetime] = None
        self.on_update: Optional[TaskListener] = None
        self.on_progress: Optional[TaskListener] = None

        self._status = TaskStatus.waiting
        self._command = None
        self._progress: Optional[Progress] = None
        self._stop_request: Optional[TaskStatus] = None

    @property
    def status(self) -> TaskStatus:
        return self._status

    @property
    def progress(self) -> Optional[Progress]:
        return self._progress

    @property
    def command(self):
        return self._command

    @property
    def is_terminal(self) -> bool:
        return self._status in TERMINAL_STATUSES

    def snapshot(self) -> Tuple[TaskStatus, Optional[Progress]]:
        return self._status, self._progress

    def _transition(self, new_status: TaskStatus) -> None:
        if new_status not in TRANSITIONS[self._status]:
            raise ConflictError(
                f"{self} cannot move from {self._status.value} to {new_status.value}"
            )

        old_status = self._status
        self._status = new_status
        if new_status in TERMINAL_STATUSES or new_status == TaskStatus.troubled:
            self.finished_at = datetime.utcnow()
        logger.info(f"{self} {old_status.value} -> {new_status.value}")
        self._notify(self.on_update)

    def _notify(self, listener: Optional[TaskListener]) -> None:
        if listener is None:
            return
        try:
            listener(self)
        except Exception as e:
            logger.error(f"Listener for {self} failed: {e}")

    def _set_progress(self, progress: Progress) -> None:
        # Snapshots are frozen, so readers always see a whole one
        if self._status != TaskStatus.working:
            return
        self._progress = progress
        self._notify(self.on_progress)

    def _remove_output(self) -> None:
        try:
            os.remove(self.output_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise ResourceError(f"Unable to remove output {self.output_path}: {e}")

    def _discard_partial_output(self) -> None:
        try:
            self._remove_output()
        except ResourceError as e:
            logger.warning(f"{self} could not discard partial output: {e.message}")

    async def run(self) -> TaskStatus:
        """
        Run one encode attempt from WAITING or SUSPENDED.

        Encoder and filesystem failures are recorded on the task (TROUBLED)
        rather than raised. Returns the status the attempt ended in.

        Raises:
            ConflictError: the task already owns a command, or cannot start
                from its current status
        """
        if self._command is not None:
            raise ConflictError(f"{self} already has an active command")

        self._transition(TaskStatus.working)
        self._stop_request = None
        self.error = None
        self.started_at = datetime.utcnow()

        command = self.command_factory(
            self.media.source_path,
            self.output_path,
            self.target.options,
            ffmpeg_path=self.ffmpeg_path,
            duration=self.media.duration,
        )
        self._command = command

        try:
            if not os.path.exists(self.media.source_path):
                raise CommandError(f"Media source not found: {self.media.source_path}")
            self._remove_output()
            await command.run(self._set_progress)

        except (CommandError, ResourceError) as e:
            if self._stop_request is not None:
                self._discard_partial_output()
                self._transition(self._stop_request)
            else:
                self.error = e.message
                logger.warning(f"{self} failed: {e.message}")
                self._transition(TaskStatus.troubled)

        except asyncio.CancelledError:
            await command.terminate()
            self._discard_partial_output()
            self._transition(TaskStatus.cancelled)
            raise

        except Exception as e:
            logger.exception(f"{self} encoder raised unexpectedly: {e}")
            await command.terminate()
            self._discard_partial_output()
            if self._stop_request is not None:
                self._transition(self._stop_request)
            else:
                self.error = f"Unexpected encoder failure: {e}"
                self._transition(TaskStatus.troubled)

        else:
            # A command that already succeeded wins over a late cancel
            if os.path.exists(self.output_path):
                self._transition(TaskStatus.complete)
            else:
                self.error = "Transcode finished with no output"
                self._transition(TaskStatus.troubled)

        finally:
            self._command = None
            self._progress = None
            self._stop_request = None

        return self._status

    async def cancel(self) -> bool:
        """
        Cancel the task.

        Returns True when a live run (WORKING or SUSPENDED) had to be
        interrupted. A WORKING task reaches CANCELLED once its run observes
        the encoder exit, unless the encoder had already succeeded.
        """
        if self.is_terminal:
            return False

        if self._status == TaskStatus.working:
            self._stop_request = TaskStatus.cancelled
            if self._command is not None:
                await self._command.terminate()
            return True

        if self._status == TaskStatus.suspended:
            self._discard_partial_output()
            self._transition(TaskStatus.cancelled)
            return True

        self._transition(TaskStatus.cancelled)
        return False

    async def suspend(self) -> bool:
        """Stop a WORKING encode and release its process. Returns False if not WORKING."""
        if self._status != TaskStatus.working or self._stop_request is not None:
            return False

        self._stop_request = TaskStatus.suspended
        if self._command is not None:
            await self._command.terminate()
        return True

    def retry(self) -> None:
        """Send a TROUBLED task back to WAITING"""
        self._transition(TaskStatus.waiting)
        self.error = None

    def to_dict(self) -> Dict[str, Any]:
        progress = self._progress
        return {
            "id": self.id,
            "media_id": self.media.id,
            "target_id": self.target.id,
            "output_path": self.output_path,
            "status": self._status.value,
            "error": self.error,
            "progress": progress.to_dict() if progress else None,
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }

    def __str__(self) -> str:
        return f"TranscodeTask{{id={self.id} media={self.media.id} target={self.target.id}}}"
