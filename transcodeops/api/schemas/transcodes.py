from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime

from transcodeops.worker.transcode.task import TaskStatus, TranscodeTask


class TranscodeCreate(BaseModel):
    """Dispatch transcode request"""
    media_id: str = Field(..., description="Media to transcode")
    target_id: str = Field(..., description="Target profile to encode with")


class ProgressResponse(BaseModel):
    """Progress snapshot of a running transcode"""
    fraction: Optional[float] = Field(None, description="Completion between 0 and 1")
    processed_sec: float = 0.0
    speed: Optional[float] = Field(None, description="Encoder speed multiplier")
    eta_sec: Optional[float] = None
    frames: int = 0
    bitrate: Optional[str] = None


class TranscodeResponse(BaseModel):
    """Transcode task response"""
    id: str
    media_id: str
    target_id: str
    output_path: str
    status: TaskStatus
    error: Optional[str] = None
    progress: Optional[ProgressResponse] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @classmethod
    def from_task(cls, task: TranscodeTask) -> "TranscodeResponse":
        status, progress = task.snapshot()
        return cls(
            id=task.id,
            media_id=task.media.id,
            target_id=task.target.id,
            output_path=task.output_path,
            status=status,
            error=task.error,
            progress=ProgressResponse(**progress.to_dict()) if progress else None,
            created_at=task.created_at,
            started_at=task.started_at,
            finished_at=task.finished_at,
        )


class TranscodeStatusResponse(BaseModel):
    """Status poll response"""
    id: str
    status: TaskStatus
    progress: Optional[ProgressResponse] = None


class TranscodeListResponse(BaseModel):
    """List of transcode tasks"""
    items: List[TranscodeResponse]
    total: int


class TranscodeActionResponse(BaseModel):
    """Result of a control action on a task"""
    id: str
    status: TaskStatus
    interrupted: bool = Field(False, description="Whether a live encode was interrupted")


class WorkflowDispatchResponse(BaseModel):
    """Tasks created by workflow matching for a media item"""
    media_id: str
    tasks: List[TranscodeResponse]
