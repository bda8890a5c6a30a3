"""
In-memory catalog of media, targets and workflows.

Stands in for the media/workflow stores the engine reads from. Workflow order
is insertion order and decides which workflow wins when several match.
"""
import logging
import threading
from typing import Dict, List, Optional

from ulid import ULID

from transcodeops.worker.errors import ConflictError, NotFoundError
from transcodeops.worker.ffmpeg.probe import probe_media
from transcodeops.worker.ffmpeg.target import Target
from transcodeops.worker.rules.engine import validate_workflow
from transcodeops.worker.rules.models import Media, Workflow

logger = logging.getLogger(__name__)


class CatalogService:
    def __init__(self, ffprobe_path: str = "ffprobe"):
        self.ffprobe_path = ffprobe_path
        self._lock = threading.Lock()
        self._medias: Dict[str, Media] = {}
        self._targets: Dict[str, Target] = {}
        self._workflows: Dict[str, Workflow] = {}

    # Media

    def add_media(self, media: Media) -> Media:
        with self._lock:
            self._medias[media.id] = media
        return media

    async def probe_and_add(self, source_path: str, title: Optional[str] = None) -> Media:
        """Probe a source file and add it to the catalog"""
        media = await probe_media(str(ULID()), source_path, self.ffprobe_path, title)
        logger.info(f"Catalogued {media} (duration={media.duration}, {media.resolution})")
        return self.add_media(media)

    def get_media(self, media_id: str) -> Media:
        with self._lock:
            media = self._medias.get(media_id)
        if media is None:
            raise NotFoundError(f"Media {media_id} not found")
        return media

    def list_media(self) -> List[Media]:
        with self._lock:
            return list(self._medias.values())

    # Targets

    def add_target(self, target: Target) -> Target:
        with self._lock:
            for existing in self._targets.values():
                if existing.label == target.label and existing.id != target.id:
                    raise ConflictError(f"A target labelled '{target.label}' already exists")
            self._targets[target.id] = target
        return target

    def get_target(self, target_id: str) -> Target:
        with self._lock:
            target = self._targets.get(target_id)
        if target is None:
            raise NotFoundError(f"Target {target_id} not found")
        return target

    def targets(self) -> Dict[str, Target]:
        with self._lock:
            return dict(self._targets)

    # Workflows

    def add_workflow(self, workflow: Workflow) -> Workflow:
        """Add or replace a workflow. Illegal criteria raise ValidationError."""
        validate_workflow(workflow)
        criteria = [c.model_copy(update={"workflow_id": workflow.id}) for c in workflow.criteria]
        workflow = workflow.model_copy(update={"criteria": criteria})
        with self._lock:
            self._workflows[workflow.id] = workflow
        return workflow

    def get_workflow(self, workflow_id: str) -> Workflow:
        with self._lock:
            workflow = self._workflows.get(workflow_id)
        if workflow is None:
            raise NotFoundError(f"Workflow {workflow_id} not found")
        return workflow

    def workflows(self) -> List[Workflow]:
        with self._lock:
            return list(self._workflows.values())
