import threading
from typing import Dict, List, Optional, Tuple

from transcodeops.worker.errors import ConflictError
from .task import TranscodeTask

PairKey = Tuple[str, str]


class TaskRegistry:
    """
    Live tasks keyed by (media id, target id).

    At most one live task exists per pair. add() checks and inserts under a
    single lock so concurrent dispatches of the same pair cannot both succeed.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._by_pair: Dict[PairKey, TranscodeTask] = {}

    @staticmethod
    def key_for(task: TranscodeTask) -> PairKey:
        return task.media.id, task.target.id

    def add(self, task: TranscodeTask) -> None:
        key = self.key_for(task)
        with self._lock:
            existing = self._by_pair.get(key)
            if existing is not None:
                raise ConflictError(
                    f"media {key[0]} already has live task {existing.id} for target {key[1]}"
                )
            self._by_pair[key] = task

    def remove(self, task: TranscodeTask) -> bool:
        key = self.key_for(task)
        with self._lock:
            if self._by_pair.get(key) is task:
                del self._by_pair[key]
                return True
            return False

    def get(self, media_id: str, target_id: str) -> Optional[TranscodeTask]:
        with self._lock:
            return self._by_pair.get((media_id, target_id))

    def for_media(self, media_id: str) -> List[TranscodeTask]:
        with self._lock:
            return [task for (m_id, _), task in self._by_pair.items() if m_id == media_id]

    def tasks(self) -> List[TranscodeTask]:
        with self._lock:
            return list(self._by_pair.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._by_pair)

    def __contains__(self, key: PairKey) -> bool:
        with self._lock:
            return key in self._by_pair
