import logging
from typing import Any, Dict, List, Optional

import aiosqlite

from transcodeops.worker.transcode.task import TranscodeTask

logger = logging.getLogger(__name__)


class TranscodeStore:
    """History of completed transcodes, backed by the tc_transcodes table"""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def save(self, task: TranscodeTask) -> None:
        await self.db.execute(
            """
            INSERT OR REPLACE INTO tc_transcodes
                (id, media_id, target_id, output_path, started_at, finished_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                task.id,
                task.media.id,
                task.target.id,
                task.output_path,
                task.started_at.isoformat() if task.started_at else None,
                task.finished_at.isoformat() if task.finished_at else None,
            ),
        )
        await self.db.commit()
        logger.info(f"Recorded completed {task}")

    async def has_completed(self, media_id: str, target_id: str) -> bool:
        async with self.db.execute(
            "SELECT 1 FROM tc_transcodes WHERE media_id = ? AND target_id = ?",
            (media_id, target_id),
        ) as cursor:
            return await cursor.fetchone() is not None

    async def list_for_media(self, media_id: str) -> List[Dict[str, Any]]:
        async with self.db.execute(
            """
            SELECT id, media_id, target_id, output_path, started_at, finished_at
            FROM tc_transcodes WHERE media_id = ? ORDER BY finished_at
            """,
            (media_id,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [dict(row) for row in rows]

    async def get(self, transcode_id: str) -> Optional[Dict[str, Any]]:
        async with self.db.execute(
            """
            SELECT id, media_id, target_id, output_path, started_at, finished_at
            FROM tc_transcodes WHERE id = ?
            """,
            (transcode_id,),
        ) as cursor:
            row = await cursor.fetchone()
        return dict(row) if row else None

    async def delete_for_media(self, media_id: str) -> int:
        cursor = await self.db.execute("DELETE FROM tc_transcodes WHERE media_id = ?", (media_id,))
        await self.db.commit()
        return cursor.rowcount
