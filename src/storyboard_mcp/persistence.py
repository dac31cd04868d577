"""SQLite-backed result store with WAL mode."""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Sequence
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

from .models.generation import GenerationResult, ResultMetadata

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS results (
    project_id TEXT NOT NULL,
    shot_id TEXT NOT NULL,
    artifact TEXT NOT NULL,
    prompt TEXT NOT NULL,
    metadata TEXT NOT NULL DEFAULT '{}',
    extra TEXT NOT NULL DEFAULT '{}',
    saved_at TEXT NOT NULL,
    PRIMARY KEY (project_id, shot_id)
);
"""


class ResultSink(Protocol):
    """Anything that can take the results of a project run."""

    def save(
        self,
        project_id: str,
        results: Sequence[GenerationResult],
        *,
        overwrite: bool = False,
        metadata: dict[str, Any] | None = None,
    ) -> int: ...


class ResultStore:
    """Synchronous SQLite persistence for generated shots.

    Uses WAL mode for concurrent reads and fast writes. An empty
    ``db_path`` keeps everything in memory for the life of the process.
    """

    def __init__(self, db_path: str = "") -> None:
        if db_path:
            path = Path(db_path).expanduser().resolve()
            path.parent.mkdir(parents=True, exist_ok=True)
            target = str(path)
        else:
            target = ":memory:"
        self._conn = sqlite3.connect(target)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")
        self._conn.executescript(_SCHEMA)

    def save(
        self,
        project_id: str,
        results: Sequence[GenerationResult],
        *,
        overwrite: bool = False,
        metadata: dict[str, Any] | None = None,
    ) -> int:
        """Persist *results* for *project_id*.

        Args:
            project_id: Project the results belong to.
            results: Full list of results from a run.
            overwrite: True replaces everything stored for the project;
                False keeps stored shots and only adds new shot ids.
            metadata: Extra caller metadata stored alongside each row.

        Returns:
            Number of rows written.
        """
        saved_at = datetime.now(timezone.utc).isoformat()
        extra = json.dumps(metadata or {})
        verb = "INSERT OR REPLACE" if overwrite else "INSERT OR IGNORE"
        written = 0
        with self._conn:
            if overwrite:
                self._conn.execute("DELETE FROM results WHERE project_id = ?", (project_id,))
            for result in results:
                cursor = self._conn.execute(
                    f"""{verb} INTO results
                        (project_id, shot_id, artifact, prompt, metadata, extra, saved_at)
                        VALUES (?, ?, ?, ?, ?, ?, ?)""",
                    (
                        project_id,
                        result.shot_id,
                        result.artifact,
                        result.prompt,
                        result.metadata.model_dump_json(),
                        extra,
                        saved_at,
                    ),
                )
                written += cursor.rowcount
        logger.info(
            "Saved %d/%d result(s) for project %s (overwrite=%s)",
            written, len(results), project_id, overwrite,
        )
        return written

    def load(self, project_id: str) -> list[GenerationResult]:
        """Return stored results for *project_id*, ordered by shot id."""
        rows = self._conn.execute(
            "SELECT shot_id, artifact, prompt, metadata FROM results "
            "WHERE project_id = ? ORDER BY shot_id",
            (project_id,),
        ).fetchall()
        return [
            GenerationResult(
                shot_id=row[0],
                artifact=row[1],
                prompt=row[2],
                metadata=ResultMetadata.model_validate_json(row[3]),
            )
            for row in rows
        ]

    def load_extra(self, project_id: str, shot_id: str) -> dict[str, Any] | None:
        """Return the caller metadata stored with one shot, or None if absent."""
        row = self._conn.execute(
            "SELECT extra FROM results WHERE project_id = ? AND shot_id = ?",
            (project_id, shot_id),
        ).fetchone()
        return json.loads(row[0]) if row else None

    def delete(self, project_id: str) -> int:
        """Delete all results of a project. Returns rows removed."""
        with self._conn:
            cursor = self._conn.execute(
                "DELETE FROM results WHERE project_id = ?", (project_id,),
            )
        return cursor.rowcount

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()
