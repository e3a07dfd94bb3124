"""Artifact rows: reusable references shared by many tasks."""

import logging
import sqlite3
import uuid
from typing import Any, Dict, List, Optional

from .database import WbsDatabase
from .errors import StoreError, ValidationError

logger = logging.getLogger(__name__)

ARTIFACT_COLUMNS = "id, title, uri, description, created_at, updated_at, version"


def artifact_row_to_dict(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": row["id"],
        "title": row["title"],
        "uri": row["uri"],
        "description": row["description"],
        "createdAt": row["created_at"],
        "updatedAt": row["updated_at"],
        "version": row["version"],
    }


def _is_unique_violation(error: StoreError) -> bool:
    return isinstance(error.__cause__, sqlite3.IntegrityError) and "UNIQUE" in str(error.__cause__)


class ArtifactRepository:
    """Data access for the artifacts table. Titles are unique."""

    def __init__(self, db: WbsDatabase):
        self.db = db

    def insert(self, title: str, uri: Optional[str], description: Optional[str], now: str) -> str:
        """
        Insert a new artifact at version 1.

        Args:
            title: Unique, already-trimmed title
            uri: Optional location of the artifact
            description: Optional free text
            now: ISO-8601 timestamp for created_at and updated_at

        Returns:
            The generated artifact id

        Raises:
            ValidationError: reason "duplicate" when the title is already taken
        """
        artifact_id = str(uuid.uuid4())
        try:
            self.db.execute(
                f"INSERT INTO artifacts ({ARTIFACT_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, 1)",
                (artifact_id, title, uri, description, now, now),
            )
        except StoreError as e:
            if _is_unique_violation(e):
                raise ValidationError(
                    f"Artifact title already exists: {title}", reason="duplicate", field="title"
                ) from e
            raise
        return artifact_id

    def get(self, artifact_id: str) -> Optional[Dict[str, Any]]:
        """Return the artifact as a dict, or None when it does not exist."""
        row = self.db.fetchone(f"SELECT {ARTIFACT_COLUMNS} FROM artifacts WHERE id = ?", (artifact_id,))
        return artifact_row_to_dict(row) if row else None

    def find_by_title(self, title: str) -> Optional[Dict[str, Any]]:
        row = self.db.fetchone(f"SELECT {ARTIFACT_COLUMNS} FROM artifacts WHERE title = ?", (title,))
        return artifact_row_to_dict(row) if row else None

    def list(self) -> List[Dict[str, Any]]:
        """All artifacts ordered by title."""
        rows = self.db.fetchall(f"SELECT {ARTIFACT_COLUMNS} FROM artifacts ORDER BY title, id")
        return [artifact_row_to_dict(row) for row in rows]

    def update(self, artifact_id: str, fields: Dict[str, Any], expected_version: int, now: str) -> bool:
        """
        Apply fields and bump the version if the stored version still matches.

        Args:
            artifact_id: Artifact to change
            fields: Column name to new value; may be empty
            expected_version: Version the caller read
            now: Timestamp for updated_at

        Returns:
            False when the row changed underneath the caller

        Raises:
            ValidationError: reason "duplicate" when the new title is already taken
        """
        assignments = [f"{column} = ?" for column in fields]
        params = list(fields.values())
        assignments += ["version = version + 1", "updated_at = ?"]
        params += [now, artifact_id, expected_version]
        try:
            cursor = self.db.execute(
                f"UPDATE artifacts SET {', '.join(assignments)} WHERE id = ? AND version = ?",
                params,
            )
        except StoreError as e:
            if _is_unique_violation(e):
                raise ValidationError(
                    f"Artifact title already exists: {fields.get('title')}", reason="duplicate", field="title"
                ) from e
            raise
        return cursor.rowcount == 1

    def delete(self, artifact_id: str) -> bool:
        """
        Delete an artifact. Task links and dependency-edge links cascade.

        Returns:
            True if a row was removed
        """
        cursor = self.db.execute("DELETE FROM artifacts WHERE id = ?", (artifact_id,))
        return cursor.rowcount > 0
