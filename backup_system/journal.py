"""
Metadata Journal

The single source of truth for which backups were attempted and which of
them completed. The whole journal is persisted as one JSON document and
rewritten atomically (temporary file + rename) on every mutation.
"""

import os
import json
import tempfile
import logging
from typing import Callable, Dict, List, Optional, Any
from dataclasses import dataclass, asdict
from datetime import datetime
from pathlib import Path

from .errors import DuplicateBackupError, UnknownBackupError, DataIntegrityError

logger = logging.getLogger(__name__)


@dataclass
class BackupRecord:
    """One attempted backup."""
    path: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    completed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['started_at'] = self.started_at.isoformat()
        data['finished_at'] = self.finished_at.isoformat() if self.finished_at else None
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BackupRecord':
        completed = data.get('completed', False)
        if not isinstance(completed, bool):
            raise TypeError(f"'completed' must be a boolean, got {completed!r}")

        started_at = datetime.fromisoformat(data['started_at'])
        finished_at = data.get('finished_at')
        finished_at = datetime.fromisoformat(finished_at) if finished_at is not None else None

        # a record is either unfinished or completed with started_at <= finished_at
        if completed != (finished_at is not None):
            raise ValueError("'completed' and 'finished_at' disagree")
        if finished_at is not None and finished_at < started_at:
            raise ValueError(f"finished_at {finished_at} precedes started_at {started_at}")

        return cls(path=data['path'], started_at=started_at,
                   finished_at=finished_at, completed=completed)


class MetadataJournal:
    """Durable, ordered record of backup attempts."""

    def __init__(self, journal_path: str, clock: Callable[[], datetime] = datetime.now):
        """
        Initialize the journal.

        Args:
            journal_path: Location of the JSON document
            clock: Source of timestamps
        """
        self.journal_path = Path(journal_path)
        self.clock = clock

    def start_backup(self, path: str) -> BackupRecord:
        """Append an incomplete record for path and persist the journal."""
        records = self._load()

        if any(record.path == path for record in records):
            raise DuplicateBackupError(path)

        record = BackupRecord(path=path, started_at=self.clock())
        records.append(record)
        self._save(records)

        logger.info(f"Journal: started backup {path}")
        return record

    def finish_backup(self, path: str) -> BackupRecord:
        """Mark the record for path completed and persist the journal."""
        records = self._load()

        for record in records:
            if record.path == path:
                # finished_at never precedes started_at, even if the clock stepped back
                record.finished_at = max(self.clock(), record.started_at)
                record.completed = True
                self._save(records)
                logger.info(f"Journal: finished backup {path}")
                return record

        raise UnknownBackupError(path)

    def list_backups(self) -> List[BackupRecord]:
        """All records in insertion order."""
        return self._load()

    def list_completed_backups(self) -> List[BackupRecord]:
        """Completed records in insertion order."""
        return [record for record in self._load() if record.completed]

    def get_backup(self, path: str) -> Optional[BackupRecord]:
        for record in self._load():
            if record.path == path:
                return record
        return None

    def prune_incomplete(self) -> List[BackupRecord]:
        """
        Remove records that never completed.

        Returns:
            The removed records
        """
        records = self._load()
        stale = [record for record in records if not record.completed]
        if not stale:
            return []

        self._save([record for record in records if record.completed])
        for record in stale:
            logger.info(f"Journal: pruned incomplete backup {record.path}")
        return stale

    def _load(self) -> List[BackupRecord]:
        """Read and validate the whole document; a missing file is an empty journal."""
        if not self.journal_path.exists():
            return []

        try:
            with open(self.journal_path, 'r') as f:
                document = json.load(f)
        except json.JSONDecodeError as e:
            raise DataIntegrityError(
                f"failed to parse JSON object from the journal {self.journal_path}: {e}"
            ) from e
        except OSError as e:
            raise DataIntegrityError(f"failed to read the journal {self.journal_path}: {e}") from e

        if not isinstance(document, dict) or not isinstance(document.get('backups'), list):
            raise DataIntegrityError(f"journal {self.journal_path} has no 'backups' list")

        records = []
        seen_paths = set()
        for entry in document['backups']:
            try:
                record = BackupRecord.from_dict(entry)
            except (KeyError, TypeError, ValueError) as e:
                raise DataIntegrityError(
                    f"malformed record in the journal {self.journal_path}: {entry!r}"
                ) from e

            if record.path in seen_paths:
                raise DataIntegrityError(
                    f"journal {self.journal_path} contains duplicate path {record.path}"
                )
            seen_paths.add(record.path)
            records.append(record)

        return records

    def _save(self, records: List[BackupRecord]):
        """Atomically replace the document with the given records."""
        self.journal_path.parent.mkdir(parents=True, exist_ok=True)
        document = {'backups': [record.to_dict() for record in records]}

        fd, tmp_path = tempfile.mkstemp(
            dir=str(self.journal_path.parent), prefix='.meta_', suffix='.tmp'
        )
        try:
            with os.fdopen(fd, 'w') as f:
                json.dump(document, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.journal_path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

        self._sync_directory()

    def _sync_directory(self):
        """Flush the rename to disk."""
        try:
            dir_fd = os.open(str(self.journal_path.parent), os.O_RDONLY)
        except OSError as e:
            logger.warning(f"Cannot open journal directory for fsync: {e}")
            return
        try:
            os.fsync(dir_fd)
        except OSError as e:
            logger.warning(f"Failed to fsync journal directory: {e}")
        finally:
            os.close(dir_fd)
