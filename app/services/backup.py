"""
Database backup / restore.

A backup is a zip holding exactly two entries: the sqlite database file and metadata.json.
Restore snapshots the live database next to itself before overwriting it; the process must be
restarted afterwards to pick up the restored file.
"""
import io
import json
import os
import shutil
import zipfile
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional, Tuple

import structlog
from sqlalchemy.orm import Session

from ..config import settings
from ..db import sqlite_file_path
from ..models.models import User


log = structlog.get_logger()

BACKUP_FORMAT_VERSION = "1.0"
METADATA_ENTRY = "metadata.json"
SQLITE_HEADER = b"SQLite format 3\x00"


class BackupError(Exception):
    status_code = 500


class InvalidBackup(BackupError):
    status_code = 400


def _timestamp(now: Optional[datetime] = None) -> str:
    return (now or datetime.utcnow()).isoformat().replace(":", "-").replace(".", "-")


def backup_file_name(kind: str = "manual", now: Optional[datetime] = None) -> str:
    middle = "scheduled-backup" if kind == "scheduled" else "backup"
    return f"{settings.backup_file_prefix}-{middle}-{_timestamp(now)}.zip"


def database_path() -> Path:
    path = sqlite_file_path()
    if path is None:
        raise BackupError("Backups require a sqlite database file")
    db_path = Path(path)
    if not db_path.is_file():
        raise BackupError(f"Database file not found: {db_path}")
    return db_path


def build_backup(kind: str = "manual") -> Tuple[str, bytes]:
    """Returns (file name, zip bytes)."""
    db_path = database_path()
    now = datetime.utcnow()
    metadata = {
        "timestamp": now.isoformat() + "Z",
        "version": BACKUP_FORMAT_VERSION,
        "source": str(db_path),
        "type": kind,
    }
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        archive.writestr(db_path.name, db_path.read_bytes())
        archive.writestr(METADATA_ENTRY, json.dumps(metadata, indent=2))
    file_name = backup_file_name(kind, now)
    log.info("backup_created", file_name=file_name, kind=kind, size=buffer.tell())
    return file_name, buffer.getvalue()


def restore_backup(content: bytes) -> Dict[str, object]:
    """Replace the live database file with the one inside a backup zip."""
    try:
        archive = zipfile.ZipFile(io.BytesIO(content))
    except zipfile.BadZipFile:
        raise InvalidBackup("Invalid backup file - not a zip archive")
    with archive:
        db_entries = [n for n in archive.namelist() if n != METADATA_ENTRY and not n.endswith("/")]
        if len(db_entries) != 1:
            raise InvalidBackup("Invalid backup file - database entry not found")
        data = archive.read(db_entries[0])
        try:
            metadata = json.loads(archive.read(METADATA_ENTRY)) if METADATA_ENTRY in archive.namelist() else {}
        except ValueError:
            raise InvalidBackup("Invalid backup file - metadata is not valid JSON")
        if not isinstance(metadata, dict):
            raise InvalidBackup("Invalid backup file - metadata is not valid JSON")
    if not data.startswith(SQLITE_HEADER):
        raise InvalidBackup("Invalid backup file - database entry is not a sqlite database")

    db_path = database_path()
    snapshot = db_path.with_name(f"{db_path.name}.pre-restore-{_timestamp()}")
    shutil.copy2(db_path, snapshot)

    tmp_path = db_path.with_name(f"{db_path.name}.restoring")
    tmp_path.write_bytes(data)
    os.replace(tmp_path, db_path)
    log.warning("database_restored", source=str(db_path), snapshot=str(snapshot), backup_timestamp=metadata.get("timestamp"))
    return {
        "success": True,
        "message": "Database restored. Restart the server to load the restored data.",
        "restart_required": True,
        "snapshot": snapshot.name,
        "backup_timestamp": metadata.get("timestamp"),
    }


def select_backup_admin(db: Session) -> Optional[User]:
    """Earliest-created admin holding Microsoft credentials."""
    return (
        db.query(User)
        .filter(
            User.role == "admin",
            User.provider == "microsoft",
            User.access_token.isnot(None),
            User.access_token != "",
        )
        .order_by(User.created_at.asc(), User.email.asc())
        .first()
    )
