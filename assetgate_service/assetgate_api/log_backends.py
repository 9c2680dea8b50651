"""
Audit log backends.

The SQLite hash chain is always kept; the Object Lock backend additionally
writes each entry as an immutable S3 object.
Docs: https://docs.aws.amazon.com/AmazonS3/latest/userguide/object-lock.html
"""

import json
import logging
import threading
from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Any, Deque, Dict, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from assetgate.audit import AuditEntry, AuditLog

from .config import AUDIT_LOG_BACKEND, S3_BUCKET, S3_PREFIX, S3_RETENTION_DAYS
from .db import SqliteAuditLog, SqliteDatabase

logger = logging.getLogger(__name__)


class S3ObjectLockAuditLog(AuditLog):
    """
    Hash chain in SQLite plus one COMPLIANCE-mode Object Lock object per entry.

    Requires a bucket with Object Lock enabled. The object is written after
    the entry is committed locally. A failed upload does not fail the append:
    the entry stays queued and is uploaded again before the next entry.
    """

    def __init__(
        self,
        chain: SqliteAuditLog,
        bucket: str,
        prefix: str,
        retention_days: int,
        legal_hold: str = "OFF",
        client=None
    ):
        self.chain = chain
        self.bucket = bucket
        self.prefix = prefix.rstrip("/") + "/"
        self.retention_days = retention_days
        self.legal_hold = legal_hold
        self._client = client
        self._unmirrored: Deque[AuditEntry] = deque()
        self._lock = threading.Lock()

    def _s3(self):
        if self._client is None:
            self._client = boto3.client("s3")
        return self._client

    def object_key(self, entry: AuditEntry) -> str:
        return f"{self.prefix}{entry.seq:012d}-{entry.event_type}-{entry.entry_hash}.json"

    @property
    def unmirrored(self) -> int:
        return len(self._unmirrored)

    def _put(self, entry: AuditEntry) -> None:
        retain_until = datetime.now(timezone.utc) + timedelta(days=int(self.retention_days))
        self._s3().put_object(
            Bucket=self.bucket,
            Key=self.object_key(entry),
            Body=json.dumps(entry.to_dict(), sort_keys=True).encode("utf-8"),
            ContentType="application/json",
            ObjectLockMode="COMPLIANCE",
            ObjectLockRetainUntilDate=retain_until,
            ObjectLockLegalHoldStatus=self.legal_hold
        )

    def mirror_pending(self) -> int:
        """Upload queued entries in sequence order; returns how many were uploaded."""
        uploaded = 0
        with self._lock:
            while self._unmirrored:
                entry = self._unmirrored[0]
                try:
                    self._put(entry)
                except (BotoCoreError, ClientError):
                    logger.exception("Object Lock write failed for audit entry %d (%d queued)",
                                     entry.seq, len(self._unmirrored))
                    break
                self._unmirrored.popleft()
                uploaded += 1
        return uploaded

    def append(self, event_type: str, payload: Dict[str, Any]) -> AuditEntry:
        entry = self.chain.append(event_type, payload)
        with self._lock:
            self._unmirrored.append(entry)
        self.mirror_pending()
        return entry

    def entries(self, since_seq: int = 0, limit: Optional[int] = None) -> List[AuditEntry]:
        return self.chain.entries(since_seq, limit)

    def head(self) -> Optional[AuditEntry]:
        return self.chain.head()


def get_audit_log(db: SqliteDatabase, backend: Optional[str] = None) -> AuditLog:
    backend = backend or AUDIT_LOG_BACKEND
    chain = SqliteAuditLog(db)
    if backend == "s3_object_lock":
        if not S3_BUCKET:
            raise ValueError("S3_BUCKET required for s3_object_lock audit log")
        return S3ObjectLockAuditLog(
            chain,
            bucket=S3_BUCKET,
            prefix=S3_PREFIX,
            retention_days=S3_RETENTION_DAYS
        )
    return chain
