"""
Database module for the AssetGate service.

SQLite-backed implementations of the compliance store and the audit log.
Each mutation runs in one BEGIN IMMEDIATE transaction so that a subject
transition and its whitelist side effect, or a debit and its credit, commit
together. Subject rows carry a version number for compare-and-swap.

Balances are stored as decimal TEXT: token base units routinely exceed
SQLite's 64-bit INTEGER range.
"""

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

from assetgate.audit import AuditEntry, AuditLog, build_entry
from assetgate.errors import Unavailable
from assetgate.models import (
    Asset,
    DocumentRef,
    Holding,
    InvestorType,
    PersonalInfo,
    Subject,
    VerificationState,
    WhitelistEntry,
    WhitelistSource,
    iso,
    parse_iso,
)
from assetgate.store import ComplianceStore

logger = logging.getLogger(__name__)

BUSY_TIMEOUT_MS = 5000

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS subjects (
        subject_id TEXT PRIMARY KEY,
        wallet_address TEXT NOT NULL UNIQUE,
        verification_state TEXT NOT NULL,
        version INTEGER NOT NULL,
        updated_at TEXT NOT NULL,
        record_json TEXT NOT NULL
    );""",
    """
    CREATE INDEX IF NOT EXISTS idx_subjects_state_updated
    ON subjects(verification_state, updated_at);""",
    """
    CREATE TABLE IF NOT EXISTS whitelist (
        address TEXT PRIMARY KEY,
        added_at TEXT NOT NULL,
        added_by TEXT NOT NULL,
        source TEXT NOT NULL
    );""",
    """
    CREATE TABLE IF NOT EXISTS assets (
        asset_id TEXT PRIMARY KEY,
        issuer TEXT NOT NULL,
        asset_type TEXT,
        registered_at TEXT NOT NULL,
        record_json TEXT NOT NULL
    );""",
    """
    CREATE TABLE IF NOT EXISTS balances (
        asset_id TEXT NOT NULL,
        address TEXT NOT NULL,
        amount TEXT NOT NULL,
        PRIMARY KEY (asset_id, address)
    );""",
    """
    CREATE INDEX IF NOT EXISTS idx_balances_address
    ON balances(address);""",
    """
    CREATE TABLE IF NOT EXISTS audit_log (
        seq INTEGER PRIMARY KEY,
        event_type TEXT NOT NULL,
        recorded_at TEXT NOT NULL,
        payload_hash TEXT NOT NULL,
        prev_entry_hash TEXT,
        entry_hash TEXT NOT NULL,
        payload_json TEXT NOT NULL
    );""",
)

TABLES = ("subjects", "whitelist", "assets", "balances", "audit_log")


# ============================================================
# Record encoding
# ============================================================

def _sort_ts(ts: datetime) -> str:
    # fixed-width so that string order is time order
    return ts.isoformat(timespec="microseconds")


def _encode_subject(subject: Subject) -> str:
    info = subject.personal_info.to_dict() if subject.personal_info else None
    return json.dumps({
        "subject_id": subject.subject_id,
        "wallet_address": subject.wallet_address,
        "verification_state": subject.verification_state.value,
        "level": subject.level,
        "documents": [d.to_dict() for d in subject.documents],
        "personal_info": info,
        "approved_by": subject.approved_by,
        "approved_at": iso(subject.approved_at),
        "rejection_reason": subject.rejection_reason,
        "created_at": iso(subject.created_at),
        "updated_at": iso(subject.updated_at),
        "submitted_at": iso(subject.submitted_at),
        "version": subject.version,
    }, sort_keys=True)


def _decode_subject(record_json: str) -> Subject:
    d = json.loads(record_json)
    info = d.get("personal_info")
    if info is not None:
        info = PersonalInfo(**dict(info, investor_type=InvestorType(info["investor_type"])))
    return Subject(
        subject_id=d["subject_id"],
        wallet_address=d["wallet_address"],
        verification_state=VerificationState(d["verification_state"]),
        level=d.get("level"),
        documents=tuple(DocumentRef.from_dict(doc) for doc in d.get("documents", [])),
        personal_info=info,
        approved_by=d.get("approved_by"),
        approved_at=parse_iso(d.get("approved_at")),
        rejection_reason=d.get("rejection_reason"),
        created_at=parse_iso(d["created_at"]),
        updated_at=parse_iso(d["updated_at"]),
        submitted_at=parse_iso(d.get("submitted_at")),
        version=d["version"],
    )


def _decode_asset(record_json: str) -> Asset:
    d = json.loads(record_json)
    d["registered_at"] = parse_iso(d["registered_at"])
    return Asset(**d)


def _whitelist_from_row(row: sqlite3.Row) -> WhitelistEntry:
    return WhitelistEntry(
        address=row["address"],
        added_at=parse_iso(row["added_at"]),
        added_by=row["added_by"],
        source=WhitelistSource(row["source"]),
    )


# ============================================================
# Connection handling
# ============================================================

class SqliteDatabase:
    """
    Thread-local SQLite connections to one database file.

    Connections run in autocommit mode; writers open explicit
    BEGIN IMMEDIATE transactions so the write lock is taken up front.
    """

    def __init__(self, db_path: str):
        self.db_path = Path(db_path)
        self._local = threading.local()
        self._connections: List[sqlite3.Connection] = []
        self._connections_lock = threading.Lock()
        self.init_schema()

    def connection(self) -> sqlite3.Connection:
        conn = getattr(self._local, "conn", None)
        if conn is None:
            try:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
                conn = sqlite3.connect(str(self.db_path), check_same_thread=False, isolation_level=None)
                conn.execute("PRAGMA journal_mode=WAL;")
                conn.execute("PRAGMA synchronous=NORMAL;")
                conn.execute(f"PRAGMA busy_timeout={BUSY_TIMEOUT_MS};")
                conn.execute("PRAGMA temp_store=MEMORY;")
            except sqlite3.Error as e:
                raise Unavailable(f"database unavailable: {e}") from e
            conn.row_factory = sqlite3.Row
            self._local.conn = conn
            with self._connections_lock:
                self._connections.append(conn)
        return conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Write transaction. Commits on success, rolls back on failure.
        Busy/locked databases surface as Unavailable.
        """
        conn = self.connection()
        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.OperationalError as e:
            logger.warning("Could not begin transaction on %s: %s", self.db_path, e)
            raise Unavailable(f"database busy: {e}") from e
        try:
            yield conn
            conn.execute("COMMIT")
        except sqlite3.OperationalError as e:
            conn.execute("ROLLBACK")
            raise Unavailable(f"database error: {e}") from e
        except BaseException:
            conn.execute("ROLLBACK")
            raise

    def query(self, sql: str, params: Tuple = ()) -> List[sqlite3.Row]:
        try:
            return self.connection().execute(sql, params).fetchall()
        except sqlite3.OperationalError as e:
            raise Unavailable(f"database error: {e}") from e

    def init_schema(self) -> None:
        """Safe to call multiple times (uses IF NOT EXISTS)."""
        with self.transaction() as conn:
            for statement in SCHEMA:
                conn.execute(statement)

    def stats(self) -> Dict[str, int]:
        """Row counts per table, for the health endpoint."""
        return {
            f"{table}_count": self.query(f"SELECT COUNT(*) AS cnt FROM {table}")[0]["cnt"]
            for table in TABLES
        }

    def reset(self) -> None:
        """Clear all tables but keep the schema. Test isolation only."""
        with self.transaction() as conn:
            for table in TABLES:
                conn.execute(f"DELETE FROM {table}")

    def close(self) -> None:
        with self._connections_lock:
            for conn in self._connections:
                conn.close()
            self._connections.clear()
        self._local = threading.local()


# ============================================================
# Compliance store
# ============================================================

class SqliteComplianceStore(ComplianceStore):
    """
    ComplianceStore persisted in SQLite.

    Usage:
        store = SqliteComplianceStore("data/assetgate.db")
        gate = ComplianceGate(store, audit=SqliteAuditLog(store.db))
    """

    def __init__(self, db_path: str):
        self.db = SqliteDatabase(db_path)

    def reset(self) -> None:
        self.db.reset()

    def close(self) -> None:
        self.db.close()

    # --- subjects -------------------------------------------------------

    def get_subject(self, subject_id: str) -> Optional[Subject]:
        rows = self.db.query("SELECT record_json FROM subjects WHERE subject_id=?", (subject_id,))
        return _decode_subject(rows[0]["record_json"]) if rows else None

    def find_subject_by_address(self, address: str) -> Optional[Subject]:
        rows = self.db.query("SELECT record_json FROM subjects WHERE wallet_address=?", (address,))
        return _decode_subject(rows[0]["record_json"]) if rows else None

    def insert_subject(self, subject: Subject) -> Subject:
        with self.db.transaction() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO subjects(subject_id, wallet_address, verification_state, "
                "version, updated_at, record_json) VALUES(?,?,?,?,?,?)",
                (subject.subject_id, subject.wallet_address, subject.verification_state.value,
                 subject.version, _sort_ts(subject.updated_at), _encode_subject(subject))
            )
            row = conn.execute(
                "SELECT record_json FROM subjects WHERE wallet_address=?", (subject.wallet_address,)
            ).fetchone()
        stored = _decode_subject(row["record_json"])
        return subject if stored.subject_id == subject.subject_id else stored

    def compare_and_swap_subject(
        self,
        expected_version: int,
        subject: Subject,
        whitelist_add: Optional[WhitelistEntry] = None,
        whitelist_remove: Optional[str] = None,
    ) -> bool:
        with self.db.transaction() as conn:
            cur = conn.execute(
                "UPDATE subjects SET verification_state=?, version=?, updated_at=?, record_json=? "
                "WHERE subject_id=? AND version=?",
                (subject.verification_state.value, subject.version, _sort_ts(subject.updated_at),
                 _encode_subject(subject), subject.subject_id, expected_version)
            )
            if cur.rowcount != 1:
                return False
            if whitelist_add is not None:
                self._insert_whitelist(conn, whitelist_add)
            if whitelist_remove is not None:
                conn.execute("DELETE FROM whitelist WHERE address=?", (whitelist_remove,))
            return True

    def list_subjects(
        self,
        state: Optional[VerificationState] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Subject]:
        if state is None:
            rows = self.db.query(
                "SELECT record_json FROM subjects ORDER BY updated_at DESC LIMIT ? OFFSET ?",
                (limit, offset)
            )
        else:
            rows = self.db.query(
                "SELECT record_json FROM subjects WHERE verification_state=? "
                "ORDER BY updated_at DESC LIMIT ? OFFSET ?",
                (state.value, limit, offset)
            )
        return [_decode_subject(r["record_json"]) for r in rows]

    # --- whitelist ------------------------------------------------------

    @staticmethod
    def _insert_whitelist(conn: sqlite3.Connection, entry: WhitelistEntry) -> bool:
        cur = conn.execute(
            "INSERT OR IGNORE INTO whitelist(address, added_at, added_by, source) VALUES(?,?,?,?)",
            (entry.address, iso(entry.added_at), entry.added_by, entry.source.value)
        )
        return cur.rowcount == 1

    def add_whitelist(self, entry: WhitelistEntry) -> WhitelistEntry:
        with self.db.transaction() as conn:
            if self._insert_whitelist(conn, entry):
                return entry
            row = conn.execute("SELECT * FROM whitelist WHERE address=?", (entry.address,)).fetchone()
        return _whitelist_from_row(row)

    def remove_whitelist(self, address: str) -> bool:
        with self.db.transaction() as conn:
            cur = conn.execute("DELETE FROM whitelist WHERE address=?", (address,))
            return cur.rowcount == 1

    def get_whitelist(self, address: str) -> Optional[WhitelistEntry]:
        rows = self.db.query("SELECT * FROM whitelist WHERE address=?", (address,))
        return _whitelist_from_row(rows[0]) if rows else None

    def list_whitelist(self) -> List[WhitelistEntry]:
        rows = self.db.query("SELECT * FROM whitelist ORDER BY added_at ASC, address ASC")
        return [_whitelist_from_row(r) for r in rows]

    # --- assets and balances -------------------------------------------

    def insert_asset(self, asset: Asset) -> bool:
        record = dict(asset.to_dict())
        with self.db.transaction() as conn:
            cur = conn.execute(
                "INSERT OR IGNORE INTO assets(asset_id, issuer, asset_type, registered_at, record_json) "
                "VALUES(?,?,?,?,?)",
                (asset.asset_id, asset.issuer, asset.asset_type, record["registered_at"],
                 json.dumps(record, sort_keys=True))
            )
            if cur.rowcount != 1:
                return False
            current = self._read_balance(conn, asset.asset_id, asset.issuer)
            self._write_balance(conn, asset.asset_id, asset.issuer, current + asset.initial_supply)
            return True

    def get_asset(self, asset_id: str) -> Optional[Asset]:
        rows = self.db.query("SELECT record_json FROM assets WHERE asset_id=?", (asset_id,))
        return _decode_asset(rows[0]["record_json"]) if rows else None

    def list_assets(self) -> List[Asset]:
        rows = self.db.query("SELECT record_json FROM assets ORDER BY registered_at DESC")
        return [_decode_asset(r["record_json"]) for r in rows]

    @staticmethod
    def _read_balance(conn: sqlite3.Connection, asset_id: str, address: str) -> int:
        row = conn.execute(
            "SELECT amount FROM balances WHERE asset_id=? AND address=?", (asset_id, address)
        ).fetchone()
        return int(row["amount"]) if row else 0

    @staticmethod
    def _write_balance(conn: sqlite3.Connection, asset_id: str, address: str, amount: int) -> None:
        conn.execute(
            "INSERT INTO balances(asset_id, address, amount) VALUES(?,?,?) "
            "ON CONFLICT(asset_id, address) DO UPDATE SET amount=excluded.amount",
            (asset_id, address, str(amount))
        )

    def get_balance(self, asset_id: str, address: str) -> int:
        rows = self.db.query(
            "SELECT amount FROM balances WHERE asset_id=? AND address=?", (asset_id, address)
        )
        return int(rows[0]["amount"]) if rows else 0

    def set_balance(self, asset_id: str, address: str, amount: int):
        with self.db.transaction() as conn:
            self._write_balance(conn, asset_id, address, amount)

    def holdings(self, address: str) -> List[Holding]:
        rows = self.db.query(
            "SELECT asset_id, address, amount FROM balances WHERE address=? ORDER BY asset_id", (address,)
        )
        return [
            Holding(asset_id=r["asset_id"], address=r["address"], amount=int(r["amount"]))
            for r in rows if int(r["amount"]) > 0
        ]

    def apply_transfer(
        self, asset_id: str, sender: str, recipient: str, amount: int
    ) -> Optional[Tuple[int, int]]:
        with self.db.transaction() as conn:
            sender_balance = self._read_balance(conn, asset_id, sender)
            if sender_balance < amount:
                return None
            self._write_balance(conn, asset_id, sender, sender_balance - amount)
            recipient_balance = self._read_balance(conn, asset_id, recipient) + amount
            self._write_balance(conn, asset_id, recipient, recipient_balance)
            return self._read_balance(conn, asset_id, sender), recipient_balance


# ============================================================
# Audit log
# ============================================================

def _entry_from_row(row: sqlite3.Row) -> AuditEntry:
    return AuditEntry(
        seq=row["seq"],
        event_type=row["event_type"],
        recorded_at=row["recorded_at"],
        payload_hash=row["payload_hash"],
        prev_entry_hash=row["prev_entry_hash"],
        entry_hash=row["entry_hash"],
        payload=json.loads(row["payload_json"]),
    )


class SqliteAuditLog(AuditLog):
    """
    Hash-chained audit log in the same database as the store.

    The predecessor lookup and the insert share one write transaction,
    so concurrent appenders cannot fork the chain.
    """

    def __init__(self, db: SqliteDatabase):
        self.db = db

    def append(self, event_type: str, payload: Dict[str, Any]) -> AuditEntry:
        with self.db.transaction() as conn:
            row = conn.execute("SELECT seq, entry_hash FROM audit_log ORDER BY seq DESC LIMIT 1").fetchone()
            seq = row["seq"] + 1 if row else 1
            prev = row["entry_hash"] if row else None
            entry = build_entry(seq, event_type, payload, prev)
            conn.execute(
                "INSERT INTO audit_log(seq, event_type, recorded_at, payload_hash, prev_entry_hash, "
                "entry_hash, payload_json) VALUES(?,?,?,?,?,?,?)",
                (entry.seq, entry.event_type, entry.recorded_at, entry.payload_hash,
                 entry.prev_entry_hash, entry.entry_hash, json.dumps(payload, sort_keys=True))
            )
        return entry

    def entries(self, since_seq: int = 0, limit: Optional[int] = None) -> List[AuditEntry]:
        rows = self.db.query(
            "SELECT * FROM audit_log WHERE seq > ? ORDER BY seq ASC LIMIT ?",
            (since_seq, -1 if limit is None else limit)
        )
        return [_entry_from_row(r) for r in rows]

    def head(self) -> Optional[AuditEntry]:
        rows = self.db.query("SELECT * FROM audit_log ORDER BY seq DESC LIMIT 1")
        return _entry_from_row(rows[0]) if rows else None
