# ============================================================================
# Scheduled Reports - Models & Database Schema
# ============================================================================
# Report definitions, sites, segments, users and the audit log, stored in
# sqlite.  Each repository opens a fresh connection per call so concurrent
# dispatches never share a connection.
# ============================================================================

import json
import sqlite3
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .errors import ReportNotFound, TimezoneLookupError, UserNotFound
from .interfaces import ReportStore, TimezoneService, UserDirectory
from .periods import DEFAULT_HOUR, DEFAULT_PERIOD


# ============================================================================
# Database Schema  (additive, never drops existing tables)
# ============================================================================

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS report (
    idreport INTEGER PRIMARY KEY AUTOINCREMENT,
    idsite INTEGER NOT NULL,
    login TEXT NOT NULL,
    description TEXT NOT NULL,
    idsegment INTEGER,
    period TEXT NOT NULL,
    hour INTEGER NOT NULL DEFAULT 0,
    type TEXT NOT NULL,
    format TEXT NOT NULL,
    reports TEXT NOT NULL,
    parameters TEXT,
    ts_created TIMESTAMP,
    ts_last_sent TIMESTAMP,
    deleted INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS site (
    idsite INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    timezone TEXT NOT NULL DEFAULT 'UTC'
);

CREATE TABLE IF NOT EXISTS segment (
    idsegment INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    definition TEXT NOT NULL DEFAULT '',
    enable_only_idsite INTEGER,
    deleted INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS users (
    login TEXT PRIMARY KEY,
    email TEXT NOT NULL,
    alias TEXT
);

CREATE TABLE IF NOT EXISTS ReportAuditLog (
    id INTEGER PRIMARY KEY,
    timestamp TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    action TEXT NOT NULL,
    category TEXT DEFAULT 'general',
    user_name TEXT,
    report_id INTEGER,
    details TEXT
);

CREATE INDEX IF NOT EXISTS idx_report_site ON report(idsite);
CREATE INDEX IF NOT EXISTS idx_report_segment ON report(idsegment);
CREATE INDEX IF NOT EXISTS idx_report_login ON report(login);
CREATE INDEX IF NOT EXISTS idx_audit_log_action ON ReportAuditLog(action);
"""


def init_database(db_path: Union[str, Path]):
    """Initialize the reporting database tables."""
    conn = sqlite3.connect(str(db_path))
    conn.executescript(SCHEMA_SQL)
    conn.commit()
    conn.close()


def get_db(db_path: Union[str, Path]) -> sqlite3.Connection:
    """Get database connection with row factory."""
    conn = sqlite3.connect(str(db_path))
    conn.row_factory = sqlite3.Row
    return conn


def _now_str() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


# ============================================================================
# Data Classes
# ============================================================================

@dataclass
class ReportDefinition:
    id: Optional[int] = None
    site_id: int = 0
    owner_login: str = ""
    description: str = ""
    segment_id: Optional[int] = None
    period: str = DEFAULT_PERIOD
    hour: int = DEFAULT_HOUR
    channel_type: str = "email"
    format: str = "html"
    sub_report_ids: List[str] = field(default_factory=list)
    parameters: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[str] = None
    last_sent_at: Optional[str] = None
    deleted: bool = False

    def to_dict(self):
        return asdict(self)

    @classmethod
    def from_row(cls, row):
        try:
            sub_reports = json.loads(row["reports"]) if row["reports"] else []
        except (json.JSONDecodeError, TypeError):
            sub_reports = []
        try:
            parameters = json.loads(row["parameters"]) if row["parameters"] else {}
        except (json.JSONDecodeError, TypeError):
            parameters = {}

        return cls(
            id=row["idreport"],
            site_id=row["idsite"],
            owner_login=row["login"],
            description=row["description"],
            segment_id=row["idsegment"],
            period=row["period"],
            hour=row["hour"],
            channel_type=row["type"],
            format=row["format"],
            sub_report_ids=sub_reports,
            parameters=parameters,
            created_at=row["ts_created"],
            last_sent_at=row["ts_last_sent"],
            deleted=bool(row["deleted"]),
        )


@dataclass
class Site:
    id: Optional[int] = None
    name: str = ""
    timezone: str = "UTC"

    def to_dict(self):
        return asdict(self)


@dataclass
class Segment:
    id: Optional[int] = None
    name: str = ""
    definition: str = ""
    site_id: Optional[int] = None
    deleted: bool = False

    def to_dict(self):
        return asdict(self)


@dataclass
class User:
    login: str = ""
    email: str = ""
    alias: Optional[str] = None

    def to_dict(self):
        return asdict(self)


# ============================================================================
# Repositories
# ============================================================================

class ReportRepository(ReportStore):
    def __init__(self, db_path: Union[str, Path]):
        self.db_path = db_path

    def list_reports(
        self,
        site_id: Optional[int] = None,
        period: Optional[str] = None,
        segment_id: Optional[int] = None,
        owner_login: Optional[str] = None,
        include_deleted: bool = False,
    ) -> List[ReportDefinition]:
        clauses, params = [], []
        if not include_deleted:
            clauses.append("deleted = 0")
        if site_id is not None:
            clauses.append("idsite = ?")
            params.append(site_id)
        if period is not None:
            clauses.append("period = ?")
            params.append(period)
        if segment_id is not None:
            clauses.append("idsegment = ?")
            params.append(segment_id)
        if owner_login is not None:
            clauses.append("login = ?")
            params.append(owner_login)

        sql = "SELECT * FROM report"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY idreport"

        conn = get_db(self.db_path)
        rows = conn.execute(sql, params).fetchall()
        conn.close()
        return [ReportDefinition.from_row(r) for r in rows]

    def get_by_id(self, report_id: int) -> Optional[ReportDefinition]:
        conn = get_db(self.db_path)
        row = conn.execute("SELECT * FROM report WHERE idreport = ?", (report_id,)).fetchone()
        conn.close()
        return ReportDefinition.from_row(row) if row else None

    def get_report(self, report_id: int) -> ReportDefinition:
        report = self.get_by_id(report_id)
        if report is None:
            raise ReportNotFound(f"Report {report_id} not found")
        return report

    def create(self, r: ReportDefinition) -> int:
        conn = get_db(self.db_path)
        cur = conn.execute(
            """INSERT INTO report
               (idsite, login, description, idsegment, period, hour, type,
                format, reports, parameters, ts_created, deleted)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0)""",
            (r.site_id, r.owner_login, r.description, r.segment_id, r.period,
             r.hour, r.channel_type, r.format, json.dumps(r.sub_report_ids),
             json.dumps(r.parameters), r.created_at or _now_str()),
        )
        conn.commit()
        rid = cur.lastrowid
        conn.close()
        return rid

    def update(self, r: ReportDefinition):
        conn = get_db(self.db_path)
        conn.execute(
            """UPDATE report SET
               idsite=?, description=?, idsegment=?, period=?, hour=?, type=?,
               format=?, reports=?, parameters=?
               WHERE idreport=?""",
            (r.site_id, r.description, r.segment_id, r.period, r.hour,
             r.channel_type, r.format, json.dumps(r.sub_report_ids),
             json.dumps(r.parameters), r.id),
        )
        conn.commit()
        conn.close()

    def delete_report(self, report_id: int):
        """Soft-delete a report."""
        conn = get_db(self.db_path)
        conn.execute("UPDATE report SET deleted = 1 WHERE idreport = ?", (report_id,))
        conn.commit()
        conn.close()

    def purge_for_owner(self, login: str) -> int:
        """Hard-delete every report owned by *login*."""
        conn = get_db(self.db_path)
        cur = conn.execute("DELETE FROM report WHERE login = ?", (login,))
        conn.commit()
        count = cur.rowcount
        conn.close()
        return count

    def mark_sent(self, report_id: int, when: Optional[datetime] = None):
        sent = (when or datetime.now(timezone.utc)).strftime("%Y-%m-%d %H:%M:%S")
        conn = get_db(self.db_path)
        conn.execute("UPDATE report SET ts_last_sent = ? WHERE idreport = ?", (sent, report_id))
        conn.commit()
        conn.close()


class SiteRepository(TimezoneService):
    def __init__(self, db_path: Union[str, Path]):
        self.db_path = db_path

    def get_by_id(self, site_id: int) -> Optional[Site]:
        conn = get_db(self.db_path)
        row = conn.execute("SELECT * FROM site WHERE idsite = ?", (site_id,)).fetchone()
        conn.close()
        if not row:
            return None
        return Site(id=row["idsite"], name=row["name"], timezone=row["timezone"])

    def create(self, s: Site) -> int:
        conn = get_db(self.db_path)
        cur = conn.execute("INSERT INTO site (name, timezone) VALUES (?, ?)", (s.name, s.timezone))
        conn.commit()
        sid = cur.lastrowid
        conn.close()
        return sid

    def delete(self, site_id: int):
        conn = get_db(self.db_path)
        conn.execute("DELETE FROM site WHERE idsite = ?", (site_id,))
        conn.commit()
        conn.close()

    def timezone_for(self, site_id: int) -> str:
        site = self.get_by_id(site_id)
        if site is None:
            raise TimezoneLookupError(f"Site {site_id} not found")
        if not site.timezone:
            raise TimezoneLookupError(f"Site {site_id} has no timezone")
        return site.timezone

    def name_for(self, site_id: int) -> str:
        site = self.get_by_id(site_id)
        return site.name if site else f"Site {site_id}"


class SegmentRepository:
    def __init__(self, db_path: Union[str, Path]):
        self.db_path = db_path

    @staticmethod
    def _from_row(row) -> Segment:
        return Segment(
            id=row["idsegment"],
            name=row["name"],
            definition=row["definition"],
            site_id=row["enable_only_idsite"],
            deleted=bool(row["deleted"]),
        )

    def get_by_id(self, segment_id: int) -> Optional[Segment]:
        conn = get_db(self.db_path)
        row = conn.execute("SELECT * FROM segment WHERE idsegment = ?", (segment_id,)).fetchone()
        conn.close()
        return self._from_row(row) if row else None

    def get_active(self, segment_id: Optional[int]) -> Optional[Segment]:
        if segment_id is None:
            return None
        segment = self.get_by_id(segment_id)
        if segment is None or segment.deleted:
            return None
        return segment

    def create(self, s: Segment) -> int:
        conn = get_db(self.db_path)
        cur = conn.execute(
            "INSERT INTO segment (name, definition, enable_only_idsite) VALUES (?, ?, ?)",
            (s.name, s.definition, s.site_id),
        )
        conn.commit()
        sid = cur.lastrowid
        conn.close()
        return sid

    def set_deleted(self, segment_id: int, deleted: bool = True):
        conn = get_db(self.db_path)
        conn.execute("UPDATE segment SET deleted = ? WHERE idsegment = ?",
                     (1 if deleted else 0, segment_id))
        conn.commit()
        conn.close()


class UserRepository(UserDirectory):
    def __init__(self, db_path: Union[str, Path], super_user_login: str = "admin", super_user_email: str = ""):
        self.db_path = db_path
        self.super_user_login = super_user_login
        self._super_user_email = super_user_email

    def get_user(self, login: str) -> User:
        conn = get_db(self.db_path)
        row = conn.execute("SELECT * FROM users WHERE login = ?", (login,)).fetchone()
        conn.close()
        if not row:
            raise UserNotFound(f"User '{login}' does not exist")
        return User(login=row["login"], email=row["email"], alias=row["alias"])

    def get_super_user_email(self) -> str:
        return self._super_user_email

    def upsert(self, u: User):
        conn = get_db(self.db_path)
        conn.execute(
            """INSERT INTO users (login, email, alias) VALUES (?, ?, ?)
               ON CONFLICT(login) DO UPDATE SET email=excluded.email, alias=excluded.alias""",
            (u.login, u.email, u.alias),
        )
        conn.commit()
        conn.close()

    def delete(self, login: str):
        conn = get_db(self.db_path)
        conn.execute("DELETE FROM users WHERE login = ?", (login,))
        conn.commit()
        conn.close()


class AuditRepository:
    def __init__(self, db_path: Union[str, Path]):
        self.db_path = db_path

    def log(self, action, category="general", user_name=None, report_id=None, details=None):
        conn = get_db(self.db_path)
        conn.execute(
            """INSERT INTO ReportAuditLog (action, category, user_name, report_id, details)
               VALUES (?, ?, ?, ?, ?)""",
            (action, category, user_name, report_id, details))
        conn.commit()
        conn.close()

    def get_recent(self, limit=100, category=None):
        conn = get_db(self.db_path)
        if category:
            rows = conn.execute(
                "SELECT * FROM ReportAuditLog WHERE category = ? ORDER BY id DESC LIMIT ?",
                (category, limit)).fetchall()
        else:
            rows = conn.execute(
                "SELECT * FROM ReportAuditLog ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        conn.close()
        return [dict(r) for r in rows]
