# services/api/adapters/sqlite/__init__.py
from __future__ import annotations

import logging
import os
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    MetaData,
    String,
    Table,
    Text,
    and_,
    create_engine,
    event,
    insert,
    select,
    text,
    update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from models import utc_now

logger = logging.getLogger(__name__)

# ---- Engine (SQLite) with WAL & pragmas -------------------------------------

def _ensure_dir(path: str):
    d = os.path.dirname(path)
    if d and not os.path.isdir(d):
        os.makedirs(d, exist_ok=True)

def make_engine(db_url: str) -> Engine:
    if db_url in ("sqlite://", "sqlite:///:memory:"):
        # One shared connection so every session sees the same in-memory DB
        engine = create_engine(
            db_url,
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        # Create data dir if sqlite file
        if db_url.startswith("sqlite:///"):
            file_path = db_url.replace("sqlite:///", "", 1)
            _ensure_dir(file_path)
        engine = create_engine(db_url, future=True, pool_pre_ping=True)

    # Apply pragmas per-connection
    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):  # type: ignore
        if isinstance(dbapi_connection, sqlite3.Connection):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL;")
            cursor.execute("PRAGMA synchronous=NORMAL;")
            cursor.execute("PRAGMA foreign_keys=ON;")
            cursor.close()

    return engine

# ---- Schema via SQLAlchemy Core ---------------------------------------------

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", String, primary_key=True),
    Column("email", String, nullable=False, unique=True),
    Column("created_at", DateTime, nullable=False, default=utc_now),
)

projects = Table(
    "projects",
    metadata,
    Column("id", String, primary_key=True),
    Column("owner_id", String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("name", String, nullable=False),
    Column("base_url", Text, nullable=False),
    Column("status", String, nullable=False, default="IN_REVIEW"),
    Column("approved_at", DateTime, nullable=True),
    Column("created_at", DateTime, nullable=False, default=utc_now),
    CheckConstraint("status IN ('IN_REVIEW', 'APPROVED')", name="ck_project_status"),
)

feedback_links = Table(
    "feedback_links",
    metadata,
    Column("token", String, primary_key=True),
    Column("project_id", String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, unique=True),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("created_at", DateTime, nullable=False, default=utc_now),
)

comments = Table(
    "comments",
    metadata,
    Column("id", String, primary_key=True),
    Column("project_id", String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
    Column("page_url", Text, nullable=False),
    Column("message", Text, nullable=False),
    Column("status", String, nullable=False, default="OPEN"),
    Column("click_x", Float, nullable=False),
    Column("click_y", Float, nullable=False),
    Column("anchor_selector", Text, nullable=True),
    Column("anchor_offset_x_pct", Float, nullable=True),
    Column("anchor_offset_y_pct", Float, nullable=True),
    Column("anchor_tag_name", String, nullable=True),
    Column("screenshot_url", Text, nullable=True),
    Column("created_at", DateTime, nullable=False, default=utc_now),
    CheckConstraint("click_x >= 0 AND click_y >= 0", name="ck_click_non_negative"),
    CheckConstraint("status IN ('OPEN', 'RESOLVED')", name="ck_comment_status"),
)

approval_requests = Table(
    "approval_requests",
    metadata,
    Column("id", String, primary_key=True),
    Column("project_id", String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
    Column("email", String, nullable=False),
    Column("token", String, nullable=False, unique=True),
    Column("pin_hash", String, nullable=False),
    Column("expires_at", DateTime, nullable=False),
    Column("used_at", DateTime, nullable=True),
    # CONSUMED | SUPERSEDED, set together with used_at
    Column("used_reason", String, nullable=True),
    Column("created_at", DateTime, nullable=False, default=utc_now),
)

Index("idx_projects_owner", projects.c.owner_id)
Index("idx_comments_project_page", comments.c.project_id, comments.c.page_url)
Index("idx_approval_project_unused", approval_requests.c.project_id, approval_requests.c.used_at)


class _LostRace(Exception):
    """Internal: roll back a transaction another writer already settled."""


# ---- Adapter implementation --------------------------------------------------

@dataclass(frozen=True)
class SqliteAdapter:
    engine: Engine

    @classmethod
    def from_url(cls, db_url: str = "sqlite:///data/annota.db") -> "SqliteAdapter":
        eng = make_engine(db_url)
        metadata.create_all(eng)
        return cls(engine=eng)

    # Users
    def get_or_create_user(self, email: str) -> Dict[str, Any]:
        email = email.strip().lower()
        with self.engine.begin() as conn:
            row = conn.execute(select(users).where(users.c.email == email)).mappings().first()
            if row:
                return dict(row)
            user_id = str(uuid4())
            conn.execute(insert(users).values(id=user_id, email=email, created_at=utc_now()))
            logger.info(f"Creating new user for email {email}")
            return dict(conn.execute(select(users).where(users.c.id == user_id)).mappings().one())

    # Projects
    def create_project(self, owner_id: str, name: str, base_url: str) -> Dict[str, Any]:
        project_id = str(uuid4())
        with self.engine.begin() as conn:
            conn.execute(
                insert(projects).values(
                    id=project_id,
                    owner_id=owner_id,
                    name=name,
                    base_url=base_url,
                    status="IN_REVIEW",
                    created_at=utc_now(),
                )
            )
            return dict(conn.execute(select(projects).where(projects.c.id == project_id)).mappings().one())

    def get_project(self, project_id: str) -> Optional[Dict[str, Any]]:
        with self.engine.begin() as conn:
            row = conn.execute(select(projects).where(projects.c.id == project_id)).mappings().first()
            return dict(row) if row else None

    def get_owned_project(self, project_id: str, owner_id: str) -> Optional[Dict[str, Any]]:
        with self.engine.begin() as conn:
            row = conn.execute(
                select(projects).where(and_(projects.c.id == project_id, projects.c.owner_id == owner_id))
            ).mappings().first()
            return dict(row) if row else None

    def list_projects(self, owner_id: str) -> List[Dict[str, Any]]:
        with self.engine.begin() as conn:
            rows = conn.execute(
                select(projects)
                .where(projects.c.owner_id == owner_id)
                .order_by(projects.c.created_at.desc())
            ).mappings().all()
            return [dict(r) for r in rows]

    # Feedback links
    def upsert_feedback_link(self, project_id: str, token: str) -> Dict[str, Any]:
        with self.engine.begin() as conn:
            existing = conn.execute(
                select(feedback_links.c.token).where(feedback_links.c.project_id == project_id)
            ).first()
            if existing:
                conn.execute(
                    update(feedback_links)
                    .where(feedback_links.c.project_id == project_id)
                    .values(token=token, is_active=True)
                )
            else:
                conn.execute(
                    insert(feedback_links).values(
                        token=token, project_id=project_id, is_active=True, created_at=utc_now()
                    )
                )
            return dict(
                conn.execute(select(feedback_links).where(feedback_links.c.token == token)).mappings().one()
            )

    def deactivate_feedback_link(self, project_id: str) -> bool:
        with self.engine.begin() as conn:
            res = conn.execute(
                update(feedback_links)
                .where(feedback_links.c.project_id == project_id)
                .values(is_active=False)
            )
            return res.rowcount > 0

    def get_feedback_link(self, token: str) -> Optional[Dict[str, Any]]:
        with self.engine.begin() as conn:
            row = conn.execute(select(feedback_links).where(feedback_links.c.token == token)).mappings().first()
            return dict(row) if row else None

    def get_feedback_link_for_project(self, project_id: str) -> Optional[Dict[str, Any]]:
        with self.engine.begin() as conn:
            row = conn.execute(
                select(feedback_links).where(feedback_links.c.project_id == project_id)
            ).mappings().first()
            return dict(row) if row else None

    # Comments
    def create_comment(self, row: Dict[str, Any]) -> Dict[str, Any]:
        values = dict(row)
        values["created_at"] = values.get("created_at") or utc_now()
        with self.engine.begin() as conn:
            conn.execute(insert(comments).values(**values))
            return dict(conn.execute(select(comments).where(comments.c.id == values["id"])).mappings().one())

    def get_comment(self, comment_id: str) -> Optional[Dict[str, Any]]:
        with self.engine.begin() as conn:
            row = conn.execute(select(comments).where(comments.c.id == comment_id)).mappings().first()
            return dict(row) if row else None

    def list_comments(
        self,
        project_id: str,
        page_url: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        q = select(comments).where(comments.c.project_id == project_id)
        if page_url is not None:
            q = q.where(comments.c.page_url == page_url)
        if status is not None:
            q = q.where(comments.c.status == status)
        # rowid breaks ties between comments created in the same instant
        q = q.order_by(comments.c.created_at.desc(), text("comments.rowid DESC"))
        with self.engine.begin() as conn:
            return [dict(r) for r in conn.execute(q).mappings().all()]

    def update_comment_status(self, comment_id: str, status: str) -> Optional[Dict[str, Any]]:
        with self.engine.begin() as conn:
            res = conn.execute(update(comments).where(comments.c.id == comment_id).values(status=status))
            if res.rowcount == 0:
                return None
            return dict(conn.execute(select(comments).where(comments.c.id == comment_id)).mappings().one())

    # Approval requests
    def create_approval_request(
        self,
        *,
        project_id: str,
        email: str,
        token: str,
        pin_hash: str,
        expires_at: datetime,
        now: datetime,
    ) -> Dict[str, Any]:
        request_id = str(uuid4())
        with self.engine.begin() as conn:
            res = conn.execute(
                update(approval_requests)
                .where(
                    and_(
                        approval_requests.c.project_id == project_id,
                        approval_requests.c.used_at.is_(None),
                    )
                )
                .values(used_at=now, used_reason="SUPERSEDED")
            )
            if res.rowcount:
                logger.info(f"Superseded {res.rowcount} approval request(s) for project {project_id}")
            conn.execute(
                insert(approval_requests).values(
                    id=request_id,
                    project_id=project_id,
                    email=email,
                    token=token,
                    pin_hash=pin_hash,
                    expires_at=expires_at,
                    created_at=now,
                )
            )
            return dict(
                conn.execute(select(approval_requests).where(approval_requests.c.id == request_id)).mappings().one()
            )

    def get_approval_request_by_token(self, token: str) -> Optional[Dict[str, Any]]:
        with self.engine.begin() as conn:
            row = conn.execute(
                select(approval_requests).where(approval_requests.c.token == token)
            ).mappings().first()
            return dict(row) if row else None

    def approve_project(self, *, project_id: str, request_id: str, now: datetime) -> bool:
        try:
            with self.engine.begin() as conn:
                res = conn.execute(
                    update(projects)
                    .where(and_(projects.c.id == project_id, projects.c.status == "IN_REVIEW"))
                    .values(status="APPROVED", approved_at=now)
                )
                if res.rowcount != 1:
                    raise _LostRace()
                res = conn.execute(
                    update(approval_requests)
                    .where(
                        and_(
                            approval_requests.c.id == request_id,
                            approval_requests.c.used_at.is_(None),
                            approval_requests.c.expires_at >= now,
                        )
                    )
                    .values(used_at=now, used_reason="CONSUMED")
                )
                if res.rowcount != 1:
                    # undo the project update: both writes or neither
                    raise _LostRace()
        except _LostRace:
            return False
        return True

    def ping(self) -> None:
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()
