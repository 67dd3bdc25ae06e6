from __future__ import annotations

import datetime as dt
import uuid

from sqlalchemy import Boolean, CheckConstraint, Column, Date, DateTime, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


ACTIVITY_STATE_DRAFT = "draft"
ACTIVITY_STATE_SUBMITTED = "submitted"
ACTIVITY_STATES = (ACTIVITY_STATE_DRAFT, ACTIVITY_STATE_SUBMITTED)

ROLE_STAFF = "funcionario"
ROLE_SUPERVISOR = "supervisor"
USER_ROLES = (ROLE_STAFF, ROLE_SUPERVISOR)

PROJECT_STATUSES = ("planned", "in_progress", "completed", "cancelled")


def _one_of(column: str, values: tuple, name: str) -> CheckConstraint:
    allowed = ", ".join(f"'{value}'" for value in values)
    return CheckConstraint(f"{column} IN ({allowed})", name=name)


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class User(Base):
    __tablename__ = "users"
    __table_args__ = (_one_of("role", USER_ROLES, "ck_users_role"),)

    id = Column(String(36), primary_key=True, default=new_id)
    username = Column(String(100), nullable=False, unique=True)
    given_name = Column(String(120), nullable=False)
    paternal_surname = Column(String(120), nullable=False)
    maternal_surname = Column(String(120), nullable=True)
    email = Column(String(200), nullable=True)
    role = Column(String(20), nullable=False, default=ROLE_STAFF, index=True)
    active = Column(Boolean, nullable=False, default=True)
    supervisor_id = Column(String(36), ForeignKey("users.id"), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    supervisor = relationship("User", remote_side=[id], backref="supervisees")

    @property
    def display_name(self) -> str:
        return f"{self.given_name} {self.paternal_surname}"

    @property
    def full_name(self) -> str:
        parts = [self.given_name or "", self.paternal_surname or "", self.maternal_surname or ""]
        return " ".join(part for part in parts if part).strip()

    @property
    def is_supervisor(self) -> bool:
        return self.role == ROLE_SUPERVISOR


class Project(Base):
    __tablename__ = "projects"
    __table_args__ = (_one_of("status", PROJECT_STATUSES, "ck_projects_status"),)

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    supervisor_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    active = Column(Boolean, nullable=False, default=True)
    status = Column(String(20), nullable=False, default=PROJECT_STATUSES[0])
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    supervisor = relationship("User")


class ActivityType(Base):
    __tablename__ = "activity_types"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(120), nullable=False)
    description = Column(Text, nullable=True)
    active = Column(Boolean, nullable=False, default=True)


class Activity(Base):
    __tablename__ = "activities"
    __table_args__ = (
        Index("ix_activities_user_date", "user_id", "date"),
        _one_of("state", ACTIVITY_STATES, "ck_activities_state"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    date = Column(Date, nullable=False, index=True)
    start_time = Column(String(5), nullable=False)  # canonical HH:MM
    end_time = Column(String(5), nullable=False)  # canonical HH:MM
    description = Column(Text, nullable=False, default="")
    project_id = Column(String(36), ForeignKey("projects.id"), nullable=True, index=True)
    activity_type_id = Column(String(36), ForeignKey("activity_types.id"), nullable=True)
    system = Column(String(120), nullable=True)
    hours = Column(Numeric(6, 2), nullable=True)
    state = Column(String(20), nullable=False, default=ACTIVITY_STATE_DRAFT, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    user = relationship("User")
    project = relationship("Project")
    activity_type = relationship("ActivityType")
    documents = relationship(
        "ActivityDocument",
        back_populates="activity",
        cascade="all, delete-orphan",
        order_by="ActivityDocument.created_at",
    )

    @property
    def is_submitted(self) -> bool:
        return self.state == ACTIVITY_STATE_SUBMITTED


class ActivityDocument(Base):
    __tablename__ = "activity_documents"

    id = Column(Integer, primary_key=True)
    activity_id = Column(String(36), ForeignKey("activities.id"), nullable=False, index=True)
    original_name = Column(String(255), nullable=False)
    stored_path = Column(String(255), nullable=False)
    content_type = Column(String(120), nullable=True)
    size_bytes = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    activity = relationship("Activity", back_populates="documents")
