"""
SQLAlchemy models for the family tasks backend.
Users belong to a family through a membership row; tasks, tags and the
points ledger are all family-scoped.
"""
import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

from app.date_utils import format_date_iso, utcnow
from app.permissions import FamilyRole

Base = declarative_base()


class AccountRole(str, enum.Enum):
    PARENT = "PARENT"
    CHILD = "CHILD"


class TaskStatus(str, enum.Enum):
    AVAILABLE = "AVAILABLE"
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    VERIFIED = "VERIFIED"


class RecurrencePattern(str, enum.Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"


class NotificationType(str, enum.Enum):
    TASK_ASSIGNED = "TASK_ASSIGNED"
    TASK_COMPLETED = "TASK_COMPLETED"
    TASK_VERIFIED = "TASK_VERIFIED"
    TASK_DECLINED = "TASK_DECLINED"
    TASK_DELETED = "TASK_DELETED"
    POINTS_EARNED = "POINTS_EARNED"
    POINTS_DEDUCTED = "POINTS_DEDUCTED"
    BONUS_TASK_AVAILABLE = "BONUS_TASK_AVAILABLE"
    BONUS_TASK_SELF_ASSIGNED = "BONUS_TASK_SELF_ASSIGNED"


class OutboundStatus(str, enum.Enum):
    PENDING = "PENDING"
    SENDING = "SENDING"
    SENT = "SENT"
    FAILED = "FAILED"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _user_brief(user: Optional["User"]) -> Optional[dict]:
    if user is None:
        return None
    return {"id": user.id, "name": user.name, "role": user.role.value}


task_tag_relations = Table(
    "task_tag_relations",
    Base.metadata,
    Column("task_id", Integer, ForeignKey("tasks.id"), primary_key=True),
    Column("tag_id", Integer, ForeignKey("task_tags.id"), primary_key=True),
)


class User(Base):
    """
    Model for application users (parents and children).
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    name = Column(String(100), nullable=False)
    password_hash = Column(String(255), nullable=False)
    role = Column(Enum(AccountRole, native_enum=False, length=20), nullable=False)
    phone_number = Column(String(32), nullable=True)
    sms_notifications_enabled = Column(Boolean, nullable=False, default=False)
    timezone = Column(String(64), nullable=False, default="UTC")
    created_at = Column(DateTime, nullable=False, default=utcnow)

    memberships = relationship("FamilyMember", back_populates="user")

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email})>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "role": self.role.value,
            "phone_number": self.phone_number,
            "sms_notifications_enabled": self.sms_notifications_enabled,
            "timezone": self.timezone,
            "created_at": _iso(self.created_at),
        }


class Family(Base):
    """
    Model for a family: a named group joined through its shareable code.
    """
    __tablename__ = "families"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(50), nullable=False)
    family_code = Column(String(16), nullable=False, unique=True, index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    members = relationship("FamilyMember", back_populates="family")

    def __repr__(self) -> str:
        return f"<Family(id={self.id}, name={self.name})>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "family_code": self.family_code,
            "created_at": _iso(self.created_at),
        }


class FamilyMember(Base):
    """
    Membership of a user in a family, carrying the family role.
    """
    __tablename__ = "family_members"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    family_id = Column(Integer, ForeignKey("families.id"), nullable=False)
    role = Column(Enum(FamilyRole, native_enum=False, length=20), nullable=False)
    joined_at = Column(DateTime, nullable=False, default=utcnow)

    user = relationship("User", back_populates="memberships")
    family = relationship("Family", back_populates="members")

    __table_args__ = (
        UniqueConstraint("user_id", "family_id", name="uq_family_members_user_family"),
        Index("ix_family_members_family", "family_id"),
    )

    def __repr__(self) -> str:
        return f"<FamilyMember(user_id={self.user_id}, family_id={self.family_id}, role={self.role})>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "role": self.role.value,
            "joined_at": _iso(self.joined_at),
            "user": {
                "id": self.user.id,
                "name": self.user.name,
                "email": self.user.email,
                "role": self.user.role.value,
            } if self.user else None,
        }


class TaskTag(Base):
    """
    Family-scoped label attachable to tasks.
    """
    __tablename__ = "task_tags"

    id = Column(Integer, primary_key=True, autoincrement=True)
    family_id = Column(Integer, ForeignKey("families.id"), nullable=False)
    name = Column(String(50), nullable=False)
    color = Column(String(7), nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("family_id", "name", name="uq_task_tags_family_name"),
    )

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "color": self.color}


class Task(Base):
    """
    Model for family tasks. `status` is the task's state machine.
    """
    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    points = Column(Integer, nullable=False, default=0)
    due_date = Column(Date, nullable=False)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    assigned_to = Column(Integer, ForeignKey("users.id"), nullable=True)
    family_id = Column(Integer, ForeignKey("families.id"), nullable=False)
    status = Column(
        Enum(TaskStatus, native_enum=False, length=20),
        nullable=False,
        default=TaskStatus.PENDING
    )
    created_at = Column(DateTime, nullable=False, default=utcnow)
    completed_at = Column(DateTime, nullable=True)
    verified_at = Column(DateTime, nullable=True)
    verified_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    decline_reason = Column(String(500), nullable=True)
    is_recurring = Column(Boolean, nullable=False, default=False)
    recurrence_pattern = Column(Enum(RecurrencePattern, native_enum=False, length=20), nullable=True)
    is_bonus_task = Column(Boolean, nullable=False, default=False)
    due_date_only = Column(Boolean, nullable=False, default=False)
    series_id = Column(
        Integer,
        nullable=True,
        comment="Id of the first task of a recurrence series"
    )
    deleted_at = Column(DateTime, nullable=True)

    creator = relationship("User", foreign_keys=[created_by])
    assignee = relationship("User", foreign_keys=[assigned_to])
    verifier = relationship("User", foreign_keys=[verified_by])
    tags = relationship("TaskTag", secondary=task_tag_relations, order_by="TaskTag.name")

    __table_args__ = (
        UniqueConstraint("series_id", "due_date", name="uq_tasks_series_due_date"),
        Index("ix_tasks_family_status", "family_id", "status"),
        Index("ix_tasks_assignee", "assigned_to"),
        Index("ix_tasks_due_date", "due_date"),
    )

    def __repr__(self) -> str:
        return f"<Task(id={self.id}, title={self.title}, status={self.status})>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "points": self.points,
            "due_date": format_date_iso(self.due_date),
            "status": self.status.value,
            "family_id": self.family_id,
            "created_by": self.created_by,
            "assigned_to": self.assigned_to,
            "verified_by": self.verified_by,
            "creator": _user_brief(self.creator),
            "assignee": _user_brief(self.assignee),
            "verifier": _user_brief(self.verifier),
            "created_at": _iso(self.created_at),
            "completed_at": _iso(self.completed_at),
            "verified_at": _iso(self.verified_at),
            "decline_reason": self.decline_reason,
            "is_recurring": self.is_recurring,
            "recurrence_pattern": self.recurrence_pattern.value if self.recurrence_pattern else None,
            "is_bonus_task": self.is_bonus_task,
            "due_date_only": self.due_date_only,
            "series_id": self.series_id,
            "tags": [tag.to_dict() for tag in self.tags],
        }


class PointsHistory(Base):
    """
    Ledger entry. Rows are only ever inserted; balances are sums of `points`.
    """
    __tablename__ = "points_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    family_id = Column(Integer, ForeignKey("families.id"), nullable=False)
    points = Column(Integer, nullable=False)
    reason = Column(String(255), nullable=False)
    task_id = Column(Integer, ForeignKey("tasks.id"), nullable=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    user = relationship("User", foreign_keys=[user_id])
    creator = relationship("User", foreign_keys=[created_by])
    task = relationship("Task")

    __table_args__ = (
        Index("ix_points_history_user_family", "user_id", "family_id"),
        Index("ix_points_history_task", "task_id"),
    )

    def __repr__(self) -> str:
        return f"<PointsHistory(user_id={self.user_id}, points={self.points})>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "user_name": self.user.name if self.user else None,
            "points": self.points,
            "reason": self.reason,
            "task_id": self.task_id,
            "task_title": self.task.title if self.task else None,
            "created_by": self.creator.name if self.creator else None,
            "created_at": _iso(self.created_at),
            "is_deduction": self.points < 0,
        }


class Notification(Base):
    """
    In-app notification for a single user.
    """
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    type = Column(Enum(NotificationType, native_enum=False, length=40), nullable=False)
    related_task_id = Column(Integer, ForeignKey("tasks.id"), nullable=True)
    read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    related_task = relationship("Task")

    __table_args__ = (
        Index("ix_notifications_user_read", "user_id", "read"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "message": self.message,
            "type": self.type.value,
            "read": self.read,
            "created_at": _iso(self.created_at),
            "related_task": {
                "id": self.related_task.id,
                "title": self.related_task.title,
            } if self.related_task else None,
        }


class OutboundMessage(Base):
    """
    SMS outbox row, written in the same transaction as its notification.
    """
    __tablename__ = "outbound_messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    notification_id = Column(Integer, ForeignKey("notifications.id", ondelete="SET NULL"), nullable=True)
    to_number = Column(String(32), nullable=False)
    body = Column(Text, nullable=False)
    status = Column(
        Enum(OutboundStatus, native_enum=False, length=20),
        nullable=False,
        default=OutboundStatus.PENDING
    )
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    provider_message_id = Column(String(64), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    sent_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_outbound_messages_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<OutboundMessage(id={self.id}, status={self.status}, attempts={self.attempts})>"
