from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, ForeignKey, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


class Base(DeclarativeBase):
    pass


class TeamMembership(Base):
    __tablename__ = "team_memberships"
    team_id: Mapped[str] = mapped_column(ForeignKey("teams.id", ondelete="CASCADE"), primary_key=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("accounts.id", ondelete="CASCADE"), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


class UserAccount(Base):
    __tablename__ = "accounts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    teams: Mapped[list["Team"]] = relationship(secondary="team_memberships", back_populates="members", lazy="selectin")

    def to_document(self) -> dict[str, Any]:
        return {"$id": self.id, "email": self.email, "name": self.name, "$createdAt": _iso(self.created_at)}


class Team(Base):
    __tablename__ = "teams"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)  # e.g. "developers-team"
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    members: Mapped[list[UserAccount]] = relationship(
        secondary="team_memberships",
        back_populates="teams",
        lazy="selectin",
    )


class AuthSession(Base):
    __tablename__ = "auth_sessions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    secret: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)


class ProjectRecord(Base):
    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    # document attribute -> column
    ATTRIBUTES = {
        "$id": "id",
        "name": "name",
        "description": "description",
        "$createdAt": "created_at",
        "$updatedAt": "updated_at",
    }
    WRITABLE = frozenset({"name", "description"})

    def to_document(self) -> dict[str, Any]:
        return {
            "$id": self.id,
            "name": self.name,
            "description": self.description,
            "$createdAt": _iso(self.created_at),
            "$updatedAt": _iso(self.updated_at),
        }


class FeedbackRecord(Base):
    __tablename__ = "feedback_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    type: Mapped[str] = mapped_column(String(32), nullable=False)  # bug | improvement | feature
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="open")  # open | in-progress | closed
    project_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    submitted_by: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    submitted_by_name: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    screenshot_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    ATTRIBUTES = {
        "$id": "id",
        "title": "title",
        "description": "description",
        "type": "type",
        "status": "status",
        "projectId": "project_id",
        "submittedBy": "submitted_by",
        "submittedByName": "submitted_by_name",
        "screenshotId": "screenshot_id",
        "$createdAt": "created_at",
        "$updatedAt": "updated_at",
    }
    WRITABLE = frozenset(
        {"title", "description", "type", "status", "projectId", "submittedBy", "submittedByName", "screenshotId"}
    )

    def to_document(self) -> dict[str, Any]:
        return {
            "$id": self.id,
            "title": self.title,
            "description": self.description,
            "type": self.type,
            "status": self.status,
            "projectId": self.project_id,
            "submittedBy": self.submitted_by,
            "submittedByName": self.submitted_by_name,
            "screenshotId": self.screenshot_id,
            "$createdAt": _iso(self.created_at),
            "$updatedAt": _iso(self.updated_at),
        }
