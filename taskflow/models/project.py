"""Project model for SQLModel."""
from datetime import datetime
from typing import Optional
import uuid

from sqlalchemy import Column, String, Text, Uuid
from sqlmodel import Field, SQLModel

from taskflow.models.base import UTCDateTime, new_id, utc_now


class Project(SQLModel, table=True):
    """Named grouping of tasks. Deletable only while no task references it."""

    __tablename__ = "projects"

    id: uuid.UUID = Field(default_factory=new_id, sa_column=Column(Uuid, primary_key=True))
    name: str = Field(sa_column=Column(String, nullable=False, unique=True))
    description: Optional[str] = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(default_factory=utc_now, sa_column=Column(UTCDateTime, nullable=False))
