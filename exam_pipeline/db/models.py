from __future__ import annotations

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.dialects.sqlite import JSON as SQLITE_JSON
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class PaperTypeRow(Base):
    __tablename__ = "paper_types"
    __table_args__ = (UniqueConstraint("catalog_id", "position", name="uix_catalog_paper_type_position"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    catalog_id = Column(String, nullable=False, index=True)
    position = Column(Integer, nullable=False)
    name = Column(String, nullable=False)
    created_at = Column(DateTime, server_default=func.now())


class TopicRow(Base):
    __tablename__ = "topics"
    __table_args__ = (UniqueConstraint("paper_type_id", "position", name="uix_paper_type_topic_position"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    paper_type_id = Column(Integer, ForeignKey("paper_types.id", ondelete="CASCADE"), nullable=False)
    position = Column(Integer, nullable=False)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now())


class Question(Base):
    __tablename__ = "questions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    catalog_id = Column(String, nullable=True, index=True)
    paper_type_index = Column(Integer, nullable=False)
    topic_index = Column(Integer, nullable=False)
    question_number = Column(Integer, nullable=False)
    question_text = Column(Text, nullable=False, default="")
    summary = Column(Text, nullable=True)
    solution_objectives = Column(SQLITE_JSON, nullable=True)
    diagram = Column(SQLITE_JSON, nullable=True)
    paper_date = Column(String, nullable=False)
    join_key = Column(String, nullable=False, index=True)
    storage_key = Column(String, nullable=False, index=True)
    job_id = Column(String, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class BatchRun(Base):
    __tablename__ = "batch_runs"

    job_id = Column(String, primary_key=True)
    status = Column(String, nullable=False, default="queued")
    report = Column(SQLITE_JSON, nullable=False, default=dict)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
