"""
SQLAlchemy ORM Models for ReviewLoom

Pull request review models:
- User: Account of an authenticated GitHub user
- Repository: A GitHub repository connected by a user
- Analysis: One review run for (repository, pull request), the natural key
- Suggestion: A single review finding attached to an Analysis
"""

from datetime import datetime

from sqlalchemy import (
    Column, String, Integer, Text, TIMESTAMP, ForeignKey, BigInteger, Boolean,
    Index, UniqueConstraint, JSON,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship, declarative_base

from ..constants import STATUS_PENDING
from ..ids import new_id

Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


# =============================================================================
# Core User Model
# =============================================================================

class User(Base):
    """Authenticated GitHub user."""
    __tablename__ = "users"

    id = Column(String(25), primary_key=True, default=new_id)
    github_id = Column(BigInteger, unique=True, nullable=True)
    username = Column(String(255), unique=True, nullable=False)
    email = Column(String(255), nullable=True)
    created_at = Column(TIMESTAMP, default=datetime.utcnow, nullable=False)
    updated_at = Column(TIMESTAMP, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    repositories = relationship("Repository", back_populates="user", cascade="all, delete-orphan")
    analyses = relationship("Analysis", back_populates="user", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<User(id={self.id}, username='{self.username}')>"


# =============================================================================
# Review Models
# =============================================================================

class Repository(Base):
    """A GitHub repository connected for review."""
    __tablename__ = "repositories"
    __table_args__ = (
        UniqueConstraint('user_id', 'full_name', name='uq_repository_user_full_name'),
        Index('idx_repositories_user', 'user_id', 'is_active'),
    )

    id = Column(String(25), primary_key=True, default=new_id)
    user_id = Column(String(25), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    github_id = Column(BigInteger, nullable=True)
    name = Column(String(255), nullable=False)
    full_name = Column(String(512), nullable=False)         # owner/name
    is_private = Column(Boolean, default=False, nullable=False)
    default_branch = Column(String(255), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(TIMESTAMP, default=datetime.utcnow, nullable=False)
    updated_at = Column(TIMESTAMP, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    user = relationship("User", back_populates="repositories")
    analyses = relationship("Analysis", back_populates="repository", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Repository(id={self.id}, full_name='{self.full_name}', active={self.is_active})>"


class Analysis(Base):
    """Review run for one pull request.

    At most one row exists per (repository_id, pr_number). Status moves
    PENDING -> PROCESSING -> COMPLETED | FAILED and is written only by the
    orchestrator pipeline.
    """
    __tablename__ = "analyses"
    __table_args__ = (
        UniqueConstraint('repository_id', 'pr_number', name='uq_analysis_repository_pr'),
        Index('idx_analyses_user_created', 'user_id', 'created_at'),
        Index('idx_analyses_status_updated', 'status', 'updated_at'),
    )

    id = Column(String(25), primary_key=True, default=new_id)
    repository_id = Column(String(25), ForeignKey("repositories.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String(25), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    pr_number = Column(Integer, nullable=False)
    pr_title = Column(String(1024), nullable=True)
    revision_hash = Column(String(64), nullable=True)          # head commit sha, set while processing
    status = Column(String(20), default=STATUS_PENDING, nullable=False)
    total_changed_lines = Column(Integer, nullable=True)
    overall_rating = Column(String(32), nullable=True)
    main_concerns = Column(JSONType, nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(TIMESTAMP, default=datetime.utcnow, nullable=False)
    updated_at = Column(TIMESTAMP, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    completed_at = Column(TIMESTAMP, nullable=True)

    # Relationships
    repository = relationship("Repository", back_populates="analyses")
    user = relationship("User", back_populates="analyses")
    suggestions = relationship(
        "Suggestion",
        back_populates="analysis",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self):
        return f"<Analysis(id={self.id}, repo={self.repository_id}, pr={self.pr_number}, status='{self.status}')>"


class Suggestion(Base):
    """A single review finding. Written once per analysis, never updated."""
    __tablename__ = "suggestions"
    __table_args__ = (
        Index('idx_suggestions_analysis', 'analysis_id', 'severity'),
    )

    id = Column(String(25), primary_key=True, default=new_id)
    analysis_id = Column(String(25), ForeignKey("analyses.id", ondelete="CASCADE"), nullable=False)
    file_path = Column(String(1024), nullable=False)
    line_number = Column(Integer, nullable=False, default=1)
    severity = Column(String(10), nullable=False)              # HIGH | MEDIUM | LOW
    category = Column(String(100), nullable=False)
    message = Column(String(200), nullable=False)
    suggestion = Column(String(500), nullable=False)
    code_snippet = Column(String(300), nullable=True)
    created_at = Column(TIMESTAMP, default=datetime.utcnow, nullable=False)

    # Relationships
    analysis = relationship("Analysis", back_populates="suggestions")

    def __repr__(self):
        return f"<Suggestion(id={self.id}, {self.severity} {self.file_path}:{self.line_number})>"
