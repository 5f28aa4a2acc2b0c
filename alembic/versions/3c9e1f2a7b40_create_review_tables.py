"""create review tables

Revision ID: 3c9e1f2a7b40
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '3c9e1f2a7b40'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), 'postgresql')


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.String(length=25), nullable=False),
        sa.Column('github_id', sa.BigInteger(), nullable=True),
        sa.Column('username', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('github_id'),
        sa.UniqueConstraint('username'),
    )

    op.create_table(
        'repositories',
        sa.Column('id', sa.String(length=25), nullable=False),
        sa.Column('user_id', sa.String(length=25), nullable=False),
        sa.Column('github_id', sa.BigInteger(), nullable=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('full_name', sa.String(length=512), nullable=False),
        sa.Column('is_private', sa.Boolean(), nullable=False),
        sa.Column('default_branch', sa.String(length=255), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'full_name', name='uq_repository_user_full_name'),
    )
    op.create_index('idx_repositories_user', 'repositories', ['user_id', 'is_active'])

    op.create_table(
        'analyses',
        sa.Column('id', sa.String(length=25), nullable=False),
        sa.Column('repository_id', sa.String(length=25), nullable=False),
        sa.Column('user_id', sa.String(length=25), nullable=False),
        sa.Column('pr_number', sa.Integer(), nullable=False),
        sa.Column('pr_title', sa.String(length=1024), nullable=True),
        sa.Column('revision_hash', sa.String(length=64), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('total_changed_lines', sa.Integer(), nullable=True),
        sa.Column('overall_rating', sa.String(length=32), nullable=True),
        sa.Column('main_concerns', JSONType, nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(), nullable=False),
        sa.Column('completed_at', sa.TIMESTAMP(), nullable=True),
        sa.ForeignKeyConstraint(['repository_id'], ['repositories.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('repository_id', 'pr_number', name='uq_analysis_repository_pr'),
    )
    op.create_index('idx_analyses_user_created', 'analyses', ['user_id', 'created_at'])
    op.create_index('idx_analyses_status_updated', 'analyses', ['status', 'updated_at'])

    op.create_table(
        'suggestions',
        sa.Column('id', sa.String(length=25), nullable=False),
        sa.Column('analysis_id', sa.String(length=25), nullable=False),
        sa.Column('file_path', sa.String(length=1024), nullable=False),
        sa.Column('line_number', sa.Integer(), nullable=False),
        sa.Column('severity', sa.String(length=10), nullable=False),
        sa.Column('category', sa.String(length=100), nullable=False),
        sa.Column('message', sa.String(length=200), nullable=False),
        sa.Column('suggestion', sa.String(length=500), nullable=False),
        sa.Column('code_snippet', sa.String(length=300), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(), nullable=False),
        sa.ForeignKeyConstraint(['analysis_id'], ['analyses.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_suggestions_analysis', 'suggestions', ['analysis_id', 'severity'])


def downgrade() -> None:
    op.drop_index('idx_suggestions_analysis', table_name='suggestions')
    op.drop_table('suggestions')
    op.drop_index('idx_analyses_status_updated', table_name='analyses')
    op.drop_index('idx_analyses_user_created', table_name='analyses')
    op.drop_table('analyses')
    op.drop_index('idx_repositories_user', table_name='repositories')
    op.drop_table('repositories')
    op.drop_table('users')
