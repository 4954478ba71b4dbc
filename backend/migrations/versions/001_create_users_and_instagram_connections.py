"""Create users and instagram_connections tables

Revision ID: 001
Revises:
Create Date: 2026-10-17 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Tables may already exist when Base.metadata.create_all ran first
    conn = op.get_bind()
    inspector = inspect(conn)
    existing_tables = inspector.get_table_names()

    if 'users' not in existing_tables:
        op.create_table(
            'users',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('email', sa.String(length=255), nullable=False),
            sa.Column('name', sa.String(length=255), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('ix_users_id', 'users', ['id'])
        op.create_index('ix_users_email', 'users', ['email'], unique=True)

    if 'instagram_connections' not in existing_tables:
        op.create_table(
            'instagram_connections',
            sa.Column('id', sa.String(length=36), nullable=False),
            sa.Column('app_user_id', sa.Integer(), nullable=False),
            sa.Column('instagram_user_id', sa.String(length=255), nullable=False),
            sa.Column('instagram_username', sa.String(length=255), nullable=False),
            sa.Column('account_type', sa.String(length=32), nullable=True),
            sa.Column('access_token', sa.Text(), nullable=False),
            sa.Column('token_expires_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(['app_user_id'], ['users.id'], ondelete='CASCADE'),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('ix_instagram_connections_app_user_id', 'instagram_connections', ['app_user_id'])
        # Unique: the upsert conflicts on this column
        op.create_index(
            'ix_instagram_connections_instagram_user_id', 'instagram_connections',
            ['instagram_user_id'], unique=True
        )


def downgrade() -> None:
    op.drop_index('ix_instagram_connections_instagram_user_id', table_name='instagram_connections')
    op.drop_index('ix_instagram_connections_app_user_id', table_name='instagram_connections')
    op.drop_table('instagram_connections')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_index('ix_users_id', table_name='users')
    op.drop_table('users')
