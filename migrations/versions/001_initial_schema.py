"""Initial schema - create all tables

Revision ID: 001_initial
Revises: None
Create Date: 2026-10-19

This migration creates all the initial tables for the subscription tracker.

Tables created:
- user
- refreshtoken
- recurringcategory
- recurringexpense
"""
from typing import Sequence
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

recurring_interval = sa.Enum('WEEKLY', 'MONTHLY', 'QUARTERLY', 'YEARLY', name='recurringinterval')


def upgrade() -> None:
    """Create all initial tables."""

    # 1. User table (no dependencies)
    op.create_table(
        'user',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('password_hash', sa.String(), nullable=False),
        sa.Column('first_name', sa.String(), nullable=True),
        sa.Column('last_name', sa.String(), nullable=True),
        sa.Column('roles', sa.String(), nullable=False, server_default='ROLE_USER'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
    )
    op.create_index('ix_user_email', 'user', ['email'], unique=True)

    # 2. RefreshToken table (references user by email, no FK)
    op.create_table(
        'refreshtoken',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('refresh_token', sa.String(128), nullable=False),
        sa.Column('username', sa.String(), nullable=False),
        sa.Column('valid_until', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_refreshtoken_refresh_token', 'refreshtoken', ['refresh_token'], unique=True)
    op.create_index('ix_refreshtoken_username', 'refreshtoken', ['username'])
    op.create_index('ix_refreshtoken_valid_until', 'refreshtoken', ['valid_until'])

    # 3. RecurringCategory table (no dependencies)
    op.create_table(
        'recurringcategory',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(255), nullable=False),
    )
    op.create_index('ix_recurringcategory_name', 'recurringcategory', ['name'], unique=True)

    # 4. RecurringExpense table (depends on recurringcategory)
    op.create_table(
        'recurringexpense',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('amount', sa.Numeric(14, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('interval', recurring_interval, nullable=False),
        sa.Column('next_billing_date', sa.Date(), nullable=False),
        sa.Column(
            'category_id',
            sa.Integer(),
            sa.ForeignKey('recurringcategory.id', ondelete='SET NULL'),
            nullable=True,
        ),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('notes', sa.String(1024), nullable=True),
    )
    op.create_index('ix_recurringexpense_name', 'recurringexpense', ['name'])
    op.create_index('ix_recurringexpense_next_billing_date', 'recurringexpense', ['next_billing_date'])
    op.create_index('ix_recurringexpense_category_id', 'recurringexpense', ['category_id'])


def downgrade() -> None:
    """Drop all tables in reverse dependency order."""
    op.drop_table('recurringexpense')
    op.drop_table('recurringcategory')
    op.drop_table('refreshtoken')
    op.drop_table('user')
    recurring_interval.drop(op.get_bind(), checkfirst=True)
