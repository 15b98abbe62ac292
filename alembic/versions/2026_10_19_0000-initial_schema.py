"""initial schema

Revision ID: 2026_10_19_0000
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID


# revision identifiers, used by Alembic.
revision: str = '2026_10_19_0000'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create initial database schema."""

    # ========================================================================
    # Create users table
    # ========================================================================
    op.create_table(
        'users',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('password_hash', sa.String(255), nullable=False),
        sa.Column('role', sa.String(20), nullable=False, server_default='standard'),
        sa.Column('credits', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        # Constraints
        sa.CheckConstraint('credits >= 0', name='ck_users_credits_non_negative'),
        sa.CheckConstraint("role IN ('standard', 'admin')", name='ck_users_role'),
        sa.UniqueConstraint('email', name='uq_users_email'),
    )

    # ========================================================================
    # Create products table
    # ========================================================================
    op.create_table(
        'products',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('raw_text', sa.Text(), nullable=False),
        sa.Column('image_data', sa.Text(), nullable=True),
        sa.Column('image_mime_type', sa.String(50), nullable=True),
        sa.Column('market_analysis', sa.Text(), nullable=True),
        sa.Column('product_page_content', sa.Text(), nullable=True),
        sa.Column('image_prompts', sa.Text(), nullable=True),
        sa.Column('ad_copy', sa.Text(), nullable=True),
        sa.Column('generated_images', JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
    )

    op.create_index('idx_products_user_created', 'products', ['user_id', 'created_at'])

    # ========================================================================
    # Create credit_transactions table
    # ========================================================================
    op.create_table(
        'credit_transactions',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('amount', sa.BigInteger(), nullable=False),
        sa.Column('kind', sa.String(20), nullable=False),
        sa.Column('balance_after', sa.BigInteger(), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('product_id', UUID(as_uuid=True), nullable=True),
        sa.Column('stage', sa.String(50), nullable=True),
        sa.Column('idempotency_key', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        # Constraints
        sa.CheckConstraint('balance_after >= 0', name='ck_credit_tx_balance_non_negative'),
        sa.CheckConstraint("kind IN ('charge', 'grant', 'adjustment')", name='ck_credit_tx_kind'),
        sa.UniqueConstraint('user_id', 'idempotency_key', name='uq_credit_tx_idempotency'),
    )

    op.create_index('idx_credit_tx_user_created', 'credit_transactions', ['user_id', 'created_at'])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_index('idx_credit_tx_user_created', table_name='credit_transactions')
    op.drop_table('credit_transactions')
    op.drop_index('idx_products_user_created', table_name='products')
    op.drop_table('products')
    op.drop_table('users')
