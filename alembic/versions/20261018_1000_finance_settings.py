"""Finance settings

Revision ID: 20261018_1000_settings
Revises: 20261018_0900_initial
Create Date: 2026-10-18 10:00:00.000000

Creates:
1. finance_settings key/value rows for the desk configuration
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261018_1000_settings'
down_revision = '20261018_0900_initial'
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'finance_settings',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('key', sa.String(100), nullable=False),
        sa.Column('category', sa.String(50), nullable=False),
        sa.Column('value', sa.JSON(), nullable=True),
        sa.Column('updated_by', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_finance_settings'),
    )
    op.create_index('ix_finance_settings_key', 'finance_settings', ['key'], unique=True)
    op.create_index('ix_finance_settings_category', 'finance_settings', ['category'])


def downgrade() -> None:
    op.drop_index('ix_finance_settings_category', table_name='finance_settings')
    op.drop_index('ix_finance_settings_key', table_name='finance_settings')
    op.drop_table('finance_settings')
