"""Local store: key -> JSON entries

Revision ID: 20260301_local_store
Revises:
Create Date: 2026-03-01

One row per local store key (products, categories, stockMovements, orders,
sales, settings, syncQueue); the value is the JSON document for that key.
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20260301_local_store'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('local_store_entries',
        sa.Column('key', sa.String(length=64), nullable=False),
        sa.Column('value_json', sa.Text(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('key')
    )


def downgrade():
    op.drop_table('local_store_entries')
