"""Add asset_records table

Revision ID: 001_asset_records
Revises:
Create Date: 2026-10-19

One row per asset, keyed by (owner_id, asset_id):
- entity_type discriminant with an (entity_type, owner_id) index for owner listing
- status / is_high_resolution_available lifecycle columns
- image_metadata / hi_res_metadata JSON columns
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision = '001_asset_records'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'asset_records',
        sa.Column('owner_id', sa.String(), nullable=False),
        sa.Column('asset_id', sa.String(), nullable=False),
        sa.Column('entity_type', sa.String(), nullable=False, server_default='ASSET'),
        sa.Column('status', sa.String(), nullable=False, server_default='PENDING_UPLOAD'),
        sa.Column('is_high_resolution_available', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('image_metadata', sa.JSON(), nullable=True),
        sa.Column('hi_res_metadata', sa.JSON(), nullable=True),
        sa.Column('created_time', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('last_modified_time', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('owner_id', 'asset_id'),
    )
    op.create_index(
        'ix_asset_records_entity_owner',
        'asset_records',
        ['entity_type', 'owner_id'],
    )


def downgrade() -> None:
    op.drop_index('ix_asset_records_entity_owner', table_name='asset_records')
    op.drop_table('asset_records')
