"""initial_tag_schema

Revision ID: 0001
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0001'
down_revision = None
branch_labels = None
depends_on = None


def _timestamp(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(
        name,
        sa.TIMESTAMP(timezone=True),
        nullable=nullable,
        server_default=None if nullable else sa.text("CURRENT_TIMESTAMP"),
    )


def upgrade() -> None:
    op.create_table(
        'hardware_tag_batches',
        sa.Column('id', sa.TEXT(), primary_key=True),
        sa.Column('label', sa.TEXT(), nullable=True),
        _timestamp('created_at'),
    )
    op.create_index('idx_hardware_tag_batches_created', 'hardware_tag_batches', ['created_at', 'id'])

    op.create_table(
        'hardware_tags',
        sa.Column('id', sa.TEXT(), primary_key=True),
        sa.Column('chip_uid', sa.TEXT(), nullable=True, unique=True),
        sa.Column('public_token', sa.TEXT(), nullable=False, unique=True),
        sa.Column('claim_code', sa.TEXT(), nullable=True, unique=True),
        sa.Column('status', sa.TEXT(), nullable=False, server_default='unclaimed'),
        _timestamp('last_claimed_at', nullable=True),
        sa.Column(
            'batch_id',
            sa.TEXT(),
            sa.ForeignKey('hardware_tag_batches.id', ondelete='SET NULL'),
            nullable=True,
        ),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        sa.CheckConstraint(
            "status IN ('unclaimed', 'claimable', 'claimed', 'retired')",
            name='ck_hardware_tags_status',
        ),
    )
    # Stable export pagination
    op.create_index('idx_hardware_tags_created', 'hardware_tags', ['created_at', 'id'])
    op.create_index('idx_hardware_tags_batch', 'hardware_tags', ['batch_id'])

    op.create_table(
        'user_profiles',
        sa.Column('id', sa.TEXT(), primary_key=True),
        sa.Column('user_id', sa.TEXT(), nullable=False),
        sa.Column('handle', sa.TEXT(), nullable=False, unique=True),
        sa.Column('name', sa.TEXT(), nullable=True),
        sa.Column('headline', sa.TEXT(), nullable=True),
        sa.Column('theme', sa.TEXT(), nullable=True),
        sa.Column('is_active', sa.BOOLEAN(), nullable=False, server_default=sa.false()),
        _timestamp('created_at'),
        _timestamp('updated_at'),
    )
    op.create_index('idx_user_profiles_user', 'user_profiles', ['user_id', 'is_active'])

    op.create_table(
        'profile_links',
        sa.Column('id', sa.TEXT(), primary_key=True),
        sa.Column(
            'profile_id',
            sa.TEXT(),
            sa.ForeignKey('user_profiles.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('user_id', sa.TEXT(), nullable=True),
        sa.Column('title', sa.TEXT(), nullable=False, server_default=''),
        sa.Column('url', sa.TEXT(), nullable=False),
        sa.Column('order_index', sa.INTEGER(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.BOOLEAN(), nullable=False, server_default=sa.true()),
        sa.Column('is_override', sa.BOOLEAN(), nullable=False, server_default=sa.false()),
        sa.Column('click_count', sa.BIGINT(), nullable=False, server_default='0'),
        _timestamp('created_at'),
    )
    op.create_index('idx_profile_links_profile_order', 'profile_links', ['profile_id', 'order_index'])

    op.create_table(
        'tag_assignments',
        sa.Column('id', sa.TEXT(), primary_key=True),
        sa.Column(
            'tag_id',
            sa.TEXT(),
            sa.ForeignKey('hardware_tags.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('user_id', sa.TEXT(), nullable=False),
        sa.Column(
            'profile_id',
            sa.TEXT(),
            sa.ForeignKey('user_profiles.id', ondelete='SET NULL'),
            nullable=True,
        ),
        sa.Column('nickname', sa.TEXT(), nullable=True),
        sa.Column('target_type', sa.TEXT(), nullable=False, server_default='profile'),
        sa.Column('target_url', sa.TEXT(), nullable=True),
        _timestamp('last_redirected_at', nullable=True),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        # Zero or one assignment per tag
        sa.UniqueConstraint('tag_id', name='uq_tag_assignments_tag'),
        sa.CheckConstraint(
            "(target_type = 'profile' AND target_url IS NULL) "
            "OR (target_type = 'url' AND target_url IS NOT NULL)",
            name='ck_tag_assignments_target',
        ),
    )
    op.create_index('idx_tag_assignments_user', 'tag_assignments', ['user_id', 'created_at'])

    op.create_table(
        'tag_events',
        sa.Column('id', sa.TEXT(), primary_key=True),
        sa.Column('tag_id', sa.TEXT(), nullable=False),
        sa.Column('event_type', sa.TEXT(), nullable=False),
        sa.Column('metadata', sa.JSON(), nullable=False, server_default=sa.text("'{}'")),
        _timestamp('occurred_at'),
    )
    op.create_index('idx_tag_events_tag_occurred', 'tag_events', ['tag_id', 'occurred_at'])

    op.create_table(
        'admin_users',
        sa.Column('user_id', sa.TEXT(), primary_key=True),
        _timestamp('created_at'),
    )


def downgrade() -> None:
    op.drop_table('admin_users')
    op.drop_index('idx_tag_events_tag_occurred', table_name='tag_events')
    op.drop_table('tag_events')
    op.drop_index('idx_tag_assignments_user', table_name='tag_assignments')
    op.drop_table('tag_assignments')
    op.drop_index('idx_profile_links_profile_order', table_name='profile_links')
    op.drop_table('profile_links')
    op.drop_index('idx_user_profiles_user', table_name='user_profiles')
    op.drop_table('user_profiles')
    op.drop_index('idx_hardware_tags_batch', table_name='hardware_tags')
    op.drop_index('idx_hardware_tags_created', table_name='hardware_tags')
    op.drop_table('hardware_tags')
    op.drop_index('idx_hardware_tag_batches_created', table_name='hardware_tag_batches')
    op.drop_table('hardware_tag_batches')
