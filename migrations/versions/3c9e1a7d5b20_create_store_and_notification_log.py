"""create store_entries and notification_log

Revision ID: 3c9e1a7d5b20
Revises:
Create Date: 2026-10-19 09:12:41.518302

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '3c9e1a7d5b20'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # Key/value entries for analyses, alerts, preferences and in-app notifications
    op.create_table(
        'store_entries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('key', sa.String(length=200), nullable=False),
        sa.Column('value', sa.Text(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('store_entries', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_store_entries_key'), ['key'], unique=True)

    # Delivery audit log for push, email and SMS
    op.create_table(
        'notification_log',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('channel', sa.String(length=20), nullable=False),
        sa.Column('user_id', sa.String(length=100), nullable=True),
        sa.Column('payload_id', sa.String(length=100), nullable=True),
        sa.Column('category', sa.String(length=30), nullable=True),
        sa.Column('severity', sa.String(length=20), nullable=True),
        sa.Column('recipient', sa.String(length=200), nullable=True),
        sa.Column('message_content', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=True),
        sa.Column('provider_message_id', sa.String(length=100), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('sent_at', sa.DateTime(), nullable=True),
        sa.Column('failed_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('notification_log', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_notification_log_channel'), ['channel'], unique=False)
        batch_op.create_index(batch_op.f('ix_notification_log_user_id'), ['user_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_notification_log_payload_id'), ['payload_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_notification_log_status'), ['status'], unique=False)
        batch_op.create_index(batch_op.f('ix_notification_log_provider_message_id'), ['provider_message_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_notification_log_created_at'), ['created_at'], unique=False)


def downgrade():
    with op.batch_alter_table('notification_log', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_notification_log_created_at'))
        batch_op.drop_index(batch_op.f('ix_notification_log_provider_message_id'))
        batch_op.drop_index(batch_op.f('ix_notification_log_status'))
        batch_op.drop_index(batch_op.f('ix_notification_log_payload_id'))
        batch_op.drop_index(batch_op.f('ix_notification_log_user_id'))
        batch_op.drop_index(batch_op.f('ix_notification_log_channel'))
    op.drop_table('notification_log')

    with op.batch_alter_table('store_entries', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_store_entries_key'))
    op.drop_table('store_entries')
