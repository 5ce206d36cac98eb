"""add medication reminder tables

Revision ID: 001_add_medication_reminders
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '001_add_medication_reminders'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'medication_reminders',
        sa.Column('id', sa.String(length=32), primary_key=True),
        sa.Column('patient_id', sa.String(), nullable=True),
        sa.Column('entry_report_id', sa.String(), nullable=True),
        sa.Column('created_by', sa.String(), nullable=True),
        sa.Column('medication_name', sa.String(), nullable=False),
        sa.Column('dosage', sa.String(), nullable=True),
        sa.Column('instructions', sa.Text(), nullable=True),
        sa.Column('start_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('schedule', sa.JSON(), nullable=False),
        sa.Column('notify_channels', sa.JSON(), nullable=False),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('last_triggered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('next_run_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_medication_reminders_patient_id', 'medication_reminders', ['patient_id'])
    op.create_index('ix_medication_reminders_entry_report_id', 'medication_reminders', ['entry_report_id'])
    op.create_index('ix_medication_reminders_created_by', 'medication_reminders', ['created_by'])
    op.create_index('ix_medication_reminders_active_next_run', 'medication_reminders', ['active', 'next_run_at'])

    op.create_table(
        'delivery_attempts',
        sa.Column('id', sa.String(length=32), primary_key=True),
        sa.Column('reminder_id', sa.String(length=32), nullable=False),
        sa.Column('due_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('channels', sa.JSON(), nullable=False),
        sa.Column('outcome', sa.String(), nullable=False),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_delivery_attempts_reminder_id', 'delivery_attempts', ['reminder_id'])

    op.create_table(
        'notifications',
        sa.Column('id', sa.String(length=32), primary_key=True),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('meta', sa.JSON(), nullable=False),
        sa.Column('read', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'])

    op.create_table(
        'contact_points',
        sa.Column('id', sa.String(length=32), primary_key=True),
        sa.Column('actor_id', sa.String(), nullable=False),
        sa.Column('channel', sa.String(), nullable=False),
        sa.Column('address', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_contact_points_actor_id', 'contact_points', ['actor_id'])
    op.create_index('ix_contact_points_actor_channel', 'contact_points', ['actor_id', 'channel'])


def downgrade() -> None:
    op.drop_index('ix_contact_points_actor_channel', table_name='contact_points')
    op.drop_index('ix_contact_points_actor_id', table_name='contact_points')
    op.drop_table('contact_points')
    op.drop_index('ix_notifications_user_id', table_name='notifications')
    op.drop_table('notifications')
    op.drop_index('ix_delivery_attempts_reminder_id', table_name='delivery_attempts')
    op.drop_table('delivery_attempts')
    op.drop_index('ix_medication_reminders_active_next_run', table_name='medication_reminders')
    op.drop_index('ix_medication_reminders_created_by', table_name='medication_reminders')
    op.drop_index('ix_medication_reminders_entry_report_id', table_name='medication_reminders')
    op.drop_index('ix_medication_reminders_patient_id', table_name='medication_reminders')
    op.drop_table('medication_reminders')
