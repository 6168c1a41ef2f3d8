"""Create SLA tables

Revision ID: create_sla_tables
Revises:
Create Date: 2026-03-01 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'create_sla_tables'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # SLA policies
    op.create_table(
        'sla_policies',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('category', sa.String(), nullable=True),
        sa.Column('priorities', sa.JSON(), nullable=False),

        # Warnings / automatic escalation
        sa.Column('warnings_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('auto_escalation_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('escalate_on_response_breach', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('escalate_on_resolution_breach', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('auto_escalation_level', sa.Integer(), nullable=False, server_default='1'),

        # Status
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_default', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_by', sa.String(), nullable=True),
        sa.Column('updated_by', sa.String(), nullable=True),

        # Timestamps
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), nullable=True),

        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
    )
    op.create_index('ix_sla_policies_category', 'sla_policies', ['category'])
    op.create_index('ix_sla_policies_is_active', 'sla_policies', ['is_active'])
    op.create_index('ix_sla_policies_is_default', 'sla_policies', ['is_default'])

    op.create_table(
        'sla_escalation_levels',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('policy_id', sa.String(), nullable=False),
        sa.Column('level', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('percentage_threshold', sa.Integer(), nullable=False),
        sa.Column(
            'action',
            sa.Enum('NOTIFY', 'ESCALATE', 'ASSIGN', 'ALERT', name='escalationaction'),
            nullable=False,
        ),
        sa.Column('notify_users', sa.JSON(), nullable=False),
        sa.Column('assign_to', sa.String(), nullable=True),
        sa.ForeignKeyConstraint(['policy_id'], ['sla_policies.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('policy_id', 'level', name='uq_sla_escalation_levels_policy_level'),
    )
    op.create_index('ix_sla_escalation_levels_policy_id', 'sla_escalation_levels', ['policy_id'])

    op.create_table(
        'sla_warning_levels',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('policy_id', sa.String(), nullable=False),
        sa.Column('percentage', sa.Integer(), nullable=False),
        sa.Column('notify_users', sa.JSON(), nullable=False),
        sa.Column('notify_channels', sa.JSON(), nullable=False),
        sa.ForeignKeyConstraint(['policy_id'], ['sla_policies.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('policy_id', 'percentage', name='uq_sla_warning_levels_policy_percentage'),
    )
    op.create_index('ix_sla_warning_levels_policy_id', 'sla_warning_levels', ['policy_id'])

    # Tickets (SLA-relevant columns)
    op.create_table(
        'tickets',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('ticket_number', sa.String(), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('category', sa.String(), nullable=True),
        sa.Column(
            'priority',
            sa.Enum('LOW', 'MEDIUM', 'HIGH', 'URGENT', name='ticketpriority'),
            nullable=False,
        ),
        sa.Column(
            'status',
            sa.Enum('OPEN', 'IN_PROGRESS', 'PENDING', 'RESOLVED', 'CLOSED', 'CANCELLED', name='ticketstatus'),
            nullable=False,
        ),

        # SLA snapshot
        sa.Column('sla_policy_id', sa.String(), nullable=True),
        sa.Column('sla_priority', sa.String(), nullable=True),
        sa.Column('sla_response_time_hours', sa.Float(), nullable=True),
        sa.Column('sla_resolution_time_hours', sa.Float(), nullable=True),
        sa.Column('due_date', sa.DateTime(), nullable=True),

        # Lifecycle
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('first_response_at', sa.DateTime(), nullable=True),
        sa.Column('resolved_at', sa.DateTime(), nullable=True),
        sa.Column('closed_at', sa.DateTime(), nullable=True),

        # Assignment / metrics / escalation
        sa.Column('assigned_to', sa.String(), nullable=True),
        sa.Column('assigned_at', sa.DateTime(), nullable=True),
        sa.Column('response_time_hours', sa.Float(), nullable=True),
        sa.Column('resolution_time_hours', sa.Float(), nullable=True),
        sa.Column('escalation_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('escalation_level', sa.Integer(), nullable=True),
        sa.Column('escalated_at', sa.DateTime(), nullable=True),
        sa.Column('sla_breach_at', sa.DateTime(), nullable=True),
        sa.Column('is_deleted', sa.Boolean(), nullable=False, server_default=sa.false()),

        sa.ForeignKeyConstraint(['sla_policy_id'], ['sla_policies.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_tickets_ticket_number', 'tickets', ['ticket_number'], unique=True)
    op.create_index('ix_tickets_category', 'tickets', ['category'])
    op.create_index('ix_tickets_status', 'tickets', ['status'])
    op.create_index('ix_tickets_sla_policy_id', 'tickets', ['sla_policy_id'])
    op.create_index('ix_tickets_created_at', 'tickets', ['created_at'])
    op.create_index('ix_tickets_assigned_to', 'tickets', ['assigned_to'])
    op.create_index('ix_tickets_is_deleted', 'tickets', ['is_deleted'])

    # Ledger of fired warnings and escalations
    op.create_table(
        'sla_events',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('ticket_id', sa.String(), nullable=False),
        sa.Column('kind', sa.Enum('WARNING', 'ESCALATION', name='slaeventkind'), nullable=False),
        sa.Column('identifier', sa.Integer(), nullable=False),
        sa.Column('percentage', sa.Integer(), nullable=False),
        sa.Column('breach_type', sa.String(), nullable=True),
        sa.Column('action', sa.String(), nullable=True),
        sa.Column('notify_users', sa.JSON(), nullable=False),
        sa.Column('notify_channels', sa.JSON(), nullable=False),
        sa.Column('assigned_to', sa.String(), nullable=True),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('fired_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['ticket_id'], ['tickets.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('ticket_id', 'kind', 'identifier', name='uq_sla_events_ticket_kind_identifier'),
    )
    op.create_index('ix_sla_events_ticket_id', 'sla_events', ['ticket_id'])
    op.create_index('ix_sla_events_fired_at', 'sla_events', ['fired_at'])


def downgrade() -> None:
    op.drop_index('ix_sla_events_fired_at', table_name='sla_events')
    op.drop_index('ix_sla_events_ticket_id', table_name='sla_events')
    op.drop_table('sla_events')

    for index in (
        'ix_tickets_is_deleted', 'ix_tickets_assigned_to', 'ix_tickets_created_at',
        'ix_tickets_sla_policy_id', 'ix_tickets_status', 'ix_tickets_category',
        'ix_tickets_ticket_number',
    ):
        op.drop_index(index, table_name='tickets')
    op.drop_table('tickets')

    op.drop_index('ix_sla_warning_levels_policy_id', table_name='sla_warning_levels')
    op.drop_table('sla_warning_levels')
    op.drop_index('ix_sla_escalation_levels_policy_id', table_name='sla_escalation_levels')
    op.drop_table('sla_escalation_levels')

    op.drop_index('ix_sla_policies_is_default', table_name='sla_policies')
    op.drop_index('ix_sla_policies_is_active', table_name='sla_policies')
    op.drop_index('ix_sla_policies_category', table_name='sla_policies')
    op.drop_table('sla_policies')

    sa.Enum(name='slaeventkind').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='ticketstatus').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='ticketpriority').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='escalationaction').drop(op.get_bind(), checkfirst=True)
