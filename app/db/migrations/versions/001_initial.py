"""initial schema with enums

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

Creates all enum types and tables for consultation triage.
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None


ENUMS = {
    'userrole': ('user', 'consultant', 'admin'),
    'risklevel': ('low', 'medium', 'high', 'critical'),
    'consultantlevel': ('junior', 'senior', 'expert'),
    'ticketstatus': ('waiting', 'in_progress', 'completed', 'referred', 'rejected'),
    'tickettype': ('initial_free', 'paid_program'),
    'assignedbytype': ('system', 'admin'),
    'teamrole': ('primary', 'collaborator', 'referred'),
    'fieldtype': ('text', 'textarea', 'select', 'radio', 'checkbox', 'number', 'date'),
    'crisisalerttype': ('keyword_detection', 'system_assessment', 'panic_button'),
    'crisisalertstatus': ('pending', 'acknowledged', 'resolved'),
}


def upgrade() -> None:
    # Create enum types first
    enums = {}
    for name, values in ENUMS.items():
        enum_type = postgresql.ENUM(*values, name=name, create_type=False)
        enum_type.create(op.get_bind(), checkfirst=True)
        enums[name] = enum_type

    # Users
    op.create_table('users',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('email', sa.String(255), unique=True, nullable=False, index=True),
        sa.Column('full_name', sa.String(255)),
        sa.Column('role', enums['userrole'], default='user'),
        sa.Column('city', sa.String(100)),
        sa.Column('province', sa.String(100)),
        sa.Column('is_active', sa.Boolean(), default=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # Audit Logs
    op.create_table('audit_logs',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('timestamp', sa.DateTime(timezone=True), server_default=sa.func.now(), index=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('action', sa.String(100), nullable=False, index=True),
        sa.Column('entity_type', sa.String(100), index=True),
        sa.Column('entity_id', sa.Integer()),
        sa.Column('details', sa.JSON()),
        sa.Column('ip_address', sa.String(50)),
    )

    # Categories & consultants
    op.create_table('consultation_categories',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('slug', sa.String(255), unique=True, nullable=False),
        sa.Column('is_active', sa.Boolean(), default=True),
    )

    op.create_table('consultants',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), unique=True, nullable=False),
        sa.Column('specialist_category_id', sa.Integer(), sa.ForeignKey('consultation_categories.id'), nullable=True, index=True),
        sa.Column('level', enums['consultantlevel'], default='junior', index=True),
        sa.Column('city', sa.String(100)),
        sa.Column('province', sa.String(100)),
        sa.Column('is_active', sa.Boolean(), default=True),
        sa.Column('is_verified', sa.Boolean(), default=False),
        sa.Column('verified_at', sa.DateTime(timezone=True)),
        sa.Column('bio', sa.Text()),
        sa.Column('rating_average', sa.Numeric(3, 2), default=0),
        sa.Column('total_ratings', sa.Integer(), default=0),
        sa.Column('total_cases', sa.Integer(), default=0),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('deleted_at', sa.DateTime(timezone=True)),
    )

    op.create_table('consultant_schedules',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('consultant_id', sa.Integer(), sa.ForeignKey('consultants.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('day_of_week', sa.Integer(), nullable=False),
        sa.Column('start_time', sa.Time(), nullable=False),
        sa.Column('end_time', sa.Time(), nullable=False),
        sa.Column('is_available', sa.Boolean(), default=True),
    )

    # Dynamic forms
    op.create_table('form_templates',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('slug', sa.String(255), unique=True, nullable=False),
        sa.Column('description', sa.Text()),
        sa.Column('type', sa.String(50), default='screening'),
        sa.Column('category_id', sa.Integer(), sa.ForeignKey('consultation_categories.id'), nullable=True, index=True),
        sa.Column('is_active', sa.Boolean(), default=False),
        sa.Column('is_default', sa.Boolean(), default=False),
        sa.Column('version', sa.Integer(), default=1),
        sa.Column('settings', sa.JSON()),
        sa.Column('created_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), onupdate=sa.func.now()),
        sa.Column('deleted_at', sa.DateTime(timezone=True)),
    )

    op.create_table('form_fields',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('form_template_id', sa.Integer(), sa.ForeignKey('form_templates.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('field_key', sa.String(100), nullable=False),
        sa.Column('label', sa.String(500), nullable=False),
        sa.Column('help_text', sa.Text()),
        sa.Column('field_type', enums['fieldtype'], nullable=False, default='text'),
        sa.Column('validation_rules', sa.JSON()),
        sa.Column('is_required', sa.Boolean(), default=False),
        sa.Column('is_core_field', sa.Boolean(), default=False),
        sa.Column('order', sa.Integer(), default=0),
        sa.Column('risk_weight', sa.Integer(), default=0),
        sa.Column('conditional_logic', sa.JSON(), nullable=True),
        sa.UniqueConstraint('form_template_id', 'field_key', name='uq_form_field_template_key'),
    )

    op.create_table('form_field_options',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('form_field_id', sa.Integer(), sa.ForeignKey('form_fields.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('label', sa.String(500), nullable=False),
        sa.Column('value', sa.String(255), nullable=False),
        sa.Column('risk_score', sa.Integer(), default=0),
        sa.Column('order', sa.Integer(), default=0),
        sa.Column('requires_explanation', sa.Boolean(), default=False),
        sa.Column('metadata', sa.JSON()),
    )

    # Tickets and submissions reference each other; the ticket side is added afterwards
    op.create_table('consultation_tickets',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('ticket_number', sa.String(50), unique=True, nullable=False, index=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False, index=True),
        sa.Column('category_id', sa.Integer(), sa.ForeignKey('consultation_categories.id'), nullable=True),
        sa.Column('form_submission_id', sa.Integer(), nullable=True),
        sa.Column('subject', sa.String(255)),
        sa.Column('problem_description', sa.Text()),
        sa.Column('status', enums['ticketstatus'], default='waiting', index=True),
        sa.Column('type', enums['tickettype'], default='initial_free'),
        sa.Column('risk_level', enums['risklevel'], default='low'),
        sa.Column('urgency', sa.String(20)),
        sa.Column('consultant_id', sa.Integer(), sa.ForeignKey('consultants.id'), nullable=True, index=True),
        sa.Column('assigned_by_type', enums['assignedbytype'], nullable=True),
        sa.Column('assigned_by_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('override_reason', sa.Text()),
        sa.Column('routing_score', sa.Integer(), nullable=True),
        sa.Column('routing_metadata', sa.JSON(), nullable=True),
        sa.Column('assigned_at', sa.DateTime(timezone=True)),
        sa.Column('completed_at', sa.DateTime(timezone=True)),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), onupdate=sa.func.now()),
    )
    op.create_index('ix_tickets_consultant_status', 'consultation_tickets', ['consultant_id', 'status'])

    op.create_table('form_submissions',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('form_template_id', sa.Integer(), sa.ForeignKey('form_templates.id'), nullable=False, index=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False, index=True),
        sa.Column('consultation_ticket_id', sa.Integer(), sa.ForeignKey('consultation_tickets.id'), nullable=True),
        sa.Column('total_risk_score', sa.Integer(), default=0),
        sa.Column('risk_level', enums['risklevel'], default='low', index=True),
        sa.Column('submitted_at', sa.DateTime(timezone=True)),
    )
    op.create_foreign_key(
        'fk_tickets_form_submission', 'consultation_tickets', 'form_submissions',
        ['form_submission_id'], ['id'],
    )

    op.create_table('form_submission_answers',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('form_submission_id', sa.Integer(), sa.ForeignKey('form_submissions.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('form_field_id', sa.Integer(), sa.ForeignKey('form_fields.id'), nullable=False),
        sa.Column('answer_value', sa.JSON()),
        sa.Column('risk_score', sa.Integer(), default=0),
        sa.Column('explanation', sa.Text()),
    )

    # Care team
    op.create_table('consultation_ticket_consultants',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('consultation_ticket_id', sa.Integer(), sa.ForeignKey('consultation_tickets.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('consultant_id', sa.Integer(), sa.ForeignKey('consultants.id'), nullable=False, index=True),
        sa.Column('role', enums['teamrole'], nullable=False),
        sa.Column('invited_by', sa.Integer(), sa.ForeignKey('consultants.id'), nullable=True),
        sa.Column('invited_at', sa.DateTime(timezone=True)),
        sa.Column('user_approved_at', sa.DateTime(timezone=True)),
        sa.Column('is_active', sa.Boolean(), default=True),
        sa.Column('internal_notes', sa.Text()),
        sa.Column('handover_notes', sa.Text()),
        sa.UniqueConstraint('consultation_ticket_id', 'consultant_id', 'role', name='uq_ticket_consultant_role'),
    )

    # Ratings
    op.create_table('ratings',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('consultant_id', sa.Integer(), sa.ForeignKey('consultants.id'), nullable=False, index=True),
        sa.Column('ticket_id', sa.Integer(), sa.ForeignKey('consultation_tickets.id'), nullable=True),
        sa.Column('rating', sa.Integer(), nullable=False),
        sa.Column('review', sa.Text()),
        sa.Column('communication_rating', sa.Integer()),
        sa.Column('professionalism_rating', sa.Integer()),
        sa.Column('knowledge_rating', sa.Integer()),
        sa.Column('helpfulness_rating', sa.Integer()),
        sa.Column('is_anonymous', sa.Boolean(), default=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # Messages
    op.create_table('messages',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('ticket_id', sa.Integer(), sa.ForeignKey('consultation_tickets.id', ondelete='CASCADE'), nullable=False),
        sa.Column('sender_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('body', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_messages_ticket_sender_created', 'messages', ['ticket_id', 'sender_id', 'created_at'])

    # Dreams & crisis alerts
    op.create_table('dreams',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False, index=True),
        sa.Column('dream_content', sa.Text(), nullable=False),
        sa.Column('dream_date', sa.Date()),
        sa.Column('emotional_condition', sa.String(50)),
        sa.Column('physical_condition', sa.String(50)),
        sa.Column('classification', sa.String(50), index=True),
        sa.Column('confidence', sa.Float()),
        sa.Column('auto_analysis', sa.Text()),
        sa.Column('suggested_actions', sa.JSON()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table('crisis_alerts',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('ticket_id', sa.Integer(), sa.ForeignKey('consultation_tickets.id'), nullable=True),
        sa.Column('message_id', sa.Integer(), sa.ForeignKey('messages.id'), nullable=True),
        sa.Column('alert_type', enums['crisisalerttype'], nullable=False),
        sa.Column('detected_keywords', sa.JSON()),
        sa.Column('severity', enums['risklevel'], nullable=False),
        sa.Column('status', enums['crisisalertstatus'], default='pending', index=True),
        sa.Column('assigned_to_admin_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('notes', sa.Text()),
        sa.Column('context', sa.Text()),
        sa.Column('acknowledged_at', sa.DateTime(timezone=True)),
        sa.Column('resolved_at', sa.DateTime(timezone=True)),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )


def downgrade() -> None:
    # Drop tables in reverse order (respecting foreign keys)
    op.drop_table('crisis_alerts')
    op.drop_table('dreams')
    op.drop_table('messages')
    op.drop_table('ratings')
    op.drop_table('consultation_ticket_consultants')
    op.drop_table('form_submission_answers')
    op.drop_constraint('fk_tickets_form_submission', 'consultation_tickets', type_='foreignkey')
    op.drop_table('form_submissions')
    op.drop_table('consultation_tickets')
    op.drop_table('form_field_options')
    op.drop_table('form_fields')
    op.drop_table('form_templates')
    op.drop_table('consultant_schedules')
    op.drop_table('consultants')
    op.drop_table('consultation_categories')
    op.drop_table('audit_logs')
    op.drop_table('users')

    # Drop enum types
    for name in ENUMS:
        op.execute(f'DROP TYPE IF EXISTS {name}')
