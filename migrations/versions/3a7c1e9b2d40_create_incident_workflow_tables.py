"""create incident workflow tables

Revision ID: 3a7c1e9b2d40
Revises:
Create Date: 2026-10-19

Staff/guardian users, students, their medical conditions, health incidents
and the item usage that pins an incident against deletion.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID as PGUUID

# revision identifiers, used by Alembic.
revision: str = '3a7c1e9b2d40'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', PGUUID(as_uuid=True), nullable=False),
        sa.Column('username', sa.String(), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('full_name', sa.String(), nullable=True),
        sa.Column('hashed_password', sa.String(), nullable=False),
        sa.Column('role', sa.String(), nullable=True),  # nurse, supervisor, admin, guardian
        sa.Column('is_active', sa.Boolean(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_users_username'), 'users', ['username'], unique=True)
    op.create_index(op.f('ix_users_email'), 'users', ['email'], unique=True)

    op.create_table(
        'students',
        sa.Column('id', PGUUID(as_uuid=True), nullable=False),
        sa.Column('student_code', sa.String(), nullable=False),
        sa.Column('full_name', sa.String(), nullable=False),
        sa.Column('guardian_id', PGUUID(as_uuid=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_students_student_code'), 'students', ['student_code'], unique=True)
    op.create_index(op.f('ix_students_guardian_id'), 'students', ['guardian_id'], unique=False)

    op.create_table(
        'medical_conditions',
        sa.Column('id', PGUUID(as_uuid=True), nullable=False),
        sa.Column('student_id', PGUUID(as_uuid=True), nullable=False),
        sa.Column('condition_type', sa.String(length=32), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('is_deleted', sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_medical_conditions_student_id'), 'medical_conditions', ['student_id'], unique=False)

    op.create_table(
        'health_incidents',
        sa.Column('id', PGUUID(as_uuid=True), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=False),
        sa.Column('student_id', PGUUID(as_uuid=True), nullable=False),
        sa.Column('kind', sa.String(length=32), nullable=False),
        sa.Column('is_emergency', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='pending'),
        sa.Column('owner_id', PGUUID(as_uuid=True), nullable=True),
        sa.Column('assignment_method', sa.String(length=32), nullable=False, server_default='unassigned'),
        sa.Column('reported_by', PGUUID(as_uuid=True), nullable=False),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('assigned_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('linked_condition_id', PGUUID(as_uuid=True), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('location', sa.String(), nullable=True),
        sa.Column('action_taken', sa.Text(), nullable=True),
        sa.Column('outcome', sa.Text(), nullable=True),
        sa.Column('is_deleted', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('last_escalated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_reminded_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        # Owner and owned status only ever appear together
        sa.CheckConstraint(
            "(owner_id IS NULL) = (status NOT IN ('in_progress', 'completed'))",
            name='ck_health_incidents_owner_status',
        ),
    )
    op.create_index(op.f('ix_health_incidents_code'), 'health_incidents', ['code'], unique=True)
    op.create_index(op.f('ix_health_incidents_student_id'), 'health_incidents', ['student_id'], unique=False)
    op.create_index('ix_health_incidents_status_owner', 'health_incidents', ['status', 'owner_id'], unique=False)

    op.create_table(
        'medical_item_usages',
        sa.Column('id', PGUUID(as_uuid=True), nullable=False),
        sa.Column('incident_id', PGUUID(as_uuid=True), nullable=False),
        sa.Column('item_name', sa.String(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('used_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_deleted', sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_medical_item_usages_incident_id'), 'medical_item_usages', ['incident_id'], unique=False)


def downgrade() -> None:
    op.drop_index(op.f('ix_medical_item_usages_incident_id'), table_name='medical_item_usages')
    op.drop_table('medical_item_usages')
    op.drop_index('ix_health_incidents_status_owner', table_name='health_incidents')
    op.drop_index(op.f('ix_health_incidents_student_id'), table_name='health_incidents')
    op.drop_index(op.f('ix_health_incidents_code'), table_name='health_incidents')
    op.drop_table('health_incidents')
    op.drop_index(op.f('ix_medical_conditions_student_id'), table_name='medical_conditions')
    op.drop_table('medical_conditions')
    op.drop_index(op.f('ix_students_guardian_id'), table_name='students')
    op.drop_index(op.f('ix_students_student_code'), table_name='students')
    op.drop_table('students')
    op.drop_index(op.f('ix_users_email'), table_name='users')
    op.drop_index(op.f('ix_users_username'), table_name='users')
    op.drop_table('users')
