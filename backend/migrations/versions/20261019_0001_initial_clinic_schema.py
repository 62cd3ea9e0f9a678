"""Initial clinic schema: patients, consultations, queue, triage, event log

Revision ID: 3f9c1a7e2b10
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '3f9c1a7e2b10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table('patient',
        sa.Column('patient_id', sa.String(length=64), nullable=False),
        sa.Column('full_name', sa.String(length=255), nullable=False),
        sa.Column('nric', sa.String(length=32), nullable=True),
        sa.Column('date_of_birth', sa.Date(), nullable=True),
        sa.Column('gender', sa.String(length=16), nullable=True),
        sa.Column('phone', sa.String(length=32), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('fhir_patient_id', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('patient_id'),
    )

    op.create_table('consultation',
        sa.Column('consultation_id', sa.String(length=64), nullable=False),
        sa.Column('patient_id', sa.String(length=64), nullable=False),
        sa.Column('doctor_name', sa.String(length=255), nullable=True),
        sa.Column('chief_complaint', sa.Text(), nullable=True),
        sa.Column('diagnosis', sa.Text(), nullable=True),
        sa.Column('diagnosis_code', sa.String(length=32), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('procedures', sa.JSON(), nullable=True),
        sa.Column('prescriptions', sa.JSON(), nullable=True),
        sa.Column('consulted_at', sa.DateTime(), nullable=False),
        sa.Column('fhir_encounter_id', sa.String(length=64), nullable=True),
        sa.ForeignKeyConstraint(['patient_id'], ['patient.patient_id'], ),
        sa.PrimaryKeyConstraint('consultation_id'),
    )

    # Queue board; one active entry per patient is enforced by QueueService
    op.create_table('queue_entry',
        sa.Column('entry_id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('patient_id', sa.String(length=64), nullable=False),
        sa.Column('triage_level', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('chief_complaint', sa.Text(), nullable=True),
        sa.Column('encounter_id', sa.String(length=64), nullable=True),
        sa.Column('added_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['patient_id'], ['patient.patient_id'], ),
        sa.PrimaryKeyConstraint('entry_id'),
    )
    op.create_index('ix_queue_entry_patient_status', 'queue_entry', ['patient_id', 'status'])

    op.create_table('triage_record',
        sa.Column('triage_id', sa.String(length=64), nullable=False),
        sa.Column('patient_id', sa.String(length=64), nullable=False),
        sa.Column('triage_level', sa.Integer(), nullable=False),
        sa.Column('chief_complaint', sa.Text(), nullable=False),
        sa.Column('vital_signs', sa.JSON(), nullable=True),
        sa.Column('triage_notes', sa.Text(), nullable=True),
        sa.Column('red_flags', sa.JSON(), nullable=True),
        sa.Column('triage_by', sa.String(length=255), nullable=True),
        sa.Column('encounter_id', sa.String(length=64), nullable=True),
        sa.Column('recorded_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['patient_id'], ['patient.patient_id'], ),
        sa.PrimaryKeyConstraint('triage_id'),
    )

    op.create_table('event_log',
        sa.Column('event_id', sa.String(length=64), nullable=False),
        sa.Column('clinic_id', sa.String(length=64), nullable=False),
        sa.Column('event_type', sa.String(length=100), nullable=False),
        sa.Column('patient_id', sa.String(length=64), nullable=True),
        sa.Column('actor', sa.String(length=255), nullable=True),
        sa.Column('payload_json', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('correlation_id', sa.String(length=100), nullable=True),
        sa.PrimaryKeyConstraint('event_id'),
    )
    op.create_index('idx_event_log_patient', 'event_log', ['patient_id', 'created_at'])


def downgrade() -> None:
    op.drop_index('idx_event_log_patient', table_name='event_log')
    op.drop_table('event_log')
    op.drop_table('triage_record')
    op.drop_index('ix_queue_entry_patient_status', table_name='queue_entry')
    op.drop_table('queue_entry')
    op.drop_table('consultation')
    op.drop_table('patient')
