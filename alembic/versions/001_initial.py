"""Initial migration

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _profile_columns():
    return [
        sa.Column('id', postgresql.UUID(as_uuid=False), primary_key=True),
        sa.Column('account_id', postgresql.UUID(as_uuid=False), sa.ForeignKey('accounts.id', ondelete='CASCADE'), nullable=False, unique=True, index=True),
    ]


def upgrade() -> None:
    # Create accounts table
    op.create_table(
        'accounts',
        sa.Column('id', postgresql.UUID(as_uuid=False), primary_key=True),
        sa.Column('email', sa.String(255), nullable=False, unique=True, index=True),
        sa.Column('role', sa.Enum('platform_admin', 'university_admin', 'student', 'employer', name='accountrole'), nullable=False),
        sa.Column('email_verified', sa.Boolean(), nullable=False, default=False),
        sa.Column('auth_managed', sa.Boolean(), nullable=False, default=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # Create universities table
    op.create_table(
        'universities',
        sa.Column('id', postgresql.UUID(as_uuid=False), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('short_name', sa.String(50), nullable=True),
        sa.Column('email', sa.String(255), nullable=False, unique=True, index=True),
        sa.Column('country', sa.String(100), nullable=False),
        sa.Column('city', sa.String(100), nullable=False),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('phone', sa.String(50), nullable=True),
        sa.Column('website', sa.String(255), nullable=True),
        sa.Column('registration_number', sa.String(100), nullable=True),
        sa.Column('accreditation_body', sa.String(255), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, default=True),
        sa.Column('is_verified', sa.Boolean(), nullable=False, default=False),
        sa.Column('created_by', postgresql.UUID(as_uuid=False), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # Create role profile tables
    op.create_table(
        'platform_admin_profiles',
        *_profile_columns(),
        sa.Column('first_name', sa.String(100), nullable=False),
        sa.Column('last_name', sa.String(100), nullable=False),
        sa.Column('permissions', postgresql.JSON(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, default=True),
        sa.Column('last_login', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_table(
        'university_admin_profiles',
        *_profile_columns(),
        sa.Column('university_id', postgresql.UUID(as_uuid=False), sa.ForeignKey('universities.id'), nullable=False, index=True),
        sa.Column('email', sa.String(255), nullable=False, index=True),
        sa.Column('first_name', sa.String(100), nullable=False),
        sa.Column('last_name', sa.String(100), nullable=False),
        sa.Column('title', sa.String(100), nullable=True),
        sa.Column('phone', sa.String(50), nullable=True),
        sa.Column('permissions', postgresql.JSON(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, default=True),
        sa.Column('last_login', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_table(
        'student_profiles',
        *_profile_columns(),
        sa.Column('first_name', sa.String(100), nullable=False),
        sa.Column('last_name', sa.String(100), nullable=False),
        sa.Column('phone', sa.String(50), nullable=True),
        sa.Column('date_of_birth', sa.String(20), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, default=True),
        sa.Column('last_login', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_table(
        'employer_profiles',
        *_profile_columns(),
        sa.Column('company_name', sa.String(255), nullable=False),
        sa.Column('contact_name', sa.String(200), nullable=True),
        sa.Column('industry', sa.String(100), nullable=True),
        sa.Column('website', sa.String(255), nullable=True),
        sa.Column('phone', sa.String(50), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, default=True),
        sa.Column('last_login', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # Create academic_programs table
    op.create_table(
        'academic_programs',
        sa.Column('id', postgresql.UUID(as_uuid=False), primary_key=True),
        sa.Column('university_id', postgresql.UUID(as_uuid=False), sa.ForeignKey('universities.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('program_name', sa.String(255), nullable=False),
        sa.Column('faculty', sa.String(255), nullable=False),
        sa.Column('duration', sa.String(50), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, default=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('university_id', 'program_name'),
    )

    # Create graduate_records table
    op.create_table(
        'graduate_records',
        sa.Column('id', postgresql.UUID(as_uuid=False), primary_key=True),
        sa.Column('university_id', postgresql.UUID(as_uuid=False), sa.ForeignKey('universities.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('program_id', postgresql.UUID(as_uuid=False), sa.ForeignKey('academic_programs.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('student_full_name', sa.String(255), nullable=False),
        sa.Column('registration_number', sa.String(100), nullable=False, index=True),
        sa.Column('graduation_year', sa.Integer(), nullable=False),
        sa.Column('certificate_url', sa.Text(), nullable=True),
        sa.Column('transcript_url', sa.Text(), nullable=True),
        sa.Column('is_verified', sa.Boolean(), nullable=False, default=True),
        sa.Column('verified_by', postgresql.UUID(as_uuid=False), nullable=True),
        sa.Column('verified_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_by', postgresql.UUID(as_uuid=False), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # Create audit_logs table
    op.create_table(
        'audit_logs',
        sa.Column('id', postgresql.UUID(as_uuid=False), primary_key=True),
        sa.Column('admin_account_id', postgresql.UUID(as_uuid=False), nullable=True, index=True),
        sa.Column('action', sa.String(50), nullable=False, index=True),
        sa.Column('resource_type', sa.String(50), nullable=False),
        sa.Column('resource_id', sa.String(100), nullable=True, index=True),
        sa.Column('old_values', postgresql.JSON(), nullable=True),
        sa.Column('new_values', postgresql.JSON(), nullable=True),
        sa.Column('ip_address', sa.String(50), nullable=True),
        sa.Column('user_agent', sa.String(500), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # Create indexes
    op.create_index('ix_graduate_records_graduation_year', 'graduate_records', ['graduation_year'])
    op.create_index('ix_audit_logs_created_at', 'audit_logs', ['created_at'])


def downgrade() -> None:
    op.drop_index('ix_audit_logs_created_at')
    op.drop_index('ix_graduate_records_graduation_year')
    op.drop_table('audit_logs')
    op.drop_table('graduate_records')
    op.drop_table('academic_programs')
    op.drop_table('employer_profiles')
    op.drop_table('student_profiles')
    op.drop_table('university_admin_profiles')
    op.drop_table('platform_admin_profiles')
    op.drop_table('universities')
    op.drop_table('accounts')
    op.execute('DROP TYPE IF EXISTS accountrole')
