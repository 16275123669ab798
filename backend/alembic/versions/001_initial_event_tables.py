"""Initial pitch event tables

Revision ID: 001_initial_event
Revises:
Create Date: 2026-10-19

Creates all tables for:
- Roster: users, clusters, teams
- Pitching: pitch_schedules
- Market: investments, cluster_results
- Audit: audit_logs
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001_initial_event'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # ==========================================================================
    # Create Enums
    # ==========================================================================

    user_role_enum = postgresql.ENUM(
        'participant', 'team_lead', 'cluster_monitor', 'admin', 'super_admin',
        name='userrole',
        create_type=False,
    )
    user_role_enum.create(op.get_bind(), checkfirst=True)

    cluster_stage_enum = postgresql.ENUM(
        'onboarding', 'pitching', 'bidding', 'locked',
        name='clusterstage',
        create_type=False,
    )
    cluster_stage_enum.create(op.get_bind(), checkfirst=True)

    pitch_status_enum = postgresql.ENUM(
        'scheduled', 'in_progress', 'completed', 'cancelled',
        name='pitchstatus',
        create_type=False,
    )
    pitch_status_enum.create(op.get_bind(), checkfirst=True)

    investment_status_enum = postgresql.ENUM(
        'draft', 'draft_locked', 'committed',
        name='investmentstatus',
        create_type=False,
    )
    investment_status_enum.create(op.get_bind(), checkfirst=True)

    # ==========================================================================
    # Roster Tables
    # ==========================================================================

    # Clusters table (pointer foreign keys are added once teams and
    # pitch_schedules exist)
    op.create_table(
        'clusters',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('location', sa.String(length=255), nullable=True),
        sa.Column('stage', cluster_stage_enum, nullable=False, server_default='onboarding'),
        sa.Column('bidding_open', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('bidding_deadline', sa.DateTime(timezone=True), nullable=True),
        sa.Column('current_pitching_team_id', sa.UUID(), nullable=True),
        sa.Column('current_schedule_id', sa.UUID(), nullable=True),
        sa.Column('max_teams', sa.Integer(), nullable=False, server_default='10'),
        sa.Column('pitch_duration_seconds', sa.Integer(), nullable=False, server_default='180'),
        sa.Column('is_complete', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('winner_team_id', sa.UUID(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint("bidding_open = false OR stage = 'bidding'", name='ck_clusters_bidding_open_stage'),
        sa.CheckConstraint(
            "current_pitching_team_id IS NULL OR stage = 'pitching'",
            name='ck_clusters_pitch_pointer_stage',
        ),
    )
    op.create_index('ix_clusters_stage', 'clusters', ['stage'], unique=False)
    op.create_index('ix_clusters_is_complete', 'clusters', ['is_complete'], unique=False)

    # Teams table
    op.create_table(
        'teams',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('domain', sa.String(length=255), nullable=True),
        sa.Column('cluster_id', sa.UUID(), nullable=True),
        sa.Column('starting_balance', sa.Numeric(precision=14, scale=2), nullable=False),
        sa.Column('balance', sa.Numeric(precision=14, scale=2), nullable=False),
        sa.Column('total_invested', sa.Numeric(precision=14, scale=2), nullable=False, server_default='0'),
        sa.Column('total_received', sa.Numeric(precision=14, scale=2), nullable=False, server_default='0'),
        sa.Column('is_finalized', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_qualified', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['cluster_id'], ['clusters.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('balance >= 0', name='ck_teams_balance_non_negative'),
    )
    op.create_index('ix_teams_cluster_id', 'teams', ['cluster_id'], unique=False)

    # Users table
    op.create_table(
        'users',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('full_name', sa.String(length=255), nullable=False),
        sa.Column('role', user_role_enum, nullable=False, server_default='participant'),
        sa.Column('team_id', sa.UUID(), nullable=True),
        sa.Column('assigned_cluster_id', sa.UUID(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['team_id'], ['teams.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['assigned_cluster_id'], ['clusters.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_team_id', 'users', ['team_id'], unique=False)

    # ==========================================================================
    # Pitching Tables
    # ==========================================================================

    op.create_table(
        'pitch_schedules',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('cluster_id', sa.UUID(), nullable=False),
        sa.Column('team_id', sa.UUID(), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('scheduled_start', sa.DateTime(timezone=True), nullable=False),
        sa.Column('actual_start', sa.DateTime(timezone=True), nullable=True),
        sa.Column('actual_end', sa.DateTime(timezone=True), nullable=True),
        sa.Column('paused_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('duration_seconds', sa.Integer(), nullable=False, server_default='180'),
        sa.Column('status', pitch_status_enum, nullable=False, server_default='scheduled'),
        sa.Column('is_completed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['cluster_id'], ['clusters.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['team_id'], ['teams.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('cluster_id', 'position', name='uq_pitch_schedules_cluster_position'),
    )
    op.create_index('ix_pitch_schedules_cluster_id', 'pitch_schedules', ['cluster_id'], unique=False)
    op.create_index('ix_pitch_schedules_team_id', 'pitch_schedules', ['team_id'], unique=False)
    op.create_index('ix_pitch_schedules_status', 'pitch_schedules', ['status'], unique=False)
    # At most one live pitch per cluster
    op.create_index(
        'uq_pitch_schedules_one_active',
        'pitch_schedules',
        ['cluster_id'],
        unique=True,
        postgresql_where=sa.text("status = 'in_progress'"),
        sqlite_where=sa.text("status = 'in_progress'"),
    )

    # Cluster pointer foreign keys
    op.create_foreign_key(
        'fk_clusters_current_pitching_team', 'clusters', 'teams',
        ['current_pitching_team_id'], ['id'], ondelete='SET NULL',
    )
    op.create_foreign_key(
        'fk_clusters_current_schedule', 'clusters', 'pitch_schedules',
        ['current_schedule_id'], ['id'], ondelete='SET NULL',
    )
    op.create_foreign_key(
        'fk_clusters_winner_team', 'clusters', 'teams',
        ['winner_team_id'], ['id'], ondelete='SET NULL',
    )

    # ==========================================================================
    # Market Tables
    # ==========================================================================

    op.create_table(
        'investments',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('investor_team_id', sa.UUID(), nullable=False),
        sa.Column('target_team_id', sa.UUID(), nullable=False),
        sa.Column('amount', sa.Numeric(precision=14, scale=2), nullable=False),
        sa.Column('status', investment_status_enum, nullable=False, server_default='draft'),
        sa.Column('reasoning', sa.Text(), nullable=True),
        sa.Column('confidence_level', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['investor_team_id'], ['teams.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['target_team_id'], ['teams.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('investor_team_id', 'target_team_id', name='uq_investments_investor_target'),
        sa.CheckConstraint('investor_team_id <> target_team_id', name='ck_investments_no_self_investment'),
        sa.CheckConstraint('amount >= 0', name='ck_investments_amount_non_negative'),
    )
    op.create_index('ix_investments_investor_team_id', 'investments', ['investor_team_id'], unique=False)
    op.create_index('ix_investments_target_team_id', 'investments', ['target_team_id'], unique=False)
    op.create_index('ix_investments_status', 'investments', ['status'], unique=False)

    op.create_table(
        'cluster_results',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('cluster_id', sa.UUID(), nullable=False),
        sa.Column('winner_team_id', sa.UUID(), nullable=True),
        sa.Column('total_investment_pool', sa.Numeric(precision=14, scale=2), nullable=False, server_default='0'),
        sa.Column('participating_teams', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('standings', sa.JSON(), nullable=False, server_default='[]'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['cluster_id'], ['clusters.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['winner_team_id'], ['teams.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('cluster_id'),
    )

    # ==========================================================================
    # Audit Tables
    # ==========================================================================

    op.create_table(
        'audit_logs',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('event_type', sa.String(length=100), nullable=False),
        sa.Column('actor_id', sa.UUID(), nullable=True),
        sa.Column('target_id', sa.UUID(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=False, server_default='{}'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_audit_logs_event_type', 'audit_logs', ['event_type'], unique=False)
    op.create_index('ix_audit_logs_actor_id', 'audit_logs', ['actor_id'], unique=False)
    op.create_index('ix_audit_logs_created_at', 'audit_logs', ['created_at'], unique=False)


def downgrade() -> None:
    op.drop_constraint('fk_clusters_winner_team', 'clusters', type_='foreignkey')
    op.drop_constraint('fk_clusters_current_schedule', 'clusters', type_='foreignkey')
    op.drop_constraint('fk_clusters_current_pitching_team', 'clusters', type_='foreignkey')

    # Drop tables in reverse order
    op.drop_table('audit_logs')
    op.drop_table('cluster_results')
    op.drop_table('investments')
    op.drop_table('pitch_schedules')
    op.drop_table('users')
    op.drop_table('teams')
    op.drop_table('clusters')

    # Drop enums
    op.execute("DROP TYPE IF EXISTS investmentstatus")
    op.execute("DROP TYPE IF EXISTS pitchstatus")
    op.execute("DROP TYPE IF EXISTS clusterstage")
    op.execute("DROP TYPE IF EXISTS userrole")
