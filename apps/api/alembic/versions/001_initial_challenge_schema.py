"""initial challenge progression schema

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

Athletes, the challenge catalog, per-athlete challenge state, activities,
achievements and rolling performance analytics. Portable across Postgres
and SQLite.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

NOW = sa.text('CURRENT_TIMESTAMP')


def upgrade() -> None:
    op.create_table(
        'athlete',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.Column('email', sa.Text(), nullable=True),
        sa.Column('athlete_name', sa.Text(), nullable=False),
        sa.Column('age', sa.Integer(), nullable=True),
        sa.Column('school_club', sa.Text(), nullable=True),
        sa.Column('year_joined', sa.Integer(), nullable=False),
        sa.UniqueConstraint('email', name='uq_athlete_email'),
    )
    op.create_index('ix_athlete_school_club', 'athlete', ['school_club'])

    op.create_table(
        'challenge',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('title', sa.Text(), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('type', sa.String(16), nullable=False),
        sa.Column('is_active', sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column('order_index', sa.Integer(), nullable=False),
        sa.Column('points_reward', sa.Integer(), server_default='100', nullable=False),
        sa.Column('target_distance_km', sa.Numeric(8, 2), nullable=True),
        sa.Column('target_time_s', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.CheckConstraint(
            "type IN ('distance', 'drill', 'form', 'endurance')",
            name='ck_challenge_type',
        ),
    )
    op.create_index('ix_challenge_type_order', 'challenge', ['type', 'order_index'])

    op.create_table(
        'user_challenge',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('athlete_id', sa.Integer(), sa.ForeignKey('athlete.id'), nullable=False),
        sa.Column('challenge_id', sa.Integer(), sa.ForeignKey('challenge.id'), nullable=False),
        sa.Column('status', sa.String(16), server_default='locked', nullable=False),
        sa.Column('attempts', sa.Integer(), server_default='0', nullable=False),
        sa.Column('best_time_s', sa.Integer(), nullable=True),
        sa.Column('best_pace_min_per_km', sa.Numeric(6, 2), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('points', sa.Integer(), server_default='0', nullable=False),
        sa.Column('year_earned', sa.Integer(), nullable=False),
        sa.UniqueConstraint('athlete_id', 'challenge_id', name='uq_user_challenge_athlete_challenge'),
        sa.CheckConstraint(
            "status IN ('locked', 'available', 'in_progress', 'completed')",
            name='ck_user_challenge_status',
        ),
    )
    op.create_index('ix_user_challenge_athlete_id', 'user_challenge', ['athlete_id'])
    op.create_index('ix_user_challenge_challenge_id', 'user_challenge', ['challenge_id'])

    op.create_table(
        'activity',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('athlete_id', sa.Integer(), sa.ForeignKey('athlete.id'), nullable=False),
        sa.Column('challenge_id', sa.Integer(), sa.ForeignKey('challenge.id'), nullable=True),
        sa.Column('distance_km', sa.Numeric(8, 2), nullable=False),
        sa.Column('duration_s', sa.Integer(), nullable=False),
        sa.Column('pace_min_per_km', sa.Numeric(6, 2), nullable=False),
        sa.Column('calories', sa.Integer(), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.CheckConstraint('distance_km > 0', name='ck_activity_distance_positive'),
        sa.CheckConstraint('duration_s > 0', name='ck_activity_duration_positive'),
    )
    op.create_index('ix_activity_athlete_id', 'activity', ['athlete_id'])
    op.create_index('ix_activity_challenge_id', 'activity', ['challenge_id'])

    op.create_table(
        'achievement',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('athlete_id', sa.Integer(), sa.ForeignKey('athlete.id'), nullable=False),
        sa.Column('challenge_id', sa.Integer(), sa.ForeignKey('challenge.id'), nullable=True),
        sa.Column('type', sa.String(32), nullable=False),
        sa.Column('title', sa.Text(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('earned_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False),
    )
    op.create_index('ix_achievement_athlete_id', 'achievement', ['athlete_id'])

    op.create_table(
        'athlete_performance_analytics',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('athlete_id', sa.Integer(), sa.ForeignKey('athlete.id'), nullable=False),
        sa.Column('avg_completion_rate', sa.Numeric(5, 2), server_default='80', nullable=False),
        sa.Column('avg_attempt_count', sa.Numeric(6, 2), server_default='1', nullable=False),
        sa.Column('recent_trend', sa.String(16), server_default='stable', nullable=False),
        sa.Column('adaptive_level', sa.Numeric(4, 2), server_default='1', nullable=False),
        sa.Column('total_challenges_completed', sa.Integer(), server_default='0', nullable=False),
        sa.Column('total_challenges_attempted', sa.Integer(), server_default='0', nullable=False),
        sa.Column('last_analysis_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False),
    )
    op.create_index(
        'ix_athlete_performance_analytics_athlete_id',
        'athlete_performance_analytics',
        ['athlete_id'],
        unique=True,
    )


def downgrade() -> None:
    op.drop_index('ix_athlete_performance_analytics_athlete_id', table_name='athlete_performance_analytics')
    op.drop_table('athlete_performance_analytics')
    op.drop_index('ix_achievement_athlete_id', table_name='achievement')
    op.drop_table('achievement')
    op.drop_index('ix_activity_challenge_id', table_name='activity')
    op.drop_index('ix_activity_athlete_id', table_name='activity')
    op.drop_table('activity')
    op.drop_index('ix_user_challenge_challenge_id', table_name='user_challenge')
    op.drop_index('ix_user_challenge_athlete_id', table_name='user_challenge')
    op.drop_table('user_challenge')
    op.drop_index('ix_challenge_type_order', table_name='challenge')
    op.drop_table('challenge')
    op.drop_index('ix_athlete_school_club', table_name='athlete')
    op.drop_table('athlete')
