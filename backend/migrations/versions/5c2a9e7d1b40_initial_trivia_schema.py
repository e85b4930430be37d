"""initial trivia schema: sessions, questions, teams, territories, players, answers

Revision ID: 5c2a9e7d1b40
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '5c2a9e7d1b40'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'admin',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('username', sa.String(length=64), nullable=False),
        sa.Column('password_hash', sa.String(length=256), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_admin_username', 'admin', ['username'], unique=True)

    op.create_table(
        'game_session',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('admin_id', sa.Integer(), nullable=True),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('session_type', sa.String(length=32), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('session_pin', sa.String(length=6), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.Column('config_duration', sa.Integer(), nullable=False),
        sa.Column('config_max_players_per_team', sa.Integer(), nullable=False),
        sa.Column('config_hex_grid_size', sa.Integer(), nullable=False),
        sa.Column('config_time_per_question', sa.Integer(), nullable=False),
        sa.Column('config_points_per_correct_answer', sa.Integer(), nullable=False),
        sa.Column('config_allow_skip', sa.Boolean(), nullable=False),
        sa.Column('config_speed_bonus', sa.Boolean(), nullable=False),
        sa.Column('current_question_index', sa.Integer(), nullable=True),
        sa.Column('question_started_at', sa.Float(), nullable=True),
        sa.Column('question_deadline', sa.Float(), nullable=True),
        sa.Column('started_at', sa.Float(), nullable=True),
        sa.Column('ends_at', sa.Float(), nullable=True),
        sa.Column('completed_at', sa.Float(), nullable=True),
        sa.ForeignKeyConstraint(['admin_id'], ['admin.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_game_session_status', 'game_session', ['status'])
    op.create_index('ix_game_session_session_pin', 'game_session', ['session_pin'])
    op.create_index('uq_game_session_active_pin', 'game_session', ['session_pin'], unique=True,
                    postgresql_where=sa.text("status <> 'completed'"),
                    sqlite_where=sa.text("status <> 'completed'"))

    op.create_table(
        'question',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('session_id', sa.Integer(), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('prompt', sa.Text(), nullable=False),
        sa.Column('options', sa.Text(), nullable=False),
        sa.Column('correct_index', sa.Integer(), nullable=False),
        sa.Column('time_limit', sa.Integer(), nullable=True),
        sa.Column('points', sa.Integer(), nullable=True),
        sa.Column('territory_id', sa.String(length=32), nullable=True),
        sa.ForeignKeyConstraint(['session_id'], ['game_session.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_question_session_id', 'question', ['session_id'])

    op.create_table(
        'registration_field',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('session_id', sa.Integer(), nullable=False),
        sa.Column('field_key', sa.String(length=64), nullable=False),
        sa.Column('label', sa.String(length=128), nullable=False),
        sa.Column('input_type', sa.String(length=16), nullable=False),
        sa.Column('enabled', sa.Boolean(), nullable=False),
        sa.Column('required', sa.Boolean(), nullable=False),
        sa.Column('placeholder', sa.String(length=256), nullable=True),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['session_id'], ['game_session.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_registration_field_session_id', 'registration_field', ['session_id'])

    op.create_table(
        'team',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('session_id', sa.Integer(), nullable=False),
        sa.Column('key', sa.String(length=32), nullable=False),
        sa.Column('name', sa.String(length=64), nullable=False),
        sa.Column('color', sa.String(length=16), nullable=True),
        sa.Column('icon', sa.String(length=16), nullable=True),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['session_id'], ['game_session.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_team_session_id', 'team', ['session_id'])

    op.create_table(
        'player',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('session_id', sa.Integer(), nullable=False),
        sa.Column('team_id', sa.Integer(), nullable=True),
        sa.Column('name', sa.String(length=64), nullable=False),
        sa.Column('email', sa.String(length=256), nullable=True),
        sa.Column('organization', sa.String(length=256), nullable=True),
        sa.Column('custom_fields', sa.Text(), nullable=True),
        sa.Column('score', sa.Integer(), nullable=False),
        sa.Column('streak', sa.Integer(), nullable=False),
        sa.Column('best_streak', sa.Integer(), nullable=False),
        sa.Column('questions_answered', sa.Integer(), nullable=False),
        sa.Column('correct_answers', sa.Integer(), nullable=False),
        sa.Column('rank', sa.Integer(), nullable=True),
        sa.Column('previous_rank', sa.Integer(), nullable=True),
        sa.Column('score_reached_at', sa.Float(), nullable=True),
        sa.Column('joined_at', sa.Float(), nullable=False),
        sa.Column('connected', sa.Boolean(), nullable=False),
        sa.ForeignKeyConstraint(['session_id'], ['game_session.id']),
        sa.ForeignKeyConstraint(['team_id'], ['team.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_player_session_id', 'player', ['session_id'])

    op.create_table(
        'territory',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('session_id', sa.Integer(), nullable=False),
        sa.Column('hex_id', sa.String(length=32), nullable=False),
        sa.Column('owner_team_id', sa.Integer(), nullable=True),
        sa.Column('claimed_by_player_id', sa.Integer(), nullable=True),
        sa.Column('claimed_at', sa.Float(), nullable=True),
        sa.ForeignKeyConstraint(['session_id'], ['game_session.id']),
        sa.ForeignKeyConstraint(['owner_team_id'], ['team.id']),
        sa.ForeignKeyConstraint(['claimed_by_player_id'], ['player.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('session_id', 'hex_id', name='uq_territory_session_hex'),
    )
    op.create_index('ix_territory_session_id', 'territory', ['session_id'])

    op.create_table(
        'answer',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('session_id', sa.Integer(), nullable=False),
        sa.Column('player_id', sa.Integer(), nullable=False),
        sa.Column('question_id', sa.Integer(), nullable=False),
        sa.Column('selected_index', sa.Integer(), nullable=True),
        sa.Column('correct', sa.Boolean(), nullable=False),
        sa.Column('timed_out', sa.Boolean(), nullable=False),
        sa.Column('skipped', sa.Boolean(), nullable=False),
        sa.Column('points_awarded', sa.Integer(), nullable=False),
        sa.Column('elapsed', sa.Float(), nullable=True),
        sa.Column('submitted_at', sa.Float(), nullable=False),
        sa.Column('claim_spent', sa.Boolean(), nullable=False),
        sa.ForeignKeyConstraint(['session_id'], ['game_session.id']),
        sa.ForeignKeyConstraint(['player_id'], ['player.id']),
        sa.ForeignKeyConstraint(['question_id'], ['question.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('player_id', 'question_id', name='uq_answer_player_question'),
    )
    op.create_index('ix_answer_session_id', 'answer', ['session_id'])

    op.create_table(
        'player_achievement',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('player_id', sa.Integer(), nullable=False),
        sa.Column('achievement_id', sa.String(length=32), nullable=False),
        sa.Column('unlocked_at', sa.Float(), nullable=False),
        sa.ForeignKeyConstraint(['player_id'], ['player.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('player_id', 'achievement_id', name='uq_player_achievement'),
    )
    op.create_index('ix_player_achievement_player_id', 'player_achievement', ['player_id'])

    op.create_table(
        'session_history',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('session_id', sa.Integer(), nullable=False),
        sa.Column('completed_at', sa.Float(), nullable=False),
        sa.Column('reason', sa.String(length=32), nullable=True),
        sa.Column('leaderboard', sa.Text(), nullable=False),
        sa.Column('team_standings', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['session_id'], ['game_session.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_session_history_session_id', 'session_history', ['session_id'])


def downgrade():
    for table in ('session_history', 'player_achievement', 'answer', 'territory', 'player',
                  'team', 'registration_field', 'question', 'game_session', 'admin'):
        op.drop_table(table)
