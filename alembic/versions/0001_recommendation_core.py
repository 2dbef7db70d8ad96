"""Recommendation core: behaviors, derived vectors, experiments, significance, exposure metrics

Revision ID: 0001_recommendation_core
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa

revision = '0001_recommendation_core'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'ideas',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('title', sa.String(length=512), nullable=False),
        sa.Column('content', sa.Text(), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('category', sa.String(length=64), nullable=True),
        sa.Column('subreddit', sa.String(length=128), nullable=True),
        sa.Column('author', sa.String(length=128), nullable=True),
        sa.Column('user_id', sa.String(length=64), nullable=True),
        sa.Column('url', sa.String(length=1024), nullable=True),
        sa.Column('is_public', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_ideas_category', 'ideas', ['category'])
    op.create_index('ix_ideas_subreddit', 'ideas', ['subreddit'])
    op.create_index('ix_ideas_user_id', 'ideas', ['user_id'])
    op.create_index('ix_ideas_is_public', 'ideas', ['is_public'])
    op.create_index('ix_ideas_created_at', 'ideas', ['created_at'])
    op.create_index('ix_ideas_public_created', 'ideas', ['is_public', 'created_at'])

    op.create_table(
        'user_behaviors',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('idea_id', sa.String(length=36), nullable=False),
        sa.Column('action_type', sa.String(length=32), nullable=False),
        sa.Column('duration', sa.Float(), nullable=True),
        sa.Column('session_id', sa.String(length=64), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_user_behaviors_user_id', 'user_behaviors', ['user_id'])
    op.create_index('ix_user_behaviors_idea_id', 'user_behaviors', ['idea_id'])
    op.create_index('ix_user_behaviors_action_type', 'user_behaviors', ['action_type'])
    op.create_index('ix_user_behaviors_session_id', 'user_behaviors', ['session_id'])
    op.create_index('ix_user_behaviors_created_at', 'user_behaviors', ['created_at'])
    op.create_index('ix_behavior_user_ts', 'user_behaviors', ['user_id', 'created_at'])
    op.create_index('ix_behavior_action_ts', 'user_behaviors', ['action_type', 'created_at'])
    op.create_index('ix_behavior_idea_action', 'user_behaviors', ['idea_id', 'action_type'])

    op.create_table(
        'user_preference_vectors',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('category_weights', sa.JSON(), nullable=False),
        sa.Column('tag_preferences', sa.JSON(), nullable=False),
        sa.Column('complexity_preference', sa.Float(), nullable=False, server_default='0.5'),
        sa.Column('novelty_preference', sa.Float(), nullable=False, server_default='0.5'),
        sa.Column('interaction_frequency', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_updated', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_user_preference_vectors_user_id', 'user_preference_vectors', ['user_id'], unique=True)
    op.create_index('ix_user_preference_vectors_last_updated', 'user_preference_vectors', ['last_updated'])

    op.create_table(
        'idea_feature_vectors',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('idea_id', sa.String(length=36), nullable=False),
        sa.Column('category', sa.String(length=64), nullable=True),
        sa.Column('community', sa.String(length=128), nullable=True),
        sa.Column('complexity_score', sa.Float(), nullable=False, server_default='0.5'),
        sa.Column('popularity_score', sa.Float(), nullable=False, server_default='0'),
        sa.Column('novelty_score', sa.Float(), nullable=False, server_default='0'),
        sa.Column('last_updated', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_idea_feature_vectors_idea_id', 'idea_feature_vectors', ['idea_id'], unique=True)
    op.create_index('ix_idea_feature_vectors_category', 'idea_feature_vectors', ['category'])
    op.create_index('ix_idea_feature_vectors_community', 'idea_feature_vectors', ['community'])
    op.create_index('ix_idea_feature_vectors_last_updated', 'idea_feature_vectors', ['last_updated'])

    op.create_table(
        'recommendation_experiments',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('name', sa.String(length=256), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('hypothesis', sa.Text(), nullable=True),
        sa.Column('strategy_a', sa.String(length=32), nullable=False),
        sa.Column('strategy_b', sa.String(length=32), nullable=False),
        sa.Column('traffic_split', sa.Float(), nullable=False, server_default='0.5'),
        sa.Column('start_date', sa.DateTime(), nullable=False),
        sa.Column('end_date', sa.DateTime(), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='draft'),
        sa.Column('success_metric', sa.String(length=32), nullable=False, server_default='ctr'),
        sa.Column('minimum_sample_size', sa.Integer(), nullable=False, server_default='1000'),
        sa.Column('confidence_level', sa.Float(), nullable=False, server_default='0.95'),
        sa.Column('statistical_power', sa.Float(), nullable=False, server_default='0.8'),
        sa.Column('created_by', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_recommendation_experiments_name', 'recommendation_experiments', ['name'])
    op.create_index('ix_recommendation_experiments_status', 'recommendation_experiments', ['status'])
    op.create_index('ix_recommendation_experiments_start_date', 'recommendation_experiments', ['start_date'])
    op.create_index('ix_recommendation_experiments_created_at', 'recommendation_experiments', ['created_at'])
    op.create_index('ix_recommendation_experiments_updated_at', 'recommendation_experiments', ['updated_at'])

    op.create_table(
        'user_experiment_assignments',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('experiment_id', sa.String(length=36), nullable=False),
        sa.Column('variant', sa.String(length=1), nullable=False),
        sa.Column('assigned_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_user_experiment_assignments_user_id', 'user_experiment_assignments', ['user_id'])
    op.create_index('ix_user_experiment_assignments_experiment_id', 'user_experiment_assignments', ['experiment_id'])
    op.create_index('ix_user_experiment_assignments_assigned_at', 'user_experiment_assignments', ['assigned_at'])
    op.create_index('ux_user_experiment', 'user_experiment_assignments', ['user_id', 'experiment_id'], unique=True)

    op.create_table(
        'experiment_performance_logs',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('experiment_id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('variant', sa.String(length=1), nullable=False),
        sa.Column('action_taken', sa.String(length=32), nullable=False),
        sa.Column('recommended_idea_id', sa.String(length=36), nullable=False),
        sa.Column('position_in_list', sa.Integer(), nullable=True),
        sa.Column('session_id', sa.String(length=64), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_experiment_performance_logs_experiment_id', 'experiment_performance_logs', ['experiment_id'])
    op.create_index('ix_experiment_performance_logs_user_id', 'experiment_performance_logs', ['user_id'])
    op.create_index('ix_experiment_performance_logs_variant', 'experiment_performance_logs', ['variant'])
    op.create_index('ix_experiment_performance_logs_action_taken', 'experiment_performance_logs', ['action_taken'])
    op.create_index('ix_experiment_performance_logs_recommended_idea_id', 'experiment_performance_logs', ['recommended_idea_id'])
    op.create_index('ix_experiment_performance_logs_created_at', 'experiment_performance_logs', ['created_at'])
    op.create_index('ix_perf_exp_variant_action', 'experiment_performance_logs', ['experiment_id', 'variant', 'action_taken'])

    op.create_table(
        'statistical_significance_tests',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('experiment_id', sa.String(length=36), nullable=False),
        sa.Column('metric_name', sa.String(length=64), nullable=False),
        sa.Column('control_mean', sa.Float(), nullable=False),
        sa.Column('treatment_mean', sa.Float(), nullable=False),
        sa.Column('control_variance', sa.Float(), nullable=False),
        sa.Column('treatment_variance', sa.Float(), nullable=False),
        sa.Column('control_sample_size', sa.Integer(), nullable=False),
        sa.Column('treatment_sample_size', sa.Integer(), nullable=False),
        sa.Column('t_statistic', sa.Float(), nullable=False),
        sa.Column('p_value', sa.Float(), nullable=False),
        sa.Column('is_significant', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('confidence_interval_lower', sa.Float(), nullable=False),
        sa.Column('confidence_interval_upper', sa.Float(), nullable=False),
        sa.Column('effect_size', sa.Float(), nullable=False),
        sa.Column('power', sa.Float(), nullable=False),
        sa.Column('calculated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_statistical_significance_tests_experiment_id', 'statistical_significance_tests', ['experiment_id'])
    op.create_index('ix_statistical_significance_tests_metric_name', 'statistical_significance_tests', ['metric_name'])
    op.create_index('ix_statistical_significance_tests_calculated_at', 'statistical_significance_tests', ['calculated_at'])
    op.create_index('ux_significance_exp_metric', 'statistical_significance_tests', ['experiment_id', 'metric_name'], unique=True)

    op.create_table(
        'recommendation_metrics',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('recommendation_strategy', sa.String(length=32), nullable=False),
        sa.Column('served_strategy', sa.String(length=32), nullable=True),
        sa.Column('recommended_idea_ids', sa.JSON(), nullable=False),
        sa.Column('timestamp', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_recommendation_metrics_user_id', 'recommendation_metrics', ['user_id'])
    op.create_index('ix_recommendation_metrics_recommendation_strategy', 'recommendation_metrics', ['recommendation_strategy'])
    op.create_index('ix_recommendation_metrics_timestamp', 'recommendation_metrics', ['timestamp'])
    op.create_index('ix_rec_metric_strategy_ts', 'recommendation_metrics', ['recommendation_strategy', 'timestamp'])


def downgrade() -> None:
    op.drop_table('recommendation_metrics')
    op.drop_table('statistical_significance_tests')
    op.drop_table('experiment_performance_logs')
    op.drop_table('user_experiment_assignments')
    op.drop_table('recommendation_experiments')
    op.drop_table('idea_feature_vectors')
    op.drop_table('user_preference_vectors')
    op.drop_table('user_behaviors')
    op.drop_table('ideas')
