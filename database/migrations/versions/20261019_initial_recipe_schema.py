"""Initial schema - recipes, recipe_executions

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create tables for the recipe engine"""

    # Create recipes table
    op.create_table(
        'recipes',
        sa.Column('id', sa.String(length=255), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('stage_type', sa.String(length=100), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('nodes', postgresql.JSON(astext_type=sa.Text()), nullable=False),
        sa.Column('edges', postgresql.JSON(astext_type=sa.Text()), nullable=False),
        sa.Column('execution_config', postgresql.JSON(astext_type=sa.Text()), nullable=False),
        sa.Column('tags', postgresql.JSON(astext_type=sa.Text()), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_by', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_recipes_id'), 'recipes', ['id'], unique=False)
    op.create_index(op.f('ix_recipes_name'), 'recipes', ['name'], unique=False)
    op.create_index(op.f('ix_recipes_stage_type'), 'recipes', ['stage_type'], unique=False)
    op.create_index(op.f('ix_recipes_is_active'), 'recipes', ['is_active'], unique=False)

    # Create recipe_executions table
    # No FK to recipes: executions outlive soft-deleted recipes
    op.create_table(
        'recipe_executions',
        sa.Column('id', sa.String(length=255), nullable=False),
        sa.Column('recipe_id', sa.String(length=255), nullable=False),
        sa.Column('recipe_version', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(length=50), nullable=False),
        sa.Column('input', postgresql.JSON(astext_type=sa.Text()), nullable=True),
        sa.Column('execution_order', postgresql.JSON(astext_type=sa.Text()), nullable=True),
        sa.Column('execution_context', postgresql.JSON(astext_type=sa.Text()), nullable=False),
        sa.Column('result', postgresql.JSON(astext_type=sa.Text()), nullable=True),
        sa.Column('error', postgresql.JSON(astext_type=sa.Text()), nullable=True),
        sa.Column('error_type', sa.String(length=50), nullable=True),
        sa.Column('failed_node_id', sa.String(length=255), nullable=True),
        sa.Column('user_id', sa.String(length=255), nullable=True),
        sa.Column('project_id', sa.String(length=255), nullable=True),
        sa.Column('stage_id', sa.String(length=255), nullable=True),
        sa.Column('retry_of_execution_id', sa.String(length=255), nullable=True),
        sa.Column('resumed_from_node_id', sa.String(length=255), nullable=True),
        sa.Column('cancel_requested', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_recipe_executions_id'), 'recipe_executions', ['id'], unique=False)
    op.create_index(op.f('ix_recipe_executions_recipe_id'), 'recipe_executions', ['recipe_id'], unique=False)
    op.create_index(op.f('ix_recipe_executions_status'), 'recipe_executions', ['status'], unique=False)
    op.create_index(op.f('ix_recipe_executions_user_id'), 'recipe_executions', ['user_id'], unique=False)
    op.create_index(op.f('ix_recipe_executions_project_id'), 'recipe_executions', ['project_id'], unique=False)
    op.create_index(
        op.f('ix_recipe_executions_retry_of_execution_id'), 'recipe_executions',
        ['retry_of_execution_id'], unique=False
    )
    op.create_index(op.f('ix_recipe_executions_created_at'), 'recipe_executions', ['created_at'], unique=False)


def downgrade() -> None:
    """Drop all tables"""
    op.drop_index(op.f('ix_recipe_executions_created_at'), table_name='recipe_executions')
    op.drop_index(op.f('ix_recipe_executions_retry_of_execution_id'), table_name='recipe_executions')
    op.drop_index(op.f('ix_recipe_executions_project_id'), table_name='recipe_executions')
    op.drop_index(op.f('ix_recipe_executions_user_id'), table_name='recipe_executions')
    op.drop_index(op.f('ix_recipe_executions_status'), table_name='recipe_executions')
    op.drop_index(op.f('ix_recipe_executions_recipe_id'), table_name='recipe_executions')
    op.drop_index(op.f('ix_recipe_executions_id'), table_name='recipe_executions')
    op.drop_table('recipe_executions')

    op.drop_index(op.f('ix_recipes_is_active'), table_name='recipes')
    op.drop_index(op.f('ix_recipes_stage_type'), table_name='recipes')
    op.drop_index(op.f('ix_recipes_name'), table_name='recipes')
    op.drop_index(op.f('ix_recipes_id'), table_name='recipes')
    op.drop_table('recipes')
