############################################################
#
# mathchat - Math-focused Chat Service
#
# 001_initial_schema.py: Create conversations, chat_history,
#                        user_statistics, user_settings tables
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'conversations',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(255), nullable=False, server_default='New Conversation'),
        sa.Column('model_type', sa.String(20), nullable=True),
        sa.Column('message_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_pinned', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_conversations_user_updated', 'conversations', ['user_id', 'updated_at'])

    op.create_table(
        'chat_history',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('conversation_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('response', sa.Text(), nullable=False),
        sa.Column('model_type', sa.String(20), nullable=False),
        sa.Column('is_math_related', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(
            ['conversation_id'], ['conversations.id'],
            name='fk_chat_history_conversation_id', ondelete='CASCADE',
        ),
    )
    op.create_index('ix_chat_history_conv_created', 'chat_history', ['conversation_id', 'created_at'])

    op.create_table(
        'user_statistics',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('total_conversations', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_messages', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('math_questions_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('general_questions_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('api_model_uses', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('custom_model_uses', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('mistral_model_uses', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_active_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', name='uq_user_statistics_user_id'),
    )

    op.create_table(
        'user_settings',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('theme', sa.String(10), nullable=False, server_default='light'),
        sa.Column('language', sa.String(10), nullable=False, server_default='tr'),
        sa.Column('preferred_model', sa.String(20), nullable=False, server_default='api'),
        sa.Column('notifications_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', name='uq_user_settings_user_id'),
    )


def downgrade() -> None:
    op.drop_table('user_settings')
    op.drop_table('user_statistics')
    op.drop_index('ix_chat_history_conv_created', table_name='chat_history')
    op.drop_table('chat_history')
    op.drop_index('ix_conversations_user_updated', table_name='conversations')
    op.drop_table('conversations')
