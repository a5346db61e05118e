"""create player and player_rating

Revision ID: 5c2a9d17e4b1
Revises:
Create Date: 2026-10-19 00:00:00
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '5c2a9d17e4b1'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)
    tables = set(insp.get_table_names())
    if 'player' not in tables:
        op.create_table(
            'player',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('username', sa.String(length=64), nullable=False),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        )
        op.create_index('ix_player_username', 'player', ['username'], unique=True)
    if 'player_rating' not in tables:
        op.create_table(
            'player_rating',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('player_id', sa.Integer(), sa.ForeignKey('player.id'), nullable=False),
            sa.Column('difficulty', sa.String(length=16), nullable=False),
            sa.Column('rating', sa.Integer(), nullable=False, server_default='1000'),
            sa.UniqueConstraint('player_id', 'difficulty', name='uq_player_rating_difficulty'),
        )
        op.create_index('ix_player_rating_player_id', 'player_rating', ['player_id'])


def downgrade():
    op.drop_index('ix_player_rating_player_id', table_name='player_rating')
    op.drop_table('player_rating')
    op.drop_index('ix_player_username', table_name='player')
    op.drop_table('player')
