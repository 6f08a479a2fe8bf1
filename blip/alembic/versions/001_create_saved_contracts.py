"""Create saved contracts tables

Revision ID: 001
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'saved_contracts',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('contract_id', sa.String(length=56), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_saved_contracts_contract_id', 'saved_contracts', ['contract_id'], unique=True)

    op.create_table(
        'user_saved_contracts',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('user_id', sa.String(length=255), nullable=False),
        sa.Column(
            'saved_contract_id',
            sa.Integer(),
            sa.ForeignKey('saved_contracts.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('nickname', sa.String(length=100), nullable=True),
        sa.Column('is_default', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('user_id', 'saved_contract_id', name='uq_user_saved_contract'),
    )
    op.create_index('ix_user_saved_contracts_user_id', 'user_saved_contracts', ['user_id'])
    op.create_index(
        'ix_user_saved_contracts_user_default',
        'user_saved_contracts',
        ['user_id', 'is_default'],
    )


def downgrade() -> None:
    op.drop_index('ix_user_saved_contracts_user_default', table_name='user_saved_contracts')
    op.drop_index('ix_user_saved_contracts_user_id', table_name='user_saved_contracts')
    op.drop_table('user_saved_contracts')
    op.drop_index('ix_saved_contracts_contract_id', table_name='saved_contracts')
    op.drop_table('saved_contracts')
