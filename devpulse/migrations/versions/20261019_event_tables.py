"""Create file_events and test_status tables.

Tables created by ``init_db`` before migrations were adopted are left in
place, so the baseline can be stamped onto an existing database.
"""

from alembic import op
import sqlalchemy as sa

revision = '20261019_event_tables'
down_revision = None
branch_labels = None
depends_on = None

DOCUMENT_COLUMNS = (
    'test_status',
    'project_info',
    'git_info',
    'test_runner_info',
    'environment',
    'execution',
)


def _table_names(bind):
    inspector = sa.inspect(bind)
    return set(inspector.get_table_names())


def upgrade() -> None:
    tables = _table_names(op.get_bind())

    if 'file_events' not in tables:
        op.create_table(
            'file_events',
            sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column('file_name', sa.String(length=1024), nullable=False),
            sa.Column('timestamp', sa.String(length=64), nullable=False),
        )

    if 'test_status' not in tables:
        op.create_table(
            'test_status',
            sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column('user', sa.String(length=200), nullable=False),
            sa.Column('timestamp', sa.String(length=64), nullable=False),
            *[sa.Column(name, sa.Text(), nullable=True) for name in DOCUMENT_COLUMNS],
        )
        op.create_index('ix_test_status_user_ts', 'test_status', ['user', 'timestamp'])
        op.create_index('ix_test_status_ts', 'test_status', ['timestamp'])


def downgrade() -> None:
    op.drop_index('ix_test_status_ts', table_name='test_status')
    op.drop_index('ix_test_status_user_ts', table_name='test_status')
    op.drop_table('test_status')
    op.drop_table('file_events')
