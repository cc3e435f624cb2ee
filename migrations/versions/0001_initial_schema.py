"""
Initial schema: users with subscription state, books, period usage and
subscription requests
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0001_initial_schema'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'user',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(length=120), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=True),
        sa.Column('password_hash', sa.String(length=256), nullable=False),
        sa.Column('is_admin', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('subscription_plan', sa.String(length=20), nullable=False, server_default='none'),
        sa.Column('subscription_status', sa.String(length=20), nullable=False, server_default='none'),
        sa.Column('subscription_start', sa.DateTime(), nullable=True),
        sa.Column('subscription_end', sa.DateTime(), nullable=True),
        sa.Column('period_started_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_user_email', 'user', ['email'], unique=True)
    op.create_index('ix_user_subscription_plan', 'user', ['subscription_plan'])
    op.create_index('ix_user_subscription_status', 'user', ['subscription_status'])
    op.create_index('ix_user_subscription_end', 'user', ['subscription_end'])

    op.create_table(
        'book',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('author', sa.String(length=200), nullable=True),
        sa.Column('category', sa.String(length=100), nullable=True),
        sa.Column('tags', sa.JSON(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('is_premium', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('pdf_path', sa.String(length=255), nullable=False),
        sa.Column('thumbnail_path', sa.String(length=255), nullable=True),
        sa.Column('upload_date', sa.DateTime(), nullable=False),
        sa.Column('view_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('download_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('featured', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('featured_tagline', sa.String(length=200), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_book_title', 'book', ['title'])
    op.create_index('ix_book_author', 'book', ['author'])
    op.create_index('ix_book_category', 'book', ['category'])
    op.create_index('ix_book_is_premium', 'book', ['is_premium'])

    op.create_table(
        'period_usage',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('book_id', sa.Integer(), nullable=False),
        sa.Column('action', sa.String(length=20), nullable=False),
        sa.Column('consumed_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['user.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['book_id'], ['book.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'book_id', 'action', name='uq_period_usage_user_book_action'),
    )
    op.create_index('ix_period_usage_user_id', 'period_usage', ['user_id'])

    op.create_table(
        'subscription_request',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('plan', sa.String(length=20), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('note', sa.String(length=500), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('processed_at', sa.DateTime(), nullable=True),
        sa.Column('pending_key', sa.String(length=64), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['user.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        # one pending request per user+plan; processed rows carry a NULL key
        sa.UniqueConstraint('pending_key', name='uq_subscription_request_pending'),
    )
    op.create_index('ix_subscription_request_user_id', 'subscription_request', ['user_id'])
    op.create_index('ix_subscription_request_status', 'subscription_request', ['status'])


def downgrade():
    op.drop_index('ix_subscription_request_status', table_name='subscription_request')
    op.drop_index('ix_subscription_request_user_id', table_name='subscription_request')
    op.drop_table('subscription_request')
    op.drop_index('ix_period_usage_user_id', table_name='period_usage')
    op.drop_table('period_usage')
    op.drop_index('ix_book_is_premium', table_name='book')
    op.drop_index('ix_book_category', table_name='book')
    op.drop_index('ix_book_author', table_name='book')
    op.drop_index('ix_book_title', table_name='book')
    op.drop_table('book')
    op.drop_index('ix_user_subscription_end', table_name='user')
    op.drop_index('ix_user_subscription_status', table_name='user')
    op.drop_index('ix_user_subscription_plan', table_name='user')
    op.drop_index('ix_user_email', table_name='user')
    op.drop_table('user')
