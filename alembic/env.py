from sqlalchemy import create_engine, pool
from alembic import context
from smartshop.core.config import settings
from smartshop.db.session import Base
import smartshop.db.models  # noqa

target_metadata = Base.metadata

# shares the database with other services, each keeping its own version table
VERSION_TABLE = "alembic_version_shop"

def _options(**kw):
    return dict(target_metadata=target_metadata, version_table=VERSION_TABLE, compare_type=True, **kw)

def run_migrations_offline():
    context.configure(**_options(url=settings.POSTGRES_DSN, literal_binds=True, dialect_opts={"paramstyle": "named"}))
    with context.begin_transaction():
        context.run_migrations()

def run_migrations_online():
    engine = create_engine(settings.POSTGRES_DSN, poolclass=pool.NullPool)
    with engine.connect() as connection:
        context.configure(**_options(connection=connection))
        with context.begin_transaction():
            context.run_migrations()

if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
