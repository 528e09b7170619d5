import os
from logging.config import fileConfig

from alembic import context

# This is the Flask app and db setup
import sys
# Ensure the project root is in sys.path so app and extensions can be imported
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from app import create_app
from extensions import db as _db  # Import db from extensions
import crm_database  # noqa: F401  (registers models on the metadata)

# this is the Alembic Config object, which provides
# access to the values within the .ini file in use.
config = context.config

# alembic.ini lives in the project root, one level above this file
alembic_ini_path = os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'alembic.ini'))
fileConfig(alembic_ini_path, disable_existing_loggers=False)

# Metadata from the Flask-SQLAlchemy db instance, for 'autogenerate' support
target_metadata = _db.metadata

# Create the Flask app instance once
app = create_app()


def run_migrations_offline():
    """Run migrations in 'offline' mode.

    Configures the context with just the app's database URL, so SQL is
    emitted as a script instead of executed.
    """
    url = app.config['SQLALCHEMY_DATABASE_URI']
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=url.startswith('sqlite'),
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online():
    """Run migrations in 'online' mode against the app's engine."""
    with app.app_context():
        connectable = _db.engine

        with connectable.connect() as connection:
            context.configure(
                connection=connection,
                target_metadata=target_metadata,
                # SQLite cannot ALTER constraints in place
                render_as_batch=connection.dialect.name == 'sqlite',
            )

            with context.begin_transaction():
                context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
