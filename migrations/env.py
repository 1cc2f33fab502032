import logging
import os
from logging.config import fileConfig

from alembic import context
from flask import current_app
from sqlalchemy import create_engine

from stocklot import models  # noqa: F401  registers every table on the metadata
from stocklot.config import normalize_db_url

config = context.config
fileConfig(config.config_file_name)
logger = logging.getLogger('alembic.env')

migrate_ext = current_app.extensions['migrate']


def _engine():
    """The app's engine, unless ALEMBIC_DATABASE_URL points migrations elsewhere."""
    override = normalize_db_url(os.environ.get('ALEMBIC_DATABASE_URL'))
    if override:
        return create_engine(override)
    return migrate_ext.db.engine


def _skip_empty_autogenerate(context, revision, directives):
    if getattr(config.cmd_opts, 'autogenerate', False) and directives[0].upgrade_ops.is_empty():
        directives[:] = []
        logger.info('No changes in schema detected.')


def run_migrations_offline(engine):
    context.configure(
        url=engine.url.render_as_string(hide_password=False),
        target_metadata=migrate_ext.db.metadata,
        literal_binds=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online(engine):
    options = dict(migrate_ext.configure_args)
    options['transaction_per_migration'] = True
    if options.get('process_revision_directives') is None:
        options['process_revision_directives'] = _skip_empty_autogenerate

    with engine.connect() as connection:
        context.configure(connection=connection, target_metadata=migrate_ext.db.metadata, **options)
        with context.begin_transaction():
            context.run_migrations()


engine = _engine()
config.set_main_option('sqlalchemy.url', engine.url.render_as_string(hide_password=False).replace('%', '%%'))

if context.is_offline_mode():
    run_migrations_offline(engine)
else:
    run_migrations_online(engine)
