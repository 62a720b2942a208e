"""
Database schema initialization for Keepsake.
"""

import logging
from sqlalchemy import inspect
from keepsake import db

logger = logging.getLogger(__name__)


def init_database_schema(app):
    """
    Create missing tables and the default settings row.

    Safe to call from multiple Gunicorn workers: another worker creating the
    tables or the settings row first is not an error.
    """
    with app.app_context():
        inspector = inspect(db.engine)
        existing_tables = inspector.get_table_names()

        if not existing_tables:
            logger.info("No tables found - creating initial database schema")

        try:
            db.create_all()
        except Exception as e:
            logger.error(f"Failed to create database schema: {e}")
            db.session.rollback()

        ensure_default_settings(app)


def ensure_default_settings(app):
    """
    Insert the settings row on first start, seeded from the app config.

    Args:
        app: Flask app instance
    """
    from keepsake.models import BackupSettings

    if BackupSettings.get() is not None:
        return

    settings = BackupSettings(
        enabled=True,
        prefix=app.config['DEFAULT_BACKUP_PREFIX'],
        schedule_cron=app.config['DEFAULT_SCHEDULE_CRON'],
        local_keep_count=app.config['DEFAULT_LOCAL_KEEP_COUNT']
    )
    db.session.add(settings)

    try:
        db.session.commit()
        logger.info(f"Created default backup settings (prefix: {settings.prefix})")
    except Exception as e:
        logger.error(f"Failed to create default settings: {e}")
        db.session.rollback()
