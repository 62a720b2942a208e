import os
import tempfile


class Config:
    """Base configuration"""

    # Flask
    # Get SECRET_KEY from environment, or read the persistent one from the data directory
    SECRET_KEY = os.environ.get('SECRET_KEY')
    if not SECRET_KEY:
        secret_file = os.environ.get('SECRET_KEY_FILE') or '/data/.secret_key'
        if os.path.exists(secret_file):
            with open(secret_file, 'r') as f:
                SECRET_KEY = f.read().strip()
        else:
            # Fallback for development mode - stored remote passwords become unreadable on restart
            import secrets
            SECRET_KEY = secrets.token_hex(32)
            print("WARNING: Using non-persistent SECRET_KEY. Set SECRET_KEY environment variable.")

    # Database
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:////data/keepsake.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Backups
    LOCAL_BACKUP_DIR = os.environ.get('LOCAL_BACKUP_DIR') or '/data/backups'
    DEFAULT_BACKUP_PREFIX = os.environ.get('BACKUP_PREFIX') or 'backup'
    DEFAULT_SCHEDULE_CRON = os.environ.get('BACKUP_SCHEDULE') or '0 2 * * *'
    DEFAULT_LOCAL_KEEP_COUNT = int(os.environ.get('LOCAL_KEEP_COUNT', 7))

    # Logging
    LOG_DIR = os.environ.get('LOG_DIR') or '/data/logs'

    # API access (unset = open API, e.g. behind the host's reverse proxy)
    API_TOKEN = os.environ.get('API_TOKEN')

    # Scheduler
    SCHEDULER_TIMEZONE = os.environ.get('SCHEDULER_TIMEZONE') or 'UTC'


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    SQLALCHEMY_ECHO = False

    # Use local data directory for development
    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    DATA_DIR = os.path.join(BASE_DIR, 'data')
    SQLALCHEMY_DATABASE_URI = f'sqlite:///{os.path.join(DATA_DIR, "keepsake.db")}'
    LOCAL_BACKUP_DIR = os.path.join(DATA_DIR, 'backups')
    LOG_DIR = os.path.join(DATA_DIR, 'logs')


class TestingConfig(DevelopmentConfig):
    """Test configuration (in-memory database, scheduler never started)"""
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    LOCAL_BACKUP_DIR = os.path.join(tempfile.gettempdir(), 'keepsake-test', 'backups')
    LOG_DIR = os.path.join(tempfile.gettempdir(), 'keepsake-test', 'logs')
    SECRET_KEY = 'test-secret-key'
    API_TOKEN = None
    SCHEDULER_ENABLED = False


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    SQLALCHEMY_ECHO = False


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': ProductionConfig
}
