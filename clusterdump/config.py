import os


def _env_list(name, default):
    value = os.environ.get(name)
    if not value:
        return list(default)
    return [item.strip() for item in value.split(',') if item.strip()]


class Config:
    """Base configuration"""

    # Backup destination
    DUMP_DEST = os.environ.get('DUMP_DEST') or '/var/backups/mariadb'
    DUMP_EXPIRE_DAYS = int(os.environ.get('DUMP_EXPIRE_DAYS', 7))
    KEEP_DIRNAME = os.environ.get('KEEP_DIRNAME') or 'keep'
    HOST_IDENTITY = os.environ.get('HOST_IDENTITY')  # None = derived from hostname

    # Dump
    EXCLUDED_SCHEMAS = _env_list('EXCLUDED_SCHEMAS', ['information_schema', 'performance_schema'])
    COMPRESSION_PRESET = int(os.environ.get('COMPRESSION_PRESET', 1))
    MYSQLDUMP_BIN = os.environ.get('MYSQLDUMP_BIN') or 'mysqldump'

    # Encryption
    AES_PASSWORD_FILE = os.environ.get('AES_PASSWORD_FILE') or '/root/.pass.pass'
    ENCRYPTION_PBKDF2_ITERATIONS = int(os.environ.get('ENCRYPTION_PBKDF2_ITERATIONS', 0))

    # Database connection
    MYSQL_HOST = os.environ.get('MYSQL_HOST') or 'localhost'
    MYSQL_PORT = int(os.environ.get('MYSQL_PORT', 3306))
    MYSQL_USER = os.environ.get('MYSQL_USER')
    MYSQL_PASSWORD = os.environ.get('MYSQL_PASSWORD')
    MYSQL_DEFAULTS_FILE = os.environ.get('MYSQL_DEFAULTS_FILE') or '/root/.my.cnf'
    MYSQL_CONNECT_TIMEOUT = int(os.environ.get('MYSQL_CONNECT_TIMEOUT', 10))

    # Cluster lock (shared storage)
    LOCK_FILE = os.environ.get('LOCK_FILE') or '/mnt/shared/mariadb_backup.lock'
    LOCK_JITTER_MS = int(os.environ.get('LOCK_JITTER_MS', 100))
    LOCK_STALE_CHECK = os.environ.get('LOCK_STALE_CHECK', 'false').lower() == 'true'

    # Metrics
    METRICS_DIR = os.environ.get('METRICS_DIR') or '/var/lib/node_exporter'
    METRICS_FILENAME = os.environ.get('METRICS_FILENAME') or 'node_file_database_backup.prom'
    METRICS_RECENT_DIRS = int(os.environ.get('METRICS_RECENT_DIRS', 7))

    # Logging
    LOG_FILE = os.environ.get('LOG_FILE') or '/var/log/clusterdump.log'
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()
    LOG_MAX_BYTES = 10485760  # 10MB
    LOG_BACKUP_COUNT = 10

    # Scheduler
    BACKUP_CRON = os.environ.get('BACKUP_CRON') or '0 2 * * *'
    SCHEDULER_TIMEZONE = 'UTC'


class DevelopmentConfig(Config):
    """Development configuration"""
    LOG_LEVEL = 'DEBUG'

    # Use local data directory for development
    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    DATA_DIR = os.path.join(BASE_DIR, 'data')
    DUMP_DEST = os.path.join(DATA_DIR, 'dumps')
    LOCK_FILE = os.path.join(DATA_DIR, 'mariadb_backup.lock')
    METRICS_DIR = os.path.join(DATA_DIR, 'metrics')
    LOG_FILE = os.path.join(DATA_DIR, 'logs', 'clusterdump.log')
    AES_PASSWORD_FILE = os.path.join(DATA_DIR, '.pass.pass')


class TestingConfig(DevelopmentConfig):
    """Testing configuration"""
    LOCK_JITTER_MS = 0
    HOST_IDENTITY = 'testdb'
    MYSQL_DEFAULTS_FILE = None


class ProductionConfig(Config):
    """Production configuration"""
    pass


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': ProductionConfig
}


def get_config(config_name=None, **overrides) -> dict:
    """
    Build a configuration mapping for one run.

    Args:
        config_name: Key into ``config`` (defaults to $CLUSTERDUMP_ENV, then 'production')
        **overrides: Uppercase keys replacing the class defaults

    Returns:
        Dict of all uppercase settings

    Raises:
        ValueError: If config_name is unknown
    """
    if config_name is None:
        config_name = os.environ.get('CLUSTERDUMP_ENV', 'production')

    if config_name not in config:
        raise ValueError(
            f"Invalid configuration: {config_name}. "
            f"Valid options: {list(config.keys())}"
        )

    config_class = config[config_name]
    settings = {
        key: getattr(config_class, key)
        for key in dir(config_class)
        if key.isupper()
    }
    settings.update(overrides)
    return settings
