from .schema import current_schema_version, schema
from .errors import SchemaError

_plugin_name = 'datasette-dno-crawler'

_enabled_databases = None

DEFAULT_SETTINGS = {
    # Strategy Selector: share of attempts spent exploring
    'epsilon': 0.1,
    # Quality Evaluator
    'quality-threshold': 0.7,
    'quality-weights': {
        'completeness': 0.5,
        'accuracy': 0.3,
        'consistency': 0.2,
    },
    # Extraction Pipeline: candidates below this are discarded
    'confidence-floor': 0.3,
    # Job Scheduler
    'max-retries': 3,
    'backoff-base-seconds': 30,
    'backoff-max-seconds': 3600,
    'job-timeout-seconds': 600,
    'lease-grace-seconds': 60,
    'domain-concurrency': 2,
    # Minutes a queued job waits before moving up one tier; None disables aging.
    'aging-minutes': None,
    'num-workers': 4,
    # Worker crawl limits, per attempt
    'max-depth': 2,
    'max-pages': 25,
}

def enabled_databases(datasette, empty_if_not_initialized=False):
    global _enabled_databases

    if not _enabled_databases is None:
        return _enabled_databases

    if empty_if_not_initialized:
        return []

    rv = []

    for db_name in datasette.databases:
        local_config = datasette.plugin_config(_plugin_name, db_name)

        if local_config is None:
            continue

        rv.append(db_name)

    _enabled_databases = rv
    return _enabled_databases

def default_settings():
    from .plugin import pm

    rv = {}
    for k, v in DEFAULT_SETTINGS.items():
        rv[k] = v

    # Plugins contribute defaults for the keys they own.
    for defaults in pm.hook.config_defaults():
        if defaults:
            rv.update(defaults)

    return rv

def merge_settings(overrides):
    rv = default_settings()

    for k, v in (overrides or {}).items():
        if k == 'quality-weights' and isinstance(v, dict):
            weights = dict(rv['quality-weights'])
            weights.update(v)
            rv[k] = weights
        else:
            rv[k] = v

    return rv

def get_settings(datasette, db_name):
    return merge_settings(datasette.plugin_config(_plugin_name, db_name) or {})

async def get_db_version(db):
    results = await db.execute('pragma user_version')
    for row in results:
        return row['user_version']

def ensure_wal_mode(conn):
    old_level = conn.isolation_level
    try:
        conn.isolation_level = None
        mode, = conn.execute('PRAGMA journal_mode=WAL').fetchone()
        if mode != 'wal':
            raise SchemaError('unable to set PRAGMA journal_mode=WAL on connection, got {}'.format(mode))
    finally:
        conn.isolation_level = old_level

def install_schema(conn):
    """Install the schema into an empty database; no-op when it is current."""
    v, = conn.execute("PRAGMA user_version").fetchone()

    if not v:
        print('Installing datasette-dno-crawler schema')
        conn.executescript(schema)
    elif v != current_schema_version:
        raise SchemaError('unsupported schema version: {} -- you may need to give datasette-dno-crawler its own database'.format(v))

async def ensure_schema(db):
    def ensure_schema_internal(conn):
        ensure_wal_mode(conn)
        install_schema(conn)

    await db.execute_write_fn(ensure_schema_internal, block=True)
    version = await get_db_version(db)

    if version != current_schema_version:
        raise SchemaError('unable to ensure schema in database {} (version={}; desired={}); please check that the database is mutable and not the _memory database'.format(db.name, version, current_schema_version))
