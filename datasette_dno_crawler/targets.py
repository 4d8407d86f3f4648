import json
from .errors import FatalRequestError
from .models import Target
from .utils import transaction

def _row_to_target(row):
    key, name, website, aliases = row
    return Target(key=key, name=name, website=website, aliases=tuple(json.loads(aliases)))

def register_target(conn, key, name, website, aliases=()):
    if not key or not name:
        raise FatalRequestError('target needs a key and a name')

    if not website or not (website.startswith('http://') or website.startswith('https://')):
        raise FatalRequestError('target {}: website must be an http(s) URL, got {!r}'.format(key, website))

    with transaction(conn):
        conn.execute(
            'INSERT INTO dcr_target(key, name, website, aliases) VALUES (?, ?, ?, ?) ON CONFLICT(key) DO UPDATE SET name = excluded.name, website = excluded.website, aliases = excluded.aliases',
            [key, name, website.rstrip('/'), json.dumps(list(aliases))]
        )

    return get_target(conn, key)

def find_target(conn, key):
    row = conn.execute('SELECT key, name, website, aliases FROM dcr_target WHERE key = ?', [key]).fetchone()

    if not row:
        return None

    return _row_to_target(row)

def get_target(conn, key):
    target = find_target(conn, key)

    if target is None:
        raise FatalRequestError('unknown target: {}'.format(key))

    return target
