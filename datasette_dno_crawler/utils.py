from datasette_dno_crawler.config import ensure_wal_mode
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from urllib.parse import urlparse
from selectolax.parser import HTMLParser
import hashlib
import sqlite3
import json
import types

TIMESTAMP_FORMAT = '%Y-%m-%d %H:%M:%S.%f'

_last_html = None
_last_html_parser = None

def get_html_parser(response):
    global _last_html
    global _last_html_parser

    text = response['text']
    if text == _last_html:
        return _last_html_parser

    _last_html_parser = HTMLParser(text)
    _last_html = text
    return _last_html_parser

def utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)

def timestamp(dt=None, seconds=0):
    """Format a UTC datetime (default: now) the way every dcr_* table stores it."""
    if dt is None:
        dt = utcnow()

    if seconds:
        dt = dt + timedelta(seconds=seconds)

    return dt.strftime(TIMESTAMP_FORMAT)

def content_hash(content):
    if isinstance(content, str):
        content = content.encode('utf-8')

    return hashlib.sha256(content or b'').hexdigest()

def domain_of(url):
    host = urlparse(url).hostname or ''
    if host.startswith('www.'):
        host = host[4:]
    return host

def header_value(response, name):
    for k, v in response.get('headers') or []:
        if k.lower() == name:
            return v

def is_textual(content_type):
    content_type = (content_type or '').lower()
    return content_type.startswith('text/') or 'json' in content_type or 'xml' in content_type

def is_html(response):
    return 'html' in (response.get('content_type') or '').lower()

def decode_text(content, content_type):
    if not is_textual(content_type) or not content:
        return ''

    return content.decode('utf-8', errors='replace')

@contextmanager
def transaction(conn):
    """A write transaction that takes the database write lock up front.

    Re-entrant: inside an already open transaction it just joins it."""
    if conn.in_transaction:
        yield conn
        return

    with conn:
        conn.execute('BEGIN IMMEDIATE')
        yield conn

def get_config_for_session(conn, session_id):
    res = conn.execute('SELECT config FROM dcr_session WHERE id = ?', [session_id])
    config, = res.fetchone()
    config = json.loads(config)
    return config

def lazy_connection_factory(db_map):
    conns = {}

    def get_db(name):
        if not name in db_map:
            raise Exception('unknown database name: {}'.format(name))

        if name in conns:
            return conns[name]

        conn = sqlite3.connect(db_map[name], timeout=30)
        conn.isolation_level = None
        ensure_wal_mode(conn)

        # See https://www.sqlite.org/pragma.html#pragma_synchronous; this is much faster,
        # at the expense of durability in the event of an unplanned shutdown.
        conn.execute('pragma synchronous = normal;')
        conns[name] = conn
        return conn

    return get_db

def module_from_path(path, name):
    # Stolen from https://github.com/simonw/datasette/blob/013496862f4d4b441ab61255242b838b24287607/datasette/utils/__init__.py#L741
    # Adapted from http://sayspy.blogspot.com/2011/07/how-to-import-module-from-just-file.html
    mod = types.ModuleType(name)
    mod.__file__ = path
    with open(path, "r") as file:
        code = compile(file.read(), path, "exec", dont_inherit=True)
    exec(code, mod.__dict__)
    return mod
