from ..hookspecs import hookimpl
from ..utils import decode_text, domain_of, timestamp, transaction
from ..zstd import load_content, store_content
import json

FETCH_CACHE_MAX_AGE = 'fetch-cache-max-age'

@hookimpl
def config_defaults():
    # Seconds; 0 turns the cache off.
    return {
        FETCH_CACHE_MAX_AGE: 86400,
    }

@hookimpl(trylast=True)
def fetch_cached_url(conn, config, url):
    max_age = config.get(FETCH_CACHE_MAX_AGE)

    if not max_age:
        return None

    row = conn.execute(
        'SELECT l.final_url, l.status_code, l.headers, l.content_hash, l.fetched_at, c.content_type FROM dcr_fetch_log l JOIN dcr_fetch_cache c ON c.content_hash = l.content_hash WHERE l.url = ? AND l.fetched_at >= ? ORDER BY l.fetched_at DESC LIMIT 1',
        [url, timestamp(seconds=-max_age)]
    ).fetchone()

    if not row:
        return None

    final_url, status_code, headers, content_hash, fetched_at, content_type = row
    content = load_content(conn, content_hash)

    return {
        'url': url,
        'final_url': final_url,
        'fetched_at': fetched_at,
        'headers': json.loads(headers),
        'status_code': status_code,
        'content_type': content_type,
        'content': content,
        'text': decode_text(content, content_type),
        'content_hash': content_hash,
    }

@hookimpl()
def after_fetch_url(conn, config, url, response, fresh):
    if not fresh:
        return

    # Don't store entries if we're disabled.
    if not config.get(FETCH_CACHE_MAX_AGE):
        return

    # Errors are worth fetching again next time.
    if response['status_code'] < 200 or response['status_code'] > 299:
        return

    content = response.get('content')
    if content is None:
        content = (response.get('text') or '').encode('utf-8')

    with transaction(conn):
        store_content(conn, response['content_hash'], content, response.get('content_type'))
        conn.execute(
            'INSERT INTO dcr_fetch_log(url, final_url, host, status_code, content_hash, headers, fetched_at) VALUES (?, ?, ?, ?, ?, ?, ?)',
            [
                url,
                response.get('final_url') or url,
                domain_of(url),
                response['status_code'],
                response['content_hash'],
                json.dumps(response.get('headers') or []),
                response.get('fetched_at') or timestamp(),
            ]
        )
