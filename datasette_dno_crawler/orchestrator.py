"""Operations exposed to the outside world; routes.py serves them over HTTP.

Malformed requests raise FatalRequestError here, before anything is scheduled.
"""
from .config import merge_settings
from .errors import FatalRequestError, NotFound
from .models import DATA_TYPES
from . import patterns, scheduler, sessions, targets
from .utils import domain_of, timestamp, transaction, utcnow

MIN_YEAR = 2000

def _validate(conn, target_key, year, data_types, priority):
    target = targets.get_target(conn, target_key)

    if isinstance(year, bool) or not isinstance(year, int) or not MIN_YEAR <= year <= utcnow().year + 1:
        raise FatalRequestError('invalid year: {!r}'.format(year))

    if isinstance(data_types, str):
        data_types = [data_types]

    data_types = list(dict.fromkeys(data_types or []))
    if not data_types:
        raise FatalRequestError('no data types requested')

    for data_type in data_types:
        if data_type not in DATA_TYPES:
            raise FatalRequestError('unknown data type: {!r}; expected one of {}'.format(data_type, ', '.join(DATA_TYPES)))

    if isinstance(priority, bool) or not isinstance(priority, int) or not 1 <= priority <= 10:
        raise FatalRequestError('priority must be an integer between 1 and 10, got {!r}'.format(priority))

    return target, data_types

def register_target(conn, key, name, website, aliases=()):
    return targets.register_target(conn, key, name, website, aliases)

def submit_request(conn, target_key, year, data_types, priority=5, created_by=None, config=None):
    """Ask for data; returns a session id.

    If an active session already covers every requested data type, its id is
    returned and the requester is recorded as a watcher. Otherwise a new
    session takes the uncovered types, and the requester watches the rest."""
    target, data_types = _validate(conn, target_key, year, data_types, priority)
    settings = merge_settings(config)
    watcher = created_by or 'anonymous'

    with transaction(conn):
        active = sessions.active_sessions(conn, target.key, year, data_types)
        uncovered = [data_type for data_type in data_types if data_type not in active]

        for session_id in dict.fromkeys(active.values()):
            sessions.add_watcher(conn, session_id, watcher)

        if not uncovered:
            return active[data_types[0]]

        # A finished session is never reopened; the new one warm-starts from the
        # patterns its predecessors left behind.
        session_id = sessions.create(
            conn,
            target.key,
            year,
            uncovered,
            priority=priority,
            created_by=created_by,
            parent_session_id=sessions.latest_finished_session(conn, target.key, year),
            config=settings,
        )

        scheduler.enqueue(
            conn,
            session_id,
            domain_of(target.website),
            priority=priority,
            max_retries=settings['max-retries'],
            max_execution_seconds=settings['job-timeout-seconds'],
        )

    return session_id

def get_session_status(conn, session_id):
    return sessions.snapshot(conn, session_id)

def get_session_events(conn, session_id):
    sessions.get_state(conn, session_id)
    return sessions.list_events(conn, session_id)

def cancel_session(conn, session_id):
    """Pause the session. An in-flight job notices at its next network call."""
    return sessions.pause(conn, session_id, message='cancelled')

def resume_session(conn, session_id):
    return sessions.resume(conn, session_id)

def annotate_session(conn, session_id, notes):
    sessions.annotate(conn, session_id, notes)
    return sessions.snapshot(conn, session_id)

def admin_review_pattern(conn, pattern_id, decision, notes=None):
    return patterns.admin_review(conn, pattern_id, decision, notes)

def override_pattern_confidence(conn, pattern_id, confidence, notes=None):
    return patterns.override_confidence(conn, pattern_id, confidence, notes)

def list_patterns(conn, target_key):
    targets.get_target(conn, target_key)
    return patterns.list_patterns(conn, target_key)

def list_review_queue(conn, include_resolved=False):
    sql = 'SELECT id, kind, session_id, job_id, reason, created_at, reported_at, resolved_at FROM dcr_review_queue'
    if not include_resolved:
        sql += ' WHERE resolved_at IS NULL'
    sql += ' ORDER BY id'

    rv = []
    for id, kind, session_id, job_id, reason, created_at, reported_at, resolved_at in conn.execute(sql):
        rv.append({
            'id': id,
            'kind': kind,
            'session_id': session_id,
            'job_id': job_id,
            'reason': reason,
            'created_at': created_at,
            'reported_at': reported_at,
            'resolved_at': resolved_at,
        })
    return rv

def resolve_review_item(conn, item_id):
    with transaction(conn):
        cur = conn.execute('UPDATE dcr_review_queue SET resolved_at = ? WHERE id = ? AND resolved_at IS NULL', [timestamp(), item_id])

        if cur.rowcount != 1:
            raise NotFound('no open review item: {}'.format(item_id))

def set_domain_limit(conn, domain, max_concurrent):
    if isinstance(max_concurrent, bool) or not isinstance(max_concurrent, int) or max_concurrent < 0:
        raise FatalRequestError('max_concurrent must be a non-negative integer, got {!r}'.format(max_concurrent))

    scheduler.set_domain_limit(conn, domain, max_concurrent)
