"""Session Tracker: the state machine around one crawl request.

    queued -> initializing -> [searching ->] crawling -> extracting -> completed

Crawling can go back to searching for more leads. Working states fall back
to queued when an attempt is retried or another strategy is scheduled.
Anything not yet finished can fail, give up as low_confidence, or be paused;
a paused session resumes to the state it was paused in. completed, failed
and low_confidence are final: only admin notes can still change.
"""
import json
import uuid
from .errors import Cancelled, InvalidTransition, NotFound
from .models import CrawlSession, SessionState, TERMINAL_STATES
from . import scheduler
from .utils import timestamp, transaction

QUEUED = SessionState.QUEUED
INITIALIZING = SessionState.INITIALIZING
SEARCHING = SessionState.SEARCHING
CRAWLING = SessionState.CRAWLING
EXTRACTING = SessionState.EXTRACTING
COMPLETED = SessionState.COMPLETED
FAILED = SessionState.FAILED
LOW_CONFIDENCE = SessionState.LOW_CONFIDENCE
PAUSED = SessionState.PAUSED

TRANSITIONS = {
    QUEUED: (INITIALIZING,),
    INITIALIZING: (SEARCHING, CRAWLING, QUEUED),
    SEARCHING: (CRAWLING, QUEUED),
    CRAWLING: (EXTRACTING, SEARCHING, QUEUED),
    EXTRACTING: (COMPLETED, QUEUED),
}

STATE_PROGRESS = {
    INITIALIZING: 5,
    SEARCHING: 20,
    CRAWLING: 40,
    EXTRACTING: 75,
    COMPLETED: 100,
    LOW_CONFIDENCE: 100,
}

def can_transition(from_state, to_state):
    if from_state in TERMINAL_STATES:
        return False

    # Giving up is always possible.
    if to_state in (FAILED, LOW_CONFIDENCE):
        return True

    if to_state == PAUSED:
        return from_state != PAUSED

    return to_state in TRANSITIONS.get(from_state, ())

def log_event(conn, session_id, event, message=None, level='info', from_state=None, to_state=None, context=None):
    conn.execute(
        'INSERT INTO dcr_session_event(session_id, created_at, level, event, from_state, to_state, message, context) VALUES (?, ?, ?, ?, ?, ?, ?, ?)',
        [
            session_id,
            timestamp(),
            level,
            event,
            from_state.value if from_state else None,
            to_state.value if to_state else None,
            message,
            json.dumps(context or {}, sort_keys=True),
        ]
    )

def list_events(conn, session_id):
    rows = conn.execute('SELECT created_at, level, event, from_state, to_state, message, context FROM dcr_session_event WHERE session_id = ? ORDER BY id', [session_id]).fetchall()

    rv = []
    for created_at, level, event, from_state, to_state, message, context in rows:
        rv.append({
            'created_at': created_at,
            'level': level,
            'event': event,
            'from_state': from_state,
            'to_state': to_state,
            'message': message,
            'context': json.loads(context),
        })
    return rv

def create(conn, target_key, year, data_types, priority=5, created_by=None, parent_session_id=None, config=None):
    """Create a queued session claiming `data_types` for (target_key, year).

    Raises sqlite3.IntegrityError if another active session already claims one
    of them."""
    session_id = str(uuid.uuid4())

    with transaction(conn):
        conn.execute(
            'INSERT INTO dcr_session(id, target_key, year, requested_data_types, priority, created_by, parent_session_id, config, created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)',
            [
                session_id,
                target_key,
                year,
                json.dumps(list(data_types)),
                priority,
                created_by,
                parent_session_id,
                json.dumps(config or {}, sort_keys=True),
                timestamp(),
                timestamp(),
            ]
        )

        for data_type in data_types:
            conn.execute(
                'INSERT INTO dcr_session_data_type(session_id, target_key, year, data_type) VALUES (?, ?, ?, ?)',
                [session_id, target_key, year, data_type]
            )

        context = {'data_types': list(data_types), 'priority': priority}
        if parent_session_id:
            context['parent_session_id'] = parent_session_id
        log_event(conn, session_id, 'created', to_state=QUEUED, context=context)

    print('session {}: created for {} {} {}'.format(session_id, target_key, year, ', '.join(data_types)))
    return session_id

def get_state(conn, session_id):
    row = conn.execute('SELECT state FROM dcr_session WHERE id = ?', [session_id]).fetchone()

    if not row:
        raise NotFound('unknown session: {}'.format(session_id))

    return SessionState(row[0])

def transition(conn, session_id, to_state, message=None, context=None, phase=None, level='info'):
    """Move a session to `to_state`, or raise InvalidTransition."""
    to_state = SessionState(to_state)

    with transaction(conn):
        row = conn.execute('SELECT state, progress_percentage FROM dcr_session WHERE id = ?', [session_id]).fetchone()

        if not row:
            raise NotFound('unknown session: {}'.format(session_id))

        from_state = SessionState(row[0])
        progress = row[1]

        if not can_transition(from_state, to_state):
            raise InvalidTransition(session_id, from_state.value, to_state.value)

        progress = max(progress, STATE_PROGRESS.get(to_state, 0))
        now = timestamp()

        if to_state == PAUSED:
            conn.execute(
                'UPDATE dcr_session SET state = ?, paused_from = ?, paused_progress = ?, current_phase = ?, updated_at = ? WHERE id = ?',
                [to_state.value, from_state.value, progress, phase or 'paused', now, session_id]
            )
        else:
            conn.execute(
                'UPDATE dcr_session SET state = ?, progress_percentage = ?, current_phase = ?, updated_at = ?, finished_at = ? WHERE id = ?',
                [to_state.value, progress, phase or to_state.value, now, now if to_state.terminal else None, session_id]
            )

        log_event(conn, session_id, 'transition', message=message, level=level, from_state=from_state, to_state=to_state, context=context)

        if to_state.terminal:
            conn.execute('UPDATE dcr_session_data_type SET active = false WHERE session_id = ?', [session_id])
            scheduler.archive_session_jobs(conn, session_id)

    print('session {}: {} -> {}{}'.format(session_id, from_state.value, to_state.value, ': ' + message if message else ''))
    return to_state

def requeue(conn, session_id, message=None, level='info'):
    """Send a working session back to queued to wait for its next job."""
    with transaction(conn):
        state = get_state(conn, session_id)

        # A paused session keeps waiting for resume; its job is queued either way.
        if state in (QUEUED, PAUSED):
            log_event(conn, session_id, 'requeued', message=message, level=level)
            return state

        return transition(conn, session_id, QUEUED, message=message, level=level, phase='waiting')

def pause(conn, session_id, message=None):
    return transition(conn, session_id, PAUSED, message=message)

def resume(conn, session_id):
    """Return a paused session to the state, and progress, it was paused in."""
    with transaction(conn):
        row = conn.execute('SELECT state, paused_from, paused_progress FROM dcr_session WHERE id = ?', [session_id]).fetchone()

        if not row:
            raise NotFound('unknown session: {}'.format(session_id))

        state, paused_from, paused_progress = row
        if state != PAUSED.value:
            raise InvalidTransition(session_id, state, 'resumed')

        to_state = SessionState(paused_from)
        conn.execute(
            'UPDATE dcr_session SET state = ?, progress_percentage = ?, current_phase = ?, paused_from = NULL, paused_progress = NULL, updated_at = ? WHERE id = ?',
            [to_state.value, paused_progress, to_state.value, timestamp(), session_id]
        )
        log_event(conn, session_id, 'resumed', from_state=PAUSED, to_state=to_state)

    print('session {}: resumed to {}'.format(session_id, to_state.value))
    return to_state

def annotate(conn, session_id, notes):
    with transaction(conn):
        cur = conn.execute('UPDATE dcr_session SET admin_notes = ?, updated_at = ? WHERE id = ?', [notes, timestamp(), session_id])

        if cur.rowcount != 1:
            raise NotFound('unknown session: {}'.format(session_id))

        log_event(conn, session_id, 'annotated', message=notes)

def begin_attempt(conn, session_id):
    """Put a session whose job was just leased into initializing."""
    with transaction(conn):
        check_cancelled(conn, session_id)
        state = get_state(conn, session_id)

        if state not in (QUEUED, INITIALIZING):
            transition(conn, session_id, QUEUED, message='restarting attempt')
            state = QUEUED

        if state == QUEUED:
            transition(conn, session_id, INITIALIZING)

def check_cancelled(conn, session_id):
    """Raise Cancelled if the session was paused or finished under us."""
    state = get_state(conn, session_id)

    if state == PAUSED or state.terminal:
        raise Cancelled('session {} is {}'.format(session_id, state.value))

def add_watcher(conn, session_id, watcher):
    with transaction(conn):
        conn.execute('INSERT OR IGNORE INTO dcr_session_watcher(session_id, watcher) VALUES (?, ?)', [session_id, watcher])
        log_event(conn, session_id, 'watcher_added', message=watcher)

def active_sessions(conn, target_key, year, data_types):
    """data_type -> session_id of the active session claiming it."""
    rv = {}
    for data_type in data_types:
        row = conn.execute(
            'SELECT session_id FROM dcr_session_data_type WHERE active AND target_key = ? AND year = ? AND data_type = ?',
            [target_key, year, data_type]
        ).fetchone()

        if row:
            rv[data_type] = row[0]

    return rv

def latest_finished_session(conn, target_key, year):
    row = conn.execute(
        "SELECT id FROM dcr_session WHERE target_key = ? AND year = ? AND state IN ('completed', 'failed', 'low_confidence') ORDER BY finished_at DESC, created_at DESC LIMIT 1",
        [target_key, year]
    ).fetchone()

    if row:
        return row[0]

def mark_satisfied(conn, session_id, data_type, candidate_id):
    with transaction(conn):
        conn.execute(
            'UPDATE dcr_session_data_type SET satisfied_by = ? WHERE session_id = ? AND data_type = ?',
            [candidate_id, session_id, data_type]
        )
        log_event(conn, session_id, 'satisfied', message=data_type, context={'candidate_id': candidate_id})

def unsatisfied_data_types(conn, session_id):
    rows = conn.execute('SELECT data_type FROM dcr_session_data_type WHERE session_id = ? AND satisfied_by IS NULL ORDER BY data_type', [session_id]).fetchall()
    return [row[0] for row in rows]

def snapshot(conn, session_id):
    row = conn.execute(
        'SELECT id, target_key, year, requested_data_types, state, priority, progress_percentage, current_phase, parent_session_id, created_by, paused_from, admin_notes, created_at, updated_at FROM dcr_session WHERE id = ?',
        [session_id]
    ).fetchone()

    if not row:
        raise NotFound('unknown session: {}'.format(session_id))

    id, target_key, year, requested_data_types, state, priority, progress, phase, parent_session_id, created_by, paused_from, admin_notes, created_at, updated_at = row

    satisfied = [r[0] for r in conn.execute('SELECT data_type FROM dcr_session_data_type WHERE session_id = ? AND satisfied_by IS NOT NULL ORDER BY data_type', [session_id])]
    watchers = [r[0] for r in conn.execute('SELECT watcher FROM dcr_session_watcher WHERE session_id = ? ORDER BY created_at, watcher', [session_id])]

    return CrawlSession(
        session_id=id,
        target_key=target_key,
        year=year,
        requested_data_types=json.loads(requested_data_types),
        state=SessionState(state),
        priority=priority,
        progress_percentage=progress,
        current_phase=phase,
        parent_session_id=parent_session_id,
        created_by=created_by,
        paused_from=SessionState(paused_from) if paused_from else None,
        satisfied_data_types=satisfied,
        watchers=watchers,
        admin_notes=admin_notes,
        created_at=created_at,
        updated_at=updated_at,
    )
