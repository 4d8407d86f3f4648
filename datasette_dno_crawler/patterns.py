"""Pattern Store: per-target strategies with Laplace-smoothed confidence.

Confidence is (successes + 1) / (successes + failures + 2). It is recomputed by
the same statement that bumps the counters, so concurrent workers recording
outcomes for the same pattern can't lose each other's updates.

Rows are never deleted; a pattern that stops working just sinks.
"""
import hashlib
import json
from .errors import FatalRequestError, NotFound
from .models import Pattern, PATTERN_TYPES, ReviewState
from .utils import timestamp, transaction

# Learned lists kept in pattern metadata are capped to their most recent entries.
MAX_LEARNED = 20

PATTERN_COLUMNS = 'id, target_key, pattern_type, signature, confidence, success_count, failure_count, avg_success_latency, last_success_at, last_failure_at, review_state, review_notes, definition, metadata'

def _row_to_pattern(row):
    values = list(row)
    values[10] = ReviewState(values[10])
    values[12] = json.loads(values[12])
    values[13] = json.loads(values[13])
    return Pattern(*values)

def pattern_signature(pattern_type, definition=None):
    obj = dict(definition or {})
    obj['pattern_type'] = pattern_type
    canonical = json.dumps(obj, sort_keys=True, separators=(',', ':'))
    return hashlib.sha1(canonical.encode('utf-8')).hexdigest()

def laplace(success_count, failure_count):
    return (success_count + 1) / (success_count + failure_count + 2)

def record_outcome(conn, signature, target_key, success, latency, pattern_type=None, definition=None, now=None):
    """Count one success or failure against a pattern, creating it on first use.

    Returns the updated Pattern."""
    successes = 1 if success else 0
    failures = 0 if success else 1
    now_ts = timestamp(now)

    if pattern_type is not None and pattern_type not in PATTERN_TYPES:
        raise ValueError('unknown pattern type: {}'.format(pattern_type))

    with transaction(conn):
        if pattern_type is None:
            existing = find_by_signature(conn, target_key, signature)

            if existing is None:
                raise NotFound('no pattern {} for {}, and no definition to create it from'.format(signature, target_key))

            pattern_type = existing.pattern_type
            definition = existing.definition

        # In an UPDATE, column references on the right-hand side see the old row.
        conn.execute(
            """
            INSERT INTO dcr_pattern(target_key, pattern_type, signature, definition, success_count, failure_count, confidence, avg_success_latency, last_success_at, last_failure_at, created_at, updated_at)
            VALUES (:target_key, :pattern_type, :signature, :definition, :s, :f, (:s + 1.0) / (:s + :f + 2.0), CASE WHEN :s = 1 THEN :latency END, CASE WHEN :s = 1 THEN :now END, CASE WHEN :f = 1 THEN :now END, :now, :now)
            ON CONFLICT(target_key, signature) DO UPDATE SET
              success_count = success_count + :s,
              failure_count = failure_count + :f,
              confidence = (success_count + :s + 1.0) / (success_count + failure_count + :s + :f + 2.0),
              avg_success_latency = CASE WHEN :s = 1 THEN (COALESCE(avg_success_latency, 0) * success_count + :latency) / (success_count + 1) ELSE avg_success_latency END,
              last_success_at = CASE WHEN :s = 1 THEN :now ELSE last_success_at END,
              last_failure_at = CASE WHEN :f = 1 THEN :now ELSE last_failure_at END,
              updated_at = :now
            """,
            {
                'target_key': target_key,
                'pattern_type': pattern_type,
                'signature': signature,
                'definition': json.dumps(definition or {}, sort_keys=True),
                's': successes,
                'f': failures,
                'latency': latency,
                'now': now_ts,
            }
        )

        return find_by_signature(conn, target_key, signature)

def record_performance(conn, pattern_id, session_id, job_id, success, latency, quality_score=None, error_message=None):
    with transaction(conn):
        conn.execute(
            'INSERT INTO dcr_pattern_performance(pattern_id, session_id, job_id, success, latency, quality_score, error_message) VALUES (?, ?, ?, ?, ?, ?, ?)',
            [pattern_id, session_id, job_id, success, latency, quality_score, error_message]
        )

def get_pattern(conn, pattern_id):
    row = conn.execute('SELECT {} FROM dcr_pattern WHERE id = ?'.format(PATTERN_COLUMNS), [pattern_id]).fetchone()

    if not row:
        raise NotFound('unknown pattern: {}'.format(pattern_id))

    return _row_to_pattern(row)

def find_by_signature(conn, target_key, signature):
    row = conn.execute('SELECT {} FROM dcr_pattern WHERE target_key = ? AND signature = ?'.format(PATTERN_COLUMNS), [target_key, signature]).fetchone()

    if row:
        return _row_to_pattern(row)

def list_patterns(conn, target_key):
    rows = conn.execute('SELECT {} FROM dcr_pattern WHERE target_key = ? ORDER BY id'.format(PATTERN_COLUMNS), [target_key]).fetchall()
    return [_row_to_pattern(row) for row in rows]

def admin_review(conn, pattern_id, decision, notes=None):
    try:
        decision = ReviewState(decision)
    except ValueError:
        raise FatalRequestError('unknown review decision: {}'.format(decision))

    if decision == ReviewState.UNREVIEWED:
        raise FatalRequestError('a review must verify or reject the pattern')

    with transaction(conn):
        cur = conn.execute(
            'UPDATE dcr_pattern SET review_state = ?, review_notes = ?, updated_at = ? WHERE id = ?',
            [decision.value, notes, timestamp(), pattern_id]
        )

        if cur.rowcount != 1:
            raise NotFound('unknown pattern: {}'.format(pattern_id))

    return get_pattern(conn, pattern_id)

def override_confidence(conn, pattern_id, confidence, notes=None):
    """Set confidence by hand. The pattern counts as verified from here on;
    its next recorded outcome recomputes confidence from the counters."""
    if not 0 <= confidence <= 1:
        raise FatalRequestError('confidence must be within [0, 1], got {}'.format(confidence))

    with transaction(conn):
        cur = conn.execute(
            "UPDATE dcr_pattern SET confidence = ?, review_state = 'verified', review_notes = COALESCE(?, review_notes), updated_at = ? WHERE id = ?",
            [confidence, notes, timestamp(), pattern_id]
        )

        if cur.rowcount != 1:
            raise NotFound('unknown pattern: {}'.format(pattern_id))

    return get_pattern(conn, pattern_id)

def _merge_recent(old, new):
    rv = []
    for x in list(old) + list(new):
        if x in rv:
            rv.remove(x)
        rv.append(x)
    return rv[-MAX_LEARNED:]

def update_metadata(conn, pattern_id, url_templates=(), endpoints=()):
    """Remember URL templates and endpoints that worked for this pattern."""
    with transaction(conn):
        row = conn.execute('SELECT metadata FROM dcr_pattern WHERE id = ?', [pattern_id]).fetchone()

        if not row:
            raise NotFound('unknown pattern: {}'.format(pattern_id))

        metadata = json.loads(row[0])
        metadata['url_templates'] = _merge_recent(metadata.get('url_templates', []), list(url_templates))
        metadata['endpoints'] = _merge_recent(metadata.get('endpoints', []), list(endpoints))

        conn.execute(
            'UPDATE dcr_pattern SET metadata = ?, updated_at = ? WHERE id = ?',
            [json.dumps(metadata, sort_keys=True), timestamp(), pattern_id]
        )

    return metadata

def global_success_rates(conn):
    """Laplace-smoothed success rate of each pattern type across all targets."""
    rv = {}
    for pattern_type in PATTERN_TYPES:
        rv[pattern_type] = laplace(0, 0)

    rows = conn.execute("SELECT pattern_type, SUM(success_count), SUM(failure_count) FROM dcr_pattern WHERE review_state != 'rejected' GROUP BY pattern_type")
    for pattern_type, successes, failures in rows:
        rv[pattern_type] = laplace(successes, failures)

    return rv
