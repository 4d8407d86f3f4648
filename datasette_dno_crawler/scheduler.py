"""Job Scheduler: priority tiers, leases with visibility timeouts, retries, dead letters.

Jobs live in dcr_job. A worker leases a job, which hides it from other workers
until the lease expires; a worker that crashes mid-job simply lets its lease
lapse and the job becomes eligible again. There is no other lock.

Tiers are drained strictly: high before normal before low, and by
scheduled_for within a tier. Under sustained high-priority load the low tier
can starve; `apply_aging` is the optional counterweight.
"""
import json
import random
import time
from datetime import timedelta
from .errors import LeaseLost, NotFound
from .models import CrawlJob, JobStatus
from .utils import timestamp, transaction, utcnow

HIGH = 0
NORMAL = 1
LOW = 2

RETRIED = 'retried'
DEAD_LETTERED = 'dead_lettered'

_columns = [
    'id',
    'session_id',
    'domain',
    'pattern_id',
    'pattern_type',
    'strategy_signature',
    'strategy_definition',
    'priority',
    'tier',
    'retry_count',
    'max_retries',
    'max_execution_seconds',
    'scheduled_for',
    'status',
    'leased_by',
    'lease_expires_at',
    'last_error',
]

JOB_COLUMNS = ', '.join(_columns)
J_JOB_COLUMNS = ', '.join(['j.' + c for c in _columns])

_inactive_session_states = "('paused', 'completed', 'failed', 'low_confidence')"

def _row_to_job(row):
    values = list(row)
    definition = values[6]
    values[6] = json.loads(definition) if definition else None
    values[13] = JobStatus(values[13])
    return CrawlJob(*values)

def priority_tier(priority):
    """Collapse a 1-10 priority (10 most urgent) into a tier."""
    if priority >= 8:
        return HIGH
    if priority >= 4:
        return NORMAL
    return LOW

def backoff_delay(retry_count, base=30, cap=3600, rng=None):
    """Seconds to wait before the next attempt: base * 2^retry_count ± base, within [0, cap]."""
    if rng is None:
        rng = random

    delay = base * (2 ** retry_count) + rng.uniform(-base, base)
    return max(0.0, min(float(cap), delay))

def enqueue(conn, session_id, domain, priority=5, max_retries=3, max_execution_seconds=600, strategy=None, scheduled_for=None, now=None):
    if not 1 <= priority <= 10:
        raise ValueError('priority must be between 1 and 10, got {}'.format(priority))

    if max_retries < 0:
        raise ValueError('max_retries must not be negative')

    now = now or utcnow()
    now_ts = timestamp(now)

    pattern_id = pattern_type = signature = definition = None
    if strategy is not None:
        pattern_id = strategy.pattern_id
        pattern_type = strategy.pattern_type
        signature = strategy.signature
        definition = json.dumps(strategy.definition, sort_keys=True)

    with transaction(conn):
        cur = conn.execute(
            'INSERT INTO dcr_job(session_id, domain, priority, tier, tier_since, pattern_id, pattern_type, strategy_signature, strategy_definition, max_retries, max_execution_seconds, scheduled_for, created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)',
            [
                session_id,
                domain,
                priority,
                priority_tier(priority),
                now_ts,
                pattern_id,
                pattern_type,
                signature,
                definition,
                max_retries,
                max_execution_seconds,
                timestamp(scheduled_for) if scheduled_for else now_ts,
                now_ts,
                now_ts,
            ]
        )

    return cur.lastrowid

def get_job(conn, job_id):
    row = conn.execute('SELECT {} FROM dcr_job WHERE id = ?'.format(JOB_COLUMNS), [job_id]).fetchone()

    if not row:
        raise NotFound('unknown job: {}'.format(job_id))

    return _row_to_job(row)

def jobs_for_session(conn, session_id):
    rows = conn.execute('SELECT {} FROM dcr_job WHERE session_id = ? ORDER BY id'.format(JOB_COLUMNS), [session_id]).fetchall()
    return [_row_to_job(row) for row in rows]

def tried_signatures(conn, session_id):
    rows = conn.execute('SELECT DISTINCT strategy_signature FROM dcr_job WHERE session_id = ? AND strategy_signature IS NOT NULL', [session_id]).fetchall()
    return set(row[0] for row in rows)

def _active_leases(conn, domain, now_ts):
    count, = conn.execute("SELECT COUNT(*) FROM dcr_job WHERE domain = ? AND status = 'leased' AND lease_expires_at >= ?", [domain, now_ts]).fetchone()
    return count

def domain_cap(conn, domain, default_cap):
    row = conn.execute('SELECT max_concurrent FROM dcr_domain_limit WHERE domain = ?', [domain]).fetchone()

    if row:
        return row[0]

    return default_cap

def set_domain_limit(conn, domain, max_concurrent):
    if max_concurrent < 0:
        raise ValueError('max_concurrent must not be negative')

    with transaction(conn):
        conn.execute(
            'INSERT INTO dcr_domain_limit(domain, max_concurrent) VALUES (?, ?) ON CONFLICT(domain) DO UPDATE SET max_concurrent = excluded.max_concurrent',
            [domain, max_concurrent]
        )

def _expired_reason(job):
    return 'lease held by {} expired at {}'.format(job.leased_by, job.lease_expires_at)

def lease(conn, worker_id, domain_filter=None, default_domain_cap=2, lease_grace_seconds=60, now=None):
    """Claim the next eligible job, or return None.

    Eligible: queued and due, or leased with an expired lease and retries to
    spare; its session is neither paused nor finished; and its domain is below
    its concurrency cap. An expired lease counts as a failed attempt.
    Counting the domain's leases and claiming the row happen in one write
    transaction, so two workers can never both take the last slot."""
    now = now or utcnow()
    now_ts = timestamp(now)

    with transaction(conn):
        if domain_filter is not None and _active_leases(conn, domain_filter, now_ts) >= domain_cap(conn, domain_filter, default_domain_cap):
            return None

        row = conn.execute(
            """
            SELECT {} FROM dcr_job j
            WHERE ((j.status = 'queued' AND j.scheduled_for <= :now) OR (j.status = 'leased' AND j.lease_expires_at < :now AND j.retry_count < j.max_retries))
              AND (:domain IS NULL OR j.domain = :domain)
              AND EXISTS(SELECT * FROM dcr_session s WHERE s.id = j.session_id AND s.state NOT IN {})
              AND (SELECT COUNT(*) FROM dcr_job k WHERE k.domain = j.domain AND k.status = 'leased' AND k.lease_expires_at >= :now)
                  < COALESCE((SELECT max_concurrent FROM dcr_domain_limit WHERE domain = j.domain), :cap)
            ORDER BY j.tier, j.scheduled_for, j.id
            LIMIT 1
            """.format(J_JOB_COLUMNS, _inactive_session_states),
            {'now': now_ts, 'domain': domain_filter, 'cap': default_domain_cap}
        ).fetchone()

        if not row:
            return None

        job = _row_to_job(row)

        if job.status == JobStatus.LEASED:
            print('job {}: lease held by {} expired at {}, re-leasing'.format(job.job_id, job.leased_by, job.lease_expires_at))
            conn.execute(
                'UPDATE dcr_job SET retry_count = retry_count + 1, last_error = ? WHERE id = ?',
                [_expired_reason(job), job.job_id]
            )
            job = job._replace(retry_count=job.retry_count + 1, last_error=_expired_reason(job))

        expires_ts = timestamp(now + timedelta(seconds=job.max_execution_seconds + lease_grace_seconds))
        conn.execute(
            "UPDATE dcr_job SET status = 'leased', leased_by = ?, leased_at = ?, lease_expires_at = ?, updated_at = ? WHERE id = ?",
            [worker_id, now_ts, expires_ts, now_ts, job.job_id]
        )

    return job._replace(status=JobStatus.LEASED, leased_by=worker_id, lease_expires_at=expires_ts)

def lease_blocking(conn, worker_id, timeout=5.0, poll_interval=0.05, max_poll_interval=1.0, **kwargs):
    """lease(), waiting up to `timeout` seconds for a job to become eligible."""
    deadline = time.monotonic() + timeout

    while True:
        job = lease(conn, worker_id, **kwargs)

        if job is not None:
            return job

        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return None

        time.sleep(min(poll_interval, remaining))
        poll_interval = min(poll_interval * 2, max_poll_interval)

def complete(conn, job_id, outcome='done', worker_id=None, now=None):
    """Mark a leased job done. Returns False if the lease was lost in the meantime."""
    now_ts = timestamp(now)

    with transaction(conn):
        cur = conn.execute(
            "UPDATE dcr_job SET status = 'done', outcome = ?, leased_by = NULL, lease_expires_at = NULL, updated_at = ? WHERE id = ? AND status = 'leased' AND (? IS NULL OR leased_by = ?)",
            [outcome, now_ts, job_id, worker_id, worker_id]
        )

    return cur.rowcount == 1

def release(conn, job_id, worker_id=None, now=None):
    """Give a lease back without counting an attempt, eg because the session was paused."""
    now_ts = timestamp(now)

    with transaction(conn):
        cur = conn.execute(
            "UPDATE dcr_job SET status = 'queued', leased_by = NULL, lease_expires_at = NULL, updated_at = ? WHERE id = ? AND status = 'leased' AND (? IS NULL OR leased_by = ?)",
            [now_ts, job_id, worker_id, worker_id]
        )

    return cur.rowcount == 1

def fail(conn, job_id, reason, base=30, cap=3600, rng=None, worker_id=None, now=None):
    """Record a failed attempt. Returns RETRIED or DEAD_LETTERED.

    A job that has already used all of its retries becomes a dead letter: it
    never re-enters a queue, and a review-queue row reports it. With a
    `worker_id`, raises LeaseLost unless that worker still holds the lease."""
    now = now or utcnow()
    now_ts = timestamp(now)

    with transaction(conn):
        row = conn.execute('SELECT session_id, retry_count, max_retries, status, leased_by FROM dcr_job WHERE id = ?', [job_id]).fetchone()

        if not row:
            raise NotFound('unknown job: {}'.format(job_id))

        session_id, retry_count, max_retries, status, leased_by = row

        if worker_id is not None and (status != JobStatus.LEASED.value or leased_by != worker_id):
            raise LeaseLost('job {} is no longer leased by {}'.format(job_id, worker_id))

        if status not in (JobStatus.QUEUED.value, JobStatus.LEASED.value):
            raise ValueError('job {} is {}, only queued or leased jobs can fail'.format(job_id, status))

        if retry_count >= max_retries:
            conn.execute(
                "UPDATE dcr_job SET status = 'dead_letter', last_error = ?, leased_by = NULL, lease_expires_at = NULL, updated_at = ? WHERE id = ?",
                [reason, now_ts, job_id]
            )
            conn.execute(
                "INSERT INTO dcr_review_queue(kind, session_id, job_id, reason) VALUES ('dead_letter', ?, ?, ?)",
                [session_id, job_id, 'retries exhausted ({}): {}'.format(max_retries, reason)]
            )
            print('job {}: dead-lettered after {} retries: {}'.format(job_id, retry_count, reason))
            return DEAD_LETTERED

        delay = backoff_delay(retry_count, base, cap, rng)
        conn.execute(
            "UPDATE dcr_job SET status = 'queued', retry_count = retry_count + 1, scheduled_for = ?, last_error = ?, leased_by = NULL, lease_expires_at = NULL, updated_at = ? WHERE id = ?",
            [timestamp(now + timedelta(seconds=delay)), reason, now_ts, job_id]
        )

    print('job {}: retry {}/{} in {:.0f}s: {}'.format(job_id, retry_count + 1, max_retries, delay, reason))
    return RETRIED

def assign_strategy(conn, job_id, strategy, worker_id=None):
    with transaction(conn):
        cur = conn.execute(
            'UPDATE dcr_job SET pattern_id = ?, pattern_type = ?, strategy_signature = ?, strategy_definition = ?, updated_at = ? WHERE id = ? AND (? IS NULL OR leased_by = ?)',
            [strategy.pattern_id, strategy.pattern_type, strategy.signature, json.dumps(strategy.definition, sort_keys=True), timestamp(), job_id, worker_id, worker_id]
        )

        if cur.rowcount == 1:
            return

        if worker_id is None:
            raise NotFound('unknown job: {}'.format(job_id))

        raise LeaseLost('job {} is no longer leased by {}'.format(job_id, worker_id))

def reclaim_expired_leases(conn, now=None):
    """Return jobs whose lease lapsed to the queue, counting the lost attempt. lease()
    would take them anyway; this keeps dcr_job.status honest for anyone watching.

    Jobs without retries to spare stay put, see expired_leases_without_retries()."""
    now_ts = timestamp(now)

    with transaction(conn):
        cur = conn.execute(
            "UPDATE dcr_job SET status = 'queued', retry_count = retry_count + 1, last_error = 'lease held by ' || leased_by || ' expired at ' || lease_expires_at, leased_by = NULL, lease_expires_at = NULL, updated_at = ? WHERE status = 'leased' AND lease_expires_at < ? AND retry_count < max_retries",
            [now_ts, now_ts]
        )

    return cur.rowcount

def expired_leases_without_retries(conn, now=None):
    """Leased jobs whose worker vanished after their last allowed attempt."""
    rows = conn.execute(
        "SELECT {} FROM dcr_job WHERE status = 'leased' AND lease_expires_at < ? AND retry_count >= max_retries ORDER BY id".format(JOB_COLUMNS),
        [timestamp(now)]
    ).fetchall()
    return [_row_to_job(row) for row in rows]

def apply_aging(conn, after_minutes, now=None):
    """Move queued jobs that have waited `after_minutes` in their tier up one tier."""
    if not after_minutes:
        return 0

    now = now or utcnow()

    with transaction(conn):
        cur = conn.execute(
            "UPDATE dcr_job SET tier = tier - 1, tier_since = ?, updated_at = ? WHERE status = 'queued' AND tier > 0 AND tier_since <= ?",
            [timestamp(now), timestamp(now), timestamp(now - timedelta(minutes=after_minutes))]
        )

    return cur.rowcount

def archive_session_jobs(conn, session_id):
    with transaction(conn):
        conn.execute(
            'INSERT INTO dcr_job_history(id, session_id, domain, priority, pattern_id, pattern_type, strategy_signature, retry_count, max_retries, status, last_error, outcome, created_at) SELECT id, session_id, domain, priority, pattern_id, pattern_type, strategy_signature, retry_count, max_retries, status, last_error, outcome, created_at FROM dcr_job WHERE session_id = ?',
            [session_id]
        )
        cur = conn.execute('DELETE FROM dcr_job WHERE session_id = ?', [session_id])

    return cur.rowcount
