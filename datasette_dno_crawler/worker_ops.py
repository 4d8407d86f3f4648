import time
from datasette_dno_crawler import feedback, scheduler, sessions
from datasette_dno_crawler.errors import JobTimeout
from datasette_dno_crawler.models import Strategy
from datasette_dno_crawler.utils import get_config_for_session, lazy_connection_factory, timestamp, transaction

OPS_INTERVAL_SECONDS = 5

def entrypoint_ops(enabled_dbs, db_map, settings_map):
    raw_factory = lazy_connection_factory(db_map)

    while True:
        for db in enabled_dbs:
            ops_loop(raw_factory(db), settings_map[db])

        time.sleep(OPS_INTERVAL_SECONDS)

def ops_loop(conn, settings, now=None):
    reclaimed = scheduler.reclaim_expired_leases(conn, now=now)
    if reclaimed:
        print('dcr_ops: returned {} expired leases to the queue'.format(reclaimed))

    timed_out = time_out_abandoned_jobs(conn, now=now)
    if timed_out:
        print('dcr_ops: gave up on {} jobs whose workers kept vanishing'.format(timed_out))

    aged = scheduler.apply_aging(conn, settings.get('aging-minutes'), now=now)
    if aged:
        print('dcr_ops: moved {} waiting jobs up a tier'.format(aged))

    reported = report_review_queue(conn)
    return reclaimed + timed_out, aged, reported

def time_out_abandoned_jobs(conn, now=None):
    """Jobs whose lease expired on their last allowed attempt are timeouts like any
    other: dead-letter them and let the session move on to another strategy."""
    rv = 0

    for job in scheduler.expired_leases_without_retries(conn, now=now):
        session = sessions.snapshot(conn, job.session_id)
        config = get_config_for_session(conn, job.session_id)
        strategy = None

        if job.strategy_signature:
            strategy = Strategy(pattern_type=job.pattern_type, signature=job.strategy_signature, definition=job.strategy_definition or {})

        with transaction(conn):
            state = sessions.get_state(conn, job.session_id)

            if state == sessions.PAUSED or state.terminal:
                # Paused sessions decide nothing; the job runs again on resume.
                scheduler.release(conn, job.job_id, worker_id=job.leased_by)
                continue

            error = JobTimeout('lease held by {} expired at {}'.format(job.leased_by, job.lease_expires_at))
            feedback.handle_transient_failure(conn, session, job, strategy, error, config)
            rv += 1

    return rv

def report_review_queue(conn):
    """Announce dead letters and low-confidence sessions that nobody has been told about yet."""
    rows = conn.execute('SELECT id, kind, session_id, job_id, reason FROM dcr_review_queue WHERE reported_at IS NULL ORDER BY id').fetchall()

    if not rows:
        return 0

    with transaction(conn):
        for id, kind, session_id, job_id, reason in rows:
            print('dcr_review_queue: id={} kind={} session={} job={}: {}'.format(id, kind, session_id, job_id, reason))
            conn.execute('UPDATE dcr_review_queue SET reported_at = ? WHERE id = ?', [timestamp(), id])

    return len(rows)
