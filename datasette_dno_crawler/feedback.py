"""Feedback Loop: turn a finished attempt into pattern updates and the session's next step."""
import json
from .models import CrawlPathRecord, ScoredCandidate, SessionState
from . import extraction, patterns, publish, quality, scheduler, sessions
from .strategy import available_pattern_types, select_strategy
from .utils import transaction

COMPLETED = 'completed'
ROTATED = 'rotated'
RETRYING = 'retrying'
LOW_CONFIDENCE = 'low_confidence'
FAILED = 'failed'

def url_template(url, year):
    """https://x.de/netzentgelte-2024.pdf -> https://x.de/netzentgelte-{year}.pdf"""
    return url.replace(str(year), '{year}')

def record_crawl_path(conn, record):
    with transaction(conn):
        conn.execute(
            'INSERT INTO dcr_crawl_path(session_id, job_id, target_key, year, pattern_signature, steps, endpoints, methods, total_time_ms, max_depth, confidence) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)',
            [
                record.session_id,
                record.job_id,
                record.target_key,
                record.year,
                record.pattern_signature,
                json.dumps(record.steps),
                json.dumps(record.endpoints),
                json.dumps(record.methods),
                record.total_time_ms,
                record.max_depth,
                record.confidence,
            ]
        )

def best_crawl_path(conn, target_key):
    row = conn.execute(
        'SELECT session_id, job_id, target_key, year, pattern_signature, steps, endpoints, methods, total_time_ms, max_depth, confidence FROM dcr_crawl_path WHERE target_key = ? AND confidence > 0 ORDER BY confidence DESC, id DESC LIMIT 1',
        [target_key]
    ).fetchone()

    if not row:
        return None

    values = list(row)
    for i in (5, 6, 7):
        values[i] = json.loads(values[i])
    return CrawlPathRecord(*values)

def score_candidates(conn, session, job_id, strategy, candidates, config):
    threshold = config.get('quality-threshold', quality.DEFAULT_THRESHOLD)
    weights = config.get('quality-weights') or quality.DEFAULT_WEIGHTS

    rv = []
    for candidate in candidates:
        score = quality.evaluate(candidate, candidate.data_type, weights=weights, year=session.year)
        candidate_id = extraction.store_candidate(conn, candidate, score, session.session_id, job_id, strategy.signature if strategy else None)
        rv.append(ScoredCandidate(candidate_id, candidate, score, quality.passes(score, threshold)))
    return rv

def best_per_data_type(scored, data_types):
    """The passing candidate with the highest combined confidence, per data type."""
    rv = {}
    for s in scored:
        data_type = s.candidate.data_type
        if not s.passed or data_type not in data_types:
            continue

        combined = s.candidate.confidence * s.score.overall
        if data_type not in rv or combined > rv[data_type][0]:
            rv[data_type] = (combined, s)
    return rv

def record_attempt(conn, session, job, strategy, outcome, config, rng=None):
    """Apply the result of one executed strategy. Returns the session's next step:
    COMPLETED, ROTATED, LOW_CONFIDENCE or FAILED."""
    outstanding = sessions.unsatisfied_data_types(conn, session.session_id)
    scored = score_candidates(conn, session, job.job_id, strategy, outcome.candidates, config)
    accepted = best_per_data_type(scored, outstanding)
    success = bool(accepted)

    qualities = [s.score.overall for s in scored]
    best_quality = max(qualities) if qualities else None
    if success:
        error = None
    elif scored:
        error = 'quality below threshold (best {:.2f})'.format(best_quality)
    else:
        error = 'no candidate above the confidence floor'

    pattern = patterns.record_outcome(
        conn,
        strategy.signature,
        session.target_key,
        success,
        outcome.elapsed,
        pattern_type=strategy.pattern_type,
        definition=strategy.definition,
    )
    patterns.record_performance(conn, pattern.id, session.session_id, job.job_id, success, outcome.elapsed, quality_score=best_quality, error_message=error)

    endpoints = sorted(set(s.candidate.final_url for (_, s) in accepted.values()))
    if success:
        patterns.update_metadata(conn, pattern.id, url_templates=[url_template(url, session.year) for url in endpoints], endpoints=endpoints)

    record_crawl_path(conn, CrawlPathRecord(
        session_id=session.session_id,
        job_id=job.job_id,
        target_key=session.target_key,
        year=session.year,
        pattern_signature=strategy.signature,
        steps=outcome.steps,
        endpoints=endpoints,
        methods=sorted(set(s.candidate.extraction_method for (_, s) in accepted.values())),
        total_time_ms=int(outcome.elapsed * 1000),
        max_depth=outcome.max_depth,
        confidence=max([combined for (combined, _) in accepted.values()] or [0.0]),
    ))

    for data_type, (combined, s) in accepted.items():
        sessions.mark_satisfied(conn, session.session_id, data_type, s.candidate_id)
        publish.publish(conn, session.target_key, session.year, s.candidate_id, s.candidate)

    print('job {}: {} strategy {} for {}: {} candidates, accepted {}'.format(
        job.job_id,
        'explored' if strategy.explore else 'exploited',
        strategy.pattern_type,
        session.target_key,
        len(scored),
        ', '.join(sorted(accepted)) or 'none'
    ))

    if not sessions.unsatisfied_data_types(conn, session.session_id):
        sessions.transition(conn, session.session_id, SessionState.COMPLETED, context={'pattern_id': pattern.id})
        return COMPLETED

    return rotate(conn, session, job, config, error, rng=rng)

def rotate(conn, session, job, config, reason, rng=None):
    """Schedule a strategy this session has not tried yet, or give up."""
    strategy = select_strategy(
        conn,
        session.target_key,
        available_pattern_types(conn, session.target_key),
        epsilon=config.get('epsilon', 0.1),
        rng=rng,
        exclude_signatures=scheduler.tried_signatures(conn, session.session_id),
    )

    if strategy is None:
        return exhaust(conn, session.session_id, reason)

    scheduler.enqueue(
        conn,
        session.session_id,
        job.domain,
        priority=session.priority,
        max_retries=config.get('max-retries', 3),
        max_execution_seconds=config.get('job-timeout-seconds', 600),
        strategy=strategy,
    )
    sessions.requeue(conn, session.session_id, message='{}; trying {} next'.format(reason, strategy.pattern_type))
    return ROTATED

def exhaust(conn, session_id, reason):
    """No strategy left. Sessions that produced evidence go to a human, the rest fail."""
    with transaction(conn):
        if extraction.session_has_candidates(conn, session_id):
            conn.execute(
                "INSERT INTO dcr_review_queue(kind, session_id, reason) VALUES ('low_confidence', ?, ?)",
                [session_id, 'strategies exhausted: {}'.format(reason)]
            )
            sessions.transition(conn, session_id, SessionState.LOW_CONFIDENCE, message=reason, level='warn')
            return LOW_CONFIDENCE

        sessions.transition(conn, session_id, SessionState.FAILED, message='strategies exhausted: {}'.format(reason), level='error')
        return FAILED

def handle_transient_failure(conn, session, job, strategy, error, config, rng=None):
    """A network-level failure: retry the same job with backoff. Only a dead letter
    counts against the strategy."""
    result = scheduler.fail(
        conn,
        job.job_id,
        repr(error),
        base=config.get('backoff-base-seconds', 30),
        cap=config.get('backoff-max-seconds', 3600),
        rng=rng,
        worker_id=job.leased_by,
    )

    if result == scheduler.RETRIED:
        sessions.requeue(conn, session.session_id, message='retrying after {!r}'.format(error), level='warn')
        return RETRYING

    if strategy is not None:
        pattern = patterns.record_outcome(conn, strategy.signature, session.target_key, False, 0.0, pattern_type=strategy.pattern_type, definition=strategy.definition)
        patterns.record_performance(conn, pattern.id, session.session_id, job.job_id, False, 0.0, error_message='dead letter: {!r}'.format(error))

    return rotate(conn, session, job, config, 'dead letter: {!r}'.format(error), rng=rng)
