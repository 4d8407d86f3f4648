import math
import os
import random
import socket
import time
import traceback
from collections import deque
from urllib.parse import urljoin
from datasette_dno_crawler.plugin import pm
from datasette_dno_crawler import extraction, feedback, quality, scheduler, sessions, targets, utils
from datasette_dno_crawler.errors import Cancelled, JobTimeout, LeaseLost, TransientError
from datasette_dno_crawler.models import AttemptOutcome, SessionState, Strategy
from datasette_dno_crawler.patterns import find_by_signature
from datasette_dno_crawler.strategy import available_pattern_types, select_strategy, strategy_for_pattern

CANCELLED = 'cancelled'
LEASE_LOST = 'lease_lost'

def entrypoint_crawl(enabled_dbs, db_map, settings_map):
    raw_factory = utils.lazy_connection_factory(db_map)
    worker_id = '{}:{}'.format(socket.gethostname(), os.getpid())
    rng = random.Random()

    conns = []
    for db in enabled_dbs:
        conns.append(raw_factory(db))

    try:
        while True:
            for db in enabled_dbs:
                # lease_blocking does the waiting when there's no work.
                crawl_loop(raw_factory(db), worker_id, settings_map[db], rng=rng)
    finally:
        for conn in conns:
            conn.close()

def crawl_loop(conn, worker_id, settings, rng=None, lease_timeout=1.0):
    """Lease one job and run it. Return None to indicate there was no work to be done."""
    job = scheduler.lease_blocking(
        conn,
        worker_id,
        timeout=lease_timeout,
        default_domain_cap=settings['domain-concurrency'],
        lease_grace_seconds=settings['lease-grace-seconds'],
    )

    if job is None:
        return None

    return run_job(conn, job, rng=rng)

def absolutize_urls(base_url, new_url):
    try:
        rv = urljoin(base_url, new_url)
    except ValueError:
        return None

    hash_idx = rv.find('#')

    if hash_idx == -1:
        return rv

    return rv[0:hash_idx]

def job_strategy(conn, job, session, config, rng):
    """The strategy a job executes: preset by whoever enqueued it, else chosen now."""
    if job.strategy_signature:
        pattern = find_by_signature(conn, session.target_key, job.strategy_signature)

        if pattern is not None:
            return strategy_for_pattern(pattern)

        return Strategy(
            pattern_type=job.pattern_type,
            signature=job.strategy_signature,
            definition=job.strategy_definition or {},
            explore=True,
        )

    strategy = select_strategy(
        conn,
        session.target_key,
        available_pattern_types(conn, session.target_key),
        epsilon=config.get('epsilon', 0.1),
        rng=rng,
        exclude_signatures=scheduler.tried_signatures(conn, session.session_id),
    )

    if strategy is not None:
        scheduler.assign_strategy(conn, job.job_id, strategy, worker_id=job.leased_by)

    return strategy

def finish(conn, job, outcome):
    if not scheduler.complete(conn, job.job_id, outcome=outcome, worker_id=job.leased_by):
        raise LeaseLost('job {} is no longer leased by {}'.format(job.job_id, job.leased_by))

def run_job(conn, job, rng=None):
    config = utils.get_config_for_session(conn, job.session_id)
    session = sessions.snapshot(conn, job.session_id)
    target = targets.get_target(conn, session.target_key)
    strategy = None

    try:
        sessions.begin_attempt(conn, session.session_id)
        strategy = job_strategy(conn, job, session, config, rng)

        if strategy is None:
            with utils.transaction(conn):
                finish(conn, job, 'no strategy left')
                return feedback.exhaust(conn, session.session_id, 'no untried strategy left')

        outcome = execute(conn, config, job, session, target, strategy)

        # Everything the attempt learned is committed together, or not at all
        # if the session was paused or the lease taken over while we were busy.
        with utils.transaction(conn):
            sessions.check_cancelled(conn, session.session_id)
            sessions.transition(conn, session.session_id, SessionState.EXTRACTING)
            finish(conn, job, '{} candidates'.format(len(outcome.candidates)))
            return feedback.record_attempt(conn, session, job, strategy, outcome, config, rng=rng)
    except Cancelled as e:
        return abandon(conn, job, e)
    except TransientError as e:
        print('job {}: transient failure: {!r}'.format(job.job_id, e))
        return fail_attempt(conn, session, job, strategy, e, config, rng=rng)
    except Exception as e:
        # A misbehaving plugin shouldn't wedge the job; count it like a network
        # error so it dead-letters eventually.
        traceback.print_exc()
        return fail_attempt(conn, session, job, strategy, e, config, rng=rng)

def abandon(conn, job, e):
    if isinstance(e, LeaseLost):
        print('job {}: {}; dropping this attempt'.format(job.job_id, e))
        return LEASE_LOST

    scheduler.release(conn, job.job_id, worker_id=job.leased_by)
    print('job {}: {}; lease released'.format(job.job_id, e))
    return CANCELLED

def fail_attempt(conn, session, job, strategy, error, config, rng=None):
    """Count a failed attempt against the job, unless the session was paused in
    the meantime: then the failure is the pause's doing, not the strategy's."""
    try:
        with utils.transaction(conn):
            sessions.check_cancelled(conn, session.session_id)
            return feedback.handle_transient_failure(conn, session, job, strategy, error, config, rng=rng)
    except Cancelled as e:
        return abandon(conn, job, e)

def fetch(conn, config, url):
    """Fetch a URL through the plugin chain.

    Returns (response, None), (None, rejection reason) or (Exception, None)."""
    # before_fetch_url: Give plugins a chance to reject this URL / add
    #  request headers.
    request_headers = {}
    rejected_reason = pm.hook.before_fetch_url(conn=conn, config=config, url=url, request_headers=request_headers)

    if rejected_reason:
        return None, rejected_reason

    fresh = False
    start = time.time()
    # fetch_cached_url: Fetch a previously cached URL.
    response = pm.hook.fetch_cached_url(conn=conn, config=config, url=url, request_headers=request_headers)

    if not response:
        fresh = True
        start = time.time()
        # fetch_url: Fetch the actual URL.
        response = pm.hook.fetch_url(url=url, request_headers=request_headers)

        if not response:
            # Weird, this should be impossible.
            return Exception('fetch_url returned nothing for {}'.format(url)), None

        if isinstance(response, Exception):
            return response, None

    fetch_duration = math.ceil(1000 * (time.time() - start))

    if not response.get('content_hash'):
        response['content_hash'] = utils.content_hash(response.get('content') or response.get('text'))

    pm.hook.after_fetch_url(conn=conn, config=config, url=url, request_headers=request_headers, response=response, fresh=fresh, fetch_duration=fetch_duration)
    return response, None

def discover_urls(config, strategy, data_types, year, from_url, from_depth, response):
    urls = []
    for data_type in data_types:
        for new_urls in pm.hook.discover_urls(config=config, strategy=strategy, data_type=data_type, year=year, url=from_url, depth=from_depth, response=response):
            urls.extend(new_urls or [])

    # Normalize URLs into (url, depth) form
    urls = [new_url if isinstance(new_url, tuple) else (new_url, from_depth + 1) for new_url in urls]

    # Resolve relative paths
    urls = [(absolutize_urls(from_url, new_url), new_depth) for (new_url, new_depth) in urls]

    # Reject non HTTP/HTTPS URLs
    return [x for x in urls if x[0] and (x[0].startswith('https:') or x[0].startswith('http:'))]

def plan(conn, config, target, year, data_types, strategy):
    urls = []
    for data_type in data_types:
        for planned in pm.hook.plan_urls(conn=conn, config=config, target=target, year=year, data_type=data_type, strategy=strategy):
            urls.extend(planned or [])

    return [url if isinstance(url, tuple) else (url, 0) for url in urls]

def check_deadline(job, started):
    elapsed = time.monotonic() - started
    if elapsed > job.max_execution_seconds:
        raise JobTimeout('job {} ran {:.0f}s, limit is {}s'.format(job.job_id, elapsed, job.max_execution_seconds))

def _satisfied(candidates, data_types, config, year):
    threshold = config.get('quality-threshold', quality.DEFAULT_THRESHOLD)
    weights = config.get('quality-weights') or quality.DEFAULT_WEIGHTS

    rv = set()
    for candidate in candidates:
        if quality.passes(quality.evaluate(candidate, candidate.data_type, weights=weights, year=year), threshold):
            rv.add(candidate.data_type)
    return rv >= set(data_types)

def execute(conn, config, job, session, target, strategy):
    """Run one strategy: plan URLs, crawl breadth-first, extract from every response.

    Cancellation and the job's time limit are checked after each network call."""
    started = time.monotonic()
    data_types = sessions.unsatisfied_data_types(conn, session.session_id)
    max_depth = config.get('max-depth', 2)
    max_pages = config.get('max-pages', 25)

    if strategy.pattern_type == 'content':
        sessions.transition(conn, session.session_id, SessionState.SEARCHING, context={'strategy': strategy.pattern_type})

    planned = plan(conn, config, target, session.year, data_types, strategy)
    sessions.check_cancelled(conn, session.session_id)
    check_deadline(job, started)

    sessions.transition(conn, session.session_id, SessionState.CRAWLING, context={'strategy': strategy.pattern_type, 'planned': len(planned)})

    frontier = deque()
    seen = set()
    for url, depth in planned:
        if url not in seen:
            seen.add(url)
            frontier.append((url, depth))

    steps = []
    candidates = []
    responses = 0
    errors = []
    deepest = 0

    while frontier and len(steps) < max_pages:
        url, depth = frontier.popleft()
        response, rejected_reason = fetch(conn, config, url)

        sessions.check_cancelled(conn, session.session_id)
        check_deadline(job, started)

        if rejected_reason:
            steps.append({'url': url, 'depth': depth, 'rejected': rejected_reason})
            continue

        if isinstance(response, Exception):
            errors.append(response)
            steps.append({'url': url, 'depth': depth, 'error': repr(response)})
            continue

        responses += 1
        deepest = max(deepest, depth)
        step = {'url': url, 'final_url': response.get('final_url') or url, 'depth': depth, 'status_code': response['status_code']}
        steps.append(step)

        if response['status_code'] < 200 or response['status_code'] > 299:
            continue

        found = extraction.extract(response, data_types, config)
        step['candidates'] = len(found)
        candidates.extend(found)

        if found and _satisfied(candidates, data_types, config, session.year):
            break

        if depth < max_depth:
            for new_url, new_depth in discover_urls(config, strategy, data_types, session.year, response.get('final_url') or url, depth, response):
                if new_url not in seen and new_depth <= max_depth:
                    seen.add(new_url)
                    frontier.append((new_url, new_depth))

    if errors and not responses:
        raise TransientError('every fetch failed; last error: {!r}'.format(errors[-1]))

    return AttemptOutcome(
        candidates=candidates,
        steps=steps,
        elapsed=time.monotonic() - started,
        max_depth=deepest,
    )
