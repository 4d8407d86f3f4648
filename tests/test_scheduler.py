from datetime import datetime, timedelta
import random
import pytest
from datasette_dno_crawler import scheduler, sessions
from datasette_dno_crawler.errors import LeaseLost
from datasette_dno_crawler.models import JobStatus, Strategy

T0 = datetime(2024, 1, 1, 12, 0, 0)

def new_session(conn, year=2024):
    return sessions.create(conn, 'netze-bw', year, ['netzentgelte'])

def test_priority_tier():
    assert scheduler.priority_tier(10) == scheduler.HIGH
    assert scheduler.priority_tier(8) == scheduler.HIGH
    assert scheduler.priority_tier(7) == scheduler.NORMAL
    assert scheduler.priority_tier(4) == scheduler.NORMAL
    assert scheduler.priority_tier(3) == scheduler.LOW
    assert scheduler.priority_tier(1) == scheduler.LOW

def test_enqueue_rejects_bad_priority(conn, netze_bw):
    session_id = new_session(conn)

    with pytest.raises(ValueError):
        scheduler.enqueue(conn, session_id, 'netze-bw.de', priority=11)

def test_high_tier_leased_first(conn, netze_bw):
    low = scheduler.enqueue(conn, new_session(conn, 2020), 'a.de', priority=2, now=T0)
    high = scheduler.enqueue(conn, new_session(conn, 2021), 'b.de', priority=9, now=T0 + timedelta(seconds=5))

    now = T0 + timedelta(seconds=10)
    assert scheduler.lease(conn, 'w1', now=now).job_id == high
    assert scheduler.lease(conn, 'w1', now=now).job_id == low
    assert scheduler.lease(conn, 'w1', now=now) is None

def test_fifo_within_tier(conn, netze_bw):
    ids = []
    for i in range(3):
        ids.append(scheduler.enqueue(conn, new_session(conn, 2020 + i), 'netze-bw.de', now=T0 + timedelta(seconds=i)))

    now = T0 + timedelta(seconds=10)
    leased = [scheduler.lease(conn, 'w1', default_domain_cap=10, now=now).job_id for _ in ids]
    assert leased == ids

def test_domain_cap(conn, netze_bw):
    scheduler.set_domain_limit(conn, 'netze-bw.de', 1)
    first = scheduler.enqueue(conn, new_session(conn, 2020), 'netze-bw.de', now=T0)
    scheduler.enqueue(conn, new_session(conn, 2021), 'netze-bw.de', now=T0)
    other = scheduler.enqueue(conn, new_session(conn, 2022), 'e-netz.de', now=T0 + timedelta(seconds=1))

    now = T0 + timedelta(seconds=10)
    assert scheduler.lease(conn, 'w1', now=now).job_id == first

    # The second netze-bw.de job has to wait; other domains don't.
    assert scheduler.lease(conn, 'w2', now=now).job_id == other
    assert scheduler.lease(conn, 'w3', now=now) is None
    assert scheduler.lease(conn, 'w3', domain_filter='netze-bw.de', now=now) is None

    scheduler.complete(conn, first, worker_id='w1')
    assert scheduler.lease(conn, 'w3', now=now) is not None

def test_expired_lease_is_leased_again(conn, netze_bw):
    job_id = scheduler.enqueue(conn, new_session(conn), 'netze-bw.de', max_execution_seconds=60, now=T0)

    job = scheduler.lease(conn, 'w1', lease_grace_seconds=60, now=T0)
    assert job.job_id == job_id
    assert job.leased_by == 'w1'

    assert scheduler.lease(conn, 'w2', now=T0 + timedelta(seconds=119)) is None

    job = scheduler.lease(conn, 'w2', now=T0 + timedelta(seconds=121))
    assert job.job_id == job_id
    assert job.leased_by == 'w2'
    assert job.retry_count == 1

    # The first worker lost its lease, so it can no longer complete the job.
    assert scheduler.complete(conn, job_id, worker_id='w1') == False
    assert scheduler.complete(conn, job_id, worker_id='w2') == True
    assert scheduler.get_job(conn, job_id).status == JobStatus.DONE

def test_reclaim_expired_leases(conn, netze_bw):
    job_id = scheduler.enqueue(conn, new_session(conn), 'netze-bw.de', max_execution_seconds=60, now=T0)
    scheduler.lease(conn, 'w1', lease_grace_seconds=0, now=T0)

    assert scheduler.reclaim_expired_leases(conn, now=T0 + timedelta(seconds=30)) == 0
    assert scheduler.reclaim_expired_leases(conn, now=T0 + timedelta(seconds=61)) == 1

    job = scheduler.get_job(conn, job_id)
    assert job.status == JobStatus.QUEUED
    assert job.leased_by is None
    assert job.retry_count == 1
    assert job.last_error.startswith('lease held by w1 expired')

def test_dead_letter_after_max_retries(conn, netze_bw):
    session_id = new_session(conn)
    job_id = scheduler.enqueue(conn, session_id, 'netze-bw.de', max_retries=3, now=T0)
    rng = random.Random(1)

    for i in range(3):
        assert scheduler.fail(conn, job_id, 'connection reset', rng=rng, now=T0) == scheduler.RETRIED
        assert scheduler.get_job(conn, job_id).retry_count == i + 1

    assert scheduler.fail(conn, job_id, 'connection reset', rng=rng, now=T0) == scheduler.DEAD_LETTERED

    job = scheduler.get_job(conn, job_id)
    assert job.status == JobStatus.DEAD_LETTER
    assert job.last_error == 'connection reset'

    review = conn.execute('SELECT kind, session_id, job_id FROM dcr_review_queue').fetchall()
    assert review == [('dead_letter', session_id, job_id)]

    # Dead letters never come back.
    assert scheduler.lease(conn, 'w1', now=T0 + timedelta(days=30)) is None

def test_retry_is_scheduled_in_the_future(conn, netze_bw):
    job_id = scheduler.enqueue(conn, new_session(conn), 'netze-bw.de', now=T0)
    scheduler.fail(conn, job_id, 'timeout', base=30, rng=random.Random(7), now=T0)

    assert scheduler.lease(conn, 'w1', now=T0) is None
    assert scheduler.lease(conn, 'w1', now=T0 + timedelta(seconds=61)).job_id == job_id

def test_backoff_delay():
    rng = random.Random(42)

    means = []
    for n in range(6):
        delays = [scheduler.backoff_delay(n, base=30, cap=3600, rng=rng) for _ in range(500)]

        for delay in delays:
            assert 30 * 2 ** n - 30 <= delay <= 30 * 2 ** n + 30

        means.append(sum(delays) / len(delays))

    assert means == sorted(means)

    # Past the cap, the jitter can't push it over.
    assert scheduler.backoff_delay(20, base=30, cap=3600, rng=rng) == 3600

def test_paused_session_is_not_leased(conn, netze_bw):
    session_id = new_session(conn)
    job_id = scheduler.enqueue(conn, session_id, 'netze-bw.de', now=T0)

    sessions.pause(conn, session_id)
    assert scheduler.lease(conn, 'w1', now=T0 + timedelta(seconds=1)) is None

    sessions.resume(conn, session_id)
    assert scheduler.lease(conn, 'w1', now=T0 + timedelta(seconds=1)).job_id == job_id

def test_aging(conn, netze_bw):
    job_id = scheduler.enqueue(conn, new_session(conn), 'netze-bw.de', priority=1, now=T0)
    assert scheduler.get_job(conn, job_id).tier == scheduler.LOW

    assert scheduler.apply_aging(conn, None, now=T0 + timedelta(hours=1)) == 0
    assert scheduler.apply_aging(conn, 10, now=T0 + timedelta(minutes=5)) == 0

    assert scheduler.apply_aging(conn, 10, now=T0 + timedelta(minutes=11)) == 1
    assert scheduler.get_job(conn, job_id).tier == scheduler.NORMAL

    # The clock restarts in the new tier.
    assert scheduler.apply_aging(conn, 10, now=T0 + timedelta(minutes=15)) == 0
    assert scheduler.apply_aging(conn, 10, now=T0 + timedelta(minutes=22)) == 1
    assert scheduler.get_job(conn, job_id).tier == scheduler.HIGH

    assert scheduler.apply_aging(conn, 10, now=T0 + timedelta(hours=5)) == 0

def test_finished_session_jobs_are_archived(conn, netze_bw):
    session_id = new_session(conn)
    job_id = scheduler.enqueue(conn, session_id, 'netze-bw.de', now=T0)

    sessions.transition(conn, session_id, sessions.FAILED, message='gave up')

    assert scheduler.jobs_for_session(conn, session_id) == []
    assert conn.execute('SELECT id, status FROM dcr_job_history').fetchall() == [(job_id, 'queued')]

def test_tried_signatures(conn, netze_bw):
    session_id = new_session(conn)
    url = Strategy(pattern_type='url', signature='sig-url', definition={})
    content = Strategy(pattern_type='content', signature='sig-content', definition={'query': 'x'})

    first = scheduler.enqueue(conn, session_id, 'netze-bw.de', strategy=url, now=T0)
    second = scheduler.enqueue(conn, session_id, 'netze-bw.de', now=T0)
    assert scheduler.tried_signatures(conn, session_id) == {'sig-url'}

    scheduler.assign_strategy(conn, second, content)
    job = scheduler.get_job(conn, second)
    assert job.pattern_type == 'content'
    assert job.strategy_definition == {'query': 'x'}
    assert scheduler.tried_signatures(conn, session_id) == {'sig-url', 'sig-content'}

    assert scheduler.get_job(conn, first).strategy_definition == {}

def test_expired_lease_on_the_last_attempt(conn, netze_bw):
    job_id = scheduler.enqueue(conn, new_session(conn), 'netze-bw.de', max_retries=1, max_execution_seconds=60, now=T0)
    scheduler.lease(conn, 'w1', lease_grace_seconds=0, now=T0)

    job = scheduler.lease(conn, 'w2', lease_grace_seconds=0, now=T0 + timedelta(seconds=61))
    assert job.retry_count == 1
    assert job.last_error.startswith('lease held by w1 expired')

    # w1 is too late to report anything.
    with pytest.raises(LeaseLost):
        scheduler.fail(conn, job_id, 'connection reset', worker_id='w1', now=T0)
    with pytest.raises(LeaseLost):
        scheduler.assign_strategy(conn, job_id, Strategy(pattern_type='url', signature='s', definition={}), worker_id='w1')

    # No retries left: the job isn't handed out again, the ops loop has to give up on it.
    later = T0 + timedelta(seconds=200)
    assert scheduler.lease(conn, 'w3', now=later) is None
    assert scheduler.reclaim_expired_leases(conn, now=later) == 0
    assert [j.job_id for j in scheduler.expired_leases_without_retries(conn, now=later)] == [job_id]
    assert scheduler.expired_leases_without_retries(conn, now=T0 + timedelta(seconds=100)) == []

def test_job_ids_are_not_reused_after_archiving(conn, netze_bw):
    first = new_session(conn, 2023)
    old = scheduler.enqueue(conn, first, 'netze-bw.de', now=T0)
    sessions.transition(conn, first, sessions.FAILED, message='gave up')

    second = new_session(conn, 2024)
    new = scheduler.enqueue(conn, second, 'netze-bw.de', now=T0)
    assert new > old
    sessions.transition(conn, second, sessions.FAILED, message='gave up')

    assert conn.execute('SELECT id, session_id FROM dcr_job_history ORDER BY id').fetchall() == [(old, first), (new, second)]
