import random
from conftest import HLZF_HTML, NETZENTGELTE_HTML
from datasette_dno_crawler import feedback, orchestrator, patterns, scheduler
from datasette_dno_crawler.config import merge_settings
from datasette_dno_crawler.models import SessionState
from datasette_dno_crawler.worker_crawl import crawl_loop
from datasette_dno_crawler.worker_ops import ops_loop

def crawl(conn, settings):
    outcomes = []
    rng = random.Random(0)
    for i in range(10):
        outcome = crawl_loop(conn, 'w1', settings, rng=rng, lease_timeout=0)
        if outcome is None:
            break
        outcomes.append(outcome)
    return outcomes

def test_first_crawl_learns_a_pattern(conn, netze_bw, web):
    web.pages['https://www.netze-bw.de/netzentgelte'] = NETZENTGELTE_HTML
    session_id = orchestrator.submit_request(conn, 'netze-bw', 2024, ['netzentgelte'], created_by='test')

    assert crawl(conn, merge_settings({})) == [feedback.COMPLETED]

    session = orchestrator.get_session_status(conn, session_id)
    assert session.state == SessionState.COMPLETED
    assert session.progress_percentage == 100
    assert session.satisfied_data_types == ['netzentgelte']

    pattern, = patterns.list_patterns(conn, 'netze-bw')
    assert pattern.pattern_type == 'url'
    assert (pattern.success_count, pattern.failure_count) == (1, 0)
    assert pattern.metadata['endpoints'] == ['https://www.netze-bw.de/netzentgelte']

    rows = conn.execute("SELECT voltage_level, value_id, value, unit FROM netzentgelte_data WHERE key = 'netze-bw' AND year = 2024 AND voltage_level = 'ns' ORDER BY value_id").fetchall()
    assert rows == [('ns', 'arbeit', 2.4, 'ct/kWh'), ('ns', 'leistung', 75.5, 'EUR/kW/a')]
    assert conn.execute('SELECT COUNT(*) FROM netzentgelte_data').fetchone() == (10,)

    # The job is done and archived; the crawl path and the fetched page are kept.
    assert scheduler.jobs_for_session(conn, session_id) == []
    assert conn.execute('SELECT status FROM dcr_job_history').fetchall() == [('done',)]
    assert conn.execute('SELECT confidence > 0 FROM dcr_crawl_path').fetchall() == [(1,)]
    assert conn.execute("SELECT COUNT(*) FROM dcr_fetch_log WHERE url = 'https://www.netze-bw.de/netzentgelte'").fetchone() == (1,)

    events = [e['to_state'] for e in orchestrator.get_session_events(conn, session_id) if e['event'] == 'transition']
    assert events == ['initializing', 'crawling', 'extracting', 'completed']

def test_both_data_types_in_one_session(conn, netze_bw, web):
    web.pages['https://www.netze-bw.de/netzentgelte'] = NETZENTGELTE_HTML
    web.pages['https://www.netze-bw.de/hochlastzeitfenster'] = HLZF_HTML
    session_id = orchestrator.submit_request(conn, 'netze-bw', 2024, ['netzentgelte', 'hlzf'])

    assert crawl(conn, merge_settings({})) == [feedback.COMPLETED]
    assert orchestrator.get_session_status(conn, session_id).satisfied_data_types == ['hlzf', 'netzentgelte']

    rows = dict(conn.execute("SELECT value_id, value FROM hlzf_data WHERE key = 'netze-bw' AND year = 2024").fetchall())
    assert rows == {
        'winter_1_start': '07:30:00',
        'winter_1_end': '10:00:00',
        'fruehling': None,
        'sommer_1_start': '11:00:00',
        'sommer_1_end': '13:00:00',
        'herbst_1_start': '17:00:00',
        'herbst_1_end': '19:30:00',
    }

def test_next_year_starts_from_what_worked(conn, netze_bw, web):
    web.pages['https://www.netze-bw.de/netzentgelte-2024'] = NETZENTGELTE_HTML
    orchestrator.submit_request(conn, 'netze-bw', 2024, ['netzentgelte'], config={'epsilon': 0})
    assert crawl(conn, merge_settings({})) == [feedback.COMPLETED]

    pattern, = patterns.list_patterns(conn, 'netze-bw')
    assert pattern.metadata['url_templates'] == ['https://www.netze-bw.de/netzentgelte-{year}']

    web.fetched = []
    web.pages['https://www.netze-bw.de/netzentgelte-2025'] = NETZENTGELTE_HTML.replace('2024', '2025')
    session_id = orchestrator.submit_request(conn, 'netze-bw', 2025, ['netzentgelte'], config={'epsilon': 0})
    assert crawl(conn, merge_settings({})) == [feedback.COMPLETED]

    # The learned URL goes first, so nothing else had to be fetched.
    assert [url for url in web.fetched if not url.endswith('/robots.txt')] == ['https://www.netze-bw.de/netzentgelte-2025']

    pattern, = patterns.list_patterns(conn, 'netze-bw')
    assert pattern.success_count == 2
    assert conn.execute('SELECT COUNT(*) FROM netzentgelte_data WHERE year = 2025').fetchone() == (10,)
    assert orchestrator.get_session_status(conn, session_id).state == SessionState.COMPLETED

def test_structural_replays_an_earlier_year(conn, netze_bw, web):
    web.pages['https://www.netze-bw.de/netzentgelte-2024'] = NETZENTGELTE_HTML
    orchestrator.submit_request(conn, 'netze-bw', 2024, ['netzentgelte'], config={'epsilon': 0})
    assert crawl(conn, merge_settings({})) == [feedback.COMPLETED]

    # Someone decides the url pattern is wrong; the crawl path is still good evidence.
    pattern, = patterns.list_patterns(conn, 'netze-bw')
    orchestrator.admin_review_pattern(conn, pattern.id, 'rejected')

    web.pages['https://www.netze-bw.de/netzentgelte-2023'] = NETZENTGELTE_HTML.replace('2024', '2023')
    orchestrator.submit_request(conn, 'netze-bw', 2023, ['netzentgelte'], config={'epsilon': 1})
    outcomes = crawl(conn, merge_settings({}))

    assert outcomes[-1] == feedback.COMPLETED
    winner = [p for p in patterns.list_patterns(conn, 'netze-bw') if p.success_count > 0 and p.id != pattern.id]
    assert [p.pattern_type for p in winner] == ['structural']

def test_navigation_follows_promising_links(conn, netze_bw, web):
    web.pages['https://www.netze-bw.de/'] = '''
        <html><body>
          <a href="/impressum">Impressum</a>
          <a href="/karriere">Karriere</a>
          <a href="/unternehmen/veroeffentlichungen">Veröffentlichungen</a>
        </body></html>
    '''
    web.pages['https://www.netze-bw.de/unternehmen/veroeffentlichungen'] = '''
        <html><body>
          <a href="/fileadmin/preise.html">Netzentgelte 2024</a>
        </body></html>
    '''
    web.pages['https://www.netze-bw.de/fileadmin/preise.html'] = NETZENTGELTE_HTML

    # Only navigation is left untried.
    for pattern_type in ('url', 'file_naming', 'content'):
        p = patterns.record_outcome(conn, patterns.pattern_signature(pattern_type), 'netze-bw', False, 1.0, pattern_type=pattern_type)
        patterns.admin_review(conn, p.id, 'rejected')

    session_id = orchestrator.submit_request(conn, 'netze-bw', 2024, ['netzentgelte'])
    assert crawl(conn, merge_settings({})) == [feedback.COMPLETED]

    assert 'https://www.netze-bw.de/impressum' not in web.fetched
    assert 'https://www.netze-bw.de/karriere' not in web.fetched
    assert orchestrator.get_session_status(conn, session_id).state == SessionState.COMPLETED

def test_content_search(conn, netze_bw, web):
    web.results['Netze BW GmbH Netzentgelte Preisblatt 2024'] = ['https://www.netze-bw.de/preisblatt']
    web.pages['https://www.netze-bw.de/preisblatt'] = NETZENTGELTE_HTML

    for pattern_type in ('url', 'file_naming', 'navigation'):
        sig = patterns.pattern_signature(pattern_type)
        p = patterns.record_outcome(conn, sig, 'netze-bw', False, 1.0, pattern_type=pattern_type)
        patterns.admin_review(conn, p.id, 'rejected')

    session_id = orchestrator.submit_request(conn, 'netze-bw', 2024, ['netzentgelte'])
    assert crawl(conn, merge_settings({})) == [feedback.COMPLETED]

    assert 'Netze BW GmbH Netzentgelte Preisblatt 2024' in web.queries
    states = [e['to_state'] for e in orchestrator.get_session_events(conn, session_id) if e['event'] == 'transition']
    assert states == ['initializing', 'searching', 'crawling', 'extracting', 'completed']

def test_ops_loop_reports_review_items_once(conn, netze_bw, web):
    partial = NETZENTGELTE_HTML.split('<tr><td>Hochspannung')[0] + '<tr><td>Niederspannung</td><td>75,50</td><td>2,40</td></tr></table></body></html>'
    web.pages['https://www.netze-bw.de/netzentgelte'] = partial
    orchestrator.submit_request(conn, 'netze-bw', 2024, ['netzentgelte'])
    settings = merge_settings({})

    assert crawl(conn, settings)[-1] == feedback.LOW_CONFIDENCE
    assert ops_loop(conn, settings) == (0, 0, 1)
    assert ops_loop(conn, settings) == (0, 0, 0)

    review, = orchestrator.list_review_queue(conn)
    assert review['reported_at'] is not None
