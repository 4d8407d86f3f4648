import json
from datasette import Response
from .config import enabled_databases, get_settings
from .errors import FatalRequestError, InvalidTransition, NotFound
from . import orchestrator

class BadRequest(Exception):
    pass

def session_to_dict(session):
    rv = session._asdict()
    rv['state'] = session.state.value
    rv['paused_from'] = session.paused_from.value if session.paused_from else None
    return rv

def pattern_to_dict(pattern):
    rv = pattern._asdict()
    rv['review_state'] = pattern.review_state.value
    return rv

def target_to_dict(target):
    rv = target._asdict()
    rv['aliases'] = list(target.aliases)
    return rv

async def read_body(request):
    body = await request.post_body()

    if not body:
        return {}

    try:
        rv = json.loads(body)
    except ValueError:
        raise BadRequest('request body is not valid JSON')

    if not isinstance(rv, dict):
        raise BadRequest('request body must be a JSON object')

    return rv

def require(body, key):
    if not key in body:
        raise BadRequest('missing field: {}'.format(key))

    return body[key]

def api(method):
    """Wrap a handler(datasette, request, db) so that errors become JSON responses."""
    def decorator(fn):
        async def inner(datasette, request):
            if request.method != method:
                return Response.json({'ok': False, 'error': 'Unexpected method'}, status=405)

            db = datasette.databases[request.url_vars['db']]

            try:
                rv = await fn(datasette, request, db)
            except (BadRequest, FatalRequestError) as e:
                return Response.json({'ok': False, 'error': str(e)}, status=400)
            except NotFound as e:
                return Response.json({'ok': False, 'error': str(e)}, status=404)
            except InvalidTransition as e:
                return Response.json({'ok': False, 'error': str(e)}, status=409)

            return Response.json(rv)

        return inner

    return decorator

@api('POST')
async def dno_crawler_targets(datasette, request, db):
    body = await read_body(request)
    key = require(body, 'key')
    name = require(body, 'name')
    website = require(body, 'website')
    aliases = body.get('aliases') or []

    target = await db.execute_write_fn(lambda conn: orchestrator.register_target(conn, key, name, website, aliases), block=True)
    return {'ok': True, 'target': target_to_dict(target)}

@api('GET')
async def dno_crawler_target_patterns(datasette, request, db):
    key = request.url_vars['key']
    rv = await db.execute_fn(lambda conn: orchestrator.list_patterns(conn, key))
    return {'ok': True, 'patterns': [pattern_to_dict(p) for p in rv]}

@api('POST')
async def dno_crawler_sessions(datasette, request, db):
    body = await read_body(request)
    target_key = require(body, 'target_key')
    year = require(body, 'year')
    data_types = require(body, 'data_types')
    priority = body.get('priority', 5)
    created_by = body.get('created_by')
    settings = datasette.plugin_config('datasette-dno-crawler', db.name) or {}

    session_id = await db.execute_write_fn(
        lambda conn: orchestrator.submit_request(conn, target_key, year, data_types, priority=priority, created_by=created_by, config=settings),
        block=True
    )
    return {'ok': True, 'session_id': session_id}

@api('GET')
async def dno_crawler_session(datasette, request, db):
    session_id = request.url_vars['id']
    session = await db.execute_fn(lambda conn: orchestrator.get_session_status(conn, session_id))
    return {'ok': True, 'session': session_to_dict(session)}

@api('GET')
async def dno_crawler_session_events(datasette, request, db):
    session_id = request.url_vars['id']
    events = await db.execute_fn(lambda conn: orchestrator.get_session_events(conn, session_id))
    return {'ok': True, 'events': events}

@api('POST')
async def dno_crawler_session_cancel(datasette, request, db):
    session_id = request.url_vars['id']
    state = await db.execute_write_fn(lambda conn: orchestrator.cancel_session(conn, session_id), block=True)
    return {'ok': True, 'state': state.value}

@api('POST')
async def dno_crawler_session_resume(datasette, request, db):
    session_id = request.url_vars['id']
    state = await db.execute_write_fn(lambda conn: orchestrator.resume_session(conn, session_id), block=True)
    return {'ok': True, 'state': state.value}

@api('POST')
async def dno_crawler_session_annotate(datasette, request, db):
    session_id = request.url_vars['id']
    notes = require(await read_body(request), 'notes')
    session = await db.execute_write_fn(lambda conn: orchestrator.annotate_session(conn, session_id, notes), block=True)
    return {'ok': True, 'session': session_to_dict(session)}

@api('POST')
async def dno_crawler_pattern_review(datasette, request, db):
    pattern_id = int(request.url_vars['id'])
    body = await read_body(request)
    decision = require(body, 'decision')
    notes = body.get('notes')

    pattern = await db.execute_write_fn(lambda conn: orchestrator.admin_review_pattern(conn, pattern_id, decision, notes), block=True)
    return {'ok': True, 'pattern': pattern_to_dict(pattern)}

@api('POST')
async def dno_crawler_pattern_confidence(datasette, request, db):
    pattern_id = int(request.url_vars['id'])
    body = await read_body(request)
    confidence = require(body, 'confidence')
    notes = body.get('notes')

    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        raise BadRequest('confidence must be a number')

    pattern = await db.execute_write_fn(lambda conn: orchestrator.override_pattern_confidence(conn, pattern_id, confidence, notes), block=True)
    return {'ok': True, 'pattern': pattern_to_dict(pattern)}

@api('GET')
async def dno_crawler_review_queue(datasette, request, db):
    include_resolved = request.args.get('include_resolved') == '1'
    items = await db.execute_fn(lambda conn: orchestrator.list_review_queue(conn, include_resolved=include_resolved))
    return {'ok': True, 'items': items}

@api('POST')
async def dno_crawler_review_queue_resolve(datasette, request, db):
    item_id = int(request.url_vars['id'])
    await db.execute_write_fn(lambda conn: orchestrator.resolve_review_item(conn, item_id), block=True)
    return {'ok': True}

@api('POST')
async def dno_crawler_domain_limits(datasette, request, db):
    body = await read_body(request)
    domain = require(body, 'domain')
    max_concurrent = require(body, 'max_concurrent')

    await db.execute_write_fn(lambda conn: orchestrator.set_domain_limit(conn, domain, max_concurrent), block=True)
    return {'ok': True}

@api('GET')
async def dno_crawler_settings(datasette, request, db):
    return {'ok': True, 'settings': get_settings(datasette, db.name)}

def get_routes(datasette):
    routes = []

    for db in enabled_databases(datasette):
        routes.append((r"^/(?P<db>{})/-/dno-crawler/settings$".format(db), dno_crawler_settings))
        routes.append((r"^/(?P<db>{})/-/dno-crawler/targets$".format(db), dno_crawler_targets))
        routes.append((r"^/(?P<db>{})/-/dno-crawler/targets/(?P<key>[^/]+)/patterns$".format(db), dno_crawler_target_patterns))
        routes.append((r"^/(?P<db>{})/-/dno-crawler/sessions$".format(db), dno_crawler_sessions))
        routes.append((r"^/(?P<db>{})/-/dno-crawler/sessions/(?P<id>[0-9a-f-]+)$".format(db), dno_crawler_session))
        routes.append((r"^/(?P<db>{})/-/dno-crawler/sessions/(?P<id>[0-9a-f-]+)/events$".format(db), dno_crawler_session_events))
        routes.append((r"^/(?P<db>{})/-/dno-crawler/sessions/(?P<id>[0-9a-f-]+)/cancel$".format(db), dno_crawler_session_cancel))
        routes.append((r"^/(?P<db>{})/-/dno-crawler/sessions/(?P<id>[0-9a-f-]+)/resume$".format(db), dno_crawler_session_resume))
        routes.append((r"^/(?P<db>{})/-/dno-crawler/sessions/(?P<id>[0-9a-f-]+)/annotate$".format(db), dno_crawler_session_annotate))
        routes.append((r"^/(?P<db>{})/-/dno-crawler/patterns/(?P<id>[0-9]+)/review$".format(db), dno_crawler_pattern_review))
        routes.append((r"^/(?P<db>{})/-/dno-crawler/patterns/(?P<id>[0-9]+)/confidence$".format(db), dno_crawler_pattern_confidence))
        routes.append((r"^/(?P<db>{})/-/dno-crawler/review-queue$".format(db), dno_crawler_review_queue))
        routes.append((r"^/(?P<db>{})/-/dno-crawler/review-queue/(?P<id>[0-9]+)/resolve$".format(db), dno_crawler_review_queue_resolve))
        routes.append((r"^/(?P<db>{})/-/dno-crawler/domain-limits$".format(db), dno_crawler_domain_limits))

    return routes
