from ..hookspecs import hookimpl
from urllib.parse import urlparse
from urllib.robotparser import RobotFileParser
import time

RESPECT_ROBOTS_TXT = 'respect-robots-txt'

# host -> (expires, parser); None parser means everything is allowed.
_parsers = {}
TTL_SECONDS = 3600
MAX_PARSERS = 1000

def robots_url(url):
    parsed = urlparse(url)
    return '{}://{}/robots.txt'.format(parsed.scheme, parsed.netloc)

def remember(key, expires, parser, now):
    for k in [k for k, (e, _) in _parsers.items() if e <= now]:
        del _parsers[k]

    # Still full: forget the longest-known hosts.
    while len(_parsers) >= MAX_PARSERS:
        del _parsers[next(iter(_parsers))]

    _parsers[key] = (expires, parser)

def get_parser(url, user_agent):
    from ..plugin import pm

    key = robots_url(url)
    now = time.monotonic()

    if key in _parsers and _parsers[key][0] > now:
        return _parsers[key][1]

    request_headers = {}
    if user_agent:
        request_headers['User-Agent'] = user_agent

    response = pm.hook.fetch_url(url=key, request_headers=request_headers)
    parser = None

    # Missing or broken robots.txt: assume we're welcome.
    if response and not isinstance(response, Exception) and response['status_code'] >= 200 and response['status_code'] <= 299:
        parser = RobotFileParser(key)
        parser.parse((response.get('text') or '').splitlines())

    remember(key, now + TTL_SECONDS, parser, now)
    return parser

@hookimpl
def config_defaults():
    return {
        RESPECT_ROBOTS_TXT: True,
    }

@hookimpl
def before_fetch_url(config, url, request_headers):
    if not config.get(RESPECT_ROBOTS_TXT):
        return

    user_agent = request_headers.get('User-Agent') or config.get('user-agent')
    parser = get_parser(url, user_agent)

    if parser is None:
        return

    if not parser.can_fetch(user_agent or '*', url):
        return 'disallowed by robots.txt'
