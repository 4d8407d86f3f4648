import pytest
from datasette_dno_crawler.config import install_schema
from datasette_dno_crawler.hookspecs import hookimpl
from datasette_dno_crawler.plugin import pm
from datasette_dno_crawler.targets import register_target
from datasette_dno_crawler.utils import content_hash, lazy_connection_factory, timestamp

NETZENTGELTE_HTML = '''
<html>
<head><title>Netzentgelte 2024</title></head>
<body>
<table>
  <tr><th>Spannungsebene</th><th>Leistungspreis</th><th>Arbeitspreis</th></tr>
  <tr><td>Hochspannung</td><td>20,10</td><td>1,05</td></tr>
  <tr><td>Umspannung HS/MS</td><td>30,20</td><td>1,25</td></tr>
  <tr><td>Mittelspannung</td><td>45,30</td><td>1,50</td></tr>
  <tr><td>Umspannung MS/NS</td><td>60,40</td><td>1,90</td></tr>
  <tr><td>Niederspannung</td><td>75,50</td><td>2,40</td></tr>
</table>
</body>
</html>
'''

HLZF_HTML = '''
<html>
<head><title>Hochlastzeitfenster 2024</title></head>
<body>
<table>
  <tr><th>Jahreszeit</th><th>Zeitfenster</th></tr>
  <tr><td>Winter</td><td>07:30 - 10:00</td></tr>
  <tr><td>Frühling</td><td>entfällt</td></tr>
  <tr><td>Sommer</td><td>11:00 - 13:00</td></tr>
  <tr><td>Herbst</td><td>17:00 - 19:30</td></tr>
</table>
</body>
</html>
'''

def make_response(url, body, status_code=200, content_type='text/html; charset=utf-8'):
    if isinstance(body, str):
        content = body.encode('utf-8')
    else:
        content = body

    return {
        'url': url,
        'final_url': url,
        'fetched_at': timestamp(),
        'headers': [['content-type', content_type]],
        'status_code': status_code,
        'content_type': content_type,
        'content': content,
        'text': body if isinstance(body, str) else '',
        'content_hash': content_hash(content),
    }

class FakeWeb:
    """A stand-in for the internet. Unknown URLs are 404s.

    A page is a string of HTML, a response dict, an Exception to return, or a
    callable producing one of those. `default` is served for any other URL.
    Search results are lists of URLs, an Exception, or a callable producing one."""
    def __init__(self):
        self.pages = {}
        self.results = {}
        self.default = None
        self.fetched = []
        self.queries = []

    @hookimpl
    def fetch_url(self, url, request_headers):
        self.fetched.append(url)
        page = self.pages.get(url, self.default)

        if callable(page):
            page = page()

        if page is None:
            return make_response(url, 'not found', status_code=404, content_type='text/plain')

        if isinstance(page, (Exception, dict)):
            return page

        return make_response(url, page)

    @hookimpl
    def search(self, config, query):
        self.queries.append(query)
        rv = self.results.get(query, [])
        if callable(rv):
            rv = rv()
        if isinstance(rv, Exception):
            return rv
        return [{'url': url, 'title': url, 'snippet': ''} for url in rv]

@pytest.fixture
def web():
    fake = FakeWeb()
    pm.register(fake)
    yield fake
    pm.unregister(fake)

@pytest.fixture
def conn(tmp_path):
    factory = lazy_connection_factory({'default': tmp_path / 'db.sqlite'})
    conn = factory('default')
    install_schema(conn)
    yield conn
    conn.close()

@pytest.fixture
def netze_bw(conn):
    return register_target(conn, 'netze-bw', 'Netze BW GmbH', 'https://www.netze-bw.de', aliases=['Netze BW'])
