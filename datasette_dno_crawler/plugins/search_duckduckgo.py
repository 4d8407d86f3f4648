from ..hookspecs import hookimpl
from urllib.parse import parse_qs, urlparse
from selectolax.parser import HTMLParser
import httpx

SEARCH_RESULTS = 'search-results'
ENDPOINT = 'https://html.duckduckgo.com/html/'

client = httpx.Client(timeout=httpx.Timeout(5.0, read=15.0), follow_redirects=True)

def unwrap(href):
    """DuckDuckGo wraps result links as //duckduckgo.com/l/?uddg=<target>."""
    parsed = urlparse(href)
    if 'uddg' in parse_qs(parsed.query):
        return parse_qs(parsed.query)['uddg'][0]

    if href.startswith('//'):
        return 'https:' + href

    return href

def parse_results(html, limit):
    tree = HTMLParser(html)

    rv = []
    for result in tree.css('.result'):
        link = result.css_first('a.result__a')
        if link is None or not link.attributes.get('href'):
            continue

        snippet = result.css_first('.result__snippet')
        rv.append({
            'url': unwrap(link.attributes['href']),
            'title': link.text(strip=True),
            'snippet': snippet.text(strip=True) if snippet is not None else '',
        })

        if len(rv) >= limit:
            break

    return rv

@hookimpl
def config_defaults():
    return {
        SEARCH_RESULTS: 10,
    }

@hookimpl(trylast=True)
def search(config, query):
    try:
        response = client.post(
            ENDPOINT,
            data={'q': query, 'kl': 'de-de'},
            headers={'User-Agent': config.get('user-agent') or 'datasette-dno-crawler'},
        )
        response.raise_for_status()
    except httpx.HTTPError as e:
        return e

    return parse_results(response.text, config.get(SEARCH_RESULTS, 10))
