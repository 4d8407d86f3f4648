from ..hookspecs import hookimpl
from ..utils import get_html_parser, is_html
from urllib.parse import urljoin, urlparse

DOCUMENT_MIN_SCORE = 'document-min-score'
DOCUMENT_EXTENSIONS = ('.pdf', '.csv')

FILE_KEYWORDS = (
    ('netzentgelte', 0.9),
    ('hochlastzeitfenster', 0.9),
    ('preisblatt', 0.8),
    ('preisblätter', 0.8),
    ('entgelte', 0.75),
    ('tarife', 0.7),
    ('netz', 0.5),
    ('strom', 0.4),
    ('gas', 0.4),
    ('regulierung', 0.6),
    ('bedingungen', 0.5),
    ('veröffentlichung', 0.6),
)

def rank_file(url, label='', year=None):
    filename = urlparse(url).path.lower().rsplit('/', 1)[-1]
    haystack = filename + ' ' + label.lower()

    score = 0.0
    for keyword, weight in FILE_KEYWORDS:
        if keyword in haystack:
            score += weight

    if year and str(year) in haystack:
        score += 0.1

    return min(score, 1.0)

@hookimpl
def config_defaults():
    return {
        DOCUMENT_MIN_SCORE: 0.7,
    }

@hookimpl
def discover_urls(config, year, url, response):
    if not is_html(response):
        return []

    min_score = config.get(DOCUMENT_MIN_SCORE, 0.7)

    rv = []
    for a in get_html_parser(response).css('a'):
        href = (a.attributes.get('href') or '').strip()
        if not href:
            continue

        document = urljoin(url, href)
        if not urlparse(document).path.lower().endswith(DOCUMENT_EXTENSIONS):
            continue

        if rank_file(document, a.text(strip=True), year) >= min_score and document not in rv:
            rv.append(document)

    return rv
