from ..hookspecs import hookimpl
from ..utils import domain_of, get_html_parser, is_html
from urllib.parse import urljoin

NAVIGATION_LINKS = 'navigation-links'
NAVIGATION_MIN_SCORE = 'navigation-min-score'

KEYWORD_WEIGHTS = (
    ('veröffentlichungen', 0.85),
    ('veroeffentlichungen', 0.85),
    ('netzentgelte', 0.7),
    ('hochlastzeitfenster', 0.7),
    ('preisblätter', 0.65),
    ('preisblaetter', 0.65),
    ('entgelte', 0.6),
    ('downloads', 0.4),
    ('dokumente', 0.3),
    ('netzanschluss', 0.2),
)

NEGATIVE_KEYWORDS = (
    ('kontakt', 1.0),
    ('impressum', 1.0),
    ('datenschutz', 1.0),
    ('login', 1.0),
    ('karriere', 0.8),
    ('presse', 0.5),
    ('news', 0.3),
    ('blog', 0.5),
    ('?id=', 0.9),
    ('&id=', 0.9),
)

def rank_link(text, year=None):
    """Score a link's URL plus anchor text in [0, 1]."""
    text = text.lower()
    score = 0.1

    for keyword, penalty in NEGATIVE_KEYWORDS:
        if keyword in text:
            score -= penalty

    if score <= 0:
        return 0.0

    for keyword, weight in KEYWORD_WEIGHTS:
        if keyword in text:
            score += weight

    if year and str(year) in text:
        score += 0.1

    return max(0.0, min(1.0, score))

def ranked_links(response, base_url, year):
    host = domain_of(base_url)
    scores = {}

    for a in get_html_parser(response).css('a'):
        href = (a.attributes.get('href') or '').strip()
        if not href or href.startswith('#') or href.startswith('mailto:') or href.startswith('javascript:'):
            continue

        url = urljoin(base_url, href).split('#')[0]
        if domain_of(url) != host:
            continue

        score = rank_link(url + ' ' + a.text(strip=True), year)
        scores[url] = max(score, scores.get(url, 0.0))

    return sorted(scores.items(), key=lambda x: (-x[1], x[0]))

@hookimpl
def config_defaults():
    return {
        NAVIGATION_LINKS: 8,
        NAVIGATION_MIN_SCORE: 0.5,
    }

@hookimpl
def plan_urls(target, strategy):
    if strategy.pattern_type != 'navigation':
        return []

    return [strategy.definition.get('start') or target.website + '/']

@hookimpl
def discover_urls(config, strategy, year, url, response):
    if strategy.pattern_type != 'navigation' or not is_html(response):
        return []

    min_score = config.get(NAVIGATION_MIN_SCORE, 0.5)
    links = [link for link, score in ranked_links(response, url, year) if score >= min_score]
    return links[:config.get(NAVIGATION_LINKS, 8)]
