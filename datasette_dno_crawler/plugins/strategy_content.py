from ..errors import TransientError
from ..hookspecs import hookimpl
from ..utils import domain_of

CONTENT_RESULTS = 'content-results'

QUERY_TERMS = {
    'netzentgelte': 'Netzentgelte Preisblatt',
    'hlzf': 'Hochlastzeitfenster',
}

def queries(target, data_type, year):
    terms = QUERY_TERMS.get(data_type, data_type)
    rv = ['{} {} {}'.format(target.name, terms, year)]
    for alias in target.aliases:
        rv.append('{} {} {}'.format(alias, terms, year))
    rv.append('site:{} {} {}'.format(domain_of(target.website), terms, year))
    return rv

@hookimpl
def config_defaults():
    return {
        CONTENT_RESULTS: 5,
    }

@hookimpl
def plan_urls(config, target, year, data_type, strategy):
    from ..plugin import pm

    if strategy.pattern_type != 'content':
        return []

    host = domain_of(target.website)
    found = []
    for query in strategy.definition.get('queries') or queries(target, data_type, year):
        results = pm.hook.search(config=config, query=query)

        if isinstance(results, Exception):
            raise TransientError('search for {!r} failed: {!r}'.format(query, results))

        for result in results or []:
            if result['url'] not in found:
                found.append(result['url'])

    # The operator's own site outranks third-party mirrors.
    found.sort(key=lambda url: domain_of(url) != host)
    return found[:config.get(CONTENT_RESULTS, 5)]
