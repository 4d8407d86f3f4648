from ..hookspecs import hookimpl

URL_PATHS = 'url-paths'

def learned_urls(strategy, year):
    rv = []
    for template in (strategy.metadata or {}).get('url_templates', []):
        rv.append(template.replace('{year}', str(year)))
    return rv

@hookimpl
def config_defaults():
    return {
        URL_PATHS: {
            'netzentgelte': [
                '/netzentgelte',
                '/netzentgelte-{year}',
                '/netzzugang/netzentgelte',
                '/strom/netzentgelte',
                '/veroeffentlichungen/netzentgelte',
            ],
            'hlzf': [
                '/hochlastzeitfenster',
                '/hochlastzeitfenster-{year}',
                '/netzzugang/hochlastzeitfenster',
                '/strom/hochlastzeitfenster',
                '/veroeffentlichungen/hochlastzeitfenster',
            ],
        }
    }

@hookimpl
def plan_urls(config, target, year, data_type, strategy):
    if strategy.pattern_type != 'url':
        return []

    paths = strategy.definition.get('paths') or (config.get(URL_PATHS) or {}).get(data_type, [])

    # What worked last time comes first.
    rv = learned_urls(strategy, year)
    for path in paths:
        url = target.website.rstrip('/') + '/' + path.format(year=year, key=target.key).lstrip('/')
        if url not in rv:
            rv.append(url)

    return rv
