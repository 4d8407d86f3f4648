from ..hookspecs import hookimpl
from ..feedback import best_crawl_path

@hookimpl
def plan_urls(conn, target, year, strategy):
    """Replay the endpoints of this target's best recorded crawl, for the requested year."""
    if strategy.pattern_type != 'structural':
        return []

    path = best_crawl_path(conn, target.key)
    if path is None:
        return []

    rv = []
    for endpoint in path.endpoints:
        url = endpoint.replace(str(path.year), str(year))
        if url not in rv:
            rv.append(url)
    return rv
