from pluggy import HookimplMarker
from pluggy import HookspecMarker

hookspec = HookspecMarker("datasette_dno_crawler")
hookimpl = HookimplMarker("datasette_dno_crawler")

@hookspec
def config_defaults():
    """Returns a dict of setting name -> default value for settings the plugin reads."""

@hookspec(firstresult=True)
def search(config, query):
    """Run a search-engine query. Returns a ranked list of {url, title, snippet},
    or an Exception if the search engine could not be reached."""

@hookspec
def plan_urls(conn, config, target, year, data_type, strategy):
    """Return the URLs to fetch first (depth 0) when executing `strategy`."""

@hookspec(firstresult=True)
def before_fetch_url(conn, config, url, request_headers):
    """Reject a URL by returning a reason, or modify its request headers."""

@hookspec(firstresult=True)
def fetch_cached_url(conn, config, url, request_headers):
    """Fetch a previously cached URL."""

@hookspec()
def after_fetch_url(conn, config, url, request_headers, response, fresh, fetch_duration):
    """Process a fetched URL. Useful for caching or logging."""

@hookspec(firstresult=True)
def fetch_url(url, request_headers):
    """Fetch a URL live from an origin server. Returns a response dict, or the Exception."""

@hookspec()
def discover_urls(config, strategy, data_type, year, url, depth, response):
    """Discover new URLs to crawl from a fetched response. Returns urls or (url, depth) tuples."""

@hookspec()
def extract_candidates(config, response, data_types):
    """Read typed data out of a response. Returns a list of models.Extraction."""
