from ..hookspecs import hookimpl
from ..utils import decode_text, timestamp
import httpx

USER_AGENT = 'user-agent'

timeout = httpx.Timeout(5.0, read=20.0)
client = httpx.Client(timeout=timeout, follow_redirects=True)

@hookimpl
def config_defaults():
    return {
        USER_AGENT: 'datasette-dno-crawler (+https://github.com/cldellow/datasette-dno-crawler)',
    }

@hookimpl
def before_fetch_url(config, request_headers):
    if config.get(USER_AGENT) and not 'User-Agent' in request_headers:
        request_headers['User-Agent'] = config[USER_AGENT]

@hookimpl(trylast=True)
def fetch_url(url, request_headers):
    fetched_at = timestamp()
    try:
        response = client.get(url, headers=request_headers)

        headers = []
        for k, v in response.headers.items():
            headers.append([k, v])

        content_type = response.headers.get('content-type', '')
        return {
            'url': url,
            'final_url': str(response.url),
            'fetched_at': fetched_at,
            'headers': headers,
            'status_code': response.status_code,
            'content_type': content_type,
            'content': response.content,
            'text': decode_text(response.content, content_type),
        }
    except httpx.HTTPError as e:
        return e
