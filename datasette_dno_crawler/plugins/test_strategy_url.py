from datasette_dno_crawler.models import Strategy, Target
from datasette_dno_crawler.plugins.strategy_url import plan_urls

def test_plan_urls():
    target = Target(key='ewr', name='EWR Netz GmbH', website='https://www.ewr-netz.de/', aliases=())
    config = {'url-paths': {'netzentgelte': ['/netzentgelte', 'strom/netzentgelte-{year}']}}
    url = Strategy(pattern_type='url', signature='x', definition={}, metadata={'url_templates': ['https://www.ewr-netz.de/preise-{year}']})

    assert plan_urls(config, target, 2024, 'netzentgelte', url) == [
        'https://www.ewr-netz.de/preise-2024',
        'https://www.ewr-netz.de/netzentgelte',
        'https://www.ewr-netz.de/strom/netzentgelte-2024',
    ]

    assert plan_urls(config, target, 2024, 'hlzf', url) == ['https://www.ewr-netz.de/preise-2024']
    assert plan_urls(config, target, 2024, 'netzentgelte', url._replace(pattern_type='content')) == []
