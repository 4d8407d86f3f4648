from datasette_dno_crawler.plugins import robots_txt

def test_robots_url():
    assert robots_txt.robots_url('https://www.ewr-netz.de/netz/preise?x=1') == 'https://www.ewr-netz.de/robots.txt'

def test_remember_forgets_expired_and_oldest(monkeypatch):
    monkeypatch.setattr(robots_txt, '_parsers', {})
    monkeypatch.setattr(robots_txt, 'MAX_PARSERS', 2)

    robots_txt.remember('a', 10, None, now=0)
    robots_txt.remember('b', 5, None, now=0)

    # b expired, so there's room for c.
    robots_txt.remember('c', 10, None, now=6)
    assert list(robots_txt._parsers) == ['a', 'c']

    robots_txt.remember('d', 20, None, now=7)
    assert list(robots_txt._parsers) == ['c', 'd']
