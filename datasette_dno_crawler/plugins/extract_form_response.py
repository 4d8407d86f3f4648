from ..hookspecs import hookimpl
from ..extraction import best_payloads
from ..payloads import SEASONS
import json

# JSON APIs tend to use the short codes; the table readers expect labels.
LEVEL_LABELS = {
    'hs': 'HS',
    'hs_ms': 'HS/MS',
    'ms': 'MS',
    'ms_ns': 'MS/NS',
    'ns': 'NS',
}

def level_label(value):
    value = str(value)
    return LEVEL_LABELS.get(value.lower(), value)

def record_rows(records):
    """[{voltage_level, leistung, arbeit, ...}] -> header row + one row per record."""
    records = [r for r in records if isinstance(r, dict)]
    if not records:
        return []

    fields = []
    for record in records:
        for k in record:
            if k != 'voltage_level' and k not in fields:
                fields.append(k)

    rv = [['voltage_level'] + fields]
    for record in records:
        rv.append([level_label(record.get('voltage_level', ''))] + ['' if record.get(f) is None else str(record.get(f)) for f in fields])
    return rv

def window_rows(windows, seasons=()):
    rv = []
    for window in windows:
        if isinstance(window, dict) and window.get('season'):
            rv.append([window['season'], '{} - {}'.format(window.get('start', ''), window.get('end', ''))])

    # Seasons reported without any window.
    mentioned = set(row[0] for row in rv)
    for season in seasons:
        if season not in mentioned:
            rv.append([season, 'entfällt'])
    return rv

def tables_from_json(obj):
    if isinstance(obj, list):
        if any(isinstance(x, dict) and 'season' in x for x in obj):
            return [window_rows(obj)]
        return [record_rows(obj)]

    if not isinstance(obj, dict):
        return []

    rv = []
    for key in ('records', 'netzentgelte'):
        if isinstance(obj.get(key), list):
            rv.append(record_rows(obj[key]))

    if isinstance(obj.get('levels'), dict):
        rv.append(record_rows([dict(v, voltage_level=k) for k, v in obj['levels'].items() if isinstance(v, dict)]))

    for key in ('windows', 'hlzf'):
        if isinstance(obj.get(key), list):
            seasons = [s for s in obj.get('seasons') or [] if s in SEASONS]
            rv.append(window_rows(obj[key], seasons))

    if 'data' in obj:
        rv.extend(tables_from_json(obj['data']))

    return [t for t in rv if t]

@hookimpl
def extract_candidates(response, data_types):
    if 'json' not in (response.get('content_type') or '').lower() or not response.get('text'):
        return []

    try:
        obj = json.loads(response['text'])
    except ValueError:
        return []

    year = obj.get('year') if isinstance(obj, dict) and isinstance(obj.get('year'), int) else None
    return best_payloads('form_response', tables_from_json(obj), data_types, year=year)
