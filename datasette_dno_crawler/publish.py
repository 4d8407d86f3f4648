from more_itertools import batched
from .parsing import parse_decimal, parse_time
from .payloads import PRICE_FIELDS
from .utils import transaction

UNITS = {
    'leistung': 'EUR/kW/a',
    'leistung_unter_2500h': 'EUR/kW/a',
    'arbeit': 'ct/kWh',
    'arbeit_unter_2500h': 'ct/kWh',
}

def netzentgelte_rows(target_key, year, candidate_id, candidate):
    rv = []
    for record in candidate.payload.records:
        for field in PRICE_FIELDS:
            raw = getattr(record, field)
            if raw is None:
                continue

            rv.append([target_key, year, record.voltage_level, field, parse_decimal(raw), UNITS[field], candidate.final_url, candidate_id])
    return rv

def hlzf_rows(target_key, year, candidate_id, candidate):
    rv = []
    counts = {}
    for window in candidate.payload.windows:
        n = counts[window.season] = counts.get(window.season, 0) + 1
        rv.append([target_key, year, '{}_{}_start'.format(window.season, n), parse_time(window.start), candidate.final_url, candidate_id])
        rv.append([target_key, year, '{}_{}_end'.format(window.season, n), parse_time(window.end), candidate.final_url, candidate_id])

    # A season listed without windows has no high-load window that year.
    for season in candidate.payload.seasons:
        if season not in counts:
            rv.append([target_key, year, season, None, candidate.final_url, candidate_id])

    return rv

def publish(conn, target_key, year, candidate_id, candidate, batch_size=100):
    """Replace the accepted data for (target_key, year) with this candidate's."""
    if candidate.data_type == 'netzentgelte':
        rows = netzentgelte_rows(target_key, year, candidate_id, candidate)
        delete = 'DELETE FROM netzentgelte_data WHERE key = ? AND year = ?'
        insert = 'INSERT INTO netzentgelte_data(key, year, voltage_level, value_id, value, unit, source_url, candidate_id) VALUES (?, ?, ?, ?, ?, ?, ?, ?)'
    elif candidate.data_type == 'hlzf':
        rows = hlzf_rows(target_key, year, candidate_id, candidate)
        delete = 'DELETE FROM hlzf_data WHERE key = ? AND year = ?'
        insert = 'INSERT INTO hlzf_data(key, year, value_id, value, source_url, candidate_id) VALUES (?, ?, ?, ?, ?, ?)'
    else:
        raise ValueError('unknown data type: {}'.format(candidate.data_type))

    with transaction(conn):
        conn.execute(delete, [target_key, year])
        for batch in batched(rows, batch_size):
            conn.executemany(insert, batch)

    print('published {} {} values for {} {} from candidate {}'.format(len(rows), candidate.data_type, target_key, year, candidate_id))
    return len(rows)
