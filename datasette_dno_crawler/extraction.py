"""Extraction Pipeline.

Every extract_candidates plugin reads each response independently; all of their
candidates above the confidence floor are kept, and the quality evaluator makes
the final call. The table interpreters below are shared so that an HTML table
and a PDF table with the same layout read the same way.
"""
import re
from itertools import zip_longest
from .models import Extraction, ExtractionCandidate
from .parsing import classify_price_column, classify_season, classify_voltage_level, find_year, is_missing, parse_decimal
from .payloads import HlzfPayload, HlzfWindow, NetzentgeltePayload, NetzentgelteRecord, VOLTAGE_LEVELS, dump_payload
from .utils import content_hash, transaction

METHOD_BASELINES = {
    'html_table': 0.9,
    'form_response': 0.8,
    'pdf_table': 0.75,
    'document_text': 0.5,
}

_time_range_re = re.compile(r'(\d{1,2}:\d{2}(?::\d{2})?)\s*(?:uhr)?\s*(?:-|–|bis)\s*(\d{1,2}:\d{2}(?::\d{2})?)', re.IGNORECASE)
_single_time_re = re.compile(r'^\d{1,2}:\d{2}(?::\d{2})?(\s*uhr)?$', re.IGNORECASE)

def _clean(cell):
    if cell is None:
        return ''
    return ' '.join(str(cell).split())

def _transpose(rows):
    return [list(column) for column in zip_longest(*rows, fillvalue='')]

def _header_fields(cells):
    positions = {}
    for i, cell in enumerate(cells):
        field = classify_price_column(cell)
        if field:
            positions.setdefault(field, []).append(i)

    fields = {}
    for field, idxs in positions.items():
        # "Leistungspreis | Arbeitspreis | Leistungspreis | Arbeitspreis" is the
        # usual < 2500 h / >= 2500 h layout, with the shorter utilisation first.
        if len(idxs) > 1 and not field.endswith('_unter_2500h') and field + '_unter_2500h' not in positions:
            fields[idxs[0]] = field + '_unter_2500h'
            fields[idxs[1]] = field
        else:
            fields[idxs[0]] = field

    return fields

def _read_netzentgelte(rows, default_fields):
    columns = None
    found = {}

    for row in rows:
        cells = [_clean(c) for c in row]
        levels = [(i, classify_voltage_level(c)) for i, c in enumerate(cells)]
        levels = [x for x in levels if x[1]]

        if not levels:
            header = _header_fields(cells)
            if header:
                columns = header
            continue

        level_idx, level = levels[0]
        values = {}

        if columns:
            for i, field in columns.items():
                if i < len(cells) and i != level_idx and not is_missing(cells[i]):
                    values[field] = cells[i]
        elif default_fields:
            numbers = [c for c in cells[level_idx + 1:] if parse_decimal(c) is not None]
            for field, value in zip(default_fields, numbers):
                values[field] = value

        if not values:
            continue

        merged = found.setdefault(level, {})
        for k, v in values.items():
            merged.setdefault(k, v)

    return tuple(NetzentgelteRecord(voltage_level=level, **found[level]) for level in VOLTAGE_LEVELS if level in found)

def rows_to_netzentgelte(rows, year=None, default_fields=None):
    """Read grid fees out of table rows (lists of cell strings).

    Voltage levels may be rows or columns. Without a header naming the price
    columns, `default_fields` assigns the numbers after each level label in order."""
    rows = [list(row) for row in rows if row]
    if not rows:
        return None

    records = _read_netzentgelte(rows, default_fields) or _read_netzentgelte(_transpose(rows), default_fields)

    if not records:
        return None

    if year is None:
        year = find_year(' '.join(_clean(c) for row in rows for c in row))

    return NetzentgeltePayload(records=records, year=year)

def _read_hlzf(rows):
    seasons = []
    windows = []

    for row in rows:
        cells = [_clean(c) for c in row]

        season = None
        for i, cell in enumerate(cells):
            season = classify_season(cell)
            if season:
                break

        if not season:
            continue

        rest = cells[i + 1:]
        found = []
        for cell in rest:
            found.extend(_time_range_re.findall(cell))

        if not found:
            singles = [c for c in rest if _single_time_re.match(c)]
            found = list(zip(singles[0::2], singles[1::2]))

        if not found and not any(c and is_missing(c) for c in rest):
            continue

        if season not in seasons:
            seasons.append(season)

        for start, end in found:
            window = HlzfWindow(season=season, start=start, end=end)
            if window not in windows:
                windows.append(window)

    return tuple(seasons), tuple(windows)

def rows_to_hlzf(rows, year=None):
    """Read high-load time windows per season out of table rows."""
    rows = [list(row) for row in rows if row]
    if not rows:
        return None

    seasons, windows = _read_hlzf(rows)
    if not seasons:
        seasons, windows = _read_hlzf(_transpose(rows))

    if not seasons:
        return None

    if year is None:
        year = find_year(' '.join(_clean(c) for row in rows for c in row))

    return HlzfPayload(windows=windows, seasons=seasons, year=year)

def rows_to_payload(rows, data_type, year=None, default_fields=None):
    if data_type == 'netzentgelte':
        return rows_to_netzentgelte(rows, year=year, default_fields=default_fields)

    if data_type == 'hlzf':
        return rows_to_hlzf(rows, year=year)

    raise ValueError('unknown data type: {}'.format(data_type))

def payload_size(payload):
    if isinstance(payload, NetzentgeltePayload):
        return len(payload.records)
    return len(payload.windows) + len(payload.seasons)

def confidence_for(method, payload):
    """The method's baseline, discounted for sparse readings."""
    if isinstance(payload, NetzentgeltePayload):
        filled = [r for r in payload.records if (r.leistung and r.arbeit) or (r.leistung_unter_2500h and r.arbeit_unter_2500h)]
        ratio = len(filled) / len(payload.records) if payload.records else 0.0
    else:
        ratio = 1.0 if payload.windows else 0.5

    return round(METHOD_BASELINES[method] * (0.5 + 0.5 * ratio), 6)

def best_payloads(method, tables, data_types, year=None, default_fields=None):
    """Read every table as every data type; keep the largest reading per data type."""
    best = {}
    for rows in tables:
        for data_type in data_types:
            payload = rows_to_payload(rows, data_type, default_fields=default_fields)
            if payload is None:
                continue

            if payload.year is None and year is not None:
                payload = payload._replace(year=year)

            if data_type not in best or payload_size(payload) > payload_size(best[data_type]):
                best[data_type] = payload

    return [Extraction(method, data_type, payload, confidence_for(method, payload)) for data_type, payload in best.items()]

def extract(response, requested_data_types, config):
    """Run every extraction method over one response.

    Returns one ExtractionCandidate per (content_hash, method, data_type), with
    the highest confidence any method reported for it."""
    from .plugin import pm

    floor = config.get('confidence-floor', 0.3)
    digest = response.get('content_hash') or content_hash(response.get('content') or response.get('text'))
    data_types = list(requested_data_types)

    best = {}
    for extractions in pm.hook.extract_candidates(config=config, response=response, data_types=data_types):
        for x in extractions or []:
            if x.data_type not in data_types or x.confidence < floor:
                continue

            key = (digest, x.method, x.data_type)
            if key in best and best[key].confidence >= x.confidence:
                continue

            best[key] = ExtractionCandidate(
                source_url=response['url'],
                final_url=response.get('final_url') or response['url'],
                content_hash=digest,
                extraction_method=x.method,
                data_type=x.data_type,
                payload=x.payload,
                confidence=x.confidence,
            )

    return list(best.values())

def store_candidate(conn, candidate, score, session_id, job_id, pattern_signature=None):
    """Persist a candidate, or raise the stored one's confidence if it was seen before.

    Returns the candidate id. Every call also records a sighting."""
    with transaction(conn):
        conn.execute(
            """
            INSERT INTO dcr_candidate(content_hash, extraction_method, data_type, source_url, final_url, payload, confidence, quality_overall, quality_completeness, quality_accuracy, quality_consistency)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(content_hash, extraction_method, data_type) DO UPDATE SET confidence = MAX(confidence, excluded.confidence)
            """,
            [
                candidate.content_hash,
                candidate.extraction_method,
                candidate.data_type,
                candidate.source_url,
                candidate.final_url,
                dump_payload(candidate.payload),
                candidate.confidence,
                score.overall if score else None,
                score.completeness if score else None,
                score.accuracy if score else None,
                score.consistency if score else None,
            ]
        )

        candidate_id, = conn.execute(
            'SELECT id FROM dcr_candidate WHERE content_hash = ? AND extraction_method = ? AND data_type = ?',
            [candidate.content_hash, candidate.extraction_method, candidate.data_type]
        ).fetchone()

        conn.execute(
            'INSERT INTO dcr_candidate_sighting(candidate_id, session_id, job_id, pattern_signature, source_url) VALUES (?, ?, ?, ?, ?)',
            [candidate_id, session_id, job_id, pattern_signature, candidate.source_url]
        )

    return candidate_id

def session_has_candidates(conn, session_id):
    exists, = conn.execute('SELECT EXISTS(SELECT * FROM dcr_candidate_sighting WHERE session_id = ?)', [session_id]).fetchone()
    return bool(exists)
