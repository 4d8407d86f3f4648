"""Quality Evaluator: deterministic completeness/accuracy/consistency per data type."""
from .models import QualityScore
from .parsing import is_missing, parse_decimal, parse_time
from .payloads import HlzfPayload, NetzentgeltePayload, SEASONS, VOLTAGE_LEVELS

DEFAULT_WEIGHTS = {
    'completeness': 0.5,
    'accuracy': 0.3,
    'consistency': 0.2,
}

DEFAULT_THRESHOLD = 0.7

# A grid fee table is complete when the levels most consumers sit on are there.
REQUIRED_LEVELS = ('ms', 'ms_ns', 'ns')
REQUIRED_FIELDS = ('leistung', 'arbeit')

# €/kW·a for Leistungspreis, ct/kWh for Arbeitspreis
PRICE_RANGES = {
    'leistung': (0, 1000),
    'leistung_unter_2500h': (0, 1000),
    'arbeit': (0, 100),
    'arbeit_unter_2500h': (0, 100),
}

ZERO = QualityScore(overall=0.0, completeness=0.0, accuracy=0.0, consistency=0.0)

def _share(passed, total, empty):
    if not total:
        return empty
    return passed / total

def _netzentgelte(payload, year):
    by_level = dict((r.voltage_level, r) for r in payload.records)

    present = 0
    for level in REQUIRED_LEVELS:
        for field in REQUIRED_FIELDS:
            record = by_level.get(level)
            if record is not None and not is_missing(getattr(record, field)):
                present += 1
    completeness = present / (len(REQUIRED_LEVELS) * len(REQUIRED_FIELDS))

    checked = valid = 0
    values = {}
    for record in payload.records:
        for field, (low, high) in PRICE_RANGES.items():
            raw = getattr(record, field)
            if is_missing(raw):
                continue

            checked += 1
            value = parse_decimal(raw)
            if value is not None and low <= value <= high:
                valid += 1
                values[(record.voltage_level, field)] = value
    accuracy = _share(valid, checked, 0.0)

    checks = []
    # Fees don't go down as the voltage level goes down.
    for field in PRICE_RANGES:
        levels = [level for level in VOLTAGE_LEVELS if (level, field) in values]
        for higher, lower in zip(levels, levels[1:]):
            checks.append(values[(lower, field)] >= values[(higher, field)])

    # Below 2500 h, the capacity price is lower and the energy price higher.
    for level in VOLTAGE_LEVELS:
        if (level, 'leistung') in values and (level, 'leistung_unter_2500h') in values:
            checks.append(values[(level, 'leistung_unter_2500h')] <= values[(level, 'leistung')])
        if (level, 'arbeit') in values and (level, 'arbeit_unter_2500h') in values:
            checks.append(values[(level, 'arbeit_unter_2500h')] >= values[(level, 'arbeit')])

    if year is not None and payload.year is not None:
        checks.append(payload.year == year)

    consistency = _share(len([x for x in checks if x]), len(checks), 1.0)
    return completeness, accuracy, consistency

def _hlzf(payload, year):
    seasons = set(payload.seasons) & set(SEASONS)
    completeness = len(seasons) / len(SEASONS)

    checked = valid = 0
    parsed = []
    for window in payload.windows:
        start = parse_time(window.start)
        end = parse_time(window.end)
        checked += 2
        valid += (start is not None) + (end is not None)
        if start is not None and end is not None:
            parsed.append((window.season, start, end))
    accuracy = _share(valid, checked, 1.0 if seasons else 0.0)

    checks = []
    for season in SEASONS:
        spans = sorted((start, end) for s, start, end in parsed if s == season)
        for start, end in spans:
            checks.append(start < end)
        for (_, end), (start, _) in zip(spans, spans[1:]):
            checks.append(end <= start)

    if year is not None and payload.year is not None:
        checks.append(payload.year == year)

    consistency = _share(len([x for x in checks if x]), len(checks), 1.0)
    return completeness, accuracy, consistency

def evaluate(candidate, data_type, weights=None, year=None):
    """Score a candidate (or a bare payload) against the rules for `data_type`.

    `year` is the requested year; a payload that names a different one loses
    consistency."""
    payload = getattr(candidate, 'payload', candidate)
    weights = weights or DEFAULT_WEIGHTS

    if data_type == 'netzentgelte' and isinstance(payload, NetzentgeltePayload):
        completeness, accuracy, consistency = _netzentgelte(payload, year)
    elif data_type == 'hlzf' and isinstance(payload, HlzfPayload):
        completeness, accuracy, consistency = _hlzf(payload, year)
    else:
        return ZERO

    total = weights['completeness'] + weights['accuracy'] + weights['consistency']
    if total <= 0:
        raise ValueError('quality weights must not all be zero')

    overall = (weights['completeness'] * completeness + weights['accuracy'] * accuracy + weights['consistency'] * consistency) / total

    return QualityScore(
        overall=round(overall, 6),
        completeness=round(completeness, 6),
        accuracy=round(accuracy, 6),
        consistency=round(consistency, 6),
    )

def passes(score, threshold=DEFAULT_THRESHOLD):
    return score.overall >= threshold
