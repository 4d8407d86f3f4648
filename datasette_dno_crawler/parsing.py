import re

_unit_re = re.compile(r'(€|euro|eur|cent|ct)(\s*/\s*(kwh|kwa|kw|a|jahr))*', re.IGNORECASE)
_german_thousands_re = re.compile(r'^-?\d{1,3}(\.\d{3})+$')
_number_re = re.compile(r'^-?\d+(\.\d+)?$')
_time_re = re.compile(r'^(\d{1,2})[:.](\d{2})(?:[:.](\d{2}))?(\s*uhr)?$', re.IGNORECASE)
_year_re = re.compile(r'\b(20\d{2})\b')

MISSING_MARKERS = ('', '-', '–', '—', 'entfällt', 'entfaellt', 'keine', 'n/a', 'k.a.')

def is_missing(value):
    if value is None:
        return True

    return str(value).strip().lower() in MISSING_MARKERS

def parse_decimal(value):
    """Parse a German- or English-formatted number, ignoring currency units.

    Returns None when the value is not a number."""
    if value is None:
        return None

    if isinstance(value, (int, float)):
        return float(value)

    s = _unit_re.sub('', str(value)).replace('\xa0', '').replace(' ', '').strip()

    if not s:
        return None

    if ',' in s and '.' in s:
        if s.rfind(',') > s.rfind('.'):
            s = s.replace('.', '').replace(',', '.')
        else:
            s = s.replace(',', '')
    elif ',' in s:
        s = s.replace(',', '.')
    elif _german_thousands_re.match(s):
        s = s.replace('.', '')

    if not _number_re.match(s):
        return None

    return float(s)

def parse_time(value):
    """Normalize "6:00", "06.00 Uhr", "06:00:00" to "06:00:00"; None if invalid."""
    if value is None:
        return None

    m = _time_re.match(str(value).strip())
    if not m:
        return None

    hours = int(m.group(1))
    minutes = int(m.group(2))
    seconds = int(m.group(3) or 0)

    if minutes > 59 or seconds > 59:
        return None

    if hours > 24 or (hours == 24 and (minutes or seconds)):
        return None

    return '{:02d}:{:02d}:{:02d}'.format(hours, minutes, seconds)

def find_year(text):
    if not text:
        return None

    m = _year_re.search(text)
    if m:
        return int(m.group(1))

def _squash(label):
    return re.sub(r'[\s\-_]+', ' ', label.lower().replace('ü', 'ue').replace('ä', 'ae').replace('ö', 'oe')).strip()

def classify_voltage_level(label):
    """Map a table label to one of hs, hs_ms, ms, ms_ns, ns."""
    if not label:
        return None

    s = _squash(label)
    words = set(re.findall(r'[a-z]+', s))

    hoch = 'hs' in words or 'hoch' in s
    mittel = 'ms' in words or 'mittel' in s
    nieder = 'ns' in words or 'nieder' in s

    # Transformer levels first: "Umspannung MS/NS" mentions both of its neighbours.
    if 'umspannung' in s or '/' in s:
        if hoch and mittel:
            return 'hs_ms'
        if mittel and nieder:
            return 'ms_ns'

    if hoch:
        return 'hs'
    if mittel:
        return 'ms'
    if nieder:
        return 'ns'

    return None

def classify_season(label):
    if not label:
        return None

    s = _squash(label)

    if 'winter' in s:
        return 'winter'
    if 'fruehling' in s or 'fruehjahr' in s:
        return 'fruehling'
    if 'sommer' in s:
        return 'sommer'
    if 'herbst' in s:
        return 'herbst'

    return None

def classify_price_column(label):
    """Map a column header to a NetzentgelteRecord field name."""
    if not label:
        return None

    s = _squash(label)
    under = '<' in s or 'unter' in s or 'bis 2500' in s or 'kleiner' in s

    if 'leistung' in s:
        return 'leistung_unter_2500h' if under else 'leistung'
    if 'arbeit' in s:
        return 'arbeit_unter_2500h' if under else 'arbeit'

    return None
