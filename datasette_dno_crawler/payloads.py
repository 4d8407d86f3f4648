"""Typed extraction payloads, one per data type.

Field values are kept as the raw strings found in the source document
("12,34", "06:00"); parsing and validation belong to the quality evaluator,
which needs to see what was actually extracted in order to score accuracy.
"""
import json
from collections import namedtuple

VOLTAGE_LEVELS = ('hs', 'hs_ms', 'ms', 'ms_ns', 'ns')
PRICE_FIELDS = ('leistung', 'arbeit', 'leistung_unter_2500h', 'arbeit_unter_2500h')
SEASONS = ('winter', 'fruehling', 'sommer', 'herbst')

NetzentgelteRecord = namedtuple(
    'NetzentgelteRecord',
    ['voltage_level', 'leistung', 'arbeit', 'leistung_unter_2500h', 'arbeit_unter_2500h'],
    defaults=(None, None, None, None)
)

NetzentgeltePayload = namedtuple('NetzentgeltePayload', ['records', 'year'], defaults=(None,))

HlzfWindow = namedtuple('HlzfWindow', ['season', 'start', 'end'])

# `seasons` lists every season the source mentions, including ones with no window
# ("entfällt"), so that completeness can tell "no window" from "not found".
HlzfPayload = namedtuple('HlzfPayload', ['windows', 'seasons', 'year'], defaults=(None,))

PAYLOAD_TYPES = {
    'netzentgelte': NetzentgeltePayload,
    'hlzf': HlzfPayload,
}

def payload_data_type(payload):
    if isinstance(payload, NetzentgeltePayload):
        return 'netzentgelte'
    if isinstance(payload, HlzfPayload):
        return 'hlzf'

    raise TypeError('not an extraction payload: {!r}'.format(payload))

def payload_to_dict(payload):
    data_type = payload_data_type(payload)

    if data_type == 'netzentgelte':
        return {
            'type': data_type,
            'year': payload.year,
            'records': [r._asdict() for r in payload.records],
        }

    return {
        'type': data_type,
        'year': payload.year,
        'seasons': list(payload.seasons),
        'windows': [w._asdict() for w in payload.windows],
    }

def payload_from_dict(obj):
    data_type = obj.get('type')

    if data_type == 'netzentgelte':
        return NetzentgeltePayload(
            records=tuple(NetzentgelteRecord(**r) for r in obj.get('records', [])),
            year=obj.get('year'),
        )

    if data_type == 'hlzf':
        return HlzfPayload(
            windows=tuple(HlzfWindow(**w) for w in obj.get('windows', [])),
            seasons=tuple(obj.get('seasons', [])),
            year=obj.get('year'),
        )

    raise ValueError('unknown payload type: {}'.format(data_type))

def dump_payload(payload):
    return json.dumps(payload_to_dict(payload), sort_keys=True)

def load_payload(text):
    return payload_from_dict(json.loads(text))
