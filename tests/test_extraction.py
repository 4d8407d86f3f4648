import json
import pytest
from conftest import HLZF_HTML, NETZENTGELTE_HTML, make_response
from datasette_dno_crawler import extraction, sessions
from datasette_dno_crawler.models import ExtractionCandidate
from datasette_dno_crawler.payloads import HlzfWindow, NetzentgelteRecord, load_payload

def test_rows_to_netzentgelte():
    rows = [
        ['Preisblatt 2024'],
        ['Spannungsebene', 'Leistungspreis €/kW/a', 'Arbeitspreis ct/kWh'],
        ['Mittelspannung', '45,30', '1,50'],
        ['Umspannung MS/NS', '60,40', '1,90'],
        ['Niederspannung', '75,50', '-'],
    ]
    payload = extraction.rows_to_netzentgelte(rows)

    assert payload.year == 2024
    assert payload.records == (
        NetzentgelteRecord('ms', leistung='45,30', arbeit='1,50'),
        NetzentgelteRecord('ms_ns', leistung='60,40', arbeit='1,90'),
        NetzentgelteRecord('ns', leistung='75,50'),
    )

def test_rows_to_netzentgelte_transposed():
    rows = [
        ['', 'MS', 'MS/NS', 'NS'],
        ['Leistungspreis', '45,30', '60,40', '75,50'],
        ['Arbeitspreis', '1,50', '1,90', '2,40'],
    ]
    payload = extraction.rows_to_netzentgelte(rows, year=2024)

    assert payload.year == 2024
    assert [r.voltage_level for r in payload.records] == ['ms', 'ms_ns', 'ns']
    assert payload.records[2].arbeit == '2,40'

def test_rows_to_netzentgelte_utilisation_columns():
    rows = [
        ['', '< 2500 h/a', '', '>= 2500 h/a', ''],
        ['Spannungsebene', 'Leistungspreis', 'Arbeitspreis', 'Leistungspreis', 'Arbeitspreis'],
        ['Niederspannung', '15,00', '6,10', '80,00', '3,50'],
    ]
    payload = extraction.rows_to_netzentgelte(rows)

    assert payload.records == (
        NetzentgelteRecord('ns', leistung='80,00', arbeit='3,50', leistung_unter_2500h='15,00', arbeit_unter_2500h='6,10'),
    )

def test_rows_to_netzentgelte_without_header():
    rows = [['MS', '45,30', '1,50'], ['NS', '75,50', '2,40']]

    assert extraction.rows_to_netzentgelte(rows) is None

    payload = extraction.rows_to_netzentgelte(rows, default_fields=('leistung', 'arbeit'))
    assert payload.records[1] == NetzentgelteRecord('ns', leistung='75,50', arbeit='2,40')

def test_rows_to_hlzf():
    rows = [
        ['Hochlastzeitfenster 2024'],
        ['Jahreszeit', 'von', 'bis'],
        ['Winter', '08:00', '10:30'],
        ['Winter', '17:00', '19:00'],
        ['Frühling', '-', '-'],
        ['Herbst', '17:15 - 19:15'],
    ]
    payload = extraction.rows_to_hlzf(rows)

    assert payload.year == 2024
    assert payload.seasons == ('winter', 'fruehling', 'herbst')
    assert payload.windows == (
        HlzfWindow('winter', '08:00', '10:30'),
        HlzfWindow('winter', '17:00', '19:00'),
        HlzfWindow('herbst', '17:15', '19:15'),
    )

def test_rows_to_payload_rejects_unknown_type():
    with pytest.raises(ValueError):
        extraction.rows_to_payload([['x']], 'gas')

def test_extract_html(web):
    response = make_response('https://www.netze-bw.de/netzentgelte', NETZENTGELTE_HTML)
    candidates = extraction.extract(response, ['netzentgelte', 'hlzf'], {'confidence-floor': 0.3})

    assert len(candidates) == 1
    candidate = candidates[0]
    assert candidate.extraction_method == 'html_table'
    assert candidate.data_type == 'netzentgelte'
    assert candidate.confidence == extraction.METHOD_BASELINES['html_table']
    assert candidate.payload.year == 2024
    assert len(candidate.payload.records) == 5

def test_extract_html_hlzf(web):
    response = make_response('https://www.netze-bw.de/hochlastzeitfenster', HLZF_HTML)
    candidates = extraction.extract(response, ['hlzf'], {})

    assert [c.data_type for c in candidates] == ['hlzf']
    assert candidates[0].payload.seasons == ('winter', 'fruehling', 'sommer', 'herbst')
    assert len(candidates[0].payload.windows) == 3

def test_extract_form_response(web):
    body = json.dumps({
        'year': 2024,
        'records': [
            {'voltage_level': 'ms', 'leistung': '45,30', 'arbeit': '1,50'},
            {'voltage_level': 'ms_ns', 'leistung': '60,40', 'arbeit': '1,90'},
            {'voltage_level': 'ns', 'leistung': '75,50', 'arbeit': '2,40'},
        ],
    })
    response = make_response('https://www.netze-bw.de/api/preise', body, content_type='application/json')
    candidates = extraction.extract(response, ['netzentgelte'], {})

    assert [(c.extraction_method, c.data_type) for c in candidates] == [('form_response', 'netzentgelte')]
    assert [r.voltage_level for r in candidates[0].payload.records] == ['ms', 'ms_ns', 'ns']
    assert candidates[0].payload.year == 2024

def test_extract_csv(web):
    body = 'Spannungsebene;Leistungspreis;Arbeitspreis\nMittelspannung;45,30;1,50\nNiederspannung;75,50;2,40\n'
    response = make_response('https://www.netze-bw.de/preise-2024.csv', body, content_type='text/csv')
    candidates = extraction.extract(response, ['netzentgelte'], {})

    assert [c.extraction_method for c in candidates] == ['document_text']
    assert candidates[0].payload.records[0] == NetzentgelteRecord('ms', leistung='45,30', arbeit='1,50')

def test_confidence_floor(web):
    response = make_response('https://www.netze-bw.de/netzentgelte', NETZENTGELTE_HTML)

    assert extraction.extract(response, ['netzentgelte'], {'confidence-floor': 0.95}) == []

def test_store_candidate_keeps_max_confidence(conn, netze_bw):
    session_id = sessions.create(conn, 'netze-bw', 2024, ['netzentgelte'])
    payload = extraction.rows_to_netzentgelte([['Spannungsebene', 'Leistungspreis', 'Arbeitspreis'], ['NS', '75,50', '2,40']])

    def candidate(confidence):
        return ExtractionCandidate('https://x.de/a', 'https://x.de/a', 'abc', 'html_table', 'netzentgelte', payload, confidence)

    assert not extraction.session_has_candidates(conn, session_id)

    ids = set()
    for confidence in (0.6, 0.8, 0.7):
        ids.add(extraction.store_candidate(conn, candidate(confidence), None, session_id, 1))

    assert len(ids) == 1
    rows = conn.execute('SELECT confidence, payload FROM dcr_candidate').fetchall()
    assert len(rows) == 1
    assert rows[0][0] == 0.8
    assert load_payload(rows[0][1]) == payload

    sightings, = conn.execute('SELECT COUNT(*) FROM dcr_candidate_sighting WHERE session_id = ?', [session_id]).fetchone()
    assert sightings == 3
    assert extraction.session_has_candidates(conn, session_id)
