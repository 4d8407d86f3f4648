from datasette_dno_crawler.plugins.extract_form_response import record_rows

def test_record_rows():
    records = [
        {'voltage_level': 'ms', 'leistung': '45,30', 'arbeit': 1.5},
        {'voltage_level': 'ns', 'leistung': 0, 'arbeit': None},
        'not a record',
    ]

    assert record_rows(records) == [
        ['voltage_level', 'leistung', 'arbeit'],
        ['MS', '45,30', '1.5'],
        ['NS', '0', ''],
    ]

    assert record_rows([]) == []
