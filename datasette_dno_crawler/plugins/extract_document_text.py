from ..hookspecs import hookimpl
from ..extraction import best_payloads
from ..parsing import find_year
import csv
import io
import pdfplumber

# Bare "MS 12,34 5,67" lines in a price sheet: capacity price, then energy price.
TEXT_FIELDS = ('leistung', 'arbeit')

def is_pdf(response):
    content = response.get('content') or b''
    return 'pdf' in (response.get('content_type') or '').lower() or content[:5] == b'%PDF-'

def is_csv(response):
    content_type = (response.get('content_type') or '').lower()
    return 'csv' in content_type or response['url'].lower().endswith('.csv')

def text_rows(text):
    return [line.split() for line in text.splitlines() if line.strip()]

def read_pdf(content):
    """Returns (tables, text) for every page."""
    tables = []
    text = []
    with pdfplumber.open(io.BytesIO(content)) as pdf:
        for page in pdf.pages:
            for table in page.extract_tables():
                tables.append([[cell or '' for cell in row] for row in table])
            text.append(page.extract_text() or '')
    return tables, '\n'.join(text)

class SemicolonDialect(csv.excel):
    delimiter = ';'

def read_csv(text):
    try:
        dialect = csv.Sniffer().sniff(text[:4096], delimiters=';,\t')
    except csv.Error:
        dialect = SemicolonDialect
    return [row for row in csv.reader(io.StringIO(text), dialect)]

@hookimpl
def extract_candidates(response, data_types):
    if is_pdf(response) and response.get('content'):
        try:
            tables, text = read_pdf(response['content'])
        except Exception as e:
            # pdfminer raises a zoo of exception types on malformed files.
            print('extract_document_text: unreadable PDF {}: {!r}'.format(response['url'], e))
            return []

        year = find_year(text)
        rv = best_payloads('pdf_table', tables, data_types, year=year)
        rv.extend(best_payloads('document_text', [text_rows(text)], data_types, year=year, default_fields=TEXT_FIELDS))
        return rv

    if is_csv(response) and response.get('text'):
        rows = read_csv(response['text'])
        return best_payloads('document_text', [rows], data_types, default_fields=TEXT_FIELDS)

    return []
