from ..hookspecs import hookimpl
from ..extraction import best_payloads
from ..parsing import find_year
from ..utils import get_html_parser, is_html

def table_rows(table):
    rv = []
    for tr in table.css('tr'):
        cells = [cell.text(deep=True, separator=' ', strip=True) for cell in tr.css('th, td')]
        if any(cells):
            rv.append(cells)
    return rv

@hookimpl
def extract_candidates(response, data_types):
    if not is_html(response) or not response.get('text'):
        return []

    tree = get_html_parser(response)
    tables = [table_rows(table) for table in tree.css('table')]
    if not tables:
        return []

    # "Netzentgelte 2024" in the title covers tables that never mention the year.
    title = tree.css_first('title')
    year = find_year(title.text()) if title is not None else None

    return best_payloads('html_table', tables, data_types, year=year)
