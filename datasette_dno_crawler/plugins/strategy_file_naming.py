from ..hookspecs import hookimpl
from .strategy_url import learned_urls

FILE_NAME_TEMPLATES = 'file-name-templates'
FILE_DIRECTORIES = 'file-directories'

def candidate_files(website, directories, templates, key, year):
    """Every directory x template combination, directories outermost."""
    rv = []
    for directory in directories:
        base = website.rstrip('/') + '/'
        if directory.strip('/'):
            base = base + directory.strip('/') + '/'

        for template in templates:
            url = base + template.format(key=key, year=year)
            if url not in rv:
                rv.append(url)
    return rv

@hookimpl
def config_defaults():
    return {
        FILE_NAME_TEMPLATES: {
            'netzentgelte': [
                'netzentgelte-{year}.pdf',
                'netzentgelte_{year}.pdf',
                'preisblatt-netzentgelte-{year}.pdf',
                'preisblaetter-{year}.pdf',
                '{key}-netzentgelte-{year}.pdf',
            ],
            'hlzf': [
                'hochlastzeitfenster-{year}.pdf',
                'hochlastzeitfenster_{year}.pdf',
                'hlzf_{year}.pdf',
                '{key}-hochlastzeitfenster-{year}.pdf',
            ],
        },
        FILE_DIRECTORIES: ['/', '/fileadmin/', '/downloads/', '/media/'],
    }

@hookimpl
def plan_urls(config, target, year, data_type, strategy):
    if strategy.pattern_type != 'file_naming':
        return []

    templates = strategy.definition.get('templates') or (config.get(FILE_NAME_TEMPLATES) or {}).get(data_type, [])
    directories = strategy.definition.get('directories') or config.get(FILE_DIRECTORIES) or ['/']

    rv = learned_urls(strategy, year)
    for url in candidate_files(target.website, directories, templates, target.key, year):
        if url not in rv:
            rv.append(url)
    return rv
