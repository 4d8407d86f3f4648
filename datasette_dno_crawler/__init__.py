import datasette
import glob
import markupsafe
import os
from . import config
from .config import enabled_databases, ensure_schema
from .plugin import pm
from .routes import get_routes
from .workers import start_workers
from .utils import module_from_path

@datasette.hookimpl
def startup(datasette):
    async def inner():
        enabled_databases = config.enabled_databases(datasette)
        for db_name in enabled_databases:
            await ensure_schema(datasette.databases[db_name])

        if enabled_databases:
            # Site-specific search/fetch/extract plugins can live in --plugins-dir.
            if datasette.plugins_dir:
                for filepath in glob.glob(os.path.join(datasette.plugins_dir, "*.py")):
                    if not os.path.isfile(filepath):
                        continue
                    mod = module_from_path(filepath, name=os.path.basename(filepath))
                    try:
                        pm.register(mod)
                    except ValueError:
                        # Plugin already registered
                        pass

            start_workers(datasette)

    return inner

@datasette.hookimpl
def get_metadata(datasette, key, database, table):
    rv = {
        'databases': {}
    }

    # enabled_databases reads plugin configuration, which goes through this
    # very hook; so only use it once it has been initialized.
    for db_name in enabled_databases(datasette, empty_if_not_initialized=True):
        rv['databases'][db_name] = {
            'tables': {
                'dcr_session': {
                    'sort_desc': 'created_at'
                },
                'dcr_session_event': {
                    'sort_desc': 'id'
                },
                'dcr_job': {
                    'sort': 'tier'
                },
                'dcr_job_history': {
                    'sort_desc': 'archived_at'
                },
                'dcr_pattern': {
                    'sort_desc': 'confidence'
                },
                'dcr_review_queue': {
                    'sort_desc': 'id'
                },
                'dcr_fetch_log': {
                    'sort_desc': 'fetched_at'
                },
            }
        }

    return rv

@datasette.hookimpl
def render_cell(database, row, table, column, value):
    if not table or not table.startswith('dcr_') or value is None:
        return None

    def link(label, href):
        return markupsafe.Markup(
            '<a href="{href}">{label}</a>'.format(
                href=markupsafe.escape(href),
                label=markupsafe.escape(label)
            )
        )

    if column == 'session_id' or (column == 'parent_session_id' and table == 'dcr_session'):
        return link(value, '/{}/dcr_session_event?session_id__exact={}&_sort_desc=id'.format(database, value))

    if table == 'dcr_session' and column == 'id':
        return link(value, '/{}/-/dno-crawler/sessions/{}'.format(database, value))

    if column == 'target_key':
        return link(value, '/{}/dcr_pattern?target_key__exact={}&_sort_desc=confidence'.format(database, value))

@datasette.hookimpl
def register_routes(datasette):
    return get_routes(datasette)
