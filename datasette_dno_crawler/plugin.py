import importlib
import pluggy
import sys
from . import hookspecs

DEFAULT_PLUGINS = (
    "datasette_dno_crawler.plugins.fetch_url",
    "datasette_dno_crawler.plugins.fetch_cache",
    "datasette_dno_crawler.plugins.robots_txt",
    "datasette_dno_crawler.plugins.search_duckduckgo",
    "datasette_dno_crawler.plugins.strategy_url",
    "datasette_dno_crawler.plugins.strategy_file_naming",
    "datasette_dno_crawler.plugins.strategy_navigation",
    "datasette_dno_crawler.plugins.strategy_content",
    "datasette_dno_crawler.plugins.strategy_structural",
    "datasette_dno_crawler.plugins.discover_document_links",
    "datasette_dno_crawler.plugins.extract_html_tables",
    "datasette_dno_crawler.plugins.extract_document_text",
    "datasette_dno_crawler.plugins.extract_form_response",
)

pm = pluggy.PluginManager("datasette_dno_crawler")
pm.add_hookspecs(hookspecs)

if not hasattr(sys, "_called_from_test"):
    # Only load plugins if not running tests
    pm.load_setuptools_entrypoints("datasette_dno_crawler")

# Load default plugins
for plugin in DEFAULT_PLUGINS:
    mod = importlib.import_module(plugin)
    pm.register(mod, plugin)
