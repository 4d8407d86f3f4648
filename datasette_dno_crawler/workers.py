from multiprocessing import Process
import sys
import os
from .config import enabled_databases, get_settings
from .worker_ops import entrypoint_ops
from .worker_crawl import entrypoint_crawl

processes = []

def start_workers(datasette):
    # Don't start background workers if we're being tested under pytest.
    if "pytest" in sys.modules:
        return

    print('start_workers pid={}'.format(os.getpid()))
    db_map = {}
    for k, v in datasette.databases.items():
        if v.is_memory or not v.is_mutable:
            continue
        db_map[k] = v.path

    enabled_dbs = enabled_databases(datasette)

    if not enabled_dbs:
        raise Exception('datasette-dno-crawler: not enabled in any databases, why are we starting workers?')

    settings_map = {}
    for db in enabled_dbs:
        settings_map[db] = get_settings(datasette, db)

    p = Process(target=entrypoint_ops, args=(enabled_dbs, db_map, settings_map), daemon=True)
    p.start()
    processes.append(('worker_ops', p))

    num_workers = max(settings['num-workers'] for settings in settings_map.values())
    for i in range(num_workers):
        p = Process(target=entrypoint_crawl, args=(enabled_dbs, db_map, settings_map), daemon=True)
        p.start()
        processes.append(('worker_crawl', p))
