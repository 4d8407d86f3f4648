current_schema_version = 2000002;

schema = """
PRAGMA user_version = {};
""".format(current_schema_version) + """

-- Distribution network operators that can be crawled.
CREATE TABLE dcr_target(
  key text primary key,
  name text not null,
  website text not null,
  -- JSON array of alternative names, used when building search queries
  aliases text not null default '[]',
  created_at text not null default (strftime('%Y-%m-%d %H:%M:%f'))
);

-- Learned navigation/extraction strategies, per target. Never deleted.
CREATE TABLE dcr_pattern(
  id integer primary key,
  target_key text not null references dcr_target(key),
  pattern_type text not null check (pattern_type IN ('url', 'navigation', 'content', 'file_naming', 'structural')),
  -- Stable hash of the strategy definition
  signature text not null,
  definition text not null default '{}',
  confidence real not null default 0.5 check (confidence >= 0 AND confidence <= 1),
  success_count integer not null default 0,
  failure_count integer not null default 0,
  avg_success_latency real,
  last_success_at text,
  last_failure_at text,
  review_state text not null default 'unreviewed' check (review_state IN ('unreviewed', 'verified', 'rejected')),
  review_notes text,
  metadata text not null default '{}',
  created_at text not null default (strftime('%Y-%m-%d %H:%M:%f')),
  updated_at text not null default (strftime('%Y-%m-%d %H:%M:%f')),
  unique (target_key, signature)
);

-- One row per executed attempt of a pattern, for audit.
CREATE TABLE dcr_pattern_performance(
  id integer primary key,
  pattern_id integer not null references dcr_pattern(id),
  session_id text not null references dcr_session(id),
  job_id integer not null,
  success boolean not null,
  latency real not null,
  quality_score real,
  error_message text,
  created_at text not null default (strftime('%Y-%m-%d %H:%M:%f'))
);

-- One logical crawl request.
CREATE TABLE dcr_session(
  id text primary key,
  target_key text not null references dcr_target(key),
  year integer not null,
  -- JSON array of data types
  requested_data_types text not null,
  state text not null default 'queued' check (state IN ('queued', 'initializing', 'searching', 'crawling', 'extracting', 'completed', 'failed', 'low_confidence', 'paused')),
  paused_from text,
  paused_progress real,
  priority integer not null default 5 check (priority BETWEEN 1 AND 10),
  progress_percentage real not null default 0,
  current_phase text,
  parent_session_id text references dcr_session(id),
  created_by text,
  admin_notes text,
  -- Settings snapshot taken at submit time, read by workers
  config text not null default '{}',
  created_at text not null default (strftime('%Y-%m-%d %H:%M:%f')),
  updated_at text not null default (strftime('%Y-%m-%d %H:%M:%f')),
  finished_at text
);

-- The (target_key, year, data_type) triples a session is responsible for.
CREATE TABLE dcr_session_data_type(
  session_id text not null references dcr_session(id),
  target_key text not null,
  year integer not null,
  data_type text not null,
  active boolean not null default true,
  satisfied_by integer references dcr_candidate(id),
  primary key (session_id, data_type)
);

-- Requesters that asked for an already-active session.
CREATE TABLE dcr_session_watcher(
  session_id text not null references dcr_session(id),
  watcher text not null,
  created_at text not null default (strftime('%Y-%m-%d %H:%M:%f')),
  primary key (session_id, watcher)
);

-- State transitions and other events, keyed by session, for external observers.
CREATE TABLE dcr_session_event(
  id integer primary key,
  session_id text not null references dcr_session(id),
  created_at text not null default (strftime('%Y-%m-%d %H:%M:%f')),
  level text not null default 'info' check (level IN ('debug', 'info', 'warn', 'error')),
  event text not null,
  from_state text,
  to_state text,
  message text,
  context text not null default '{}'
);

-- Per-domain concurrency caps. Domains without a row use the domain-concurrency setting.
CREATE TABLE dcr_domain_limit(
  domain text primary key,
  max_concurrent integer not null check (max_concurrent >= 0)
);

-- Crawl attempts. Ids are never reused: dcr_job_history is keyed on them too.
CREATE TABLE dcr_job(
  id integer primary key autoincrement,
  session_id text not null references dcr_session(id),
  domain text not null,
  priority integer not null check (priority BETWEEN 1 AND 10),
  -- 0 = high, 1 = normal, 2 = low
  tier integer not null,
  tier_since text not null,
  pattern_id integer references dcr_pattern(id),
  pattern_type text,
  strategy_signature text,
  strategy_definition text,
  retry_count integer not null default 0,
  max_retries integer not null default 3,
  max_execution_seconds integer not null default 600,
  scheduled_for text not null,
  status text not null default 'queued' check (status IN ('queued', 'leased', 'done', 'failed', 'dead_letter')),
  leased_by text,
  leased_at text,
  lease_expires_at text,
  last_error text,
  outcome text,
  created_at text not null default (strftime('%Y-%m-%d %H:%M:%f')),
  updated_at text not null default (strftime('%Y-%m-%d %H:%M:%f')),
  check (retry_count <= max_retries),
  check (status != 'leased' OR lease_expires_at IS NOT NULL)
);

-- Jobs of finished sessions.
CREATE TABLE dcr_job_history(
  id integer primary key,
  session_id text not null,
  domain text not null,
  priority integer not null,
  pattern_id integer,
  pattern_type text,
  strategy_signature text,
  retry_count integer not null,
  max_retries integer not null,
  status text not null,
  last_error text,
  outcome text,
  created_at text not null,
  archived_at text not null default (strftime('%Y-%m-%d %H:%M:%f'))
);

-- Fetched bodies, content-addressed and zstd compressed.
CREATE TABLE dcr_fetch_cache(
  content_hash text primary key,
  content_type text,
  size integer not null,
  object blob not null,
  stored_at text not null default (strftime('%Y-%m-%d %H:%M:%f'))
);

-- Which URL produced which body, and when.
CREATE TABLE dcr_fetch_log(
  id integer primary key,
  url text not null,
  final_url text not null,
  host text not null,
  status_code integer not null,
  content_hash text not null references dcr_fetch_cache(content_hash),
  headers text not null default '[]',
  fetched_at text not null
);

-- Extraction evidence. The quality columns are derived from payload + data_type.
CREATE TABLE dcr_candidate(
  id integer primary key,
  content_hash text not null,
  extraction_method text not null,
  data_type text not null,
  source_url text not null,
  final_url text not null,
  payload text not null,
  confidence real not null check (confidence >= 0 AND confidence <= 1),
  quality_overall real,
  quality_completeness real,
  quality_accuracy real,
  quality_consistency real,
  created_at text not null default (strftime('%Y-%m-%d %H:%M:%f')),
  unique (content_hash, extraction_method, data_type)
);

-- Every time a session came across a candidate.
CREATE TABLE dcr_candidate_sighting(
  id integer primary key,
  candidate_id integer not null references dcr_candidate(id),
  session_id text not null references dcr_session(id),
  job_id integer not null,
  pattern_signature text,
  source_url text not null,
  seen_at text not null default (strftime('%Y-%m-%d %H:%M:%f'))
);

-- Append-only record of each attempt's realized path.
CREATE TABLE dcr_crawl_path(
  id integer primary key,
  session_id text not null references dcr_session(id),
  job_id integer not null,
  target_key text not null,
  year integer not null,
  pattern_signature text,
  -- JSON arrays
  steps text not null,
  endpoints text not null,
  methods text not null,
  total_time_ms integer not null,
  max_depth integer not null,
  confidence real not null,
  created_at text not null default (strftime('%Y-%m-%d %H:%M:%f'))
);

-- Work for a human: dead-lettered jobs, low confidence sessions.
CREATE TABLE dcr_review_queue(
  id integer primary key,
  kind text not null check (kind IN ('dead_letter', 'low_confidence')),
  session_id text not null references dcr_session(id),
  job_id integer,
  reason text not null,
  created_at text not null default (strftime('%Y-%m-%d %H:%M:%f')),
  reported_at text,
  resolved_at text
);

-- Accepted data.
CREATE TABLE netzentgelte_data(
  key text not null,
  year integer not null,
  voltage_level text not null,
  value_id text not null,
  value real,
  unit text,
  source_url text,
  candidate_id integer references dcr_candidate(id),
  updated_at text not null default (strftime('%Y-%m-%d %H:%M:%f')),
  primary key (key, year, voltage_level, value_id)
);

CREATE TABLE hlzf_data(
  key text not null,
  year integer not null,
  value_id text not null,
  value text,
  source_url text,
  candidate_id integer references dcr_candidate(id),
  updated_at text not null default (strftime('%Y-%m-%d %H:%M:%f')),
  primary key (key, year, value_id)
);

CREATE UNIQUE INDEX idx_only_one_active_session_per_data_type ON dcr_session_data_type(target_key, year, data_type) WHERE active;

CREATE INDEX idx_dcr_job_lease ON dcr_job(status, tier, scheduled_for);
CREATE INDEX idx_dcr_job_domain ON dcr_job(domain, status);
CREATE INDEX idx_dcr_job_session ON dcr_job(session_id);
CREATE INDEX idx_dcr_pattern_target ON dcr_pattern(target_key, pattern_type);
CREATE INDEX idx_dcr_session_event_session ON dcr_session_event(session_id, id);
CREATE INDEX idx_dcr_fetch_log_url ON dcr_fetch_log(url, fetched_at);
CREATE INDEX idx_dcr_crawl_path_target ON dcr_crawl_path(target_key, confidence);
CREATE INDEX idx_dcr_candidate_sighting_session ON dcr_candidate_sighting(session_id);
"""
