from collections import namedtuple
from enum import Enum

DATA_TYPES = ('netzentgelte', 'hlzf')

# Fixed order doubles as the tie-break when ranking default strategies.
PATTERN_TYPES = ('url', 'file_naming', 'navigation', 'content', 'structural')

class ReviewState(Enum):
    UNREVIEWED = 'unreviewed'
    VERIFIED = 'verified'
    REJECTED = 'rejected'

class SessionState(Enum):
    QUEUED = 'queued'
    INITIALIZING = 'initializing'
    SEARCHING = 'searching'
    CRAWLING = 'crawling'
    EXTRACTING = 'extracting'
    COMPLETED = 'completed'
    FAILED = 'failed'
    LOW_CONFIDENCE = 'low_confidence'
    PAUSED = 'paused'

    @property
    def terminal(self):
        return self in TERMINAL_STATES

TERMINAL_STATES = frozenset([SessionState.COMPLETED, SessionState.FAILED, SessionState.LOW_CONFIDENCE])

class JobStatus(Enum):
    QUEUED = 'queued'
    LEASED = 'leased'
    DONE = 'done'
    FAILED = 'failed'
    DEAD_LETTER = 'dead_letter'

Target = namedtuple('Target', ['key', 'name', 'website', 'aliases'])

Pattern = namedtuple('Pattern', [
    'id',
    'target_key',
    'pattern_type',
    'signature',
    'confidence',
    'success_count',
    'failure_count',
    'avg_success_latency',
    'last_success_at',
    'last_failure_at',
    'review_state',
    'review_notes',
    'definition',
    'metadata',
])

CrawlSession = namedtuple('CrawlSession', [
    'session_id',
    'target_key',
    'year',
    'requested_data_types',
    'state',
    'priority',
    'progress_percentage',
    'current_phase',
    'parent_session_id',
    'created_by',
    'paused_from',
    'satisfied_data_types',
    'watchers',
    'admin_notes',
    'created_at',
    'updated_at',
])

CrawlJob = namedtuple('CrawlJob', [
    'job_id',
    'session_id',
    'domain',
    'pattern_id',
    'pattern_type',
    'strategy_signature',
    'strategy_definition',
    'priority',
    'tier',
    'retry_count',
    'max_retries',
    'max_execution_seconds',
    'scheduled_for',
    'status',
    'leased_by',
    'lease_expires_at',
    'last_error',
])

Strategy = namedtuple('Strategy', ['pattern_type', 'signature', 'definition', 'pattern_id', 'confidence', 'explore', 'metadata'], defaults=(None, None, False, None))

# One method's reading of one response, before hashing and dedup.
Extraction = namedtuple('Extraction', ['method', 'data_type', 'payload', 'confidence'])

ExtractionCandidate = namedtuple('ExtractionCandidate', [
    'source_url',
    'final_url',
    'content_hash',
    'extraction_method',
    'data_type',
    'payload',
    'confidence',
])

QualityScore = namedtuple('QualityScore', ['overall', 'completeness', 'accuracy', 'consistency'])

CrawlPathRecord = namedtuple('CrawlPathRecord', [
    'session_id',
    'job_id',
    'target_key',
    'year',
    'pattern_signature',
    'steps',
    'endpoints',
    'methods',
    'total_time_ms',
    'max_depth',
    'confidence',
])

# A scored candidate as the Feedback Loop sees it.
ScoredCandidate = namedtuple('ScoredCandidate', ['candidate_id', 'candidate', 'score', 'passed'])

AttemptOutcome = namedtuple('AttemptOutcome', ['candidates', 'steps', 'elapsed', 'max_depth'])
