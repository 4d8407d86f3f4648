class CrawlerError(Exception):
    pass

class SchemaError(CrawlerError):
    pass

class FatalRequestError(CrawlerError):
    """The request can never succeed: unknown target, malformed parameters.

    Raised before anything is scheduled."""

class NotFound(CrawlerError):
    pass

class InvalidTransition(CrawlerError):
    def __init__(self, session_id, from_state, to_state):
        super().__init__('session {}: cannot go from {} to {}'.format(session_id, from_state, to_state))
        self.session_id = session_id
        self.from_state = from_state
        self.to_state = to_state

class TransientError(CrawlerError):
    """Network/search timeouts, rate limiting. Retried with backoff."""

class JobTimeout(TransientError):
    pass

class Cancelled(CrawlerError):
    """The session was paused or cancelled while a job was in flight."""

class LeaseLost(Cancelled):
    """The job's lease expired and another worker took it over."""
