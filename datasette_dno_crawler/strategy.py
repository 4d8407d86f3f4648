"""Strategy Selector: epsilon-greedy over a target's patterns.

Stateless: everything it knows comes from the Pattern Store on each call.
"""
import random
from .models import PATTERN_TYPES, ReviewState, Strategy
from .patterns import global_success_rates, list_patterns, pattern_signature

# The built-in strategy for each pattern type. What the strategy does is
# filled in at execution time by the plan_urls plugin for its type.
DEFAULT_STRATEGIES = dict((pattern_type, {}) for pattern_type in PATTERN_TYPES)

def default_strategy(pattern_type):
    definition = dict(DEFAULT_STRATEGIES[pattern_type])
    return Strategy(
        pattern_type=pattern_type,
        signature=pattern_signature(pattern_type, definition),
        definition=definition,
        explore=True,
    )

def strategy_for_pattern(pattern, explore=False):
    return Strategy(
        pattern_type=pattern.pattern_type,
        signature=pattern.signature,
        definition=pattern.definition,
        pattern_id=pattern.id,
        confidence=pattern.confidence,
        explore=explore,
        metadata=pattern.metadata,
    )

def available_pattern_types(conn, target_key):
    """Structural replay needs a crawl path to replay."""
    has_path, = conn.execute('SELECT EXISTS(SELECT * FROM dcr_crawl_path WHERE target_key = ? AND confidence > 0)', [target_key]).fetchone()

    if has_path:
        return PATTERN_TYPES

    return tuple(t for t in PATTERN_TYPES if t != 'structural')

def _by_global_rate(rates):
    return lambda t: (-rates.get(t, 0.5), PATTERN_TYPES.index(t))

def _explore(patterns, eligible, available, rates, excluded):
    attempted = set(p.pattern_type for p in patterns)

    for pattern_type in sorted(available, key=_by_global_rate(rates)):
        if pattern_type in attempted:
            continue

        strategy = default_strategy(pattern_type)
        if strategy.signature not in excluded:
            return strategy

    if not eligible:
        return None

    least_tried = min(eligible, key=lambda p: (p.success_count + p.failure_count, PATTERN_TYPES.index(p.pattern_type), p.id))
    return strategy_for_pattern(least_tried, explore=True)

def _exploit(eligible):
    if not eligible:
        return None

    ranked = sorted(eligible, key=lambda p: p.last_success_at or '', reverse=True)
    ranked = sorted(ranked, key=lambda p: (p.review_state != ReviewState.VERIFIED, -p.confidence))
    return strategy_for_pattern(ranked[0])

def select_strategy(conn, target_key, available_pattern_types=PATTERN_TYPES, epsilon=0.1, rng=None, exclude_signatures=()):
    """Pick the next Strategy for a target, or None when nothing is left to try.

    With probability epsilon, explore: a pattern type this target has never
    tried, else its least-tried pattern. Otherwise exploit: verified patterns
    first, then confidence, then the most recent success. Rejected patterns
    and `exclude_signatures` are never chosen. If the chosen branch has nothing
    to offer, the other branch gets a turn."""
    if rng is None:
        rng = random

    available = [t for t in PATTERN_TYPES if t in set(available_pattern_types)]
    excluded = set(exclude_signatures)
    rates = global_success_rates(conn)
    patterns = [p for p in list_patterns(conn, target_key) if p.pattern_type in available]

    if not patterns:
        return _explore([], [], available, rates, excluded)

    eligible = [p for p in patterns if p.review_state != ReviewState.REJECTED and not p.signature in excluded]

    if rng.random() < epsilon:
        return _explore(patterns, eligible, available, rates, excluded) or _exploit(eligible)

    return _exploit(eligible) or _explore(patterns, eligible, available, rates, excluded)
