"""Entry quality scoring.

Two formulas produce a 0-100 entry score:
- Technical: fixed mapping of the snapshot's overall quality
- Target ratio: piecewise-linear in current_price / entry_target

A successful technical computation supersedes a stored target-ratio score.
A failed one only flags the asset, leaving its last score visible.

This module is pure business logic with no I/O dependencies.
"""

import time
from dataclasses import dataclass

from entrywatch_core.models import (
    AnalysisStatus,
    EntryOpportunity,
    EntrySignalClass,
    IndicatorSnapshot,
    ScoreSource,
    TrackedAsset,
    quality_to_score,
)

# (min score, signal), checked top-down
SIGNAL_THRESHOLDS: tuple[tuple[float, EntrySignalClass], ...] = (
    (85, EntrySignalClass.STRONG_BUY),
    (70, EntrySignalClass.BUY),
    (40, EntrySignalClass.NEUTRAL),
    (20, EntrySignalClass.WAIT),
)


@dataclass(slots=True, frozen=True)
class EntryScore:
    """A computed score and its signal class."""

    score: float
    signal: EntrySignalClass
    source: ScoreSource


def _clamp(score: float) -> float:
    return max(0.0, min(100.0, score))


def signal_for_score(score: float) -> EntrySignalClass:
    """Map a 0-100 score to a discrete signal."""
    for threshold, signal in SIGNAL_THRESHOLDS:
        if score >= threshold:
            return signal
    return EntrySignalClass.AVOID


def target_ratio_score(ratio: float) -> float:
    """
    Piecewise-linear score for current_price / entry_target.

    ratio <= 0.90  -> 90..100 (100 at 0.80 and below)
    0.90 .. 0.95   -> 90..80
    0.95 .. 1.05   -> 80..60
    1.05 .. 1.15   -> 60..20
    > 1.15         -> 20..0  (0 at 1.35 and above)
    """
    if ratio <= 0.90:
        score = 90 + (0.90 - ratio) * 100
    elif ratio <= 0.95:
        score = 90 - (ratio - 0.90) / 0.05 * 10
    elif ratio <= 1.05:
        score = 80 - (ratio - 0.95) / 0.10 * 20
    elif ratio <= 1.15:
        score = 60 - (ratio - 1.05) / 0.10 * 40
    else:
        score = 20 - (ratio - 1.15) * 100
    return _clamp(score)


def score_technical(snapshot: IndicatorSnapshot) -> EntryScore:
    """Score from technical indicators."""
    score = float(quality_to_score(snapshot.overall_quality))
    return EntryScore(score=score, signal=signal_for_score(score), source=ScoreSource.TECHNICAL)


def score_target_ratio(current_price: float, entry_target: float) -> EntryScore | None:
    """Score from the price-to-entry-target ratio.

    Returns None when either price is not positive.
    """
    if current_price <= 0 or entry_target <= 0:
        return None
    score = target_ratio_score(current_price / entry_target)
    return EntryScore(score=score, signal=signal_for_score(score), source=ScoreSource.TARGET_RATIO)


def apply_technical_result(
    asset: TrackedAsset,
    snapshot: IndicatorSnapshot,
    now: float | None = None,
) -> EntryScore:
    """Write a successful technical analysis onto an asset."""
    result = score_technical(snapshot)
    asset.indicators = snapshot
    asset.entry_score = result.score
    asset.entry_signal = result.signal
    asset.score_source = result.source
    asset.analysis_status = AnalysisStatus.SUCCESS
    asset.last_analysis_update = now if now is not None else time.time()
    return result


def mark_analysis_error(asset: TrackedAsset, now: float | None = None) -> None:
    """Flag a failed technical analysis without touching the last score."""
    asset.analysis_status = AnalysisStatus.ERROR
    asset.last_analysis_update = now if now is not None else time.time()


def apply_target_ratio(asset: TrackedAsset) -> EntryScore | None:
    """Score an asset by target ratio unless it already has a technical score."""
    if asset.score_source == ScoreSource.TECHNICAL:
        return None
    result = score_target_ratio(asset.current_price, asset.entry_target)
    if result is None:
        return None
    asset.entry_score = result.score
    asset.entry_signal = result.signal
    asset.score_source = result.source
    return result


def apply_price_update(asset: TrackedAsset, price: float, now: float | None = None) -> None:
    """Record a new price tick; refresh the target-ratio score if it is in use."""
    asset.current_price = price
    asset.last_price_update = now if now is not None else time.time()
    apply_target_ratio(asset)


def entry_opportunity(asset: TrackedAsset) -> EntryOpportunity | None:
    """Classify the current price relative to the entry target."""
    if asset.entry_target <= 0:
        return None
    deviation = (asset.current_price - asset.entry_target) / asset.entry_target
    if deviation <= -0.10:
        return EntryOpportunity.EXCELLENT
    if deviation <= -0.05:
        return EntryOpportunity.GOOD
    if deviation <= 0.05:
        return EntryOpportunity.FAIR
    if deviation <= 0.15:
        return EntryOpportunity.HIGH
    return EntryOpportunity.AVOID
