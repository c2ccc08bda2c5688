from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence

from viralclip.models import CandidateWindow, EnergyPeak, SceneChange, SilenceInterval

STRIDE_SECONDS = 30
FIRST_CANDIDATE_SECONDS = 30
LEAD_IN_SECONDS = 5
SILENCE_GUARD_SECONDS = 5
SILENCE_PENALTY_RADIUS_SECONDS = 15
PEAK_MATCH_TOLERANCE = 10
PEAK_MODULUS = 100

BASE_SCORE = 50.0
PEAK_BONUS = 30.0
SILENCE_PENALTY = 40.0
MIN_SCORE = 50.0
MAX_WINDOWS = 10

FALLBACK_SCORE = 50.0


@dataclass(slots=True)
class MomentScoreDetails:
    """Explainable output for one candidate start time."""

    score: float
    peak_match: bool
    near_silence: bool


def select_moments(
    duration: float,
    silence_intervals: Sequence[SilenceInterval],
    energy_peaks: Sequence[EnergyPeak],
    clip_duration: float,
    *,
    scene_changes: Sequence[SceneChange] = (),
) -> list[CandidateWindow]:
    """Rank fixed-stride candidate windows by a cheap energy/silence heuristic.

    Pipeline:
    1) candidate start times every 30s from t=30 while t < duration - clip_duration
    2) drop candidates with silence overlapping [t-5, t+5]
    3) score: base 50, +30 on an energy-peak ordinal match, -40 near a silence midpoint
    4) keep score > 50, sort by score descending, keep at most 10

    Only a peak match can lift a score above 50, so every kept window is an
    energy peak.

    Deterministic and free of I/O. An empty result is returned as-is; the caller
    decides on a fallback. Scene changes only annotate the reason text.
    """

    if clip_duration <= 0:
        raise ValueError("clip_duration must be positive.")

    windows: list[CandidateWindow] = []
    for t in _candidate_starts(duration, clip_duration):
        if _overlaps_silence(t, silence_intervals):
            continue

        details = score_moment(t, energy_peaks, silence_intervals)
        if details.score <= MIN_SCORE:
            continue

        start = max(0.0, t - LEAD_IN_SECONDS)
        end = min(duration, t + clip_duration - LEAD_IN_SECONDS)
        windows.append(
            CandidateWindow(
                start=start,
                end=end,
                duration_seconds=round(end - start, 3),
                score=details.score,
                reason=_reason(start, end, scene_changes),
                window_type="energy_peak",
            )
        )

    ranked = sorted(windows, key=lambda window: (-window.score, window.start))
    return ranked[:MAX_WINDOWS]


def score_moment(
    t: float,
    energy_peaks: Iterable[EnergyPeak],
    silence_intervals: Iterable[SilenceInterval],
) -> MomentScoreDetails:
    """Score a single candidate start time.

    Peaks are matched on ``ordinal_index mod 100`` against ``t mod 100``; the
    ordinal is a measurement counter, not a timestamp, and is compared as-is.
    """

    peak_match = any(
        abs(peak.ordinal_index % PEAK_MODULUS - t % PEAK_MODULUS) < PEAK_MATCH_TOLERANCE
        for peak in energy_peaks
    )
    near_silence = any(
        abs(interval.midpoint - t) < SILENCE_PENALTY_RADIUS_SECONDS
        for interval in silence_intervals
    )

    score = BASE_SCORE
    if peak_match:
        score += PEAK_BONUS
    if near_silence:
        score -= SILENCE_PENALTY

    return MomentScoreDetails(score=_clamp(score), peak_match=peak_match, near_silence=near_silence)


def fallback_window(duration: float) -> CandidateWindow:
    """Whole-video window used when scoring yields no candidates."""

    end = max(duration, 0.0)
    return CandidateWindow(
        start=0.0,
        end=end,
        duration_seconds=round(end, 3),
        score=FALLBACK_SCORE,
        reason="Full video",
        window_type="clip",
    )


def rank_for_request(windows: Sequence[CandidateWindow], clip_count: int) -> list[CandidateWindow]:
    """Cap ranked windows to the requested count, never more than the hard maximum."""

    limit = max(0, min(clip_count, MAX_WINDOWS))
    return list(windows[:limit])


def _candidate_starts(duration: float, clip_duration: float) -> Iterable[int]:
    t = FIRST_CANDIDATE_SECONDS
    while t < duration - clip_duration:
        yield t
        t += STRIDE_SECONDS


def _overlaps_silence(t: float, silence_intervals: Iterable[SilenceInterval]) -> bool:
    return any(
        interval.start - SILENCE_GUARD_SECONDS <= t <= interval.end + SILENCE_GUARD_SECONDS
        for interval in silence_intervals
    )


def _reason(start: float, end: float, scene_changes: Sequence[SceneChange]) -> str:
    reason = "High energy segment"
    cuts = sum(1 for change in scene_changes if start <= change.timestamp_seconds < end)
    if cuts:
        reason += f" ({cuts} scene change{'s' if cuts != 1 else ''})"
    return reason


def _clamp(value: float, minimum: float = 0.0, maximum: float = 100.0) -> float:
    return max(minimum, min(maximum, value))
