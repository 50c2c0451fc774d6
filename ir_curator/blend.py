"""
Blend Module

Simulate a two-mic blend by mixing raw band energies at fixed gains, then
recompute every derived representation from the blended energies. Percent and
dB shape are never interpolated directly because dB is not energy-linear.
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import config
from ir_curator.profiles import (
    DEFAULT_PROFILES,
    LearnedProfileData,
    MatchResult,
    PreferenceProfile,
    score_against_all_profiles,
)
from ir_curator.tonal import (
    BAND_KEYS,
    TonalFeatures,
    band_centroid_hz,
    bands_to_percent,
    bands_to_shape_db,
    compute_proxy_smooth_score,
    is_finite_number,
    round_half_up,
    safe_number,
    shape_tilt,
)


def _mix(a: float, b: float, a_gain: float, b_gain: float) -> float:
    return safe_number(a) * a_gain + safe_number(b) * b_gain


def _mix_optional(a: Optional[float], b: Optional[float], a_gain: float, b_gain: float) -> Optional[float]:
    # A side without a measurement contributes nothing; the other side stands alone
    a_ok = is_finite_number(a)
    b_ok = is_finite_number(b)
    if a_ok and b_ok:
        return a * a_gain + b * b_gain
    if a_ok:
        return float(a)
    if b_ok:
        return float(b)
    return None


def blend_features(a: TonalFeatures, b: TonalFeatures, a_gain: float, b_gain: float) -> TonalFeatures:
    """
    Blend two IRs' features at the given gains.

    Parameters:
        a: First IR features
        b: Second IR features
        a_gain: Gain applied to a (1.0 = unity)
        b_gain: Gain applied to b

    Returns:
        TonalFeatures of the blend
    """
    a_gain = safe_number(a_gain)
    b_gain = safe_number(b_gain)

    raw = {k: _mix(a.bands_raw.get(k), b.bands_raw.get(k), a_gain, b_gain) for k in BAND_KEYS}
    percent = bands_to_percent(raw)
    shape = bands_to_shape_db(raw)

    if a.tilt_is_measured and b.tilt_is_measured:
        tilt = _mix(a.tilt_db_per_oct, b.tilt_db_per_oct, a_gain, b_gain)
    else:
        tilt = shape_tilt(shape)

    if a.smooth_is_proxy or b.smooth_is_proxy:
        smooth = float(compute_proxy_smooth_score(shape))
        smooth_is_proxy = True
    else:
        smooth = float(round_half_up(_mix(a.smooth_score, b.smooth_score, a_gain, b_gain)))
        smooth_is_proxy = False

    if len(a.log_bands) == len(b.log_bands):
        log_bands = tuple(_mix(x, y, a_gain, b_gain) for x, y in zip(a.log_bands, b.log_bands))
    else:
        log_bands = ()

    return TonalFeatures(
        bands_raw=raw,
        bands_percent=percent,
        bands_shape_db=shape,
        tilt_db_per_oct=float(tilt),
        smooth_score=smooth,
        spectral_centroid_hz=_mix(a.spectral_centroid_hz, b.spectral_centroid_hz, a_gain, b_gain),
        band_centroid_hz=band_centroid_hz(raw),
        rolloff_freq=_mix_optional(a.rolloff_freq, b.rolloff_freq, a_gain, b_gain),
        notch_count=_mix_optional(a.notch_count, b.notch_count, a_gain, b_gain),
        max_notch_depth=_mix_optional(a.max_notch_depth, b.max_notch_depth, a_gain, b_gain),
        tail_level_db=_mix_optional(a.tail_level_db, b.tail_level_db, a_gain, b_gain),
        tail_status=None,
        fizz_energy=_mix(a.fizz_percent, b.fizz_percent, a_gain, b_gain) / 100.0,
        residual_noise_db=_mix_optional(a.residual_noise_db, b.residual_noise_db, a_gain, b_gain),
        log_bands=log_bands,
        smooth_is_proxy=smooth_is_proxy,
        tilt_is_measured=a.tilt_is_measured and b.tilt_is_measured,
    )


def ratio_gains(label: str, ratios: Sequence[Tuple[str, float, float]] = config.BLEND_RATIOS) -> Tuple[float, float]:
    """
    Look up (base, feature) gains for a ratio label such as "60/40".

    Raises:
        ValueError: If the label is not a known ratio
    """
    for name, base, feature in ratios:
        if name == label:
            return base, feature
    raise ValueError(f"Unknown blend ratio: {label!r}")


def blend_at_ratio(base: TonalFeatures, feature: TonalFeatures, label: str) -> TonalFeatures:
    base_gain, feature_gain = ratio_gains(label)
    return blend_features(base, feature, base_gain, feature_gain)


@dataclass(frozen=True)
class BlendPartnerScore:
    """
    Best blend found for one candidate partner.

    Attributes:
        filename: Candidate filename
        best_ratio: Ratio label that scored best
        best_match: MatchResult of the best blend
        blended: Features of the best blend
        rank: 1-based rank among candidates
    """
    filename: str
    best_ratio: str
    best_match: MatchResult
    blended: TonalFeatures
    rank: int = 0

    @property
    def best_score(self) -> int:
        return self.best_match.score


def rank_blend_partners(
    base: TonalFeatures,
    candidates: Sequence[Tuple[str, TonalFeatures]],
    ratios: Sequence[Tuple[str, float, float]] = config.BLEND_RATIOS,
    profiles: Sequence[PreferenceProfile] = DEFAULT_PROFILES,
    learned: Optional[LearnedProfileData] = None
) -> List[BlendPartnerScore]:
    """
    Rank partner IRs by the best profile score any of their blends reaches.

    Every candidate is blended with the base at each ratio; the first ratio
    reaching the highest score is kept. Candidates are ranked by that score,
    input order breaking ties.

    Parameters:
        base: Features of the base IR
        candidates: (filename, features) partners
        ratios: (label, base gain, feature gain) triples
        profiles: Profiles scored against
        learned: Optional learned preference data

    Returns:
        BlendPartnerScore list, best first
    """
    scored = []
    for filename, tf in candidates:
        best = None
        for label, base_gain, feature_gain in ratios:
            blended = blend_features(base, tf, base_gain, feature_gain)
            _, match = score_against_all_profiles(blended, profiles, learned)
            if best is None or match.score > best[1].score:
                best = (label, match, blended)
        if best is None:
            continue
        scored.append(BlendPartnerScore(filename=filename, best_ratio=best[0],
                                        best_match=best[1], blended=best[2]))

    scored.sort(key=lambda s: s.best_score, reverse=True)
    return [
        BlendPartnerScore(filename=s.filename, best_ratio=s.best_ratio,
                          best_match=s.best_match, blended=s.blended, rank=i + 1)
        for i, s in enumerate(scored)
    ]
