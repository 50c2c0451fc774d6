"""
Preference Profile Module

Score IR tonal shape against named target profiles.

A profile is a dB shape target plus a target tilt. The distance is the sum of
absolute per-band shape differences, a weighted tilt difference and three
onset penalties (smoothness, notch depth, roll-off). Distance maps to a 0-100
score and a qualitative label.

Learned preference data, supplied by an external collaborator, can shift
profile targets per band and add "avoid zone" penalties. It is read-only
input here.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

import config
from ir_curator.naming import infer_speaker_id
from ir_curator.tonal import (
    BAND_KEYS,
    TonalFeatures,
    bands_to_shape_db,
    distance_to_score,
    is_finite_number,
    round_half_up,
    safe_number,
    score_to_label,
    shape_tilt,
)

# Anchor band mixes (percent of total) the default profiles are built from
FEATURED_ANCHOR_PERCENT: Dict[str, float] = {
    'subBass': 1.0, 'bass': 3.0, 'lowMid': 5.0, 'mid': 22.0,
    'highMid': 39.0, 'presence': 27.0, 'air': 3.0,
}
BODY_ANCHOR_PERCENT: Dict[str, float] = {
    'subBass': 2.0, 'bass': 3.0, 'lowMid': 6.0, 'mid': 34.0,
    'highMid': 40.0, 'presence': 12.0, 'air': 3.0,
}

BAND_LABELS: Dict[str, str] = {
    'subBass': 'SubBass',
    'bass': 'Bass',
    'lowMid': 'LowMid',
    'mid': 'Mid',
    'highMid': 'HiMid',
    'presence': 'Presence',
    'air': 'Air',
}


@dataclass(frozen=True)
class PreferenceProfile:
    """
    Named tonal target.

    Attributes:
        name: Profile name ("Featured", "Body", or a cohort variant)
        target_shape_db: Target dB shape per band
        target_tilt: Target tilt (same units as the shape tilt)
        weights: Optional overrides of SCORE_WEIGHTS
        description: Human-readable intent
        source: "default", "batch" or "speaker"
    """
    name: str
    target_shape_db: Dict[str, float]
    target_tilt: float
    weights: Optional[Dict[str, float]] = None
    description: str = ''
    source: str = 'default'


@dataclass(frozen=True)
class BandDeviation:
    band: str
    direction: str  # "low" | "high"
    amount: float   # dB


@dataclass(frozen=True)
class MatchResult:
    """
    Outcome of scoring one IR against one profile.

    Attributes:
        profile: Profile name
        score: 0..100
        label: strong | close | partial | miss
        deviations: Bands outside the tolerance, largest first
        summary: Human-readable one-liner
        distance: Raw weighted distance
        avoid_penalty: Points subtracted for violated avoid zones
    """
    profile: str
    score: int
    label: str
    deviations: List[BandDeviation]
    summary: str
    distance: float = 0.0
    avoid_penalty: float = 0.0


def profile_from_percent(name: str, percent: Mapping[str, float], description: str = '',
                         source: str = 'default') -> PreferenceProfile:
    """Build a profile whose target is the dB shape of a percent band mix."""
    shape = bands_to_shape_db(percent)
    return PreferenceProfile(
        name=name,
        target_shape_db=shape,
        target_tilt=shape_tilt(shape),
        description=description,
        source=source,
    )


FEATURED_PROFILE = profile_from_percent(
    'Featured', FEATURED_ANCHOR_PERCENT, 'Cut, air, articulation. For lead/featured parts.')
BODY_PROFILE = profile_from_percent(
    'Body', BODY_ANCHOR_PERCENT, 'Weight, warmth, sit-in-the-mix. For rhythm/foundation parts.')

DEFAULT_PROFILES: List[PreferenceProfile] = [FEATURED_PROFILE, BODY_PROFILE]


# =============================================================================
# DISTANCE AND SCORING
# =============================================================================

def score_distance(
    tf: TonalFeatures,
    target_shape: Mapping[str, float],
    target_tilt: float,
    weights: Optional[Mapping[str, float]] = None
) -> float:
    """
    Weighted distance between an IR and a target shape/tilt.

    Parameters:
        tf: IR features
        target_shape: Target dB shape per band
        target_tilt: Target tilt
        weights: Overrides for SCORE_WEIGHTS keys

    Returns:
        Non-negative distance (0 = exact match)
    """
    w = dict(config.SCORE_WEIGHTS)
    if weights:
        w.update(weights)

    d = 0.0
    for k in BAND_KEYS:
        d += abs(safe_number(tf.bands_shape_db.get(k)) - safe_number(target_shape.get(k))) * w['shape']

    d += abs(safe_number(tf.tilt_db_per_oct) - safe_number(target_tilt)) * w['tilt']

    smooth = safe_number(tf.smooth_score)
    if smooth < config.SMOOTH_PENALTY_BELOW:
        d += (config.SMOOTH_PENALTY_BELOW - smooth) / 100.0 * w['smooth_penalty']

    if is_finite_number(tf.max_notch_depth) and tf.max_notch_depth > config.NOTCH_PENALTY_ABOVE_DB:
        d += (tf.max_notch_depth - config.NOTCH_PENALTY_ABOVE_DB) * w['notch_penalty']

    if is_finite_number(tf.rolloff_freq) and 0 < tf.rolloff_freq < config.ROLLOFF_PENALTY_BELOW_HZ:
        d += (config.ROLLOFF_PENALTY_BELOW_HZ - tf.rolloff_freq) * w['rolloff_penalty']

    return d


def band_deviations(
    shape_db: Mapping[str, float],
    target_shape: Mapping[str, float],
    tolerance: float = config.DEVIATION_TOLERANCE_DB
) -> List[BandDeviation]:
    """Bands whose shape differs from target by more than tolerance, largest first."""
    out = []
    for k in BAND_KEYS:
        delta = safe_number(shape_db.get(k)) - safe_number(target_shape.get(k))
        if abs(delta) > tolerance:
            out.append(BandDeviation(
                band=BAND_LABELS[k],
                direction='high' if delta > 0 else 'low',
                amount=round(abs(delta), 1),
            ))
    out.sort(key=lambda dev: dev.amount, reverse=True)
    return out


def summarize_match(profile_name: str, label: str, deviations: Sequence[BandDeviation]) -> str:
    if label == 'strong':
        return f"Strong {profile_name} match"
    if label == 'close':
        if deviations:
            top = deviations[0]
            where = 'above' if top.direction == 'high' else 'below'
            return f"Near {profile_name}: {top.band} {where} target"
        return f"Near {profile_name}"
    if label == 'partial':
        return f"Partial {profile_name}: {len(deviations)} bands out of range"
    return f"Outside {profile_name} range"


def score_against_profile(
    tf: TonalFeatures,
    profile: PreferenceProfile,
    learned: Optional['LearnedProfileData'] = None
) -> MatchResult:
    """
    Score one IR against one profile.

    When learned data is supplied and active, the profile target is shifted
    first and avoid-zone penalties are subtracted from the score.

    Parameters:
        tf: IR features
        profile: Target profile
        learned: Optional learned preference data

    Returns:
        MatchResult
    """
    effective = apply_learned_adjustments(profile, learned) if learned is not None else profile

    distance = score_distance(tf, effective.target_shape_db, effective.target_tilt, effective.weights)
    score = distance_to_score(distance)

    penalty = 0.0
    if learned is not None and learned.is_active:
        penalty = avoid_zone_penalty(tf, learned.avoid_zones)
        score = max(0, round_half_up(score - penalty))

    label = score_to_label(score)
    deviations = band_deviations(tf.bands_shape_db, effective.target_shape_db)

    return MatchResult(
        profile=profile.name,
        score=score,
        label=label,
        deviations=deviations,
        summary=summarize_match(profile.name, label, deviations),
        distance=float(distance),
        avoid_penalty=float(penalty),
    )


def score_against_all_profiles(
    tf: TonalFeatures,
    profiles: Sequence[PreferenceProfile] = DEFAULT_PROFILES,
    learned: Optional['LearnedProfileData'] = None
) -> Tuple[List[MatchResult], MatchResult]:
    """
    Score an IR against every profile.

    Returns:
        Tuple of (all results in profile order, best result; first wins ties)
    """
    profiles = list(profiles) or DEFAULT_PROFILES
    results = [score_against_profile(tf, p, learned) for p in profiles]
    best = results[0]
    for r in results[1:]:
        if r.score > best.score:
            best = r
    return results, best


# =============================================================================
# BATCH-DERIVED PROFILES
# =============================================================================

def _median_profile(name: str, members: Sequence[TonalFeatures], description: str,
                    source: str) -> PreferenceProfile:
    shape = {
        k: float(np.median([safe_number(tf.bands_shape_db.get(k)) for tf in members]))
        for k in BAND_KEYS
    }
    tilt = float(np.median([safe_number(tf.tilt_db_per_oct) for tf in members]))
    return PreferenceProfile(name=name, target_shape_db=shape, target_tilt=tilt,
                             description=description, source=source)


def derive_batch_profiles(
    features: Sequence[TonalFeatures],
    min_count: int = config.BATCH_PROFILE_MIN_COUNT,
    min_tilt_spread: float = config.BATCH_PROFILE_MIN_TILT_SPREAD_DB,
    name_suffix: str = '',
    source: str = 'batch'
) -> List[PreferenceProfile]:
    """
    Derive a Featured/Body pair from the batch's own tilt distribution.

    The brightest 30% (tilt at or above the 70th percentile) becomes the
    Featured target and the darkest 30% the Body target, each as the per-band
    median shape. Batches that are too small or too uniform fall back to the
    default pair.

    Parameters:
        features: Features of every IR in the batch
        min_count: Minimum IRs required
        min_tilt_spread: Minimum max-min tilt spread (dB) required
        name_suffix: Appended to profile names (used for cohort variants)
        source: Recorded on the derived profiles

    Returns:
        [Featured, Body] profiles
    """
    features = list(features)
    if len(features) < min_count:
        return list(DEFAULT_PROFILES)

    tilts = np.array([safe_number(tf.tilt_db_per_oct) for tf in features])
    if float(np.max(tilts) - np.min(tilts)) < min_tilt_spread:
        return list(DEFAULT_PROFILES)

    bright_cut = float(np.percentile(tilts, config.BATCH_PROFILE_BRIGHT_PERCENTILE))
    dark_cut = float(np.percentile(tilts, config.BATCH_PROFILE_DARK_PERCENTILE))

    bright = [tf for tf, t in zip(features, tilts) if t >= bright_cut]
    dark = [tf for tf, t in zip(features, tilts) if t <= dark_cut]

    return [
        _median_profile(f'Featured{name_suffix}', bright, 'Brightest 30% of this batch', source),
        _median_profile(f'Body{name_suffix}', dark, 'Darkest 30% of this batch', source),
    ]


def derive_speaker_profiles(
    rows: Sequence[Tuple[str, TonalFeatures]],
    min_count: int = config.BATCH_PROFILE_MIN_COUNT,
    min_tilt_spread: float = config.BATCH_PROFILE_MIN_TILT_SPREAD_DB
) -> Dict[str, List[PreferenceProfile]]:
    """Per-cohort profile pairs (cohorts without enough spread get the defaults)."""
    groups: Dict[str, List[TonalFeatures]] = {}
    for filename, tf in rows:
        groups.setdefault(infer_speaker_id(filename), []).append(tf)
    return {
        speaker: derive_batch_profiles(members, min_count, min_tilt_spread,
                                       name_suffix=f' ({speaker})', source='speaker')
        for speaker, members in groups.items()
    }


# =============================================================================
# LEARNED PREFERENCES
# =============================================================================

LEARNED_STATUSES = ('no_data', 'learning', 'confident', 'mastered')


@dataclass(frozen=True)
class BandAdjustment:
    shift: float       # percent points
    confidence: float  # 0..1


@dataclass(frozen=True)
class AvoidZone:
    """
    A region of tonal space the user has rejected.

    Attributes:
        band: A band key (percent) or one of ratio, tilt, centroid, smooth, rolloff
        direction: "above" or "below"
        threshold: Boundary in the metric's own units
    """
    band: str
    direction: str
    threshold: float


@dataclass(frozen=True)
class RatioPreference:
    label: str
    base: float
    feature: float
    confidence: float = 0.0


@dataclass(frozen=True)
class LearnedProfileData:
    """
    Read-only aggregate from the preference-learning collaborator.

    Attributes:
        status: One of no_data, learning, confident, mastered
        signal_count: Total feedback signals
        liked_count: Positive signals
        noped_count: Negative signals
        band_adjustments: Global per-band shifts
        profile_adjustments: Per-profile per-band shifts (profile name -> band -> shift)
        avoid_zones: Rejected tonal regions
        gear_sentiment: Mic/gear token -> sentiment in [-1, 1]
        ratio_preference: Preferred blend ratio, if any
    """
    status: str = 'no_data'
    signal_count: int = 0
    liked_count: int = 0
    noped_count: int = 0
    band_adjustments: Dict[str, BandAdjustment] = field(default_factory=dict)
    profile_adjustments: Dict[str, Dict[str, BandAdjustment]] = field(default_factory=dict)
    avoid_zones: List[AvoidZone] = field(default_factory=list)
    gear_sentiment: Dict[str, float] = field(default_factory=dict)
    ratio_preference: Optional[RatioPreference] = None

    @property
    def is_active(self) -> bool:
        return self.status in config.LEARNED_ACTIVE_STATUSES

    @classmethod
    def from_payload(cls, payload: Any) -> 'LearnedProfileData':
        """Parse a loosely-shaped payload; unknown or malformed fields are ignored."""
        if not isinstance(payload, Mapping):
            return cls()

        status = payload.get('status')
        status = status if status in LEARNED_STATUSES else 'no_data'

        def _int(*keys: str) -> int:
            for key in keys:
                if is_finite_number(payload.get(key)):
                    return int(payload[key])
            return 0

        return cls(
            status=status,
            signal_count=_int('signalCount', 'signal_count'),
            liked_count=_int('likedCount', 'liked_count'),
            noped_count=_int('nopedCount', 'noped_count'),
            band_adjustments=_parse_adjustments(
                payload.get('bandAdjustments', payload.get('band_adjustments'))),
            profile_adjustments={
                str(name): _parse_adjustments(adj)
                for name, adj in _as_mapping(
                    payload.get('profileAdjustments', payload.get('profile_adjustments'))).items()
            },
            avoid_zones=_parse_avoid_zones(payload.get('avoidZones', payload.get('avoid_zones'))),
            gear_sentiment={
                str(k).lower(): float(np.clip(v, -1.0, 1.0))
                for k, v in _as_mapping(
                    payload.get('gearSentiment', payload.get('gear_sentiment'))).items()
                if is_finite_number(v)
            },
            ratio_preference=_parse_ratio_preference(
                payload.get('ratioPreference', payload.get('ratio_preference'))),
        )


def _as_mapping(v: Any) -> Mapping:
    return v if isinstance(v, Mapping) else {}


def _parse_adjustments(raw: Any) -> Dict[str, BandAdjustment]:
    out = {}
    for band, adj in _as_mapping(raw).items():
        if band not in BAND_KEYS:
            continue
        if isinstance(adj, Mapping):
            shift = safe_number(adj.get('shift'))
            confidence = safe_number(adj.get('confidence'))
        else:
            shift = safe_number(adj)
            confidence = 1.0
        out[band] = BandAdjustment(shift=shift, confidence=float(np.clip(confidence, 0.0, 1.0)))
    return out


def _parse_avoid_zones(raw: Any) -> List[AvoidZone]:
    zones = []
    if not isinstance(raw, (list, tuple)):
        return zones
    for z in raw:
        if not isinstance(z, Mapping):
            continue
        direction = z.get('direction')
        if direction not in ('above', 'below') or not is_finite_number(z.get('threshold')):
            continue
        band = z.get('band', z.get('metric'))
        if not isinstance(band, str):
            continue
        zones.append(AvoidZone(band=band, direction=direction, threshold=float(z['threshold'])))
    return zones


def _parse_ratio_preference(raw: Any) -> Optional[RatioPreference]:
    if not isinstance(raw, Mapping):
        return None
    base = safe_number(raw.get('base'))
    feature = safe_number(raw.get('feature'))
    if base <= 0 and feature <= 0:
        return None
    label = raw.get('label')
    if not isinstance(label, str):
        label = f"{round(base * 100)}/{round(feature * 100)}"
    return RatioPreference(label=label, base=base, feature=feature,
                           confidence=float(np.clip(safe_number(raw.get('confidence')), 0.0, 1.0)))


def apply_learned_adjustments(
    profile: PreferenceProfile,
    learned: Optional[LearnedProfileData]
) -> PreferenceProfile:
    """
    Shift a profile's target shape by learned per-band adjustments.

    Each band moves by shift * confidence * LEARNED_PERCENT_TO_DB, summing the
    global and the profile-specific adjustment. Inactive data (no_data) leaves
    the profile untouched.

    Returns:
        New PreferenceProfile (the input is not modified)
    """
    if learned is None or not learned.is_active:
        return profile

    per_profile = learned.profile_adjustments.get(profile.name, {})
    shifted = dict(profile.target_shape_db)
    changed = False
    for k in BAND_KEYS:
        delta = 0.0
        for adj in (learned.band_adjustments.get(k), per_profile.get(k)):
            if adj is not None:
                delta += adj.shift * adj.confidence * config.LEARNED_PERCENT_TO_DB
        if delta:
            shifted[k] = safe_number(shifted.get(k)) + delta
            changed = True

    if not changed:
        return profile
    return replace(profile, target_shape_db=shifted)


def avoid_zone_metric(tf: TonalFeatures, band: str) -> Tuple[Optional[float], str]:
    """Observed value and unit family for an avoid-zone metric name."""
    if band in BAND_KEYS:
        return tf.percent(band), 'percent'
    if band == 'ratio':
        return tf.hi_mid_mid_ratio, 'ratio'
    if band == 'tilt':
        return safe_number(tf.tilt_db_per_oct), 'tilt'
    if band == 'centroid':
        return safe_number(tf.spectral_centroid_hz), 'centroid'
    if band == 'smooth':
        return safe_number(tf.smooth_score), 'smooth'
    if band == 'rolloff':
        return (tf.rolloff_freq if is_finite_number(tf.rolloff_freq) else None), 'rolloff'
    return None, ''


def avoid_zone_penalty(
    tf: TonalFeatures,
    zones: Sequence[AvoidZone],
    max_penalty: float = config.AVOID_ZONE_MAX_PENALTY
) -> float:
    """
    Total penalty for every avoid zone the IR falls into.

    A zone contributes only when the observed value crosses its threshold in
    the stated direction; its contribution is the excess times a per-family
    unit penalty, capped at max_penalty.
    """
    total = 0.0
    for zone in zones:
        value, family = avoid_zone_metric(tf, zone.band)
        if value is None or not family:
            continue
        if zone.direction == 'above':
            excess = value - zone.threshold
        else:
            excess = zone.threshold - value
        if excess <= 0:
            continue
        total += min(max_penalty, excess * config.AVOID_ZONE_UNIT_PENALTY[family])
    return total
