"""
Tonal Feature Module

Convert a loosely-shaped metrics record into canonical TonalFeatures.

Every numeric read goes through a finite-or-zero guard and every branch has a
numeric fallback, so partially analyzed or malformed records still produce a
usable feature value. Nothing in this module raises on bad data.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

import config

BAND_KEYS = tuple(config.BAND_KEYS)

# Accepted aliases per field, in lookup order
BAND_ENERGY_ALIASES: Dict[str, Tuple[str, ...]] = {
    'subBass': ('subBass', 'sub_bass', 'subbass', 'subBassEnergy'),
    'bass': ('bass', 'bassEnergy'),
    'lowMid': ('lowMid', 'low_mid', 'lowmid', 'lowMidEnergy'),
    'mid': ('mid', 'midEnergy6', 'midEnergy'),
    'highMid': ('highMid', 'high_mid', 'highmid', 'highMidEnergy'),
    'presence': ('presence', 'pres', 'presenceEnergy'),
    'air': ('air', 'ultraHighEnergy', 'airEnergy'),
}

# Short keys used inside a nested `bandEnergies` block
NESTED_BAND_ALIASES: Dict[str, Tuple[str, ...]] = {
    'subBass': ('sub', 'subBass'),
    'bass': ('bass',),
    'lowMid': ('lowmid', 'lowMid'),
    'mid': ('mid',),
    'highMid': ('highmid', 'highMid'),
    'presence': ('pres', 'presence'),
    'air': ('air',),
}

BAND_BLOCK_ALIASES: Tuple[str, ...] = ('bandsRaw', 'bands_raw', 'bandsPercent', 'bands_percent', 'bands')
BAND_DB_BLOCK_ALIASES: Tuple[str, ...] = ('bandsDb', 'bands_db', 'bandLevelsDb')
LOG_BAND_ALIASES: Tuple[str, ...] = ('logBandEnergies', 'bandEnergiesLog', 'log_band_energies')

SCALAR_ALIASES: Dict[str, Tuple[str, ...]] = {
    'tilt': ('tiltDbPerOct', 'spectralTilt', 'spectral_tilt_db_per_oct', 'tilt'),
    'centroid': ('spectralCentroidHz', 'centroid_computed_hz', 'spectralCentroid', 'centroidHz', 'centroid'),
    'rolloff': ('rolloffFreq', 'rolloff_freq', 'spectralRolloff', 'rolloffHz', 'highFreqExtension'),
    'smooth': ('smoothScore', 'smooth_score', 'frequencySmoothness', 'smoothness'),
    'notch_count': ('notchCount', 'notch_count'),
    'notch_depth': ('maxNotchDepth', 'max_notch_depth', 'notchDepthDb'),
    'tail_level': ('tailLevelDb', 'tail_level_db', 'tailLevel'),
    'fizz': ('fizzEnergy', 'fizz_energy', 'fizzPct', 'fizz'),
    'residual_noise': ('residualNoiseDb', 'residual_noise_db', 'noiseFloorDb', 'residualNoise'),
}

TAIL_STATUS_ALIASES: Tuple[str, ...] = ('tailStatus', 'tail_status')


@dataclass(frozen=True)
class TonalFeatures:
    """
    Canonical tonal description of one IR.

    Attributes:
        bands_raw: Non-negative band energies
        bands_percent: Band share of total energy, sums to 100 (or all zero)
        bands_shape_db: Band level in dB relative to the mid/highMid/presence average
        tilt_db_per_oct: Spectral tilt (measured when supplied, else from shape)
        smooth_score: Smoothness 0..100 (measured or proxy)
        spectral_centroid_hz: Measured centroid, or the band estimate when absent
        band_centroid_hz: Energy-weighted mean of band centre frequencies
        rolloff_freq: Roll-off frequency in Hz (None when not measured)
        notch_count: Number of detected notches (None when not measured)
        max_notch_depth: Deepest notch in dB (None when not measured)
        tail_level_db: Decay tail level in dB (None when not measured)
        tail_status: Provider tail verdict (free text)
        fizz_energy: Fizz energy as supplied (fraction or percent)
        residual_noise_db: Residual noise floor in dB (None when not measured)
        log_bands: 24-bin log-spaced band energies (empty when not supplied)
        smooth_is_proxy: True when smooth_score came from the shape proxy
        tilt_is_measured: True when tilt came from the metrics record
    """
    bands_raw: Dict[str, float]
    bands_percent: Dict[str, float]
    bands_shape_db: Dict[str, float]
    tilt_db_per_oct: float
    smooth_score: float
    spectral_centroid_hz: float = 0.0
    band_centroid_hz: float = 0.0
    rolloff_freq: Optional[float] = None
    notch_count: Optional[float] = None
    max_notch_depth: Optional[float] = None
    tail_level_db: Optional[float] = None
    tail_status: Optional[str] = None
    fizz_energy: float = 0.0
    residual_noise_db: Optional[float] = None
    log_bands: Tuple[float, ...] = field(default_factory=tuple)
    smooth_is_proxy: bool = False
    tilt_is_measured: bool = False

    def percent(self, band: str) -> float:
        return safe_number(self.bands_percent.get(band))

    @property
    def fizz_percent(self) -> float:
        return fizz_to_percent(self.fizz_energy)

    @property
    def hi_mid_mid_ratio(self) -> float:
        mid = self.percent('mid')
        if mid <= 0:
            return config.HI_MID_MID_FALLBACK
        return self.percent('highMid') / mid


# =============================================================================
# GUARDS
# =============================================================================

def is_finite_number(v: Any) -> bool:
    if isinstance(v, bool):
        return False
    if isinstance(v, (int, float, np.integer, np.floating)):
        return math.isfinite(float(v))
    return False


def safe_number(v: Any, default: float = 0.0) -> float:
    """Return float(v) when v is a finite number, else default."""
    return float(v) if is_finite_number(v) else default


def optional_number(v: Any) -> Optional[float]:
    return float(v) if is_finite_number(v) else None


def clamp(x: float, lo: float, hi: float) -> float:
    """Clamp x into [lo, hi]; non-finite x maps to lo."""
    if not is_finite_number(x):
        return lo
    return max(lo, min(hi, float(x)))


def round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def fizz_to_percent(raw_fizz: Any) -> float:
    """Fizz above the cutover is already a percentage; below it is a fraction."""
    v = safe_number(raw_fizz)
    return v if v > config.FIZZ_PERCENT_CUTOVER else v * 100.0


def zero_bands() -> Dict[str, float]:
    return {k: 0.0 for k in BAND_KEYS}


# =============================================================================
# BAND REPRESENTATIONS
# =============================================================================

def bands_to_percent(bands_raw: Mapping[str, float]) -> Dict[str, float]:
    """
    Convert band energies to percent of total energy.

    Parameters:
        bands_raw: Band energies keyed by band name

    Returns:
        Band percentages summing to 100, or all zeros when total energy <= 0
    """
    values = {k: safe_number(bands_raw.get(k)) for k in BAND_KEYS}
    total = sum(values.values())
    if total <= 0:
        return zero_bands()
    return {k: values[k] / total * 100.0 for k in BAND_KEYS}


def _clamp_db(v: float) -> float:
    if not is_finite_number(v):
        return config.DB_FLOOR
    return min(config.DB_CEILING, max(config.DB_FLOOR, v))


def bands_to_shape_db(bands_raw: Mapping[str, float]) -> Dict[str, float]:
    """
    Convert band energies to dB relative to the mid/highMid/presence average.

    Parameters:
        bands_raw: Band energies keyed by band name

    Returns:
        Shape in dB, each value clamped to [DB_FLOOR, DB_CEILING]
    """
    db = {}
    for k in BAND_KEYS:
        energy = max(config.DB_EPSILON, safe_number(bands_raw.get(k)))
        db[k] = 10.0 * math.log10(energy)

    ref_candidates = [db[k] for k in ('mid', 'highMid', 'presence') if is_finite_number(db[k])]
    if ref_candidates:
        ref = sum(ref_candidates) / len(ref_candidates)
    else:
        all_finite = [db[k] for k in BAND_KEYS if is_finite_number(db[k])]
        ref = sum(all_finite) / len(all_finite) if all_finite else 0.0

    return {
        k: _clamp_db(db[k] - ref if is_finite_number(db[k]) else config.DB_FLOOR)
        for k in BAND_KEYS
    }


def shape_tilt(shape_db: Mapping[str, float]) -> float:
    """Tilt proxy: average of presence/air minus average of bass/subBass (dB)."""
    top = (safe_number(shape_db.get('presence')) + safe_number(shape_db.get('air'))) / 2.0
    bottom = (safe_number(shape_db.get('bass')) + safe_number(shape_db.get('subBass'))) / 2.0
    return top - bottom


def band_centroid_hz(bands_raw: Mapping[str, float]) -> float:
    """Energy-weighted mean of band centre frequencies (0 when no energy)."""
    total = 0.0
    weighted = 0.0
    for k in BAND_KEYS:
        e = max(0.0, safe_number(bands_raw.get(k)))
        total += e
        weighted += e * config.BAND_CENTER_HZ[k]
    return weighted / total if total > 0 else 0.0


# =============================================================================
# SMOOTHNESS
# =============================================================================

def normalize_smooth_score(v: Any) -> Optional[float]:
    """
    Map a provider smoothness value onto 0..100.

    Zero is treated as "not measured". Values up to SMOOTH_FRACTION_MAX are
    fractions; values up to 100 are already scores. Anything else is unusable.
    """
    n = optional_number(v)
    if n is None or n == 0:
        return None
    if 0 <= n <= config.SMOOTH_FRACTION_MAX:
        return clamp(n, 0.0, 1.0) * 100.0
    if 0 <= n <= 100:
        return n
    return None


def compute_proxy_smooth_score(shape_db: Mapping[str, float]) -> int:
    """
    Estimate smoothness from the dB shape when no measured value exists.

    Roughness combines zig-zag count of adjacent differences, worst
    second-difference curvature, fizz excess (air above presence/highMid) and a
    presence spike (presence above highMid). Score = 100 * exp(-roughness / 8),
    clamped to [5, 100].

    Parameters:
        shape_db: Band shape in dB

    Returns:
        Integer smoothness score
    """
    v = np.array([safe_number(shape_db.get(k)) for k in BAND_KEYS], dtype=np.float64)

    diffs = np.diff(v)
    sign_changes = int(np.sum(diffs[:-1] * diffs[1:] < 0))
    curvatures = np.abs(v[2:] - 2.0 * v[1:-1] + v[:-2])
    max_curv = float(np.max(curvatures)) if curvatures.size > 0 else 0.0

    air = safe_number(shape_db.get('air'))
    presence = safe_number(shape_db.get('presence'))
    high_mid = safe_number(shape_db.get('highMid'))

    fizz_excess = max(0.0, air - max(presence, high_mid) - config.PROXY_FIZZ_MARGIN_DB)
    presence_spike = max(0.0, presence - high_mid - config.PROXY_PRESENCE_MARGIN_DB)
    zigzag_penalty = max(0, sign_changes - config.PROXY_SIGN_CHANGE_ALLOWANCE) * config.PROXY_ZIGZAG_WEIGHT
    curv_penalty = max(0.0, max_curv - config.PROXY_CURVATURE_ALLOWANCE_DB) * config.PROXY_CURVATURE_WEIGHT

    roughness = (
        fizz_excess * config.PROXY_FIZZ_WEIGHT +
        presence_spike * config.PROXY_PRESENCE_WEIGHT +
        zigzag_penalty +
        curv_penalty
    )

    normalized = 100.0 * math.exp(-roughness / config.PROXY_DECAY_DB)
    lo, hi = config.PROXY_SMOOTH_RANGE
    return round_half_up(clamp(normalized, lo, hi))


# =============================================================================
# RECORD PARSING
# =============================================================================

def _first_finite(record: Any, keys: Sequence[str]) -> Optional[float]:
    if not isinstance(record, Mapping):
        return None
    for key in keys:
        v = record.get(key)
        if is_finite_number(v):
            return float(v)
    return None


def _first_mapping(record: Mapping, keys: Sequence[str]) -> Optional[Mapping]:
    for key in keys:
        v = record.get(key)
        if isinstance(v, Mapping):
            return v
    return None


def _first_sequence(record: Mapping, keys: Sequence[str]) -> Optional[List[float]]:
    for key in keys:
        v = record.get(key)
        if isinstance(v, (list, tuple, np.ndarray)):
            return [safe_number(x) for x in v]
    return None


def detect_band_units(bands: Mapping[str, float]) -> str:
    """Classify band inputs as 'fraction', 'percent' or 'raw' by their total."""
    total = sum(safe_number(bands.get(k)) for k in BAND_KEYS)
    f_lo, f_hi = config.FRACTION_TOTAL_RANGE
    p_lo, p_hi = config.PERCENT_TOTAL_RANGE
    if f_lo <= total <= f_hi:
        return 'fraction'
    if p_lo <= total <= p_hi:
        return 'percent'
    return 'raw'


def bucket_log_bands(bins: Sequence[float]) -> Dict[str, float]:
    """Sum a log-spaced spectrum into the 7 canonical bands by fixed index ranges."""
    b = [max(0.0, safe_number(x)) for x in bins]
    out = {}
    for k in BAND_KEYS:
        i0, i1 = config.LOG_BAND_BUCKETS[k]
        out[k] = float(sum(b[i0:min(i1, len(b) - 1) + 1]))
    return out


def extract_bands_raw(metrics: Any) -> Dict[str, float]:
    """
    Find band energies in a metrics record.

    Lookup order per band: nested `bandEnergies` short keys, then a band block
    (`bandsRaw`/`bandsPercent`/`bands`) or the record itself with long aliases,
    then a dB block converted back to energy. When no band energy is found but
    a log spectrum of at least 12 bins exists, the spectrum is bucketed.

    Returns:
        Non-negative band energies (fractional inputs moved to percent scale)
    """
    if not isinstance(metrics, Mapping):
        return zero_bands()

    nested = metrics.get('bandEnergies')
    nested = nested if isinstance(nested, Mapping) else {}
    block = _first_mapping(metrics, BAND_BLOCK_ALIASES) or metrics
    db_block = _first_mapping(metrics, BAND_DB_BLOCK_ALIASES)

    out = {}
    for k in BAND_KEYS:
        v = _first_finite(nested, NESTED_BAND_ALIASES[k])
        if v is None:
            v = _first_finite(block, BAND_ENERGY_ALIASES[k])
        if v is None and db_block is not None:
            db = _first_finite(db_block, BAND_ENERGY_ALIASES[k])
            if db is not None:
                v = 10.0 ** (clamp(db, config.DB_FLOOR, config.DB_CEILING) / 10.0)
        out[k] = max(0.0, safe_number(v))

    if sum(out.values()) < 1e-9:
        bins = _first_sequence(metrics, LOG_BAND_ALIASES)
        if bins is not None and len(bins) >= config.MIN_LOG_BANDS_FOR_BUCKETING:
            return bucket_log_bands(bins)
        return out

    if detect_band_units(out) == 'fraction':
        return {k: v * 100.0 for k, v in out.items()}
    return out


def compute_tonal_features(metrics: Any) -> TonalFeatures:
    """
    Build TonalFeatures from a metrics record.

    Parameters:
        metrics: Loosely-typed metrics mapping (any subset of fields may be absent)

    Returns:
        TonalFeatures with all three band representations and a smoothness score
    """
    record = metrics if isinstance(metrics, Mapping) else {}

    bands_raw = extract_bands_raw(record)
    bands_percent = bands_to_percent(bands_raw)
    bands_shape_db = bands_to_shape_db(bands_raw)

    measured_smooth = normalize_smooth_score(_first_finite(record, SCALAR_ALIASES['smooth']))
    if measured_smooth is not None:
        smooth_score = measured_smooth
        smooth_is_proxy = False
    else:
        smooth_score = float(compute_proxy_smooth_score(bands_shape_db))
        smooth_is_proxy = True

    measured_tilt = _first_finite(record, SCALAR_ALIASES['tilt'])
    tilt_is_measured = measured_tilt is not None and measured_tilt != 0
    tilt = measured_tilt if tilt_is_measured else shape_tilt(bands_shape_db)

    band_centroid = band_centroid_hz(bands_raw)
    measured_centroid = _first_finite(record, SCALAR_ALIASES['centroid'])
    centroid = measured_centroid if measured_centroid else band_centroid

    tail_status = None
    for key in TAIL_STATUS_ALIASES:
        if isinstance(record.get(key), str):
            tail_status = record[key]
            break

    log_bands = _first_sequence(record, LOG_BAND_ALIASES) or []

    return TonalFeatures(
        bands_raw=bands_raw,
        bands_percent=bands_percent,
        bands_shape_db=bands_shape_db,
        tilt_db_per_oct=float(tilt),
        smooth_score=float(smooth_score),
        spectral_centroid_hz=float(centroid),
        band_centroid_hz=float(band_centroid),
        rolloff_freq=_first_finite(record, SCALAR_ALIASES['rolloff']),
        notch_count=_first_finite(record, SCALAR_ALIASES['notch_count']),
        max_notch_depth=_first_finite(record, SCALAR_ALIASES['notch_depth']),
        tail_level_db=_first_finite(record, SCALAR_ALIASES['tail_level']),
        tail_status=tail_status,
        fizz_energy=safe_number(_first_finite(record, SCALAR_ALIASES['fizz'])),
        residual_noise_db=_first_finite(record, SCALAR_ALIASES['residual_noise']),
        log_bands=tuple(log_bands),
        smooth_is_proxy=smooth_is_proxy,
        tilt_is_measured=tilt_is_measured,
    )


# =============================================================================
# SCORE HELPERS
# =============================================================================

def distance_to_score(distance: float) -> int:
    """Convert a profile distance to a 0..100 score: max(0, round(100 - 3d))."""
    d = safe_number(distance)
    return max(0, round_half_up(100.0 - d * config.SCORE_DISTANCE_SLOPE))


def score_to_label(score: float) -> str:
    """Qualitative label: strong (>=85), close (>=70), partial (>=50), else miss."""
    s = safe_number(score)
    for label, threshold in config.LABEL_THRESHOLDS:
        if s >= threshold:
            return label
    return 'miss'


def redundancy_similarity(a_shape: Mapping[str, float], b_shape: Mapping[str, float]) -> float:
    """
    Mean-centred correlation of the lowMid..air shape of two IRs.

    Returns:
        Correlation in [-1, 1], or 0 when either shape is flat
    """
    keys = ('lowMid', 'mid', 'highMid', 'presence', 'air')
    va = np.array([safe_number(a_shape.get(k)) for k in keys])
    vb = np.array([safe_number(b_shape.get(k)) for k in keys])
    xa = va - va.mean()
    xb = vb - vb.mean()
    na = float(np.sqrt(np.sum(xa * xa)))
    nb = float(np.sqrt(np.sum(xb * xb)))
    if na < 1e-9 or nb < 1e-9:
        return 0.0
    return float(np.dot(xa, xb) / (na * nb))


def is_redundant(a_shape: Mapping[str, float], b_shape: Mapping[str, float],
                 threshold: float = config.SHAPE_REDUNDANCY_THRESHOLD) -> bool:
    return redundancy_similarity(a_shape, b_shape) >= threshold
