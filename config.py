"""
ir-curator - Configuration

All tunable thresholds, weights, and constants with documentation.
Every default value includes rationale. Values marked "tuned" were set
empirically against real IR batches and must not be re-derived.
"""

from typing import Dict, List, Tuple

# =============================================================================
# BAND DEFINITIONS
# =============================================================================

# Canonical band order (low to high)
# Why: 7 bands are coarse enough to be stable across capture chains and fine
#      enough to separate body (lowMid/mid) from cut (highMid/presence) and fizz (air)
BAND_KEYS: List[str] = ['subBass', 'bass', 'lowMid', 'mid', 'highMid', 'presence', 'air']

# Approximate centre frequency per band (Hz)
# Why: Used only for the band-weighted centroid estimate (second centroid reading)
BAND_CENTER_HZ: Dict[str, float] = {
    'subBass': 60.0,
    'bass': 160.0,
    'lowMid': 400.0,
    'mid': 1000.0,
    'highMid': 2200.0,
    'presence': 4200.0,
    'air': 9000.0,
}

# Index ranges (inclusive) bucketing a 24-bin log spectrum into the 7 bands
# Why: Matches the log-band layout produced by the upstream metrics provider
LOG_BAND_BUCKETS: Dict[str, Tuple[int, int]] = {
    'subBass': (0, 2),
    'bass': (3, 5),
    'lowMid': (6, 8),
    'mid': (9, 11),
    'highMid': (12, 14),
    'presence': (15, 18),
    'air': (19, 23),
}

# Number of log-spectrum bins expected from the provider
N_LOG_BANDS: int = 24

# Minimum bins required before a log spectrum is bucketed into bands
# Why: With fewer than 12 bins the upper bands would be empty
MIN_LOG_BANDS_FOR_BUCKETING: int = 12

# =============================================================================
# FEATURE NORMALIZATION PARAMETERS
# =============================================================================

# Floor and ceiling for dB-relative band shape values
# Why: -120 dB is below any meaningful capture energy; +60 dB caps corrupt inputs
DB_FLOOR: float = -120.0
DB_CEILING: float = 60.0

# Energy epsilon before taking log10
DB_EPSILON: float = 1e-12

# Band totals that indicate fractional (~1.0) or percent (~100) inputs
# Why: Providers disagree on units; totals within 5% of 1 or 100 are treated as
#      pre-normalized and moved onto the percent scale
FRACTION_TOTAL_RANGE: Tuple[float, float] = (0.95, 1.05)
PERCENT_TOTAL_RANGE: Tuple[float, float] = (95.0, 105.0)

# Smoothness values at or below this are treated as 0..1 fractions
# Why: Legacy payloads report smoothness as a 0..1 fraction (with slight overshoot)
SMOOTH_FRACTION_MAX: float = 1.2

# Proxy smoothness coefficients (tuned)
PROXY_FIZZ_MARGIN_DB: float = 1.0        # air may exceed max(presence, highMid) by this much
PROXY_PRESENCE_MARGIN_DB: float = 2.0    # presence may exceed highMid by this much
PROXY_SIGN_CHANGE_ALLOWANCE: int = 2     # zig-zags tolerated before penalizing
PROXY_CURVATURE_ALLOWANCE_DB: float = 6.0
PROXY_FIZZ_WEIGHT: float = 1.5
PROXY_PRESENCE_WEIGHT: float = 1.2
PROXY_ZIGZAG_WEIGHT: float = 1.5
PROXY_CURVATURE_WEIGHT: float = 0.4
PROXY_DECAY_DB: float = 8.0               # roughness at which score falls to 1/e
PROXY_SMOOTH_RANGE: Tuple[float, float] = (5.0, 100.0)

# =============================================================================
# SPEAKER-RELATIVE STATISTICS
# =============================================================================

# Derived scalars normalized per cohort
SPEAKER_STAT_KEYS: List[str] = [
    'centroid', 'tilt', 'rolloff', 'presence', 'hi_mid_mid', 'smooth', 'air', 'fizz'
]

# Standard deviation floor
# Why: Small cohorts (2-4 IRs) can have near-zero spread, which would blow
#      z-scores up for trivial differences
SPEAKER_STD_FLOOR: float = 1.0

# Cohort used when a filename has no speaker prefix
UNKNOWN_SPEAKER: str = 'UNKNOWN'

# highMid/mid ratio used when mid energy is zero
HI_MID_MID_FALLBACK: float = 10.0

# Fizz values above this are already percentages (tuned)
FIZZ_PERCENT_CUTOVER: float = 1.2

# =============================================================================
# PROFILE SCORING PARAMETERS
# =============================================================================

# Distance weights for profile scoring
# Why: Shape is the primary descriptor (1 per dB per band); tilt is a single
#      number summarizing the whole slope so it weighs double
SCORE_WEIGHTS: Dict[str, float] = {
    'shape': 1.0,
    'tilt': 2.0,
    'smooth_penalty': 10.0,
    'notch_penalty': 1.0,
    'rolloff_penalty': 0.002,
}

# Penalty onsets
# Why: Below 55 smoothness is audibly peaky; notches deeper than 10 dB are
#      audible holes; roll-off below 4.5 kHz sounds blanketed
SMOOTH_PENALTY_BELOW: float = 55.0
NOTCH_PENALTY_ABOVE_DB: float = 10.0
ROLLOFF_PENALTY_BELOW_HZ: float = 4500.0

# Distance-to-score slope: score = max(0, 100 - 3 * distance)
SCORE_DISTANCE_SLOPE: float = 3.0

# Label thresholds (score >= value)
LABEL_THRESHOLDS: List[Tuple[str, float]] = [('strong', 85.0), ('close', 70.0), ('partial', 50.0)]

# Per-band deviation treated as on-target (dB)
DEVIATION_TOLERANCE_DB: float = 1.5

# Learned shift conversion (percent points -> dB) (tuned)
# Why: Around a 20-35% band share, one percent point is roughly 0.15-0.3 dB
LEARNED_PERCENT_TO_DB: float = 0.3

# Avoid-zone penalty per unit of violation, by metric family, and cap per zone
AVOID_ZONE_UNIT_PENALTY: Dict[str, float] = {
    'percent': 5.0,
    'ratio': 50.0,
    'tilt': 5.0,
    'centroid': 0.02,
    'smooth': 1.0,
    'rolloff': 0.01,
}
AVOID_ZONE_MAX_PENALTY: float = 25.0

# Batch-derived profiles
# Why: Percentile profiles from fewer than 6 IRs or with under 2 dB of tilt
#      spread just describe noise; fall back to the default pair
BATCH_PROFILE_MIN_COUNT: int = 6
BATCH_PROFILE_MIN_TILT_SPREAD_DB: float = 2.0
BATCH_PROFILE_BRIGHT_PERCENTILE: float = 70.0
BATCH_PROFILE_DARK_PERCENTILE: float = 30.0

# Shape-redundancy threshold (mean-centred correlation of lowMid..air)
SHAPE_REDUNDANCY_THRESHOLD: float = 0.94

# Blend mix ratios tried when ranking partners (label, base, feature)
BLEND_RATIOS: List[Tuple[str, float, float]] = [
    ('70/30', 0.7, 0.3),
    ('60/40', 0.6, 0.4),
    ('50/50', 0.5, 0.5),
    ('40/60', 0.4, 0.6),
    ('30/70', 0.3, 0.7),
]

# =============================================================================
# REDUNDANCY CLUSTERING PARAMETERS
# =============================================================================

# Cosine similarity at or above which two comparable IRs are redundant (tuned)
REDUNDANCY_SIMILARITY_THRESHOLD: float = 0.985

# Largest allowed absolute difference on any single normalized dimension
# Why: One dominant dimension can fake a high cosine similarity
REDUNDANCY_MAX_DIM_DELTA: float = 0.6

# Expected (centre, scale) per scalar in the similarity vector
# Why: Puts every scalar in roughly unit range so none dominates the cosine
SIMILARITY_SCALAR_RANGES: Dict[str, Tuple[float, float]] = {
    'tilt': (0.0, 6.0),
    'rolloff': (5000.0, 1500.0),
    'residual_noise': (-60.0, 15.0),
    'notch_count': (1.0, 2.0),
    'notch_depth': (6.0, 6.0),
}

# Scale for mean-removed log-band dB values in the similarity vector
LOG_BAND_SCALE_DB: float = 12.0

# Minimum IRs needed to cluster
MIN_IRS_FOR_CLUSTERING: int = 2

# =============================================================================
# CULLING PARAMETERS
# =============================================================================

# Greedy multi-slot weights (tuned)
CULL_QUALITY_WEIGHT: float = 0.6
CULL_DIVERSITY_WEIGHT: float = 0.25
CULL_POSITION_WEIGHT: float = 0.15

# Close-call margins
# Why: 3 score points is inside the run-to-run spread of the match score;
#      5% of the combined score is inside the spread of the greedy objective
CULL_SINGLE_SLOT_MARGIN: float = 3.0
CULL_MULTI_SLOT_MARGIN_FRACTION: float = 0.05

# Effective score components
CULL_RATIO_PREFERENCE_BOOST: float = 4.0
CULL_GEAR_SENTIMENT_WEIGHT: float = 5.0
CULL_GEAR_SENTIMENT_CAP: float = 10.0
CULL_BLEND_REDUNDANCY_PENALTY: float = 2.0
CULL_BLEND_REDUNDANCY_CAP: float = 6.0
CULL_ROLE_SCARCITY_BOOST: float = 4.0

# Learned-profile statuses that carry usable adjustments
LEARNED_ACTIVE_STATUSES: List[str] = ['learning', 'confident', 'mastered']

# =============================================================================
# OUTPUT PARAMETERS
# =============================================================================

# JSON schema version
SCHEMA_VERSION: str = "1.0.0"

# Plot resolution (dots per inch)
PLOT_DPI: int = 150

# Plot figure size (width, height in inches)
PLOT_FIGSIZE: tuple = (12, 10)

# Fizz label thresholds (fizz %, air %)
FIZZ_LABEL_THRESHOLDS: Dict[str, Tuple[float, float]] = {
    'fizzy': (2.0, 8.0),
    'edgy': (1.0, 5.0),
}

# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def validate_config() -> bool:
    """
    Validate configuration parameters for consistency.

    Returns:
        True if config is valid

    Raises:
        ValueError: If configuration is invalid
    """
    cull_sum = CULL_QUALITY_WEIGHT + CULL_DIVERSITY_WEIGHT + CULL_POSITION_WEIGHT
    if not (0.99 <= cull_sum <= 1.01):
        raise ValueError(f"Cull weights must sum to 1.0, got {cull_sum}")

    if set(LOG_BAND_BUCKETS.keys()) != set(BAND_KEYS):
        raise ValueError("LOG_BAND_BUCKETS must cover every band in BAND_KEYS")

    if not (0.0 < REDUNDANCY_SIMILARITY_THRESHOLD <= 1.0):
        raise ValueError("REDUNDANCY_SIMILARITY_THRESHOLD must be in (0, 1]")

    if SPEAKER_STD_FLOOR <= 0:
        raise ValueError("SPEAKER_STD_FLOOR must be positive")

    thresholds = [value for _, value in LABEL_THRESHOLDS]
    if thresholds != sorted(thresholds, reverse=True):
        raise ValueError("LABEL_THRESHOLDS must be in descending order")

    if not (0.0 <= CULL_MULTI_SLOT_MARGIN_FRACTION < 1.0):
        raise ValueError("CULL_MULTI_SLOT_MARGIN_FRACTION must be in [0, 1)")

    for label, base, feature in BLEND_RATIOS:
        if abs(base + feature - 1.0) > 1e-9:
            raise ValueError(f"Blend ratio {label} must sum to 1.0")

    return True


# Validate on import
validate_config()
