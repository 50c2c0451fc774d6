"""
Speaker-Relative Statistics Module

Group IRs by inferred speaker cohort and compute per-cohort mean and
population standard deviation over a fixed set of derived scalars, so that
downstream heuristics can reason in z-scores instead of absolute thresholds.

Stats are recomputed from scratch for every batch; nothing here is updated
incrementally.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Tuple

import numpy as np

import config
from ir_curator.naming import infer_speaker_id
from ir_curator.tonal import TonalFeatures, is_finite_number, safe_number


@dataclass(frozen=True)
class SpeakerStats:
    """
    Mean and std of each derived scalar for one cohort.

    Attributes:
        mean: Mean per key in SPEAKER_STAT_KEYS
        std: Population std per key, floored at SPEAKER_STD_FLOOR
        count: Number of IRs in the cohort
    """
    mean: Dict[str, float]
    std: Dict[str, float]
    count: int = 0

    def z(self, key: str, value: float) -> float:
        return z_score(value, self.mean.get(key, float('nan')), self.std.get(key, float('nan')))


def z_score(v: float, mean: float, std: float) -> float:
    """
    Standard score of v.

    Returns 0 whenever any input is non-finite or std <= 1e-9, so the result is
    never NaN or infinite.
    """
    if not (is_finite_number(v) and is_finite_number(mean) and is_finite_number(std)):
        return 0.0
    if std <= 1e-9:
        return 0.0
    return (float(v) - float(mean)) / float(std)


def derive_stat_scalars(tf: TonalFeatures) -> Dict[str, float]:
    """
    Compute the 8 cohort-normalized scalars for one IR.

    Returns:
        Dict keyed by SPEAKER_STAT_KEYS (percent values on a 0..100 scale)
    """
    return {
        'centroid': safe_number(tf.spectral_centroid_hz),
        'tilt': safe_number(tf.tilt_db_per_oct),
        'rolloff': safe_number(tf.rolloff_freq),
        'presence': tf.percent('presence'),
        'hi_mid_mid': tf.hi_mid_mid_ratio,
        'smooth': safe_number(tf.smooth_score),
        'air': tf.percent('air'),
        'fizz': tf.fizz_percent,
    }


def _mean_std(values: List[float]) -> Tuple[float, float]:
    arr = np.array([v for v in values if is_finite_number(v)], dtype=np.float64)
    if arr.size == 0:
        return 0.0, config.SPEAKER_STD_FLOOR
    mean = float(np.mean(arr))
    std = float(np.std(arr))  # population std (ddof=0)
    return mean, max(std, config.SPEAKER_STD_FLOOR)


def stats_from_features(features: Iterable[TonalFeatures]) -> SpeakerStats:
    rows = [derive_stat_scalars(tf) for tf in features]
    mean = {}
    std = {}
    for key in config.SPEAKER_STAT_KEYS:
        mean[key], std[key] = _mean_std([r[key] for r in rows])
    return SpeakerStats(mean=mean, std=std, count=len(rows))


def group_by_speaker(rows: Iterable[Tuple[str, TonalFeatures]]) -> Dict[str, List[Tuple[str, TonalFeatures]]]:
    """Group (filename, features) pairs by cohort, preserving input order."""
    groups: Dict[str, List[Tuple[str, TonalFeatures]]] = {}
    for filename, tf in rows:
        groups.setdefault(infer_speaker_id(filename), []).append((filename, tf))
    return groups


def compute_speaker_stats(rows: Iterable[Tuple[str, TonalFeatures]]) -> Dict[str, SpeakerStats]:
    """
    Compute SpeakerStats for every cohort in a batch.

    Parameters:
        rows: (filename, TonalFeatures) pairs

    Returns:
        Mapping of cohort key -> SpeakerStats
    """
    return {
        speaker: stats_from_features(tf for _, tf in members)
        for speaker, members in group_by_speaker(rows).items()
    }


def stats_for(filename: str, stats_map: Mapping[str, SpeakerStats]):
    """Cohort stats for a filename, or None when its cohort is unknown."""
    return stats_map.get(infer_speaker_id(filename))
