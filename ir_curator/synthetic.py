"""
Synthetic Batch Module

Deterministic synthetic IR metrics records for demo runs and fixtures.
Each mic has a characteristic band mix, each position nudges it, and a seeded
generator adds small jitter. Optional near-duplicates ("_b" takes) exercise
redundancy clustering.
"""

from typing import Dict, List, Optional, Sequence

import numpy as np

import config

MIC_BAND_PERCENT: Dict[str, List[float]] = {
    'SM57':  [3.0, 8.0, 9.0, 26.0, 27.0, 24.0, 3.0],
    'MD421': [4.0, 10.0, 11.0, 28.0, 24.0, 20.0, 3.0],
    'R121':  [5.0, 12.0, 14.0, 34.0, 20.0, 12.0, 3.0],
    'E906':  [2.0, 6.0, 7.0, 22.0, 30.0, 29.0, 4.0],
}

# Percent-point offsets per band for each position
POSITION_OFFSETS: Dict[str, List[float]] = {
    'Cap':     [0.0, -0.5, -0.5, -2.0, -1.0, 3.0, 1.0],
    'CapEdge': [0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0],
    'Cone':    [0.5, 1.0, 2.0, 3.0, 0.0, -5.5, -1.0],
}


def _log_bins(band_percent: np.ndarray) -> List[float]:
    """Spread each band's energy evenly over its log-spectrum buckets."""
    bins = np.zeros(config.N_LOG_BANDS)
    for i, k in enumerate(config.BAND_KEYS):
        i0, i1 = config.LOG_BAND_BUCKETS[k]
        bins[i0:i1 + 1] = band_percent[i] / (i1 - i0 + 1)
    return [round(float(b), 5) for b in bins]


def make_metrics(band_percent: Sequence[float], rng: np.random.Generator, jitter: float = 0.6) -> Dict:
    """
    One metrics record in the provider's camelCase layout.

    Parameters:
        band_percent: Nominal band mix (percent, BAND_KEYS order)
        rng: Seeded generator
        jitter: Std of per-band jitter in percent points

    Returns:
        Metrics dict
    """
    bands = np.maximum(0.2, np.asarray(band_percent, dtype=float) + rng.normal(0.0, jitter, 7))
    bands = bands / bands.sum() * 100.0

    presence = bands[5]
    centers = np.array([config.BAND_CENTER_HZ[k] for k in config.BAND_KEYS])
    centroid = float(np.sum(bands * centers) / 100.0) * 1.25 + rng.normal(0.0, 40.0)

    record = {k: round(float(v), 3) for k, v in zip(config.BAND_KEYS, bands)}
    record.update({
        'tiltDbPerOct': round(-4.2 + (presence - 20.0) * 0.12 + rng.normal(0.0, 0.2), 2),
        'rolloffFreq': round(3900.0 + presence * 55.0 + rng.normal(0.0, 60.0), 1),
        'smoothScore': round(float(np.clip(88.0 + rng.normal(0.0, 3.0), 60.0, 99.0)), 1),
        'spectralCentroidHz': round(centroid, 1),
        'fizzEnergy': round(float(bands[6]) / 100.0 * 0.3, 4),
        'residualNoiseDb': round(-68.0 + rng.normal(0.0, 2.0), 1),
        'notchCount': int(rng.integers(0, 3)),
        'maxNotchDepth': round(float(rng.uniform(3.0, 9.0)), 1),
        'logBandEnergies': _log_bins(bands),
    })
    return record


def near_duplicate(record: Dict, rng: np.random.Generator, scale: float = 0.003) -> Dict:
    """Copy a record with every band nudged by under scale (relative)."""
    dup = dict(record)
    for k in config.BAND_KEYS:
        dup[k] = round(record[k] * (1.0 + rng.uniform(-scale, scale)), 4)
    dup['logBandEnergies'] = [
        round(b * (1.0 + rng.uniform(-scale, scale)), 6) for b in record['logBandEnergies']
    ]
    return dup


def generate_batch(
    speakers: Sequence[str] = ('V30',),
    mics: Optional[Sequence[str]] = None,
    positions: Optional[Sequence[str]] = None,
    duplicates: int = 2,
    seed: int = 7
) -> Dict[str, Dict]:
    """
    Build a {filename: metrics} batch.

    Parameters:
        speakers: Cohort prefixes
        mics: Mic names (keys of MIC_BAND_PERCENT)
        positions: Positions (keys of POSITION_OFFSETS)
        duplicates: Number of near-duplicate "_b" takes appended per speaker
        seed: RNG seed

    Returns:
        Ordered mapping of filename -> metrics record
    """
    rng = np.random.default_rng(seed)
    mics = list(mics or MIC_BAND_PERCENT.keys())
    positions = list(positions or POSITION_OFFSETS.keys())

    batch: Dict[str, Dict] = {}
    for speaker in speakers:
        originals = []
        for mic in mics:
            for pos in positions:
                nominal = np.add(MIC_BAND_PERCENT[mic], POSITION_OFFSETS[pos])
                filename = f"{speaker}_{mic}_{pos}_1in.wav"
                batch[filename] = make_metrics(nominal, rng)
                originals.append(filename)
        for filename in originals[:duplicates]:
            batch[filename.replace('.wav', '_b.wav')] = near_duplicate(batch[filename], rng)
    return batch
