"""
Redundancy Clustering Module

Find IRs that are perceptually too similar to justify keeping all of them.

Only comparable IRs (same cohort, mic token and position family) are ever
compared. Each IR is described by a similarity vector of normalized log-band
levels plus a few scalars, pairs are compared by cosine similarity with a
per-dimension guard, and accepted pairs are joined with Union-Find.

Clustering is a full recomputation; the only state carried between runs is the
user's "keep" choice per group (see carry_over_selections).
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
from scipy.spatial.distance import cosine as cosine_distance

import config
from ir_curator.naming import parse_ir_name
from ir_curator.tonal import BAND_KEYS, TonalFeatures, is_finite_number, safe_number

logger = logging.getLogger(__name__)


class UnionFind:
    """Disjoint sets over indices 0..n-1 (path compression, union by rank)."""

    def __init__(self, n: int):
        self.parent = list(range(n))
        self.rank = [0] * n

    def find(self, i: int) -> int:
        root = i
        while self.parent[root] != root:
            root = self.parent[root]
        while self.parent[i] != root:
            self.parent[i], i = root, self.parent[i]
        return root

    def union(self, a: int, b: int) -> bool:
        ra, rb = self.find(a), self.find(b)
        if ra == rb:
            return False
        if self.rank[ra] < self.rank[rb]:
            ra, rb = rb, ra
        self.parent[rb] = ra
        if self.rank[ra] == self.rank[rb]:
            self.rank[ra] += 1
        return True

    def components(self) -> Dict[int, List[int]]:
        out: Dict[int, List[int]] = {}
        for i in range(len(self.parent)):
            out.setdefault(self.find(i), []).append(i)
        return out


@dataclass
class RedundancyGroup:
    """
    A cluster of redundant IRs.

    Attributes:
        id: Stable label within one clustering run ("group-1", ...)
        members: Filenames, brightest (highest centroid) first
        avg_similarity: Mean pairwise cosine similarity of members
        selected_keep: Filename the user chose to keep (None = unresolved)
    """
    id: str
    members: List[str]
    avg_similarity: float
    selected_keep: Optional[str] = None

    @property
    def resolved(self) -> bool:
        return self.selected_keep is not None

    def select_keep(self, filename: str) -> None:
        if filename not in self.members:
            raise ValueError(f"{filename!r} is not a member of {self.id}")
        self.selected_keep = filename


@dataclass(frozen=True)
class ClusterResult:
    """
    Outcome of a clustering run.

    Attributes:
        groups: Redundancy groups (size >= 2), largest first
        filenames: Input order of the similarity matrix rows
        similarity: n x n cosine similarity (0 for non-comparable pairs)
        refused: True when clustering could not run
        reason: Human-readable refusal reason
    """
    groups: List[RedundancyGroup] = field(default_factory=list)
    filenames: List[str] = field(default_factory=list)
    similarity: Optional[np.ndarray] = None
    refused: bool = False
    reason: str = ''


def comparable(a_filename: str, b_filename: str) -> bool:
    """Same cohort, mic token and position family."""
    a = parse_ir_name(a_filename)
    b = parse_ir_name(b_filename)
    return (a.speaker, a.mic, a.position_family) == (b.speaker, b.mic, b.position_family)


def _db(values: np.ndarray) -> np.ndarray:
    return 10.0 * np.log10(np.maximum(values, config.DB_EPSILON))


def spectral_part(tf: TonalFeatures) -> np.ndarray:
    """
    24 mean-removed log-band levels in units of LOG_BAND_SCALE_DB.

    Uses the supplied log spectrum when it has enough bins, resampled onto 24
    points; otherwise the 7-band dB shape is interpolated onto the same grid.
    """
    n = config.N_LOG_BANDS
    grid = np.linspace(0.0, 1.0, n)

    if len(tf.log_bands) >= config.MIN_LOG_BANDS_FOR_BUCKETING:
        levels = _db(np.array([max(0.0, safe_number(x)) for x in tf.log_bands], dtype=np.float64))
        if levels.size != n:
            levels = np.interp(grid, np.linspace(0.0, 1.0, levels.size), levels)
    else:
        shape = np.array([safe_number(tf.bands_shape_db.get(k)) for k in BAND_KEYS], dtype=np.float64)
        levels = np.interp(grid, np.linspace(0.0, 1.0, shape.size), shape)

    levels = levels - np.mean(levels)
    return levels / config.LOG_BAND_SCALE_DB


def scalar_part(tf: TonalFeatures) -> np.ndarray:
    """Tilt, roll-off, residual noise and notch stats normalized by fixed ranges (0 when missing)."""
    raw = {
        'tilt': tf.tilt_db_per_oct,
        'rolloff': tf.rolloff_freq,
        'residual_noise': tf.residual_noise_db,
        'notch_count': tf.notch_count,
        'notch_depth': tf.max_notch_depth,
    }
    out = []
    for key, (centre, scale) in config.SIMILARITY_SCALAR_RANGES.items():
        v = raw[key]
        out.append((float(v) - centre) / scale if is_finite_number(v) else 0.0)
    return np.array(out, dtype=np.float64)


def similarity_vector(tf: TonalFeatures) -> np.ndarray:
    return np.concatenate([spectral_part(tf), scalar_part(tf)])


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Cosine similarity, 0 when either vector has zero norm."""
    if not (np.any(a) and np.any(b)):
        return 0.0
    sim = 1.0 - cosine_distance(a, b)
    return float(sim) if np.isfinite(sim) else 0.0


def build_similarity_matrix(
    items: Sequence[Tuple[str, TonalFeatures]]
) -> Tuple[np.ndarray, np.ndarray, List[np.ndarray]]:
    """
    Pairwise similarity over comparable IRs.

    Returns:
        Tuple of (n x n similarity matrix, n x n comparability mask, vectors)
    """
    n = len(items)
    vectors = [similarity_vector(tf) for _, tf in items]
    keys = [parse_ir_name(fn) for fn, _ in items]

    sim = np.zeros((n, n), dtype=np.float64)
    mask = np.zeros((n, n), dtype=bool)
    for i in range(n):
        sim[i, i] = 1.0
        mask[i, i] = True
        for j in range(i + 1, n):
            a, b = keys[i], keys[j]
            if (a.speaker, a.mic, a.position_family) != (b.speaker, b.mic, b.position_family):
                continue
            s = cosine_similarity(vectors[i], vectors[j])
            sim[i, j] = sim[j, i] = s
            mask[i, j] = mask[j, i] = True

    return sim, mask, vectors


def cluster_redundancy(
    items: Sequence[Tuple[str, TonalFeatures]],
    threshold: float = config.REDUNDANCY_SIMILARITY_THRESHOLD,
    max_dim_delta: float = config.REDUNDANCY_MAX_DIM_DELTA,
    previous: Optional[Sequence[RedundancyGroup]] = None
) -> ClusterResult:
    """
    Group redundant IRs.

    A comparable pair is joined iff its cosine similarity is >= threshold and
    no single vector dimension differs by more than max_dim_delta.

    Parameters:
        items: (filename, features) pairs
        threshold: Cosine similarity threshold
        max_dim_delta: Per-dimension guard
        previous: Groups from an earlier run whose keep choices carry over

    Returns:
        ClusterResult (refused when fewer than MIN_IRS_FOR_CLUSTERING IRs)
    """
    items = list(items)
    filenames = [fn for fn, _ in items]
    if len(items) < config.MIN_IRS_FOR_CLUSTERING:
        return ClusterResult(
            filenames=filenames,
            refused=True,
            reason=f"Need at least {config.MIN_IRS_FOR_CLUSTERING} IRs to check redundancy "
                   f"(got {len(items)}).",
        )

    sim, mask, vectors = build_similarity_matrix(items)
    n = len(items)
    uf = UnionFind(n)
    for i in range(n):
        for j in range(i + 1, n):
            if not mask[i, j] or sim[i, j] < threshold:
                continue
            if float(np.max(np.abs(vectors[i] - vectors[j]))) > max_dim_delta:
                continue
            uf.union(i, j)

    centroids = [safe_number(tf.spectral_centroid_hz) for _, tf in items]
    clusters = [idx for idx in uf.components().values() if len(idx) >= 2]
    clusters.sort(key=lambda idx: (-len(idx), min(idx)))

    groups = []
    for g, idx in enumerate(clusters, start=1):
        ordered = sorted(idx, key=lambda i: (-centroids[i], i))
        pairs = [sim[a, b] for k, a in enumerate(ordered) for b in ordered[k + 1:]]
        groups.append(RedundancyGroup(
            id=f'group-{g}',
            members=[filenames[i] for i in ordered],
            avg_similarity=float(np.mean(pairs)),
        ))

    if previous:
        groups = carry_over_selections(groups, previous)

    logger.debug("Clustered %d IRs into %d redundancy groups (threshold=%.3f)",
                 n, len(groups), threshold)

    return ClusterResult(groups=groups, filenames=filenames, similarity=sim)


def carry_over_selections(
    groups: Sequence[RedundancyGroup],
    previous: Sequence[RedundancyGroup]
) -> List[RedundancyGroup]:
    """
    Copy keep choices from an earlier clustering onto new groups.

    A choice survives when the chosen file is a member of a new group; the
    first such choice (in previous-group order) wins.
    """
    chosen = [g.selected_keep for g in previous if g.selected_keep]
    out = []
    for group in groups:
        keep = next((fn for fn in chosen if fn in group.members), None)
        out.append(replace(group, members=list(group.members), selected_keep=keep))
    return out


def removal_candidates(groups: Sequence[RedundancyGroup]) -> List[str]:
    """Members of resolved groups other than the chosen keep."""
    out = []
    for group in groups:
        if not group.resolved:
            continue
        out.extend(fn for fn in group.members if fn != group.selected_keep)
    return out


def most_similar(
    filename: str,
    others: Sequence[str],
    vectors: Mapping[str, np.ndarray]
) -> Tuple[Optional[str], Optional[float]]:
    """
    Most similar filename among others by similarity-vector cosine.

    Parameters:
        filename: IR to match
        others: Candidate filenames (the first wins a tie)
        vectors: Filename -> similarity vector

    Returns:
        Tuple of (filename, similarity), or (None, None) when nothing compares
    """
    if filename not in vectors:
        return None, None
    best, best_sim = None, None
    for other in others:
        if other == filename or other not in vectors:
            continue
        s = cosine_similarity(vectors[filename], vectors[other])
        if best_sim is None or s > best_sim:
            best, best_sim = other, s
    return best, best_sim
