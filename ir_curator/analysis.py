"""
Batch Analysis Module

Run the per-IR pipeline over a whole batch:

    metrics record -> TonalFeatures -> cohort stats -> musical role
                   -> profile scores (batch-derived or default, learned shifts)

The result is a plain value; re-running on the same batch gives the same
result.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from ir_curator.culling import CullCandidate
from ir_curator.profiles import (
    DEFAULT_PROFILES,
    LearnedProfileData,
    MatchResult,
    PreferenceProfile,
    derive_batch_profiles,
    score_against_all_profiles,
)
from ir_curator.roles import FOUNDATION, classify_ir_detailed, find_foundation_candidates
from ir_curator.speaker_stats import SpeakerStats, compute_speaker_stats, stats_for
from ir_curator.tonal import TonalFeatures, compute_tonal_features

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IRAnalysis:
    """
    Everything derived for one IR.

    Attributes:
        filename: IR filename
        features: Canonical tonal features
        role: Final musical role
        raw_role: Role from the base cascade
        role_source: What decided the role
        matches: MatchResult per profile
        best: Highest-scoring MatchResult
    """
    filename: str
    features: TonalFeatures
    role: str
    raw_role: str
    role_source: str
    matches: List[MatchResult]
    best: MatchResult

    @property
    def score(self) -> int:
        return self.best.score


@dataclass(frozen=True)
class BatchAnalysis:
    irs: List[IRAnalysis]
    speaker_stats: Dict[str, SpeakerStats]
    profiles: List[PreferenceProfile]
    foundations: Dict[str, str] = field(default_factory=dict)

    def features(self) -> List[Tuple[str, TonalFeatures]]:
        return [(ir.filename, ir.features) for ir in self.irs]

    def by_filename(self) -> Dict[str, IRAnalysis]:
        return {ir.filename: ir for ir in self.irs}

    def cull_candidates(self) -> List[CullCandidate]:
        return [
            CullCandidate(filename=ir.filename, features=ir.features, score=ir.score,
                          role=ir.role, profile=ir.best.profile)
            for ir in self.irs
        ]


BatchInput = Union[Mapping[str, Any], Sequence[Tuple[str, Any]]]


def iter_records(batch: BatchInput) -> List[Tuple[str, Any]]:
    """
    Normalize a batch to (filename, metrics) pairs.

    Accepts {filename: metrics}, [(filename, metrics), ...] or
    [{"filename": ..., "metrics": {...}}, ...]. Entries without a filename are
    skipped.
    """
    if isinstance(batch, Mapping):
        return [(str(k), v) for k, v in batch.items()]

    out = []
    for entry in batch:
        if isinstance(entry, Mapping):
            filename = entry.get('filename')
            metrics = entry.get('metrics', entry)
        elif isinstance(entry, (list, tuple)) and len(entry) == 2:
            filename, metrics = entry
        else:
            continue
        if not filename:
            continue
        out.append((str(filename), metrics))
    return out


def analyze_batch(
    batch: BatchInput,
    learned: Optional[LearnedProfileData] = None,
    profiles: Optional[Sequence[PreferenceProfile]] = None,
    use_batch_profiles: bool = True,
    anchor_foundations: bool = True,
    debug_logger: Optional[logging.Logger] = None
) -> BatchAnalysis:
    """
    Analyze every IR in a batch.

    Parameters:
        batch: Metrics records (see iter_records)
        learned: Optional learned preference data
        profiles: Explicit profiles (None = derive from the batch, else defaults)
        use_batch_profiles: Derive Featured/Body from the batch when it has enough spread
        anchor_foundations: Promote the most central IR of a cohort without a
                            Foundation to Foundation
        debug_logger: Passed to the role classifier for per-IR debug output

    Returns:
        BatchAnalysis in input order
    """
    records = iter_records(batch)
    rows = [(filename, compute_tonal_features(metrics)) for filename, metrics in records]
    stats = compute_speaker_stats(rows)

    if profiles is not None:
        active_profiles = list(profiles)
    elif use_batch_profiles:
        active_profiles = derive_batch_profiles([tf for _, tf in rows])
    else:
        active_profiles = list(DEFAULT_PROFILES)

    decisions = {
        filename: classify_ir_detailed(tf, filename, stats_for(filename, stats), debug_logger)
        for filename, tf in rows
    }
    role_map = {filename: d.role for filename, d in decisions.items()}

    foundations: Dict[str, str] = {}
    if anchor_foundations and rows:
        foundations, anchored = find_foundation_candidates(rows, stats, role_map)
    else:
        anchored = role_map

    irs = []
    for filename, tf in rows:
        decision = decisions[filename]
        role = anchored[filename]
        source = decision.source
        if role != decision.role:
            source = 'anchor:foundation' if role == FOUNDATION else 'anchor'
        matches, best = score_against_all_profiles(tf, active_profiles, learned)
        irs.append(IRAnalysis(
            filename=filename,
            features=tf,
            role=role,
            raw_role=decision.base_role,
            role_source=source,
            matches=matches,
            best=best,
        ))

    logger.debug("Analyzed %d IRs across %d cohorts", len(irs), len(stats))
    return BatchAnalysis(irs=irs, speaker_stats=stats, profiles=active_profiles,
                         foundations=foundations)
