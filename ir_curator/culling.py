"""
Culling Module

Reduce a batch to a target number of IRs while keeping mic-type diversity.

1. Exclude files already marked for removal (resolved redundancy groups,
   smart-thin exclusions).
2. Partition the rest into (speaker, mic) groups and allocate keep slots
   proportionally, at least one per group, rebalanced to hit the target exactly.
3. One-slot groups keep the highest effective score. Multi-slot groups are
   filled greedily on quality, diversity from what is already kept and
   new-position coverage.
4. Near-ties are reported as close calls for a human to resolve. A resolution
   (slot id -> filename) is honoured on the next run.

Every call recomputes the result from scratch.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

import config
from ir_curator.naming import parse_ir_name
from ir_curator.profiles import LearnedProfileData, avoid_zone_penalty
from ir_curator.redundancy import (
    ClusterResult,
    cosine_similarity,
    most_similar,
    removal_candidates,
    similarity_vector,
)
from ir_curator.roles import FOUNDATION
from ir_curator.tonal import TonalFeatures, is_redundant, round_half_up, safe_number

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CullCandidate:
    """
    One IR offered to the optimizer.

    Attributes:
        filename: IR filename
        features: Tonal features
        score: Base quality score (0..100), usually the best profile score
        role: Musical role
        profile: Name of the best-matching profile
    """
    filename: str
    features: TonalFeatures
    score: float
    role: str = FOUNDATION
    profile: str = ''


@dataclass(frozen=True)
class CullDecision:
    """
    Keep or cut verdict for one IR.

    Attributes:
        filename: IR filename
        score: Effective score used for the decision
        justification: Human-readable reason
        slot_id: Slot the IR competed for
        nearest_kept: Most similar kept IR (cuts only)
        similarity: Cosine similarity to nearest_kept
    """
    filename: str
    score: float
    justification: str
    slot_id: Optional[str] = None
    nearest_kept: Optional[str] = None
    similarity: Optional[float] = None


@dataclass(frozen=True)
class CloseCallOption:
    filename: str
    effective_score: float
    combined_score: float
    position_family: str
    role: str
    centroid_hz: float
    tilt_db_per_oct: float
    smooth_score: float
    presence_percent: float


@dataclass(frozen=True)
class CullCloseCall:
    """
    A slot whose top candidates are too close to call.

    Attributes:
        slot_id: "<SPEAKER>/<mic>#<k>"
        group: "<SPEAKER>/<mic>"
        options: Contenders, current pick first
        margin: Score gap between the pick and the runner-up
        prior_selection: Choice made for this slot on an earlier run, if any
    """
    slot_id: str
    group: str
    options: List[CloseCallOption]
    margin: float
    prior_selection: Optional[str] = None


@dataclass(frozen=True)
class CullResult:
    target: int
    keep: List[CullDecision] = field(default_factory=list)
    cut: List[CullDecision] = field(default_factory=list)
    close_calls: List[CullCloseCall] = field(default_factory=list)
    allocation: Dict[str, int] = field(default_factory=dict)
    excluded: List[str] = field(default_factory=list)

    @property
    def keep_filenames(self) -> List[str]:
        return [d.filename for d in self.keep]

    @property
    def cut_filenames(self) -> List[str]:
        return [d.filename for d in self.cut]


@dataclass(frozen=True)
class CullRefusal:
    reason: str
    eligible_count: int
    target: int


# =============================================================================
# ALLOCATION
# =============================================================================

def group_key(filename: str) -> str:
    name = parse_ir_name(filename)
    return f"{name.speaker}/{name.mic}"


def allocate_slots(sizes: Mapping[str, int], target: int) -> Dict[str, int]:
    """
    Split target keep slots across groups proportionally to group size.

    Each group starts at max(1, round(target * size / total)) capped at its
    size. While the sum is too high a slot is taken from the group holding the
    most slots (> 1); while too low one is added to the group with the most
    spare capacity. If there are more groups than slots, the smallest groups
    (latest first) get none.

    Parameters:
        sizes: Group key -> member count (insertion order is the tie-break)
        target: Total keep count

    Returns:
        Group key -> slots, summing to min(target, total members)
    """
    total = sum(sizes.values())
    target = max(0, min(int(target), total))
    if total == 0 or target == 0:
        return {k: 0 for k in sizes}

    order = list(sizes.keys())
    alloc = {
        k: min(sizes[k], max(1, round_half_up(target * sizes[k] / total)))
        for k in order
    }

    while sum(alloc.values()) > target:
        multi = [k for k in order if alloc[k] > 1]
        if multi:
            k = max(multi, key=lambda g: (alloc[g], sizes[g], -order.index(g)))
        else:
            ones = [g for g in order if alloc[g] == 1]
            k = min(ones, key=lambda g: (sizes[g], -order.index(g)))
        alloc[k] -= 1

    while sum(alloc.values()) < target:
        spare = [k for k in order if alloc[k] < sizes[k]]
        k = max(spare, key=lambda g: (sizes[g] - alloc[g], -order.index(g)))
        alloc[k] += 1

    return alloc


# =============================================================================
# EFFECTIVE SCORE
# =============================================================================

def preference_boost(candidate: CullCandidate, learned: Optional[LearnedProfileData]) -> float:
    """Boost IRs whose best profile matches the side of the learned blend ratio."""
    if learned is None or not learned.is_active or learned.ratio_preference is None:
        return 0.0
    pref = learned.ratio_preference
    if pref.feature > pref.base:
        favoured = 'Featured'
    elif pref.base > pref.feature:
        favoured = 'Body'
    else:
        return 0.0
    if candidate.profile.startswith(favoured):
        return config.CULL_RATIO_PREFERENCE_BOOST * pref.confidence
    return 0.0


def gear_sentiment_boost(filename: str, learned: Optional[LearnedProfileData]) -> float:
    if learned is None or not learned.is_active or not learned.gear_sentiment:
        return 0.0
    name = filename.lower()
    total = sum(s for token, s in learned.gear_sentiment.items() if token and token in name)
    boost = total * config.CULL_GEAR_SENTIMENT_WEIGHT
    return float(np.clip(boost, -config.CULL_GEAR_SENTIMENT_CAP, config.CULL_GEAR_SENTIMENT_CAP))


def effective_scores(
    candidates: Sequence[CullCandidate],
    learned: Optional[LearnedProfileData] = None
) -> Dict[str, float]:
    """
    Effective score per candidate.

    base score
      + learned ratio-preference boost
      - avoid-zone penalty
      + gear-sentiment boost (capped)
      - blend-redundancy penalty (shape-redundant peers in the same group, capped)
      + role-scarcity boost (only member of its cohort holding that role)
    """
    groups: Dict[str, List[CullCandidate]] = {}
    role_counts: Dict[Tuple[str, str], int] = {}
    for c in candidates:
        groups.setdefault(group_key(c.filename), []).append(c)
        key = (parse_ir_name(c.filename).speaker, c.role)
        role_counts[key] = role_counts.get(key, 0) + 1

    out = {}
    for c in candidates:
        s = safe_number(c.score)
        s += preference_boost(c, learned)
        if learned is not None and learned.is_active:
            s -= avoid_zone_penalty(c.features, learned.avoid_zones)
        s += gear_sentiment_boost(c.filename, learned)

        peers = groups[group_key(c.filename)]
        redundant = sum(
            1 for p in peers
            if p.filename != c.filename and is_redundant(c.features.bands_shape_db, p.features.bands_shape_db)
        )
        s -= min(config.CULL_BLEND_REDUNDANCY_CAP, redundant * config.CULL_BLEND_REDUNDANCY_PENALTY)

        if role_counts[(parse_ir_name(c.filename).speaker, c.role)] == 1:
            s += config.CULL_ROLE_SCARCITY_BOOST

        out[c.filename] = s
    return out


def _option(c: CullCandidate, effective: float, combined: float) -> CloseCallOption:
    tf = c.features
    return CloseCallOption(
        filename=c.filename,
        effective_score=round(effective, 2),
        combined_score=round(combined, 4),
        position_family=parse_ir_name(c.filename).position_family,
        role=c.role,
        centroid_hz=round(safe_number(tf.spectral_centroid_hz), 1),
        tilt_db_per_oct=round(safe_number(tf.tilt_db_per_oct), 2),
        smooth_score=round(safe_number(tf.smooth_score), 1),
        presence_percent=round(tf.percent('presence'), 1),
    )


# =============================================================================
# SLOT SELECTION
# =============================================================================

def _pick_single(
    group: str,
    members: List[CullCandidate],
    eff: Mapping[str, float],
    resolutions: Mapping[str, str],
    prior: Mapping[str, str],
    margin: float
) -> Tuple[List[Tuple[CullCandidate, str, str]], List[CullCloseCall]]:
    slot_id = f"{group}#1"
    ranked = sorted(members, key=lambda c: eff[c.filename], reverse=True)
    top = ranked[0]

    resolved = resolutions.get(slot_id)
    if resolved is not None and any(c.filename == resolved for c in members):
        pick = next(c for c in members if c.filename == resolved)
        return [(pick, slot_id, f"Chosen for {group} (close call resolved)")], []

    calls = []
    family = parse_ir_name(top.filename).position_family
    rivals = [
        c for c in ranked[1:]
        if parse_ir_name(c.filename).position_family == family
        and eff[top.filename] - eff[c.filename] <= margin
    ]
    if rivals:
        calls.append(CullCloseCall(
            slot_id=slot_id,
            group=group,
            options=[_option(c, eff[c.filename], eff[c.filename]) for c in [top] + rivals],
            margin=round(eff[top.filename] - eff[rivals[0].filename], 2),
            prior_selection=prior.get(slot_id),
        ))

    why = f"Best effective score in {group} ({eff[top.filename]:.1f}, 1 slot)"
    return [(top, slot_id, why)], calls


def _pick_greedy(
    group: str,
    members: List[CullCandidate],
    slots: int,
    eff: Mapping[str, float],
    vectors: Mapping[str, np.ndarray],
    resolutions: Mapping[str, str],
    prior: Mapping[str, str],
    margin_fraction: float
) -> Tuple[List[Tuple[CullCandidate, str, str]], List[CullCloseCall]]:
    values = [eff[c.filename] for c in members]
    lo, hi = min(values), max(values)
    span = hi - lo

    def quality(c: CullCandidate) -> float:
        return (eff[c.filename] - lo) / span if span > 1e-9 else 1.0

    picks: List[Tuple[CullCandidate, str, str]] = []
    calls: List[CullCloseCall] = []
    remaining = list(members)
    families = set()

    for k in range(1, slots + 1):
        slot_id = f"{group}#{k}"
        kept = [p[0] for p in picks]

        scored = []
        for c in remaining:
            if kept:
                nearest = max(cosine_similarity(vectors[c.filename], vectors[p.filename]) for p in kept)
                diversity = 1.0 - max(0.0, nearest)
            else:
                diversity = 1.0
            new_position = 0.0 if parse_ir_name(c.filename).position_family in families else 1.0
            combined = (
                config.CULL_QUALITY_WEIGHT * quality(c) +
                config.CULL_DIVERSITY_WEIGHT * diversity +
                config.CULL_POSITION_WEIGHT * new_position
            )
            scored.append((combined, c, diversity, new_position))

        scored.sort(key=lambda t: t[0], reverse=True)
        best_combined, pick, diversity, new_position = scored[0]

        resolved = resolutions.get(slot_id)
        resolved_entry = next((t for t in scored if t[1].filename == resolved), None)
        if resolved_entry is not None:
            _, pick, diversity, new_position = resolved_entry
            why = f"Chosen for {group} slot {k}/{slots} (close call resolved)"
        else:
            rivals = [t for t in scored[1:] if best_combined - t[0] <= margin_fraction * abs(best_combined)]
            if rivals:
                calls.append(CullCloseCall(
                    slot_id=slot_id,
                    group=group,
                    options=[_option(t[1], eff[t[1].filename], t[0]) for t in [scored[0]] + rivals],
                    margin=round(best_combined - rivals[0][0], 4),
                    prior_selection=prior.get(slot_id),
                ))
            why = (f"Greedy pick {k}/{slots} in {group}: quality {quality(pick):.2f}, "
                   f"diversity {diversity:.2f}" + (", new position" if new_position else ""))

        picks.append((pick, slot_id, why))
        families.add(parse_ir_name(pick.filename).position_family)
        remaining = [c for c in remaining if c.filename != pick.filename]

    return picks, calls


# =============================================================================
# ENTRY POINTS
# =============================================================================

def _eligible(
    candidates: Sequence[CullCandidate],
    cluster: Optional[ClusterResult],
    excluded: Iterable[str]
) -> Tuple[List[CullCandidate], List[str]]:
    drop = set(excluded)
    if cluster is not None and not cluster.refused:
        drop.update(removal_candidates(cluster.groups))

    eligible = []
    seen = set()
    removed = []
    for c in candidates:
        if c.filename in seen:
            continue
        seen.add(c.filename)
        if c.filename in drop:
            removed.append(c.filename)
        else:
            eligible.append(c)
    return eligible, removed


def cull_irs(
    candidates: Sequence[CullCandidate],
    target: int,
    cluster: Optional[ClusterResult] = None,
    excluded: Iterable[str] = (),
    learned: Optional[LearnedProfileData] = None,
    resolutions: Optional[Mapping[str, str]] = None,
    prior_selections: Optional[Mapping[str, str]] = None,
    single_slot_margin: float = config.CULL_SINGLE_SLOT_MARGIN,
    multi_slot_margin: float = config.CULL_MULTI_SLOT_MARGIN_FRACTION
) -> CullResult:
    """
    Select up to target IRs, spreading keeps across (speaker, mic) groups.

    Parameters:
        candidates: IRs with base scores and roles (duplicate filenames ignored)
        target: Requested keep count
        cluster: Redundancy result; non-kept members of resolved groups are excluded
        excluded: Extra filenames to exclude (smart-thin)
        learned: Optional learned preference data for effective scores
        resolutions: Slot id -> filename chosen by the user for a close call
        prior_selections: Slot id -> filename chosen on an earlier run
        single_slot_margin: Close-call margin in score points for one-slot groups
        multi_slot_margin: Close-call margin as a fraction of the combined score

    Returns:
        CullResult where keep + cut partition the eligible IRs
    """
    resolutions = resolutions or {}
    prior = prior_selections or {}
    eligible, removed = _eligible(candidates, cluster, excluded)
    target = int(target)

    if len(eligible) <= target:
        keep = [
            CullDecision(filename=c.filename, score=safe_number(c.score),
                         justification=f"Kept: {len(eligible)} eligible IRs already within target {target}")
            for c in eligible
        ]
        return CullResult(target=target, keep=keep, excluded=removed)

    groups: Dict[str, List[CullCandidate]] = {}
    for c in eligible:
        groups.setdefault(group_key(c.filename), []).append(c)

    allocation = allocate_slots({k: len(v) for k, v in groups.items()}, target)
    eff = effective_scores(eligible, learned)
    vectors = {c.filename: similarity_vector(c.features) for c in eligible}

    picks: List[Tuple[CullCandidate, str, str]] = []
    close_calls: List[CullCloseCall] = []
    for key, members in groups.items():
        slots = allocation[key]
        if slots == 0:
            continue
        if slots == 1:
            chosen, calls = _pick_single(key, members, eff, resolutions, prior, single_slot_margin)
        else:
            chosen, calls = _pick_greedy(key, members, slots, eff, vectors,
                                         resolutions, prior, multi_slot_margin)
        picks.extend(chosen)
        close_calls.extend(calls)

    keep = []
    kept_names = []
    for c, slot_id, why in picks:
        keep.append(CullDecision(filename=c.filename, score=round(eff[c.filename], 2),
                                 justification=why, slot_id=slot_id))
        kept_names.append(c.filename)

    kept_set = set(kept_names)
    cut = []
    for c in eligible:
        if c.filename in kept_set:
            continue
        nearest, sim = most_similar(c.filename, kept_names, vectors)
        key = group_key(c.filename)
        if allocation[key] == 0:
            why = f"Cut: no slot left for {key}"
        else:
            why = f"Cut: {key} kept {allocation[key]} of {len(groups[key])}"
        if nearest is not None:
            why += f"; closest kept {nearest} ({sim:.3f})"
        cut.append(CullDecision(
            filename=c.filename,
            score=round(eff[c.filename], 2),
            justification=why,
            nearest_kept=nearest,
            similarity=round(sim, 4) if sim is not None else None,
        ))

    logger.debug("Cull: %d eligible -> keep %d, cut %d, %d close calls",
                 len(eligible), len(keep), len(cut), len(close_calls))

    return CullResult(
        target=target,
        keep=keep,
        cut=cut,
        close_calls=close_calls,
        allocation=allocation,
        excluded=removed,
    )


def request_cull(
    candidates: Sequence[CullCandidate],
    target: int,
    **kwargs
) -> Union[CullResult, CullRefusal]:
    """
    Validate a user-requested target, then cull.

    Returns:
        CullRefusal when the target is below 1 or would keep every eligible IR,
        else the CullResult
    """
    eligible, _ = _eligible(candidates, kwargs.get('cluster'), kwargs.get('excluded', ()))
    n = len(eligible)
    if target < 1:
        return CullRefusal(reason="Target must keep at least 1 IR.", eligible_count=n, target=target)
    if target >= n:
        return CullRefusal(
            reason=f"Target {target} would keep all {n} eligible IRs. Choose a target below {n}.",
            eligible_count=n,
            target=target,
        )
    return cull_irs(candidates, target, **kwargs)
