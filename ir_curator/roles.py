"""
Musical Role Module

Classify each IR into one of six musical roles with a two-pass heuristic:

1. Base cascade: an ordered table of guard rules over band ratios and cohort
   z-scores (or absolute thresholds when no cohort stats exist). The first rule
   whose predicate holds decides the role. Rules overlap on purpose; table
   order is the tie-break.
2. Context bias: every role starts at 0, the base role gets 3.0, and small
   bonuses keyed by filename tokens and tonal "sheen"/darkness cues are added.
   An "objectively cutty" override promotes Foundation to Cut Layer outright.

All thresholds are tuned constants; keep them as they are.
"""

import json
import logging
from dataclasses import asdict, dataclass
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from ir_curator.naming import infer_speaker_id
from ir_curator.speaker_stats import SpeakerStats, derive_stat_scalars
from ir_curator.tonal import TonalFeatures, safe_number

FOUNDATION = 'Foundation'
CUT_LAYER = 'Cut Layer'
MID_THICKENER = 'Mid Thickener'
FIZZ_TAMER = 'Fizz Tamer'
LEAD_POLISH = 'Lead Polish'
DARK_SPECIALTY = 'Dark Specialty'

ALL_ROLES: List[str] = [FOUNDATION, CUT_LAYER, MID_THICKENER, FIZZ_TAMER, LEAD_POLISH, DARK_SPECIALTY]

BASE_ROLE_SCORE = 3.0


@dataclass(frozen=True)
class RoleContext:
    """Derived measures the role rules read (percent values on 0..100)."""
    mid: float
    high_mid: float
    presence: float
    low_mid: float
    bass: float
    sub_bass: float
    air: float
    fizz: float
    smooth: float
    tilt: float
    ext: float
    centroid: float
    hi_mid_mid: float
    bass_low_mid: float
    core: float
    cut_core_ratio: float
    has_stats: bool
    z_centroid: float = 0.0
    z_ext: float = 0.0
    z_presence: float = 0.0
    z_tilt: float = 0.0
    z_air: float = 0.0
    z_fizz: float = 0.0
    z_hi_mid_mid: float = 0.0


@dataclass(frozen=True)
class RoleDecision:
    """
    Outcome of classify_ir.

    Attributes:
        role: Final role after context bias
        base_role: Role from the base cascade
        source: What decided the final role, e.g. "cascade:balanced_foundation",
                "override:objectively_cutty", "context_bias"
    """
    role: str
    base_role: str
    source: str
    base_rule: str


def build_role_context(tf: TonalFeatures, speaker_stats: Optional[SpeakerStats] = None) -> RoleContext:
    """Extract every measure and z-score the role rules need."""
    scalars = derive_stat_scalars(tf)

    mid = tf.percent('mid')
    high_mid = tf.percent('highMid')
    presence = tf.percent('presence')
    low_mid = tf.percent('lowMid')
    bass = tf.percent('bass')
    sub_bass = tf.percent('subBass')

    bass_low_mid = sub_bass + bass + low_mid
    core = max(1e-6, mid + low_mid)

    z = {}
    if speaker_stats is not None:
        for key in ('centroid', 'rolloff', 'presence', 'tilt', 'air', 'fizz', 'hi_mid_mid'):
            z[key] = speaker_stats.z(key, scalars[key])

    return RoleContext(
        mid=mid,
        high_mid=high_mid,
        presence=presence,
        low_mid=low_mid,
        bass=bass,
        sub_bass=sub_bass,
        air=scalars['air'],
        fizz=scalars['fizz'],
        smooth=safe_number(tf.smooth_score),
        tilt=scalars['tilt'],
        ext=scalars['rolloff'],
        centroid=scalars['centroid'],
        hi_mid_mid=scalars['hi_mid_mid'],
        bass_low_mid=bass_low_mid,
        core=core,
        cut_core_ratio=(high_mid + presence) / core,
        has_stats=speaker_stats is not None,
        z_centroid=z.get('centroid', 0.0),
        z_ext=z.get('rolloff', 0.0),
        z_presence=z.get('presence', 0.0),
        z_tilt=z.get('tilt', 0.0),
        z_air=z.get('air', 0.0),
        z_fizz=z.get('fizz', 0.0),
        z_hi_mid_mid=z.get('hi_mid_mid', 0.0),
    )


# =============================================================================
# BASE CASCADE RULES
# =============================================================================

def _balanced_foundation(c: RoleContext) -> bool:
    balanced_bands = (
        22 <= c.mid <= 35 and
        18 <= c.presence <= 42 and
        18 <= c.high_mid <= 45 and
        1.10 <= c.cut_core_ratio <= 2.40 and
        c.air <= 6.0 and
        c.fizz <= 1.5
    )
    not_extreme_tilt = abs(c.z_tilt) <= 1.2 if c.has_stats else (-5.5 <= c.tilt <= -1.0)
    if c.ext == 0:
        not_too_dark = True
    else:
        not_too_dark = c.z_ext >= -0.2 if c.has_stats else c.ext >= 4200
    not_body_lean = c.bass_low_mid >= 18
    return balanced_bands and not_extreme_tilt and not_too_dark and not_body_lean


def _speaker_centered_foundation(c: RoleContext) -> bool:
    if not c.has_stats:
        return False
    near_center = abs(c.z_centroid) <= 0.8 and (abs(c.z_tilt) <= 1.2 or abs(c.z_ext) <= 0.8)
    not_fizzy = c.fizz <= 2.0 or c.z_fizz <= 0.4
    return near_center and c.smooth >= 84 and not_fizzy


def _dark_specialty(c: RoleContext) -> bool:
    extreme_abs_dark = (0 < c.ext < 2900) or c.tilt <= -8.0
    speaker_rel_dark = c.z_ext <= -1.1 or (c.z_tilt <= -1.2 and c.z_centroid <= -0.6)
    mid_heavy_candidate = (c.mid >= 34 or c.bass_low_mid >= 28) and c.presence <= 36
    if mid_heavy_candidate:
        if c.has_stats:
            return c.z_ext <= -1.5 or (c.z_tilt <= -1.5 and c.z_centroid <= -0.9)
        return extreme_abs_dark
    if c.has_stats:
        return speaker_rel_dark
    return extreme_abs_dark or speaker_rel_dark


def _cut_forward(c: RoleContext) -> bool:
    return c.presence >= 50 or c.cut_core_ratio >= 3.0 or c.z_presence >= 1.15 or c.z_centroid >= 1.15


def _mid_heavy(c: RoleContext) -> bool:
    return c.mid >= 34 or c.low_mid >= 10 or c.bass_low_mid >= 24


def _lead_polish(c: RoleContext) -> bool:
    extended = c.ext > 0 and (c.z_ext >= 0.6 if c.has_stats else c.ext >= 4200)
    very_smooth = c.smooth >= 87
    has_presence_clarity = 14 <= c.presence <= 55
    not_fizzy = c.fizz <= 1.2 or c.z_fizz <= 0.35
    not_scooped = (c.mid + c.low_mid) >= 16
    not_extreme_cut = c.presence <= 58 and c.z_presence <= 1.9 and c.cut_core_ratio <= 3.4
    if c.has_stats:
        above_avg_top = c.z_centroid >= 0.4 or c.z_presence >= 0.3
    else:
        above_avg_top = c.centroid >= 2500 or c.presence >= 20
    return (extended and very_smooth and not_fizzy and has_presence_clarity and
            not_scooped and not_extreme_cut and above_avg_top)


def _cut_forward_mid_lean(c: RoleContext) -> bool:
    return _cut_forward(c) and (c.mid + c.low_mid) <= 24


def _mid_heavy_not_spiky(c: RoleContext) -> bool:
    return _mid_heavy(c) and c.presence <= 36 and c.z_presence <= 0.35


def _near_voice_foundation(c: RoleContext) -> bool:
    if not c.has_stats:
        return False
    return (abs(c.z_centroid) <= 0.9 and abs(c.z_ext) <= 1.0 and
            abs(c.z_tilt) <= 1.3 and c.smooth >= 84)


def _fizz_tamer_relative(c: RoleContext) -> bool:
    if c.has_stats:
        clearly_dark = c.z_tilt <= -1.0 or c.z_ext <= -1.0
    else:
        rolled_off = c.ext > 0 and c.ext <= 4500
        very_dark_tilt = c.tilt <= -5.2 or c.tilt <= -7.0
        clearly_dark = rolled_off or very_dark_tilt
    low_fizz = c.fizz <= 0.6 or c.z_fizz <= -0.4
    low_air = c.air <= 1.8 or c.z_air <= -0.3
    return clearly_dark and c.smooth >= 82 and low_fizz and low_air and c.z_presence <= -0.5


def _cut_forward_loose(c: RoleContext) -> bool:
    return _cut_forward(c) and (c.mid + c.low_mid) <= 28


def _dark_tilt_low_fizz(c: RoleContext) -> bool:
    darkish = c.tilt <= -4.8 or (c.ext > 0 and c.ext <= 4700) or c.z_tilt <= -0.7
    return darkish and (c.fizz <= 1.0 or c.z_fizz <= -0.2)


def _always(c: RoleContext) -> bool:
    return True


# Ordered (rule name, role, predicate); the first matching rule wins
ROLE_RULES: List[Tuple[str, str, Callable[[RoleContext], bool]]] = [
    ('balanced_foundation', FOUNDATION, _balanced_foundation),
    ('speaker_centered_foundation', FOUNDATION, _speaker_centered_foundation),
    ('dark_specialty', DARK_SPECIALTY, _dark_specialty),
    ('lead_polish', LEAD_POLISH, _lead_polish),
    ('cut_forward_mid_lean', CUT_LAYER, _cut_forward_mid_lean),
    ('mid_heavy_not_spiky', MID_THICKENER, _mid_heavy_not_spiky),
    ('near_voice_foundation', FOUNDATION, _near_voice_foundation),
    ('fizz_tamer_relative', FIZZ_TAMER, _fizz_tamer_relative),
    ('cut_forward_loose', CUT_LAYER, _cut_forward_loose),
    ('mid_heavy', MID_THICKENER, _mid_heavy),
    ('dark_tilt_low_fizz', FIZZ_TAMER, _dark_tilt_low_fizz),
    ('fallback', FOUNDATION, _always),
]


def match_base_rule(ctx: RoleContext) -> Tuple[str, str]:
    """Return (rule name, role) of the first rule whose predicate holds."""
    for name, role, predicate in ROLE_RULES:
        if predicate(ctx):
            return name, role
    return 'fallback', FOUNDATION


def classify_musical_role(
    tf: TonalFeatures,
    speaker_stats: Optional[SpeakerStats] = None,
    logger: Optional[logging.Logger] = None,
    label: str = ''
) -> str:
    """
    Base role from the ordered rule cascade.

    Pure function of (features, speaker_stats): identical inputs always yield
    the identical role.

    Parameters:
        tf: IR features
        speaker_stats: Cohort stats (None = absolute-threshold fallback)
        logger: When given, derived measures and the matching rule are logged at DEBUG
        label: Name used in debug output (usually the filename)

    Returns:
        Role name
    """
    ctx = build_role_context(tf, speaker_stats)
    rule, role = match_base_rule(ctx)
    if logger is not None and logger.isEnabledFor(logging.DEBUG):
        logger.debug("classify %s: rule=%s role=%s context=%s",
                     label or '<ir>', rule, role, json.dumps(asdict(ctx), sort_keys=True))
    return role


# =============================================================================
# CONTEXT BIAS
# =============================================================================

# (filename substrings, role, bonus); any substring match applies the bonus once
FILENAME_BIAS_RULES: List[Tuple[Tuple[str, ...], str, float]] = [
    (('presence',), CUT_LAYER, 0.8),
    (('capedge_br',), CUT_LAYER, 0.4),
    (('capedge',), FOUNDATION, 0.2),
    (('cone_tr', 'cap_cone_tr'), FIZZ_TAMER, 0.4),
    (('cone_',), MID_THICKENER, 0.3),
    (('fredman',), FOUNDATION, 0.4),
    (('_thick_',), MID_THICKENER, 0.5),
    (('_balanced_',), FOUNDATION, 0.4),
    (('_tight_',), LEAD_POLISH, 0.4),
    (('r121',), MID_THICKENER, 0.4),
    (('roswell',), DARK_SPECIALTY, 0.7),
    (('md441',), CUT_LAYER, 0.4),
    (('pr30',), FOUNDATION, 0.35),
    (('md421',), FOUNDATION, 0.25),
    (('m201',), FOUNDATION, 0.25),
    (('e906',), CUT_LAYER, 0.25),
    (('sm57',), FOUNDATION, 0.15),
]

SHEEN_BONUS = 0.9
DARK_BONUS = 1.0


def is_objectively_cutty(c: RoleContext) -> bool:
    return (
        (c.z_centroid >= 1.0 and c.z_ext >= 0.8) or
        c.z_presence >= 1.1 or
        c.z_hi_mid_mid >= 1.2
    )


def is_sheen_candidate(c: RoleContext) -> bool:
    return (
        c.smooth >= 88 and
        c.ext >= 4800 and
        c.presence <= 48 and
        c.hi_mid_mid <= 1.75 and
        c.tilt >= -5.2 and
        (c.air >= 2.0 or c.z_air >= 0.7) and
        (c.fizz <= 0.9 or c.z_fizz <= 0.2)
    )


def context_bias_scores(base_role: str, c: RoleContext, filename: str) -> Dict[str, float]:
    """Score every role: base role +3.0, plus filename, sheen and darkness bonuses."""
    name = (filename or '').lower()
    scores = {role: 0.0 for role in ALL_ROLES}
    scores[base_role] = scores.get(base_role, 0.0) + BASE_ROLE_SCORE

    for tokens, role, bonus in FILENAME_BIAS_RULES:
        if any(token in name for token in tokens):
            scores[role] += bonus

    if is_sheen_candidate(c):
        scores[LEAD_POLISH] += SHEEN_BONUS

    if (0 < c.ext < 3600) or c.tilt <= -6.2 or c.z_tilt <= -1.3:
        scores[DARK_SPECIALTY] += DARK_BONUS

    return scores


def _apply_context_bias(base_role: str, c: RoleContext, filename: str) -> Tuple[str, str]:
    name = (filename or '').lower()

    is_presence_tagged = 'presence' in name
    is_clearly_dark = (0 < c.ext <= 3900) or c.tilt <= -5.8
    if base_role == FIZZ_TAMER and (is_presence_tagged or c.presence >= 28) and not is_clearly_dark:
        base_role = CUT_LAYER

    if is_objectively_cutty(c) and base_role == FOUNDATION:
        return CUT_LAYER, 'override:objectively_cutty'

    scores = context_bias_scores(base_role, c, filename)

    # Strictly greater wins, so ties keep the base role, then declaration order
    best = base_role
    best_score = scores[base_role]
    for role in ALL_ROLES:
        if scores[role] > best_score:
            best, best_score = role, scores[role]

    return best, 'context_bias'


def apply_context_bias(
    base_role: str,
    tf: TonalFeatures,
    filename: str,
    speaker_stats: Optional[SpeakerStats] = None
) -> str:
    """
    Re-score a base role using filename tokens and cohort z-scores.

    Parameters:
        base_role: Role from classify_musical_role
        tf: IR features
        filename: IR filename (mic/position hints)
        speaker_stats: Cohort stats

    Returns:
        Final role
    """
    ctx = build_role_context(tf, speaker_stats)
    role, _ = _apply_context_bias(base_role, ctx, filename)
    return role


def classify_ir_detailed(
    tf: TonalFeatures,
    filename: str,
    speaker_stats: Optional[SpeakerStats] = None,
    logger: Optional[logging.Logger] = None
) -> RoleDecision:
    """Run both passes and report which rule or pass decided the role."""
    ctx = build_role_context(tf, speaker_stats)
    rule, base_role = match_base_rule(ctx)
    role, bias_source = _apply_context_bias(base_role, ctx, filename)

    if role == base_role and bias_source == 'context_bias':
        source = f'cascade:{rule}'
    else:
        source = bias_source

    if logger is not None and logger.isEnabledFor(logging.DEBUG):
        logger.debug("classify %s: rule=%s base=%s final=%s source=%s context=%s",
                     filename, rule, base_role, role, source,
                     json.dumps(asdict(ctx), sort_keys=True))

    return RoleDecision(role=role, base_role=base_role, source=source, base_rule=rule)


def classify_ir(
    tf: TonalFeatures,
    filename: str,
    speaker_stats: Optional[SpeakerStats] = None,
    logger: Optional[logging.Logger] = None
) -> str:
    return classify_ir_detailed(tf, filename, speaker_stats, logger).role


# =============================================================================
# INTENT PREFERENCES AND LEARNING
# =============================================================================

INTENT_ROLE_PREFERENCES: Dict[str, Dict[str, list]] = {
    'rhythm': {
        'preferred': [
            (FOUNDATION, MID_THICKENER),
            (FOUNDATION, CUT_LAYER),
            (FOUNDATION, FIZZ_TAMER),
            (FOUNDATION, FOUNDATION),
            (MID_THICKENER, CUT_LAYER),
            (MID_THICKENER, FIZZ_TAMER),
            (CUT_LAYER, DARK_SPECIALTY),
        ],
        'good': [FOUNDATION, MID_THICKENER, FIZZ_TAMER, CUT_LAYER],
        'avoid': [LEAD_POLISH],
    },
    'lead': {
        'preferred': [
            (FOUNDATION, CUT_LAYER),
            (FOUNDATION, LEAD_POLISH),
            (CUT_LAYER, LEAD_POLISH),
            (CUT_LAYER, MID_THICKENER),
            (FOUNDATION, FOUNDATION),
            (CUT_LAYER, FIZZ_TAMER),
        ],
        'good': [CUT_LAYER, LEAD_POLISH, FOUNDATION],
        'avoid': [DARK_SPECIALTY],
    },
    'clean': {
        'preferred': [
            (FOUNDATION, LEAD_POLISH),
            (FOUNDATION, FOUNDATION),
            (LEAD_POLISH, LEAD_POLISH),
            (FOUNDATION, CUT_LAYER),
            (LEAD_POLISH, MID_THICKENER),
            (FOUNDATION, DARK_SPECIALTY),
            (FOUNDATION, FIZZ_TAMER),
        ],
        'good': [FOUNDATION, LEAD_POLISH, FIZZ_TAMER],
        'avoid': [],
    },
}


def score_role_pair_for_intent(role_a: str, role_b: str, intent: str) -> float:
    """
    Score how well two roles pair for a playing intent.

    Preferred pairs score 3.0 - 0.4 * rank (order-insensitive); other pairs get
    +1 per "good" role and -2 per "avoid" role. Unknown intents score 0.
    """
    prefs = INTENT_ROLE_PREFERENCES.get(intent)
    if not prefs:
        return 0.0

    pair = sorted((role_a, role_b))
    for i, preferred in enumerate(prefs['preferred']):
        if pair == sorted(preferred):
            return 3.0 - i * 0.4

    score = 0.0
    for role in (role_a, role_b):
        if role in prefs['good']:
            score += 1.0
        if role in prefs['avoid']:
            score -= 2.0
    return score


@dataclass(frozen=True)
class IRWinRecord:
    wins: int = 0
    losses: int = 0
    both_count: int = 0


def soften_roles_from_learning(
    role_map: Mapping[str, str],
    win_records: Mapping[str, IRWinRecord],
    intent: str
) -> Dict[str, str]:
    """
    Soften roles of IRs that keep winning head-to-head comparisons.

    Net >= 4 with win rate >= 0.6 promotes to Foundation; net >= 2 with win
    rate >= 0.5 moves a role the intent does not rate "good" to the intent's
    first good role. Foundation IRs are never changed.

    Returns:
        New role mapping (input is not modified)
    """
    out = dict(role_map)
    prefs = INTENT_ROLE_PREFERENCES.get(intent)

    for filename, rec in win_records.items():
        current = out.get(filename)
        if not current or current == FOUNDATION:
            continue

        net = rec.wins + rec.both_count * 0.5 - rec.losses
        total = rec.wins + rec.losses + rec.both_count
        if total < 2 or net <= 0:
            continue

        win_rate = (rec.wins + rec.both_count * 0.5) / max(1, total)

        if net >= 4 and win_rate >= 0.6:
            out[filename] = FOUNDATION
        elif net >= 2 and win_rate >= 0.5 and prefs and current not in prefs['good']:
            soft_target = prefs['good'][0] if prefs['good'] else None
            if soft_target and soft_target != current:
                out[filename] = soft_target

    return out


# Role bias for foundation anchoring (lower = more foundation-like)
FOUNDATION_ROLE_BIAS: Dict[str, float] = {
    FOUNDATION: -0.40,
    LEAD_POLISH: -0.10,
    MID_THICKENER: 0.10,
    CUT_LAYER: 0.15,
    FIZZ_TAMER: 0.25,
    DARK_SPECIALTY: 0.45,
}


def foundation_distance(tf: TonalFeatures, role: str, stats: Optional[SpeakerStats]) -> float:
    """Distance of an IR from its cohort centre (lower = better foundation)."""
    scalars = derive_stat_scalars(tf)
    s = 0.0
    if stats is not None:
        s += abs(stats.z('centroid', scalars['centroid']))
        s += abs(stats.z('tilt', scalars['tilt']))
        s += abs(stats.z('rolloff', scalars['rolloff']))
    smooth = scalars['smooth']
    s += (90.0 - smooth) / 10.0 if smooth else 0.0
    s += max(0.0, (scalars['presence'] - 22.0) / 30.0)
    s += max(0.0, (tf.percent('lowMid') - 12.0) / 25.0)
    s += max(0.0, (scalars['air'] - 6.0) / 10.0)
    s += FOUNDATION_ROLE_BIAS.get(role, 0.0)
    return s


def find_foundation_candidates(
    irs: Sequence[Tuple[str, TonalFeatures]],
    speaker_stats: Mapping[str, SpeakerStats],
    role_map: Mapping[str, str]
) -> Tuple[Dict[str, str], Dict[str, str]]:
    """
    Pick the most foundation-like IR per cohort.

    When a cohort has no Foundation yet, its pick is anchored as Foundation.

    Parameters:
        irs: (filename, features) pairs
        speaker_stats: Cohort stats map
        role_map: filename -> role

    Returns:
        Tuple of (cohort -> chosen filename, updated role map)
    """
    chosen: Dict[str, str] = {}
    roles = dict(role_map)

    by_speaker: Dict[str, List[Tuple[str, TonalFeatures]]] = {}
    for filename, tf in irs:
        by_speaker.setdefault(infer_speaker_id(filename), []).append((filename, tf))

    for speaker, members in by_speaker.items():
        stats = speaker_stats.get(speaker)
        has_foundation = any(roles.get(fn) == FOUNDATION for fn, _ in members)

        best_fn = members[0][0]
        best_score = float('inf')
        for filename, tf in members:
            s = foundation_distance(tf, roles.get(filename, FOUNDATION), stats)
            if s < best_score:
                best_fn, best_score = filename, s

        chosen[speaker] = best_fn
        if not has_foundation:
            roles[best_fn] = FOUNDATION

    return chosen, roles
