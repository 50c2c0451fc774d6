"""
Musical Role Test Suite

Tests for the rule cascade, context bias, intent preferences and
foundation anchoring.
"""

import logging

import pytest

from ir_curator import roles
from ir_curator.roles import (
    CUT_LAYER,
    DARK_SPECIALTY,
    FIZZ_TAMER,
    FOUNDATION,
    LEAD_POLISH,
    MID_THICKENER,
    IRWinRecord,
)
from ir_curator.speaker_stats import SpeakerStats, compute_speaker_stats, stats_for
from ir_curator.tonal import compute_tonal_features


# =============================================================================
# SYNTHETIC FEATURE GENERATORS
# =============================================================================

def features(subBass, bass, lowMid, mid, highMid, presence, air, **scalars):
    record = {
        'subBass': subBass, 'bass': bass, 'lowMid': lowMid, 'mid': mid,
        'highMid': highMid, 'presence': presence, 'air': air,
    }
    record.update(scalars)
    return compute_tonal_features(record)


def foundation_features():
    return features(4, 10, 10, 26, 24, 24, 2, tiltDbPerOct=-3.0, rolloffFreq=4800, smoothScore=90)


def cut_features():
    return features(2, 4, 5, 15, 20, 52, 2, tiltDbPerOct=-2.0, rolloffFreq=5000, smoothScore=80)


def mid_features():
    return features(3, 8, 12, 38, 22, 14, 3, tiltDbPerOct=-4.0, rolloffFreq=4500, smoothScore=80)


def lead_features():
    return features(2, 6, 6, 24, 30, 28, 4, tiltDbPerOct=-0.5, rolloffFreq=6000, smoothScore=92)


def dark_features():
    return features(4, 10, 10, 26, 24, 24, 2, tiltDbPerOct=-3.0, rolloffFreq=2500, smoothScore=85)


# =============================================================================
# BASE CASCADE
# =============================================================================

class TestBaseCascade:
    """classify_musical_role over absolute thresholds and cohort z-scores."""

    def test_foundation_cohort_example(self):
        """Four identical mid-envelope IRs in one cohort are Foundation."""
        rows = [(f'V30_SM57_Cap_{i}in.wav', foundation_features()) for i in range(4)]
        stats = compute_speaker_stats(rows)
        for filename, tf in rows:
            assert roles.classify_musical_role(tf, stats_for(filename, stats)) == FOUNDATION
            assert roles.classify_ir(tf, filename, stats_for(filename, stats)) == FOUNDATION

    def test_foundation_without_stats(self):
        assert roles.classify_musical_role(foundation_features()) == FOUNDATION

    def test_dark_specialty(self):
        assert roles.classify_musical_role(dark_features()) == DARK_SPECIALTY

    def test_cut_layer(self):
        assert roles.classify_musical_role(cut_features()) == CUT_LAYER

    def test_mid_thickener(self):
        assert roles.classify_musical_role(mid_features()) == MID_THICKENER

    def test_lead_polish(self):
        assert roles.classify_musical_role(lead_features()) == LEAD_POLISH

    def test_deterministic(self):
        """Identical inputs give identical roles."""
        for make in (foundation_features, cut_features, mid_features, lead_features, dark_features):
            assert roles.classify_musical_role(make()) == roles.classify_musical_role(make())

    def test_empty_features_fall_through(self):
        """An empty record still gets a role."""
        assert roles.classify_musical_role(compute_tonal_features({})) in roles.ALL_ROLES

    def test_rule_order(self):
        names = [name for name, _, _ in roles.ROLE_RULES]
        assert names[0] == 'balanced_foundation'
        assert names[2] == 'dark_specialty'
        assert names[-1] == 'fallback'
        assert roles.ROLE_RULES[-1][1] == FOUNDATION

    def test_debug_logger(self, caplog):
        """A passed logger receives the matching rule at DEBUG."""
        log = logging.getLogger('tests.roles')
        with caplog.at_level(logging.DEBUG, logger='tests.roles'):
            roles.classify_musical_role(foundation_features(), logger=log, label='V30_SM57_Cap.wav')
        assert 'rule=balanced_foundation' in caplog.text
        assert 'V30_SM57_Cap.wav' in caplog.text


# =============================================================================
# CONTEXT BIAS
# =============================================================================

class TestContextBias:
    """Filename tokens, sheen, darkness and the cutty override."""

    def test_objectively_cutty_override(self):
        """High presence z-score promotes Foundation to Cut Layer."""
        stats = SpeakerStats(mean={'presence': 14.0}, std={'presence': 5.0}, count=5)
        role = roles.apply_context_bias(FOUNDATION, foundation_features(), 'V30_SM57_Cap_1in.wav', stats)
        assert role == CUT_LAYER

    def test_override_only_applies_to_foundation(self):
        stats = SpeakerStats(mean={'presence': 14.0}, std={'presence': 5.0}, count=5)
        role = roles.apply_context_bias(MID_THICKENER, mid_features(), 'V30_R121_Cone_1in.wav', stats)
        assert role == MID_THICKENER

    def test_presence_tagged_fizz_tamer_becomes_cut(self):
        role = roles.apply_context_bias(FIZZ_TAMER, foundation_features(), 'V30_SM57_Presence_1in.wav')
        assert role == CUT_LAYER

    def test_dark_fizz_tamer_kept(self):
        role = roles.apply_context_bias(FIZZ_TAMER, dark_features(), 'V30_SM57_Presence_1in.wav')
        assert role in (FIZZ_TAMER, DARK_SPECIALTY)
        assert role != CUT_LAYER

    def test_base_role_survives_small_bonuses(self):
        """Token bonuses alone never outweigh the 3.0 base score."""
        role = roles.apply_context_bias(FOUNDATION, foundation_features(), 'V30_Roswell_Cap_1in.wav')
        assert role == FOUNDATION

    def test_scores_include_bonuses(self):
        ctx = roles.build_role_context(lead_features())
        scores = roles.context_bias_scores(LEAD_POLISH, ctx, 'V30_SM57_Cap_1in.wav')
        assert scores[LEAD_POLISH] == pytest.approx(3.0 + roles.SHEEN_BONUS)
        assert scores[FOUNDATION] == pytest.approx(0.15)

    def test_dark_bonus(self):
        ctx = roles.build_role_context(dark_features())
        scores = roles.context_bias_scores(FOUNDATION, ctx, 'V30_X_Cap.wav')
        assert scores[DARK_SPECIALTY] == pytest.approx(roles.DARK_BONUS)

    def test_detailed_decision(self):
        decision = roles.classify_ir_detailed(foundation_features(), 'V30_SM57_Cap_1in.wav')
        assert decision.role == FOUNDATION
        assert decision.base_role == FOUNDATION
        assert decision.source == 'cascade:balanced_foundation'


# =============================================================================
# INTENT AND LEARNING
# =============================================================================

def test_role_pair_scores():
    assert roles.score_role_pair_for_intent(FOUNDATION, MID_THICKENER, 'rhythm') == pytest.approx(3.0)
    assert roles.score_role_pair_for_intent(CUT_LAYER, FOUNDATION, 'rhythm') == pytest.approx(2.6)
    assert roles.score_role_pair_for_intent(DARK_SPECIALTY, MID_THICKENER, 'lead') == pytest.approx(-2.0)
    assert roles.score_role_pair_for_intent(FOUNDATION, CUT_LAYER, 'unknown') == 0.0


def test_soften_roles_from_learning():
    role_map = {'a.wav': CUT_LAYER, 'b.wav': MID_THICKENER, 'c.wav': FOUNDATION, 'd.wav': DARK_SPECIALTY}
    records = {
        'a.wav': IRWinRecord(wins=5, losses=0),
        'b.wav': IRWinRecord(wins=3, losses=1),
        'c.wav': IRWinRecord(wins=0, losses=6),
        'd.wav': IRWinRecord(wins=1, losses=3),
    }
    out = roles.soften_roles_from_learning(role_map, records, 'lead')
    assert out['a.wav'] == FOUNDATION
    assert out['b.wav'] == CUT_LAYER
    assert out['c.wav'] == FOUNDATION
    assert out['d.wav'] == DARK_SPECIALTY
    assert role_map['a.wav'] == CUT_LAYER  # input untouched


def test_find_foundation_candidates_anchors_cohort():
    """A cohort without a Foundation gets its most central IR anchored."""
    rows = [
        ('V30_SM57_Cap.wav', foundation_features()),
        ('V30_E906_Cap.wav', cut_features()),
        ('G12M_SM57_Cap.wav', foundation_features()),
    ]
    stats = compute_speaker_stats(rows)
    role_map = {'V30_SM57_Cap.wav': CUT_LAYER, 'V30_E906_Cap.wav': CUT_LAYER,
                'G12M_SM57_Cap.wav': FOUNDATION}
    chosen, anchored = roles.find_foundation_candidates(rows, stats, role_map)
    assert set(chosen.keys()) == {'V30', 'G12M'}
    assert anchored[chosen['V30']] == FOUNDATION
    assert anchored['G12M_SM57_Cap.wav'] == FOUNDATION
    assert role_map['V30_SM57_Cap.wav'] == CUT_LAYER
