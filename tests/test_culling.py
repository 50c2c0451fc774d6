"""
Culling Optimizer Test Suite

Tests for slot allocation, effective scores, slot selection, close calls
and target validation.
"""

import pytest

import config
from ir_curator import culling
from ir_curator.analysis import analyze_batch
from ir_curator.culling import CullCandidate, CullRefusal, allocate_slots, cull_irs, request_cull
from ir_curator.profiles import LearnedProfileData, RatioPreference
from ir_curator.redundancy import cluster_redundancy
from ir_curator.roles import CUT_LAYER, FOUNDATION
from ir_curator.synthetic import generate_batch
from ir_curator.tonal import compute_tonal_features


# =============================================================================
# SYNTHETIC CANDIDATES
# =============================================================================

SM57_RECORD = {
    'subBass': 3.0, 'bass': 8.0, 'lowMid': 9.0, 'mid': 26.0,
    'highMid': 27.0, 'presence': 24.0, 'air': 3.0,
    'tiltDbPerOct': -3.5, 'rolloffFreq': 5200.0, 'smoothScore': 88,
}
R121_RECORD = {
    'subBass': 5.0, 'bass': 12.0, 'lowMid': 14.0, 'mid': 34.0,
    'highMid': 20.0, 'presence': 12.0, 'air': 3.0,
    'tiltDbPerOct': -5.0, 'rolloffFreq': 4400.0, 'smoothScore': 86,
}


def candidate(filename, score, record=SM57_RECORD, role=FOUNDATION, profile='Body'):
    return CullCandidate(filename=filename, features=compute_tonal_features(record),
                         score=score, role=role, profile=profile)


def close_call_candidates():
    return [
        candidate('V30_SM57_Cap_1in.wav', 80.0),
        candidate('V30_SM57_Cap_2in.wav', 79.0),
        candidate('V30_R121_Cap_1in.wav', 70.0, R121_RECORD),
    ]


def generated_candidates(**kwargs):
    return analyze_batch(generate_batch(**kwargs)).cull_candidates()


# =============================================================================
# ALLOCATION
# =============================================================================

class TestAllocateSlots:
    """Proportional slots with a floor of one per group."""

    def test_even_groups(self):
        alloc = allocate_slots({'a': 3, 'b': 3, 'c': 3, 'd': 3}, 6)
        assert sum(alloc.values()) == 6
        assert all(v >= 1 for v in alloc.values())

    def test_more_groups_than_slots(self):
        alloc = allocate_slots({'a': 1, 'b': 1, 'c': 1, 'd': 1, 'e': 1}, 3)
        assert alloc == {'a': 1, 'b': 1, 'c': 1, 'd': 0, 'e': 0}

    def test_proportional(self):
        assert allocate_slots({'a': 10, 'b': 2}, 6) == {'a': 5, 'b': 1}

    def test_never_exceeds_group_size(self):
        alloc = allocate_slots({'a': 1, 'b': 9}, 8)
        assert alloc['a'] == 1
        assert alloc['b'] == 7

    def test_target_above_total(self):
        assert allocate_slots({'a': 2, 'b': 1}, 10) == {'a': 2, 'b': 1}

    def test_zero_target(self):
        assert allocate_slots({'a': 2}, 0) == {'a': 0}


# =============================================================================
# EFFECTIVE SCORES
# =============================================================================

class TestEffectiveScores:
    """Boosts and penalties layered on the base score."""

    def test_gear_sentiment_boost(self):
        learned = LearnedProfileData(status='learning', gear_sentiment={'sm57': 1.0})
        assert culling.gear_sentiment_boost('V30_SM57_Cap.wav', learned) == pytest.approx(5.0)
        assert culling.gear_sentiment_boost('V30_R121_Cap.wav', learned) == 0.0

    def test_gear_sentiment_capped(self):
        learned = LearnedProfileData(status='learning',
                                     gear_sentiment={'sm57': 1.0, 'cap': 1.0, '1in': 1.0})
        assert culling.gear_sentiment_boost('V30_SM57_Cap_1in.wav', learned) == pytest.approx(
            config.CULL_GEAR_SENTIMENT_CAP)

    def test_inactive_learning_ignored(self):
        learned = LearnedProfileData(status='no_data', gear_sentiment={'sm57': 1.0})
        assert culling.gear_sentiment_boost('V30_SM57_Cap.wav', learned) == 0.0

    def test_ratio_preference_boost(self):
        learned = LearnedProfileData(status='confident',
                                     ratio_preference=RatioPreference('30/70', 0.3, 0.7, 0.5))
        featured = candidate('V30_SM57_Cap.wav', 80.0, profile='Featured')
        body = candidate('V30_SM57_Cone.wav', 80.0, profile='Body')
        assert culling.preference_boost(featured, learned) == pytest.approx(2.0)
        assert culling.preference_boost(body, learned) == 0.0

    def test_role_scarcity_boost(self):
        cands = [
            candidate('V30_SM57_Cap_1in.wav', 80.0, role=CUT_LAYER),
            candidate('V30_R121_Cap_1in.wav', 80.0, R121_RECORD),
            candidate('V30_R121_Cone_1in.wav', 80.0, R121_RECORD),
        ]
        eff = culling.effective_scores(cands)
        assert eff['V30_SM57_Cap_1in.wav'] == pytest.approx(80.0 + config.CULL_ROLE_SCARCITY_BOOST)

    def test_blend_redundancy_penalty(self):
        """Shape-redundant peers in the same group cost points."""
        cands = [
            candidate('V30_SM57_Cap_1in.wav', 80.0),
            candidate('V30_SM57_Cap_2in.wav', 80.0),
            candidate('V30_SM57_Cap_3in.wav', 80.0),
        ]
        eff = culling.effective_scores(cands)
        assert eff['V30_SM57_Cap_1in.wav'] == pytest.approx(80.0 - 2 * config.CULL_BLEND_REDUNDANCY_PENALTY)


# =============================================================================
# CULLING
# =============================================================================

class TestCullIRs:
    """Keep/cut selection and close calls."""

    def test_keeps_every_mic(self):
        cands = generated_candidates(duplicates=0)
        result = cull_irs(cands, 6)
        assert len(result.keep) == 6
        kept_mics = {culling.group_key(fn) for fn in result.keep_filenames}
        assert kept_mics == {'V30/sm57', 'V30/md421', 'V30/r121', 'V30/e906'}

    def test_keep_and_cut_partition_input(self):
        cands = generated_candidates(duplicates=2)
        result = cull_irs(cands, 5)
        names = [c.filename for c in cands]
        assert sorted(result.keep_filenames + result.cut_filenames) == sorted(names)
        assert not set(result.keep_filenames) & set(result.cut_filenames)

    def test_cuts_name_nearest_kept(self):
        result = cull_irs(generated_candidates(duplicates=0), 4)
        for decision in result.cut:
            assert decision.nearest_kept in result.keep_filenames
            assert decision.similarity is not None
            assert decision.justification.startswith('Cut:')

    def test_within_target_keeps_all(self):
        cands = close_call_candidates()
        result = cull_irs(cands, 5)
        assert result.keep_filenames == [c.filename for c in cands]
        assert result.cut == []

    def test_deterministic(self):
        cands = generated_candidates(duplicates=2)
        first = cull_irs(cands, 6)
        second = cull_irs(cands, 6)
        assert first.keep_filenames == second.keep_filenames
        assert [c.slot_id for c in first.close_calls] == [c.slot_id for c in second.close_calls]

    def test_single_slot_close_call(self):
        result = cull_irs(close_call_candidates(), 2)
        assert result.allocation == {'V30/sm57': 1, 'V30/r121': 1}
        assert 'V30_SM57_Cap_1in.wav' in result.keep_filenames
        assert len(result.close_calls) == 1
        call = result.close_calls[0]
        assert call.slot_id == 'V30/sm57#1'
        assert call.group == 'V30/sm57'
        assert [o.filename for o in call.options] == ['V30_SM57_Cap_1in.wav', 'V30_SM57_Cap_2in.wav']
        assert call.margin == pytest.approx(1.0)

    def test_resolution_honoured(self):
        result = cull_irs(close_call_candidates(), 2,
                          resolutions={'V30/sm57#1': 'V30_SM57_Cap_2in.wav'})
        assert 'V30_SM57_Cap_2in.wav' in result.keep_filenames
        assert 'V30_SM57_Cap_1in.wav' in result.cut_filenames
        assert result.close_calls == []

    def test_prior_selection_reported(self):
        result = cull_irs(close_call_candidates(), 2,
                          prior_selections={'V30/sm57#1': 'V30_SM57_Cap_2in.wav'})
        assert result.close_calls[0].prior_selection == 'V30_SM57_Cap_2in.wav'

    def test_wide_gap_is_not_close(self):
        cands = [
            candidate('V30_SM57_Cap_1in.wav', 90.0),
            candidate('V30_SM57_Cap_2in.wav', 70.0),
            candidate('V30_R121_Cap_1in.wav', 70.0, R121_RECORD),
        ]
        assert cull_irs(cands, 2).close_calls == []

    def test_excluded_files_removed(self):
        result = cull_irs(close_call_candidates(), 2, excluded=['V30_SM57_Cap_2in.wav'])
        assert result.excluded == ['V30_SM57_Cap_2in.wav']
        assert 'V30_SM57_Cap_2in.wav' not in result.keep_filenames + result.cut_filenames

    def test_resolved_cluster_excludes_losers(self):
        cands = close_call_candidates()
        cluster = cluster_redundancy([(c.filename, c.features) for c in cands])
        assert len(cluster.groups) == 1
        cluster.groups[0].select_keep('V30_SM57_Cap_2in.wav')
        result = cull_irs(cands, 1, cluster=cluster)
        assert result.excluded == ['V30_SM57_Cap_1in.wav']
        assert len(result.keep) == 1


# Same band mix as SM57_RECORD, so shape penalties match; only the scalars differ
SM57_ODD_SCALARS = dict(SM57_RECORD, tiltDbPerOct=3.5, rolloffFreq=3500.0,
                        residualNoiseDb=-30.0, notchCount=5, maxNotchDepth=18.0)


def greedy_candidates(capedge_score=80.1):
    """Four identical-sounding SM57 takes spread over three positions."""
    return [
        candidate('V30_SM57_Cap_1in.wav', 90.0),
        candidate('V30_SM57_CapEdge_1in.wav', capedge_score),
        candidate('V30_SM57_Cone_1in.wav', 80.0),
        candidate('V30_SM57_Cap_2in.wav', 82.0),
    ]


class TestGreedySelection:
    """Multi-slot groups: quality, diversity and new-position weighting."""

    def test_quality_wins_over_small_diversity_gain(self):
        """A near-copy with much higher quality still takes the second slot."""
        cands = [
            candidate('V30_SM57_Cap_1in.wav', 90.0),
            candidate('V30_SM57_Cap_2in.wav', 89.0),
            candidate('V30_SM57_Cap_3in.wav', 80.0, SM57_ODD_SCALARS),
        ]
        result = cull_irs(cands, 2)
        assert result.allocation == {'V30/sm57': 2}
        assert result.keep_filenames == ['V30_SM57_Cap_1in.wav', 'V30_SM57_Cap_2in.wav']

    def test_diversity_beats_near_copy(self):
        """A slightly better copy of the first pick loses to a distinct IR."""
        cands = [
            candidate('V30_SM57_Cap_1in.wav', 90.0),
            candidate('V30_SM57_Cap_2in.wav', 81.0),
            candidate('V30_SM57_Cap_3in.wav', 80.0, SM57_ODD_SCALARS),
        ]
        result = cull_irs(cands, 2)
        assert result.keep_filenames == ['V30_SM57_Cap_1in.wav', 'V30_SM57_Cap_3in.wav']
        assert [k.slot_id for k in result.keep] == ['V30/sm57#1', 'V30/sm57#2']
        copy = next(d for d in result.cut if d.filename == 'V30_SM57_Cap_2in.wav')
        assert copy.nearest_kept == 'V30_SM57_Cap_1in.wav'
        assert copy.similarity == pytest.approx(1.0)

    def test_new_position_bonus(self):
        """An unused position outranks a better take at a position already kept."""
        result = cull_irs(greedy_candidates(capedge_score=81.0), 3)
        assert result.allocation == {'V30/sm57': 3}
        assert result.keep_filenames == [
            'V30_SM57_Cap_1in.wav', 'V30_SM57_CapEdge_1in.wav', 'V30_SM57_Cone_1in.wav',
        ]
        assert result.cut_filenames == ['V30_SM57_Cap_2in.wav']

    def test_close_call_within_five_percent(self):
        result = cull_irs(greedy_candidates(capedge_score=80.1), 3)
        assert [c.slot_id for c in result.close_calls] == ['V30/sm57#2']
        call = result.close_calls[0]
        assert call.group == 'V30/sm57'
        assert [o.filename for o in call.options] == ['V30_SM57_CapEdge_1in.wav', 'V30_SM57_Cone_1in.wav']
        assert call.margin == pytest.approx(0.006, abs=1e-4)
        assert call.options[0].combined_score > call.options[1].combined_score

    def test_no_close_call_when_gap_is_wide(self):
        result = cull_irs(greedy_candidates(capedge_score=81.0), 3)
        assert result.close_calls == []

    def test_prior_selection_on_later_slot(self):
        result = cull_irs(greedy_candidates(), 3,
                          prior_selections={'V30/sm57#2': 'V30_SM57_Cone_1in.wav'})
        assert result.close_calls[0].prior_selection == 'V30_SM57_Cone_1in.wav'

    def test_resolution_rescores_later_slots(self):
        """Resolving slot 2 changes which position is new for slot 3."""
        unresolved = cull_irs(greedy_candidates(), 3)
        assert unresolved.keep_filenames == [
            'V30_SM57_Cap_1in.wav', 'V30_SM57_CapEdge_1in.wav', 'V30_SM57_Cone_1in.wav',
        ]

        resolved = cull_irs(greedy_candidates(), 3,
                            resolutions={'V30/sm57#2': 'V30_SM57_Cone_1in.wav'})
        assert resolved.keep_filenames == [
            'V30_SM57_Cap_1in.wav', 'V30_SM57_Cone_1in.wav', 'V30_SM57_CapEdge_1in.wav',
        ]
        assert [k.slot_id for k in resolved.keep] == ['V30/sm57#1', 'V30/sm57#2', 'V30/sm57#3']
        assert 'close call resolved' in resolved.keep[1].justification
        assert resolved.close_calls == []
        assert resolved.cut_filenames == ['V30_SM57_Cap_2in.wav']


# =============================================================================
# TARGET VALIDATION
# =============================================================================

def test_request_cull_refuses_target_at_or_above_eligible():
    refusal = request_cull(close_call_candidates(), 3)
    assert isinstance(refusal, CullRefusal)
    assert refusal.eligible_count == 3
    assert '3' in refusal.reason


def test_request_cull_refuses_zero_target():
    assert isinstance(request_cull(close_call_candidates(), 0), CullRefusal)


def test_request_cull_counts_exclusions():
    refusal = request_cull(close_call_candidates(), 2, excluded=['V30_SM57_Cap_2in.wav'])
    assert isinstance(refusal, CullRefusal)
    assert refusal.eligible_count == 2


def test_request_cull_runs():
    result = request_cull(close_call_candidates(), 2)
    assert len(result.keep) == 2
