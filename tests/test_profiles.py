"""
Preference Profile Test Suite

Tests for profile distance, scoring labels, learned adjustments,
avoid zones and batch-derived profiles.
"""

import pytest

import config
from ir_curator import profiles
from ir_curator.profiles import (
    AvoidZone,
    BandAdjustment,
    LearnedProfileData,
    apply_learned_adjustments,
    avoid_zone_penalty,
    band_deviations,
    derive_batch_profiles,
    score_against_all_profiles,
    score_against_profile,
    score_distance,
)
from ir_curator.tonal import compute_tonal_features


def featured_features(**scalars):
    record = dict(profiles.FEATURED_ANCHOR_PERCENT)
    record.setdefault('smoothScore', 90)
    record.update(scalars)
    return compute_tonal_features(record)


def body_features(**scalars):
    record = dict(profiles.BODY_ANCHOR_PERCENT)
    record.setdefault('smoothScore', 90)
    record.update(scalars)
    return compute_tonal_features(record)


# =============================================================================
# DISTANCE AND SCORE
# =============================================================================

class TestScoring:
    """Distance, penalties, score mapping and labels."""

    def test_exact_anchor_is_strong(self):
        """An IR built from the Featured anchor mix scores 100."""
        result = score_against_profile(featured_features(), profiles.FEATURED_PROFILE)
        assert result.score == 100
        assert result.label == 'strong'
        assert result.deviations == []
        assert result.summary == 'Strong Featured match'

    def test_self_distance_is_zero(self):
        tf = body_features()
        assert score_distance(tf, tf.bands_shape_db, tf.tilt_db_per_oct) == pytest.approx(0.0)

    def test_smooth_penalty(self):
        tf = body_features(smoothScore=45)
        assert score_distance(tf, tf.bands_shape_db, tf.tilt_db_per_oct) == pytest.approx(1.0)

    def test_notch_penalty(self):
        tf = body_features(maxNotchDepth=14)
        assert score_distance(tf, tf.bands_shape_db, tf.tilt_db_per_oct) == pytest.approx(4.0)

    def test_rolloff_penalty(self):
        tf = body_features(rolloffFreq=4000)
        assert score_distance(tf, tf.bands_shape_db, tf.tilt_db_per_oct) == pytest.approx(1.0)

    def test_no_penalty_at_onsets(self):
        tf = body_features(smoothScore=55, maxNotchDepth=10, rolloffFreq=4500)
        assert score_distance(tf, tf.bands_shape_db, tf.tilt_db_per_oct) == pytest.approx(0.0)

    def test_tilt_weighted_double(self):
        tf = body_features()
        d = score_distance(tf, tf.bands_shape_db, tf.tilt_db_per_oct + 1.5)
        assert d == pytest.approx(3.0)

    def test_weight_override(self):
        tf = body_features()
        d = score_distance(tf, tf.bands_shape_db, tf.tilt_db_per_oct + 1.0, weights={'tilt': 0.5})
        assert d == pytest.approx(0.5)

    def test_score_bounds(self):
        """Scores stay in 0..100 even far from every target."""
        tf = compute_tonal_features({'subBass': 90, 'bass': 5, 'mid': 1, 'highMid': 1,
                                     'presence': 1, 'air': 1, 'lowMid': 1, 'smoothScore': 10})
        results, best = score_against_all_profiles(tf)
        for r in results:
            assert 0 <= r.score <= 100
        assert best.label == 'miss'

    def test_best_profile(self):
        _, best = score_against_all_profiles(body_features())
        assert best.profile == 'Body'
        _, best = score_against_all_profiles(featured_features())
        assert best.profile == 'Featured'

    def test_tie_keeps_first_profile(self):
        twin = profiles.PreferenceProfile(
            name='Twin',
            target_shape_db=profiles.FEATURED_PROFILE.target_shape_db,
            target_tilt=profiles.FEATURED_PROFILE.target_tilt,
        )
        _, best = score_against_all_profiles(featured_features(), [profiles.FEATURED_PROFILE, twin])
        assert best.profile == 'Featured'


def test_band_deviations_sorted():
    target = {k: 0.0 for k in config.BAND_KEYS}
    shape = dict(target, mid=3.0, air=-6.0, bass=1.0)
    devs = band_deviations(shape, target)
    assert [d.band for d in devs] == ['Air', 'Mid']
    assert devs[0].direction == 'low'
    assert devs[0].amount == 6.0
    assert devs[1].direction == 'high'


def test_summaries():
    devs = [profiles.BandDeviation(band='Mid', direction='high', amount=3.0)]
    assert profiles.summarize_match('Body', 'close', devs) == 'Near Body: Mid above target'
    assert profiles.summarize_match('Body', 'partial', devs) == 'Partial Body: 1 bands out of range'
    assert profiles.summarize_match('Body', 'miss', devs) == 'Outside Body range'


# =============================================================================
# LEARNED DATA
# =============================================================================

class TestLearnedAdjustments:
    """Band shifts and avoid zones from learned preference data."""

    def test_inactive_data_ignored(self):
        learned = LearnedProfileData(status='no_data',
                                     band_adjustments={'mid': BandAdjustment(10.0, 1.0)},
                                     avoid_zones=[AvoidZone('presence', 'above', 0.0)])
        assert apply_learned_adjustments(profiles.BODY_PROFILE, learned) is profiles.BODY_PROFILE
        plain = score_against_profile(featured_features(), profiles.FEATURED_PROFILE)
        with_learned = score_against_profile(featured_features(), profiles.FEATURED_PROFILE, learned)
        assert plain.score == with_learned.score
        assert with_learned.avoid_penalty == 0.0

    def test_band_shift(self):
        """shift * confidence * 0.3 dB is added to the target."""
        learned = LearnedProfileData(status='learning',
                                     band_adjustments={'mid': BandAdjustment(10.0, 0.5)})
        shifted = apply_learned_adjustments(profiles.BODY_PROFILE, learned)
        base = profiles.BODY_PROFILE.target_shape_db
        assert shifted.target_shape_db['mid'] == pytest.approx(base['mid'] + 1.5)
        assert shifted.target_shape_db['air'] == base['air']
        assert profiles.BODY_PROFILE.target_shape_db['mid'] == base['mid']

    def test_profile_specific_shift_adds(self):
        learned = LearnedProfileData(
            status='confident',
            band_adjustments={'air': BandAdjustment(5.0, 1.0)},
            profile_adjustments={'Body': {'air': BandAdjustment(5.0, 1.0)}},
        )
        shifted = apply_learned_adjustments(profiles.BODY_PROFILE, learned)
        base = profiles.BODY_PROFILE.target_shape_db['air']
        assert shifted.target_shape_db['air'] == pytest.approx(base + 3.0)
        other = apply_learned_adjustments(profiles.FEATURED_PROFILE, learned)
        assert other.target_shape_db['air'] == pytest.approx(
            profiles.FEATURED_PROFILE.target_shape_db['air'] + 1.5)

    def test_avoid_zone_capped(self):
        """Presence 27% against a 20% ceiling: 7 * 5 = 35 capped at 25."""
        tf = featured_features()
        zones = [AvoidZone('presence', 'above', 20.0)]
        assert avoid_zone_penalty(tf, zones) == pytest.approx(config.AVOID_ZONE_MAX_PENALTY)

        learned = LearnedProfileData(status='learning', avoid_zones=zones)
        result = score_against_profile(tf, profiles.FEATURED_PROFILE, learned)
        assert result.score == 75
        assert result.label == 'close'
        assert result.avoid_penalty == pytest.approx(25.0)

    def test_avoid_penalty_rounds_half_up(self):
        """100 - 1.5 lands on 98.5, which rounds up to 99."""
        learned = LearnedProfileData(status='learning', avoid_zones=[AvoidZone('smooth', 'above', 88.5)])
        result = score_against_profile(featured_features(), profiles.FEATURED_PROFILE, learned)
        assert result.avoid_penalty == pytest.approx(1.5)
        assert result.score == 99

    def test_avoid_zone_not_crossed(self):
        tf = featured_features()
        assert avoid_zone_penalty(tf, [AvoidZone('presence', 'below', 20.0)]) == 0.0
        assert avoid_zone_penalty(tf, [AvoidZone('unknown_metric', 'above', 0.0)]) == 0.0

    def test_avoid_zone_below(self):
        tf = featured_features()
        assert avoid_zone_penalty(tf, [AvoidZone('air', 'below', 4.0)]) == pytest.approx(5.0)

    def test_from_payload(self):
        payload = {
            'status': 'confident',
            'signalCount': 12,
            'bandAdjustments': {'mid': {'shift': 4, 'confidence': 2.0}, 'bogus': 3, 'air': -2},
            'avoidZones': [
                {'band': 'presence', 'direction': 'above', 'threshold': 30},
                {'band': 'air', 'direction': 'sideways', 'threshold': 2},
                'garbage',
            ],
            'gearSentiment': {'SM57': 3.0, 'R121': 'bad'},
            'ratioPreference': {'base': 0.7, 'feature': 0.3, 'confidence': 0.8},
        }
        learned = LearnedProfileData.from_payload(payload)
        assert learned.is_active
        assert learned.signal_count == 12
        assert learned.band_adjustments['mid'] == BandAdjustment(4.0, 1.0)
        assert learned.band_adjustments['air'] == BandAdjustment(-2.0, 1.0)
        assert 'bogus' not in learned.band_adjustments
        assert learned.avoid_zones == [AvoidZone('presence', 'above', 30.0)]
        assert learned.gear_sentiment == {'sm57': 1.0}
        assert learned.ratio_preference.label == '70/30'

    def test_from_payload_garbage(self):
        assert LearnedProfileData.from_payload(None).status == 'no_data'
        assert LearnedProfileData.from_payload({'status': 'wizard'}).status == 'no_data'
        assert not LearnedProfileData.from_payload([1, 2]).is_active


# =============================================================================
# BATCH PROFILES
# =============================================================================

def test_batch_profiles_need_enough_irs():
    feats = [featured_features(tiltDbPerOct=t) for t in (-1.0, -3.0, -5.0)]
    assert derive_batch_profiles(feats) == profiles.DEFAULT_PROFILES


def test_batch_profiles_need_tilt_spread():
    feats = [featured_features(tiltDbPerOct=-3.0 - 0.1 * i) for i in range(8)]
    assert derive_batch_profiles(feats) == profiles.DEFAULT_PROFILES


def test_batch_profiles_split_by_tilt():
    bright = [featured_features(tiltDbPerOct=t) for t in (-1.0, -1.5, -2.0)]
    dark = [body_features(tiltDbPerOct=t) for t in (-6.0, -6.5, -7.0)]
    derived = derive_batch_profiles(bright + dark)
    assert [p.name for p in derived] == ['Featured', 'Body']
    assert all(p.source == 'batch' for p in derived)
    assert derived[0].target_tilt > derived[1].target_tilt
    assert derived[0].target_shape_db['presence'] == pytest.approx(
        profiles.FEATURED_PROFILE.target_shape_db['presence'])


def test_speaker_profiles():
    rows = [(f'V30_SM57_{i}.wav', featured_features(tiltDbPerOct=-1.0 - i)) for i in range(6)]
    rows.append(('G12M_SM57_Cap.wav', body_features()))
    derived = profiles.derive_speaker_profiles(rows)
    assert [p.name for p in derived['V30']] == ['Featured (V30)', 'Body (V30)']
    assert derived['G12M'] == profiles.DEFAULT_PROFILES
