"""Tests for the five-factor integrity scorer and its configuration."""

import datetime
import itertools

import pytest

from database import DEFAULT_THRESHOLDS, init_db
from domain import MotionSample, WifiObservation
from errors import ConfigError
from integrity import (
    ACCURACY_MAX_POINTS,
    DEFAULT_CONFIG,
    DISTANCE_MAX_POINTS,
    SPEED_MAX_POINTS,
    TIME_MAX_POINTS,
    WIFI_MAX_POINTS,
    ScoringConfig,
    load_scoring_config,
    match_ssids,
    score_accuracy,
    score_distance,
    score_motion,
    score_time,
    score_wifi,
    time_diff_ms,
    verify_integrity,
)
from models import Config
from tests.checkin_test_fixtures import CAFE_PLACE, SERVER_TIME, fix_at


def _wifi(*ssids):
    return WifiObservation(ssids=frozenset(ssids))


# =====================================================================
# Example scenarios
# =====================================================================

class TestScenarios:
    def test_at_center_with_one_ssid(self, place, server_time):
        result = verify_integrity(
            fix_at(0.0, accuracy=5.0),
            place,
            wifi=_wifi("DropTop_Guest"),
            server_time=server_time,
        )
        assert result.breakdown.to_dict() == {
            "distance": 40, "wifi": 12, "time": 15, "accuracy": 10, "speed": 5,
        }
        assert result.score == 82
        assert result.valid is True
        assert result.details.distance_meters == 0.0
        assert result.details.matched_ssids == ("DropTop_Guest",)
        assert result.details.time_diff_ms == 0

    def test_ten_km_away_is_rejected(self, place, server_time):
        result = verify_integrity(
            fix_at(10_000.0, accuracy=5.0),
            place,
            wifi=_wifi("DropTop_Guest"),
            motion=MotionSample(0.1, 0.1, 0.1),
            server_time=server_time,
        )
        assert result.breakdown.distance == 0
        assert result.details.distance_meters == pytest.approx(10_000.0, rel=1e-6)
        assert result.score < 60
        assert result.valid is False

    def test_naive_server_time_read_as_utc(self, place):
        result = verify_integrity(fix_at(0.0), place, server_time=SERVER_TIME.replace(tzinfo=None))
        assert result.details.time_diff_ms == 0
        assert result.breakdown.time == 15

    def test_far_away_fails_even_with_strong_other_signals(self, place, server_time):
        result = verify_integrity(
            fix_at(10_000.0, accuracy=1.0),
            place,
            wifi=_wifi("DropTop_Guest", "DropTop_5G"),
            motion=MotionSample(0.0, 0.0, 0.0),
            server_time=server_time,
        )
        assert result.breakdown.distance == 0
        assert result.score == 24 + 15 + 10 + 10
        assert result.valid is False

    def test_poor_accuracy_scores_zero(self, place, server_time):
        result = verify_integrity(fix_at(0.0, accuracy=100.0), place, server_time=server_time)
        assert result.breakdown.accuracy == 0
        assert result.details.gps_accuracy == 100.0

    def test_rejected_result_still_has_full_breakdown(self, place, server_time):
        stale = server_time + datetime.timedelta(minutes=10)
        result = verify_integrity(fix_at(500.0, accuracy=80.0), place, server_time=stale)
        assert result.valid is False
        assert set(result.to_dict()["breakdown"]) == {"distance", "wifi", "time", "accuracy", "speed"}
        assert result.to_dict()["details"]["time_diff_ms"] == 600_000

    def test_default_server_time_is_now(self, place):
        now = datetime.datetime.now(datetime.timezone.utc)
        fix = fix_at(0.0)
        fix = type(fix)(fix.latitude, fix.longitude, fix.accuracy, now)
        result = verify_integrity(fix, place)
        assert result.breakdown.time == 15


# =====================================================================
# Factor 1: distance
# =====================================================================

class TestDistanceScore:
    @pytest.mark.parametrize("distance, expected", [
        (0.0, 40), (20.0, 40), (20.01, 35), (30.0, 35), (35.0, 30),
        (40.0, 30), (45.0, 25), (50.0, 25),
    ])
    def test_inside_fence_tiers(self, distance, expected):
        assert score_distance(distance, 50.0) == expected

    @pytest.mark.parametrize("distance, expected", [
        (50.5, 19), (55.0, 15), (60.0, 10), (69.0, 1), (70.0, 0), (70.5, 0), (10_000.0, 0),
    ])
    def test_buffer_band_decay(self, distance, expected):
        assert score_distance(distance, 50.0) == expected

    def test_small_fence_uses_buffer_immediately(self):
        assert score_distance(10.0, 10.0) == 40
        assert score_distance(15.0, 10.0) == 15

    def test_large_fence_edge_points(self):
        assert score_distance(80.0, 100.0) == 25

    def test_never_increases_beyond_fence(self):
        scores = [score_distance(50.0 + 0.25 * i, 50.0) for i in range(200)]
        assert all(a >= b for a, b in zip(scores, scores[1:]))


# =====================================================================
# Factor 2: Wi-Fi
# =====================================================================

class TestWifiScore:
    @pytest.mark.parametrize("matches, expected", [(0, 0), (1, 12), (2, 24), (3, 25), (10, 25)])
    def test_points_per_match_with_cap(self, matches, expected):
        assert score_wifi(matches) == expected

    def test_non_decreasing_in_matches(self):
        scores = [score_wifi(n) for n in range(8)]
        assert scores == sorted(scores)

    def test_match_is_set_intersection(self):
        place = CAFE_PLACE
        assert match_ssids(_wifi("DropTop_5G", "DropTop_Guest", "other"), place) == (
            "DropTop_5G", "DropTop_Guest",
        )

    def test_no_observation_or_no_registration(self):
        assert match_ssids(None, CAFE_PLACE) == ()
        assert match_ssids(_wifi(), CAFE_PLACE) == ()
        bare = type(CAFE_PLACE)(id="p", latitude=0.0, longitude=0.0, geofence_radius=50.0)
        assert match_ssids(_wifi("DropTop_Guest"), bare) == ()


# =====================================================================
# Factor 3: time
# =====================================================================

class TestTimeScore:
    @pytest.mark.parametrize("diff_ms, expected", [
        (0, 15), (60_000, 15), (60_001, 14), (120_000, 7), (179_999, 0), (180_000, 0), (3_600_000, 0),
    ])
    def test_window_and_decay(self, diff_ms, expected):
        assert score_time(diff_ms) == expected

    def test_diff_is_absolute(self):
        later = SERVER_TIME + datetime.timedelta(seconds=90)
        assert time_diff_ms(SERVER_TIME, later) == 90_000
        assert time_diff_ms(later, SERVER_TIME) == 90_000

    def test_diff_truncates_to_whole_milliseconds(self):
        later = SERVER_TIME + datetime.timedelta(microseconds=2_999)
        assert time_diff_ms(SERVER_TIME, later) == 2


# =====================================================================
# Factors 4 and 5: accuracy, motion
# =====================================================================

class TestAccuracyScore:
    @pytest.mark.parametrize("accuracy, expected", [
        (0.0, 10), (10.0, 10), (10.5, 8), (20.0, 8), (30.0, 6), (50.0, 4), (50.1, 0), (100.0, 0),
    ])
    def test_steps(self, accuracy, expected):
        assert score_accuracy(accuracy) == expected

    def test_better_accuracy_never_scores_lower(self):
        values = [score_accuracy(a / 2) for a in range(0, 240)]
        assert all(a >= b for a, b in zip(values, values[1:]))


class TestMotionScore:
    def test_absent_motion_gets_benefit_of_doubt(self):
        assert score_motion(None) == 5

    @pytest.mark.parametrize("sample, expected", [
        ((0.0, 0.0, 0.0), 10),
        ((0.3, 0.3, 0.0), 10),
        ((0.5, 0.0, 0.0), 8),
        ((1.0, 0.0, 0.0), 8),
        ((1.2, 1.2, 0.0), 5),
        ((3.0, 0.0, 0.0), 0),
        ((6.0, 8.0, 0.0), 0),
    ])
    def test_magnitude_bands(self, sample, expected):
        assert score_motion(MotionSample(*sample)) == expected

    def test_magnitude_reported_in_details(self, place, server_time):
        result = verify_integrity(fix_at(0.0), place, motion=MotionSample(3.0, 4.0, 0.0), server_time=server_time)
        assert result.details.motion_magnitude == pytest.approx(5.0)
        assert result.breakdown.speed == 0


# =====================================================================
# Invariants over many inputs
# =====================================================================

class TestInvariants:
    def test_bounds_sum_and_threshold(self, place, server_time):
        distances = [0.0, 25.0, 48.0, 58.0, 75.0, 2_000.0]
        accuracies = [3.0, 15.0, 45.0, 300.0]
        motions = [None, MotionSample(0.1, 0.0, 0.0), MotionSample(2.0, 0.0, 0.0), MotionSample(9.0, 0.0, 0.0)]
        wifis = [None, _wifi("DropTop_Guest"), _wifi("DropTop_Guest", "DropTop_5G")]
        offsets = [0, 75, 200]

        for d, acc, motion, wifi, off in itertools.product(distances, accuracies, motions, wifis, offsets):
            fix = fix_at(d, accuracy=acc, seconds=off)
            result = verify_integrity(fix, place, wifi=wifi, motion=motion, server_time=server_time)
            b = result.breakdown
            assert 0 <= b.distance <= DISTANCE_MAX_POINTS
            assert 0 <= b.wifi <= WIFI_MAX_POINTS
            assert 0 <= b.time <= TIME_MAX_POINTS
            assert 0 <= b.accuracy <= ACCURACY_MAX_POINTS
            assert 0 <= b.speed <= SPEED_MAX_POINTS
            assert result.score == b.distance + b.wifi + b.time + b.accuracy + b.speed
            assert 0 <= result.score <= 100
            assert result.valid == (result.score >= 60)


# =====================================================================
# Configuration
# =====================================================================

class TestScoringConfig:
    def test_overrides_parse_numbers_and_tiers(self):
        config = ScoringConfig.from_overrides({
            "pass_threshold": "70",
            "distance_buffer_m": "30.5",
            "accuracy_tiers": "20:10, 5:9",
            "unrelated_key": "ignored",
        })
        assert config.pass_threshold == 70
        assert config.distance_buffer_m == 30.5
        assert config.accuracy_tiers == ((5.0, 9), (20.0, 10))
        assert config.motion_tiers == DEFAULT_CONFIG.motion_tiers

    @pytest.mark.parametrize("overrides", [
        {"pass_threshold": "sixty"},
        {"distance_tiers": "20-40"},
        {"motion_tiers": ""},
    ])
    def test_bad_values_raise(self, overrides):
        with pytest.raises(ConfigError):
            ScoringConfig.from_overrides(overrides)

    def test_configured_points_are_clamped_to_caps(self):
        config = ScoringConfig(distance_tiers=((20.0, 90),), motion_absent_points=50)
        assert score_distance(0.0, 50.0, config) == DISTANCE_MAX_POINTS
        assert score_motion(None, config) == SPEED_MAX_POINTS

    def test_pass_threshold_drives_verdict(self, place, server_time):
        strict = ScoringConfig(pass_threshold=90)
        result = verify_integrity(fix_at(0.0), place, wifi=_wifi("DropTop_Guest"), server_time=server_time, config=strict)
        assert result.score == 82
        assert result.valid is False

    def test_seeded_table_matches_defaults(self, engine, db):
        init_db(bind=engine)
        assert db.query(Config).count() > 0
        assert load_scoring_config(db) == DEFAULT_CONFIG

    def test_reseeding_keeps_operator_overrides(self, engine, db):
        db.add(Config(key="pass_threshold", value="75"))
        db.commit()
        init_db(bind=engine)
        init_db(bind=engine)
        assert db.query(Config).count() == len(DEFAULT_THRESHOLDS)
        assert load_scoring_config(db).pass_threshold == 75

    def test_empty_table_falls_back_to_defaults(self, db):
        assert load_scoring_config(db) == DEFAULT_CONFIG

    def test_table_override_is_applied(self, db):
        db.add(Config(key="motion_absent_points", value="0"))
        db.add(Config(key="distance_tiers", value="10:40,25:30"))
        db.commit()
        config = load_scoring_config(db)
        assert config.motion_absent_points == 0
        assert score_distance(20.0, 50.0, config) == 30
        assert score_motion(None, config) == 0
