"""
Tests for feature engineering.

Covers:
- Technical indicator annotation (SMA, EMA, RSI, MACD, Bollinger)
- Feature vector layout and length
- Sample counts and targets
- Missing-value encoding
- Min/max normalization and scaler persistence
"""

import numpy as np
import pytest


# ---------------------------------------------------------------------------
# Technical indicators
# ---------------------------------------------------------------------------


class TestTechnicalIndicators:
    def test_short_series_is_not_annotated(self, make_bars):
        bars = make_bars(19)
        assert all(b.indicators is None for b in bars)

    def test_sma_starts_at_window(self, bars):
        closes = np.array([b.close for b in bars])
        assert bars[8].indicators.sma10 is None
        assert bars[9].indicators.sma10 == pytest.approx(closes[:10].mean())
        assert bars[18].indicators.sma20 is None
        assert bars[19].indicators.sma20 == pytest.approx(closes[:20].mean())

    def test_rsi_and_macd_thresholds(self, bars):
        assert bars[13].indicators.rsi is None
        assert 0.0 <= bars[14].indicators.rsi <= 100.0
        assert bars[25].indicators.macd is None
        ind = bars[26].indicators
        assert ind.macd is not None
        assert ind.macd_histogram == pytest.approx(ind.macd - ind.macd_signal)

    def test_bollinger_is_symmetric_around_sma20(self, bars):
        ind = bars[50].indicators
        assert ind.bb_middle == pytest.approx(ind.sma20)
        assert ind.bb_upper - ind.bb_middle == pytest.approx(ind.bb_middle - ind.bb_lower)
        assert ind.bb_upper >= ind.bb_lower

    def test_rsi_edge_cases(self):
        from crypto_prediction.features.technical import rsi

        flat = np.full(20, 50.0)
        assert rsi(flat, 15, 14) is None

        rising = np.arange(20, dtype=float)
        assert rsi(rising, 15, 14) == 100.0

    def test_ema_is_seeded_at_window_start(self):
        from crypto_prediction.features.technical import ema

        closes = np.array([10.0] * 5 + [20.0] * 10)
        # Window [5, 14] holds only 20s, so the seed is 20
        assert ema(closes, 14, 10) == pytest.approx(20.0)


# ---------------------------------------------------------------------------
# Feature extraction
# ---------------------------------------------------------------------------


class TestFeatureExtractor:
    def test_expected_length(self):
        from crypto_prediction.features.extractor import (
            expected_feature_length,
            feature_names,
        )

        assert expected_feature_length(60) == 7 * 60 + 15
        assert len(feature_names(60)) == expected_feature_length(60)
        assert feature_names(2)[:7] == [
            "close_t-2", "volume_t-2", "high_t-2", "low_t-2",
            "open_t-2", "vwap_t-2", "transactions_t-2",
        ]

    def test_sample_count(self, bars):
        from crypto_prediction.features.extractor import FeatureExtractor

        X, y = FeatureExtractor(60, 5).extract(bars)
        assert X.shape == (135, 435)
        assert y.shape == (135, 5)

    def test_targets_are_following_closes(self, bars):
        from crypto_prediction.features.extractor import FeatureExtractor

        _, y = FeatureExtractor(60, 5).extract(bars)
        expected = [b.close for b in bars[61:66]]
        np.testing.assert_allclose(y[0], expected)

    def test_price_block_is_oldest_first(self, bars):
        from crypto_prediction.features.extractor import FeatureExtractor

        X, _ = FeatureExtractor(10, 3).extract(bars)
        first = bars[0]
        np.testing.assert_allclose(
            X[0, :7],
            [first.close, first.volume, first.high, first.low,
             first.open, first.vwap, first.transactions],
        )

    def test_insufficient_data(self, make_bars):
        from crypto_prediction.errors import InsufficientDataError
        from crypto_prediction.features.extractor import FeatureExtractor

        extractor = FeatureExtractor(60, 5)
        with pytest.raises(InsufficientDataError):
            extractor.extract(make_bars(65))

        X, _ = extractor.extract(make_bars(66))
        assert X.shape[0] == 1

    def test_missing_indicators_encode_as_zero(self, make_bars):
        from crypto_prediction.features.extractor import FeatureExtractor

        raw = make_bars(40, with_indicators=False)
        X, _ = FeatureExtractor(10, 3).extract(raw)
        indicator_block = X[:, 70:81]
        assert X.shape[1] == 85
        assert np.all(indicator_block == 0.0)

    def test_missing_vwap_falls_back_to_close(self, make_bars):
        from dataclasses import replace

        from crypto_prediction.features.extractor import FeatureExtractor

        raw = [replace(b, vwap=None, transactions=None) for b in make_bars(30)]
        X, _ = FeatureExtractor(10, 3).extract(raw)
        assert X[0, 5] == pytest.approx(raw[0].close)
        assert X[0, 6] == 0.0

    def test_latest_vector_uses_last_bar(self, bars):
        from crypto_prediction.features.extractor import FeatureExtractor

        extractor = FeatureExtractor(60, 5)
        vector = extractor.latest_vector(bars)
        assert vector.shape == (435,)
        assert vector[420] == pytest.approx(bars[-1].indicators.sma10)
        assert vector[0] == pytest.approx(bars[-61].close)

    def test_latest_vector_needs_lookback(self, make_bars):
        from crypto_prediction.errors import InsufficientDataError
        from crypto_prediction.features.extractor import FeatureExtractor

        with pytest.raises(InsufficientDataError):
            FeatureExtractor(60, 5).latest_vector(make_bars(60))

    def test_derived_values(self, bars):
        from crypto_prediction.features.extractor import FeatureExtractor

        vector = FeatureExtractor(10, 3).latest_vector(bars)
        last, prev, base = bars[-1], bars[-2], bars[-6]
        assert vector[-4] == pytest.approx(last.price_change_percent)
        assert vector[-3] == pytest.approx(last.volatility)
        assert vector[-2] == pytest.approx((last.volume - prev.volume) / prev.volume * 100)
        assert vector[-1] == pytest.approx((last.close - base.close) / base.close * 100)


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


class TestNormalizer:
    def test_training_matrix_maps_to_unit_range(self):
        from crypto_prediction.features.normalizer import Normalizer

        np.random.seed(42)
        matrix = np.random.randn(50, 4) * 100
        scaler = Normalizer.fit(matrix)
        scaled = Normalizer.transform(matrix, scaler)
        assert scaled.min() == pytest.approx(0.0)
        assert scaled.max() == pytest.approx(1.0)

    def test_constant_column_maps_to_zero(self):
        from crypto_prediction.features.normalizer import Normalizer

        matrix = np.array([[1.0, 7.0], [3.0, 7.0], [5.0, 7.0]])
        scaled = Normalizer.transform(matrix, Normalizer.fit(matrix))
        assert np.all(scaled[:, 1] == 0.0)
        np.testing.assert_allclose(scaled[:, 0], [0.0, 0.5, 1.0])

    def test_out_of_range_values_are_not_clipped(self):
        from crypto_prediction.features.normalizer import Normalizer

        scaler = Normalizer.fit([[0.0], [10.0]])
        assert Normalizer.transform([[20.0]], scaler)[0, 0] == pytest.approx(2.0)

    def test_inverse_transform(self):
        from crypto_prediction.features.normalizer import Normalizer

        scaler = Normalizer.fit([[10.0, 5.0], [30.0, 5.0]])
        assert Normalizer.inverse_transform(0.5, scaler, 0) == pytest.approx(20.0)
        assert Normalizer.inverse_transform(0.9, scaler, 1) == pytest.approx(5.0)

    def test_ragged_rows_raise(self):
        from crypto_prediction.errors import LengthMismatchError
        from crypto_prediction.features.normalizer import Normalizer

        with pytest.raises(LengthMismatchError) as exc_info:
            Normalizer.fit([[1.0, 2.0], [3.0]])
        assert exc_info.value.row == 1

    def test_empty_matrix_raises(self):
        from crypto_prediction.errors import InsufficientDataError
        from crypto_prediction.features.normalizer import Normalizer

        with pytest.raises(InsufficientDataError):
            Normalizer.fit([])

    def test_width_mismatch_raises(self):
        from crypto_prediction.errors import ShapeMismatchError
        from crypto_prediction.features.normalizer import Normalizer

        scaler = Normalizer.fit([[1.0, 2.0], [3.0, 4.0]])
        with pytest.raises(ShapeMismatchError):
            Normalizer.transform([[1.0, 2.0, 3.0]], scaler)

    def test_scaler_serialization_keeps_checksum(self):
        from crypto_prediction.features.normalizer import Normalizer, Scaler

        np.random.seed(42)
        scaler = Normalizer.fit(np.random.rand(10, 3))
        restored = Scaler.from_dict(scaler.to_dict())
        assert restored == scaler
        assert restored.checksum() == scaler.checksum()
