"""Tests for the indicator engine and entry signal rules."""

import pytest

from entrywatch_core.engine import (
    IndicatorEngine,
    InsufficientDataError,
    enhance_with_market_data,
    overall_quality,
    strength_from_deviation,
)
from entrywatch_core.models import (
    EntryQuality,
    EntrySignal,
    EntryTechnique,
    IndicatorSnapshot,
    MarketData,
    PriceHistory,
    SignalStrength,
    TrendDirection,
)

from conftest import make_history


def _signal(confidence: float, strength: SignalStrength = SignalStrength.MODERATE) -> EntrySignal:
    return EntrySignal(
        technique=EntryTechnique.RSI_OVERSOLD,
        strength=strength,
        description="test",
        target_price=1.0,
        stop_loss=1.0,
        confidence=confidence,
    )


def _find(snapshot: IndicatorSnapshot, technique: EntryTechnique) -> EntrySignal | None:
    for signal in snapshot.entry_signals:
        if signal.technique == technique:
            return signal
    return None


class TestValidation:
    """Degenerate histories are rejected."""

    @pytest.fixture
    def engine(self):
        return IndicatorEngine()

    def test_empty_history(self, engine):
        with pytest.raises(InsufficientDataError):
            engine.compute(PriceHistory())

    def test_single_point(self, engine):
        with pytest.raises(InsufficientDataError):
            engine.compute(make_history([100.0]))

    def test_non_positive_closes(self, engine):
        with pytest.raises(InsufficientDataError):
            engine.compute(make_history([0.0, 0.0, 0.0]))

    def test_insufficient_data_is_value_error(self):
        assert issubclass(InsufficientDataError, ValueError)


class TestIndicatorEngine:
    """Tests for snapshot computation."""

    @pytest.fixture
    def engine(self):
        return IndicatorEngine()

    def test_snapshot_fields(self, engine):
        history = make_history([100.0 + i for i in range(60)])
        snapshot = engine.compute(history)

        assert snapshot.price == 159.0
        assert snapshot.sma10 == pytest.approx(154.5)
        assert snapshot.sma50 == pytest.approx(134.5)
        assert snapshot.ema10 is not None
        assert snapshot.ema50 is not None
        assert 0.0 <= snapshot.rsi <= 100.0
        assert snapshot.resistance_level > snapshot.support_level
        assert snapshot.resistance_level > snapshot.fib_38 > snapshot.fib_50 > snapshot.fib_61
        assert snapshot.synthetic is False

    def test_accepts_plain_point_sequence(self, engine):
        history = make_history([100.0 + i for i in range(30)])
        snapshot = engine.compute(list(history.points))
        assert snapshot.price == 129.0

    def test_rsi_defaults_to_50_on_short_history(self, engine):
        snapshot = engine.compute(make_history([100.0 + i for i in range(10)]))
        assert snapshot.rsi == 50.0

    def test_short_history_macd_signal_falls_back(self, engine):
        """Without enough bars for MACD, no crossover can fire."""
        snapshot = engine.compute(make_history([100.0 + i for i in range(20)]))
        assert snapshot.macd == 0.0
        assert snapshot.macd_signal == 0.0
        assert _find(snapshot, EntryTechnique.MACD_BULLISH_CROSSOVER) is None

    def test_uptrend_is_bullish_with_golden_cross(self, engine):
        snapshot = engine.compute(make_history([100.0 + i for i in range(60)]))

        assert snapshot.trend == TrendDirection.BULLISH
        golden = _find(snapshot, EntryTechnique.MOVING_AVERAGE_CROSSOVER)
        assert golden is not None
        assert golden.strength == SignalStrength.VERY_STRONG
        assert golden.confidence == pytest.approx(0.90)
        assert golden.target_price == pytest.approx(159.0 * 1.10)
        assert golden.stop_loss == pytest.approx(159.0 * 0.90)

    def test_downtrend_is_bearish(self, engine):
        snapshot = engine.compute(make_history([200.0 - i for i in range(60)]))
        assert snapshot.trend == TrendDirection.BEARISH
        assert _find(snapshot, EntryTechnique.MOVING_AVERAGE_CROSSOVER) is None

    def test_trend_fallback_without_sma50(self, engine):
        """Last 10 closes vs the 10 before them, 2% band."""
        closes = [100.0] * 15 + [110.0] * 10
        snapshot = engine.compute(make_history(closes))

        assert snapshot.sma50 is None
        assert snapshot.trend == TrendDirection.BULLISH

        closes = [100.0] * 15 + [101.0] * 10
        assert engine.compute(make_history(closes)).trend == TrendDirection.NEUTRAL

        closes = [100.0] * 15 + [90.0] * 10
        assert engine.compute(make_history(closes)).trend == TrendDirection.BEARISH


class TestEntrySignals:
    """Tests for the individual entry signal rules."""

    @pytest.fixture
    def engine(self):
        return IndicatorEngine()

    def test_rsi_oversold(self, engine):
        closes = [100.0 * 0.98 ** i for i in range(40)]
        snapshot = engine.compute(make_history(closes))

        assert snapshot.rsi < 30
        signal = _find(snapshot, EntryTechnique.RSI_OVERSOLD)
        assert signal is not None
        assert signal.strength == SignalStrength.VERY_STRONG
        assert signal.confidence == pytest.approx(0.85)
        assert signal.target_price == pytest.approx(closes[-1] * 1.05)
        assert signal.stop_loss == pytest.approx(closes[-1] * 0.95)

    def test_no_rsi_signal_when_not_oversold(self, engine):
        snapshot = engine.compute(make_history([100.0 + i for i in range(40)]))
        assert _find(snapshot, EntryTechnique.RSI_OVERSOLD) is None

    def test_volume_breakout(self, engine):
        closes = [100.0] * 29 + [102.0]
        volumes = [1000.0] * 29 + [5000.0]
        snapshot = engine.compute(make_history(closes, volumes))

        assert snapshot.volume_ratio == pytest.approx(5000.0 / 1200.0)
        assert snapshot.current_volume == 5000.0
        assert snapshot.avg_volume20 == pytest.approx(1200.0)
        signal = _find(snapshot, EntryTechnique.VOLUME_BREAKOUT)
        assert signal is not None
        assert signal.strength == SignalStrength.VERY_STRONG
        assert signal.confidence == pytest.approx(0.95)
        assert signal.target_price == pytest.approx(102.0 * 1.15)
        assert signal.stop_loss == pytest.approx(102.0 * 0.88)

    def test_no_volume_breakout_on_down_bar(self, engine):
        closes = [100.0] * 29 + [98.0]
        volumes = [1000.0] * 29 + [5000.0]
        snapshot = engine.compute(make_history(closes, volumes))
        assert _find(snapshot, EntryTechnique.VOLUME_BREAKOUT) is None

    def test_support_bounce(self, engine):
        closes = [105.0] * 19 + [100.0]
        snapshot = engine.compute(make_history(closes, spread=0.0))

        assert snapshot.support_level == 100.0
        assert snapshot.resistance_level == 105.0
        signal = _find(snapshot, EntryTechnique.SUPPORT_BOUNCE)
        assert signal is not None
        assert signal.strength == SignalStrength.VERY_STRONG
        assert signal.confidence == pytest.approx(0.75)
        assert signal.target_price == 105.0
        assert signal.stop_loss == pytest.approx(95.0)

    def test_fibonacci_retracement(self, engine):
        """Rally 100 -> 200, pull back to the 50% level."""
        closes = [100.0 + 10 * i for i in range(11)] + [180.0, 160.0, 150.0]
        snapshot = engine.compute(make_history(closes, spread=0.0))

        assert snapshot.fib_50 == pytest.approx(150.0)
        signal = _find(snapshot, EntryTechnique.FIBONACCI_RETRACEMENT)
        assert signal is not None
        assert "50%" in signal.description
        assert signal.confidence == pytest.approx(0.80)
        assert signal.target_price == pytest.approx(snapshot.fib_38)
        assert signal.stop_loss == pytest.approx(150.0 * 0.97)

    def test_synthetic_history_lowers_confidence(self, engine):
        closes = [100.0] * 29 + [102.0]
        volumes = [1000.0] * 29 + [5000.0]
        snapshot = engine.compute(make_history(closes, volumes, synthetic=True))

        assert snapshot.synthetic is True
        signal = _find(snapshot, EntryTechnique.VOLUME_BREAKOUT)
        assert signal.confidence == pytest.approx(0.95 * 0.8)

    def test_quality_matches_signals(self, engine):
        snapshot = engine.compute(make_history([100.0 * 0.98 ** i for i in range(40)]))
        assert snapshot.overall_quality == overall_quality(snapshot.entry_signals)
        assert "Entry quality" in snapshot.summary()


class TestOverallQuality:
    """Tests for the strength-weighted quality vote."""

    def test_no_signals_is_poor(self):
        assert overall_quality([]) == EntryQuality.POOR

    def test_thresholds(self):
        assert overall_quality([_signal(0.90)]) == EntryQuality.EXCELLENT
        assert overall_quality([_signal(0.80)]) == EntryQuality.GOOD
        assert overall_quality([_signal(0.65)]) == EntryQuality.AVERAGE
        assert overall_quality([_signal(0.45)]) == EntryQuality.POOR
        assert overall_quality([_signal(0.30)]) == EntryQuality.VERY_POOR

    def test_weighted_by_strength(self):
        """(0.9 * 1.0 + 0.5 * 0.2) / 1.2 = 0.833"""
        signals = [
            _signal(0.9, SignalStrength.VERY_STRONG),
            _signal(0.5, SignalStrength.VERY_WEAK),
        ]
        assert overall_quality(signals) == EntryQuality.GOOD

    def test_strength_from_deviation(self):
        assert strength_from_deviation(1.5) == SignalStrength.VERY_STRONG
        assert strength_from_deviation(0.8) == SignalStrength.STRONG
        assert strength_from_deviation(0.5) == SignalStrength.MODERATE
        assert strength_from_deviation(0.3) == SignalStrength.WEAK
        assert strength_from_deviation(0.1) == SignalStrength.VERY_WEAK
        assert strength_from_deviation(-2.0) == SignalStrength.VERY_WEAK


class TestMarketEnhancement:
    """Tests for enhance_with_market_data."""

    @pytest.fixture
    def neutral(self):
        return IndicatorSnapshot(price=100.0)

    def test_promotes_neutral_trend(self, neutral):
        bullish = enhance_with_market_data(neutral, MarketData(price_change_7d=8.0))
        bearish = enhance_with_market_data(neutral, MarketData(price_change_7d=-8.0))
        assert bullish.trend == TrendDirection.BULLISH
        assert bearish.trend == TrendDirection.BEARISH
        assert neutral.trend == TrendDirection.NEUTRAL

    def test_small_change_keeps_neutral(self, neutral):
        result = enhance_with_market_data(neutral, MarketData(price_change_7d=3.0))
        assert result.trend == TrendDirection.NEUTRAL

    def test_existing_trend_kept(self):
        snapshot = IndicatorSnapshot(price=100.0, trend=TrendDirection.BEARISH)
        result = enhance_with_market_data(snapshot, MarketData(price_change_7d=12.0))
        assert result.trend == TrendDirection.BEARISH

    def test_missing_market_data(self, neutral):
        assert enhance_with_market_data(neutral, None) is neutral
        assert enhance_with_market_data(neutral, MarketData()) is neutral

    @pytest.fixture
    def up_bar(self):
        # Flat bar volumes of 1000, last close up 2%
        return IndicatorEngine().compute(make_history([100.0] * 29 + [102.0]))

    def test_market_volume_replaces_bar_volume(self, up_bar):
        assert _find(up_bar, EntryTechnique.VOLUME_BREAKOUT) is None

        market = MarketData(total_volume=102.0 * 3000.0, price_change_24h=2.0)
        result = enhance_with_market_data(up_bar, market)

        assert result.current_volume == pytest.approx(3000.0)
        assert result.avg_volume20 == up_bar.avg_volume20
        assert result.volume_ratio == pytest.approx(3.0)
        signal = _find(result, EntryTechnique.VOLUME_BREAKOUT)
        assert signal is not None
        assert signal.strength == SignalStrength.VERY_STRONG
        assert result.overall_quality == overall_quality(result.entry_signals)
        assert up_bar.current_volume == 1000.0

    def test_weak_market_volume_drops_breakout(self):
        closes = [100.0] * 29 + [102.0]
        volumes = [1000.0] * 29 + [5000.0]
        snapshot = IndicatorEngine().compute(make_history(closes, volumes))
        assert _find(snapshot, EntryTechnique.VOLUME_BREAKOUT) is not None

        result = enhance_with_market_data(snapshot, MarketData(total_volume=102.0 * 1000.0, price_change_24h=2.0))

        assert result.volume_ratio == pytest.approx(1000.0 / 1200.0)
        assert _find(result, EntryTechnique.VOLUME_BREAKOUT) is None
        assert len(result.entry_signals) == len(snapshot.entry_signals) - 1

    def test_no_breakout_when_day_is_down(self, up_bar):
        market = MarketData(total_volume=102.0 * 3000.0, price_change_24h=-1.5)
        result = enhance_with_market_data(up_bar, market)

        assert result.volume_ratio == pytest.approx(3.0)
        assert _find(result, EntryTechnique.VOLUME_BREAKOUT) is None

    def test_last_bar_decides_without_day_change(self, up_bar):
        assert up_bar.price_change_pct == pytest.approx(2.0)

        result = enhance_with_market_data(up_bar, MarketData(total_volume=102.0 * 3000.0))
        assert _find(result, EntryTechnique.VOLUME_BREAKOUT) is not None
