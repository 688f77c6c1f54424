import pytest

from decision_service.engine import apply_decision, total_value
from decision_service.rules import decide, recommend, value_fraction
from shared.config import Thresholds
from shared.constants import ADVICE_BUY, ADVICE_MONITOR, ADVICE_SELL
from shared.models import Hold, Holding, Liquidate, PortfolioState, Quote, Rebalance

TH = Thresholds()


def pha(quantity=250.0):
    return Holding("PHA", quantity, purchase_price=0.20, stop_loss_pct=0.20)


class TestDecide:
    """Hard triggers: stop-loss first, then allocation cap."""

    def test_price_above_stop_loss_holds(self):
        assert decide(pha(), Quote("PHA", price=0.24), 1000.0, TH) == Hold()

    def test_price_below_stop_loss_liquidates_everything(self):
        assert decide(pha(), Quote("PHA", price=0.15), 1000.0, TH) == Liquidate(quantity=250.0, price=0.15)

    def test_price_at_stop_loss_liquidates(self):
        assert isinstance(decide(pha(), Quote("PHA", price=0.16), 1000.0, TH), Liquidate)

    def test_stop_loss_ignores_bullish_sentiment(self):
        quote = Quote("PHA", price=0.16, sentiment_score=0.9)
        assert decide(pha(), quote, 1000.0, TH) == Liquidate(quantity=250.0, price=0.16)

    def test_stop_loss_wins_over_rebalance(self):
        # holding is 100 % of the portfolio and below its stop
        h = pha()
        dec = decide(h, Quote("PHA", price=0.10), h.value(0.10), TH)
        assert isinstance(dec, Liquidate)

    def test_unavailable_price_holds(self):
        assert decide(pha(), Quote("PHA"), 1000.0, TH) == Hold()

    def test_empty_holding_holds(self):
        assert decide(pha(0.0), Quote("PHA", price=0.01), 1000.0, TH) == Hold()

    def test_over_allocation_rebalances_to_exact_cap(self):
        h = Holding("SUI", 65.0, purchase_price=1.0, stop_loss_pct=0.2)
        dec = decide(h, Quote("SUI", price=1.0), 100.0, TH)
        assert isinstance(dec, Rebalance)
        assert dec.delta_quantity == pytest.approx(-5.0)
        assert dec.price == 1.0

        state = PortfolioState(holdings=[h, Holding("PHA", 35.0, 1.0, 0.2)])
        after = apply_decision(state, "SUI", dec)
        prices = {"SUI": 1.0, "PHA": 1.0}
        frac = value_fraction(after.holding("SUI"), 1.0, total_value(after, prices))
        assert frac == pytest.approx(0.60)
        assert total_value(after, prices) == pytest.approx(100.0)

    def test_exactly_at_cap_holds(self):
        h = Holding("SUI", 60.0, purchase_price=1.0, stop_loss_pct=0.2)
        assert decide(h, Quote("SUI", price=1.0), 100.0, TH) == Hold()

    def test_zero_total_value_never_rebalances(self):
        assert value_fraction(pha(), 0.24, 0.0) == 0.0

    def test_unknown_total_holds_over_cap(self):
        # PHA alone would be 100 % of a partially priced portfolio
        assert decide(pha(), Quote("PHA", price=0.24), None, TH) == Hold()

    def test_unknown_total_still_stops_loss(self):
        assert decide(pha(), Quote("PHA", price=0.15), None, TH) == Liquidate(quantity=250.0, price=0.15)


class TestRecommend:
    @pytest.mark.parametrize("score, expected", [
        (0.75, ADVICE_BUY),
        (0.70, ADVICE_BUY),
        (0.25, ADVICE_SELL),
        (0.30, ADVICE_SELL),
        (0.50, ADVICE_MONITOR),
    ])
    def test_labels(self, score, expected):
        assert recommend(score, 0.7, 0.3) == expected

    def test_absent_score_has_no_label(self):
        assert recommend(None, 0.7, 0.3) is None
