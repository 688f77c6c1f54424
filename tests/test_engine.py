import pytest

from decision_service import engine as E
from shared.config import HoldingSpec, Thresholds
from shared.errors import InvariantViolation
from shared.models import Hold, LedgerEntry, Liquidate, PortfolioState, Quote, Rebalance

SPECS = (
    HoldingSpec("AAA", 65.0, 1.0, 0.2),
    HoldingSpec("BBB", 35.0, 1.0, 0.2),
)


def _genesis(cash=0.0):
    return E.genesis_state(SPECS, cash)


def test_genesis_state_mirrors_config():
    state = _genesis(12.5)
    assert [h.symbol for h in state.holdings] == ["AAA", "BBB"]
    assert state.cash == 12.5
    assert state.last_seq == 0


def test_evaluate_uses_tick_start_total():
    quotes = {"AAA": Quote("AAA", price=1.0), "BBB": Quote("BBB", price=1.0)}
    total, decisions = E.evaluate(_genesis(), quotes, Thresholds())
    assert total == pytest.approx(100.0)
    kinds = dict((s, d.kind) for s, d in decisions)
    assert kinds == {"AAA": "rebalance", "BBB": "hold"}


def test_evaluate_missing_quote_holds():
    total, decisions = E.evaluate(_genesis(), {"AAA": Quote("AAA", price=1.0)}, Thresholds())
    # BBB has never been priced: no total, so AAA (65 of 65) is not rebalanced
    assert total is None
    assert dict(decisions) == {"AAA": Hold(), "BBB": Hold()}


def test_evaluate_missing_quote_still_stops_loss():
    quotes = {"AAA": Quote("AAA", price=0.5)}
    total, decisions = E.evaluate(_genesis(), quotes, Thresholds())
    assert total is None
    assert dict(decisions)["AAA"] == Liquidate(65.0, 0.5)


def test_valuation_falls_back_to_last_price():
    state = _genesis()
    state.last_prices = {"BBB": 2.0}
    prices = E.valuation_prices(state, {"AAA": Quote("AAA", price=1.0), "BBB": Quote("BBB")})
    assert prices == {"AAA": 1.0, "BBB": 2.0}


class TestApplyDecision:
    def test_hold_is_a_no_op(self):
        state = _genesis()
        assert E.apply_decision(state, "AAA", Hold()) is state

    def test_liquidate_removes_holding_and_credits_cash(self):
        state = _genesis()
        after = E.apply_decision(state, "AAA", Liquidate(65.0, 0.5))
        assert after.holding("AAA") is None
        assert after.cash == pytest.approx(32.5)
        # input untouched
        assert state.holding("AAA").quantity == 65.0

    def test_rebalance_reduces_quantity(self):
        after = E.apply_decision(_genesis(), "AAA", Rebalance(-5.0, 1.0))
        assert after.holding("AAA").quantity == pytest.approx(60.0)
        assert after.cash == pytest.approx(5.0)

    def test_overselling_is_refused_not_clamped(self):
        with pytest.raises(InvariantViolation):
            E.apply_decision(_genesis(), "AAA", Liquidate(100.0, 1.0))

    def test_buying_is_refused(self):
        with pytest.raises(InvariantViolation):
            E.apply_decision(_genesis(), "AAA", Rebalance(5.0, 1.0))

    def test_bad_price_is_refused(self):
        with pytest.raises(InvariantViolation):
            E.apply_decision(_genesis(), "AAA", Liquidate(65.0, 0.0))

    def test_unknown_holding_is_refused(self):
        with pytest.raises(InvariantViolation):
            E.apply_decision(_genesis(), "ZZZ", Liquidate(1.0, 1.0))


def _ledger_for(genesis, steps):
    state, entries = genesis, []
    for seq, (sym, dec) in enumerate(steps, start=1):
        state = E.apply_decision(state, sym, dec)
        entries.append(LedgerEntry(seq, 1000.0 + seq, sym, dec, state.cash,
                                   E.resulting_quantity(state, sym)))
    return state, entries


class TestReplay:
    STEPS = [
        ("AAA", Rebalance(-5.0, 1.0)),
        ("AAA", Rebalance(-2.5, 1.2)),
        ("BBB", Liquidate(35.0, 0.15)),
    ]

    def test_replay_reproduces_final_state(self):
        final, entries = _ledger_for(_genesis(), self.STEPS)
        replayed = E.replay(_genesis(), entries)
        assert [(h.symbol, h.quantity) for h in replayed.holdings] == \
               [(h.symbol, h.quantity) for h in final.holdings]
        assert replayed.cash == pytest.approx(final.cash)
        assert replayed.last_seq == 3
        assert replayed.last_updated == 1003.0

    def test_replay_is_idempotent(self):
        _, entries = _ledger_for(_genesis(), self.STEPS)
        assert E.replay(_genesis(), entries).to_dict() == E.replay(_genesis(), entries).to_dict()

    def test_divergent_entry_raises(self):
        _, entries = _ledger_for(_genesis(), self.STEPS[:1])
        bad = LedgerEntry(1, 1001.0, "AAA", entries[0].decision, 999.0, entries[0].resulting_quantity)
        with pytest.raises(InvariantViolation):
            E.replay(_genesis(), [bad])

    def test_repeated_seq_raises(self):
        _, entries = _ledger_for(_genesis(), self.STEPS[:2])
        with pytest.raises(InvariantViolation):
            E.replay(_genesis(), [entries[0], entries[0]])

    def test_empty_ledger_is_genesis(self):
        state = E.replay(_genesis(3.0), [])
        assert state.cash == 3.0 and len(state.holdings) == 2


def test_settle_stamps_value_identity():
    state = E.apply_decision(_genesis(), "AAA", Rebalance(-5.0, 1.0))
    settled = E.settle(state, {"AAA": 1.0, "BBB": 2.0}, now=42.0)
    assert settled.last_total_value == pytest.approx(5.0 + 60.0 + 70.0)
    assert settled.last_updated == 42.0
    assert settled.last_prices == {"AAA": 1.0, "BBB": 2.0}


def test_settle_keeps_total_on_partial_valuation():
    state = _genesis()
    state.last_total_value = 110.0
    settled = E.settle(state, {"AAA": 1.0}, now=42.0)
    assert settled.last_total_value == 110.0
    assert settled.last_prices == {"AAA": 1.0}
    assert not E.valuation_complete(settled, settled.last_prices)


def test_settle_refuses_negative_cash():
    state = PortfolioState(cash=-1.0)
    with pytest.raises(InvariantViolation):
        E.settle(state, {}, now=0.0)
