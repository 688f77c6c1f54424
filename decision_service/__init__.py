"""
decision_service
================

Pure portfolio logic: no Redis, no network.

Data-flow
---------
1. `engine.evaluate` values the portfolio at tick start and asks
   `rules.decide` for one Decision per holding
   (Hold / Liquidate on stop-loss / Rebalance above max allocation).

2. The scheduler persists each non-Hold decision, then commits it with
   `engine.apply_decision`.

3. On restart `engine.replay` folds the ledger over the genesis
   portfolio to rebuild the exact state.
"""
