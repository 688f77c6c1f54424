"""
trade_ledger
============

Durable, append-only record of every executed Liquidate / Rebalance,
used for audit and to rebuild the portfolio on restart. Hold decisions
never reach the ledger.

Modules
-------
ledger.py   – Redis list + gap-free sequence, portfolio snapshot
archive.py  – incremental CSV export (history/trades/trade_log.csv)
"""
