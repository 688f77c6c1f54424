"""
shared – helpers imported by every component
--------------------------------------------
Modules
-------
config.py         → loads `.env` once per process, immutable `Settings`
logging.py        → consistent JSON/stdout logger + signed audit log
constants.py      → key names, cache categories, advice labels
errors.py         → PortfolioError taxonomy
models.py         → Holding / PortfolioState / Quote / Decision / LedgerEntry
redis_client.py   → lazy Redis + heartbeat / pause-flag helpers
cache.py          → freshness cache + notification dedup marks
utils.py          → misc one-liners that don't belong elsewhere
"""
