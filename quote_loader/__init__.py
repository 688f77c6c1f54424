"""
quote_loader
============

Resolves one Quote (price + optional sentiment) per tracked symbol per
tick, preferring fresh cache entries and fanning out feed calls for the
rest.

Modules
-------
feeds.py       – ExternalFeed interface + Binance / LunarCrush adapters
aggregator.py  – cache-first concurrent fan-out with stale fallback
"""
