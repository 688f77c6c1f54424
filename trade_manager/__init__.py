"""
trade_manager
=============

Drives the whole engine:

• `scheduler.py` runs one tick per interval (aggregate → decide →
  persist → notify), honours the operator pause flag and heartbeats.
• `manager.py` is the process entry point (`portfolio-sentinel`) and
  publishes a small REST API for ops dashboards.
"""
