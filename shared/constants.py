"""
constants.py – single source of hard-coded names
"""

# Freshness-cache categories
PRICE     = "price"
SENTIMENT = "sentiment"
CATEGORIES = (PRICE, SENTIMENT)

# Redis keys / templates
KEY_CACHE         = "cache:{}:{}"               # category, symbol
KEY_NOTIFY        = "notify:sent:{}"            # dedup_key
KEY_LEDGER        = "ledger:entries"            # LIST  JSON (append-only)
KEY_LEDGER_SEQ    = "ledger:seq"                # INT   auto-increment
KEY_SNAPSHOT      = "portfolio:snapshot"        # STRING JSON
KEY_TICK_REPORT   = "portfolio:last_tick"       # STRING JSON
KEY_HEARTBEAT     = "heartbeat:{}"              # service-specific
KEY_PAUSE_FLAG    = "flags:trading_paused"

SERVICE_NAME = "scheduler"

# SMS bodies are cut to this many characters (Twilio single segment minus prefix)
SMS_MAX_CHARS = 115

# advisory labels surfaced to the display collaborator
ADVICE_BUY     = "Hold/Buy"
ADVICE_SELL    = "Sell"
ADVICE_MONITOR = "Monitor"
