"""Referral commission ledger: HTTP API, Telegram admin console and process entrypoint."""
