"""HTTP API and Telegram command handlers."""
