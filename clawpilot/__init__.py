"""Personal chat assistant with per-conversation serialization and cron tasks."""
