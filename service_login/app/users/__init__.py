"""Identity store used when user persistence is enabled."""
