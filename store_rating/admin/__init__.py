"""Store Rating - Admin API."""
