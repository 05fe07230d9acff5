"""Process-wide infrastructure (database engine and sessions)."""
