"""SQLite and file backed stores."""
