"""Shared configuration: paths, secrets, database, auth, navigation."""
