"""Route modules registered on the dashboard blueprint."""
