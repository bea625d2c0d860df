"""Dashboard blueprint, JSON routes and page templates."""
