"""Time-windowed order scheduling against a broker's REST API."""
