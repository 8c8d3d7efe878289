"""Manual Transfer Manager - approval and blocking policy for asset transfers."""

__version__ = "0.1.0"
