"""Data sources Forager can forage."""
