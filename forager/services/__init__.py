"""Clients for the remote services Forager talks to."""
