"""Client for sending CloudEvents to event function endpoints."""
