"""EkoDirekt credential and session-token service."""
