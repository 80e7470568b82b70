"""Small modular application used by discovery, CLI and integration tests."""
