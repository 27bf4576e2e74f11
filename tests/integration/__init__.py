"""Integration tests: spawn ``python -m agent_nightlies`` against real git checkouts."""
