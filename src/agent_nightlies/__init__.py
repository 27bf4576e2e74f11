"""
agent-nightlies: discover, cache and query datadog/agent-dev nightly images.

The package root stays import-light: no config loading and no logging setup
happen at import time.
"""

__version__ = "0.4.0"

__all__ = ["__version__"]
