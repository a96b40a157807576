"""App-native authentication client for WSO2-style identity servers.

The :mod:`app_native_auth.core` package holds the HTTP-agnostic flow engine;
:mod:`app_native_auth.servers` exposes it over Starlette and
:mod:`app_native_auth.cli` drives it from a terminal.
"""

__version__ = "0.1.0"
