"""HTTP surface for the app-native authentication flow."""

from .main import create_app

__all__ = ["create_app"]
