"""Meterpay HTTP API."""

from .client import MeterpayAPIError, MeterpayClient
from .main import create_app

__all__ = ["create_app", "MeterpayClient", "MeterpayAPIError"]
