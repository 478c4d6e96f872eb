"""
Task adapters: blocking clients for external backends
"""
from .completion_client import CompletionClient
from .http_client import HTTPClient, extract_url

__all__ = ['CompletionClient', 'HTTPClient', 'extract_url']
