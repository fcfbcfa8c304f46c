"""Outbound HTTP middleware: credential stamping, refresh coordination and retries."""

from authclient.shared.middleware.interceptor import AuthInterceptor, RetryContext
from authclient.shared.middleware.refresh import RefreshCoordinator

__all__ = ["AuthInterceptor", "RefreshCoordinator", "RetryContext"]
