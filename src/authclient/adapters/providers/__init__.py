"""Built-in auth providers."""

from authclient.adapters.providers.google import GoogleAuthProvider
from authclient.adapters.providers.local import LocalAuthProvider
from authclient.adapters.providers.supabase import SupabaseAuthProvider

__all__ = [
    "GoogleAuthProvider",
    "LocalAuthProvider",
    "SupabaseAuthProvider",
]
