"""Actor authentication and API key management."""

from civic_portal.auth.context import ActorContext
from civic_portal.auth.keys import generate_api_key, hash_api_key

__all__ = ["ActorContext", "generate_api_key", "hash_api_key"]
