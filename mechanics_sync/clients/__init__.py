"""
Client package initialization.
Exports the BoardGameGeek client and its rate limiter.
"""
from mechanics_sync.clients.bgg import BGGClient, parse_thing
from mechanics_sync.clients.rate_limiter import RateLimiter

__all__ = [
    "BGGClient",
    "RateLimiter",
    "parse_thing",
]
