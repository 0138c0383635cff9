"""
Shared slowapi limiter. The app attaches this instance to app.state so
route decorators and the 429 handler see the same counters.
"""
from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address)
