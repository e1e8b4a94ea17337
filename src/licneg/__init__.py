"""
Licensing negotiation agent package.

This package contains the application modules for the publisher-side
licensing negotiation agent. A publisher configures negotiation
strategies; AI companies propose terms (price, token TTL, burst rate and
purposes) and the agent accepts, rejects or counters them round by round.
The code is organised into subpackages for configuration, database
models, services and API routing.
"""

from .core.config import Settings  # noqa: F401
