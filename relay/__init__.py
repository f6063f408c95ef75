"""Real-time delivery core for the social network: hubs, push fallback and client sync."""

__version__ = "1.0.0"
