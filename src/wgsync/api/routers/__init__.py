from . import health, metrics, peers, stats

__all__ = ["health", "metrics", "peers", "stats"]
