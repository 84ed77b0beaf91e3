"""Russian word puzzle bot: daily and arcade sessions with purchasable boosts."""

__version__ = "0.1.0"
