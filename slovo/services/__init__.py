"""Transaction-level services used by the bot handlers."""
