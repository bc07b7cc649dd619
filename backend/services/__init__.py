"""Provider loading, execution and tool registration."""
