"""Provider, generation, memory, chat and voice services."""
