"""External collaborators: store, settlement, anchor, urban and LLM providers."""
