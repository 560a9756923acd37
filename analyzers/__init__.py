"""Image analysis: vision report, sustainability classifier, and the orchestrator that merges them."""
