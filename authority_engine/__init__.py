"""Authority Engine — hierarchical permission trees with optimistic synchronization."""
