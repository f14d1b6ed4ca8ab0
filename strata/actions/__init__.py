"""Installation actions — update, history, revert, install and restore."""
