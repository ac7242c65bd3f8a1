"""Contract engine: templates, binding, status, tokens, signing and workflow."""
