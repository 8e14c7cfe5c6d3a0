"""Tool implementations; each module backs one command of the CLI."""
