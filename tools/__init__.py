"""Collaborators around the layout core: graph generators, export and the CLI."""
