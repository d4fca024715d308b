"""Two-way sync between a local notes vault and a remote vault server."""

__version__ = "0.1.0"
