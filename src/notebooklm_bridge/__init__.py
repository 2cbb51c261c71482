"""NotebookLM bridge: browser-bootstrapped client for notebooklm.google.com."""

__version__ = "0.3.0"
