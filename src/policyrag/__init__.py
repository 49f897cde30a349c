"""policyrag: retrieval-augmented question answering over insurance and legal documents."""

__version__ = "0.1.0"
