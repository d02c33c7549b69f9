"""iglink — Instagram account linking via the OAuth 2.0 authorization-code flow."""

__version__ = "0.1.0"
