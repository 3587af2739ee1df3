"""Document vault: family groups, invitations and shared document metadata."""

__version__ = "1.0.0"
