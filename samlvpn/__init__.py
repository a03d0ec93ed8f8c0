"""Automates SAML-authenticated OpenVPN connections."""

__version__ = "0.4.0"
