"""
sfmcp.runner - External runners

- sf_command.py: the `sf` CLI as a subprocess
- connection.py: locally stored org authorizations
- rest.py: REST API over httpx
"""

from .connection import CredentialStore, OrgAuthorization
from .rest import RestClient
from .sf_command import SfCommandRunner

__all__ = ["CredentialStore", "OrgAuthorization", "RestClient", "SfCommandRunner"]
