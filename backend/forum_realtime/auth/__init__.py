"""Authentication module (JWT bearer tokens).

Services:
    - ConnectionAuthenticator: verifies tokens presented at socket handshake
      or on HTTP requests.
"""

from .service import AuthResult, ConnectionAuthenticator

__all__ = ["AuthResult", "ConnectionAuthenticator"]
