"""
Transparent TCP relay.

Accepts client connections on a local port and forwards (or fans out) the
byte stream to one or more remote endpoints, relaying the responses back.
"""

__version__ = "1.2.0"
