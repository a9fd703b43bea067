"""
Firebolt Client Version Information

@version 0.1.0
@author Firebolt SDK Team
"""

VERSION = "0.1.0"

# Wire protocol version announced to the engine on every query.
PROTOCOL_VERSION = "2.3"


def user_agent() -> str:
    """User-Agent header value sent with every request."""
    return f"PythonSDK/{VERSION}"
