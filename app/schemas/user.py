"""
User schemas - the signed-in end user as seen by the gateway.
The gateway never issues tokens; it forwards the user's Firebase ID token.
"""

from pydantic import BaseModel


class SignedInUser(BaseModel):
    """
    End user identified by a Firebase ID token.

    Built per request by app.deps from the Authorization header, so the
    token is always the one the client just sent.

    Example:
    {
        "uid": "kT3n9cWb1pQ...",
        "email": "jane@example.com",
        "id_token": "eyJhbGciOiJSUzI1NiIs..."
    }
    """

    # uid: Firebase user id ("user_id" / "sub" claim)
    # - Sent to API0 as the opaque user identifier
    uid: str

    # email: Optional, only present for email/Google sign-in
    email: str | None = None

    # id_token: The raw bearer token, forwarded to backend endpoints
    id_token: str

    async def get_id_token(self) -> str:
        """Bearer token for backend calls."""
        return self.id_token
