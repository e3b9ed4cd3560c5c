"""
auth/google.py -- Google id_token verification for federated login.

The client (web or mobile) completes Google Sign-In itself and posts the
resulting id_token to POST /auth/google. We never see Google credentials; we
only check the token's signature, issuer, expiry and audience against Google's
published certificates via google-auth, then pull out the profile claims.

Security notes:
  [H1] Email verification is mandatory. A token whose email_verified claim is
       not true is rejected -- an unverified address could belong to someone
       else and would let them take over the matching local account.

  The audience must equal GOOGLE_CLIENT_ID. A token minted for another app
  is rejected by verify_oauth2_token.

Layer rule: no imports from api/ or mail/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from google.auth.transport import requests as google_requests
from google.oauth2 import id_token as google_id_token

from auth.errors import IdentityProviderNotConfigured, IdentityVerificationError
from auth.models import FederatedIdentity

logger = logging.getLogger("localmarket.auth.google")


def _verify_with_google(token: str, audience: str) -> dict:
    request = google_requests.Request()
    return google_id_token.verify_oauth2_token(token, request, audience)


class GoogleIdentityVerifier:
    """Verify Google id_tokens and normalize their claims.

    verify_fn is injectable so tests can stand in for Google's certificate
    endpoint; production uses google-auth's verify_oauth2_token.
    """

    def __init__(
        self,
        client_id: str,
        verify_fn: Callable[[str, str], dict] = _verify_with_google,
    ) -> None:
        self._client_id = client_id
        self._verify_fn = verify_fn

    @property
    def configured(self) -> bool:
        return bool(self._client_id)

    def verify(self, token: str) -> FederatedIdentity:
        """Return the identity behind token.

        Raises:
            IdentityProviderNotConfigured: GOOGLE_CLIENT_ID is not set.
            IdentityVerificationError: Google rejected the token, or it lacks
                a verified email / subject.
        """
        if not self.configured:
            raise IdentityProviderNotConfigured("GOOGLE_CLIENT_ID is not configured")
        try:
            payload = self._verify_fn(token, self._client_id)
        except ValueError as exc:
            # google-auth signals bad signature, wrong audience, expiry etc. as ValueError.
            raise IdentityVerificationError(f"Google rejected the id_token: {exc}") from exc
        except Exception as exc:
            # Certificate fetch failures (network) surface as TransportError and friends.
            raise IdentityVerificationError(f"Google id_token verification failed: {exc}") from exc

        if not payload:
            raise IdentityVerificationError("Google id_token has no payload")

        email = payload.get("email")
        subject = payload.get("sub")
        if not email or not subject:
            raise IdentityVerificationError("Google id_token missing email or sub claim")

        email_verified = payload.get("email_verified", False)
        if isinstance(email_verified, str):
            email_verified = email_verified.lower() == "true"
        if not email_verified:
            raise IdentityVerificationError("Google account email is not verified")

        name = payload.get("name")
        picture = payload.get("picture")
        return FederatedIdentity(
            email=str(email),
            subject=str(subject),
            name=name if isinstance(name, str) else None,
            picture=picture if isinstance(picture, str) else None,
        )
