"""
Identity provider token verification.

The export core only needs "bearer token -> account id". FirebaseTokenVerifier
implements that for Firebase ID tokens: RS256 JWTs signed by Google's
secure-token service, verified against its published JWKS.

Documentation: https://firebase.google.com/docs/auth/admin/verify-id-tokens
"""

import logging
from abc import ABC, abstractmethod
from threading import Lock
from typing import Optional

import jwt
from jwt import PyJWKClient, PyJWKClientError
from jwt.exceptions import ExpiredSignatureError, InvalidTokenError

from .errors import IdentityVerificationError
from .models import VerifiedIdentity

logger = logging.getLogger(__name__)

FIREBASE_JWKS_URL = (
    "https://www.googleapis.com/service_accounts/v1/jwk/securetoken@system.gserviceaccount.com"
)
FIREBASE_ISSUER_PREFIX = "https://securetoken.google.com/"


class IdentityVerifier(ABC):
    """Resolves an account from a bearer token."""

    @abstractmethod
    def verify(self, token: str) -> VerifiedIdentity:
        """
        Verify a bearer token.

        Raises:
            IdentityVerificationError: token missing, invalid or expired
        """
        pass


class FirebaseTokenVerifier(IdentityVerifier):
    """
    Verifies Firebase ID tokens using Google's JWKS.

    Usage:
        verifier = FirebaseTokenVerifier(project_id="my-project")
        identity = verifier.verify(token)
        account_id = identity.account_id
    """

    JWKS_CACHE_DURATION = 3600  # 1 hour

    # Clock skew tolerance in seconds (for exp/iat validation)
    CLOCK_SKEW_SECONDS = 60

    def __init__(self, project_id: str, jwks_url: str = FIREBASE_JWKS_URL):
        if not project_id:
            raise IdentityVerificationError(
                "FIREBASE_PROJECT_ID is required",
                error_code="config_error",
            )
        self._project_id = project_id
        self._issuer = f"{FIREBASE_ISSUER_PREFIX}{project_id}"
        self._jwks_url = jwks_url
        self._jwks_client: Optional[PyJWKClient] = None
        self._jwks_client_lock = Lock()

    def _get_jwks_client(self) -> PyJWKClient:
        with self._jwks_client_lock:
            if self._jwks_client is None:
                self._jwks_client = PyJWKClient(
                    self._jwks_url,
                    cache_keys=True,
                    lifespan=self.JWKS_CACHE_DURATION,
                )
            return self._jwks_client

    def verify(self, token: str) -> VerifiedIdentity:
        if not token:
            raise IdentityVerificationError("Token is required", error_code="missing_token")

        try:
            signing_key = self._get_jwks_client().get_signing_key_from_jwt(token)
            claims = jwt.decode(
                token,
                signing_key.key,
                algorithms=["RS256"],
                audience=self._project_id,
                issuer=self._issuer,
                leeway=self.CLOCK_SKEW_SECONDS,
                options={"require": ["sub", "iss", "aud", "exp", "iat"]},
            )
        except ExpiredSignatureError:
            raise IdentityVerificationError("Token has expired", error_code="token_expired")
        except PyJWKClientError as e:
            logger.warning(f"Signing key lookup failed: {e}")
            raise IdentityVerificationError("Unknown signing key", error_code="jwks_error")
        except InvalidTokenError as e:
            raise IdentityVerificationError(f"Invalid token: {e}", error_code="invalid_token")

        subject = claims.get("sub")
        if not subject or not isinstance(subject, str):
            raise IdentityVerificationError("Token has no subject", error_code="invalid_token")

        email = claims.get("email") if claims.get("email_verified") is True else None
        return VerifiedIdentity(account_id=subject, email=email)
