from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from uuid import UUID

from fastapi import Depends, HTTPException, Query, status
from fastapi.security import OAuth2PasswordBearer
from jose import ExpiredSignatureError, JWTError, jwt

from src.config.config import JWTConfig
from src.config.logger_config import log
from src.core.exceptions import (
    TokenExpiredError,
    TokenInvalidError,
    TokenMissingClaimError,
)

# ------------------------
# OAuth2 Password Bearer Scheme
# ------------------------

# auto_error is off so that the event stream can fall back to ?token=,
# browsers cannot set headers on an EventSource.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


# ------------------------
# JWT Service
# ------------------------


class JWTService:
    """
    Issues and validates merchant bearer tokens.
    Uses domain exceptions internally and logs key operations with loguru.
    """

    def __init__(self, config: JWTConfig):
        self.config = config
        log.info(
            "JWTService initialized",
            algorithm=self.config.ALGORITHM,
            access_ttl_minutes=self.config.ACCESS_TOKEN_EXPIRE_MINUTES,
        )

    def create_access_token(
        self, merchant_id: UUID, expires_delta: Optional[timedelta] = None
    ) -> str:
        expire = expires_delta or timedelta(
            minutes=self.config.ACCESS_TOKEN_EXPIRE_MINUTES
        )
        log.debug("Creating access token", merchant_id=str(merchant_id))

        try:
            token = self._create_token(
                data={"sub": str(merchant_id)}, expires_delta=expire
            )
            log.success("Access token created", merchant_id=str(merchant_id))
            return token
        except Exception as e:
            log.error(
                "Failed to create access token",
                merchant_id=str(merchant_id),
                error=str(e),
            )
            raise RuntimeError("Could not generate access token") from e

    def _create_token(self, data: Dict[str, Any], expires_delta: timedelta) -> str:
        """
        Internal: sign and encode a JWT token.
        """
        to_encode = data.copy()
        now = datetime.now(timezone.utc)
        to_encode.update({"iat": now, "exp": now + expires_delta})
        return jwt.encode(
            to_encode, self.config.JWT_SECRET, algorithm=self.config.ALGORITHM
        )

    def verify_token(self, token: str) -> Dict[str, Any]:
        """
        Verify and decode a JWT token.
        :raises TokenError: With specific subtype if validation fails
        """
        log.debug("Verifying JWT token", length=len(token))

        try:
            return jwt.decode(
                token,
                self.config.JWT_SECRET,
                algorithms=[self.config.ALGORITHM],
            )

        except ExpiredSignatureError as e:
            log.warning("Token verification failed: expired")
            raise TokenExpiredError("Token has expired") from e

        except JWTError as e:
            log.warning("Token verification failed: invalid token", error=str(e))
            raise TokenInvalidError(f"Invalid token: {str(e)}") from e

        except Exception as e:
            log.critical("Unexpected error during token verification", error=str(e))
            raise TokenInvalidError("Internal token validation error") from e

    def merchant_id_from_token(self, token: Optional[str]) -> UUID:
        """
        Resolve the merchant id carried in a bearer token.
        :raises TokenError: If the token is absent, invalid or has no subject
        """
        if not token:
            raise TokenMissingClaimError("Authentication token not provided")

        payload = self.verify_token(token)
        merchant_id = payload.get("sub")
        if not merchant_id:
            log.warning("Token is missing 'sub' claim")
            raise TokenMissingClaimError("Token is missing 'sub' (merchant ID)")

        try:
            return UUID(merchant_id)
        except ValueError as e:
            log.warning("Invalid merchant id format in token", error=str(e))
            raise TokenInvalidError("Invalid merchant ID format in token") from e

    def get_current_merchant_id(
        self,
        token: Optional[str] = Depends(oauth2_scheme),
        query_token: Optional[str] = Query(default=None, alias="token"),
    ) -> UUID:
        """
        FastAPI dependency: extracts the merchant id from the Authorization
        header, or from the `token` query parameter when the header is absent.
        """
        try:
            merchant_id = self.merchant_id_from_token(token or query_token)
            log.debug("Authenticated merchant", merchant_id=str(merchant_id))
            return merchant_id

        except TokenExpiredError as e:
            log.info("Authentication failed: token has expired")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Token has expired",
                headers={"WWW-Authenticate": "Bearer"},
            ) from e

        except TokenMissingClaimError as e:
            log.info("Authentication failed", reason=e.message)
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail=e.message,
                headers={"WWW-Authenticate": "Bearer"},
            ) from e

        except TokenInvalidError as e:
            log.info("Authentication failed: invalid or malformed token")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid token",
                headers={"WWW-Authenticate": "Bearer"},
            ) from e
