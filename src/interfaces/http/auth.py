from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlmodel import Session

from src.application.merchant_service import MerchantService
from src.config.config import config
from src.config.logger_config import log
from src.core.exceptions import (
    InvalidCredentialsError,
    MerchantAlreadyExistsError,
    MerchantNotFoundError,
    ValidationError,
)
from src.infrastructure.crypto.credential_store import CredentialStore
from src.infrastructure.database.session import get_session
from src.infrastructure.services import jwt_service
from src.interfaces.http.dependencies import (
    get_credential_store,
    get_current_merchant_id,
)
from src.interfaces.http.schemas import (
    AuthResponse,
    CredentialsUpdate,
    MerchantCreate,
    MerchantLogin,
    MerchantResponse,
)

router = APIRouter(prefix="/auth", tags=["auth"])


def _auth_response(merchant) -> AuthResponse:
    return AuthResponse(
        token=jwt_service.create_access_token(merchant.id),
        token_type="bearer",
        expires_in=config.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        merchant=MerchantResponse.model_validate(merchant),
    )


@router.post(
    "/register",
    response_model=AuthResponse,
    status_code=status.HTTP_201_CREATED,
)
async def register_merchant(
    merchant_create: MerchantCreate,
    session: Session = Depends(get_session),
    credential_store: CredentialStore = Depends(get_credential_store),
):
    """
    Register a merchant with its Mercado Pago credentials.

    Raises:
        HTTPException: 400 if invalid input, 409 if email exists, 500 for server errors.
    """
    log.info("Received registration request", email=merchant_create.email)
    try:
        merchant_service = MerchantService(
            session=session, credential_store=credential_store
        )
        merchant = merchant_service.register(merchant_create)
        return _auth_response(merchant)

    except ValidationError as e:
        log.warning("Registration failed: invalid input", error=e.message)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=e.message
        ) from e

    except MerchantAlreadyExistsError as e:
        log.warning("Registration failed: email already exists")
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A merchant with this email already exists",
        ) from e

    except Exception as e:
        log.critical(
            "Unexpected error during registration", error=str(e), exc_info=True
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error",
        ) from e


@router.post("/login", response_model=AuthResponse)
async def login(
    credentials: MerchantLogin,
    session: Session = Depends(get_session),
    credential_store: CredentialStore = Depends(get_credential_store),
):
    try:
        log.info("Login attempt", email=credentials.email)
        merchant_service = MerchantService(
            session=session, credential_store=credential_store
        )
        merchant = merchant_service.authenticate(
            credentials.email, credentials.password
        )
        return _auth_response(merchant)

    except InvalidCredentialsError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e

    except Exception as e:
        log.critical("Unexpected error during login", error=str(e), exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error",
        ) from e


@router.get("/me", response_model=MerchantResponse)
async def get_me(
    merchant_id: UUID = Depends(get_current_merchant_id),
    session: Session = Depends(get_session),
    credential_store: CredentialStore = Depends(get_credential_store),
):
    try:
        merchant_service = MerchantService(
            session=session, credential_store=credential_store
        )
        return MerchantResponse.model_validate(
            merchant_service.get_merchant(merchant_id)
        )

    except MerchantNotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Merchant not found"
        ) from e

    except Exception as e:
        log.critical("Unexpected error fetching merchant", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error",
        ) from e


@router.put("/credentials", response_model=MerchantResponse)
async def update_credentials(
    credentials: CredentialsUpdate,
    merchant_id: UUID = Depends(get_current_merchant_id),
    session: Session = Depends(get_session),
    credential_store: CredentialStore = Depends(get_credential_store),
):
    """Replace the merchant's Mercado Pago access token and public key."""
    try:
        merchant_service = MerchantService(
            session=session, credential_store=credential_store
        )
        merchant = merchant_service.update_credentials(merchant_id, credentials)
        return MerchantResponse.model_validate(merchant)

    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=e.message
        ) from e

    except MerchantNotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Merchant not found"
        ) from e

    except Exception as e:
        log.critical(
            "Unexpected error updating credentials",
            merchant_id=str(merchant_id),
            error=str(e),
            exc_info=True,
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error",
        ) from e
