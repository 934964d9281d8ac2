from typing import Optional
from uuid import UUID

from email_validator import EmailNotValidError, validate_email
from passlib.context import CryptContext
from sqlmodel import Session

from src.config.logger_config import log
from src.core.exceptions import (
    InvalidCredentialsError,
    MerchantAlreadyExistsError,
    MerchantNotFoundError,
    ValidationError,
)
from src.domain.models import Merchant
from src.infrastructure.crypto.credential_store import (
    CredentialStore,
    validate_access_token_format,
    validate_public_key_format,
)
from src.infrastructure.database.repositories.merchant_repository import (
    MerchantRepository,
)
from src.interfaces.http.schemas import CredentialsUpdate, MerchantCreate

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

MIN_PASSWORD_LENGTH = 6


def normalize_email(email: Optional[str]) -> str:
    """
    Validate an email address and return it lower-cased.
    Raises:
        ValidationError: If the address is malformed.
    """
    try:
        result = validate_email(email or "", check_deliverability=False)
    except EmailNotValidError as e:
        raise ValidationError("Invalid email", e) from e
    return result.normalized.lower()


class MerchantService:
    """
    Merchant accounts: registration, login and gateway credentials.
    The gateway access token is encrypted before it reaches the database.
    """

    def __init__(self, session: Session, credential_store: CredentialStore):
        self.session = session
        self.credential_store = credential_store
        self.repository = MerchantRepository(session)

    def _validate_gateway_credentials(self, access_token: str, public_key: str) -> None:
        if not validate_access_token_format(access_token):
            raise ValidationError(
                "Invalid Mercado Pago access token. It must start with APP_USR- or TEST-"
            )
        if not validate_public_key_format(public_key):
            raise ValidationError("Invalid Mercado Pago public key")

    def register(self, merchant_create: MerchantCreate) -> Merchant:
        """
        Create a merchant account.

        Raises:
            ValidationError: On malformed email, short password or bad credentials.
            MerchantAlreadyExistsError: If the email is already registered.
        """
        if not merchant_create.name or len(merchant_create.name.strip()) < 2:
            raise ValidationError("Name must have at least 2 characters")

        email = normalize_email(merchant_create.email)

        if len(merchant_create.password or "") < MIN_PASSWORD_LENGTH:
            raise ValidationError(
                f"Password must have at least {MIN_PASSWORD_LENGTH} characters"
            )

        self._validate_gateway_credentials(
            merchant_create.access_token, merchant_create.public_key
        )

        log.debug("Checking for existing merchant", email=email)
        if self.repository.get_by_email(email):
            log.warning("Merchant with email already exists", email=email)
            raise MerchantAlreadyExistsError(f"Merchant with email {email} already exists")

        name = merchant_create.name.strip()
        merchant = Merchant(
            name=name,
            email=email,
            hashed_password=pwd_context.hash(merchant_create.password),
            store_name=(merchant_create.store_name or "").strip() or name,
            access_token=self.credential_store.encrypt(merchant_create.access_token),
            public_key=merchant_create.public_key,
        )
        merchant = self.repository.save(merchant)
        log.info(
            "Merchant registered",
            merchant_id=str(merchant.id),
            email=merchant.email,
        )
        return merchant

    def authenticate(self, email: str, password: str) -> Merchant:
        """
        Raises:
            InvalidCredentialsError: If the email is unknown or the password is wrong.
        """
        merchant = self.repository.get_by_email((email or "").strip())
        # Same error for unknown email and wrong password
        if not merchant or not pwd_context.verify(password, merchant.hashed_password):
            log.warning("Authentication failed", email=email)
            raise InvalidCredentialsError("Incorrect email or password")

        log.info("Merchant authenticated", merchant_id=str(merchant.id))
        return merchant

    def get_merchant(self, merchant_id: UUID) -> Merchant:
        merchant = self.repository.get_by_id(merchant_id)
        if not merchant:
            log.warning("Merchant not found by ID", merchant_id=str(merchant_id))
            raise MerchantNotFoundError(f"Merchant with ID {merchant_id} not found")
        return merchant

    def update_credentials(
        self, merchant_id: UUID, credentials: CredentialsUpdate
    ) -> Merchant:
        """Replace the stored Mercado Pago credentials."""
        self._validate_gateway_credentials(
            credentials.access_token, credentials.public_key
        )
        merchant = self.get_merchant(merchant_id)
        merchant.access_token = self.credential_store.encrypt(credentials.access_token)
        merchant.public_key = credentials.public_key
        merchant = self.repository.save(merchant)
        log.info("Merchant gateway credentials updated", merchant_id=str(merchant.id))
        return merchant
