import logging

from werkzeug.security import generate_password_hash, check_password_hash

from app.core.errors import AuthError, ValidationError
from app.models.user import User
from app.services.metadata_store import MetadataStore

logger = logging.getLogger(__name__)


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return check_password_hash(password_hash, password)


class AccountService:
    def __init__(self, metadata: MetadataStore) -> None:
        self.metadata = metadata

    async def register(self, username: str, email: str, password: str) -> User:
        username, email = username.strip(), email.strip()
        if not username or not email or not password:
            raise ValidationError("Username, email and password are required")

        # ConflictError from the store already says which field is taken
        return await self.metadata.create_user(username, email, hash_password(password))

    async def login(self, username: str, password: str) -> User:
        user = await self.metadata.get_user_by_username(username.strip())

        # Same answer for an unknown user and a wrong password
        if not user or not verify_password(password, user.password_hash):
            logger.warning("Failed login for username=%s", username)
            raise AuthError()

        logger.info("User %s logged in", user.id)
        return user
