"""
Identity provider integration (Appwrite).

The backend never handles credentials. It trusts an Appwrite-issued JWT,
resolves the Appwrite account and mirrors `{user id, global role}` locally.
"""
import jwt
from typing import Optional
from fastapi import HTTPException, status
from appwrite.client import Client
from appwrite.services.users import Users
from appwrite.exception import AppwriteException

from app.core import config
from app.features.users.models import GLOBAL_ADMIN_ROLE


class AppwriteClient:
    """Singleton Appwrite client for server-side operations."""
    
    _instance: Optional[Client] = None
    
    @classmethod
    def get_client(cls) -> Client:
        """Get or create Appwrite client instance."""
        if cls._instance is None:
            cls._instance = Client()
            cls._instance.set_endpoint(config.APPWRITE_ENDPOINT)
            cls._instance.set_project(config.APPWRITE_PROJECT_ID)
            cls._instance.set_key(config.APPWRITE_API_KEY)
        return cls._instance


def verify_jwt_token(token: str) -> dict:
    """
    Decode an Appwrite JWT and return its payload.
    
    The signature is not verified locally; the account is looked up
    through the Appwrite API before a local user is created.
    
    Raises:
        HTTPException: 401 if the token is expired or malformed
    """
    try:
        return jwt.decode(
            token,
            options={"verify_signature": False, "verify_exp": True}
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except jwt.InvalidTokenError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid token: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def get_appwrite_user(user_id: str) -> dict:
    """
    Fetch the account from Appwrite.
    
    Raises:
        HTTPException: 401 if the account cannot be resolved
    """
    try:
        client = AppwriteClient.get_client()
        return Users(client).get(user_id)
    except AppwriteException as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Failed to verify user: {str(e)}",
        )


def global_role_from_account(account: dict) -> str | None:
    """Global admins are flagged with the `admin` label in Appwrite."""
    labels = account.get("labels") or []
    return GLOBAL_ADMIN_ROLE if GLOBAL_ADMIN_ROLE in labels else None
