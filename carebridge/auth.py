import base64
import json
import logging
import time
from typing import Optional

import httpx
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding
from cryptography.x509 import load_pem_x509_certificate
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from .config import FIREBASE_PROJECT_ID
from .database import get_db
from .exceptions import Forbidden
from .models import USER_ROLES, User

logger = logging.getLogger(__name__)

security = HTTPBearer()

GOOGLE_CERTS_URL = (
    "https://www.googleapis.com/robot/v1/metadata/x509/securetoken@system.gserviceaccount.com"
)

# Cache for Google's public keys
_cached_keys = None


async def get_google_public_keys(force_refresh: bool = False):
    """Fetch Google's public keys for Firebase token verification"""
    global _cached_keys
    if _cached_keys and not force_refresh:
        return _cached_keys

    try:
        async with httpx.AsyncClient(timeout=10) as client:
            response = await client.get(GOOGLE_CERTS_URL)
        if response.status_code == 200:
            _cached_keys = response.json()
            logger.info(f"✅ Fetched {len(_cached_keys)} Google public keys")
            return _cached_keys
        logger.error(f"❌ Failed to fetch Google public keys: HTTP {response.status_code}")
    except httpx.HTTPError as e:
        logger.error(f"❌ Error fetching Google public keys: {str(e)}")
    return None


def _b64decode(segment: str) -> bytes:
    return base64.urlsafe_b64decode(segment + "=" * (-len(segment) % 4))


async def verify_firebase_token(token: str) -> dict:
    """
    Verify a Firebase ID token: RS256 signature against Google's certificates,
    then audience, issuer, expiry and issued-at claims.
    """
    if not FIREBASE_PROJECT_ID:
        logger.error("❌ FIREBASE_PROJECT_ID not configured")
        raise HTTPException(status_code=500, detail="Authentication is not configured")

    parts = token.split(".")
    if len(parts) != 3:
        raise HTTPException(status_code=401, detail="Invalid token format")
    header_b64, payload_b64, signature_b64 = parts

    try:
        header = json.loads(_b64decode(header_b64))
        payload = json.loads(_b64decode(payload_b64))
        signature = _b64decode(signature_b64)
    except ValueError as e:
        raise HTTPException(status_code=401, detail="Invalid token encoding") from e

    if header.get("alg") != "RS256" or not header.get("kid"):
        raise HTTPException(status_code=401, detail="Invalid token header")

    kid = header["kid"]
    public_keys = await get_google_public_keys()
    if not public_keys or kid not in public_keys:
        # Keys rotate; refresh once before giving up
        public_keys = await get_google_public_keys(force_refresh=True)
        if not public_keys or kid not in public_keys:
            logger.error(f"❌ Key ID {kid} not found in public keys after retry")
            raise HTTPException(status_code=401, detail="Unable to verify token signature")

    public_key = load_pem_x509_certificate(public_keys[kid].encode()).public_key()
    try:
        public_key.verify(
            signature,
            f"{header_b64}.{payload_b64}".encode(),
            padding.PKCS1v15(),
            hashes.SHA256(),
        )
    except Exception as e:
        logger.warning(f"⚠️ Token signature verification failed: {str(e)}")
        raise HTTPException(status_code=401, detail="Invalid token signature") from e

    if payload.get("aud") != FIREBASE_PROJECT_ID:
        raise HTTPException(status_code=401, detail="Invalid token audience")
    if payload.get("iss") != f"https://securetoken.google.com/{FIREBASE_PROJECT_ID}":
        raise HTTPException(status_code=401, detail="Invalid token issuer")

    now = time.time()
    if payload.get("exp", 0) < now:
        raise HTTPException(
            status_code=401,
            detail="Token has expired. Please refresh your session.",
            headers={"X-Token-Expired": "true"},
        )
    if payload.get("iat", 0) > now + 60:  # Allow 60 seconds clock skew
        raise HTTPException(status_code=401, detail="Invalid token")

    return payload


def role_from_claims(decoded_token: dict) -> Optional[str]:
    """
    Role carried in the Firebase custom claim `role`.

    Returns None when the claim is absent or not a known role, so the stored
    role stays in effect.
    """
    role = decoded_token.get("role")
    if role is None:
        return None
    if role not in USER_ROLES:
        logger.warning(f"⚠️ Ignoring unknown role claim: {role}")
        return None
    return role


def resolve_user(db: Session, decoded_token: dict) -> User:
    """Find or create the user for verified token claims and sync the role claim"""
    firebase_uid = decoded_token.get("sub") or decoded_token.get("user_id")
    if not firebase_uid:
        raise HTTPException(status_code=401, detail="Invalid token claims")

    claimed_role = role_from_claims(decoded_token)
    user = db.query(User).filter(User.firebase_uid == firebase_uid).first()
    if not user:
        email = decoded_token.get("email") or f"{firebase_uid}@users.invalid"
        logger.info(f"🆕 Creating new user: {email} ({claimed_role or 'patient'})")
        user = User(
            firebase_uid=firebase_uid,
            email=email,
            full_name=decoded_token.get("name", ""),
            role=claimed_role or "patient",
        )
        db.add(user)
        try:
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"❌ Failed to create user {email}: {str(e)}")
            raise HTTPException(
                status_code=409, detail="This email is already registered with another account."
            ) from e
        db.refresh(user)
    elif claimed_role and claimed_role != user.role:
        logger.info(f"🔑 User {user.id} role changed: {user.role} -> {claimed_role}")
        user.role = claimed_role
        try:
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(user)

    if not user.is_active:
        raise HTTPException(status_code=403, detail="Account is disabled")

    return user


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    """Resolve the caller from a Firebase ID token; the role comes from the `role` custom claim"""
    decoded_token = await verify_firebase_token(credentials.credentials)
    return resolve_user(db, decoded_token)


def require_roles(*roles: str):
    """
    Dependency factory restricting an endpoint to the given roles.

    Example usage:
        @router.patch("/{assistance_id}/status")
        async def update_status(current_user: User = Depends(require_roles("admin"))):
            ...
    """

    async def checker(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in roles:
            logger.warning(
                f"⚠️ User {current_user.id} with role {current_user.role} denied; needs {roles}"
            )
            raise Forbidden("You do not have permission to perform this action")
        return current_user

    return checker
