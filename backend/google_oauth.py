import datetime
import logging
from typing import Optional
from urllib.parse import urlencode

from sqlalchemy.orm import Session

from config import GoogleConfig
from errors import AuthExpired, ConfigurationError, ProviderError, ValidationError
from google_calendar import GoogleCalendarClient
from calendar_settings import clear_settings
from models import UserIntegrationDB, GOOGLE_CALENDAR_PROVIDER
from schemas import TokenResult

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"


def get_credential(db: Session, user_id: str) -> Optional[UserIntegrationDB]:
    return (
        db.query(UserIntegrationDB)
        .filter(
            UserIntegrationDB.user_id == user_id,
            UserIntegrationDB.provider == GOOGLE_CALENDAR_PROVIDER,
        )
        .first()
    )


def _expires_at(now: datetime.datetime, expires_in) -> Optional[datetime.datetime]:
    if not expires_in:
        return None
    return now + datetime.timedelta(seconds=int(expires_in))


def _token_is_fresh(credential: UserIntegrationDB, now: datetime.datetime) -> bool:
    return credential.token_expires_at is None or now < credential.token_expires_at


# --- TOKEN LIFECYCLE ---
def ensure_valid_token(
    db: Session,
    credential: UserIntegrationDB,
    client: GoogleCalendarClient,
    now: Optional[datetime.datetime] = None,
) -> TokenResult:
    """
    Returns an access token that is valid at ``now``.

    A stored token that has not expired (or has no recorded expiry) is
    returned as is, without touching the database. An expired token is
    refreshed and the new value is committed before it is handed out.
    """
    if not credential.connected or not credential.access_token:
        raise AuthExpired("Google Calendar is not connected")

    now = now or datetime.datetime.utcnow()
    if _token_is_fresh(credential, now):
        return TokenResult(access_token=credential.access_token, refreshed=False)

    # Row lock: a concurrent request may already have swapped the refresh token.
    locked = (
        db.query(UserIntegrationDB)
        .filter(UserIntegrationDB.id == credential.id)
        .populate_existing()
        .with_for_update()
        .one()
    )
    if locked.connected and locked.access_token and _token_is_fresh(locked, now):
        db.commit()
        return TokenResult(access_token=locked.access_token, refreshed=False)

    if not locked.refresh_token:
        db.rollback()
        logger.warning(f"Token for user {credential.user_id} expired and no refresh token is stored")
        raise AuthExpired()

    logger.info(f"Refreshing Google access token for user {locked.user_id}")
    try:
        data = client.refresh_access_token(locked.refresh_token)
    except ProviderError as e:
        db.rollback()
        logger.warning(f"Token refresh for user {credential.user_id} failed: {e}")
        raise AuthExpired() from e
    except ConfigurationError:
        db.rollback()
        raise

    locked.access_token = data["access_token"]
    # Google may rotate the refresh token
    locked.refresh_token = data.get("refresh_token") or locked.refresh_token
    locked.token_expires_at = _expires_at(now, data.get("expires_in"))
    db.commit()
    return TokenResult(access_token=locked.access_token, refreshed=True)


# --- OAUTH FLOW ---
def build_auth_url(config: GoogleConfig, user_id: str, redirect_url: Optional[str] = None) -> str:
    if not user_id:
        raise ValidationError("User ID is required")
    redirect_uri = redirect_url or config.redirect_uri
    if not redirect_uri:
        raise ValidationError("Redirect URL is required")

    config = config.require()
    params = {
        "client_id": config.client_id,
        "redirect_uri": redirect_uri,
        "response_type": "code",
        "scope": " ".join(config.scopes),
        "access_type": "offline",
        "prompt": "consent",
        "state": user_id,
    }
    return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"


def complete_oauth(
    db: Session,
    client: GoogleCalendarClient,
    code: Optional[str],
    state: Optional[str],
    callback_url: Optional[str] = None,
) -> UserIntegrationDB:
    """Exchanges the authorization code and stores the credential for ``state``."""
    if not code or not state:
        raise ValidationError("Missing required parameters")

    user_id = state
    now = datetime.datetime.utcnow()
    data = client.exchange_code(code, callback_url or client.config.redirect_uri)
    access_token = data.get("access_token")
    if not access_token:
        raise ProviderError("Token endpoint returned no access token")

    profile = {}
    try:
        profile = client.fetch_userinfo(access_token)
    except ProviderError as e:
        logger.warning(f"Could not fetch Google profile for user {user_id}: {e}")

    record = get_credential(db, user_id)
    if record is None:
        record = UserIntegrationDB(user_id=user_id, provider=GOOGLE_CALENDAR_PROVIDER)
        db.add(record)

    record.access_token = access_token
    # Google omits the refresh token when the user already granted offline access.
    record.refresh_token = data.get("refresh_token") or record.refresh_token
    record.token_expires_at = _expires_at(now, data.get("expires_in"))
    record.connected = True
    record.provider_user_id = profile.get("id", record.provider_user_id)
    record.provider_email = profile.get("email", record.provider_email)
    db.commit()
    db.refresh(record)

    logger.info(f"Stored Google Calendar integration for user {user_id}")
    return record


def disconnect(db: Session, client: GoogleCalendarClient, user_id: str) -> bool:
    """
    Revokes the token (best effort) and clears the stored credential.

    Returns whether the provider confirmed the revocation. Local state is
    cleared either way.
    """
    if not user_id:
        raise ValidationError("User ID is required")

    record = get_credential(db, user_id)
    if record is None:
        logger.info(f"No Google Calendar integration to disconnect for user {user_id}")
        return False

    revoked = False
    token = record.access_token or record.refresh_token
    if token:
        try:
            client.revoke_token(token)
            revoked = True
        except ProviderError as e:
            logger.warning(f"Revoking Google token for user {user_id} failed, disconnecting anyway: {e}")

    record.connected = False
    record.access_token = None
    record.refresh_token = None
    record.token_expires_at = None
    clear_settings(db, user_id)
    db.commit()

    logger.info(f"Disconnected Google Calendar for user {user_id}")
    return revoked
