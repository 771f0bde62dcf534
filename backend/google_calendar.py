import enum
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests

from config import GoogleConfig
from errors import ProviderError
from schemas import Calendar

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_REVOKE_URL = "https://oauth2.googleapis.com/revoke"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"
GOOGLE_CALENDAR_API = "https://www.googleapis.com/calendar/v3"


class DeleteOutcome(str, enum.Enum):
    DELETED = "deleted"
    ALREADY_GONE = "already_gone"
    NOT_FOUND = "not_found"


def _error_body(response: requests.Response) -> str:
    return (response.text or "")[:2000]


class GoogleCalendarClient:
    """Thin wrapper over the Google OAuth and Calendar REST endpoints.

    One instance is built per request from an explicit config and HTTP
    session. Access tokens are passed into every call, nothing about the
    user is cached here.
    """

    def __init__(self, config: GoogleConfig, session: Optional[requests.Session] = None):
        self.config = config
        self.session = session or requests.Session()

    def close(self) -> None:
        self.session.close()

    def _request(
        self,
        method: str,
        url: str,
        token: Optional[str] = None,
        params: Optional[dict] = None,
        payload: Optional[dict] = None,
        data: Optional[dict] = None,
    ) -> requests.Response:
        headers = {}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        try:
            return self.session.request(
                method=method,
                url=url,
                params=params,
                json=payload,
                data=data,
                headers=headers,
                timeout=self.config.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"Google request {method} {url} failed: {e}")
            raise ProviderError(f"Google request failed: {e}") from e

    @staticmethod
    def _raise_for_status(response: requests.Response, message: str) -> None:
        if not response.ok:
            raise ProviderError(message, status=response.status_code, body=_error_body(response))

    @staticmethod
    def _json(response: requests.Response, message: str) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError as e:
            raise ProviderError(
                f"{message}: invalid JSON response", status=response.status_code, body=_error_body(response)
            ) from e
        if not isinstance(data, dict):
            raise ProviderError(
                f"{message}: unexpected response", status=response.status_code, body=_error_body(response)
            )
        return data

    def _event(self, response: requests.Response, message: str) -> Dict[str, Any]:
        self._raise_for_status(response, message)
        event = self._json(response, message)
        if not event.get("id"):
            raise ProviderError(f"{message}: response has no event id", status=response.status_code)
        return event

    # --- OAUTH ---
    def exchange_code(self, code: str, redirect_uri: Optional[str]) -> Dict[str, Any]:
        config = self.config.require()
        response = self._request(
            "POST",
            GOOGLE_TOKEN_URL,
            data={
                "code": code,
                "client_id": config.client_id,
                "client_secret": config.client_secret,
                "redirect_uri": redirect_uri,
                "grant_type": "authorization_code",
            },
        )
        self._raise_for_status(response, "Failed to exchange authorization code")
        return self._json(response, "Failed to exchange authorization code")

    def refresh_access_token(self, refresh_token: str) -> Dict[str, Any]:
        config = self.config.require()
        response = self._request(
            "POST",
            GOOGLE_TOKEN_URL,
            data={
                "client_id": config.client_id,
                "client_secret": config.client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            },
        )
        self._raise_for_status(response, "Failed to refresh Google access token")
        data = self._json(response, "Failed to refresh Google access token")
        if not data.get("access_token"):
            raise ProviderError("Token endpoint returned no access token", status=response.status_code)
        return data

    def revoke_token(self, token: str) -> None:
        response = self._request("POST", GOOGLE_REVOKE_URL, params={"token": token})
        self._raise_for_status(response, "Failed to revoke Google token")

    def fetch_userinfo(self, token: str) -> Dict[str, Any]:
        response = self._request("GET", GOOGLE_USERINFO_URL, token=token)
        self._raise_for_status(response, "Failed to fetch Google user info")
        return self._json(response, "Failed to fetch Google user info")

    # --- CALENDAR ---
    def list_calendars(self, token: str) -> List[Calendar]:
        response = self._request("GET", f"{GOOGLE_CALENDAR_API}/users/me/calendarList", token=token)
        self._raise_for_status(response, "Failed to fetch calendars")
        items = self._json(response, "Failed to fetch calendars").get("items") or []
        return [
            Calendar(
                id=item["id"],
                name=item.get("summary") or "Untitled",
                color=item.get("backgroundColor") or "#4285F4",
                primary=bool(item.get("primary")),
                description=item.get("description"),
                access_role=item.get("accessRole"),
            )
            for item in items
            if item.get("id")
        ]

    def _events_url(self, calendar_id: str, event_id: Optional[str] = None) -> str:
        url = f"{GOOGLE_CALENDAR_API}/calendars/{quote(calendar_id, safe='')}/events"
        if event_id:
            url += f"/{quote(event_id, safe='')}"
        return url

    def insert_event(self, token: str, calendar_id: str, body: dict) -> Dict[str, Any]:
        response = self._request("POST", self._events_url(calendar_id), token=token, payload=body)
        return self._event(response, "Failed to create calendar event")

    def update_event(self, token: str, calendar_id: str, event_id: str, body: dict) -> Dict[str, Any]:
        response = self._request(
            "PUT", self._events_url(calendar_id, event_id), token=token, payload=body
        )
        return self._event(response, "Failed to update calendar event")

    def delete_event(self, token: str, calendar_id: str, event_id: str) -> DeleteOutcome:
        response = self._request("DELETE", self._events_url(calendar_id, event_id), token=token)
        if response.status_code == 410:
            logger.info(f"Event {event_id} already deleted from calendar {calendar_id}")
            return DeleteOutcome.ALREADY_GONE
        if response.status_code == 404:
            return DeleteOutcome.NOT_FOUND
        self._raise_for_status(response, "Failed to delete calendar event")
        return DeleteOutcome.DELETED
