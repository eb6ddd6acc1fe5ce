"""iTop REST/JSON webservice client.

All calls are POSTed to ``/webservices/rest.php?version=1.3`` with the query
as a ``json_data`` form field; GET with URL-encoded OQL is unreliable.

``request()`` never raises: it returns iTop's JSON or an error dict
``{"error": ..., "error-code"?: ...}``. ``core_get()`` turns those error dicts
into typed exceptions for the background jobs.
"""

import json
import logging
from typing import Literal

import httpx

from ..config import settings
from ..preferences.repository import ConfigRepository

logger = logging.getLogger(__name__)

REST_PATH = "/webservices/rest.php"
REST_VERSION = "1.3"
USER_AGENT = "Nextcloud iTop integration"
ITOP_CODE_UNAUTHORIZED = 1

CredentialScope = Literal["user", "application"]


class ItopError(Exception):
    """Base class for iTop failures."""


class ItopNotConfiguredError(ItopError):
    """URL or credentials missing."""


class ItopUnavailableError(ItopError):
    """iTop could not be reached or returned an unusable body."""


class ItopResponseError(ItopError):
    """iTop answered with an error payload."""

    def __init__(self, message: str, code: int | None = None) -> None:
        super().__init__(message)
        self.code = code


class ItopAuthError(ItopError):
    """iTop rejected the credentials. Permanent until reconfigured."""

    def __init__(self, message: str, credential: CredentialScope) -> None:
        super().__init__(message)
        self.credential = credential


class ItopClient:
    def __init__(
        self,
        config: ConfigRepository,
        http_client: httpx.Client | None = None,
    ) -> None:
        self._config = config
        self._http = http_client or httpx.Client(timeout=settings.itop_timeout)

    def close(self) -> None:
        self._http.close()

    def _itop_url(self, user_id: str) -> str:
        url = self._config.get_user_url(user_id) or self._config.get_admin_instance_url() or settings.itop_url
        return url.rstrip("/")

    def _credential(self, user_id: str) -> tuple[str | None, CredentialScope]:
        token = self._config.get_personal_token(user_id)
        if token:
            return token, "user"
        return self._config.get_application_token(), "application"

    def request(self, user_id: str, params: dict) -> dict:
        """POST one REST operation; returns the decoded body or an error dict."""
        itop_url = self._itop_url(user_id)
        if not itop_url:
            return {"error": "iTop URL not configured"}

        token, scope = self._credential(user_id)
        if not token:
            return {"error": "Application token not configured"}

        try:
            response = self._http.post(
                f"{itop_url}{REST_PATH}",
                params={"version": REST_VERSION},
                headers={"User-Agent": USER_AGENT, "Auth-Token": token},
                data={"json_data": json.dumps(params)},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.warning("iTop API error for user %s: HTTP %d", user_id, status)
            if status == 401:
                return {"error": "Bad credentials", "error-code": status, "credential": scope}
            if status == 403:
                return {"error": "Forbidden"}
            if status == 404:
                return {"error": "Not found"}
            return {"error": str(e)}
        except httpx.RequestError as e:
            logger.warning("iTop unreachable for user %s: %s", user_id, e)
            return {"error": str(e), "unreachable": True}

        try:
            result = response.json()
        except ValueError:
            return {"error": "Invalid JSON response from iTop", "unreachable": True}
        if not isinstance(result, dict):
            return {"error": "Invalid JSON response from iTop", "unreachable": True}
        if result.get("code") == ITOP_CODE_UNAUTHORIZED:
            logger.warning("iTop refused the %s token for user %s", scope, user_id)
            return {"error": result.get("message") or "Unauthorized", "error-code": 401, "credential": scope}
        return result

    def core_get(
        self,
        user_id: str,
        cls: str,
        key: str | int,
        output_fields: list[str] | tuple[str, ...] | str,
        limit: int | None = None,
    ) -> dict[str, dict]:
        """Run ``core/get`` and return ``{object_key: fields}``.

        Raises ItopAuthError, ItopUnavailableError, ItopNotConfiguredError or
        ItopResponseError instead of returning error payloads.
        """
        params = {
            "operation": "core/get",
            "class": cls,
            "key": key,
            "output_fields": output_fields if isinstance(output_fields, str) else ",".join(output_fields),
        }
        if limit:
            params["limit"] = limit

        result = self.request(user_id, params)
        _raise_for_error(result)

        objects = result.get("objects") or {}
        if not isinstance(objects, dict):
            raise ItopResponseError("Unexpected 'objects' shape in iTop response")
        return {
            obj_key: (obj.get("fields") or {})
            for obj_key, obj in objects.items()
            if isinstance(obj, dict)
        }


def _raise_for_error(result: dict) -> None:
    if "error" in result:
        message = str(result["error"])
        if result.get("error-code") == 401:
            raise ItopAuthError(message, result.get("credential", "application"))
        if result.get("unreachable"):
            raise ItopUnavailableError(message)
        if message in ("iTop URL not configured", "Application token not configured"):
            raise ItopNotConfiguredError(message)
        raise ItopResponseError(message, result.get("error-code"))

    code = result.get("code", 0)
    if code not in (0, "0", None):
        raise ItopResponseError(
            str(result.get("message") or "iTop returned an error"),
            code if isinstance(code, int) else None,
        )
