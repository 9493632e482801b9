"""Hetzner Cloud control-plane client built on requests."""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import requests

from ..errors import ProviderRequestError
from ..models import ActionHandle, ImageRecord, Keypair, ServerRecord, ServerRequest
from .client import CloudClient

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30
_PAGE_SIZE = 50


class HCloudClient(CloudClient):
    """Thin wrapper over the Hetzner Cloud REST API.

    Every call is a single request; nothing is retried. Non-2xx responses
    become ProviderRequestError carrying the API's error code and message.
    """

    def __init__(
        self,
        token: str,
        endpoint: str = "https://api.hetzner.cloud/v1",
        *,
        session: Optional[requests.Session] = None,
        timeout: int = DEFAULT_TIMEOUT,
        proxy: Optional[str] = None,
    ) -> None:
        if not token:
            raise ValueError("Hetzner Cloud API token is required")

        self.base_url = endpoint.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "User-Agent": "hcloud-snapshot-builder",
        })

        # Set up proxy if configured
        proxy = proxy or os.environ.get("HTTPS_PROXY") or os.environ.get("HTTP_PROXY")
        if proxy:
            self.session.proxies = {"http": proxy, "https": proxy}
            logger.info("HCloud client using proxy: %s", proxy)

    # ------------------------------------------------------------------ keys

    def create_ssh_key(self, name: str, public_key: str, labels: Optional[Dict[str, str]] = None) -> Keypair:
        body: Dict[str, Any] = {"name": name, "public_key": public_key}
        if labels:
            body["labels"] = dict(labels)
        data = self._request("POST", "/ssh_keys", json=body)
        key = data["ssh_key"]
        return Keypair(id=key["id"], name=key["name"], public_key=key.get("public_key", public_key))

    def delete_ssh_key(self, key_id: int) -> None:
        self._request("DELETE", f"/ssh_keys/{key_id}")

    # ---------------------------------------------------------------- images

    def list_images(self, label_selector: str) -> List[ImageRecord]:
        images: List[ImageRecord] = []
        page: Optional[int] = 1
        while page:
            data = self._request(
                "GET",
                "/images",
                params={"label_selector": label_selector, "page": page, "per_page": _PAGE_SIZE},
            )
            images.extend(ImageRecord.from_dict(item) for item in data.get("images", []))
            pagination = (data.get("meta") or {}).get("pagination") or {}
            page = pagination.get("next_page")
        return images

    def create_image(
        self,
        server_id: int,
        description: str,
        labels: Optional[Dict[str, str]] = None,
    ) -> Tuple[ImageRecord, ActionHandle]:
        body: Dict[str, Any] = {"type": "snapshot", "description": description}
        if labels:
            body["labels"] = dict(labels)
        data = self._request("POST", f"/servers/{server_id}/actions/create_image", json=body)
        return ImageRecord.from_dict(data["image"]), ActionHandle.from_dict(data["action"])

    # --------------------------------------------------------------- servers

    def create_server(self, request: ServerRequest) -> Tuple[ServerRecord, ActionHandle]:
        data = self._request("POST", "/servers", json=request.to_payload())
        return ServerRecord.from_dict(data["server"]), ActionHandle.from_dict(data["action"])

    def get_server(self, server_id: int) -> ServerRecord:
        data = self._request("GET", f"/servers/{server_id}")
        return ServerRecord.from_dict(data["server"])

    def delete_server(self, server_id: int) -> Optional[ActionHandle]:
        data = self._request("DELETE", f"/servers/{server_id}")
        action = data.get("action") if data else None
        return ActionHandle.from_dict(action) if action else None

    def shutdown(self, server_id: int) -> ActionHandle:
        return self._server_action(server_id, "shutdown")

    def power_off(self, server_id: int) -> ActionHandle:
        return self._server_action(server_id, "poweroff")

    def power_on(self, server_id: int) -> ActionHandle:
        return self._server_action(server_id, "poweron")

    def reboot(self, server_id: int) -> ActionHandle:
        return self._server_action(server_id, "reset")

    def enable_rescue(
        self,
        server_id: int,
        mode: str,
        ssh_key_ids: Sequence[Union[int, str]] = (),
    ) -> Tuple[Optional[str], ActionHandle]:
        body: Dict[str, Any] = {"type": mode}
        if ssh_key_ids:
            body["ssh_keys"] = list(ssh_key_ids)
        data = self._request("POST", f"/servers/{server_id}/actions/enable_rescue", json=body)
        return data.get("root_password"), ActionHandle.from_dict(data["action"])

    def change_type(self, server_id: int, server_type: str, upgrade_disk: bool = False) -> ActionHandle:
        return self._server_action(
            server_id,
            "change_type",
            {"server_type": server_type, "upgrade_disk": upgrade_disk},
        )

    # --------------------------------------------------------------- actions

    def get_action(self, action_id: int) -> ActionHandle:
        data = self._request("GET", f"/actions/{action_id}")
        return ActionHandle.from_dict(data["action"])

    # -------------------------------------------------------------- internal

    def _server_action(self, server_id: int, name: str, body: Optional[Dict[str, Any]] = None) -> ActionHandle:
        data = self._request("POST", f"/servers/{server_id}/actions/{name}", json=body or {})
        return ActionHandle.from_dict(data["action"])

    def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        logger.debug("%s %s", method, path)
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.exceptions.RequestException as exc:
            raise ProviderRequestError(f"{method} {path} failed: {exc}") from exc

        if response.status_code >= 400:
            raise _error_from_response(method, path, response)

        if response.status_code == 204 or not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise ProviderRequestError(
                f"{method} {path} returned invalid JSON", status=response.status_code
            ) from exc


def _error_from_response(method: str, path: str, response: requests.Response) -> ProviderRequestError:
    code = None
    message = None
    try:
        error = (response.json() or {}).get("error") or {}
        code = error.get("code")
        message = error.get("message")
    except ValueError:
        pass
    if not message:
        message = f"{method} {path} failed: {response.text[:500]}"
    return ProviderRequestError(message, code=code, status=response.status_code)
