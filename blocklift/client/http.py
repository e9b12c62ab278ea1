"""
DatoCMS Content Management API client for blocklift.

This module talks to the CMA REST endpoints with httpx, flattens JSON:API
resources into plain dictionaries and waits for asynchronous jobs.
"""

import asyncio
import logging
import os
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from ..config import config
from ..errors import ContentAPIError
from .base import BaseContentClient


# Relationship attributes per resource type, sent under "relationships"
RELATIONSHIP_KEYS = {
    "item_type": {"title_field": "field", "ordering_field": "field"},
    "field": {"fieldset": "fieldset"},
    "item": {"item_type": "item_type", "creator": "account"},
    "menu_item": {"item_type": "item_type", "parent": "menu_item"},
}


def flatten_resource(resource: Dict[str, Any]) -> Dict[str, Any]:
    """
    Flatten a JSON:API resource.

    Attributes move next to ``id``/``type`` and every relationship becomes
    ``{"id", "type"}`` (or a list of them, or None).
    """
    flat: Dict[str, Any] = {"id": resource.get("id"), "type": resource.get("type")}
    flat.update(resource.get("attributes") or {})
    for name, relationship in (resource.get("relationships") or {}).items():
        data = relationship.get("data") if isinstance(relationship, dict) else None
        if isinstance(data, list):
            flat[name] = [{"id": entry["id"], "type": entry["type"]} for entry in data]
        elif isinstance(data, dict):
            flat[name] = {"id": data["id"], "type": data["type"]}
        else:
            flat[name] = None
    if "meta" in resource:
        flat["meta"] = resource["meta"]
    return flat


def serialize_resource(resource_type: str, attributes: Dict[str, Any],
                       resource_id: Optional[str] = None) -> Dict[str, Any]:
    """Build a JSON:API request document from flat attributes."""
    relationship_types = RELATIONSHIP_KEYS.get(resource_type, {})
    data: Dict[str, Any] = {"type": resource_type, "attributes": {}}
    if resource_id:
        data["id"] = resource_id

    relationships = {}
    for key, value in attributes.items():
        if key in ("id", "type", "meta"):
            continue
        if key in relationship_types:
            related_id = value.get("id") if isinstance(value, dict) else value
            relationships[key] = {
                "data": {"type": relationship_types[key], "id": related_id} if related_id else None
            }
        else:
            data["attributes"][key] = value
    if relationships:
        data["relationships"] = relationships
    return {"data": data}


class DatoCMSClient(BaseContentClient):
    """
    Content client for the DatoCMS Content Management API.
    """

    def __init__(self, api_token: Optional[str] = None, base_url: Optional[str] = None,
                 timeout: Optional[float] = None, transport: Optional[httpx.AsyncBaseTransport] = None,
                 environment: Optional[str] = None):
        """
        Initialize the client.

        Args:
            api_token: CMA token (defaults to the environment variable named in config)
            base_url: API root URL (defaults to config value)
            timeout: Request timeout in seconds (defaults to config value)
            transport: Optional httpx transport, e.g. a MockTransport in tests
            environment: Optional sandbox environment name

        Raises:
            ContentAPIError: If no API token is available
        """
        token = api_token or os.environ.get(config.api_token_env)
        if not token:
            raise ContentAPIError(f"No API token given; set {config.api_token_env}")

        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
            "Content-Type": "application/vnd.api+json",
            "X-Api-Version": config.api_version,
        }
        if environment:
            headers["X-Environment"] = environment

        self.page_size = config.page_size
        self.poll_interval = config.get("api.job_poll_interval", 1.0)
        self.max_polls = config.get("api.job_max_polls", 120)
        self.client = httpx.AsyncClient(
            base_url=base_url or config.api_base_url,
            headers=headers,
            timeout=timeout or config.api_timeout,
            transport=transport,
        )

    async def close(self) -> None:
        await self.client.aclose()

    # =========================================================================
    # Transport
    # =========================================================================

    async def _request(self, method: str, path: str, params: Optional[Dict[str, Any]] = None,
                       body: Optional[Dict[str, Any]] = None) -> Any:
        """
        Send a request and return the decoded ``data`` member.

        Raises:
            ContentAPIError: On connection failures and error responses
        """
        try:
            response = await self.client.request(method, path, params=params, json=body)
        except httpx.RequestError as e:
            raise ContentAPIError(f"Failed to connect to the content API: {e}")

        if response.status_code == 202:
            return await self._wait_for_job(response.json()["data"]["id"])
        if response.status_code == 204 or not response.content:
            self._raise_for_status(response)
            return None

        self._raise_for_status(response)
        return response.json().get("data")

    def _raise_for_status(self, response: httpx.Response) -> None:
        if not response.is_error:
            return
        details = None
        message = f"{response.request.method} {response.request.url.path} failed with {response.status_code}"
        try:
            details = response.json()
            codes = [
                (error.get("attributes") or {}).get("code")
                for error in details.get("data", []) if isinstance(error, dict)
            ]
            codes = [code for code in codes if code]
            if codes:
                message = f"{message}: {', '.join(codes)}"
        except ValueError:
            details = response.text
        raise ContentAPIError(message, status_code=response.status_code, details=details)

    async def _wait_for_job(self, job_id: str) -> Any:
        """Poll a job result until it completes and return its payload data."""
        for _ in range(self.max_polls):
            await asyncio.sleep(self.poll_interval)
            response = await self.client.get(f"/job-results/{job_id}")
            if response.status_code == 404:
                continue
            self._raise_for_status(response)

            attributes = response.json()["data"].get("attributes") or {}
            payload = attributes.get("payload") or {}
            status = attributes.get("status")
            if status and status >= 400:
                raise ContentAPIError(f"Job {job_id} failed with {status}", status_code=status, details=payload)
            return payload.get("data")

        raise ContentAPIError(f"Job {job_id} did not complete after {self.max_polls} polls")

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self._request("GET", path, params=params)

    # =========================================================================
    # Item types
    # =========================================================================

    async def find_item_type(self, item_type_id: str) -> Dict[str, Any]:
        return flatten_resource(await self._get(f"/item-types/{item_type_id}"))

    async def list_item_types(self) -> List[Dict[str, Any]]:
        return [flatten_resource(r) for r in await self._get("/item-types")]

    async def create_item_type(self, attributes: Dict[str, Any]) -> Dict[str, Any]:
        data = await self._request("POST", "/item-types", body=serialize_resource("item_type", attributes))
        return flatten_resource(data)

    async def update_item_type(self, item_type_id: str, attributes: Dict[str, Any]) -> Dict[str, Any]:
        body = serialize_resource("item_type", attributes, item_type_id)
        return flatten_resource(await self._request("PUT", f"/item-types/{item_type_id}", body=body))

    async def destroy_item_type(self, item_type_id: str) -> None:
        await self._request("DELETE", f"/item-types/{item_type_id}")

    # =========================================================================
    # Fields
    # =========================================================================

    async def list_fields(self, item_type_id: str) -> List[Dict[str, Any]]:
        return [flatten_resource(r) for r in await self._get(f"/item-types/{item_type_id}/fields")]

    async def find_field(self, field_id: str) -> Dict[str, Any]:
        return flatten_resource(await self._get(f"/fields/{field_id}"))

    async def referencing_fields(self, item_type_id: str) -> List[Dict[str, Any]]:
        return [flatten_resource(r) for r in await self._get(f"/item-types/{item_type_id}/fields/referencing")]

    async def create_field(self, item_type_id: str, attributes: Dict[str, Any]) -> Dict[str, Any]:
        body = serialize_resource("field", attributes)
        return flatten_resource(await self._request("POST", f"/item-types/{item_type_id}/fields", body=body))

    async def update_field(self, field_id: str, attributes: Dict[str, Any]) -> Dict[str, Any]:
        body = serialize_resource("field", attributes, field_id)
        return flatten_resource(await self._request("PUT", f"/fields/{field_id}", body=body))

    async def destroy_field(self, field_id: str) -> None:
        await self._request("DELETE", f"/fields/{field_id}")

    # =========================================================================
    # Records
    # =========================================================================

    async def iter_records(self, item_type_id: str, nested: bool = True) -> AsyncIterator[Dict[str, Any]]:
        """Yield every record of a model, fetching pages sequentially."""
        offset = 0
        while True:
            params = {
                "filter[type]": item_type_id,
                "version": "current",
                "page[offset]": offset,
                "page[limit]": self.page_size,
            }
            if nested:
                params["nested"] = "true"

            page = await self._get("/items", params=params)
            logging.debug(f"Fetched {len(page)} records of {item_type_id} at offset {offset}")
            for resource in page:
                yield flatten_resource(resource)

            if len(page) < self.page_size:
                break
            offset += self.page_size

    async def find_record(self, record_id: str) -> Dict[str, Any]:
        return flatten_resource(await self._get(f"/items/{record_id}", params={"nested": "true"}))

    async def create_record(self, item_type_id: str, attributes: Dict[str, Any]) -> Dict[str, Any]:
        body = serialize_resource("item", {**attributes, "item_type": item_type_id})
        return flatten_resource(await self._request("POST", "/items", body=body))

    async def update_record(self, record_id: str, attributes: Dict[str, Any]) -> Dict[str, Any]:
        body = serialize_resource("item", attributes, record_id)
        return flatten_resource(await self._request("PUT", f"/items/{record_id}", body=body))

    async def publish_record(self, record_id: str) -> Dict[str, Any]:
        return flatten_resource(await self._request("PUT", f"/items/{record_id}/publish"))

    # =========================================================================
    # Site
    # =========================================================================

    async def site_locales(self) -> List[str]:
        site = await self._get("/site")
        return list((site.get("attributes") or {}).get("locales") or [])

    async def list_menu_items(self) -> List[Dict[str, Any]]:
        return [flatten_resource(r) for r in await self._get("/menu-items")]

    async def update_menu_item(self, menu_item_id: str, attributes: Dict[str, Any]) -> Dict[str, Any]:
        body = serialize_resource("menu_item", attributes, menu_item_id)
        return flatten_resource(await self._request("PUT", f"/menu-items/{menu_item_id}", body=body))
