"""
Tests for the DatoCMS API client, using httpx's mock transport.
"""

import json
import os
import unittest
from unittest.mock import patch

import httpx

from blocklift.client import DatoCMSClient
from blocklift.client.http import flatten_resource, serialize_resource
from blocklift.errors import ContentAPIError


BASE_URL = "https://site-api.example.com"


def resource(resource_id, resource_type, attributes=None, relationships=None):
    data = {"id": resource_id, "type": resource_type, "attributes": attributes or {}}
    if relationships is not None:
        data["relationships"] = relationships
    return data


class TestResourceShapes(unittest.TestCase):
    """Test JSON:API flattening and serialization."""

    def test_flatten_resource(self):
        flat = flatten_resource(resource(
            "r1", "item",
            {"title": "Hello"},
            {
                "item_type": {"data": {"id": "m1", "type": "item_type"}},
                "creator": {"data": None},
            },
        ))

        self.assertEqual(flat, {
            "id": "r1",
            "type": "item",
            "title": "Hello",
            "item_type": {"id": "m1", "type": "item_type"},
            "creator": None,
        })

    def test_serialize_moves_relationships(self):
        document = serialize_resource("field", {"api_key": "body", "fieldset": "fs1", "id": "ignored"}, "f1")

        self.assertEqual(document, {"data": {
            "type": "field",
            "id": "f1",
            "attributes": {"api_key": "body"},
            "relationships": {"fieldset": {"data": {"type": "fieldset", "id": "fs1"}}},
        }})

    def test_serialize_clears_relationship(self):
        document = serialize_resource("item_type", {"title_field": None})
        self.assertEqual(document["data"]["relationships"], {"title_field": {"data": None}})


class TestDatoCMSClient(unittest.IsolatedAsyncioTestCase):
    """Test requests and responses over a mock transport."""

    def make_client(self, handler, **kwargs):
        client = DatoCMSClient(api_token="secret", base_url=BASE_URL, transport=httpx.MockTransport(handler),
                               **kwargs)
        client.poll_interval = 0
        self.addAsyncCleanup(client.close)
        return client

    def test_missing_token_is_an_error(self):
        with patch.dict(os.environ, {"DATOCMS_API_TOKEN": ""}):
            with self.assertRaises(ContentAPIError):
                DatoCMSClient()

    async def test_headers_and_flattening(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"data": resource(
                "b1", "item_type", {"name": "Quote", "api_key": "quote", "modular_block": True},
                {"title_field": {"data": None}},
            )})

        client = self.make_client(handler, environment="sandbox")
        item_type = await client.find_item_type("b1")

        self.assertEqual(item_type["api_key"], "quote")
        self.assertTrue(item_type["modular_block"])
        self.assertIsNone(item_type["title_field"])
        request = seen[0]
        self.assertEqual(request.url.path, "/item-types/b1")
        self.assertEqual(request.headers["Authorization"], "Bearer secret")
        self.assertEqual(request.headers["X-Api-Version"], "3")
        self.assertEqual(request.headers["X-Environment"], "sandbox")

    async def test_iter_records_paginates(self):
        records = [resource(f"r{i}", "item", {"title": f"Record {i}"}) for i in range(5)]
        seen = []

        def handler(request):
            params = request.url.params
            seen.append(params)
            offset = int(params["page[offset]"])
            limit = int(params["page[limit]"])
            return httpx.Response(200, json={"data": records[offset:offset + limit]})

        client = self.make_client(handler)
        client.page_size = 2

        titles = [record["title"] async for record in client.iter_records("m1")]

        self.assertEqual(titles, [f"Record {i}" for i in range(5)])
        self.assertEqual(len(seen), 3)
        self.assertEqual(seen[0]["filter[type]"], "m1")
        self.assertEqual(seen[0]["nested"], "true")
        self.assertEqual(seen[0]["version"], "current")

    async def test_accepted_request_waits_for_job(self):
        polls = []
        posted = []

        def handler(request):
            if request.method == "POST":
                posted.append(json.loads(request.content))
                return httpx.Response(202, json={"data": {"id": "job1", "type": "job"}})
            polls.append(request.url.path)
            if len(polls) == 1:
                return httpx.Response(404, json={"data": []})
            return httpx.Response(200, json={"data": resource("job1", "job_result", {
                "status": 201,
                "payload": {"data": resource(
                    "r1", "item", {"text": "X"},
                    {"item_type": {"data": {"id": "m1", "type": "item_type"}}},
                )},
            })})

        client = self.make_client(handler)
        record = await client.create_record("m1", {"text": "X"})

        self.assertEqual(record["id"], "r1")
        self.assertEqual(record["item_type"], {"id": "m1", "type": "item_type"})
        self.assertEqual(polls, ["/job-results/job1", "/job-results/job1"])
        self.assertEqual(posted[0]["data"]["relationships"]["item_type"]["data"], {"type": "item_type", "id": "m1"})
        self.assertEqual(posted[0]["data"]["attributes"], {"text": "X"})

    async def test_failed_job_raises(self):
        def handler(request):
            if request.method == "PUT":
                return httpx.Response(202, json={"data": {"id": "job2", "type": "job"}})
            return httpx.Response(200, json={"data": resource("job2", "job_result", {
                "status": 422,
                "payload": {"data": [{"id": "e", "type": "api_error", "attributes": {"code": "INVALID_FIELD"}}]},
            })})

        client = self.make_client(handler)
        with self.assertRaises(ContentAPIError) as context:
            await client.update_field("f1", {"label": "Body"})
        self.assertEqual(context.exception.status_code, 422)

    async def test_error_codes_in_message(self):
        def handler(request):
            return httpx.Response(422, json={"data": [
                {"id": "e1", "type": "api_error", "attributes": {"code": "INVALID_FIELD", "details": {}}},
            ]})

        client = self.make_client(handler)
        with self.assertRaises(ContentAPIError) as context:
            await client.update_item_type("m1", {"api_key": "quote_block"})

        self.assertEqual(context.exception.status_code, 422)
        self.assertIn("INVALID_FIELD", str(context.exception))

    async def test_connection_errors_are_wrapped(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = self.make_client(handler)
        with self.assertRaises(ContentAPIError):
            await client.list_item_types()

    async def test_delete_and_site_locales(self):
        def handler(request):
            if request.method == "DELETE":
                return httpx.Response(204)
            return httpx.Response(200, json={"data": resource("s1", "site", {"locales": ["en", "it"]})})

        client = self.make_client(handler)

        self.assertIsNone(await client.destroy_field("f1"))
        self.assertEqual(await client.site_locales(), ["en", "it"])


if __name__ == '__main__':
    unittest.main(verbosity=2)
