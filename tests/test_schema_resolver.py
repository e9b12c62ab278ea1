"""
Tests for schema graph resolution.
"""

import unittest

from blocklift.client import InMemoryContentClient
from blocklift.demo import build_demo_site
from blocklift.errors import SchemaResolutionError
from blocklift.schema import SchemaCache, SchemaGraphResolver, to_field_descriptor


class TestFieldDescriptorConversion(unittest.TestCase):
    """Test conversion of raw API fields."""

    def test_relationships_are_reduced_to_ids(self):
        raw = {
            "id": "f1",
            "api_key": "body",
            "field_type": "rich_text",
            "validators": {"rich_text_blocks": {"item_types": ["b1"]}},
            "fieldset": {"id": "fs1", "type": "fieldset"},
            "item_type": {"id": "m1", "type": "item_type"},
        }
        field = to_field_descriptor(raw)

        self.assertEqual(field.fieldset, "fs1")
        self.assertEqual(field.item_type_id, "m1")
        self.assertFalse(field.localized)
        self.assertEqual(field.label, "")


class TestSchemaGraphResolver(unittest.IsolatedAsyncioTestCase):
    """Test reference discovery and nested path resolution."""

    async def asyncSetUp(self):
        self.client, self.quote_block = build_demo_site()
        self.resolver = SchemaGraphResolver(self.client)

    async def test_find_referencing_fields(self):
        """Test that both the top-level and the nested field are found."""
        references = await self.resolver.find_referencing_fields(self.quote_block)

        by_key = {reference.api_key: reference for reference in references}
        self.assertEqual(set(by_key), {"body", "quotes"})
        self.assertFalse(by_key["body"].parent_is_block)
        self.assertEqual(by_key["body"].parent_model_api_key, "articles")
        self.assertTrue(by_key["quotes"].parent_is_block)
        self.assertEqual(len(by_key["quotes"].allowed_block_ids), 2)

    async def test_non_block_fields_are_ignored(self):
        """Test that link fields pointing at the type are not references."""
        articles = next(i for i, t in self.client.item_types.items() if t["api_key"] == "articles")
        self.client.add_field(articles, "related", "links",
                              validators={"items_item_type": {"item_types": [self.quote_block]}})

        references = await self.resolver.find_referencing_fields(self.quote_block)
        self.assertNotIn("related", [reference.api_key for reference in references])

    async def test_resolve_nested_paths(self):
        """Test that nested paths are prefixed with the path to their owner block."""
        paths = await self.resolver.resolve_paths(self.quote_block)

        described = {(path.root_model_api_key, path.describe()) for path in paths}
        self.assertEqual(described, {("articles", "body"), ("pages", "sections → quotes")})

        nested = next(path for path in paths if path.root_model_api_key == "pages")
        self.assertTrue(nested.is_in_localized_context)
        self.assertEqual(nested.target_block_id, self.quote_block)
        self.assertEqual(nested.field_info.api_key, "quotes")

    async def test_cycles_terminate(self):
        """Test that mutually nesting blocks do not recurse forever."""
        client = InMemoryContentClient()
        block_a = client.add_item_type("A", "a_block", modular_block=True)
        block_b = client.add_item_type("B", "b_block", modular_block=True)
        client.add_field(block_a, "children", "rich_text",
                         validators={"rich_text_blocks": {"item_types": [block_b]}})
        client.add_field(block_b, "children", "rich_text",
                         validators={"rich_text_blocks": {"item_types": [block_a]}})
        model = client.add_item_type("Page", "pages")
        client.add_field(model, "content", "rich_text",
                         validators={"rich_text_blocks": {"item_types": [block_a]}})

        paths = await SchemaGraphResolver(client).resolve_paths(block_b)

        self.assertEqual(len(paths), 1)
        self.assertEqual(paths[0].describe(), "content → children")
        self.assertEqual([step.expected_block_type_id for step in paths[0].path], [block_a, block_b])

    async def test_analyze_block(self):
        """Test the full usage report."""
        messages = []
        analysis = await self.resolver.analyze_block(self.quote_block, on_progress=messages.append)

        self.assertEqual(analysis.block.api_key, "quote_block")
        self.assertEqual([field.api_key for field in analysis.fields], ["text", "author"])
        self.assertEqual(len(analysis.referencing_fields), 2)
        self.assertEqual(len(analysis.paths), 2)
        self.assertEqual(analysis.total_affected_records, 2)
        self.assertTrue(messages)

    async def test_analyze_rejects_models(self):
        articles = next(i for i, t in self.client.item_types.items() if t["api_key"] == "articles")
        with self.assertRaises(SchemaResolutionError):
            await self.resolver.analyze_block(articles)

    async def test_analyze_wraps_api_errors(self):
        with self.assertRaises(SchemaResolutionError):
            await self.resolver.analyze_block("missing")

    async def test_cache_avoids_repeated_lookups(self):
        cache = SchemaCache()
        resolver = SchemaGraphResolver(self.client, cache)
        await resolver.find_referencing_fields(self.quote_block)

        self.assertIn(self.quote_block, cache.referencing)
        cache.clear()
        self.assertEqual(cache.referencing, {})


if __name__ == '__main__':
    unittest.main(verbosity=2)
