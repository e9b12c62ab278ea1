"""
Tests for locating block instances inside records.
"""

import unittest

from blocklift.client import InMemoryContentClient
from blocklift.demo import build_demo_site
from blocklift.locator import (
    collect_block_instances,
    count_records_with_block,
    find_blocks_at_path,
    group_block_instances,
    synthetic_block_id,
)
from blocklift.models import BlockInstance, FieldReference, NestedBlockPath, PathStep
from blocklift.schema import SchemaGraphResolver


def structured_text(*children, blocks=None):
    value = {"schema": "dast", "document": {"type": "root", "children": list(children)}}
    if blocks is not None:
        value["blocks"] = blocks
    return value


def one_step_path(model_id, field_api_key, block_id, field_type="rich_text", localized=False):
    return NestedBlockPath(
        root_model_id=model_id,
        root_model_name="Article",
        root_model_api_key="articles",
        path=[PathStep(field_api_key=field_api_key, expected_block_type_id=block_id,
                       localized=localized, field_type=field_type)],
        field_info=FieldReference(
            id="f1",
            api_key=field_api_key,
            parent_model_id=model_id,
            parent_model_name="Article",
            parent_model_api_key="articles",
            parent_is_block=False,
            localized=localized,
            allowed_block_ids=[block_id],
            field_type=field_type,
        ),
    )


class TestFindBlocksAtPath(unittest.TestCase):
    """Test path walking inside a single record."""

    def test_only_expected_block_type_is_matched(self):
        record = {"body": [
            {"id": "1", "item_type": "quote", "text": "a"},
            {"id": "2", "item_type": "image", "url": "b"},
            {"id": "3", "item_type": "quote", "text": "c"},
        ]}
        steps = [PathStep(field_api_key="body", expected_block_type_id="quote", field_type="rich_text")]

        located = find_blocks_at_path(record, steps)

        self.assertEqual([block.block["id"] for block in located], ["1", "3"])
        self.assertEqual([block.path_indices for block in located], [[0], [2]])
        self.assertIsNone(located[0].locale)

    def test_locale_is_inherited_by_nested_steps(self):
        record = {"sections": {
            "en": [{"id": "s1", "item_type": "section", "quotes": [{"id": "q1", "item_type": "quote"}]}],
            "it": [{"id": "s2", "item_type": "section", "quotes": [{"id": "q2", "item_type": "quote"}]}],
        }}
        steps = [
            PathStep(field_api_key="sections", expected_block_type_id="section", localized=True,
                     field_type="rich_text"),
            PathStep(field_api_key="quotes", expected_block_type_id="quote", field_type="rich_text"),
        ]

        located = find_blocks_at_path(record, steps)

        self.assertEqual([(block.locale, block.path_indices) for block in located], [("en", [0, 0]), ("it", [0, 0])])

    def test_structured_text_only_yields_referenced_blocks(self):
        """Test that orphaned entries of the blocks array are ignored."""
        record = {"content": structured_text(
            {"type": "block", "item": "q1"},
            blocks=[{"id": "q1", "item_type": "quote"}, {"id": "q2", "item_type": "quote"}],
        )}
        steps = [PathStep(field_api_key="content", expected_block_type_id="quote", field_type="structured_text")]

        located = find_blocks_at_path(record, steps)

        self.assertEqual([block.block["id"] for block in located], ["q1"])

    def test_missing_field_yields_nothing(self):
        steps = [PathStep(field_api_key="body", expected_block_type_id="quote", field_type="rich_text")]
        self.assertEqual(find_blocks_at_path({}, steps), [])

    def test_synthetic_block_id(self):
        self.assertEqual(synthetic_block_id("r1", [0, 3], "it"), "r1_0_3_it")
        self.assertEqual(synthetic_block_id("r1", [2], None), "r1_2___default__")


class TestInstanceCollection(unittest.IsolatedAsyncioTestCase):
    """Test collecting and grouping instances across records."""

    async def test_collect_from_paginated_records(self):
        client = InMemoryContentClient(page_size=2)
        quote = client.add_item_type("Quote", "quote", modular_block=True)
        client.add_field(quote, "text", "text")
        articles = client.add_item_type("Article", "articles")
        client.add_field(articles, "body", "rich_text", validators={"rich_text_blocks": {"item_types": [quote]}})
        for index in range(5):
            client.add_record(articles, {"body": [{"item_type": quote, "text": f"quote {index}"}]})

        path = one_step_path(articles, "body", quote)
        instances = await collect_block_instances(client, path)

        self.assertEqual([instance.payload for instance in instances], [{"text": f"quote {i}"} for i in range(5)])
        self.assertEqual(len({instance.block_id for instance in instances}), 5)
        self.assertEqual(await count_records_with_block(client, articles, [path]), 5)

    async def test_collect_and_group_localized_instances(self):
        client, quote_block = build_demo_site()
        paths = await SchemaGraphResolver(client).resolve_paths(quote_block)
        nested = next(path for path in paths if path.root_model_api_key == "pages")

        instances = await collect_block_instances(client, nested)
        groups = group_block_instances(instances)

        self.assertEqual(len(instances), 2)
        self.assertEqual(len(groups), 1)
        self.assertEqual(set(groups[0].locale_data), {"en", "it"})
        self.assertEqual(groups[0].locale_data["it"]["text"], "Resta curioso.")
        self.assertEqual(len(groups[0].all_block_ids), 2)

    async def test_count_ignores_other_models(self):
        client, quote_block = build_demo_site()
        paths = await SchemaGraphResolver(client).resolve_paths(quote_block)

        self.assertEqual(await count_records_with_block(client, "unknown", paths), 0)


class TestGrouping(unittest.TestCase):
    """Test grouping of instances by position."""

    def test_groups_by_record_and_position(self):
        instances = [
            BlockInstance(root_record_id="r1", path_indices=[0], locale="en", block_id="a", payload={"t": "a"}),
            BlockInstance(root_record_id="r1", path_indices=[1], locale="en", block_id="b", payload={"t": "b"}),
            BlockInstance(root_record_id="r1", path_indices=[0], locale="it", block_id="c", payload={"t": "c"}),
            BlockInstance(root_record_id="r2", path_indices=[0], locale=None, block_id="d", payload={"t": "d"}),
        ]

        groups = group_block_instances(instances)

        self.assertEqual([group.group_key for group in groups], ["r1_0", "r1_1", "r2_0"])
        self.assertEqual(groups[0].all_block_ids, ["a", "c"])
        self.assertEqual(groups[0].reference_block_id, "a")
        self.assertIn("__default__", groups[2].locale_data)


if __name__ == '__main__':
    unittest.main(verbosity=2)
