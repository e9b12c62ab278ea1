"""
Tests for record migration and record rewrites.
"""

import unittest

from blocklift.client import InMemoryContentClient
from blocklift.converter import (
    migrate_path,
    rewrite_structured_text_field,
    strip_converted_blocks,
    write_links_field,
)
from blocklift.converter.migrate import combine_link_values
from blocklift.demo import build_demo_site
from blocklift.models import BlockMigrationMapping
from blocklift.schema import SchemaGraphResolver


def add_target_model(client, localized=False):
    model = client.add_item_type("Quote Record", "quote_records")
    client.add_field(model, "text", "text", localized=localized)
    client.add_field(model, "author", "string", localized=localized)
    return model


def build_article_site():
    """Articles whose body mixes two quotes and an image."""
    client = InMemoryContentClient(locales=["en", "it"])
    quote = client.add_item_type("Quote", "quote", modular_block=True)
    client.add_field(quote, "text", "text")
    client.add_field(quote, "author", "string")
    image = client.add_item_type("Image", "image", modular_block=True)
    client.add_field(image, "url", "string")

    articles = client.add_item_type("Article", "articles")
    client.add_field(articles, "body", "rich_text",
                     validators={"rich_text_blocks": {"item_types": [quote, image]}})
    record = client.add_record(articles, {"body": [
        {"item_type": quote, "text": "First", "author": "A"},
        {"item_type": image, "url": "https://example.com/a.png"},
        {"item_type": quote, "text": "Second", "author": "B"},
    ]})
    return client, quote, articles, record["id"]


async def only_path(client, block_id, root_api_key):
    paths = await SchemaGraphResolver(client).resolve_paths(block_id)
    return next(path for path in paths if path.root_model_api_key == root_api_key)


class TestRecordCreation(unittest.IsolatedAsyncioTestCase):
    """Test creating records from block instances."""

    async def test_one_record_per_instance(self):
        client, quote, articles, _ = build_article_site()
        model = add_target_model(client)
        path = await only_path(client, quote, "articles")
        mapping = BlockMigrationMapping()

        created = await migrate_path(client, path, model, mapping, ["en", "it"])

        self.assertEqual(created, 2)
        self.assertEqual(len(mapping), 2)
        texts = sorted(record["text"] for record in client.records_of_type(model))
        self.assertEqual(texts, ["First", "Second"])

    async def test_rerun_creates_nothing(self):
        """Test that an already mapped instance is never migrated twice."""
        client, quote, articles, _ = build_article_site()
        model = add_target_model(client)
        path = await only_path(client, quote, "articles")
        mapping = BlockMigrationMapping()

        await migrate_path(client, path, model, mapping, ["en", "it"])
        created = await migrate_path(client, path, model, mapping, ["en", "it"])

        self.assertEqual(created, 0)
        self.assertEqual(len(client.records_of_type(model)), 2)

    async def test_failed_create_is_skipped_and_retried(self):
        client, quote, articles, _ = build_article_site()
        model = add_target_model(client)
        path = await only_path(client, quote, "articles")
        mapping = BlockMigrationMapping()

        client.fail_next_creates = 1
        created = await migrate_path(client, path, model, mapping, ["en", "it"])
        self.assertEqual(created, 1)
        self.assertEqual(len(mapping), 1)

        created = await migrate_path(client, path, model, mapping, ["en", "it"])
        self.assertEqual(created, 1)
        self.assertEqual(len(mapping), 2)

    async def test_non_localized_path_into_localized_model(self):
        client, quote, articles, _ = build_article_site()
        model = add_target_model(client, localized=True)
        path = await only_path(client, quote, "articles")

        await migrate_path(client, path, model, BlockMigrationMapping(), ["en", "it"], fields_localized=True)

        record = client.records_of_type(model)[0]
        self.assertEqual(record["text"], {"en": "First", "it": "First"})

    async def test_localized_instances_merge_into_one_record(self):
        client, quote_block = build_demo_site()
        model = add_target_model(client, localized=True)
        path = await only_path(client, quote_block, "pages")
        mapping = BlockMigrationMapping()

        created = await migrate_path(client, path, model, mapping, ["en", "it"], fields_localized=True)

        self.assertEqual(created, 1)
        record = client.records_of_type(model)[0]
        self.assertEqual(record["text"], {"en": "Stay curious.", "it": "Resta curioso."})
        self.assertEqual(record["author"], {"en": "Team", "it": "Team"})
        self.assertEqual(len(mapping), 2)
        self.assertEqual(len(set(mapping.values())), 1)

    async def test_block_in_one_locale_fills_every_locale(self):
        client = InMemoryContentClient(locales=["en", "it"])
        quote = client.add_item_type("Quote", "quote", modular_block=True)
        client.add_field(quote, "text", "text")
        client.add_field(quote, "author", "string")
        articles = client.add_item_type("Article", "articles")
        client.add_field(articles, "body", "rich_text", localized=True,
                         validators={"rich_text_blocks": {"item_types": [quote]}})
        client.add_record(articles, {"body": {
            "en": [],
            "it": [{"item_type": quote, "text": "Ciao", "author": "B"}],
        }})
        model = add_target_model(client, localized=True)
        path = await only_path(client, quote, "articles")

        created = await migrate_path(client, path, model, BlockMigrationMapping(), ["en", "it"],
                                     fields_localized=True)

        self.assertEqual(created, 1)
        record = client.records_of_type(model)[0]
        self.assertEqual(record["text"], {"en": "Ciao", "it": "Ciao"})
        self.assertEqual(record["author"], {"en": "B", "it": "B"})

    async def test_partly_mapped_group_reuses_record(self):
        client, quote_block = build_demo_site()
        model = add_target_model(client, localized=True)
        path = await only_path(client, quote_block, "pages")

        # Simulate an earlier run that mapped the English block only
        first = BlockMigrationMapping()
        await migrate_path(client, path, model, first, ["en", "it"], fields_localized=True)
        english_block_id = next(iter(first))
        mapping = BlockMigrationMapping({english_block_id: first[english_block_id]})

        created = await migrate_path(client, path, model, mapping, ["en", "it"], fields_localized=True)

        self.assertEqual(created, 0)
        self.assertEqual(dict(mapping), dict(first))


class TestRecordRewrites(unittest.IsolatedAsyncioTestCase):
    """Test writing links into records and stripping blocks."""

    async def asyncSetUp(self):
        self.client, self.quote, self.articles, self.record_id = build_article_site()
        self.model = add_target_model(self.client)
        self.path = await only_path(self.client, self.quote, "articles")
        self.mapping = BlockMigrationMapping()
        await migrate_path(self.client, self.path, self.model, self.mapping, ["en", "it"])
        await self.client.create_field(self.articles, {
            "api_key": "body_links",
            "field_type": "links",
            "validators": {"items_item_type": {"item_types": [self.model]}},
        })

    async def test_write_links_in_block_order(self):
        touched = set()
        updated = await write_links_field(self.client, self.path, "body_links", "links", self.mapping,
                                          ["en", "it"], touched_records=touched)

        self.assertEqual(updated, 1)
        self.assertEqual(touched, {self.record_id})
        body = self.client.records[self.record_id]["body"]
        expected = [self.mapping[block["id"]] for block in body if block["item_type"]["id"] == self.quote]
        self.assertEqual(self.client.records[self.record_id]["body_links"], expected)

    async def test_append_keeps_existing_links(self):
        other = self.client.add_record(self.model, {"text": "Other"})["id"]
        self.client.records[self.record_id]["body_links"] = [other]

        await write_links_field(self.client, self.path, "body_links", "links", self.mapping,
                                ["en", "it"], append=True)

        links = self.client.records[self.record_id]["body_links"]
        self.assertEqual(links[0], other)
        self.assertEqual(len(links), 3)

    async def test_failed_update_is_skipped(self):
        self.client.failing_updates.add(self.record_id)

        updated = await write_links_field(self.client, self.path, "body_links", "links", self.mapping,
                                          ["en", "it"])

        self.assertEqual(updated, 0)
        self.assertEqual(self.client.records[self.record_id]["body_links"], [])

    async def test_strip_only_converted_blocks(self):
        updated = await strip_converted_blocks(self.client, self.path, self.quote, self.mapping, ["en", "it"])

        self.assertEqual(updated, 1)
        body = self.client.records[self.record_id]["body"]
        self.assertEqual([block["url"] for block in body], ["https://example.com/a.png"])

    async def test_strip_keeps_unmapped_blocks(self):
        updated = await strip_converted_blocks(self.client, self.path, self.quote, BlockMigrationMapping(),
                                               ["en", "it"])

        self.assertEqual(updated, 0)
        self.assertEqual(len(self.client.records[self.record_id]["body"]), 3)


class TestNestedRewrites(unittest.IsolatedAsyncioTestCase):
    """Test rewrites of blocks nested in localized fields."""

    async def test_links_written_into_parent_blocks_per_locale(self):
        client, quote_block = build_demo_site()
        model = add_target_model(client, localized=True)
        path = await only_path(client, quote_block, "pages")
        mapping = BlockMigrationMapping()
        await migrate_path(client, path, model, mapping, ["en", "it"], fields_localized=True)

        section_block = path.path[0].expected_block_type_id
        client.add_field(section_block, "quotes_links", "links",
                         validators={"items_item_type": {"item_types": [model]}})

        updated = await write_links_field(client, path, "quotes_links", "links", mapping, ["en", "it"])

        self.assertEqual(updated, 1)
        new_record_id = client.records_of_type(model)[0]["id"]
        page = client.records_of_type(path.root_model_id)[0]
        self.assertEqual(page["sections"]["en"][0]["quotes_links"], [new_record_id])
        self.assertEqual(page["sections"]["it"][0]["quotes_links"], [new_record_id])
        # Sibling blocks are untouched
        self.assertEqual(len(page["sections"]["en"][0]["quotes"]), 2)

    async def test_strip_nested_blocks(self):
        client, quote_block = build_demo_site()
        model = add_target_model(client, localized=True)
        path = await only_path(client, quote_block, "pages")
        mapping = BlockMigrationMapping()
        await migrate_path(client, path, model, mapping, ["en", "it"], fields_localized=True)

        await strip_converted_blocks(client, path, quote_block, mapping, ["en", "it"])

        page = client.records_of_type(path.root_model_id)[0]
        for locale in ("en", "it"):
            quotes = page["sections"][locale][0]["quotes"]
            self.assertEqual([block["url"] for block in quotes], ["https://example.com/team.png"])


class TestStructuredTextRewrite(unittest.IsolatedAsyncioTestCase):
    """Test rewriting structured text documents in records."""

    async def asyncSetUp(self):
        self.client = InMemoryContentClient()
        self.quote = self.client.add_item_type("Quote", "quote", modular_block=True)
        self.client.add_field(self.quote, "text", "text")
        posts = self.client.add_item_type("Post", "posts")
        self.client.add_field(posts, "content", "structured_text",
                              validators={"structured_text_blocks": {"item_types": [self.quote]}})
        self.record_id = self.client.add_record(posts, {"content": {
            "schema": "dast",
            "document": {"type": "root", "children": [
                {"type": "paragraph", "children": [{"type": "span", "value": "Intro"}]},
                {"type": "block", "item": "q1"},
            ]},
            "blocks": [{"id": "q1", "item_type": self.quote, "text": "Quoted"}],
        }})["id"]

        self.model = add_target_model(self.client)
        self.path = await only_path(self.client, self.quote, "posts")
        self.mapping = BlockMigrationMapping()
        await migrate_path(self.client, self.path, self.model, self.mapping, ["en"])

    async def test_replace_block_nodes(self):
        updated = await rewrite_structured_text_field(self.client, self.path, self.quote, self.mapping, ["en"])

        self.assertEqual(updated, 1)
        content = self.client.records[self.record_id]["content"]
        new_record_id = self.mapping["q1"]
        self.assertEqual(content["document"]["children"][1]["children"][1],
                         {"type": "inlineItem", "item": new_record_id})
        self.assertNotIn("blocks", content)
        self.assertEqual(content["links"], [{"id": new_record_id}])

    async def test_append_keeps_block_nodes(self):
        await rewrite_structured_text_field(self.client, self.path, self.quote, self.mapping, ["en"], replace=False)

        content = self.client.records[self.record_id]["content"]
        self.assertEqual([child["type"] for child in content["document"]["children"]],
                         ["paragraph", "block", "paragraph"])
        self.assertEqual(len(content["blocks"]), 1)

    async def test_migrated_record_holds_block_values(self):
        record = self.client.records[self.mapping["q1"]]
        self.assertEqual(record["text"], "Quoted")


class TestCombineLinkValues(unittest.TestCase):
    """Test link value computation."""

    def test_links(self):
        self.assertEqual(combine_link_values(["a"], ["b", "a"], "links", append=True), ["a", "b"])
        self.assertEqual(combine_link_values(["a"], ["b"], "links", append=False), ["b"])
        self.assertEqual(combine_link_values(None, ["b"], "links", append=True), ["b"])

    def test_single_link(self):
        self.assertEqual(combine_link_values(None, ["b", "c"], "link", append=False), "b")
        self.assertEqual(combine_link_values("a", ["b"], "link", append=True), "a")
        self.assertIsNone(combine_link_values(None, [], "link", append=False))


if __name__ == '__main__':
    unittest.main(verbosity=2)
