"""
Demo content for blocklift.

Builds an in-memory site with a quote block used at the top level of one
model and nested, in a localized field, inside another.
"""

from typing import Tuple

from .client import InMemoryContentClient


def build_demo_site() -> Tuple[InMemoryContentClient, str]:
    """
    Create a small site to convert.

    Returns:
        The populated client and the ID of the quote block
    """
    client = InMemoryContentClient(locales=["en", "it"])

    quote_block = client.add_item_type("Quote Block", "quote_block", modular_block=True)
    client.add_field(quote_block, "text", "text", label="Text", position=1)
    client.add_field(quote_block, "author", "string", label="Author", position=2)

    image_block = client.add_item_type("Image Block", "image_block", modular_block=True)
    client.add_field(image_block, "url", "string", label="URL", position=1)

    section_block = client.add_item_type("Section Block", "section_block", modular_block=True)
    client.add_field(section_block, "heading", "string", label="Heading", position=1)
    client.add_field(section_block, "quotes", "rich_text", label="Quotes", position=2,
                     validators={"rich_text_blocks": {"item_types": [quote_block, image_block]}})

    articles = client.add_item_type("Article", "articles")
    client.add_field(articles, "title", "string", label="Title", position=1)
    client.add_field(articles, "body", "rich_text", label="Body", position=2,
                     validators={"rich_text_blocks": {"item_types": [quote_block]}})

    pages = client.add_item_type("Page", "pages")
    client.add_field(pages, "title", "string", label="Title", position=1)
    client.add_field(pages, "sections", "rich_text", localized=True, label="Sections", position=2,
                     validators={"rich_text_blocks": {"item_types": [section_block]}})

    client.add_record(articles, {
        "title": "On writing",
        "body": [
            {"item_type": quote_block, "text": "Write drunk, edit sober.", "author": "Unknown"},
            {"item_type": quote_block, "text": "Less is more.", "author": "Mies"},
        ],
    })

    client.add_record(pages, {
        "title": "About",
        "sections": {
            "en": [{
                "item_type": section_block,
                "heading": "Our motto",
                "quotes": [
                    {"item_type": quote_block, "text": "Stay curious.", "author": "Team"},
                    {"item_type": image_block, "url": "https://example.com/team.png"},
                ],
            }],
            "it": [{
                "item_type": section_block,
                "heading": "Il nostro motto",
                "quotes": [
                    {"item_type": quote_block, "text": "Resta curioso.", "author": "Team"},
                    {"item_type": image_block, "url": "https://example.com/team.png"},
                ],
            }],
        },
    })

    return client, quote_block
