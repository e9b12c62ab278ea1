#!/usr/bin/env python3
"""
blocklift - Block-to-Model Conversion Engine

Main entry point for blocklift. Analyzes a block's usage or converts it into
a standalone model on a DatoCMS site, or runs the conversion on built-in demo
content.
"""

import asyncio
import logging
import sys
import argparse

from blocklift.client import BaseContentClient, DatoCMSClient
from blocklift.config import config
from blocklift.converter import convert_block_to_model
from blocklift.demo import build_demo_site
from blocklift.errors import BlockLiftError
from blocklift.models import ConversionProgress, ConversionResult
from blocklift.schema import SchemaGraphResolver


def setup_logging():
    """Configure logging for the application."""
    level = getattr(logging, config.get("logging.level", "INFO").upper())
    format_str = config.get("logging.format", "%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    log_file = config.log_filename

    logging.basicConfig(
        level=level,
        format=format_str,
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(log_file)
        ]
    )


def print_progress(progress: ConversionProgress):
    line = f"[{progress.current_step}/{progress.total_steps}] {progress.percentage:5.1f}% {progress.step_description}"
    if progress.details:
        line += f" - {progress.details}"
    print(line)


def print_result(result: ConversionResult):
    print("\n" + "=" * 60)
    if result.success:
        print("✅ CONVERSION COMPLETED")
        print("=" * 60)
        print(f"- Model: {result.new_model_api_key} ({result.new_model_id})")
        print(f"- Records created: {result.migrated_records_count}")
        print(f"- Fields converted: {result.converted_fields_count}")
        for warning in result.warnings:
            print(f"⚠️  {warning}")
    else:
        print("❌ CONVERSION FAILED")
        print("=" * 60)
        print(f"- Error: {result.error}")
        print(f"- Records created before failure: {result.migrated_records_count}")
        print(f"- Fields converted before failure: {result.converted_fields_count}")


async def run_analyze(client: BaseContentClient, block_id: str):
    """
    Print where a block is used.

    Args:
        client: Content client
        block_id: The block item type ID
    """
    analysis = await SchemaGraphResolver(client).analyze_block(block_id)

    print(f"\nBlock: {analysis.block.name} ({analysis.block.api_key})")
    print(f"Fields: {', '.join(f.api_key for f in analysis.fields) or '-'}")
    print("Referencing fields:")
    for reference in analysis.referencing_fields:
        print(f"  - {reference.parent_model_api_key}.{reference.api_key} ({reference.field_type})")
    print("Paths:")
    for path in analysis.paths:
        marker = " [localized]" if path.is_in_localized_context else ""
        print(f"  - {path.root_model_api_key}: {path.describe()}{marker}")
    print(f"Affected records: {analysis.total_affected_records}")


async def run_convert(client: BaseContentClient, block_id: str, fully_replace: bool, publish: bool) -> bool:
    result = await convert_block_to_model(
        client,
        block_id,
        on_progress=print_progress,
        fully_replace=fully_replace,
        publish_after_changes=publish,
    )
    print_result(result)
    return result.success


async def run_command(args) -> bool:
    """Run the selected sub-command; returns False on failure."""
    if args.command == "demo":
        client, block_id = build_demo_site()
        await run_analyze(client, block_id)
        success = await run_convert(client, block_id, args.fully_replace, publish=False)
        print("\nModels after conversion:")
        for item_type in await client.list_item_types():
            kind = "block" if item_type["modular_block"] else "model"
            print(f"  - {item_type['api_key']} ({kind}): {item_type['name']}")
        return success

    async with DatoCMSClient(environment=args.environment) as client:
        if args.command == "analyze":
            await run_analyze(client, args.block_id)
            return True
        return await run_convert(client, args.block_id, args.fully_replace, args.publish)


def parse_arguments():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="blocklift - Convert embedded blocks into standalone models",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py analyze 123456                      # Show where a block is used
  python main.py convert 123456                      # Add link fields next to the block fields
  python main.py convert 123456 --fully-replace      # Replace the block entirely
  python main.py demo --fully-replace                # Run on built-in demo content

The API token is read from the environment variable named in config.yaml
(DATOCMS_API_TOKEN by default).
        """
    )

    parser.add_argument(
        "--environment",
        type=str,
        help="Sandbox environment to work on (default: primary)"
    )

    parser.add_argument(
        "--version",
        action="version",
        version="blocklift 0.1.0"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    analyze_parser = subparsers.add_parser("analyze", help="Show where a block is used")
    analyze_parser.add_argument("block_id", help="ID of the block item type")

    convert_parser = subparsers.add_parser("convert", help="Convert a block into a model")
    convert_parser.add_argument("block_id", help="ID of the block item type")
    convert_parser.add_argument(
        "--fully-replace",
        action="store_true",
        help="Replace block fields with link fields, delete the block and reuse its name"
    )
    convert_parser.add_argument(
        "--publish",
        action="store_true",
        help="Publish created and updated records afterwards"
    )

    demo_parser = subparsers.add_parser("demo", help="Convert a block of built-in demo content")
    demo_parser.add_argument(
        "--fully-replace",
        action="store_true",
        help="Replace the demo block entirely"
    )

    return parser.parse_args()


def main():
    """Main entry point."""
    args = parse_arguments()
    setup_logging()

    logging.info("blocklift - Block-to-Model Conversion Engine")

    try:
        success = asyncio.run(run_command(args))

    except KeyboardInterrupt:
        logging.info("Interrupted by user")
        print("\nInterrupted.")
        sys.exit(1)

    except BlockLiftError as e:
        logging.error(f"{args.command} failed: {e}")
        print(f"\n{args.command} failed: {e}")
        sys.exit(1)

    if not success:
        sys.exit(1)


if __name__ == "__main__":
    main()
