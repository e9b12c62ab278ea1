"""
Block-to-model conversion for blocklift.

This module runs a whole conversion: analyze the block, create the model,
migrate the block instances, convert every referencing field, clean up,
optionally delete the block and publish, reporting progress along the way.
"""

import logging
from collections import defaultdict
from typing import Dict, List, Optional, Set

from ..client import BaseContentClient
from ..config import config
from ..errors import ContentAPIError, NoUsageError
from ..models import BlockMigrationMapping, ConversionProgress, ConversionResult, NestedBlockPath, ProgressCallback
from ..schema import SchemaGraphResolver
from .fields import FieldConverter
from .migrate import migrate_path, strip_converted_blocks
from .model import create_model_from_block, delete_block, rename_model_to_original


def _cleanup_paths(paths: List[NestedBlockPath], block_id: str) -> Dict[str, List[NestedBlockPath]]:
    """
    Paths whose terminal field keeps other block types, grouped by root model.

    Structured text is rewritten in place and needs no cleanup.
    """
    by_root: Dict[str, List[NestedBlockPath]] = defaultdict(list)
    for path in paths:
        field = path.field_info
        if field.field_type == "structured_text":
            continue
        if any(allowed != block_id for allowed in field.allowed_block_ids):
            by_root[path.root_model_id].append(path)
    return by_root


def build_completion_details(model_api_key: str, migrated_records_count: int, fully_replace: bool,
                             published_count: Optional[int] = None) -> str:
    details = [f'Created model "{model_api_key}" with {migrated_records_count} records']
    if fully_replace:
        details.append("original block deleted")
    if published_count:
        details.append(f"{published_count} records published")
    return ", ".join(details)


async def publish_records(client: BaseContentClient, record_ids: List[str], report) -> int:
    """
    Publish records one after another.

    Failures are logged and skipped.

    Returns:
        Number of records published
    """
    batch_size = config.publish_batch_size
    published = 0
    for index, record_id in enumerate(record_ids, start=1):
        try:
            await client.publish_record(record_id)
            published += 1
        except ContentAPIError as e:
            logging.warning(f"Failed to publish record {record_id}: {e}")

        if index % batch_size == 0 or index == len(record_ids):
            report(f"Publishing records... ({index}/{len(record_ids)})", min(90 + 10 * index / len(record_ids), 99))
    return published


async def convert_block_to_model(
    client: BaseContentClient,
    block_id: str,
    on_progress: Optional[ProgressCallback] = None,
    fully_replace: bool = False,
    publish_after_changes: bool = False
) -> ConversionResult:
    """
    Convert a block into a model and move all its data there.

    Args:
        client: Content client
        block_id: The block item type to convert
        on_progress: Optional callback receiving ConversionProgress events
        fully_replace: Replace the block fields with link fields, then delete
            the block and give its name to the new model
        publish_after_changes: Publish created and updated records at the end

    Returns:
        ConversionResult; failures are reported through `success` and `error`
        rather than raised
    """
    total_steps = 6 + int(fully_replace) + int(publish_after_changes)
    migrated_records_count = 0
    converted_fields_count = 0
    result_warnings: List[str] = []
    touched_records: Set[str] = set()
    current_step = 1

    def report(description: str, percentage: float, details: Optional[str] = None) -> None:
        logging.info(f"[{current_step}/{total_steps}] {description}" + (f" ({details})" if details else ""))
        if on_progress:
            on_progress(ConversionProgress(
                current_step=current_step,
                total_steps=total_steps,
                step_description=description,
                percentage=percentage,
                details=details,
            ))

    analysis = None
    try:
        report("Analyzing block structure...", 5)
        resolver = SchemaGraphResolver(client)
        analysis = await resolver.analyze_block(
            block_id, on_progress=lambda message: report("Analyzing block structure...", 5, message)
        )
        if not analysis.referencing_fields:
            raise NoUsageError("This block is not used in any block field")

        paths = analysis.paths
        localize_fields = any(path.is_in_localized_context for path in paths)
        locales = await client.site_locales()

        current_step = 2
        report(
            f'Creating new model "{analysis.block.name}"' + (" (with localized fields)" if localize_fields else "") + "...",
            15,
            f"Copying {len(analysis.fields)} fields" + (" as localized" if localize_fields else ""),
        )
        model = await create_model_from_block(client, analysis, localize_fields)

        current_step = 3
        report(
            "Migrating block content to new records" + (" (grouped by locale)" if localize_fields else "") + "...",
            30,
            f"Processing {len(paths)} nested paths",
        )
        mapping = BlockMigrationMapping()
        for index, path in enumerate(paths):
            report(f'Migrating blocks from "{path.root_model_name}" → {path.describe()}...', 30 + 20 * index / len(paths))
            migrated_records_count += await migrate_path(
                client, path, model.id, mapping, locales, fields_localized=localize_fields
            )

        if publish_after_changes:
            touched_records.update(mapping.record_ids())

        current_step = 4
        report("Converting field types and migrating data...", 55)
        converter = FieldConverter(
            client, model.id, block_id, mapping, locales,
            fully_replace=fully_replace,
            touched_records=touched_records if publish_after_changes else None,
        )
        referencing_fields = analysis.referencing_fields
        for index, reference in enumerate(referencing_fields):
            report(
                f'Converting "{reference.parent_model_name}.{reference.api_key}" to links field...',
                55 + 15 * index / len(referencing_fields),
            )
            field_paths = [path for path in paths if path.field_info.id == reference.id]
            await converter.convert_field(reference, field_paths)
            converted_fields_count += 1

        current_step = 5
        if fully_replace:
            report("Cleaning up converted block references...", 75)
            cleanup = _cleanup_paths(paths, block_id)
            for index, (root_model_id, root_paths) in enumerate(cleanup.items()):
                report(f'Cleaning up blocks in "{root_paths[0].root_model_name}"...', 75 + 5 * index / len(cleanup))
                for path in root_paths:
                    await strip_converted_blocks(
                        client, path, block_id, mapping, locales,
                        touched_records=touched_records if publish_after_changes else None,
                    )
        else:
            report("Skipping cleanup (preserving original block data)...", 75)

        final_api_key = model.api_key
        current_step = 6
        if fully_replace:
            report("Deleting original block model...", 80)
            await delete_block(client, block_id)

            report("Renaming converted model to original name...", 85)
            rename = await rename_model_to_original(client, model.id, analysis.block.name, analysis.block.api_key)
            if rename.success:
                final_api_key = rename.final_api_key
            if rename.warning:
                result_warnings.append(rename.warning)
            current_step += 1

        published_count = None
        if publish_after_changes and touched_records:
            report(f"Publishing {len(touched_records)} records...", 90)
            published_count = await publish_records(client, sorted(touched_records), report)
            current_step += 1

        report(
            "Conversion complete!",
            100,
            build_completion_details(final_api_key, migrated_records_count, fully_replace, published_count),
        )

        return ConversionResult(
            success=True,
            new_model_id=model.id,
            new_model_api_key=final_api_key,
            migrated_records_count=migrated_records_count,
            converted_fields_count=converted_fields_count,
            original_block_name=analysis.block.name,
            original_block_api_key=analysis.block.api_key,
            warnings=result_warnings,
        )

    except NoUsageError as e:
        logging.warning(f"Block {block_id}: {e}")
        return ConversionResult(
            success=False,
            original_block_name=analysis.block.name if analysis else None,
            original_block_api_key=analysis.block.api_key if analysis else None,
            error=str(e),
        )
    except Exception as e:
        logging.exception(f"Conversion of block {block_id} failed: {e}")
        return ConversionResult(
            success=False,
            migrated_records_count=migrated_records_count,
            converted_fields_count=converted_fields_count,
            original_block_name=analysis.block.name if analysis else None,
            original_block_api_key=analysis.block.api_key if analysis else None,
            error=str(e),
            warnings=result_warnings,
        )
