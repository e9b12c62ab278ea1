"""
Nested block traversal for blocklift.

One traversal serves every nested rewrite: it follows a path through
rich_text, single_block and structured_text values and lets a callback
update or remove the blocks at the end of the path.
"""

from typing import Any, Callable, Dict, List, NamedTuple, Optional

from ..blocks import get_block_field, get_block_type_id, is_block_object, set_block_field
from ..dast import is_structured_text, map_block_records
from ..models import PathStep


class TraversalResult(NamedTuple):
    """
    Outcome of visiting a value.

    ``new_value`` None together with ``updated`` True means "remove".
    """
    updated: bool
    new_value: Any


# update_fn(block, locale) -> TraversalResult
BlockUpdateFn = Callable[[Dict[str, Any], Optional[str]], TraversalResult]

UNCHANGED = TraversalResult(False, None)


def _is_locale_hash(value: Any) -> bool:
    return isinstance(value, dict) and not is_structured_text(value) and not is_block_object(value)


def traverse_blocks(value: Any, steps: List[PathStep], update_fn: BlockUpdateFn,
                    locale: Optional[str] = None) -> TraversalResult:
    """
    Apply `update_fn` to the blocks a path leads to inside a field value.

    Args:
        value: Value of the field named by the first step
        steps: Path steps starting at that field
        update_fn: Called with each matching block of the last step and its locale
        locale: Locale inherited from an outer localized step

    Returns:
        Whether anything changed, and the rewritten field value
    """
    if value is None or not steps:
        return TraversalResult(False, value)

    step = steps[0]
    if step.localized and _is_locale_hash(value):
        rewritten = dict(value)
        updated = False
        for value_locale, locale_value in value.items():
            result = _traverse_value(locale_value, step, steps[1:], update_fn, value_locale)
            if result.updated:
                rewritten[value_locale] = result.new_value
                updated = True
        return TraversalResult(updated, rewritten if updated else value)

    result = _traverse_value(value, step, steps[1:], update_fn, locale)
    return result if result.updated else TraversalResult(False, value)


def _visit_block(block: Dict[str, Any], step: PathStep, rest: List[PathStep],
                 update_fn: BlockUpdateFn, locale: Optional[str]) -> TraversalResult:
    if get_block_type_id(block) != step.expected_block_type_id:
        return UNCHANGED
    if not rest:
        return update_fn(block, locale)

    next_key = rest[0].field_api_key
    inner = traverse_blocks(get_block_field(block, next_key), rest, update_fn, locale)
    if not inner.updated:
        return UNCHANGED
    return TraversalResult(True, set_block_field(block, next_key, inner.new_value))


def _traverse_value(value: Any, step: PathStep, rest: List[PathStep],
                    update_fn: BlockUpdateFn, locale: Optional[str]) -> TraversalResult:
    if step.field_type == "rich_text":
        if not isinstance(value, list):
            return UNCHANGED
        updated = False
        blocks = []
        for block in value:
            result = _visit_block(block, step, rest, update_fn, locale) if isinstance(block, dict) else UNCHANGED
            if not result.updated:
                blocks.append(block)
                continue
            updated = True
            if result.new_value is not None:
                blocks.append(result.new_value)
        return TraversalResult(updated, blocks)

    if step.field_type == "single_block":
        if not isinstance(value, dict):
            return UNCHANGED
        return _visit_block(value, step, rest, update_fn, locale)

    if step.field_type == "structured_text":
        if not is_structured_text(value):
            return UNCHANGED
        rewritten = map_block_records(value, lambda block: _visit_block(block, step, rest, update_fn, locale))
        return TraversalResult(True, rewritten) if rewritten is not None else UNCHANGED

    return UNCHANGED
