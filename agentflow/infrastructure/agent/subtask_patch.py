"""Subtask patch applier.

The refiner agent answers with a list of delta operations instead of a whole
new plan. Operations are applied to the planned subtasks in two passes:

1. ``remove`` and ``modify`` against the ID-indexed list (order never changes)
2. ``add`` and ``reorder`` in the given order, position-aware, re-indexing
   after every mutation

Removals are resolved before any position math so that ``after_id`` never
points at an item that is about to disappear. New items get ``id == 0``.
"""

import logging

from agentflow.domain.model.agent.tool_args import (
    SubtaskInfo,
    SubtaskInfoPatch,
    SubtaskOperationType,
    SubtaskPatch,
)
from agentflow.domain.model.flow.task import Subtask
from agentflow.infrastructure.agent.errors import AgentValidationError

logger = logging.getLogger(__name__)


def _operation_error(index: int, message: str) -> AgentValidationError:
    error = AgentValidationError(f"operation {index}: {message}", operation_index=index)
    logger.error(f"[SubtaskPatch] {error.message}")
    return error


def build_index_map(subtasks: list[SubtaskInfoPatch]) -> dict[int, int]:
    """Map persisted subtask IDs to list positions; new items (ID 0) are skipped."""
    return {st.id: idx for idx, st in enumerate(subtasks) if st.id != 0}


def calculate_insert_index(after_id: int | None, id_to_idx: dict[int, int], length: int) -> int:
    """Position for an inserted item.

    ``None``/0 inserts at the beginning, a known ID right after it, and an
    unknown ID at the end of the list.
    """
    if not after_id:
        return 0
    if after_id in id_to_idx:
        return id_to_idx[after_id] + 1
    return length


def convert_subtask_info_patch(subtasks: list[SubtaskInfoPatch]) -> list[SubtaskInfo]:
    """Drop the IDs of patched subtasks."""
    return [SubtaskInfo(title=st.title, description=st.description) for st in subtasks]


def apply_subtask_operations(
    planned: list[Subtask], patch: SubtaskPatch
) -> list[SubtaskInfoPatch]:
    """Apply delta operations to the planned subtasks.

    Args:
        planned: Planned subtasks in their current order
        patch: Operations to apply, in order

    Returns:
        The patched list; new subtasks carry ``id == 0``

    Raises:
        AgentValidationError: If an operation misses a required field or
            references an unknown ID; ``operation_index`` names the operation
    """
    logger.debug(
        f"[SubtaskPatch] Applying {len(patch.operations)} operations "
        f"to {len(planned)} planned subtasks: {patch.message}"
    )

    result = [
        SubtaskInfoPatch(id=st.id, title=st.title, description=st.description) for st in planned
    ]
    id_to_idx = build_index_map(result)
    removed: set[int] = set()

    for i, op in enumerate(patch.operations):
        if op.op == SubtaskOperationType.REMOVE.value:
            if op.id is None:
                raise _operation_error(i, "remove operation missing required id field")
            if op.id not in id_to_idx:
                raise _operation_error(i, f"subtask with id {op.id} not found for removal")
            removed.add(op.id)
            logger.debug(f"[SubtaskPatch] Marked subtask {op.id} for removal")

        elif op.op == SubtaskOperationType.MODIFY.value:
            if op.id is None:
                raise _operation_error(i, "modify operation missing required id field")
            if not op.title and not op.description:
                raise _operation_error(
                    i, "modify operation missing both title and description fields"
                )
            if op.id not in id_to_idx:
                raise _operation_error(i, f"subtask with id {op.id} not found for modification")
            target = result[id_to_idx[op.id]]
            if op.title:
                target.title = op.title
            if op.description:
                target.description = op.description
            logger.debug(f"[SubtaskPatch] Modified subtask {op.id}")

    if removed:
        result = [st for st in result if st.id not in removed]
        logger.debug(f"[SubtaskPatch] Filtered out {len(removed)} removed subtasks")
    id_to_idx = build_index_map(result)

    for i, op in enumerate(patch.operations):
        if op.op == SubtaskOperationType.ADD.value:
            if not op.title:
                raise _operation_error(i, "add operation missing required title field")
            if not op.description:
                raise _operation_error(i, "add operation missing required description field")

            insert_idx = calculate_insert_index(op.after_id, id_to_idx, len(result))
            result.insert(
                insert_idx, SubtaskInfoPatch(id=0, title=op.title, description=op.description)
            )
            id_to_idx = build_index_map(result)
            logger.debug(f"[SubtaskPatch] Inserted new subtask at {insert_idx}: {op.title}")

        elif op.op == SubtaskOperationType.REORDER.value:
            if op.id is None:
                raise _operation_error(i, "reorder operation missing required id field")
            if op.id not in id_to_idx:
                raise _operation_error(i, f"subtask with id {op.id} not found for reorder")

            current_idx = id_to_idx[op.id]
            moved = result.pop(current_idx)
            id_to_idx = build_index_map(result)

            insert_idx = calculate_insert_index(op.after_id, id_to_idx, len(result))
            result.insert(insert_idx, moved)
            id_to_idx = build_index_map(result)
            logger.debug(f"[SubtaskPatch] Moved subtask {op.id} from {current_idx} to {insert_idx}")

    logger.debug(f"[SubtaskPatch] Patched plan has {len(result)} subtasks (was {len(planned)})")
    return result


def validate_subtask_patch(patch: SubtaskPatch) -> None:
    """Check every operation for its required fields.

    Raises:
        AgentValidationError: On the first invalid operation
    """
    for i, op in enumerate(patch.operations):
        match op.op:
            case SubtaskOperationType.ADD.value:
                if not op.title:
                    raise AgentValidationError(f"operation {i}: add requires title", operation_index=i)
                if not op.description:
                    raise AgentValidationError(
                        f"operation {i}: add requires description", operation_index=i
                    )
            case SubtaskOperationType.REMOVE.value:
                if op.id is None:
                    raise AgentValidationError(f"operation {i}: remove requires id", operation_index=i)
            case SubtaskOperationType.MODIFY.value:
                if op.id is None:
                    raise AgentValidationError(f"operation {i}: modify requires id", operation_index=i)
                if not op.title and not op.description:
                    raise AgentValidationError(
                        f"operation {i}: modify requires at least title or description",
                        operation_index=i,
                    )
            case SubtaskOperationType.REORDER.value:
                if op.id is None:
                    raise AgentValidationError(
                        f"operation {i}: reorder requires id", operation_index=i
                    )
            case _:
                raise AgentValidationError(
                    f"operation {i}: unknown operation type {op.op!r}",
                    field="op",
                    value=op.op,
                    operation_index=i,
                )
