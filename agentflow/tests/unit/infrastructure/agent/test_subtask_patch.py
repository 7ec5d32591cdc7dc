"""Tests for applying refiner delta operations to planned subtasks."""

import pytest

from agentflow.domain.model.agent.tool_args import (
    SubtaskInfo,
    SubtaskInfoPatch,
    SubtaskOperation,
    SubtaskPatch,
)
from agentflow.domain.model.flow.task import Subtask
from agentflow.infrastructure.agent.errors import AgentValidationError
from agentflow.infrastructure.agent.subtask_patch import (
    apply_subtask_operations,
    build_index_map,
    calculate_insert_index,
    convert_subtask_info_patch,
    validate_subtask_patch,
)


@pytest.fixture
def planned() -> list[Subtask]:
    return [
        Subtask(id=10, task_id=1, title="A", description="a"),
        Subtask(id=11, task_id=1, title="B", description="b"),
        Subtask(id=12, task_id=1, title="C", description="c"),
    ]


def patch_of(*operations: dict) -> SubtaskPatch:
    return SubtaskPatch(
        operations=[SubtaskOperation(**op) for op in operations], message="refined"
    )


def ids(result: list[SubtaskInfoPatch]) -> list[int]:
    return [st.id for st in result]


# ============================================================================
# apply_subtask_operations
# ============================================================================


@pytest.mark.unit
class TestApplySubtaskOperations:
    """Tests for the two-pass patch application."""

    def test_empty_patch_keeps_plan(self, planned) -> None:
        result = apply_subtask_operations(planned, SubtaskPatch())

        assert ids(result) == [10, 11, 12]
        assert [st.title for st in result] == ["A", "B", "C"]

    def test_remove(self, planned) -> None:
        result = apply_subtask_operations(planned, patch_of({"op": "remove", "id": 11}))

        assert ids(result) == [10, 12]

    def test_modify_changes_only_given_fields(self, planned) -> None:
        result = apply_subtask_operations(
            planned, patch_of({"op": "modify", "id": 11, "title": "B2"})
        )

        assert result[1].title == "B2"
        assert result[1].description == "b"

    def test_add_positions(self, planned) -> None:
        result = apply_subtask_operations(
            planned,
            patch_of(
                {"op": "add", "title": "first", "description": "d"},
                {"op": "add", "after_id": 11, "title": "after B", "description": "d"},
                {"op": "add", "after_id": 999, "title": "last", "description": "d"},
            ),
        )

        assert [st.title for st in result] == ["first", "A", "B", "after B", "C", "last"]
        assert ids(result) == [0, 10, 11, 0, 12, 0]

    def test_reorder(self, planned) -> None:
        result = apply_subtask_operations(
            planned,
            patch_of(
                {"op": "reorder", "id": 12, "after_id": 0},
                {"op": "reorder", "id": 10, "after_id": 11},
            ),
        )

        assert ids(result) == [12, 11, 10]

    def test_removals_happen_before_positioning(self, planned) -> None:
        # after_id points at a removed subtask: the new item goes to the end
        result = apply_subtask_operations(
            planned,
            patch_of(
                {"op": "add", "after_id": 11, "title": "new", "description": "d"},
                {"op": "remove", "id": 11},
            ),
        )

        assert [st.title for st in result] == ["A", "C", "new"]

    def test_input_is_not_mutated(self, planned) -> None:
        apply_subtask_operations(planned, patch_of({"op": "modify", "id": 10, "title": "X"}))

        assert planned[0].title == "A"

    @pytest.mark.parametrize(
        ("operation", "fragment"),
        [
            ({"op": "remove"}, "remove operation missing required id field"),
            ({"op": "remove", "id": 99}, "subtask with id 99 not found for removal"),
            ({"op": "modify", "id": 10}, "missing both title and description"),
            ({"op": "modify", "id": 99, "title": "x"}, "not found for modification"),
            ({"op": "add", "description": "d"}, "add operation missing required title field"),
            ({"op": "add", "title": "t"}, "missing required description field"),
            ({"op": "reorder"}, "reorder operation missing required id field"),
            ({"op": "reorder", "id": 99}, "not found for reorder"),
        ],
    )
    def test_invalid_operation_names_its_index(self, planned, operation, fragment) -> None:
        patch = patch_of({"op": "modify", "id": 10, "title": "ok"}, operation)

        with pytest.raises(AgentValidationError) as exc_info:
            apply_subtask_operations(planned, patch)

        assert fragment in exc_info.value.message
        assert exc_info.value.operation_index == 1
        assert exc_info.value.message.startswith("operation 1:")


# ============================================================================
# Helpers
# ============================================================================


@pytest.mark.unit
class TestPatchHelpers:
    def test_build_index_map_skips_new_items(self) -> None:
        subtasks = [
            SubtaskInfoPatch(id=0, title="n", description="d"),
            SubtaskInfoPatch(id=5, title="a", description="d"),
        ]

        assert build_index_map(subtasks) == {5: 1}

    @pytest.mark.parametrize(
        ("after_id", "expected"),
        [(None, 0), (0, 0), (5, 2), (42, 3)],
    )
    def test_calculate_insert_index(self, after_id, expected: int) -> None:
        assert calculate_insert_index(after_id, {4: 0, 5: 1, 6: 2}, 3) == expected

    def test_convert_drops_ids(self) -> None:
        converted = convert_subtask_info_patch(
            [SubtaskInfoPatch(id=3, title="t", description="d")]
        )

        assert converted == [SubtaskInfo(title="t", description="d")]


@pytest.mark.unit
class TestValidateSubtaskPatch:
    def test_valid_patch(self) -> None:
        validate_subtask_patch(
            patch_of(
                {"op": "add", "title": "t", "description": "d"},
                {"op": "remove", "id": 1},
                {"op": "modify", "id": 2, "description": "d"},
                {"op": "reorder", "id": 3},
            )
        )

    def test_unknown_operation(self) -> None:
        with pytest.raises(AgentValidationError) as exc_info:
            validate_subtask_patch(patch_of({"op": "rename", "id": 1}))

        assert exc_info.value.operation_index == 0
        assert exc_info.value.field == "op"
        assert "unknown operation type" in exc_info.value.message

    def test_modify_without_changes(self) -> None:
        with pytest.raises(AgentValidationError, match="at least title or description"):
            validate_subtask_patch(patch_of({"op": "modify", "id": 1}))
