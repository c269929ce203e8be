"""Tests for detailed task queries and default filters."""
from datetime import timedelta

import pytest

from taskflow.models.query import (
    DueDate,
    DueFilter,
    NotNode,
    PriorityFilter,
    ProjectFilter,
    StatusFilter,
    TagFilter,
    TagMatch,
    TextField,
    TextFilter,
    TextMatch,
    all_of,
    any_of,
    leaf,
)
from taskflow.models.task import TaskPriority, TaskStatus
from taskflow.schemas.task import NewTaskData
from taskflow.services.errors import InvalidInputError
from taskflow.services.filters import parse_filter_expression, parse_filter_expressions
from taskflow.services.repository import Repository
from taskflow.settings import Settings
from tests.conftest import utc


def names(rows):
    return [row.name for row in rows]


@pytest.fixture
def household(repository, clock):
    """A small forest of tasks around 2025-07-01."""
    repository.add_project("Home")
    move = repository.add_task(
        NewTaskData(name="Move house", project_name="Home", tags=["big", "home"], priority=TaskPriority.HIGH)
    )
    clock.advance(seconds=1)
    pack = repository.add_task(
        NewTaskData(name="Pack kitchen", parent_id=move.id, tags=["home"], due_at=utc(2025, 7, 1, 18))
    )
    clock.advance(seconds=1)
    repository.add_task(NewTaskData(name="Wrap glasses", parent_id=pack.id, due_at=utc(2025, 6, 29)))
    clock.advance(seconds=1)
    repository.add_task(
        NewTaskData(name="Renew passport", description="Needs photo", due_at=utc(2025, 7, 2, 10))
    )
    clock.advance(seconds=1)
    done = repository.add_task(NewTaskData(name="Book movers", due_at=utc(2025, 6, 30)))
    repository.complete_task(done.id)
    return repository


def test_hierarchy_depth_path_and_details(household):
    rows = household.find_tasks_with_details()

    by_name = {row.name: row for row in rows}
    assert by_name["Move house"].depth == 0
    assert by_name["Pack kitchen"].depth == 1
    assert by_name["Wrap glasses"].depth == 2
    assert by_name["Wrap glasses"].path.count(" > ") == 2
    assert by_name["Move house"].project_name == "Home"
    assert by_name["Move house"].tags == ["big", "home"]
    assert by_name["Renew passport"].tags == []

    # Children follow their parents
    order = names(rows)
    assert order.index("Move house") < order.index("Pack kitchen") < order.index("Wrap glasses")


def test_status_priority_and_project(household):
    assert names(household.find_tasks_with_details(leaf(StatusFilter(TaskStatus.COMPLETED)))) == ["Book movers"]
    assert names(household.find_tasks_with_details(leaf(PriorityFilter(TaskPriority.HIGH)))) == ["Move house"]
    assert names(household.find_tasks_with_details(leaf(ProjectFilter("Home")))) == ["Move house"]


@pytest.mark.parametrize(
    "match,tags,expected",
    [
        (TagMatch.HAS, ("home",), {"Move house", "Pack kitchen"}),
        (TagMatch.HAS_ALL, ("home", "big"), {"Move house"}),
        (TagMatch.HAS_ANY, ("big", "nope"), {"Move house"}),
        (TagMatch.EXACT, ("home",), {"Pack kitchen"}),
        (TagMatch.NOT_HAS, ("home",), {"Wrap glasses", "Renew passport", "Book movers"}),
        (TagMatch.NOT_HAS_ANY, ("big", "home"), {"Wrap glasses", "Renew passport", "Book movers"}),
    ],
)
def test_tag_matches(household, match, tags, expected):
    assert set(names(household.find_tasks_with_details(leaf(TagFilter(match, tags))))) == expected


def test_text_matches(household):
    def query(field, match, text):
        return set(names(household.find_tasks_with_details(leaf(TextFilter(field, match, text)))))

    assert query(TextField.NAME, TextMatch.CONTAINS, "PACK") == {"Pack kitchen"}
    assert query(TextField.NAME, TextMatch.STARTS_WITH, "wrap") == {"Wrap glasses"}
    assert query(TextField.NAME, TextMatch.ENDS_WITH, "house") == {"Move house"}
    assert query(TextField.NAME, TextMatch.EQUALS, "book movers") == {"Book movers"}
    assert query(TextField.DESCRIPTION, TextMatch.CONTAINS, "photo") == {"Renew passport"}
    assert "Renew passport" not in query(TextField.DESCRIPTION, TextMatch.NOT_CONTAINS, "photo")
    assert query(TextField.NAME, TextMatch.CONTAINS, "%") == set()


def test_due_filters(household):
    def due(value):
        return set(names(household.find_tasks_with_details(leaf(DueFilter(value)))))

    # The clock stands at 2025-07-01T00:00:04Z
    assert due(DueDate.today()) == {"Pack kitchen"}
    assert due(DueDate.tomorrow()) == {"Renew passport"}
    assert due(DueDate.yesterday()) == {"Book movers"}
    assert due(DueDate.overdue()) == {"Wrap glasses"}
    assert due(DueDate.before(utc(2025, 7, 1))) == {"Wrap glasses", "Book movers"}
    assert due(DueDate.after(utc(2025, 7, 1, 12))) == {"Pack kitchen", "Renew passport"}
    assert due(DueDate.within(timedelta(days=2))) == {"Pack kitchen", "Renew passport"}
    assert due(DueDate.ago(timedelta(days=3))) == {"Wrap glasses", "Book movers"}


def test_boolean_composition(household):
    home_or_passport = any_of(
        leaf(TagFilter(TagMatch.HAS, ("home",))),
        leaf(TextFilter(TextField.NAME, TextMatch.CONTAINS, "passport")),
    )
    assert set(names(household.find_tasks_with_details(home_or_passport))) == {
        "Move house",
        "Pack kitchen",
        "Renew passport",
    }

    pending_not_home = all_of(
        leaf(StatusFilter(TaskStatus.PENDING)), NotNode(leaf(TagFilter(TagMatch.HAS, ("home",))))
    )
    assert set(names(household.find_tasks_with_details(pending_not_home))) == {
        "Wrap glasses",
        "Renew passport",
    }


def test_due_filter_materializes_series_first(repository):
    repository.add_task(NewTaskData(name="Recycling", due_at=utc(2025, 7, 4, 7), rrule="FREQ=WEEKLY"))

    rows = repository.find_tasks_with_details(leaf(DueFilter(DueDate.after(utc(2025, 9, 1)))))

    # Fridays from 2025-09-05 through the thirty day lookahead
    assert sorted(row.due_at for row in rows) == [utc(2025, 9, day, 7) for day in (5, 12, 19, 26)]


def test_default_filters_apply_when_query_is_none(engine, manager, household):
    settings = Settings(default_filters="status:pending;tag:home")
    scoped = Repository.from_settings(engine, settings, manager)

    assert set(names(scoped.find_tasks_with_details())) == {"Move house", "Pack kitchen"}
    assert len(scoped.find_tasks_with_details(leaf(StatusFilter(TaskStatus.COMPLETED)))) == 1


class TestFilterExpressions:
    def test_keys(self):
        assert parse_filter_expression("status:Pending") == leaf(StatusFilter(TaskStatus.PENDING))
        assert parse_filter_expression("priority:high") == leaf(PriorityFilter(TaskPriority.HIGH))
        assert parse_filter_expression("project:Home") == leaf(ProjectFilter("Home"))
        assert parse_filter_expression("-tag:later") == leaf(TagFilter(TagMatch.NOT_HAS, ("later",)))
        assert parse_filter_expression("due:today") == leaf(DueFilter(DueDate.today()))
        assert parse_filter_expression("due-before:2025-08-01T00:00:00Z") == leaf(
            DueFilter(DueDate.before(utc(2025, 8, 1)))
        )

    def test_expressions_are_and_combined(self):
        assert parse_filter_expressions([]) is None
        combined = parse_filter_expressions(["tag:a", "tag:b"])
        assert combined == all_of(leaf(TagFilter(TagMatch.HAS, ("a",))), leaf(TagFilter(TagMatch.HAS, ("b",))))

    @pytest.mark.parametrize("expression", ["status", "status:", "colour:red", "status:done", "due:someday"])
    def test_rejects_bad_expressions(self, expression):
        with pytest.raises(InvalidInputError):
            parse_filter_expression(expression)
