"""Tests for the entity store: derived counts, cascades and no-op semantics."""

from unittest.mock import MagicMock

import pytest

from planai.store.entities import StoreState
from planai.store.entity_store import EntityStore


def _project(store: EntityStore, **fields):
    return store.add_project({"title": "Portfolio", "description": "Personal site", **fields})


def _assert_progress_invariant(store: EntityStore):
    for project in store.get_projects():
        steps = store.get_steps_by_project_id(project.id)
        completed = sum(1 for s in steps if s.completed)
        assert 0 <= project.steps_completed <= project.total_steps
        assert project.total_steps == len(steps)
        assert project.steps_completed == completed
        if project.total_steps:
            assert project.progress == int(completed / len(steps) * 100 + 0.5)
        else:
            assert project.progress == 0


# ==================== Projects ====================


class TestProjects:
    def test_add_project_defaults(self, store: EntityStore):
        project = _project(store)
        assert project.progress == 0
        assert project.steps_completed == 0
        assert project.total_steps == 0
        assert project.team == ["You"]
        assert project.status == "planning"
        assert store.get_steps_by_project_id(project.id) == []
        assert store.snapshot().steps == {project.id: []}

    def test_technologies_behave_as_set(self, store: EntityStore):
        project = _project(store, technologies=["react", "python", "react"])
        assert project.technologies == ["react", "python"]

    def test_update_merges_and_stamps(self, store: EntityStore):
        project = _project(store)
        updated = store.update_project(project.id, {"status": "in-progress"})
        assert updated.status == "in-progress"
        assert updated.title == "Portfolio"
        assert updated.last_updated >= project.last_updated

    def test_update_cannot_overwrite_derived_fields(self, store: EntityStore):
        project = _project(store)
        updated = store.update_project(
            project.id, {"progress": 90, "total_steps": 4, "id": "other"}
        )
        assert updated.id == project.id
        assert updated.progress == 0
        assert updated.total_steps == 0

    def test_team_owner_is_not_removable(self, store: EntityStore):
        project = _project(store, team=["Ana", "Bo"])
        updated = store.update_project(project.id, {"team": ["Bo", "Cy"]})
        assert updated.team == ["Ana", "Bo", "Cy"]

    def test_update_missing_project_is_noop(self, store: EntityStore):
        _project(store)
        before = store.snapshot()
        assert store.update_project("missing", {"title": "x"}) is None
        assert store.snapshot() == before

    def test_returned_entities_are_copies(self, store: EntityStore):
        project = _project(store)
        project.technologies.append("leak")
        assert store.get_project_by_id(project.id).technologies == []


# ==================== Steps ====================


class TestSteps:
    def test_add_step_recounts_parent(self, store: EntityStore):
        project = _project(store)
        store.add_step(project.id, {"title": "Design"})
        store.add_step(project.id, {"title": "Build", "completed": True})
        parent = store.get_project_by_id(project.id)
        assert parent.total_steps == 2
        assert parent.steps_completed == 1
        assert parent.progress == 50
        _assert_progress_invariant(store)

    def test_progress_rounds_half_up(self, store: EntityStore):
        project = _project(store)
        ids = [store.add_step(project.id, {"title": f"Step {i}"}).id for i in range(3)]
        store.toggle_step_completion(project.id, ids[0])
        assert store.get_project_by_id(project.id).progress == 33
        store.toggle_step_completion(project.id, ids[1])
        assert store.get_project_by_id(project.id).progress == 67
        _assert_progress_invariant(store)

    def test_toggle_sets_and_clears_completed_at(self, store: EntityStore):
        project = _project(store)
        step = store.add_step(project.id, {"title": "Ship"})
        done = store.toggle_step_completion(project.id, step.id)
        assert done.completed is True
        assert done.status == "completed"
        assert done.completed_at is not None
        undone = store.toggle_step_completion(project.id, step.id)
        assert undone.completed is False
        assert undone.completed_at is None
        assert undone.status == "in_progress"

    def test_toggle_twice_restores_state(self, store: EntityStore):
        project = _project(store)
        first = store.add_step(project.id, {"title": "A"})
        store.add_step(project.id, {"title": "B", "completed": True})
        before = store.get_project_by_id(project.id)

        store.toggle_step_completion(project.id, first.id)
        store.toggle_step_completion(project.id, first.id)

        after = store.get_project_by_id(project.id)
        assert store.get_steps_by_project_id(project.id)[0].completed is False
        assert (after.progress, after.steps_completed) == (before.progress, before.steps_completed)

    def test_update_step_status_completed_recounts(self, store: EntityStore):
        project = _project(store)
        step = store.add_step(project.id, {"title": "Review"})
        updated = store.update_step(project.id, step.id, {"status": "completed"})
        assert updated.completed is True
        assert store.get_project_by_id(project.id).progress == 100
        _assert_progress_invariant(store)

    def test_update_step_without_completion_change_keeps_counts(self, store: EntityStore):
        project = _project(store)
        step = store.add_step(project.id, {"title": "Review"})
        before = store.get_project_by_id(project.id)
        store.update_step(project.id, step.id, {"notes": "ask Bo", "priority": "high"})
        after = store.get_project_by_id(project.id)
        assert after.last_updated == before.last_updated
        assert store.get_steps_by_project_id(project.id)[0].notes == "ask Bo"

    def test_update_missing_step_is_noop(self, store: EntityStore):
        project = _project(store)
        store.add_step(project.id, {"title": "Only"})
        before = store.snapshot()
        assert store.update_step(project.id, "missing", {"title": "x"}) is None
        assert store.snapshot() == before

    def test_delete_step_recounts(self, store: EntityStore):
        project = _project(store)
        done = store.add_step(project.id, {"title": "A", "completed": True})
        store.add_step(project.id, {"title": "B"})
        assert store.delete_step(project.id, done.id) is True
        parent = store.get_project_by_id(project.id)
        assert (parent.total_steps, parent.steps_completed, parent.progress) == (1, 0, 0)

    def test_delete_last_step_resets_progress(self, store: EntityStore):
        project = _project(store)
        step = store.add_step(project.id, {"title": "A", "completed": True})
        store.delete_step(project.id, step.id)
        assert store.get_project_by_id(project.id).progress == 0

    def test_subtask_completion_is_stamped(self, store: EntityStore):
        project = _project(store)
        step = store.add_step(project.id, {"title": "A", "subtasks": [{"title": "sub"}]})
        sub = step.subtasks[0].model_dump()
        updated = store.update_step(project.id, step.id, {"subtasks": [{**sub, "completed": True}]})
        assert updated.subtasks[0].completed_at is not None

    def test_resent_completed_subtask_keeps_timestamps(self, store: EntityStore):
        project = _project(store)
        step = store.add_step(
            project.id, {"title": "A", "subtasks": [{"title": "sub", "completed": True}]}
        )
        original = step.subtasks[0]
        echoed = {"id": original.id, "title": "sub", "completed": True}

        updated = store.update_step(project.id, step.id, {"notes": "n", "subtasks": [echoed]})

        assert updated.subtasks[0].created_at == original.created_at
        assert updated.subtasks[0].completed_at == original.completed_at

    def test_reopened_subtask_is_restamped_on_completion(self, store: EntityStore):
        project = _project(store)
        step = store.add_step(
            project.id, {"title": "A", "subtasks": [{"title": "sub", "completed": True}]}
        )
        sub_id = step.subtasks[0].id

        reopened = store.update_step(
            project.id, step.id, {"subtasks": [{"id": sub_id, "title": "sub", "completed": False}]}
        )
        assert reopened.subtasks[0].completed_at is None
        assert reopened.subtasks[0].created_at == step.subtasks[0].created_at

        done = store.update_step(
            project.id, step.id, {"subtasks": [{"id": sub_id, "title": "sub", "completed": True}]}
        )
        assert done.subtasks[0].completed_at is not None

    def test_toggle_keeps_subtask_timestamps(self, store: EntityStore):
        project = _project(store)
        step = store.add_step(
            project.id, {"title": "A", "subtasks": [{"title": "sub", "completed": True}]}
        )
        toggled = store.toggle_step_completion(project.id, step.id)
        assert toggled.subtasks[0].completed_at == step.subtasks[0].completed_at

    def test_step_for_unknown_project_is_orphaned(self, store: EntityStore):
        step = store.add_step("ghost", {"title": "Lost"})
        assert [s.id for s in store.get_steps_by_project_id("ghost")] == [step.id]
        assert store.get_projects() == []


# ==================== Cascade ====================


class TestCascade:
    def test_delete_project_removes_owned_entities_only(self, store: EntityStore):
        doomed = _project(store, title="Doomed")
        kept = _project(store, title="Kept")
        for project in (doomed, kept):
            store.add_step(project.id, {"title": "Step"})
            store.add_learning(
                {"title": "L", "content": "c", "type": "insight", "project_id": project.id}
            )
            store.add_code_issue(
                {"file": "a.py", "lines": 10, "type": "length", "severity": "low", "project_id": project.id}
            )
            store.add_task({"title": "T", "project_id": project.id})

        assert store.delete_project(doomed.id) is True

        state = store.snapshot()
        assert [p.id for p in state.projects] == [kept.id]
        assert list(state.steps) == [kept.id]
        assert all(learning.project_id == kept.id for learning in state.learnings)
        assert all(i.project_id == kept.id for i in state.code_issues)
        assert all(t.project_id == kept.id for t in state.tasks)
        assert len(state.learnings) == len(state.code_issues) == len(state.tasks) == 1

    def test_delete_missing_project_is_noop(self, store: EntityStore):
        _project(store)
        before = store.snapshot()
        assert store.delete_project("missing") is False
        assert store.snapshot() == before


# ==================== Learnings, code issues, tasks ====================


class TestLeafEntities:
    def test_learnings_newest_first(self, store: EntityStore):
        first = store.add_learning({"title": "One", "content": "c", "type": "success"})
        second = store.add_learning({"title": "Two", "content": "c", "type": "failure"})
        assert [learning.id for learning in store.get_learnings()] == [second.id, first.id]

    def test_update_and_delete_learning(self, store: EntityStore):
        learning = store.add_learning({"title": "One", "content": "c", "type": "success"})
        updated = store.update_learning(learning.id, {"tags": ["a", "a", "b"]})
        assert updated.tags == ["a", "b"]
        assert store.delete_learning(learning.id) is True
        assert store.delete_learning(learning.id) is False

    def test_resolve_code_issue_stamps_once(self, store: EntityStore):
        issue = store.add_code_issue(
            {"file": "app.py", "lines": 300, "type": "length", "severity": "medium"}
        )
        assert issue.resolved_at is None
        resolved = store.resolve_code_issue(issue.id)
        assert resolved.resolved is True
        assert resolved.resolved_at is not None
        again = store.resolve_code_issue(issue.id)
        assert again.resolved_at == resolved.resolved_at

    def test_reopen_code_issue_clears_resolved_at(self, store: EntityStore):
        issue = store.add_code_issue(
            {"file": "app.py", "lines": 3, "type": "security", "severity": "high"}
        )
        store.resolve_code_issue(issue.id)
        reopened = store.update_code_issue(issue.id, {"resolved": False})
        assert reopened.resolved_at is None

    def test_resolve_missing_issue_is_noop(self, store: EntityStore):
        assert store.resolve_code_issue("missing") is None

    def test_tasks_by_project(self, store: EntityStore):
        project = _project(store)
        linked = store.add_task({"title": "Linked", "project_id": project.id})
        store.add_task({"title": "Loose"})
        assert [t.id for t in store.get_tasks_by_project_id(project.id)] == [linked.id]
        assert len(store.get_tasks()) == 2
        assert store.update_task(linked.id, {"status": "done"}).status == "done"
        assert store.update_task("missing", {"status": "done"}) is None


# ==================== Persistence hook ====================


class TestPersistenceHook:
    def test_every_mutation_is_saved(self):
        persistence = MagicMock()
        persistence.load.return_value = None
        store = EntityStore(persistence)
        project = _project(store)
        store.add_step(project.id, {"title": "A"})
        assert persistence.save.call_count == 2
        saved = persistence.save.call_args[0][0]
        assert isinstance(saved, StoreState)
        assert saved.projects[0].total_steps == 1

    def test_noop_is_not_saved(self):
        persistence = MagicMock()
        persistence.load.return_value = None
        store = EntityStore(persistence)
        store.update_project("missing", {"title": "x"})
        store.delete_step("missing", "missing")
        persistence.save.assert_not_called()

    def test_failed_save_leaves_state_untouched(self):
        persistence = MagicMock()
        persistence.load.return_value = None
        persistence.save.side_effect = RuntimeError("disk full")
        store = EntityStore(persistence)
        with pytest.raises(RuntimeError):
            _project(store)
        assert store.get_projects() == []

    def test_loads_initial_state(self):
        seeded = EntityStore()
        project = _project(seeded)
        persistence = MagicMock()
        persistence.load.return_value = seeded.snapshot()
        store = EntityStore(persistence)
        assert store.get_project_by_id(project.id).title == "Portfolio"
