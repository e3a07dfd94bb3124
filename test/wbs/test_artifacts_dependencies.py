"""
Tests for ArtifactService and DependencyService.
"""

from unittest.mock import patch

import pytest

from wbs_manager.artifact_repository import ArtifactRepository
from wbs_manager.errors import (
    ArtifactNotFoundError,
    NotFoundError,
    ValidationError,
    VersionConflictError,
)
from wbs_manager.models import ArtifactUpdateInput


class TestArtifactService:
    """Artifact CRUD, unique titles and optimistic locking."""

    def test_create_and_get(self, artifact_service):
        created = artifact_service.create_artifact("  Design doc  ", "docs/design.md", "The design")
        fetched = artifact_service.get_artifact(created["id"])
        assert fetched["title"] == "Design doc"
        assert fetched["uri"] == "docs/design.md"
        assert fetched["version"] == 1

    def test_blank_title_rejected(self, artifact_service):
        with pytest.raises(ValidationError) as exc_info:
            artifact_service.create_artifact("   ")
        assert exc_info.value.reason == "empty-field"

    def test_duplicate_title_rejected(self, artifact_service):
        artifact_service.create_artifact("Spec")
        with pytest.raises(ValidationError) as exc_info:
            artifact_service.create_artifact("Spec")
        assert exc_info.value.reason == "duplicate"

    def test_duplicate_caught_by_unique_constraint(self, db, artifact_service):
        artifact_service.create_artifact("Spec")
        with patch.object(ArtifactRepository, "find_by_title", return_value=None):
            with pytest.raises(ValidationError) as exc_info:
                artifact_service.create_artifact("Spec")
        assert exc_info.value.reason == "duplicate"
        assert db.fetchone("SELECT COUNT(1) AS n FROM artifacts")["n"] == 1

    def test_update_collision_caught_by_unique_constraint(self, artifact_service):
        artifact_service.create_artifact("Taken")
        other = artifact_service.create_artifact("Other")
        with patch.object(ArtifactRepository, "find_by_title", return_value=None):
            with pytest.raises(ValidationError) as exc_info:
                artifact_service.update_artifact(
                    ArtifactUpdateInput.model_validate({"artifactId": other["id"], "title": "Taken"})
                )
        assert exc_info.value.reason == "duplicate"
        assert artifact_service.get_artifact(other["id"])["version"] == 1

    def test_list_ordered_by_title(self, artifact_service):
        for title in ("Zeta", "Alpha", "Mid"):
            artifact_service.create_artifact(title)
        assert [a["title"] for a in artifact_service.list_artifacts()] == ["Alpha", "Mid", "Zeta"]

    def test_update_with_version(self, artifact_service):
        artifact = artifact_service.create_artifact("Spec")
        updated = artifact_service.update_artifact(
            ArtifactUpdateInput.model_validate({"artifactId": artifact["id"], "uri": "new.md", "ifVersion": 1})
        )
        assert updated["uri"] == "new.md"
        assert updated["title"] == "Spec"
        assert updated["version"] == 2

        with pytest.raises(VersionConflictError):
            artifact_service.update_artifact(
                ArtifactUpdateInput.model_validate({"artifactId": artifact["id"], "uri": "x", "ifVersion": 1})
            )

    def test_update_title_collision(self, artifact_service):
        artifact_service.create_artifact("Taken")
        other = artifact_service.create_artifact("Other")
        with pytest.raises(ValidationError):
            artifact_service.update_artifact(
                ArtifactUpdateInput.model_validate({"artifactId": other["id"], "title": "Taken"})
            )

    def test_delete_removes_associations(self, db, artifact_service, make_task, task_service):
        artifact = artifact_service.create_artifact("Gone soon")
        task_id = make_task(title="T", deliverables=[{"artifactId": artifact["id"]}])

        assert artifact_service.delete_artifact(artifact["id"]) == {"deleted": True}
        assert task_service.get_task(task_id)["deliverables"] == []
        with pytest.raises(NotFoundError):
            artifact_service.get_artifact(artifact["id"])

    def test_delete_missing(self, artifact_service):
        with pytest.raises(NotFoundError):
            artifact_service.delete_artifact("ghost")


class TestDependencyService:
    """Dependency edges stay acyclic and reference existing rows."""

    def test_create_with_artifacts(self, dependency_service, artifact_service, make_task, task_service):
        a = make_task(title="A")
        b = make_task(title="B")
        artifact = artifact_service.create_artifact("Handoff")

        dep = dependency_service.create_dependency(a, b, [artifact["id"]])
        assert dep["fromTaskId"] == a
        assert dep["toTaskId"] == b
        assert dep["artifacts"][0]["artifactId"] == artifact["id"]

        assert [d["id"] for d in task_service.get_task(a)["dependencies"]] == [dep["id"]]
        assert [d["id"] for d in task_service.get_task(b)["dependents"]] == [dep["id"]]

    def test_self_dependency_rejected(self, dependency_service, make_task):
        a = make_task(title="A")
        with pytest.raises(ValidationError):
            dependency_service.create_dependency(a, a)

    def test_cycle_rejected(self, dependency_service, make_task):
        a, b, c = make_task(title="A"), make_task(title="B"), make_task(title="C")
        dependency_service.create_dependency(a, b)
        dependency_service.create_dependency(b, c)
        with pytest.raises(ValidationError) as exc_info:
            dependency_service.create_dependency(c, a)
        assert exc_info.value.reason == "cycle"

    def test_duplicate_rejected(self, dependency_service, make_task):
        a, b = make_task(title="A"), make_task(title="B")
        dependency_service.create_dependency(a, b)
        with pytest.raises(ValidationError) as exc_info:
            dependency_service.create_dependency(a, b)
        assert exc_info.value.reason == "duplicate"

    def test_missing_task_or_artifact(self, dependency_service, make_task):
        a, b = make_task(title="A"), make_task(title="B")
        with pytest.raises(NotFoundError):
            dependency_service.create_dependency(a, "ghost")
        with pytest.raises(ArtifactNotFoundError):
            dependency_service.create_dependency(a, b, ["missing"])

    def test_update_reverses_edge(self, dependency_service, make_task):
        a, b = make_task(title="A"), make_task(title="B")
        dep = dependency_service.create_dependency(a, b)
        # Reversing its own edge is not a cycle because the old edge is ignored.
        updated = dependency_service.update_dependency(dep["id"], b, a)
        assert (updated["fromTaskId"], updated["toTaskId"]) == (b, a)

    def test_delete(self, dependency_service, make_task):
        a, b = make_task(title="A"), make_task(title="B")
        dep = dependency_service.create_dependency(a, b)
        assert dependency_service.delete_dependency(dep["id"]) == {"deleted": True}
        with pytest.raises(NotFoundError):
            dependency_service.get_dependency(dep["id"])

    def test_task_delete_removes_edges(self, db, dependency_service, task_service, make_task):
        a, b = make_task(title="A"), make_task(title="B")
        dependency_service.create_dependency(a, b)
        task_service.delete_task(b)
        assert db.fetchone("SELECT COUNT(1) AS n FROM dependencies")["n"] == 0
