"""Tests for the problem board and its vote toggling."""
import pytest
from fastapi.testclient import TestClient

from skillsupply.errors import NotFound, Unauthorized, ValidationError
from skillsupply.models import VoteDirection
from skillsupply.services import problem_service


def _problem(db, author="alice"):
    return problem_service.create_problem(
        db, author_identity=author, title="Need a translator", description="Spanish to English, 2 pages"
    )


def test_vote_toggle_and_flip(db) -> None:
    problem = _problem(db)

    problem, vote = problem_service.cast_vote(db, problem.id, "bob", "up")
    assert vote == VoteDirection.UP
    assert problem.total_votes == 1

    problem, vote = problem_service.cast_vote(db, problem.id, "bob", "up")
    assert vote is None
    assert problem.total_votes == 0

    problem, vote = problem_service.cast_vote(db, problem.id, "bob", "down")
    assert vote == VoteDirection.DOWN
    assert problem.total_votes == -1

    problem, vote = problem_service.cast_vote(db, problem.id, "bob", "up")
    assert vote == VoteDirection.UP
    assert problem.total_votes == 1


def test_total_counts_each_voter_once(db) -> None:
    problem = _problem(db)
    for voter in ("bob", "carol", "dave"):
        problem_service.cast_vote(db, problem.id, voter, "up")
    problem, _ = problem_service.cast_vote(db, problem.id, "erin", "down")
    assert problem.total_votes == 2
    assert len(problem.votes) == 4


def test_total_includes_votes_from_other_sessions(file_sessions) -> None:
    """Each vote recounts the stored rows, not the caller's loaded copy."""
    first, second = file_sessions(), file_sessions()
    try:
        problem_id = _problem(first).id
        assert problem_service.get_problem(second, problem_id).votes == []

        problem_service.cast_vote(first, problem_id, "bob", "up")
        problem, _ = problem_service.cast_vote(second, problem_id, "carol", "up")
        assert problem.total_votes == 2
        assert problem_service.count_votes(first, problem_id) == 2
    finally:
        first.close()
        second.close()


def test_invalid_direction(db) -> None:
    problem = _problem(db)
    with pytest.raises(ValidationError):
        problem_service.cast_vote(db, problem.id, "bob", "sideways")


def test_only_author_deletes(db) -> None:
    problem = _problem(db)
    problem_service.cast_vote(db, problem.id, "bob", "up")
    with pytest.raises(Unauthorized):
        problem_service.delete_problem(db, problem.id, "bob")
    problem_service.delete_problem(db, problem.id, "alice")
    with pytest.raises(NotFound):
        problem_service.get_problem(db, problem.id)


def test_author_edits_problem(db) -> None:
    problem = _problem(db)
    edited = problem_service.update_problem(db, problem.id, "alice", title="Need a Spanish translator")
    assert edited.title == "Need a Spanish translator"
    assert edited.description == "Spanish to English, 2 pages"

    with pytest.raises(Unauthorized):
        problem_service.update_problem(db, problem.id, "bob", description="Hijacked")
    with pytest.raises(ValidationError):
        problem_service.update_problem(db, problem.id, "alice", description="   ")
    assert problem_service.get_problem(db, problem.id).description == "Spanish to English, 2 pages"

class TestProblemApi:
    def test_problem_flow(self, client: TestClient) -> None:
        r = client.post(
            "/api/v1/problems/",
            json={"author_identity": "alice", "title": "Need a translator", "description": "Two pages"},
        )
        assert r.status_code == 201
        pid = r.json()["id"]
        assert r.json()["total_votes"] == 0

        r = client.post(f"/api/v1/problems/{pid}/vote", json={"voter_identity": "bob", "direction": "up"})
        assert r.status_code == 200
        assert r.json()["user_vote"] == "up"
        assert r.json()["problem"]["total_votes"] == 1

        r = client.post(f"/api/v1/problems/{pid}/vote", json={"voter_identity": "bob", "direction": "up"})
        assert r.json()["user_vote"] is None
        assert r.json()["problem"]["total_votes"] == 0

        listing = client.get("/api/v1/problems/").json()
        assert listing["meta"]["total"] == 1

        r = client.request("DELETE", f"/api/v1/problems/{pid}", json={"acting_identity": "alice"})
        assert r.status_code == 200
        assert client.get(f"/api/v1/problems/{pid}").status_code == 404

    def test_edit_problem(self, client: TestClient) -> None:
        pid = client.post(
            "/api/v1/problems/",
            json={"author_identity": "alice", "title": "Broken sink", "description": "Leaks"},
        ).json()["id"]

        r = client.put(f"/api/v1/problems/{pid}", json={"acting_identity": "alice", "description": "Leaks at night"})
        assert r.status_code == 200
        assert r.json()["title"] == "Broken sink"
        assert r.json()["description"] == "Leaks at night"

        r = client.put(f"/api/v1/problems/{pid}", json={"acting_identity": "bob", "title": "Not yours"})
        assert r.status_code == 403
        assert r.json()["detail"]["code"] == "UNAUTHORIZED"

    def test_bad_direction_is_422(self, client: TestClient) -> None:
        r = client.post(
            "/api/v1/problems/",
            json={"author_identity": "alice", "title": "Broken sink", "description": "Leaks"},
        )
        pid = r.json()["id"]
        r = client.post(f"/api/v1/problems/{pid}/vote", json={"voter_identity": "bob", "direction": "left"})
        assert r.status_code == 422
