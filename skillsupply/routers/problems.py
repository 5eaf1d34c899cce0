"""API routes for the community problem board."""
from typing import Any

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from skillsupply.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from skillsupply.database import get_db
from skillsupply.schemas import (
    EnvelopedProblemList,
    ListingAction,
    PaginationMeta,
    ProblemCreate,
    ProblemResponse,
    ProblemUpdate,
    VoteRequest,
    VoteResponse,
)
from skillsupply.services import problem_service

router = APIRouter(prefix="/api/v1/problems", tags=["problems"])


@router.post("/", response_model=ProblemResponse, status_code=201, summary="Post a problem")
def create_problem(problem: ProblemCreate, db: Session = Depends(get_db)) -> Any:
    return problem_service.create_problem(
        db,
        author_identity=problem.author_identity,
        title=problem.title,
        description=problem.description,
    )


@router.get("/", response_model=EnvelopedProblemList, summary="List problems, newest first")
def list_problems(
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    problems, total = problem_service.list_problems(db, limit=limit, offset=offset)
    return {
        "data": [ProblemResponse.model_validate(p) for p in problems],
        "meta": PaginationMeta(total=total, page=(offset // limit) + 1, per_page=limit),
    }


@router.get("/{problem_id}", response_model=ProblemResponse, summary="Get a problem")
def get_problem(problem_id: int, db: Session = Depends(get_db)) -> Any:
    return problem_service.get_problem(db, problem_id)


@router.put("/{problem_id}", response_model=ProblemResponse, summary="Edit your problem")
def update_problem(problem_id: int, problem_update: ProblemUpdate, db: Session = Depends(get_db)) -> Any:
    return problem_service.update_problem(
        db,
        problem_id,
        problem_update.acting_identity,
        title=problem_update.title,
        description=problem_update.description,
    )


@router.delete("/{problem_id}", summary="Delete your problem")
def delete_problem(problem_id: int, action: ListingAction, db: Session = Depends(get_db)) -> dict[str, str]:
    problem_service.delete_problem(db, problem_id, action.acting_identity)
    return {"message": "Problem deleted"}


@router.post(
    "/{problem_id}/vote",
    response_model=VoteResponse,
    summary="Vote on a problem",
    description="Voting the same direction again clears your vote; the opposite direction flips it.",
)
def vote(problem_id: int, vote_request: VoteRequest, db: Session = Depends(get_db)) -> VoteResponse:
    problem, user_vote = problem_service.cast_vote(db, problem_id, vote_request.voter_identity, vote_request.direction)
    return VoteResponse(
        problem=ProblemResponse.model_validate(problem),
        user_vote=user_vote.value if user_vote is not None else None,
    )
