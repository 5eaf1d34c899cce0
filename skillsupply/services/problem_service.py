"""Community problem board with explicit vote semantics.

Each voter holds at most one vote per problem. Voting the same direction
again clears the vote; voting the opposite direction flips it. The problem's
``total_votes`` is recomputed from the vote rows after every change.
"""
import logging
from typing import Optional

from sqlalchemy import case, desc, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from skillsupply.constants import MAX_DESCRIPTION_LENGTH, MAX_TITLE_LENGTH, MIN_TITLE_LENGTH
from skillsupply.errors import InvalidState, NotFound, Unauthorized, ValidationError
from skillsupply.models import Problem, ProblemVote, VoteDirection
from skillsupply.utils import sanitize_text, utcnow

logger = logging.getLogger(__name__)


def _clean_title(title: Optional[str]) -> str:
    clean_title = sanitize_text(title or "")
    if not MIN_TITLE_LENGTH <= len(clean_title) <= MAX_TITLE_LENGTH:
        raise ValidationError(f"title must be {MIN_TITLE_LENGTH}-{MAX_TITLE_LENGTH} characters")
    return clean_title


def _clean_description(description: Optional[str]) -> str:
    clean_description = sanitize_text(description or "")
    if not clean_description or len(clean_description) > MAX_DESCRIPTION_LENGTH:
        raise ValidationError(f"description must be 1-{MAX_DESCRIPTION_LENGTH} characters")
    return clean_description


def create_problem(db: Session, *, author_identity: str, title: str, description: str) -> Problem:
    author = (author_identity or "").strip()
    if not author:
        raise ValidationError("author_identity is required")
    clean_title = _clean_title(title)
    clean_description = _clean_description(description)

    now = utcnow()
    problem = Problem(
        author_identity=author,
        title=clean_title,
        description=clean_description,
        total_votes=0,
        created_at=now,
        updated_at=now,
    )
    db.add(problem)
    db.commit()
    db.refresh(problem)
    logger.info("Problem #%s posted by %s", problem.id, author)
    return problem


def get_problem(db: Session, problem_id: int) -> Problem:
    problem = db.get(Problem, problem_id)
    if problem is None:
        raise NotFound(f"Problem {problem_id} not found")
    return problem


def list_problems(db: Session, limit: int = 50, offset: int = 0) -> tuple[list[Problem], int]:
    query = db.query(Problem)
    total = query.count()
    problems = query.order_by(desc(Problem.created_at), desc(Problem.id)).offset(offset).limit(limit).all()
    return problems, total


def update_problem(
    db: Session,
    problem_id: int,
    acting_identity: str,
    *,
    title: Optional[str] = None,
    description: Optional[str] = None,
) -> Problem:
    """Edit the title and/or description. Author only; omitted fields are kept."""
    problem = get_problem(db, problem_id)
    if problem.author_identity != acting_identity:
        raise Unauthorized("Only the author can edit this problem")
    if title is not None:
        problem.title = _clean_title(title)
    if description is not None:
        problem.description = _clean_description(description)
    problem.updated_at = utcnow()
    db.commit()
    db.refresh(problem)
    logger.info("Problem #%s edited by %s", problem.id, acting_identity)
    return problem


def delete_problem(db: Session, problem_id: int, acting_identity: str) -> None:
    problem = get_problem(db, problem_id)
    if problem.author_identity != acting_identity:
        raise Unauthorized("Only the author can delete this problem")
    db.delete(problem)
    db.commit()


def count_votes(db: Session, problem_id: int) -> int:
    """Net score (ups minus downs) summed over the stored vote rows."""
    score = case((ProblemVote.direction == VoteDirection.UP.value, 1), else_=-1)
    total = (
        db.query(func.coalesce(func.sum(score), 0))
        .filter(ProblemVote.problem_id == problem_id)
        .scalar()
    )
    return int(total)


def cast_vote(
    db: Session, problem_id: int, voter_identity: str, direction: str
) -> tuple[Problem, Optional[VoteDirection]]:
    """Toggle or flip ``voter_identity``'s vote.

    The problem row is locked ``FOR UPDATE`` where the database supports it,
    and the total is summed in SQL after the vote change is flushed, so it
    always reflects every committed voter.

    Returns:
        Tuple of (problem, the voter's resulting vote or None if cleared).
    """
    voter = (voter_identity or "").strip()
    if not voter:
        raise ValidationError("voter_identity is required")
    try:
        wanted = VoteDirection(direction)
    except ValueError:
        raise ValidationError("direction must be 'up' or 'down'")

    problem = (
        db.query(Problem)
        .filter(Problem.id == problem_id)
        .with_for_update()
        .populate_existing()
        .one_or_none()
    )
    if problem is None:
        raise NotFound(f"Problem {problem_id} not found")
    existing = (
        db.query(ProblemVote)
        .filter(ProblemVote.problem_id == problem_id, ProblemVote.voter_identity == voter)
        .populate_existing()
        .one_or_none()
    )
    result: Optional[VoteDirection]
    if existing is None:
        db.add(ProblemVote(problem_id=problem_id, voter_identity=voter, direction=wanted, created_at=utcnow()))
        result = wanted
    elif existing.direction == wanted:
        db.delete(existing)
        result = None
    else:
        existing.direction = wanted
        result = wanted

    try:
        db.flush()
        problem.total_votes = count_votes(db, problem_id)
        problem.updated_at = utcnow()
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise InvalidState(f"Problem {problem_id} vote changed concurrently", retryable=True) from e
    db.refresh(problem)
    return problem, result
