"""
Question persistence for the OMERO question types.

Provides CRUD operations for questions together with their ROI answers,
hints and per-type options row.
"""

import logging
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from omeroqtypes.database import OPTIONS_MODELS, Question, QuestionAnswer, QuestionHint
from omeroqtypes.errors import QuestionError
from omeroqtypes.image_reference import extract_image_id, repository_url

logger = logging.getLogger(__name__)


def parse_rois(value) -> List[str]:
    """Split a stored/submitted ROI list ("a, b,c") into unique identifiers."""
    if not value:
        return []
    items = value if isinstance(value, (list, tuple)) else str(value).split(",")
    rois = []
    for item in items:
        roi = str(item).strip()
        if roi and roi not in rois:
            rois.append(roi)
    return rois


def serialize_rois(rois: Iterable[str]) -> str:
    """Comma-separated storage form of a ROI list; "" when empty."""
    return ",".join(parse_rois(list(rois or [])))


def _options_model(qtype):
    try:
        return OPTIONS_MODELS[qtype]
    except KeyError:
        raise QuestionError(f"Unknown question type: {qtype}") from None


def _options_values(model, options):
    columns = set(model.__table__.columns.keys()) - {"id", "questionid"}
    values = {key: value for key, value in options.items() if key in columns}
    if "omeroimageurl" in values:
        values["omeroimageurl"] = repository_url(extract_image_id(values["omeroimageurl"]))
    values["focusablerois"] = serialize_rois(options.get("focusablerois") or [])
    return values


def _apply_children(question, data):
    question.answers = [
        QuestionAnswer(
            answer=answer["answer"],
            fraction=float(answer.get("fraction", 0.0)),
            feedback=answer.get("feedback", ""),
        )
        for answer in data.get("answers", [])
    ]
    question.hints = [
        QuestionHint(
            hint=hint["hint"],
            shownumcorrect=bool(hint.get("shownumcorrect")),
            clearwrong=bool(hint.get("clearwrong")),
        )
        for hint in data.get("hints", [])
    ]


def create_question(session: Session, qtype: str, data: dict) -> Question:
    """
    Create a question, its answers, hints and options row.

    Args:
        session: SQLAlchemy session
        qtype: "omeromultichoice" or "omerointeractive"
        data: Structure produced by ``QuestionEditForm.to_question_data``

    Returns:
        The created Question with its assigned ID
    """
    model = _options_model(qtype)
    question = Question(
        qtype=qtype,
        name=data["name"],
        questiontext=data.get("questiontext", ""),
        generalfeedback=data.get("generalfeedback", ""),
        defaultmark=data.get("defaultmark", 1.0),
    )
    _apply_children(question, data)
    session.add(question)
    session.flush()

    session.add(model(questionid=question.id, **_options_values(model, data.get("options", {}))))
    session.commit()
    logger.info("Created %s question %s", qtype, question.id)
    return question


def get_question(session: Session, question_id: int) -> Optional[Question]:
    """Fetch a single question by ID, or None."""
    return session.query(Question).filter_by(id=question_id).first()


def get_options(session: Session, question: Question):
    """Return the type-specific options row of ``question``."""
    model = _options_model(question.qtype)
    return session.query(model).filter_by(questionid=question.id).first()


def update_question(session: Session, question_id: int, data: dict) -> Optional[Question]:
    """
    Replace the content of an existing question.

    Answers and hints are replaced wholesale; the options row is updated
    in place.

    Returns:
        The updated Question, or None if it does not exist
    """
    question = get_question(session, question_id)
    if question is None:
        return None

    question.name = data["name"]
    question.questiontext = data.get("questiontext", "")
    question.generalfeedback = data.get("generalfeedback", "")
    question.defaultmark = data.get("defaultmark", 1.0)
    _apply_children(question, data)

    model = _options_model(question.qtype)
    options = get_options(session, question)
    values = _options_values(model, data.get("options", {}))
    if options is None:
        session.add(model(questionid=question.id, **values))
    else:
        for key, value in values.items():
            setattr(options, key, value)

    session.commit()
    return question


def delete_question(session: Session, question_id: int) -> bool:
    """Delete a question and its options row. Returns False if not found."""
    question = get_question(session, question_id)
    if question is None:
        return False
    options = get_options(session, question)
    if options is not None:
        session.delete(options)
    session.delete(question)
    session.commit()
    return True


def list_questions(session: Session, qtype: Optional[str] = None) -> List[dict]:
    """
    Query questions, newest first, optionally restricted to one type.

    Returns:
        List of dicts with id, qtype, name, answer_count, image_url
    """
    query = session.query(Question)
    if qtype:
        _options_model(qtype)
        query = query.filter(Question.qtype == qtype)
    result = []
    for question in query.order_by(Question.id.desc()).all():
        options = get_options(session, question)
        result.append(
            {
                "id": question.id,
                "qtype": question.qtype,
                "name": question.name,
                "answer_count": len(question.answers),
                "image_url": options.omeroimageurl if options else None,
            }
        )
    return result
