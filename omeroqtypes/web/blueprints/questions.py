"""Question listing, authoring (new/edit), preview, viewer config API and deletion routes."""

from flask import (
    Blueprint,
    abort,
    flash,
    jsonify,
    redirect,
    render_template,
    request,
    url_for,
)
from sqlalchemy.exc import SQLAlchemyError

from omeroqtypes.database import QTYPES
from omeroqtypes.errors import MigrationError
from omeroqtypes.forms import form_data_from_question, get_form
from omeroqtypes.questions import (
    create_question,
    delete_question,
    get_options,
    get_question,
    list_questions,
    update_question,
)
from omeroqtypes.viewer import build_viewer_config, roi_thumbnail_url
from omeroqtypes.web.blueprints.helpers import _get_session, flash_save_error, image_server_settings

questions_bp = Blueprint("questions", __name__)

QTYPE_LABELS = {
    "omeromultichoice": "OMERO multiple choice",
    "omerointeractive": "OMERO interactive",
}


@questions_bp.route("/")
def index():
    """Redirect root URL to the question list."""
    return redirect(url_for("questions.questions_list"))


@questions_bp.route("/questions")
def questions_list():
    """List questions, optionally filtered by ?qtype=."""
    session = _get_session()
    qtype_filter = request.args.get("qtype") or None
    if qtype_filter and qtype_filter not in QTYPES:
        abort(404)
    return render_template(
        "questions/list.html",
        questions=list_questions(session, qtype_filter),
        qtype_filter=qtype_filter,
        qtype_labels=QTYPE_LABELS,
    )


def _render_form(form, definition, values, errors, question=None, status=200):
    return (
        render_template(
            "questions/edit.html",
            form=form,
            definition=definition,
            values=values,
            errors=errors,
            question=question,
            qtype_label=QTYPE_LABELS[form.qtype],
        ),
        status,
    )


def _handle_submission(form, save, question=None):
    """Re-render for "add" requests and invalid data; otherwise persist via ``save``."""
    submitted = request.form
    definition = form.build_definition(submitted=submitted, question=question)
    values = submitted.to_dict()
    # The rendered counters, not the submitted ones, describe the form now
    values.update({name: str(count) for name, count in definition.repeats.items()})

    if form.is_add_request(submitted):
        return _render_form(form, definition, values, {}, question=question)

    errors = form.validate(values)
    if errors:
        return _render_form(form, definition, values, errors, question=question, status=400)

    session = _get_session()
    try:
        saved = save(session, form.to_question_data(values))
    except (SQLAlchemyError, MigrationError) as e:
        session.rollback()
        flash_save_error("Saving the question", e)
        return _render_form(form, definition, values, {}, question=question, status=500)

    flash("Question saved.", "success")
    return redirect(url_for("questions.question_detail", question_id=saved.id), code=303)


@questions_bp.route("/questions/new/<qtype>", methods=["GET", "POST"])
def question_new(qtype):
    """Author a new question of the given type."""
    if qtype not in QTYPES:
        abort(404)
    form = get_form(qtype)
    if request.method == "GET":
        return _render_form(form, form.build_definition(), {}, {})
    return _handle_submission(form, lambda session, data: create_question(session, qtype, data))


@questions_bp.route("/questions/<int:question_id>/edit", methods=["GET", "POST"])
def question_edit(question_id):
    """Edit an existing question."""
    session = _get_session()
    question = get_question(session, question_id)
    if not question:
        abort(404)
    form = get_form(question.qtype)

    if request.method == "GET":
        values = form_data_from_question(question, get_options(session, question))
        return _render_form(form, form.build_definition(question=question), values, {}, question=question)
    return _handle_submission(
        form,
        lambda session, data: update_question(session, question_id, data),
        question=question,
    )


@questions_bp.route("/questions/<int:question_id>")
def question_detail(question_id):
    """Preview a question with its image viewer configuration."""
    session = _get_session()
    question = get_question(session, question_id)
    if not question:
        abort(404)
    options = get_options(session, question)
    if options is None:
        abort(404)

    image_server, thumbnail_path = image_server_settings()
    answers = [
        {
            "roi": answer.answer,
            "fraction": answer.fraction,
            "feedback": answer.feedback,
            "thumbnail": roi_thumbnail_url(image_server, thumbnail_path, answer.answer),
        }
        for answer in question.answers
    ]
    return render_template(
        "questions/detail.html",
        question=question,
        options=options,
        answers=answers,
        viewer_config=build_viewer_config(question, options, image_server),
        qtype_label=QTYPE_LABELS[question.qtype],
    )


@questions_bp.route("/api/questions/<int:question_id>/viewer-config")
def api_viewer_config(question_id):
    """Return the image viewer configuration of a question as JSON."""
    session = _get_session()
    question = get_question(session, question_id)
    if not question:
        return jsonify({"ok": False, "error": "Question not found"}), 404
    options = get_options(session, question)
    if options is None:
        return jsonify({"ok": False, "error": "Question has no image options"}), 404
    image_server, _ = image_server_settings()
    return jsonify({"ok": True, "config": build_viewer_config(question, options, image_server)})


@questions_bp.route("/questions/<int:question_id>/delete", methods=["POST"])
def question_delete(question_id):
    """Delete a question and return to the list."""
    session = _get_session()
    if not delete_question(session, question_id):
        abort(404)
    flash("Question deleted.", "success")
    return redirect(url_for("questions.questions_list"), code=303)
