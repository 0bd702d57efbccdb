"""
Question listing CLI commands.
"""

from omeroqtypes.cli import get_db_session
from omeroqtypes.database import QTYPES
from omeroqtypes.questions import list_questions


def register_question_commands(subparsers):
    """Register question subcommands."""
    p = subparsers.add_parser("list-questions", help="List stored questions.")
    p.add_argument("--qtype", choices=QTYPES, help="Only list questions of this type.")


def handle_list_questions(config, args):
    """Print one line per stored question."""
    engine, session = get_db_session(config)
    try:
        questions = list_questions(session, getattr(args, "qtype", None))
        if not questions:
            print("No questions found.")
            return 0
        for q in questions:
            print(f"{q['id']:>5}  {q['qtype']:<17} {q['answer_count']:>2} ROI(s)  {q['name']}  [{q['image_url']}]")
        return 0
    finally:
        session.close()
        engine.dispose()
