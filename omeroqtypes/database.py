from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    create_engine,
    event,
)
from sqlalchemy.orm import declarative_base, relationship, sessionmaker

Base = declarative_base()

DEFAULT_DB_PATH = "omero_questions.db"

QTYPE_MULTICHOICE = "omeromultichoice"
QTYPE_INTERACTIVE = "omerointeractive"
QTYPES = (QTYPE_MULTICHOICE, QTYPE_INTERACTIVE)


class Question(Base):
    __tablename__ = "questions"
    id = Column(Integer, primary_key=True)
    qtype = Column(String, nullable=False)  # omeromultichoice, omerointeractive
    name = Column(String, nullable=False)
    questiontext = Column(Text, default="")
    generalfeedback = Column(Text, default="")
    defaultmark = Column(Float, default=1.0)
    created_at = Column(DateTime, default=datetime.utcnow)
    modified_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    answers = relationship(
        "QuestionAnswer",
        back_populates="question",
        order_by="QuestionAnswer.id",
        cascade="all, delete-orphan",
    )
    hints = relationship(
        "QuestionHint",
        back_populates="question",
        order_by="QuestionHint.id",
        cascade="all, delete-orphan",
    )


class QuestionAnswer(Base):
    __tablename__ = "question_answers"
    id = Column(Integer, primary_key=True)
    question_id = Column(Integer, ForeignKey("questions.id"), nullable=False)
    answer = Column(String, nullable=False)  # ROI identifier
    fraction = Column(Float, default=0.0)
    feedback = Column(Text, default="")
    question = relationship("Question", back_populates="answers")


class QuestionHint(Base):
    __tablename__ = "question_hints"
    id = Column(Integer, primary_key=True)
    question_id = Column(Integer, ForeignKey("questions.id"), nullable=False)
    hint = Column(Text, default="")
    shownumcorrect = Column(Boolean, default=False)
    clearwrong = Column(Boolean, default=False)
    question = relationship("Question", back_populates="hints")


class MultichoiceOptions(Base):
    __tablename__ = "qtype_omemultichoice_options"
    id = Column(Integer, primary_key=True)
    questionid = Column(Integer, ForeignKey("questions.id"), nullable=False, unique=True)
    single = Column(Boolean, default=True)
    shuffleanswers = Column(Boolean, default=True)
    answernumbering = Column(String, default="abc")
    correctfeedback = Column(Text, default="")
    partiallycorrectfeedback = Column(Text, default="")
    incorrectfeedback = Column(Text, default="")
    shownumcorrect = Column(Boolean, default=False)
    omeroimageurl = Column(Text, nullable=False)
    omeroimagelocked = Column(Boolean, nullable=False, default=False)
    omeroimageproperties = Column(Text, nullable=True)  # JSON
    focusablerois = Column(Text, nullable=False, default="")


class InteractiveOptions(Base):
    __tablename__ = "qtype_omeinteractive_options"
    id = Column(Integer, primary_key=True)
    questionid = Column(Integer, ForeignKey("questions.id"), nullable=False, unique=True)
    single = Column(Boolean, default=True)
    shuffleanswers = Column(Boolean, default=True)
    answernumbering = Column(String, default="abc")
    correctfeedback = Column(Text, default="")
    partiallycorrectfeedback = Column(Text, default="")
    incorrectfeedback = Column(Text, default="")
    shownumcorrect = Column(Boolean, default=False)
    omeroimageurl = Column(Text, nullable=False)
    focusablerois = Column(Text, nullable=False, default="")


class PluginVersion(Base):
    __tablename__ = "plugin_versions"
    plugin = Column(String, primary_key=True)
    version = Column(Integer, nullable=False)


OPTIONS_MODELS = {
    QTYPE_MULTICHOICE: MultichoiceOptions,
    QTYPE_INTERACTIVE: InteractiveOptions,
}


def _use_transactional_ddl(engine):
    """Let pysqlite run ALTER TABLE inside the surrounding transaction."""

    @event.listens_for(engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")


def get_engine(db_path=None, url=None):
    """Returns a SQLAlchemy engine.

    ``url`` (a full SQLAlchemy URL, e.g. from ``DATABASE_URL``) takes
    precedence over ``db_path``.
    """
    if url is None:
        url = f"sqlite:///{db_path or DEFAULT_DB_PATH}"
    engine = create_engine(url)
    if engine.dialect.name == "sqlite":
        _use_transactional_ddl(engine)
    return engine


def init_db(engine):
    """Creates all tables in the database."""
    Base.metadata.create_all(engine)


def get_session(engine):
    """Returns a new session."""
    Session = sessionmaker(bind=engine)
    return Session()
