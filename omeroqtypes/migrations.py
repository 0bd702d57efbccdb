"""
Versioned schema upgrades for the OMERO question-type plugins.

Each plugin keeps its options in one table.  Upgrades are an ordered list
of ``MigrationStep`` objects tagged with the version they bring the table
to.  ``PluginUpgrader.upgrade(engine, old_version)`` applies every step
whose version is greater than ``old_version``, in ascending order, each
inside its own transaction:

1. add the step's columns (existence is checked first),
2. read the columns the step needs from every row into its record type,
3. convert each record with the step's pure conversion function,
4. write the changed columns back,
5. record the version savepoint and commit.

Any error rolls the whole step back, is logged, and makes ``upgrade``
return False.  Calling ``upgrade`` again later retries the same step.
"""

import logging
from typing import Dict, List, Optional

from sqlalchemy import Boolean, Text, inspect, insert, select, text, update
from sqlalchemy.exc import SQLAlchemyError

from omeroqtypes.database import QTYPE_INTERACTIVE, QTYPE_MULTICHOICE, PluginVersion, init_db
from omeroqtypes.errors import ColumnAlreadyExists, MigrationError, PersistFailure
from omeroqtypes.image_reference import (
    extract_image_id,
    parse_query,
    properties_from_query,
    repository_url,
)

logger = logging.getLogger(__name__)

MULTICHOICE_TABLE = "qtype_omemultichoice_options"
INTERACTIVE_TABLE = "qtype_omeinteractive_options"


# ---------------------------------------------------------------------------
# Records, one shape per schema version
# ---------------------------------------------------------------------------


class ImageBindingV0:
    """Options row before 2015112400: image URL with free-form view parameters."""

    columns = ("id", "omeroimageurl")

    def __init__(self, row_id, omeroimageurl):
        self.row_id = row_id
        self.omeroimageurl = omeroimageurl

    @classmethod
    def from_row(cls, row):
        return cls(row["id"], row["omeroimageurl"])

    def to_row(self):
        return {"omeroimageurl": self.omeroimageurl}


class ImageBindingV1(ImageBindingV0):
    """Options row at 2015112400: ``/omero-image-repository/{id}?id={id}[&...]``."""


class ImageBindingV2:
    """Options row at 2015121700: bare URL, lock flag and JSON view properties."""

    def __init__(self, row_id, omeroimageurl, omeroimagelocked=False, omeroimageproperties=None):
        self.row_id = row_id
        self.omeroimageurl = omeroimageurl
        self.omeroimagelocked = bool(omeroimagelocked)
        self.omeroimageproperties = omeroimageproperties

    def to_row(self):
        values = {
            "omeroimageurl": self.omeroimageurl,
            "omeroimagelocked": self.omeroimagelocked,
        }
        # Rows without legacy view parameters keep whatever is stored
        if self.omeroimageproperties is not None:
            values["omeroimageproperties"] = self.omeroimageproperties.to_json()
        return values


class FocusableRoisSource:
    """Row identity only; the focusable-ROI step does not read image columns."""

    columns = ("id",)

    def __init__(self, row_id):
        self.row_id = row_id

    @classmethod
    def from_row(cls, row):
        return cls(row["id"])


class FocusableRoisBinding:
    """Options row at 2016012101: list of ROIs offered for "jump to" navigation."""

    def __init__(self, row_id, focusablerois=None):
        self.row_id = row_id
        self.focusablerois = list(focusablerois or [])

    def to_row(self):
        return {"focusablerois": ",".join(self.focusablerois)}


def to_query_url(record: ImageBindingV0) -> ImageBindingV1:
    image_id = extract_image_id(record.omeroimageurl, row_id=record.row_id)
    params = parse_query(record.omeroimageurl)
    return ImageBindingV1(record.row_id, repository_url(image_id, params))


def to_structured_properties(record: ImageBindingV1) -> ImageBindingV2:
    image_id = extract_image_id(record.omeroimageurl, row_id=record.row_id)
    params = parse_query(record.omeroimageurl)
    return ImageBindingV2(
        record.row_id,
        repository_url(image_id),
        omeroimagelocked=False,
        omeroimageproperties=properties_from_query(image_id, params),
    )


def to_focusable_rois(record: FocusableRoisSource) -> FocusableRoisBinding:
    return FocusableRoisBinding(record.row_id, [])


# ---------------------------------------------------------------------------
# Storage access
# ---------------------------------------------------------------------------


class ColumnSpec:
    """A column a migration step adds, with its SQL default."""

    def __init__(self, name, type_, nullable=True, default=None):
        self.name = name
        self.type_ = type_
        self.nullable = nullable
        self.default = default

    def ddl(self, dialect):
        parts = [dialect.identifier_preparer.quote(self.name), self.type_.compile(dialect=dialect)]
        if not self.nullable:
            parts.append("NOT NULL")
        if self.default is not None:
            parts.append(f"DEFAULT {self.default}")
        return " ".join(parts)


class OptionsStore:
    """Read/alter/update access to one plugin options table on an open connection."""

    def __init__(self, connection, table_name):
        self.connection = connection
        self.table_name = table_name
        self._quoted_table = connection.dialect.identifier_preparer.quote(table_name)

    def _quote(self, name):
        return self.connection.dialect.identifier_preparer.quote(name)

    def table_exists(self):
        return inspect(self.connection).has_table(self.table_name)

    def column_names(self) -> List[str]:
        return [column["name"] for column in inspect(self.connection).get_columns(self.table_name)]

    def column_exists(self, name) -> bool:
        return name in self.column_names()

    def add_column(self, spec: ColumnSpec):
        """Issue ALTER TABLE ... ADD; raises ColumnAlreadyExists instead of a failing ALTER."""
        if self.column_exists(spec.name):
            raise ColumnAlreadyExists(self.table_name, spec.name)
        ddl = spec.ddl(self.connection.dialect)
        self.connection.execute(text(f"ALTER TABLE {self._quoted_table} ADD COLUMN {ddl}"))

    def ensure_column(self, spec: ColumnSpec) -> bool:
        """Add ``spec`` unless present. Returns True when the column was added."""
        try:
            self.add_column(spec)
        except ColumnAlreadyExists:
            logger.debug("%s.%s already exists, skipping", self.table_name, spec.name)
            return False
        logger.info("Added column %s.%s", self.table_name, spec.name)
        return True

    def drop_column_if_exists(self, name) -> bool:
        if not self.column_exists(name):
            return False
        self.connection.execute(text(f"ALTER TABLE {self._quoted_table} DROP COLUMN {self._quote(name)}"))
        logger.info("Dropped column %s.%s", self.table_name, name)
        return True

    def fetch_rows(self, columns):
        column_sql = ", ".join(self._quote(name) for name in columns)
        result = self.connection.execute(text(f"SELECT {column_sql} FROM {self._quoted_table} ORDER BY id"))
        return result.mappings().all()

    def update_row(self, row_id, values):
        """Write ``values`` to the row ``row_id``.

        Raises:
            PersistFailure: when the database rejects the write or no row
                was updated.
        """
        if not values:
            return
        assignments = ", ".join(f"{self._quote(name)} = :{name}" for name in values)
        params = dict(values)
        params["_row_id"] = row_id
        try:
            result = self.connection.execute(
                text(f"UPDATE {self._quoted_table} SET {assignments} WHERE id = :_row_id"),
                params,
            )
        except SQLAlchemyError as e:
            raise PersistFailure(row_id, str(e), table=self.table_name) from e
        if result.rowcount != 1:
            raise PersistFailure(row_id, "no row updated", table=self.table_name)


def record_savepoint(connection, plugin, version):
    """Store ``version`` as the reached schema version of ``plugin``."""
    table = PluginVersion.__table__
    table.create(connection, checkfirst=True)
    result = connection.execute(update(table).where(table.c.plugin == plugin).values(version=version))
    if result.rowcount == 0:
        connection.execute(insert(table).values(plugin=plugin, version=version))


# ---------------------------------------------------------------------------
# Steps and runner
# ---------------------------------------------------------------------------


class MigrationStep:
    """One version-tagged transformation of a plugin options table."""

    def __init__(self, version, reads, convert, add_columns=(), drop_columns=(), description=""):
        self.version = version
        self.reads = reads
        self.convert = convert
        self.add_columns = tuple(add_columns)
        self.drop_columns = tuple(drop_columns)
        self.description = description

    def apply(self, store: OptionsStore) -> int:
        """Run the step against ``store``. Returns the number of rows rewritten."""
        for spec in self.add_columns:
            store.ensure_column(spec)
        for name in self.drop_columns:
            store.drop_column_if_exists(name)

        rows = store.fetch_rows(self.reads.columns)
        for row in rows:
            record = self.convert(self.reads.from_row(row))
            store.update_row(record.row_id, record.to_row())
        return len(rows)

    def __repr__(self):
        return f"MigrationStep({self.version}, {self.description!r})"


class PluginUpgrader:
    """Applies the pending steps of one plugin, one transaction per step."""

    def __init__(self, plugin, table_name, steps):
        self.plugin = plugin
        self.table_name = table_name
        self.steps = sorted(steps, key=lambda step: step.version)

    @property
    def latest_version(self):
        return self.steps[-1].version if self.steps else 0

    def pending_steps(self, old_version) -> List[MigrationStep]:
        return [step for step in self.steps if old_version < step.version]

    def run_step(self, engine, step) -> bool:
        logger.info("Upgrading %s to %s: %s", self.plugin, step.version, step.description)
        try:
            with engine.begin() as connection:
                store = OptionsStore(connection, self.table_name)
                count = step.apply(store)
                record_savepoint(connection, self.plugin, step.version)
        except MigrationError as e:
            if e.version is None:
                e.version = step.version
            if e.table is None:
                e.table = self.table_name
            logger.exception("Upgrade of %s to %s failed: %s", self.plugin, step.version, e)
            return False
        except (SQLAlchemyError, ValueError) as e:
            logger.exception("Upgrade of %s to %s failed: %s", self.plugin, step.version, e)
            return False

        logger.info("%s savepoint %s reached (%d rows)", self.plugin, step.version, count)
        return True

    def upgrade(self, engine, old_version) -> bool:
        """Bring the plugin table from ``old_version`` to the latest version.

        Returns False as soon as a step fails; later steps are not attempted.
        """
        for step in self.pending_steps(old_version):
            if not self.run_step(engine, step):
                return False
        return True


MULTICHOICE_UPGRADER = PluginUpgrader(
    "qtype_omeromultichoice",
    MULTICHOICE_TABLE,
    [
        MigrationStep(
            2015112400,
            reads=ImageBindingV0,
            convert=to_query_url,
            description="move image URLs to the image repository",
        ),
        MigrationStep(
            2015121700,
            reads=ImageBindingV1,
            convert=to_structured_properties,
            add_columns=[
                ColumnSpec("omeroimagelocked", Boolean(), nullable=False, default="0"),
                ColumnSpec("omeroimageproperties", Text(), nullable=True),
            ],
            drop_columns=["answertype"],
            description="structured image properties and image lock",
        ),
        MigrationStep(
            2016012101,
            reads=FocusableRoisSource,
            convert=to_focusable_rois,
            add_columns=[ColumnSpec("focusablerois", Text(), nullable=False, default="''")],
            description="focusable ROIs",
        ),
    ],
)

INTERACTIVE_UPGRADER = PluginUpgrader(
    "qtype_omerointeractive",
    INTERACTIVE_TABLE,
    [
        MigrationStep(
            2015112400,
            reads=ImageBindingV0,
            convert=to_query_url,
            description="move image URLs to the image repository",
        ),
        MigrationStep(
            2016012101,
            reads=FocusableRoisSource,
            convert=to_focusable_rois,
            add_columns=[ColumnSpec("focusablerois", Text(), nullable=False, default="''")],
            description="focusable ROIs",
        ),
    ],
)

UPGRADERS = {
    QTYPE_MULTICHOICE: MULTICHOICE_UPGRADER,
    QTYPE_INTERACTIVE: INTERACTIVE_UPGRADER,
}


def upgrade_omeromultichoice(engine, old_version) -> bool:
    """Upgrade the multiple-choice options table from ``old_version``."""
    return MULTICHOICE_UPGRADER.upgrade(engine, old_version)


def upgrade_omerointeractive(engine, old_version) -> bool:
    """Upgrade the interactive options table from ``old_version``."""
    return INTERACTIVE_UPGRADER.upgrade(engine, old_version)


# ---------------------------------------------------------------------------
# Install / upgrade orchestration
# ---------------------------------------------------------------------------


def get_installed_version(engine, plugin) -> Optional[int]:
    """Return the recorded version of ``plugin``, or None when never recorded."""
    if not inspect(engine).has_table(PluginVersion.__tablename__):
        return None
    with engine.connect() as connection:
        row = connection.execute(select(PluginVersion.version).where(PluginVersion.plugin == plugin)).first()
    return row[0] if row else None


def pending_versions(qtype, old_version) -> List[int]:
    return [step.version for step in UPGRADERS[qtype].pending_steps(old_version)]


def needs_upgrade(engine) -> bool:
    """True when any plugin table exists below its latest version."""
    insp = inspect(engine)
    for upgrader in UPGRADERS.values():
        if not insp.has_table(upgrader.table_name):
            continue
        installed = get_installed_version(engine, upgrader.plugin) or 0
        if upgrader.pending_steps(installed):
            return True
    return False


def install_or_upgrade(engine) -> Dict[str, bool]:
    """Install missing plugin tables and upgrade existing ones.

    A plugin whose table does not exist yet gets the current schema and is
    stamped at its latest version.  An existing table with no recorded
    version is upgraded from version 0.

    Returns:
        Mapping of question type to the success flag of its upgrade.
    """
    insp = inspect(engine)
    states = {}
    for qtype, upgrader in UPGRADERS.items():
        states[qtype] = (get_installed_version(engine, upgrader.plugin), insp.has_table(upgrader.table_name))

    init_db(engine)

    results = {}
    for qtype, upgrader in UPGRADERS.items():
        installed, table_existed = states[qtype]
        if installed is None and not table_existed:
            with engine.begin() as connection:
                record_savepoint(connection, upgrader.plugin, upgrader.latest_version)
            logger.info("Installed %s at version %s", upgrader.plugin, upgrader.latest_version)
            results[qtype] = True
            continue
        results[qtype] = upgrader.upgrade(engine, installed or 0)
    return results


if __name__ == "__main__":
    import sys

    from omeroqtypes.database import get_engine

    logging.basicConfig(level=logging.INFO)
    db_path = sys.argv[1] if len(sys.argv) > 1 else "omero_questions.db"
    outcome = install_or_upgrade(get_engine(db_path))
    sys.exit(0 if all(outcome.values()) else 1)
