"""
Authoring form definitions for the OMERO question types.

A form is described as a flat list of ``FieldSpec`` objects that the web
layer renders.  Per-answer and per-hint fields come from a
``RepeatedGroup``: a template of fields materialized N times, where N is
kept in a hidden counter field and grows when the "add" button of the
group is submitted.  Field names of the i-th copy are suffixed with
``[i]`` and ``{no}`` in labels becomes ``i + 1``.
"""

import json
import math
import re
from typing import Dict, List, Optional

from omeroqtypes.database import QTYPE_INTERACTIVE, QTYPE_MULTICHOICE
from omeroqtypes.errors import QuestionError, UnparsableReference
from omeroqtypes.image_reference import ImageProperties, extract_image_id
from omeroqtypes.questions import parse_rois

ROI_ID_PATTERN = re.compile(r"^[A-Za-z0-9_:.\-]+$")

# Positive grade fractions offered for an answer, highest first
GRADE_FRACTIONS = [
    1.0,
    0.9,
    0.8333333,
    0.8,
    0.75,
    0.7,
    0.6666667,
    0.6,
    0.5,
    0.4,
    0.3333333,
    0.3,
    0.25,
    0.2,
    0.1666667,
    0.1428571,
    0.125,
    0.1111111,
    0.1,
    0.05,
]

ANSWER_NUMBERING_STYLES = [
    ("abc", "a., b., c., ..."),
    ("ABCD", "A., B., C., ..."),
    ("123", "1., 2., 3., ..."),
    ("iii", "i., ii., iii., ..."),
    ("IIII", "I., II., III., ..."),
    ("none", "No numbering"),
]

SINGLE_OPTIONS = [("0", "Multiple answers allowed"), ("1", "One answer only")]

FRACTION_TOLERANCE = 1e-7

# Upper bound for the repeat counters of answer and hint groups
MAX_REPEATS = 100


def format_fraction(value) -> str:
    text = f"{float(value):.7f}".rstrip("0")
    return text + "0" if text.endswith(".") else text


def fraction_options(full=True):
    """(value, label) pairs for the grade selector; ``full`` adds negative grades."""
    options = [(format_fraction(f), f"{f * 100:g}%") for f in GRADE_FRACTIONS]
    options.append((format_fraction(0.0), "None"))
    if full:
        options.extend((format_fraction(-f), f"{-f * 100:g}%") for f in GRADE_FRACTIONS)
    return options


GRADE_VALUES = frozenset(value for value, _ in fraction_options())


class FieldSpec:
    """One form field as the renderer sees it."""

    def __init__(
        self,
        name,
        kind,
        label="",
        options=None,
        default=None,
        disabled_if=None,
        required=False,
        attrs=None,
    ):
        self.name = name
        self.kind = kind
        self.label = label
        self.options = list(options or [])
        self.default = default
        self.disabled_if = disabled_if  # (field name, operator, value)
        self.required = required
        self.attrs = dict(attrs or {})

    def clone(self, **changes):
        values = {
            "name": self.name,
            "kind": self.kind,
            "label": self.label,
            "options": self.options,
            "default": self.default,
            "disabled_if": self.disabled_if,
            "required": self.required,
            "attrs": self.attrs,
        }
        values.update(changes)
        return FieldSpec(**values)

    def __repr__(self):
        return f"FieldSpec({self.name!r}, {self.kind!r})"


def render_group(template: List[FieldSpec], index: int) -> List[FieldSpec]:
    """Materialize one copy of a repeated field template for position ``index``."""
    repeated_names = {field.name for field in template}
    number = str(index + 1)
    fields = []
    for field in template:
        default = field.default
        if isinstance(default, str):
            default = default.replace("{no}", number)
        disabled_if = field.disabled_if
        if disabled_if and disabled_if[0] in repeated_names:
            disabled_if = (f"{disabled_if[0]}[{index}]",) + tuple(disabled_if[1:])
        fields.append(
            field.clone(
                name=f"{field.name}[{index}]",
                label=field.label.replace("{no}", number),
                default=default,
                disabled_if=disabled_if,
                attrs=dict(field.attrs, group_index=index),
            )
        )
    return fields


class RepeatedGroup:
    """A field template repeated a user-controlled number of times."""

    def __init__(
        self,
        template,
        counter_name,
        add_button,
        add_count=1,
        min_repeats=0,
        add_label="Add {no} more",
        max_repeats=MAX_REPEATS,
    ):
        self.template = list(template)
        self.counter_name = counter_name
        self.add_button = add_button
        self.add_count = add_count
        self.min_repeats = min_repeats
        self.max_repeats = max_repeats
        self.add_label = add_label

    def render_group(self, index):
        return render_group(self.template, index)

    def resolve_repeats(self, submitted=None, start=0) -> int:
        """Number of copies to render.

        The hidden counter in ``submitted`` wins over ``start``; pressing
        the add button adds ``add_count`` more.  The result is kept between
        ``min_repeats`` and ``max_repeats``.
        """
        repeats = start
        if submitted is not None:
            raw = submitted.get(self.counter_name)
            if raw not in (None, ""):
                try:
                    repeats = int(raw)
                except (TypeError, ValueError):
                    repeats = start
            if submitted.get(self.add_button):
                repeats += self.add_count
        return min(max(repeats, self.min_repeats), self.max_repeats)

    def render(self, repeats) -> List[FieldSpec]:
        fields = [FieldSpec(self.counter_name, "hidden", default=str(repeats))]
        for index in range(repeats):
            fields.extend(self.render_group(index))
        fields.append(
            FieldSpec(
                self.add_button,
                "button",
                label=self.add_label.replace("{no}", str(self.add_count)),
                attrs={"submit": True},
            )
        )
        return fields


class FormDefinition:
    """Ordered fields of a rendered form plus the repeat count of each group."""

    def __init__(self, fields, repeats):
        self.fields = fields
        self.repeats = repeats

    def field_names(self):
        return [field.name for field in self.fields]

    def get(self, name) -> Optional[FieldSpec]:
        for field in self.fields:
            if field.name == name:
                return field
        return None

    def __iter__(self):
        return iter(self.fields)

    def __len__(self):
        return len(self.fields)


def _text(data, key, default=""):
    value = data.get(key, default)
    if value is None:
        return default
    return str(value).strip()


def _flag(data, key):
    return _text(data, key).lower() in ("1", "true", "on", "yes")


def _count(data, key):
    try:
        return min(max(0, int(data.get(key) or 0)), MAX_REPEATS)
    except (TypeError, ValueError):
        return 0


class QuestionEditForm:
    """Shared fields, repetition and validation of the OMERO question forms."""

    qtype = None
    answer_label = "Choice {no}"
    add_answers_label = "Add ROI answer"
    min_answers = 0
    add_answers = 1
    min_hints = 0
    hint_disabled_if = None
    shownumcorrect_disabled_if = None

    # -- field declarations -------------------------------------------------

    def general_fields(self):
        return [
            FieldSpec("generalheader", "header", label="General"),
            FieldSpec("name", "text", label="Question name", required=True),
            FieldSpec("questiontext", "editor", label="Question text"),
            FieldSpec("defaultmark", "text", label="Default mark", default="1"),
            FieldSpec("generalfeedback", "editor", label="General feedback"),
        ]

    def image_fields(self):
        return [
            FieldSpec("omeroimageurl", "imagepicker", label="Image", required=True),
            FieldSpec("focusablerois", "text", label="Focusable ROIs"),
            FieldSpec("add-roi-answer", "button", label=self.add_answers_label, attrs={"float": "right"}),
        ]

    def choice_fields(self):
        return [
            FieldSpec("single", "select", label="One or multiple answers?", options=SINGLE_OPTIONS, default="1"),
            FieldSpec("shuffleanswers", "checkbox", label="Shuffle the choices?", default=True),
            FieldSpec(
                "answernumbering",
                "select",
                label="Number the choices?",
                options=ANSWER_NUMBERING_STYLES,
                default="abc",
            ),
        ]

    def answer_template(self):
        return [
            FieldSpec("roi", "roiselect", label=self.answer_label),
            FieldSpec("fraction", "select", label="Grade", options=fraction_options(), default="0.0"),
            FieldSpec("feedback", "editor", label="Feedback", attrs={"rows": 1}),
        ]

    def hint_template(self):
        return [
            FieldSpec("hint", "editor", label="Hint {no}"),
            FieldSpec(
                "hintshownumcorrect",
                "checkbox",
                label="Show the number of correct responses",
                disabled_if=self.hint_disabled_if,
            ),
            FieldSpec(
                "hintclearwrong",
                "checkbox",
                label="Clear incorrect responses",
                disabled_if=self.hint_disabled_if,
            ),
        ]

    def combined_feedback_fields(self):
        return [
            FieldSpec("combinedfeedbackhdr", "header", label="Combined feedback"),
            FieldSpec("correctfeedback", "editor", label="For any correct response", default="Your answer is correct."),
            FieldSpec(
                "partiallycorrectfeedback",
                "editor",
                label="For any partially correct response",
                default="Your answer is partially correct.",
            ),
            FieldSpec("incorrectfeedback", "editor", label="For any incorrect response", default="Your answer is incorrect."),
            FieldSpec(
                "shownumcorrect",
                "checkbox",
                label="Show the number of correct responses once the question has finished",
                disabled_if=self.shownumcorrect_disabled_if,
            ),
        ]

    def answer_group(self):
        return RepeatedGroup(
            self.answer_template(),
            "noanswers",
            "addanswers",
            add_count=self.add_answers,
            min_repeats=self.min_answers,
            add_label=self.add_answers_label,
        )

    def hint_group(self):
        return RepeatedGroup(
            self.hint_template(),
            "numhints",
            "addhint",
            add_count=1,
            min_repeats=self.min_hints,
            add_label="Add another hint",
        )

    # -- assembly -------------------------------------------------------------

    def build_definition(self, submitted=None, question=None) -> FormDefinition:
        """Assemble the form for a new question, an existing ``question`` or a resubmission."""
        answers = self.answer_group()
        hints = self.hint_group()
        answers_start = len(question.answers) if question is not None else answers.min_repeats
        hints_start = len(question.hints) if question is not None else hints.min_repeats
        answer_count = answers.resolve_repeats(submitted, answers_start)
        hint_count = hints.resolve_repeats(submitted, hints_start)

        fields = []
        fields.extend(self.general_fields())
        fields.extend(self.image_fields())
        fields.extend(self.choice_fields())
        fields.append(FieldSpec("answerhdr", "header", label="Answers"))
        fields.extend(answers.render(answer_count))
        fields.extend(self.combined_feedback_fields())
        fields.append(FieldSpec("multitriesheader", "header", label="Multiple tries"))
        fields.extend(hints.render(hint_count))
        fields.append(FieldSpec("editing_mode", "hidden", default="true"))
        return FormDefinition(fields, {answers.counter_name: answer_count, hints.counter_name: hint_count})

    def is_add_request(self, submitted) -> bool:
        """True when the submission only asked for more repeated groups."""
        return bool(submitted.get("addanswers") or submitted.get("addhint"))

    # -- extraction -------------------------------------------------------------

    def answers_from(self, data) -> List[dict]:
        answers = []
        for index in range(_count(data, "noanswers")):
            roi = _text(data, f"roi[{index}]")
            if not roi:
                continue
            answers.append(
                {
                    "index": index,
                    "answer": roi,
                    "fraction": _text(data, f"fraction[{index}]", "0"),
                    "feedback": _text(data, f"feedback[{index}]"),
                }
            )
        return answers

    def hints_from(self, data) -> List[dict]:
        hints = []
        for index in range(_count(data, "numhints")):
            hint = _text(data, f"hint[{index}]")
            if not hint:
                continue
            hints.append(
                {
                    "index": index,
                    "hint": hint,
                    "shownumcorrect": _flag(data, f"hintshownumcorrect[{index}]"),
                    "clearwrong": _flag(data, f"hintclearwrong[{index}]"),
                }
            )
        return hints

    def options_from(self, data) -> dict:
        return {
            "single": _text(data, "single", "1") == "1",
            "shuffleanswers": _flag(data, "shuffleanswers"),
            "answernumbering": _text(data, "answernumbering", "abc"),
            "correctfeedback": _text(data, "correctfeedback"),
            "partiallycorrectfeedback": _text(data, "partiallycorrectfeedback"),
            "incorrectfeedback": _text(data, "incorrectfeedback"),
            "shownumcorrect": _flag(data, "shownumcorrect"),
            "omeroimageurl": _text(data, "omeroimageurl"),
            "focusablerois": parse_rois(_text(data, "focusablerois")),
        }

    def to_question_data(self, data) -> dict:
        """Convert validated form data into the structure ``questions`` persists."""
        return {
            "name": _text(data, "name"),
            "questiontext": _text(data, "questiontext"),
            "generalfeedback": _text(data, "generalfeedback"),
            "defaultmark": float(_text(data, "defaultmark", "1") or 1),
            "answers": [
                {"answer": a["answer"], "fraction": float(a["fraction"]), "feedback": a["feedback"]}
                for a in self.answers_from(data)
            ],
            "hints": [
                {"hint": h["hint"], "shownumcorrect": h["shownumcorrect"], "clearwrong": h["clearwrong"]}
                for h in self.hints_from(data)
            ],
            "options": self.options_from(data),
        }

    # -- validation -------------------------------------------------------------

    def validate(self, data) -> Dict[str, str]:
        """Return field name -> error message; empty when the data is valid."""
        errors = {}

        if not _text(data, "name"):
            errors["name"] = "You must supply a value here."

        try:
            mark = float(_text(data, "defaultmark", "1") or 1)
            if not math.isfinite(mark):
                errors["defaultmark"] = "You must enter a number here."
            elif mark <= 0:
                errors["defaultmark"] = "The default mark must be positive."
        except ValueError:
            errors["defaultmark"] = "You must enter a number here."

        image_url = _text(data, "omeroimageurl")
        if not image_url:
            errors["omeroimageurl"] = "Select an image from the OMERO image repository."
        else:
            try:
                extract_image_id(image_url)
            except UnparsableReference:
                errors["omeroimageurl"] = "The image reference does not contain an image id."

        for roi in parse_rois(_text(data, "focusablerois")):
            if not ROI_ID_PATTERN.match(roi):
                errors["focusablerois"] = f"Invalid ROI identifier: {roi}"
                break

        errors.update(self.validate_answers(data))
        return errors

    def validate_answers(self, data) -> Dict[str, str]:
        errors = {}
        answers = self.answers_from(data)
        if len(answers) < 2:
            errors["roi[0]"] = "You must select at least two ROIs as answers."

        seen = set()
        fractions = []
        for answer in answers:
            index = answer["index"]
            if answer["answer"] in seen:
                errors[f"roi[{index}]"] = "This ROI is already used by another answer."
            seen.add(answer["answer"])
            try:
                fraction = float(answer["fraction"])
            except ValueError:
                fraction = None
            if fraction is None or not math.isfinite(fraction) or format_fraction(fraction) not in GRADE_VALUES:
                errors[f"fraction[{index}]"] = "Invalid grade."
            else:
                fractions.append(fraction)

        if len(answers) >= 2 and not any(key.startswith("fraction[") for key in errors):
            if _text(data, "single", "1") == "1":
                if abs(max(fractions) - 1.0) > FRACTION_TOLERANCE:
                    errors["fraction[0]"] = "One of the choices should be 100%, so that it is possible to get a full grade for this question."
            else:
                total = sum(f for f in fractions if f > 0)
                if abs(total - 1.0) > FRACTION_TOLERANCE * len(fractions):
                    errors["fraction[0]"] = (
                        f"The positive grades you have chosen do not add up to 100%. Instead, they add up to {total * 100:g}%."
                    )
        return errors


class OmeroMultichoiceEditForm(QuestionEditForm):
    qtype = QTYPE_MULTICHOICE
    hint_disabled_if = ("single", "eq", "1")
    shownumcorrect_disabled_if = ("single", "eq", "1")

    def image_fields(self):
        fields = super().image_fields()
        fields[1:1] = [
            FieldSpec("omeroimagelocked", "checkbox", label="Lock the image view"),
            FieldSpec("omeroimageproperties", "hidden"),
        ]
        return fields

    def options_from(self, data):
        options = super().options_from(data)
        options["omeroimagelocked"] = _flag(data, "omeroimagelocked")
        options["omeroimageproperties"] = _text(data, "omeroimageproperties") or None
        return options

    def validate(self, data):
        errors = super().validate(data)
        raw = _text(data, "omeroimageproperties")
        if raw and "omeroimageurl" not in errors:
            try:
                properties = ImageProperties.from_dict(json.loads(raw))
                if properties.id != extract_image_id(_text(data, "omeroimageurl")):
                    errors["omeroimageproperties"] = "The image properties refer to a different image."
            except ValueError:
                errors["omeroimageproperties"] = "Invalid image properties."
        return errors


class OmeroInteractiveEditForm(QuestionEditForm):
    qtype = QTYPE_INTERACTIVE
    min_hints = 1

    def validate(self, data):
        errors = super().validate(data)
        if not self.hints_from(data):
            errors["hint[0]"] = "Interactive questions need at least one hint."
        return errors


FORMS = {
    QTYPE_MULTICHOICE: OmeroMultichoiceEditForm,
    QTYPE_INTERACTIVE: OmeroInteractiveEditForm,
}


def get_form(qtype) -> QuestionEditForm:
    try:
        return FORMS[qtype]()
    except KeyError:
        raise QuestionError(f"Unknown question type: {qtype}") from None


def _flag_value(value):
    return "1" if value else ""


def form_data_from_question(question, options) -> dict:
    """Flatten a stored question into the submitted-form shape used to prefill the editor."""
    data = {
        "name": question.name,
        "questiontext": question.questiontext or "",
        "generalfeedback": question.generalfeedback or "",
        "defaultmark": format_fraction(question.defaultmark if question.defaultmark is not None else 1.0),
        "omeroimageurl": options.omeroimageurl,
        "focusablerois": ", ".join(parse_rois(options.focusablerois)),
        "single": "1" if options.single else "0",
        "shuffleanswers": _flag_value(options.shuffleanswers),
        "answernumbering": options.answernumbering or "abc",
        "correctfeedback": options.correctfeedback or "",
        "partiallycorrectfeedback": options.partiallycorrectfeedback or "",
        "incorrectfeedback": options.incorrectfeedback or "",
        "shownumcorrect": _flag_value(options.shownumcorrect),
        "noanswers": str(len(question.answers)),
        "numhints": str(len(question.hints)),
    }
    if hasattr(options, "omeroimagelocked"):
        data["omeroimagelocked"] = _flag_value(options.omeroimagelocked)
        data["omeroimageproperties"] = options.omeroimageproperties or ""
    for index, answer in enumerate(question.answers):
        data[f"roi[{index}]"] = answer.answer
        data[f"fraction[{index}]"] = format_fraction(answer.fraction or 0.0)
        data[f"feedback[{index}]"] = answer.feedback or ""
    for index, hint in enumerate(question.hints):
        data[f"hint[{index}]"] = hint.hint or ""
        data[f"hintshownumcorrect[{index}]"] = _flag_value(hint.shownumcorrect)
        data[f"hintclearwrong[{index}]"] = _flag_value(hint.clearwrong)
    return data
