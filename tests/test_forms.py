"""
Tests for omeroqtypes/forms.py — authoring form builder and validation.

Tests cover:
- Materializing repeated field groups (names, labels, disabled rules)
- Resolving the repeat counter from submissions and the add button
- Assembling full form definitions for new, submitted and stored questions
- Validation rules of both question types
- Conversion to/from persisted question data
"""

import pytest

from omeroqtypes.errors import QuestionError
from omeroqtypes.forms import (
    MAX_REPEATS,
    FieldSpec,
    OmeroInteractiveEditForm,
    OmeroMultichoiceEditForm,
    RepeatedGroup,
    form_data_from_question,
    format_fraction,
    fraction_options,
    get_form,
    render_group,
)
from omeroqtypes.questions import create_question, get_options

# ============================================================
# render_group / RepeatedGroup
# ============================================================


class TestRenderGroup:
    def _template(self):
        return [
            FieldSpec("roi", "roiselect", label="Choice {no}"),
            FieldSpec("fraction", "select", label="Grade", default="0.0"),
            FieldSpec("hintclearwrong", "checkbox", disabled_if=("single", "eq", "1")),
            FieldSpec("feedback", "editor", disabled_if=("roi", "eq", "")),
        ]

    def test_names_are_suffixed_with_index(self):
        fields = render_group(self._template(), 2)
        assert [f.name for f in fields] == ["roi[2]", "fraction[2]", "hintclearwrong[2]", "feedback[2]"]

    def test_label_number_is_one_based(self):
        fields = render_group(self._template(), 0)
        assert fields[0].label == "Choice 1"

    def test_disabled_if_targets(self):
        fields = render_group(self._template(), 3)
        # Fixed fields keep their name, repeated ones get the same index
        assert fields[2].disabled_if == ("single", "eq", "1")
        assert fields[3].disabled_if == ("roi[3]", "eq", "")

    def test_template_is_not_mutated(self):
        template = self._template()
        render_group(template, 5)
        assert template[0].name == "roi"
        assert template[0].label == "Choice {no}"

    def test_render_includes_counter_and_add_button(self):
        group = RepeatedGroup(self._template(), "noanswers", "addanswers", add_count=2, add_label="Add {no} more")
        fields = group.render(2)
        assert fields[0].name == "noanswers"
        assert fields[0].kind == "hidden"
        assert fields[0].default == "2"
        assert fields[-1].name == "addanswers"
        assert fields[-1].label == "Add 2 more"
        assert len(fields) == 2 + 2 * len(self._template())


class TestResolveRepeats:
    def _group(self, **kwargs):
        return RepeatedGroup([FieldSpec("roi", "roiselect")], "noanswers", "addanswers", **kwargs)

    def test_start_without_submission(self):
        assert self._group().resolve_repeats(None, 3) == 3

    def test_counter_from_submission_wins(self):
        assert self._group().resolve_repeats({"noanswers": "5"}, 1) == 5

    def test_add_button_adds_add_count(self):
        group = self._group(add_count=2)
        assert group.resolve_repeats({"noanswers": "3", "addanswers": "1"}, 0) == 5

    def test_invalid_counter_falls_back_to_start(self):
        assert self._group().resolve_repeats({"noanswers": "many"}, 2) == 2

    def test_minimum_is_enforced(self):
        assert self._group(min_repeats=1).resolve_repeats({"noanswers": "0"}, 0) == 1

    def test_oversized_counter_is_clamped(self):
        assert self._group().resolve_repeats({"noanswers": "100000000"}, 0) == MAX_REPEATS
        assert self._group(max_repeats=5).resolve_repeats({"noanswers": "5", "addanswers": "1"}, 0) == 5


# ============================================================
# build_definition
# ============================================================


class TestBuildDefinition:
    def test_new_multichoice_form_has_no_answers(self):
        definition = OmeroMultichoiceEditForm().build_definition()
        names = definition.field_names()
        assert definition.repeats == {"noanswers": 0, "numhints": 0}
        assert "roi[0]" not in names
        for name in ("name", "omeroimageurl", "omeroimagelocked", "focusablerois", "single", "editing_mode"):
            assert name in names

    def test_add_answers_submission_grows_groups(self):
        form = OmeroMultichoiceEditForm()
        definition = form.build_definition(submitted={"noanswers": "2", "addanswers": "1"})
        assert definition.repeats["noanswers"] == 3
        assert definition.get("roi[2]") is not None
        assert definition.get("noanswers").default == "3"

    def test_stored_question_sets_initial_count(self, db_session, mc_form_data):
        form = OmeroMultichoiceEditForm()
        question = create_question(db_session, "omeromultichoice", form.to_question_data(mc_form_data))
        definition = form.build_definition(question=question)
        assert definition.repeats == {"noanswers": 2, "numhints": 1}

    def test_multichoice_rules_depend_on_single(self):
        definition = OmeroMultichoiceEditForm().build_definition(submitted={"numhints": "1"})
        assert definition.get("shownumcorrect").disabled_if == ("single", "eq", "1")
        assert definition.get("hintclearwrong[0]").disabled_if == ("single", "eq", "1")

    def test_interactive_form_starts_with_one_hint_and_no_lock(self):
        definition = OmeroInteractiveEditForm().build_definition()
        assert definition.repeats["numhints"] == 1
        assert definition.get("omeroimagelocked") is None
        assert definition.get("hint[0]").label == "Hint 1"

    def test_oversized_counters_are_clamped(self, mc_form_data):
        form = OmeroMultichoiceEditForm()
        mc_form_data["noanswers"] = "100000000"
        mc_form_data["numhints"] = "100000000"
        definition = form.build_definition(submitted=mc_form_data)
        assert definition.repeats == {"noanswers": MAX_REPEATS, "numhints": MAX_REPEATS}
        assert definition.get(f"roi[{MAX_REPEATS}]") is None
        assert len(form.to_question_data(mc_form_data)["answers"]) == 2

    def test_get_form_unknown_type(self):
        with pytest.raises(QuestionError):
            get_form("essay")


# ============================================================
# validate
# ============================================================


class TestMultichoiceValidation:
    def test_valid_data(self, mc_form_data):
        assert OmeroMultichoiceEditForm().validate(mc_form_data) == {}

    def test_name_and_image_required(self, mc_form_data):
        mc_form_data["name"] = "  "
        mc_form_data["omeroimageurl"] = ""
        errors = OmeroMultichoiceEditForm().validate(mc_form_data)
        assert "name" in errors
        assert "omeroimageurl" in errors

    def test_image_without_id_rejected(self, mc_form_data):
        mc_form_data["omeroimageurl"] = "/omero-image-repository/latest"
        mc_form_data["omeroimageproperties"] = ""
        errors = OmeroMultichoiceEditForm().validate(mc_form_data)
        assert errors["omeroimageurl"] == "The image reference does not contain an image id."

    def test_needs_two_rois(self, mc_form_data):
        mc_form_data["roi[1]"] = ""
        errors = OmeroMultichoiceEditForm().validate(mc_form_data)
        assert "roi[0]" in errors

    def test_duplicate_roi(self, mc_form_data):
        mc_form_data["roi[1]"] = "roi_1"
        errors = OmeroMultichoiceEditForm().validate(mc_form_data)
        assert "roi[1]" in errors

    def test_single_answer_needs_full_grade(self, mc_form_data):
        mc_form_data["fraction[0]"] = "0.5"
        errors = OmeroMultichoiceEditForm().validate(mc_form_data)
        assert "fraction[0]" in errors

    def test_multiple_answers_must_sum_to_100(self, mc_form_data):
        mc_form_data["single"] = "0"
        mc_form_data["fraction[0]"] = "0.5"
        mc_form_data["fraction[1]"] = "0.25"
        errors = OmeroMultichoiceEditForm().validate(mc_form_data)
        assert "75%" in errors["fraction[0]"]

    def test_multiple_answers_thirds_are_accepted(self, mc_form_data):
        mc_form_data["single"] = "0"
        mc_form_data["noanswers"] = "3"
        mc_form_data["roi[2]"] = "roi_3"
        for index in range(3):
            mc_form_data[f"fraction[{index}]"] = "0.3333333"
        assert OmeroMultichoiceEditForm().validate(mc_form_data) == {}

    def test_invalid_focusable_roi(self, mc_form_data):
        mc_form_data["focusablerois"] = "roi_1, bad roi"
        errors = OmeroMultichoiceEditForm().validate(mc_form_data)
        assert "focusablerois" in errors

    def test_properties_must_match_image(self, mc_form_data):
        mc_form_data["omeroimageproperties"] = '{"id": 7, "center": {"x": 0, "y": 0}, "t": 1, "z": 1, "zoom_level": 1}'
        errors = OmeroMultichoiceEditForm().validate(mc_form_data)
        assert errors["omeroimageproperties"] == "The image properties refer to a different image."

    @pytest.mark.parametrize(
        "raw",
        [
            '{"id": 42, "center": [0.5]}',
            '{"id": 42, "center": {"x": null}}',
            '{"center": {"x": 0.5}}',
            "[42]",
            "null",
        ],
    )
    def test_properties_must_decode(self, mc_form_data, raw):
        mc_form_data["omeroimageproperties"] = raw
        errors = OmeroMultichoiceEditForm().validate(mc_form_data)
        assert errors["omeroimageproperties"] == "Invalid image properties."

    def test_properties_must_be_json(self, mc_form_data):
        mc_form_data["omeroimageproperties"] = "{not json"
        errors = OmeroMultichoiceEditForm().validate(mc_form_data)
        assert "omeroimageproperties" in errors

    def test_default_mark_must_be_number(self, mc_form_data):
        mc_form_data["defaultmark"] = "lots"
        assert "defaultmark" in OmeroMultichoiceEditForm().validate(mc_form_data)

    @pytest.mark.parametrize("value", ["nan", "inf", "-inf"])
    def test_default_mark_must_be_finite(self, mc_form_data, value):
        mc_form_data["defaultmark"] = value
        assert "defaultmark" in OmeroMultichoiceEditForm().validate(mc_form_data)

    @pytest.mark.parametrize("value", ["nan", "inf", "-inf", "0.42", "2.0", "many"])
    def test_grade_must_be_an_offered_fraction(self, mc_form_data, value):
        mc_form_data["fraction[0]"] = value
        errors = OmeroMultichoiceEditForm().validate(mc_form_data)
        assert errors["fraction[0]"] == "Invalid grade."

    def test_nan_grades_do_not_satisfy_full_grade(self, mc_form_data):
        mc_form_data["fraction[0]"] = "nan"
        mc_form_data["fraction[1]"] = "nan"
        assert OmeroMultichoiceEditForm().validate(mc_form_data) != {}


class TestInteractiveValidation:
    def test_valid_data(self, interactive_form_data):
        assert OmeroInteractiveEditForm().validate(interactive_form_data) == {}

    def test_requires_a_hint(self, interactive_form_data):
        interactive_form_data["hint[0]"] = ""
        errors = OmeroInteractiveEditForm().validate(interactive_form_data)
        assert "hint[0]" in errors


# ============================================================
# data conversion
# ============================================================


class TestQuestionData:
    def test_to_question_data(self, mc_form_data):
        data = OmeroMultichoiceEditForm().to_question_data(mc_form_data)
        assert data["name"] == "Mitosis phase"
        assert data["answers"] == [
            {"answer": "roi_1", "fraction": 1.0, "feedback": "Correct, chromosomes are aligned."},
            {"answer": "roi_2", "fraction": 0.0, "feedback": "This cell is in anaphase."},
        ]
        assert data["hints"] == [{"hint": "Look for aligned chromosomes.", "shownumcorrect": False, "clearwrong": False}]
        assert data["options"]["focusablerois"] == ["roi_1", "roi_2"]
        assert data["options"]["omeroimagelocked"] is True
        assert data["options"]["single"] is True

    def test_interactive_options_have_no_lock(self, interactive_form_data):
        options = OmeroInteractiveEditForm().to_question_data(interactive_form_data)["options"]
        assert "omeroimagelocked" not in options

    def test_form_data_from_question_round_trip(self, db_session, mc_form_data):
        form = OmeroMultichoiceEditForm()
        question = create_question(db_session, "omeromultichoice", form.to_question_data(mc_form_data))
        values = form_data_from_question(question, get_options(db_session, question))

        assert values["noanswers"] == "2"
        assert values["roi[1]"] == "roi_2"
        assert values["fraction[0]"] == "1.0"
        assert values["focusablerois"] == "roi_1, roi_2"
        assert values["omeroimagelocked"] == "1"
        assert form.validate(values) == {}


def test_format_fraction():
    assert format_fraction(1.0) == "1.0"
    assert format_fraction(0) == "0.0"
    assert format_fraction(0.8333333) == "0.8333333"
    assert format_fraction(-0.5) == "-0.5"


def test_fraction_options_values_are_unique():
    values = [value for value, _ in fraction_options()]
    assert len(values) == len(set(values))
    assert "1.0" in values
    assert "0.0" in values
    assert "0.0" in [value for value, _ in fraction_options(full=False)]
