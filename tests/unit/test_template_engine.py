"""
Tests for report template validation and generation.
"""

import pytest

from drms_core.errors import ValidationError


def element(element_id, x, y, width=6, height=2, kind="section"):
    return {"id": element_id, "type": kind, "position": {"x": x, "y": y, "width": width, "height": height}}


def template(*elements, name="Weekly sitrep", report_type="ASSESSMENT"):
    return {"name": name, "type": report_type, "layout": list(elements)}


class TestValidateTemplate:
    """Tests for validate_template"""

    def test_valid_template(self):
        """Side-by-side elements are fine"""
        from drms_core.reports.template_engine import validate_template

        valid, errors = validate_template(template(element("a", 0, 0), element("b", 6, 0)))

        assert valid
        assert errors == []

    def test_overlap_rejected(self):
        """Overlapping rectangles are reported by id"""
        from drms_core.reports.template_engine import validate_template

        valid, errors = validate_template(template(element("a", 0, 0), element("b", 3, 1)))

        assert not valid
        assert "Layout elements a and b overlap" in errors

    def test_shared_edge_is_not_overlap(self):
        """Touching edges do not overlap"""
        from drms_core.reports.template_engine import positions_overlap

        a = {"x": 0, "y": 0, "width": 6, "height": 2}
        b = {"x": 0, "y": 2, "width": 6, "height": 2}

        assert positions_overlap(a, b) is False

    def test_all_errors_reported(self):
        """Name, type and layout problems are collected together"""
        from drms_core.reports.template_engine import validate_template

        valid, errors = validate_template({"name": " ", "type": "HOROSCOPE", "layout": []})

        assert not valid
        assert len(errors) == 3

    def test_bad_element_structure(self):
        """Elements must match the layout schema"""
        from drms_core.reports.template_engine import validate_template

        valid, errors = validate_template(template({"id": "a", "type": "hologram", "position": {}}))

        assert not valid
        assert errors[0].startswith("Invalid layout structure")


class TestReportTemplateService:
    """Tests for stored templates and report generation"""

    def test_defaults_are_seeded_once(self, registry, admin):
        """Built-in templates are seeded on initialize and not duplicated"""
        before = len(registry.reports.list_templates(admin))

        assert before > 0
        assert registry.reports.seed_defaults() == 0

    def test_invalid_template_not_saved(self, registry, admin):
        """create_template refuses invalid layouts"""
        with pytest.raises(ValidationError):
            registry.reports.create_template(template(element("a", 0, 0), element("b", 0, 0)), admin)

    def test_private_template_hidden_from_others(self, registry, admin, assessor):
        """Private templates only list for their author"""
        registry.reports.create_template({**template(element("a", 0, 0), name="Mine"), "is_public": False}, admin)

        assert "Mine" in [t["name"] for t in registry.reports.list_templates(admin)]
        assert "Mine" not in [t["name"] for t in registry.reports.list_templates(assessor)]

    def test_generate_json_and_html(self, registry, admin, assessor, assigned):
        """Every seeded template renders to JSON and HTML"""
        registry.assessments.create_assessment(
            {"entity_id": assigned["id"], "rapid_assessment_type": "HEALTH", "priority": "HIGH"}, assessor,
        )
        chosen = registry.reports.list_templates(admin)[0]

        data = registry.reports.generate(chosen["id"], admin, {}, output_format="json")
        html = registry.reports.generate(chosen["id"], admin, {}, output_format="html")

        assert isinstance(data, dict)
        assert "<html" in html.lower()

    def test_generate_pdf(self, registry, admin):
        """PDF output is real PDF bytes"""
        chosen = registry.reports.list_templates(admin)[0]

        pdf = registry.reports.generate(chosen["id"], admin, {}, output_format="pdf")

        assert pdf[:4] == b"%PDF"
