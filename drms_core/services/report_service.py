# =============================================================================
# drms_core/services/report_service.py
# Report Templates and Report Generation
# =============================================================================

from __future__ import annotations
from typing import Any, Dict, List, Optional, Tuple, Union

from drms_core.auth.principal import Principal
from drms_core.data.database import Database
from drms_core.errors import AuthorizationError, ValidationError
from drms_core.reports.data_aggregator import DataAggregator
from drms_core.reports.template_engine import DEFAULT_TEMPLATES, ReportTemplateEngine, validate_template
from drms_core.services.base_service import BaseService

SYSTEM_USER = "system"
REPORT_FORMATS = ("json", "html", "pdf")


class ReportTemplateService(BaseService):
    """Stores report templates and renders reports from them."""

    def __init__(self, db: Database, aggregator: DataAggregator):
        super().__init__(db)
        self.engine = ReportTemplateEngine(aggregator)

    def seed_defaults(self) -> int:
        """Insert any built-in template that is missing. Returns the number added."""
        added = 0
        for template in DEFAULT_TEMPLATES:
            if self.db.find_one("report_templates", "name = ? AND created_by = ?",
                                [template["name"], SYSTEM_USER]) is None:
                self.db.insert("report_templates", {**template, "created_by": SYSTEM_USER})
                added += 1
        if added:
            self.logger.info(f"Seeded {added} default report templates")
        return added

    def list_templates(self, actor: Principal, template_type: Optional[str] = None) -> List[Dict[str, Any]]:
        where = "(is_public = 1 OR created_by = ?)"
        params: List[Any] = [actor.id]
        if template_type:
            where += " AND type = ?"
            params.append(template_type)
        return self.db.get_all("report_templates", where=where, params=params, order_by="name")

    def get_template(self, template_id: str, actor: Principal) -> Dict[str, Any]:
        template = self.db.require("report_templates", template_id, "Report template")
        if not template["is_public"] and template["created_by"] != actor.id and not actor.is_privileged:
            raise AuthorizationError("Not authorized to view this report template")
        return template

    def validate(self, template: Dict[str, Any]) -> Tuple[bool, List[str]]:
        return validate_template(template)

    def create_template(self, data: Dict[str, Any], actor: Principal) -> Dict[str, Any]:
        valid, errors = validate_template(data)
        if not valid:
            raise ValidationError("Invalid report template", field="layout", errors=errors)

        template = self.db.insert("report_templates", {
            "name": data["name"].strip(),
            "description": data.get("description"),
            "type": data["type"],
            "layout": data["layout"],
            "is_public": bool(data.get("is_public", data.get("isPublic", False))),
            "created_by": actor.id,
        })
        self.logger.info(f"Report template created: {template['name']} by {actor.id}")
        return template

    def generate(
        self,
        template: Union[str, Dict[str, Any]],
        actor: Principal,
        filters: Optional[Dict[str, Any]] = None,
        output_format: str = "json",
    ) -> Union[Dict[str, Any], str, bytes]:
        """
        Generate a report from a stored template id or an inline template.

        Returns:
            dict for json, str for html, bytes for pdf
        """
        if output_format not in REPORT_FORMATS:
            raise ValidationError(
                f"Invalid format: {output_format}. Expected one of {', '.join(REPORT_FORMATS)}",
                field="format",
            )
        if isinstance(template, str):
            template = self.get_template(template, actor)
        else:
            valid, errors = validate_template(template)
            if not valid:
                raise ValidationError("Invalid report template", field="layout", errors=errors)

        with self.log_operation(f"Generating {output_format} report '{template.get('name')}'"):
            if output_format == "html":
                return self.engine.render_html(template, filters)
            if output_format == "pdf":
                return self.engine.render_pdf(template, filters)
            return self.engine.build_report(template, filters)
