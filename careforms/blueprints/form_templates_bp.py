"""Form template blueprint.

REST API for building and publishing form templates.

Endpoint groups:
  Templates        GET/POST            /api/v1/form-templates
                   GET/PUT/DELETE      /api/v1/form-templates/<tid>
  Sections         POST                /api/v1/form-templates/<tid>/sections
                   PUT/DELETE          /api/v1/form-templates/<tid>/sections/<sid>
                   POST                /api/v1/form-templates/<tid>/sections/reorder
  Items            POST                /api/v1/form-templates/<tid>/sections/<sid>/items
                   POST                /api/v1/form-templates/<tid>/sections/<sid>/items/reorder
                   PUT/DELETE          /api/v1/form-templates/<tid>/items/<iid>
                   POST                /api/v1/form-templates/<tid>/items/<iid>/move
  Lifecycle        POST                /api/v1/form-templates/<tid>/publish|enable|disable
  Versions         GET                 /api/v1/form-templates/<tid>/versions[/<version>]
  Catalog          GET                 /api/v1/form-templates/response-types

Service layer owns all business logic and commits.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

import careforms.services.template_service as ts
from careforms.blueprints import json_body, page_args, register_error_handlers
from careforms.utils.errors import E, api_error

logger = logging.getLogger(__name__)

form_templates_bp = Blueprint("form_templates", __name__, url_prefix="/api/v1/form-templates")
register_error_handlers(form_templates_bp)


def _bool_arg(name: str) -> bool | None:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return None
    return raw.lower() in ("1", "true", "yes")


# ═════════════════════════════════════════════════════════════════════════
# Templates
# ═════════════════════════════════════════════════════════════════════════


@form_templates_bp.route("", methods=["GET"])
def list_templates():
    """List templates.

    Query params: category, status, is_enabled, search, limit, offset
    """
    limit, offset = page_args()
    items, total = ts.list_templates(
        category=request.args.get("category"),
        status=request.args.get("status"),
        is_enabled=_bool_arg("is_enabled"),
        search=request.args.get("search"),
        limit=limit,
        offset=offset,
    )
    return jsonify({"items": items, "total": total, "limit": limit, "offset": offset}), 200


@form_templates_bp.route("", methods=["POST"])
def create_template():
    """Create a DRAFT template.

    Body: {name, category?, description?, scoring_method?, max_score?}
    """
    data = json_body()
    if not (data.get("name") or "").strip():
        return api_error(E.VALIDATION_REQUIRED, "name is required")
    return jsonify(ts.create_template(data, created_by=request.headers.get("X-User"))), 201


@form_templates_bp.route("/response-types", methods=["GET"])
def response_types():
    return jsonify({"items": ts.list_response_types()}), 200


@form_templates_bp.route("/<int:template_id>", methods=["GET"])
def get_template(template_id):
    return jsonify(ts.get_template(template_id).to_dict()), 200


@form_templates_bp.route("/<int:template_id>", methods=["PUT"])
def update_template(template_id):
    return jsonify(ts.update_template(template_id, json_body())), 200


@form_templates_bp.route("/<int:template_id>", methods=["DELETE"])
def delete_template(template_id):
    ts.delete_template(template_id)
    return jsonify({"deleted": True, "id": template_id}), 200


# ═════════════════════════════════════════════════════════════════════════
# Sections
# ═════════════════════════════════════════════════════════════════════════


@form_templates_bp.route("/<int:template_id>/sections", methods=["POST"])
def add_section(template_id):
    """Body: {title, section_type?, description?, instructions?, index?}"""
    return jsonify(ts.add_section(template_id, json_body())), 201


@form_templates_bp.route("/<int:template_id>/sections/reorder", methods=["POST"])
def reorder_sections(template_id):
    """Body: {section_ids: [...]}, every section id exactly once."""
    return jsonify({"items": ts.reorder_sections(template_id, json_body())}), 200


@form_templates_bp.route("/<int:template_id>/sections/<section_id>", methods=["PUT"])
def update_section(template_id, section_id):
    return jsonify(ts.update_section(template_id, section_id, json_body())), 200


@form_templates_bp.route("/<int:template_id>/sections/<section_id>", methods=["DELETE"])
def remove_section(template_id, section_id):
    ts.remove_section(template_id, section_id)
    return jsonify({"deleted": True, "id": section_id}), 200


# ═════════════════════════════════════════════════════════════════════════
# Items
# ═════════════════════════════════════════════════════════════════════════


@form_templates_bp.route("/<int:template_id>/sections/<section_id>/items", methods=["POST"])
def add_item(template_id, section_id):
    """Body: {response_type, label?, required?, index?, <constraint fields>}"""
    return jsonify(ts.add_item(template_id, section_id, json_body())), 201


@form_templates_bp.route("/<int:template_id>/sections/<section_id>/items/reorder", methods=["POST"])
def reorder_items(template_id, section_id):
    """Body: {item_ids: [...]}, every item id of the section exactly once."""
    return jsonify({"items": ts.reorder_items(template_id, section_id, json_body())}), 200


@form_templates_bp.route("/<int:template_id>/items/<item_id>", methods=["PUT"])
def update_item(template_id, item_id):
    return jsonify(ts.update_item(template_id, item_id, json_body())), 200


@form_templates_bp.route("/<int:template_id>/items/<item_id>", methods=["DELETE"])
def remove_item(template_id, item_id):
    ts.remove_item(template_id, item_id)
    return jsonify({"deleted": True, "id": item_id}), 200


@form_templates_bp.route("/<int:template_id>/items/<item_id>/move", methods=["POST"])
def move_item(template_id, item_id):
    """Body: {section_id, index?}"""
    return jsonify(ts.move_item(template_id, item_id, json_body())), 200


# ═════════════════════════════════════════════════════════════════════════
# Lifecycle & versions
# ═════════════════════════════════════════════════════════════════════════


@form_templates_bp.route("/<int:template_id>/publish", methods=["POST"])
def publish_template(template_id):
    return jsonify(ts.publish_template(template_id)), 200


@form_templates_bp.route("/<int:template_id>/enable", methods=["POST"])
def enable_template(template_id):
    return jsonify(ts.set_template_enabled(template_id, True)), 200


@form_templates_bp.route("/<int:template_id>/disable", methods=["POST"])
def disable_template(template_id):
    return jsonify(ts.set_template_enabled(template_id, False)), 200


@form_templates_bp.route("/<int:template_id>/versions", methods=["GET"])
def list_versions(template_id):
    return jsonify({"items": ts.list_versions(template_id)}), 200


@form_templates_bp.route("/<int:template_id>/versions/<int:version>", methods=["GET"])
def get_version(template_id, version):
    return jsonify(ts.get_version(template_id, version)), 200
