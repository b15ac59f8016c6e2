"""Form instance blueprint.

REST API for filling in forms.

Endpoints:
  GET  /api/v1/form-instances                      list (template_id, status, subject_ref)
  POST /api/v1/form-instances                      start from an ACTIVE, enabled template
  GET  /api/v1/form-instances/<iid>                rendered view + progress
  PUT  /api/v1/form-instances/<iid>/draft          save draft (no validation)
  POST /api/v1/form-instances/<iid>/submit         validate + complete
  POST /api/v1/form-instances/<iid>/corrections    new instance pre-filled from a completed one
  GET  /api/v1/form-instances/<iid>/progress       progress + score summary
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

import careforms.services.instance_service as ins
from careforms.blueprints import json_body, page_args, register_error_handlers
from careforms.utils.errors import E, api_error

logger = logging.getLogger(__name__)

form_instances_bp = Blueprint("form_instances", __name__, url_prefix="/api/v1/form-instances")
register_error_handlers(form_instances_bp)


@form_instances_bp.route("", methods=["GET"])
def list_instances():
    limit, offset = page_args()
    items = ins.list_instances(
        template_id=request.args.get("template_id", type=int),
        status=ins.validate_status_filter(request.args.get("status")),
        subject_ref=request.args.get("subject_ref"),
        limit=limit,
        offset=offset,
    )
    return jsonify({"items": items, "limit": limit, "offset": offset}), 200


@form_instances_bp.route("", methods=["POST"])
def start_instance():
    """Body: {template_id, subject_ref?, responses?}"""
    data = json_body()
    if not data.get("template_id"):
        return api_error(E.VALIDATION_REQUIRED, "template_id is required")
    return jsonify(ins.start_instance(data, started_by=request.headers.get("X-User"))), 201


@form_instances_bp.route("/<int:instance_id>", methods=["GET"])
def get_instance(instance_id):
    return jsonify(ins.instance_view(instance_id)), 200


@form_instances_bp.route("/<int:instance_id>/progress", methods=["GET"])
def get_progress(instance_id):
    return jsonify(ins.instance_progress(instance_id)), 200


@form_instances_bp.route("/<int:instance_id>/draft", methods=["PUT"])
def save_draft(instance_id):
    """Body: {responses: {item_id: value}}, merged into the stored set."""
    return jsonify(ins.save_draft(instance_id, json_body())), 200


@form_instances_bp.route("/<int:instance_id>/submit", methods=["POST"])
def submit_instance(instance_id):
    """Body: {responses?: {item_id: value}}

    422 with the full error map and first_error_item_id when any item fails.
    """
    result, instance = ins.submit_instance(instance_id, json_body())
    if not result.submitted:
        return api_error(
            E.SUBMISSION_INVALID,
            f"Form has {len(result.errors)} invalid item(s)",
            details=result.to_dict(),
        )
    return jsonify(instance), 200


@form_instances_bp.route("/<int:instance_id>/corrections", methods=["POST"])
def start_correction(instance_id):
    """Body: {subject_ref?}"""
    return jsonify(ins.start_correction(
        instance_id, json_body(), started_by=request.headers.get("X-User"),
    )), 201
