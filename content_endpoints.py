#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Content Administration API Endpoints
Departments, policies, mission/vision text, upload formats, watermark
preferences and privacy policies
"""

import logging

from flask import jsonify, request

from content_store import (
    ContentError,
    DuplicateNameError,
    list_departments, create_department, update_department, delete_department, department_history,
    get_policy, add_policy, edit_policy, delete_policy, policy_history,
    get_component, save_component, restore_component, component_history,
    list_field_options, add_field_option,
    list_formats, get_format, create_format, update_format, delete_format,
    current_watermark, list_watermark_versions, save_watermark, delete_watermark_version,
    list_privacy_policies, get_privacy_policy, current_privacy_policy, create_privacy_policy,
    update_privacy_policy, delete_privacy_policy,
)

logger = logging.getLogger(__name__)


def _content_error(e: ContentError):
    status = 409 if isinstance(e, DuplicateNameError) else 400
    return jsonify({"error": str(e)}), status


def init_content_routes(app, get_db, require_user, require_permission):
    """
    Initialize content administration routes on the Flask app.

    Reads are open (formats need a signed-in user); changes need the
    Settings permission.
    """

    def _json_payload():
        try:
            payload = request.get_json(force=True, silent=False)
        except Exception:
            return None, (jsonify({"error": "Invalid JSON"}), 400)
        if not isinstance(payload, dict):
            return None, (jsonify({"error": "Invalid JSON"}), 400)
        return payload, None

    def _settings_user():
        payload, error_response = _json_payload()
        if error_response:
            return None, None, error_response
        user, error_response = require_permission("Settings", payload)
        return payload, user, error_response

    # -----------------------------
    # Departments
    # -----------------------------
    @app.get("/api/departments")
    def get_departments():
        return jsonify({"departments": list_departments(get_db(), request.args.get("search", ""))})

    @app.post("/api/departments")
    def add_department():
        """Expected JSON: { "token": "...", "name": "...", "description": "...", "image_url": "" }"""
        payload, user, error_response = _settings_user()
        if error_response:
            return error_response
        try:
            dept_id = create_department(get_db(), payload.get("name", ""), payload.get("description", ""),
                                        user["display_name"], payload.get("image_url", ""))
        except ContentError as e:
            return _content_error(e)
        if dept_id < 0:
            return jsonify({"error": "Failed to save department"}), 500
        return jsonify({"ok": True, "id": dept_id}), 201

    @app.put("/api/departments/<int:dept_id>")
    def edit_department(dept_id: int):
        payload, user, error_response = _settings_user()
        if error_response:
            return error_response
        try:
            updated = update_department(get_db(), dept_id, user["display_name"], name=payload.get("name"),
                                        description=payload.get("description"),
                                        image_url=payload.get("image_url"))
        except ContentError as e:
            return _content_error(e)
        if not updated:
            return jsonify({"error": "Department not found"}), 404
        return jsonify({"ok": True})

    @app.delete("/api/departments/<int:dept_id>")
    def remove_department(dept_id: int):
        user, error_response = require_permission("Settings")
        if error_response:
            return error_response
        if not delete_department(get_db(), dept_id, user["display_name"]):
            return jsonify({"error": "Department not found"}), 404
        return jsonify({"ok": True})

    @app.get("/api/departments/history")
    def get_department_history():
        user, error_response = require_permission("Settings")
        if error_response:
            return error_response
        return jsonify({"history": department_history(get_db())})

    # -----------------------------
    # Policies & guidelines
    # -----------------------------
    @app.get("/api/policy")
    def get_current_policy():
        return jsonify({"policy": get_policy(get_db())})

    @app.post("/api/policy")
    def create_policy():
        """Replaces any existing policy."""
        payload, user, error_response = _settings_user()
        if error_response:
            return error_response
        try:
            policy_id = add_policy(get_db(), payload.get("content", ""), user["display_name"])
        except ContentError as e:
            return _content_error(e)
        if policy_id < 0:
            return jsonify({"error": "Failed to save policy"}), 500
        return jsonify({"ok": True, "id": policy_id}), 201

    @app.put("/api/policy/<int:policy_id>")
    def update_policy(policy_id: int):
        payload, user, error_response = _settings_user()
        if error_response:
            return error_response
        try:
            updated = edit_policy(get_db(), policy_id, payload.get("content", ""), user["display_name"])
        except ContentError as e:
            return _content_error(e)
        if not updated:
            return jsonify({"error": "Policy not found"}), 404
        return jsonify({"ok": True})

    @app.delete("/api/policy/<int:policy_id>")
    def remove_policy(policy_id: int):
        user, error_response = require_permission("Settings")
        if error_response:
            return error_response
        if not delete_policy(get_db(), policy_id, user["display_name"]):
            return jsonify({"error": "Policy not found"}), 404
        return jsonify({"ok": True})

    @app.get("/api/policy/history")
    def get_policy_history():
        user, error_response = require_permission("Settings")
        if error_response:
            return error_response
        return jsonify({"history": policy_history(get_db())})

    # -----------------------------
    # Mission / Vision
    # -----------------------------
    def _known_component(component: str) -> bool:
        return component.lower() in ("mission", "vision")

    @app.get("/api/content/<component>")
    def get_component_text(component: str):
        if not _known_component(component):
            return jsonify({"error": "Unknown component"}), 404
        return jsonify({"current": get_component(get_db(), component)})

    @app.post("/api/content/<component>")
    def save_component_text(component: str):
        """Expected JSON: { "token": "...", "content": "...", "mode": "add" | "edit" }"""
        if not _known_component(component):
            return jsonify({"error": "Unknown component"}), 404
        payload, user, error_response = _settings_user()
        if error_response:
            return error_response
        try:
            entry = save_component(get_db(), component, payload.get("content", ""), user["display_name"],
                                   mode=payload.get("mode", "edit"))
            return jsonify({"ok": True, "entry": entry})
        except ContentError as e:
            return _content_error(e)
        except Exception as e:
            logger.error(f"Failed to save {component}: {e}", exc_info=True)
            return jsonify({"error": f"Failed to save {component}"}), 500

    @app.post("/api/content/<component>/restore/<int:history_id>")
    def restore_component_text(component: str, history_id: int):
        if not _known_component(component):
            return jsonify({"error": "Unknown component"}), 404
        payload, user, error_response = _settings_user()
        if error_response:
            return error_response
        try:
            entry = restore_component(get_db(), component, history_id, user["display_name"])
        except Exception as e:
            logger.error(f"Failed to restore {component} entry {history_id}: {e}", exc_info=True)
            return jsonify({"error": f"Failed to restore {component}"}), 500
        if not entry:
            return jsonify({"error": "History entry not found"}), 404
        return jsonify({"ok": True, "entry": entry})

    @app.get("/api/content/<component>/history")
    def get_component_history(component: str):
        if not _known_component(component):
            return jsonify({"error": "Unknown component"}), 404
        limit = request.args.get("limit", type=int)
        return jsonify({"history": component_history(get_db(), component, limit=limit)})

    # -----------------------------
    # Upload formats
    # -----------------------------
    @app.get("/api/formats")
    def get_formats():
        user, error_response = require_user()
        if error_response:
            return error_response
        return jsonify({"formats": list_formats(get_db()), "field_options": list_field_options(get_db())})

    @app.get("/api/formats/<int:format_id>")
    def get_one_format(format_id: int):
        user, error_response = require_user()
        if error_response:
            return error_response
        fmt = get_format(get_db(), format_id)
        if not fmt:
            return jsonify({"error": "Format not found"}), 404
        return jsonify({"format": fmt})

    @app.post("/api/formats")
    def add_format():
        """Expected JSON: { "token": "...", "name": "...", "description": "...", "fields": [...], "required_fields": [...] }"""
        payload, user, error_response = _settings_user()
        if error_response:
            return error_response
        try:
            format_id = create_format(get_db(), payload.get("name", ""), payload.get("description", ""),
                                      payload.get("fields") or [], payload.get("required_fields") or [],
                                      user["uid"])
        except ContentError as e:
            return _content_error(e)
        return jsonify({"ok": True, "format": get_format(get_db(), format_id)}), 201

    @app.put("/api/formats/<int:format_id>")
    def edit_format(format_id: int):
        payload, user, error_response = _settings_user()
        if error_response:
            return error_response
        try:
            updated = update_format(get_db(), format_id, payload.get("name", ""), payload.get("description", ""),
                                    payload.get("fields") or [], payload.get("required_fields") or [])
        except ContentError as e:
            return _content_error(e)
        if not updated:
            return jsonify({"error": "Format not found"}), 404
        return jsonify({"ok": True, "format": get_format(get_db(), format_id)})

    @app.delete("/api/formats/<int:format_id>")
    def remove_format(format_id: int):
        user, error_response = require_permission("Settings")
        if error_response:
            return error_response
        if not delete_format(get_db(), format_id):
            return jsonify({"error": "Format not found"}), 404
        return jsonify({"ok": True})

    @app.post("/api/formats/field-options")
    def add_format_field_option():
        payload, user, error_response = _settings_user()
        if error_response:
            return error_response
        try:
            name = add_field_option(get_db(), payload.get("name", ""))
        except ContentError as e:
            return _content_error(e)
        return jsonify({"ok": True, "name": name, "field_options": list_field_options(get_db())}), 201

    # -----------------------------
    # Watermark preferences
    # -----------------------------
    @app.get("/api/watermark")
    def get_watermark():
        """The preference in effect for the PDF viewer."""
        user, error_response = require_user()
        if error_response:
            return error_response
        return jsonify({"watermark": current_watermark(get_db())})

    @app.get("/api/watermark/versions")
    def get_watermark_versions():
        user, error_response = require_permission("Settings")
        if error_response:
            return error_response
        versions = list_watermark_versions(get_db()) or [current_watermark(get_db())]
        return jsonify({"versions": versions, "latest": versions[0]["version"]})

    @app.post("/api/watermark")
    def add_watermark_version():
        """
        Expected JSON: { "token": "...", "settings": {"mode": "tiled", "opacity": 0.14, "fontSize": 18},
                         "static_text": "", "note": "", "mode": "new" | "edit" }
        """
        payload, user, error_response = _settings_user()
        if error_response:
            return error_response
        try:
            pref = save_watermark(get_db(), payload.get("settings"), payload.get("static_text"),
                                  user["display_name"], note=payload.get("note") or "",
                                  mode=payload.get("mode", "new"))
        except Exception as e:
            logger.error(f"Failed to save watermark: {e}", exc_info=True)
            return jsonify({"error": "Failed to save watermark"}), 500
        return jsonify({"ok": True, "watermark": pref}), 201

    @app.delete("/api/watermark/versions/<version>")
    def remove_watermark_version(version: str):
        """Deleting the latest version puts the next lower one back in effect."""
        user, error_response = require_permission("Settings")
        if error_response:
            return error_response
        pref = delete_watermark_version(get_db(), version)
        if pref is None:
            return jsonify({"error": "Watermark version not found"}), 404
        return jsonify({"ok": True, "watermark": pref})

    # -----------------------------
    # Privacy policies
    # -----------------------------
    @app.get("/api/privacy-policy")
    def get_current_privacy_policy():
        return jsonify({"policy": current_privacy_policy(get_db())})

    @app.get("/api/privacy-policies")
    def get_privacy_policies():
        user, error_response = require_permission("Settings")
        if error_response:
            return error_response
        return jsonify({"policies": list_privacy_policies(get_db())})

    @app.get("/api/privacy-policies/<int:policy_id>")
    def get_one_privacy_policy(policy_id: int):
        user, error_response = require_permission("Settings")
        if error_response:
            return error_response
        policy = get_privacy_policy(get_db(), policy_id)
        if not policy:
            return jsonify({"error": "Privacy policy not found"}), 404
        return jsonify({"policy": policy})

    @app.post("/api/privacy-policies")
    def add_privacy_policy():
        """
        Expected JSON: { "token": "...", "title": "...", "effective_date": "YYYY-MM-DD",
                         "sections": [{"sectionTitle": "...", "content": "..."}] }
        """
        payload, user, error_response = _settings_user()
        if error_response:
            return error_response
        try:
            policy = create_privacy_policy(get_db(), payload.get("title", ""), payload.get("effective_date", ""),
                                           payload.get("sections"), user["display_name"])
        except ContentError as e:
            return _content_error(e)
        return jsonify({"ok": True, "policy": policy}), 201

    @app.put("/api/privacy-policies/<int:policy_id>")
    def edit_privacy_policy(policy_id: int):
        payload, user, error_response = _settings_user()
        if error_response:
            return error_response
        try:
            policy = update_privacy_policy(get_db(), policy_id, payload.get("title", ""),
                                           str(payload.get("version") or ""), payload.get("effective_date", ""),
                                           payload.get("sections"), status=payload.get("status"))
        except ContentError as e:
            return _content_error(e)
        if not policy:
            return jsonify({"error": "Privacy policy not found"}), 404
        return jsonify({"ok": True, "policy": policy})

    @app.delete("/api/privacy-policies/<int:policy_id>")
    def remove_privacy_policy(policy_id: int):
        user, error_response = require_permission("Settings")
        if error_response:
            return error_response
        if not delete_privacy_policy(get_db(), policy_id):
            return jsonify({"error": "Privacy policy not found"}), 404
        return jsonify({"ok": True})
