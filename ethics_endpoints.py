#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Ethics Clearance API Endpoints
Flask endpoints for uploading, listing, editing and exporting ethics clearances
"""

import logging
from datetime import datetime

from flask import Response, jsonify, request

from ethics_store import (
    EthicsValidationError,
    upload_clearance,
    get_clearance,
    list_clearances,
    update_clearance,
    delete_clearance,
    export_clearances_csv,
)
from object_storage import StorageError

logger = logging.getLogger(__name__)


def init_ethics_routes(app, get_db, get_store, bucket: str, require_permission, allowed_extensions):
    """
    Initialize ethics clearance routes on the Flask app.

    Args:
        app: Flask application instance
        get_db: Callable returning the database path
        get_store: Callable returning the object store
        bucket: Bucket holding clearance files
        require_permission: Function (permissions, payload) -> (user, error_response)
        allowed_extensions: Accepted file extensions
    """

    def _uploaded_file():
        file = request.files.get("file")
        if file is None or not file.filename:
            return None, None, ""
        return file.filename, file.read(), file.mimetype or ""

    @app.post("/api/ethics")
    def create_ethics_clearance():
        """
        Upload a clearance document.
        Expects multipart/form-data with: token, file, signatory_name, date_required
        """
        user, error_response = require_permission(("Add Materials", "Manage Materials"))
        if error_response:
            return error_response

        file_name, data, content_type = _uploaded_file()
        try:
            record = upload_clearance(
                get_db(), get_store(), bucket, file_name, data or b"",
                request.form.get("signatory_name", ""),
                request.form.get("date_required", ""),
                user["uid"], user["display_name"],
                content_type=content_type,
                allowed_extensions=allowed_extensions,
            )
            return jsonify({"ok": True, "clearance": record}), 201
        except EthicsValidationError as e:
            return jsonify({"error": str(e)}), 400
        except StorageError as e:
            logger.error(f"Ethics upload failed: {e}", exc_info=True)
            return jsonify({"error": "Upload failed. Please try again."}), 500
        except Exception as e:
            logger.error(f"Failed to save ethics clearance: {e}", exc_info=True)
            return jsonify({"error": "Failed to save ethics clearance"}), 500

    @app.get("/api/ethics")
    def list_ethics_clearances():
        """List clearances newest first. Query params: search (optional)"""
        user, error_response = require_permission(("Add Materials", "Manage Materials"))
        if error_response:
            return error_response
        try:
            rows = list_clearances(get_db(), request.args.get("search", ""))
            return jsonify({"ok": True, "clearances": rows})
        except Exception as e:
            logger.error(f"Failed to list ethics clearances: {e}", exc_info=True)
            return jsonify({"error": "Failed to retrieve ethics clearances"}), 500

    @app.get("/api/ethics/export")
    def export_ethics_clearances():
        user, error_response = require_permission("Manage Materials")
        if error_response:
            return error_response
        try:
            csv_data = export_clearances_csv(list_clearances(get_db(), request.args.get("search", "")))
            filename = f"ethics_clearances_{datetime.now().strftime('%Y-%m-%d')}.csv"
            return Response(
                csv_data,
                mimetype='text/csv',
                headers={'Content-Disposition': f'attachment; filename={filename}'}
            )
        except Exception as e:
            logger.error(f"Failed to export ethics clearances: {e}", exc_info=True)
            return jsonify({"error": "Failed to export ethics clearances"}), 500

    @app.get("/api/ethics/<clearance_id>")
    def get_ethics_clearance(clearance_id: str):
        user, error_response = require_permission(("Add Materials", "Manage Materials"))
        if error_response:
            return error_response
        record = get_clearance(get_db(), clearance_id)
        if not record:
            return jsonify({"error": "Ethics clearance not found"}), 404
        return jsonify({"ok": True, "clearance": record})

    @app.put("/api/ethics/<clearance_id>")
    def edit_ethics_clearance(clearance_id: str):
        """
        Edit signatory and date, optionally replacing the file.
        Accepts multipart/form-data (with an optional file) or JSON.
        """
        if request.files or request.form:
            payload = request.form.to_dict()
        else:
            try:
                payload = request.get_json(force=True, silent=False)
            except Exception:
                return jsonify({"error": "Invalid JSON"}), 400
            if not isinstance(payload, dict):
                return jsonify({"error": "Invalid JSON"}), 400

        user, error_response = require_permission("Manage Materials", payload)
        if error_response:
            return error_response

        file_name, data, content_type = _uploaded_file()
        try:
            record = update_clearance(
                get_db(), get_store(), bucket, clearance_id,
                signatory_name=payload.get("signatory_name"),
                date_required=payload.get("date_required"),
                file_name=file_name, data=data, content_type=content_type,
                allowed_extensions=allowed_extensions,
            )
        except EthicsValidationError as e:
            return jsonify({"error": str(e)}), 400
        except Exception as e:
            logger.error(f"Failed to update ethics clearance {clearance_id}: {e}", exc_info=True)
            return jsonify({"error": "Failed to update ethics clearance"}), 500

        if not record:
            return jsonify({"error": "Ethics clearance not found"}), 404
        return jsonify({"ok": True, "clearance": record})

    @app.delete("/api/ethics/<clearance_id>")
    def delete_ethics_clearance(clearance_id: str):
        user, error_response = require_permission("Manage Materials")
        if error_response:
            return error_response
        try:
            if not delete_clearance(get_db(), get_store(), bucket, clearance_id):
                return jsonify({"error": "Ethics clearance not found"}), 404
            logger.info(f"Ethics clearance {clearance_id} deleted by {user['uid']}")
            return jsonify({"ok": True})
        except Exception as e:
            logger.error(f"Failed to delete ethics clearance {clearance_id}: {e}", exc_info=True)
            return jsonify({"error": "Failed to delete ethics clearance"}), 500
