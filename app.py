"""
recon_ingest operator console: JSON API over a single UploadWorkflow.

Every route answers with the full workflow status so a front end can render
file, mapping, preview and job progress from one payload.
"""

from __future__ import annotations

import os
from typing import Any, Dict, Optional, Tuple

from flask import Flask, request
from werkzeug.utils import secure_filename

from recon_ingest.client import ReconciliationClient
from recon_ingest.config import ClientConfig, WorkflowConfig
from recon_ingest.logging_setup import get_logger
from recon_ingest.workflow import UploadWorkflow

logger = get_logger("console")

ALLOWED_EXTENSIONS = {"csv", "xlsx", "xls"}

# -------------------------------------------------------
# Helpers
# -------------------------------------------------------

def allowed_file(filename: str) -> bool:
    return "." in filename and filename.rsplit(".", 1)[1].lower() in ALLOWED_EXTENSIONS


def build_workflow() -> UploadWorkflow:
    """Workflow wired to the backend named by ``RECON_API_URL``."""
    config = WorkflowConfig(
        client=ClientConfig(
            base_url=os.environ.get("RECON_API_URL", ClientConfig.base_url),
            api_token=os.environ.get("RECON_API_TOKEN"),
        ),
        log_level=os.environ.get("RECON_LOG_LEVEL", "INFO"),
    )
    return UploadWorkflow(client=ReconciliationClient(config.client), config=config)


def _status(workflow: UploadWorkflow, code: int = 200) -> Tuple[Dict[str, Any], int]:
    return workflow.status().to_dict(), code


# -------------------------------------------------------
# App Setup
# -------------------------------------------------------

def create_app(workflow: Optional[UploadWorkflow] = None) -> Flask:
    app = Flask(__name__)
    app.config["MAX_CONTENT_LENGTH"] = 16 * 1024 * 1024

    wf = workflow or build_workflow()
    app.extensions["upload_workflow"] = wf

    @app.route("/api/health", methods=["GET"])
    def api_health():
        return {"status": "online", "version": "1.0.0"}, 200

    @app.route("/api/fields", methods=["GET"])
    def api_fields():
        return {"fields": UploadWorkflow.canonical_fields()}, 200

    @app.route("/api/status", methods=["GET"])
    def api_status():
        return _status(wf)

    @app.route("/api/file", methods=["POST"])
    def api_file():
        if "file" not in request.files:
            return {"success": False, "error": "No file uploaded"}, 400

        file = request.files["file"]
        if file.filename == "":
            return {"success": False, "error": "No file selected"}, 400

        if not allowed_file(file.filename):
            return {
                "success": False,
                "error": "Invalid file type. Supported formats: CSV, XLS, XLSX",
            }, 400

        filename = secure_filename(file.filename)
        wf.select_file(filename, file.read())
        return _status(wf)

    @app.route("/api/preview", methods=["POST"])
    def api_preview():
        wf.preview()
        return _status(wf)

    @app.route("/api/mapping", methods=["POST"])
    def api_mapping():
        body = request.get_json(silent=True) or {}
        try:
            wf.set_mapping(body.get("field", ""), body.get("header"))
        except ValueError as exc:
            return {"success": False, "error": str(exc)}, 400
        return _status(wf)

    @app.route("/api/mapping/suggestions", methods=["GET"])
    def api_suggestions():
        return {"suggestions": [s.to_dict() for s in wf.suggest_mapping()]}, 200

    @app.route("/api/mapping/apply", methods=["POST"])
    def api_apply():
        body = request.get_json(silent=True) or {}
        mapping = body.get("mapping")
        try:
            wf.apply_suggestions(mapping if isinstance(mapping, dict) else None)
        except ValueError as exc:
            return {"success": False, "error": str(exc)}, 400
        return _status(wf)

    @app.route("/api/submit", methods=["POST"])
    def api_submit():
        wf.submit()
        return _status(wf)

    @app.route("/api/reset", methods=["POST"])
    def api_reset():
        wf.reset()
        return _status(wf)

    return app


# -------------------------------------------------------
# Main
# -------------------------------------------------------

if __name__ == "__main__":
    console = create_app()
    logger.info("Operator console on http://localhost:8080")
    console.run(host="0.0.0.0", port=8080, debug=False)
