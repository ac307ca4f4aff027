"""Flask application factory for the ClipStitch job API."""

import tempfile
from pathlib import Path

from flask import Flask, jsonify


def create_app(work_dir: Path | None = None, job_ttl: float = 3600.0) -> Flask:
    app = Flask(__name__)
    app.config["WORK_DIR"] = work_dir or Path(tempfile.mkdtemp(prefix="clipstitch_jobs_"))
    app.config["JOB_TTL"] = job_ttl  # seconds a finished job and its output are kept
    app.config["MAX_CONTENT_LENGTH"] = 16 * 1024 * 1024  # manifests only

    from clipstitch.web.routes import bp
    app.register_blueprint(bp)

    @app.errorhandler(413)
    def request_entity_too_large(error):
        return jsonify({"error": "Manifest too large"}), 413

    return app
