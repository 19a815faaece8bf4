"""Flask application factory for the cutlist web API."""

import tempfile
from pathlib import Path

from flask import Flask, jsonify

from cutlist.errors import CutlistError, ToolNotFoundError


def create_app(work_dir: Path | None = None) -> Flask:
    app = Flask(__name__)
    app.config["WORK_DIR"] = work_dir or Path(tempfile.mkdtemp(prefix="cutlist_"))
    app.config["MAX_CONTENT_LENGTH"] = 10 * 1024 * 1024 * 1024  # 10 GB

    from cutlist.web.routes import bp
    app.register_blueprint(bp)

    @app.errorhandler(413)
    def request_entity_too_large(error):
        return jsonify({"error": "File too large"}), 413

    @app.errorhandler(CutlistError)
    def cutlist_error(error):
        status = 503 if isinstance(error, ToolNotFoundError) else 422
        return jsonify({"error": str(error)}), status

    return app
