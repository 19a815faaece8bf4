"""Web API routes for cutlist."""

import functools
import json
import logging
import queue
import threading
import uuid
from dataclasses import asdict
from pathlib import Path

from flask import (
    Blueprint,
    Response,
    current_app,
    jsonify,
    request,
    send_file,
)

from cutlist import ffutil
from cutlist.engine import EngineResult, process
from cutlist.errors import EncodeFailedError
from cutlist.manifest import Manifest, parse_cut
from cutlist.streaming import encode_segment_streaming

logger = logging.getLogger(__name__)

bp = Blueprint("web", __name__)

# In-memory job store: job_id -> job dict
_jobs: dict[str, dict] = {}

# Seconds the progress stream waits for the next engine update.
_PROGRESS_TIMEOUT = 120


def _error(message: str, status: int):
    return jsonify({"error": message}), status


def job_route(view):
    """Resolve the ``job_id`` URL part to its job dict, or answer 404."""
    @functools.wraps(view)
    def wrapper(job_id: str, **kwargs):
        job = _jobs.get(job_id)
        if job is None:
            return _error("Job not found", 404)
        return view(job_id, job, **kwargs)
    return wrapper


def _sse(payload: dict) -> str:
    return f"data: {json.dumps(payload)}\n\n"


def _result_summary(result: EngineResult) -> dict:
    return {
        "output_path": str(result.output_path),
        "duration_original": result.duration_original,
        "duration_final": result.duration_final,
        "ranges_removed": result.ranges_removed,
        "copied": result.copied,
    }


@bp.route("/api/upload", methods=["POST"])
def upload():
    upload_file = request.files.get("file")
    if upload_file is None:
        return _error("No file provided", 400)
    if not upload_file.filename:
        return _error("Empty filename", 400)

    job_id = uuid.uuid4().hex[:12]
    job_dir = Path(current_app.config["WORK_DIR"]) / job_id
    job_dir.mkdir(parents=True, exist_ok=True)
    input_path = job_dir / f"input{Path(upload_file.filename).suffix or '.mp4'}"
    upload_file.save(input_path)
    logger.info("Job %s: stored upload %s", job_id, upload_file.filename)

    _jobs[job_id] = {
        "dir": job_dir,
        "input_path": input_path,
        "filename": upload_file.filename,
        "status": "uploaded",
    }
    return jsonify({"job_id": job_id, "filename": upload_file.filename})


@bp.route("/api/jobs/<job_id>/probe")
@job_route
def probe_job(job_id: str, job: dict):
    return jsonify(asdict(ffutil.probe(job["input_path"])))


@bp.route("/api/jobs/<job_id>/export", methods=["POST"])
@job_route
def start_export(job_id: str, job: dict):
    if job["status"] == "processing":
        return _error("Job is already processing", 409)

    body = request.get_json(silent=True) or {}
    try:
        cuts = [parse_cut(c) for c in body.get("cuts", [])]
    except ValueError as e:
        return _error(str(e), 400)

    input_path = job["input_path"]
    manifest = Manifest(
        input=input_path,
        output=job["dir"] / f"output{input_path.suffix}",
        cuts=cuts,
    )

    updates: queue.Queue = queue.Queue()
    job.update(progress_queue=updates, status="processing", error=None)

    def on_progress(stage: str, frac: float):
        updates.put({"stage": stage, "progress": round(frac, 3)})

    def run_export():
        try:
            job["result"] = _result_summary(process(manifest, on_progress=on_progress))
            job["status"] = "done"
        except Exception as e:
            logger.exception("Export job %s failed", job_id)
            job["status"] = "error"
            job["error"] = str(e)
        finally:
            updates.put(None)

    threading.Thread(target=run_export, name=f"cutlist-export-{job_id}", daemon=True).start()
    return jsonify({"status": "started"})


@bp.route("/api/jobs/<job_id>/progress")
@job_route
def progress_stream(job_id: str, job: dict):
    updates = job.get("progress_queue")
    if updates is None:
        return _error("No export in progress", 409)

    def events():
        while True:
            try:
                update = updates.get(timeout=_PROGRESS_TIMEOUT)
            except queue.Empty:
                yield _sse({"error": "timeout"})
                return
            if update is not None:
                yield _sse(update)
                continue
            if job["status"] == "error":
                yield _sse({"error": job["error"]})
            else:
                yield _sse({"stage": "complete", "progress": 1.0, "result": job.get("result")})
            return

    return Response(events(), mimetype="text/event-stream")


@bp.route("/api/jobs/<job_id>/preview")
@job_route
def preview_stream(job_id: str, job: dict):
    """Stream a fragmented-MP4 preview of ``start``..``end`` as it encodes."""
    start = request.args.get("start", type=float)
    end = request.args.get("end", type=float)
    width = request.args.get("width", default=960, type=int)
    if start is None or end is None:
        return _error("start and end are required", 400)

    try:
        stream = encode_segment_streaming(job["input_path"], start, end, width=width)
    except ValueError as e:
        return _error(str(e), 400)

    def generate():
        # Closing this generator (client gone) closes the stream, which
        # kills the encoder.
        with stream:
            try:
                yield from stream
            except EncodeFailedError as e:
                logger.warning("Preview for job %s failed: %s", job_id, e)

    response = Response(generate(), mimetype="video/mp4")
    response.call_on_close(stream.close)
    return response


@bp.route("/api/jobs/<job_id>/result")
@job_route
def download_result(job_id: str, job: dict):
    if job["status"] != "done":
        return _error("Job not complete", 409)
    return send_file(Path(job["result"]["output_path"]), as_attachment=False)


@bp.route("/api/jobs/<job_id>/status")
@job_route
def job_status(job_id: str, job: dict):
    summary = {"status": job["status"], "filename": job.get("filename")}
    if job["status"] == "done":
        summary["result"] = job.get("result")
    elif job["status"] == "error":
        summary["error"] = job.get("error")
    return jsonify(summary)
