"""Job API routes for ClipStitch."""

import json
import logging
import queue
import shutil
import threading
import time
import uuid
from pathlib import Path

from flask import Blueprint, Response, current_app, jsonify, request, send_file

from clipstitch import ffutil
from clipstitch.engine import Stitcher
from clipstitch.manifest import parse_manifest
from clipstitch.models import StitchEvent

logger = logging.getLogger(__name__)

bp = Blueprint("web", __name__)

# In-memory job store: job_id -> job dict. Outputs live on disk under WORK_DIR/<job_id>.
_jobs: dict[str, dict] = {}
_jobs_lock = threading.Lock()


def _error_payload(error: BaseException) -> dict:
    return {"type": type(error).__name__, "message": str(error)}


def _evict_expired(ttl: float) -> None:
    """Drop finished jobs older than ``ttl`` seconds along with their output files."""
    now = time.monotonic()
    with _jobs_lock:
        expired = [
            job_id for job_id, job in _jobs.items()
            if job.get("finished_at") is not None and now - job["finished_at"] > ttl
        ]
        removed = [(job_id, _jobs.pop(job_id)) for job_id in expired]
    for job_id, job in removed:
        logger.info("Evicting job %s", job_id)
        shutil.rmtree(job["job_dir"], ignore_errors=True)


@bp.route("/api/jobs", methods=["POST"])
def create_job():
    _evict_expired(current_app.config["JOB_TTL"])

    data = request.get_json(silent=True)
    if data is None:
        return jsonify({"error": "Request body must be a JSON manifest"}), 400
    try:
        manifest = parse_manifest(data)
    except (ValueError, TypeError) as e:
        return jsonify({"error": f"Invalid manifest: {e}"}), 400

    job_id = uuid.uuid4().hex[:12]
    job_dir = Path(current_app.config["WORK_DIR"]) / job_id
    job_dir.mkdir(parents=True, exist_ok=True)

    # The server picks the output location; a client-supplied path is never written.
    manifest.output = job_dir / "output.mp4"

    progress_queue: queue.Queue = queue.Queue()
    job = {
        "status": "processing",
        "stage": "Waiting to start",
        "progress": 0.0,
        "events": [],
        "error": None,
        "job_dir": job_dir,
        "output_path": None,
        "finished_at": None,
        "progress_queue": progress_queue,
    }

    def on_progress(stage: str, frac: float) -> None:
        job["stage"] = stage
        job["progress"] = frac
        progress_queue.put({"stage": stage, "progress": round(frac, 3)})

    def on_event(event: StitchEvent) -> None:
        job["events"].append(event.to_dict())
        progress_queue.put({"event": event.to_dict()})

    stitcher = Stitcher(manifest, on_progress=on_progress, on_event=on_event)
    job["stitcher"] = stitcher
    with _jobs_lock:
        _jobs[job_id] = job

    def run():
        try:
            ffutil.check_ffmpeg()
            result = stitcher.run()
            job["output_path"] = result.output_path
            job["result"] = {
                "duration": result.duration,
                "width": result.profile.width,
                "height": result.profile.height,
                "sample_rate": result.profile.sample_rate,
                "channels": result.profile.channels,
                "segments_processed": result.segments_processed,
                "segments_skipped": result.segments_skipped,
                "segments_truncated": result.segments_truncated,
                "size": len(result.data),
            }
            job["status"] = "done"
        except Exception as e:
            job["status"] = "error"
            job["error"] = _error_payload(e)
        finally:
            job["stitcher"] = None
            job["finished_at"] = time.monotonic()
            progress_queue.put(None)  # sentinel

    threading.Thread(target=run, daemon=True).start()
    return jsonify({"job_id": job_id, "status": "started"})


@bp.route("/api/jobs/<job_id>/progress")
def progress_stream(job_id: str):
    if job_id not in _jobs:
        return jsonify({"error": "Job not found"}), 404

    job = _jobs[job_id]
    q = job["progress_queue"]

    def generate():
        while True:
            try:
                msg = q.get(timeout=120)
            except queue.Empty:
                yield "data: {\"error\": \"timeout\"}\n\n"
                break
            if msg is None:
                if job["status"] == "error":
                    data = json.dumps({"error": job["error"]})
                else:
                    data = json.dumps({
                        "stage": "complete",
                        "progress": 1.0,
                        "result": job.get("result"),
                    })
                yield f"data: {data}\n\n"
                break
            yield f"data: {json.dumps(msg)}\n\n"

    return Response(generate(), mimetype="text/event-stream")


@bp.route("/api/jobs/<job_id>/cancel", methods=["POST"])
def cancel_job(job_id: str):
    if job_id not in _jobs:
        return jsonify({"error": "Job not found"}), 404

    job = _jobs[job_id]
    stitcher = job.get("stitcher")
    if job["status"] != "processing" or stitcher is None:
        return jsonify({"error": f"Job is already {job['status']}"}), 409

    stitcher.cancel()
    return jsonify({"status": "cancelling"})


@bp.route("/api/jobs/<job_id>/result")
def download_result(job_id: str):
    if job_id not in _jobs:
        return jsonify({"error": "Job not found"}), 404

    job = _jobs[job_id]
    if job["status"] != "done":
        return jsonify({"error": "Job not complete"}), 409

    return send_file(
        job["output_path"],
        mimetype="video/mp4",
        as_attachment=False,
        download_name=f"{job_id}.mp4",
    )


@bp.route("/api/jobs/<job_id>/status")
def job_status(job_id: str):
    if job_id not in _jobs:
        return jsonify({"error": "Job not found"}), 404

    job = _jobs[job_id]
    resp = {
        "status": job["status"],
        "stage": job["stage"],
        "progress": job["progress"],
        "events": job["events"],
    }
    if job["status"] == "done":
        resp["result"] = job.get("result")
    if job["status"] == "error":
        resp["error"] = job.get("error")
    return jsonify(resp)
