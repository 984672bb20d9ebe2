"""
Flask API server for interview transcription.

This server provides endpoints for:
- Uploading audio/video files for transcription
- Polling job status and chunk-by-chunk progress
- Editing, downloading and deleting transcripts
- Reading and topping up a user's transcription credits

Authentication is handled upstream; the caller's identity arrives in the
``X-User-Id`` header. Jobs run in a background ProcessingQueue so uploads
return as soon as the job is created.
"""

import atexit
import logging
import os
import tempfile
from datetime import datetime
from typing import Optional

from flask import Blueprint, Flask, Response, current_app, jsonify, request
from flask_cors import CORS
from werkzeug.utils import secure_filename

from ..audio.utils import format_segments
from ..config import ConfigManager
from ..errors import InputError, UnsupportedFileError
from ..models import JobStatus, Quality, Segment, TranscriptionJob
from .credit_ledger import CreditLedger
from .job_manager import JobManager
from .processing_queue import ProcessingQueue
from .processor import TranscriptionProcessor

logger = logging.getLogger(__name__)

MAX_CONTENT_LENGTH = 100 * 1024 * 1024  # 100MB max upload
ALLOWED_EXTENSIONS = {"mp3", "wav", "m4a", "mp4", "mpeg", "mpga", "webm", "ogg", "flac", "aac", "wma"}
DOWNLOAD_FORMATS = {"txt", "timestamped"}
FAILED_JOB_MESSAGE = "Transcription failed. Please try uploading the file again."
SECRET_SETTINGS = {"OPENAI_API_KEY"}

api = Blueprint("api", __name__)


def allowed_file(filename: str) -> bool:
    """Check if the uploaded file has an allowed extension."""
    return "." in filename and filename.rsplit(".", 1)[1].lower() in ALLOWED_EXTENSIONS


def _services() -> dict:
    return current_app.extensions["transcritor"]


def _current_user_id() -> Optional[str]:
    """Identity of the caller, registered in the ledger on first sight."""
    user_id = request.headers.get("X-User-Id", "").strip()
    if not user_id:
        return None
    _services()["ledger"].ensure_user(user_id)
    return user_id


def _job_payload(job: TranscriptionJob) -> dict:
    """Job record as returned to clients. Failed jobs never expose partial text."""
    data = job.to_dict()
    if job.status == JobStatus.ERROR:
        data["transcription_text"] = None
        data["segments"] = None
        data["message"] = FAILED_JOB_MESSAGE
    return data


def _owned_job(job_id: str, user_id: str) -> Optional[TranscriptionJob]:
    job = _services()["job_manager"].get_job(job_id)
    if job is None or job.user_id != user_id:
        return None
    return job


@api.errorhandler(InputError)
def handle_input_error(error: InputError):
    return jsonify({"error": error.message, "code": error.code}), error.http_status


@api.route("/health", methods=["GET"])
def health_check():
    """Health check endpoint."""
    queue_status = _services()["processing_queue"].get_queue_status()
    return jsonify(
        {
            "status": "healthy",
            "timestamp": datetime.now().isoformat(),
            "queue_running": queue_status["is_running"],
            "queue_size": queue_status["queue_size"],
            "running_jobs": len(queue_status["running_jobs"]),
        }
    )


@api.route("/transcriptions", methods=["POST"])
def upload_audio():
    """
    Upload a file for transcription.

    Expected form data:
    - file: Audio or video file
    - title: Optional display title (defaults to the file name)
    - quality: Optional "standard" or "premium" (premium needs paid credits)

    Returns the created job (status "preparing") with HTTP 201.
    """
    user_id = _current_user_id()
    if not user_id:
        return jsonify({"error": "Missing X-User-Id header"}), 401

    if "file" not in request.files:
        return jsonify({"error": "No file provided"}), 400

    file = request.files["file"]
    if file.filename == "":
        return jsonify({"error": "No file selected"}), 400

    if not allowed_file(file.filename):
        allowed_types = ", ".join(sorted(ALLOWED_EXTENSIONS))
        raise UnsupportedFileError(f"File type not allowed. Allowed types: {allowed_types}")

    original_filename = secure_filename(file.filename)
    if not original_filename or "." not in original_filename:
        return jsonify({"error": "Invalid filename"}), 400

    try:
        requested_quality = Quality(request.form.get("quality", Quality.STANDARD.value))
    except ValueError:
        return jsonify({"error": "Invalid quality"}), 400

    title = request.form.get("title", "").strip() or None

    with tempfile.NamedTemporaryFile(
        delete=False, suffix=f".{original_filename.rsplit('.', 1)[1].lower()}"
    ) as tmp_file:
        file.save(tmp_file)
        temp_file_path = tmp_file.name

    try:
        if os.path.getsize(temp_file_path) == 0:
            return jsonify({"error": "Empty file not allowed"}), 400

        services = _services()
        job = services["processor"].admit_upload(
            user_id=user_id,
            upload_path=temp_file_path,
            original_filename=original_filename,
            title=title,
            requested_quality=requested_quality,
        )
        services["processing_queue"].enqueue_job(job.id)
        logger.info(f"Upload {original_filename} accepted as job {job.id}")

        return jsonify(_job_payload(job)), 201

    finally:
        if os.path.exists(temp_file_path):
            os.unlink(temp_file_path)


@api.route("/transcriptions", methods=["GET"])
def list_transcriptions():
    """
    List the caller's transcriptions, newest first.

    Query parameters:
    - status: Filter by status (pending, preparing, processing, completed, error)
    - q: Search titles and transcript text
    - limit: Limit number of results (default: 100)
    """
    user_id = _current_user_id()
    if not user_id:
        return jsonify({"error": "Missing X-User-Id header"}), 401

    job_manager = _services()["job_manager"]
    limit = request.args.get("limit", 100, type=int)
    query = request.args.get("q", "").strip()

    if query:
        jobs = job_manager.search_jobs(user_id, query, limit=limit)
    else:
        jobs = job_manager.list_jobs(user_id=user_id, status_filter=request.args.get("status"), limit=limit)

    return jsonify({"jobs": [_job_payload(job) for job in jobs], "total": len(jobs), "limit": limit})


@api.route("/transcriptions/<job_id>", methods=["GET"])
def get_transcription(job_id: str):
    """
    Poll a transcription job.

    Returns the job record including status, total_chunks, completed_chunks
    and chunk_progress. Clients poll while status is preparing/processing.
    """
    user_id = _current_user_id()
    job = _owned_job(job_id, user_id) if user_id else None
    if job is None:
        return jsonify({"error": "Transcription not found"}), 404

    return jsonify(_job_payload(job))


@api.route("/transcriptions/<job_id>", methods=["PATCH"])
def update_transcription(job_id: str):
    """
    Save user edits.

    JSON body (all optional): title, transcription_text, segments.
    """
    user_id = _current_user_id()
    job = _owned_job(job_id, user_id) if user_id else None
    if job is None:
        return jsonify({"error": "Transcription not found"}), 404

    data = request.get_json(silent=True) or {}
    try:
        segments = data.get("segments")
        if segments is not None:
            segments = [Segment.from_dict(s) for s in segments]
        job = _services()["job_manager"].update_transcript(
            job_id,
            title=data.get("title"),
            transcription_text=data.get("transcription_text"),
            segments=segments,
        )
    except (KeyError, TypeError) as e:
        return jsonify({"error": f"Invalid segments: {e}"}), 400
    except ValueError as e:
        return jsonify({"error": str(e)}), 409

    return jsonify(_job_payload(job))


@api.route("/transcriptions/<job_id>/download", methods=["GET"])
def download_transcription(job_id: str):
    """
    Download a completed transcript.

    Query parameters:
    - format: "txt" (plain text, default) or "timestamped" (segments with
      timestamps and speakers)
    """
    user_id = _current_user_id()
    job = _owned_job(job_id, user_id) if user_id else None
    if job is None:
        return jsonify({"error": "Transcription not found"}), 404

    export_format = request.args.get("format", "txt")
    if export_format not in DOWNLOAD_FORMATS:
        return jsonify({"error": "Invalid format"}), 400

    if job.status != JobStatus.COMPLETED or job.transcription_text is None:
        return jsonify({"error": "Transcription not ready"}), 400

    if export_format == "timestamped":
        body = format_segments(job.segments or [])
    else:
        body = job.transcription_text

    filename = f"{secure_filename(job.title) or job.id}.txt"
    return Response(
        body,
        mimetype="text/plain; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@api.route("/transcriptions/<job_id>", methods=["DELETE"])
def delete_transcription(job_id: str):
    """
    Delete a transcription and its files.

    A queued or running job is cancelled first and its credit hold released.
    """
    user_id = _current_user_id()
    job = _owned_job(job_id, user_id) if user_id else None
    if job is None:
        return jsonify({"error": "Transcription not found"}), 404

    services = _services()
    services["processing_queue"].cancel_job(job_id)
    if not job.credits_settled:
        services["ledger"].release_hold(user_id, job_id)

    if services["job_manager"].delete_job(job_id):
        logger.info(f"Deleted job {job_id}")
        return jsonify({"message": "Transcription deleted successfully"})
    return jsonify({"error": "Failed to delete transcription"}), 500


@api.route("/users/<user_id>", methods=["GET"])
def get_user(user_id: str):
    """Credit balance and free-trial state of a user."""
    user = _services()["ledger"].get_user(user_id)
    if user is None:
        return jsonify({"error": "User not found"}), 404

    return jsonify(
        {
            "id": user.id,
            "free_transcription_used": user.free_transcription_used,
            "free_trial_available": user.free_trial_available,
            "transcription_credits": user.transcription_credits,
        }
    )


@api.route("/users/<user_id>/credits", methods=["POST"])
def add_user_credits(user_id: str):
    """
    Add purchased credits. JSON body: {"amount": <positive int>}.

    Called by the payment webhook. This route does no caller verification of
    its own and must only be reachable behind the webhook's signature check.
    """
    data = request.get_json(silent=True) or {}
    amount = data.get("amount")
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        return jsonify({"error": "amount must be a positive integer"}), 400

    user = _services()["ledger"].add_credits(user_id, amount)
    return jsonify({"id": user.id, "transcription_credits": user.transcription_credits})


@api.route("/queue/status", methods=["GET"])
def get_queue_status():
    """Get detailed queue status information."""
    return jsonify(_services()["processing_queue"].get_queue_status())


def create_app(
    job_manager: Optional[JobManager] = None,
    ledger: Optional[CreditLedger] = None,
    processor: Optional[TranscriptionProcessor] = None,
    processing_queue: Optional[ProcessingQueue] = None,
    start_queue: bool = True,
) -> Flask:
    """
    Build the Flask application and its processing services.

    Any service not passed in is built from configuration.
    """
    app = Flask(__name__)
    app.config["MAX_CONTENT_LENGTH"] = MAX_CONTENT_LENGTH
    CORS(app)

    job_manager = job_manager or JobManager(ConfigManager.get("JOBS_DIR"))
    ledger = ledger or CreditLedger(ConfigManager.get("USERS_FILE"))
    processor = processor or TranscriptionProcessor(job_manager, ledger)
    processing_queue = processing_queue or ProcessingQueue(processor, max_workers=ConfigManager.get_int("MAX_WORKERS"))

    app.extensions["transcritor"] = {
        "job_manager": job_manager,
        "ledger": ledger,
        "processor": processor,
        "processing_queue": processing_queue,
    }
    app.register_blueprint(api)

    if start_queue:
        processing_queue.start()
        atexit.register(processing_queue.stop)

    return app


def log_configuration():
    """Log every setting and where it came from. Secrets are reported as set or unset only."""
    for key in sorted(ConfigManager.DEFAULTS):
        value, source = ConfigManager.get_display_value(key)
        if key in SECRET_SETTINGS:
            value = "<unset>" if ConfigManager.is_using_default(key) else "<set>"
        logger.info(f"Config {key}={value} ({source})")


def main():
    """Run the development server."""
    log_level = ConfigManager.get("LOG_LEVEL").upper()
    logging.basicConfig(level=getattr(logging, log_level, logging.INFO))
    logging.getLogger("werkzeug").setLevel(logging.WARNING)
    log_configuration()

    app = create_app()
    app.run(host="0.0.0.0", port=5001)


if __name__ == "__main__":
    main()
