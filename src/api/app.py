"""Flask API exposing the experimentation engine to the content pipeline."""
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).parent.parent.parent
sys.path.insert(0, str(ROOT))

from flask import Flask, request, jsonify

from src.abtesting.engine import ExperimentEngine
from src.abtesting.exceptions import (
    ExperimentNotFoundError,
    StateError,
    StorageError,
    ValidationError,
)
from src.abtesting.schema import ExperimentStatus
from src.abtesting.settings import EngineSettings

logger = logging.getLogger(__name__)


def create_app(engine=None):
    """Build the Flask app around an engine (one from env settings by default)."""
    app = Flask(__name__)
    app.config["ENGINE"] = engine or ExperimentEngine(settings=EngineSettings.from_env())

    def _engine() -> ExperimentEngine:
        return app.config["ENGINE"]

    @app.errorhandler(ValidationError)
    def _validation_error(e):
        return jsonify({"error": str(e), "rule": e.rule}), 400

    @app.errorhandler(ExperimentNotFoundError)
    def _not_found(e):
        return jsonify({"error": str(e)}), 404

    @app.errorhandler(StateError)
    def _state_error(e):
        return jsonify({"error": str(e), "status": e.status}), 409

    @app.errorhandler(StorageError)
    def _storage_error(e):
        logger.error(f"Storage failure: {e}")
        return jsonify({"error": str(e)}), 503

    @app.route("/ping", methods=["GET"])
    def ping():
        return "pong"

    @app.route("/experiments", methods=["GET"])
    def list_experiments():
        status = request.args.get("status")
        try:
            status = ExperimentStatus(status) if status else None
        except ValueError:
            return jsonify({"error": f"Unknown status: {status}"}), 400
        experiments = _engine().list_experiments(status)
        return jsonify({"experiments": [e.to_dict() for e in experiments]})

    @app.route("/experiments", methods=["POST"])
    def create_experiment():
        data = request.get_json(silent=True)
        if not data:
            return jsonify({"error": "Empty request"}), 400
        experiment = _engine().create_experiment(data)
        return jsonify(experiment.to_dict()), 201

    @app.route("/experiments/<experiment_id>/start", methods=["POST"])
    def start_experiment(experiment_id):
        experiment = _engine().start_experiment(experiment_id)
        return jsonify(experiment.to_dict())

    @app.route("/experiments/<experiment_id>/stop", methods=["POST"])
    def stop_experiment(experiment_id):
        data = request.get_json(silent=True) or {}
        experiment, results = _engine().stop_experiment(
            experiment_id, data.get("reason", "manual_stop")
        )
        return jsonify({"experiment": experiment.to_dict(), "results": results.to_dict()})

    @app.route("/experiments/<experiment_id>/assignments/<subject_id>", methods=["GET"])
    def get_assignment(experiment_id, subject_id):
        assignment = _engine().get_user_assignment(experiment_id, subject_id)
        return jsonify({"assignment": assignment.to_dict() if assignment else None})

    @app.route("/experiments/<experiment_id>/events", methods=["POST"])
    def track_event(experiment_id):
        data = request.get_json(silent=True) or {}
        if not data.get("subject_id") or not data.get("event_type"):
            return jsonify({"error": "subject_id and event_type are required"}), 400
        _engine().track_event(
            experiment_id,
            data["subject_id"],
            data["event_type"],
            data.get("event_data"),
            idempotency_key=data.get("idempotency_key"),
        )
        return jsonify({"accepted": True}), 202

    @app.route("/experiments/<experiment_id>/results", methods=["GET"])
    def get_results(experiment_id):
        results = _engine().get_experiment_results(experiment_id)
        return jsonify(results.to_dict())

    return app


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    create_app().run(host="0.0.0.0", port=5000)
