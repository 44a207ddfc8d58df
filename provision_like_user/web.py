"""Flask HTTP trigger for the provision-like-user operation."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Optional

from flask import Flask, Response, jsonify, request

from .config import AppConfig, load_config
from .models import RESULT_FAILURE, ProvisionRequest
from .provisioning import ProvisionLikeUser, compose_result
from .validation import SecurityKeyMismatchError


SECURITY_KEY_HEADER = "SecurityKey"


def create_app(
    config: Optional[AppConfig] = None,
    config_path: Optional[Path | str] = None,
    provisioner: Optional[ProvisionLikeUser] = None,
) -> Flask:
    """Create and configure the Flask application.

    Configuration is read once here; request handlers never consult the
    environment.
    """

    app_config = config or load_config(Path(config_path) if config_path else None)

    app = Flask(__name__)
    app.config["JSON_SORT_KEYS"] = False
    app.config["APP_CONFIG"] = app_config
    app.extensions["provisioner"] = provisioner or ProvisionLikeUser(app_config)

    register_routes(app)
    return app


def register_routes(app: Flask) -> None:
    """Attach all web routes to the provided Flask app."""

    @app.get("/health")
    def health() -> Any:
        return jsonify({"status": "ok"})

    @app.post("/api/provision-like-user")
    def provision_like_user() -> Any:
        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            app.logger.warning("Provisioning request body is not a JSON object.")
            result = compose_result("Request body must be a JSON object.", RESULT_FAILURE, "")
            return jsonify(result.to_dict())

        provision_request = ProvisionRequest.from_payload(
            payload, header_security_key=request.headers.get(SECURITY_KEY_HEADER)
        )
        app.logger.info(
            "Provisioning request ticket=%s new_user=%s reference=%s",
            provision_request.ticket_id,
            provision_request.new_user_email,
            provision_request.existing_user_email,
        )

        provisioner: ProvisionLikeUser = app.extensions["provisioner"]
        try:
            report = provisioner.run(provision_request)
        except SecurityKeyMismatchError:
            app.logger.warning(
                "Blocked provisioning request from %s: security key mismatch.", request.remote_addr
            )
            return Response(status=401)

        app.logger.info(
            "Provisioning finished ticket=%s status=%s",
            report.result.ticket_id,
            report.result.result_status,
        )
        return jsonify(report.result.to_dict())


def main() -> None:
    """Run the development server."""

    app = create_app()
    app.run(
        host=os.environ.get("PROVISION_WEB_HOST", "0.0.0.0"),
        port=int(os.environ.get("PROVISION_WEB_PORT", "5000")),
        debug=os.environ.get("PROVISION_WEB_DEBUG") == "1",
    )


if __name__ == "__main__":
    main()
