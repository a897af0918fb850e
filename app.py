import logging
from functools import wraps
from io import BytesIO

from flask import Flask, request, session, jsonify, send_file
from flask_migrate import Migrate

import config
from charts import chart_series
from models import db
from pdf import export_report, exporters_by_panel
from reports import (
    ReportError,
    assemble,
    dashboard_stats,
    repair_status_distribution,
    revenue_summary,
)

logger = logging.getLogger(__name__)

REPORT_PARAMS = ("period", "startDate", "endDate")


def create_app(test_config=None):
    app = Flask(__name__)
    app.secret_key = config.SECRET_KEY
    app.config["SQLALCHEMY_DATABASE_URI"] = config.DATABASE_URL
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    if test_config:
        app.config.update(test_config)
    if not app.config.get("SQLALCHEMY_DATABASE_URI"):
        raise RuntimeError("DATABASE_URL missing in .env")

    logging.basicConfig(
        level=config.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    db.init_app(app)
    Migrate(app, db)

    # one exporter per report panel
    app.extensions["report_exporters"] = exporters_by_panel()

    # ---------- Auth ----------
    def login_required(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            if not session.get("identity"):
                return jsonify({"error": "Login required"}), 401
            return fn(*args, **kwargs)
        return wrapper

    def owner_required(fn):
        @wraps(fn)
        @login_required
        def wrapper(*args, **kwargs):
            if session["identity"].get("role") != "owner":
                return jsonify({"error": "Reports are available to owners only"}), 403
            return fn(*args, **kwargs)
        return wrapper

    @app.post("/api/login")
    def login():
        data = request.get_json(silent=True) or request.form
        username = (data.get("username") or "").strip()
        password = (data.get("password") or "").strip()
        if username != config.APP_USERNAME or password != config.APP_PASSWORD:
            logger.warning(f"Failed login for {username!r}")
            return jsonify({"error": "Invalid login."}), 401
        identity = {"id": config.APP_USER_ID, "role": "owner", "username": username}
        session["identity"] = identity
        return jsonify(identity)

    @app.get("/api/logout")
    def logout():
        session.clear()
        return jsonify({"message": "Logged out"})

    # ---------- Errors ----------
    @app.errorhandler(ReportError)
    def report_error(e: ReportError):
        if e.status_code >= 500:
            logger.error(f"{e.kind} report failed: {e}")
        return jsonify(e.to_dict()), e.status_code

    # ---------- Reports ----------
    def report_params():
        return {k: request.args.get(k) for k in REPORT_PARAMS if request.args.get(k)}

    @app.get("/api/reports/<string:kind>")
    @owner_required
    def report(kind):
        requested_by = request.headers.get("X-Requested-By") or session["identity"]["username"]
        logger.info(f"{kind} report requested by {requested_by}")
        return jsonify(assemble(kind, report_params()))

    @app.get("/api/reports/<string:kind>/charts")
    @owner_required
    def report_charts(kind):
        return jsonify(chart_series(kind, assemble(kind, report_params())))

    @app.get("/api/reports/<string:kind>/export.pdf")
    @owner_required
    def report_pdf(kind):
        payload = assemble(kind, report_params())
        exporter = app.extensions["report_exporters"][kind]
        result = export_report(kind, payload, exporter)
        if result is None:
            alert = exporter.take_alert()
            if alert:
                return jsonify({"error": alert, "report": kind}), 500
            return jsonify({"error": "Export already in progress", "report": kind}), 409
        return send_file(BytesIO(result.content), mimetype="application/pdf", as_attachment=True,
                         download_name=result.filename)

    # ---------- Dashboard ----------
    @app.get("/api/dashboard/stats")
    @login_required
    def dashboard_stats_view():
        return jsonify(dashboard_stats())

    @app.get("/api/dashboard/repair-status")
    @login_required
    def dashboard_repair_status():
        distribution = repair_status_distribution()
        if not distribution:
            return jsonify({"message": "No repair jobs found"}), 404
        return jsonify(distribution)

    @app.get("/api/dashboard/revenue")
    @owner_required
    def dashboard_revenue():
        return jsonify(revenue_summary(request.args.get("year", type=int)))

    return app


if __name__ == "__main__":
    create_app().run(debug=True)
