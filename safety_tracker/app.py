# safety_tracker/app.py
import json
import logging
import os
import uuid
from datetime import date

from flask import Flask, request, jsonify, send_file
from werkzeug.utils import secure_filename

from . import dashboard, importer, incidents, locations, osha, rca, workflows
from .db import Base, SessionLocal, engine, get_db, make_engine
from .errors import NotFoundError, ValidationError
from .models import (
    Establishment, JsaTemplate, ToolboxTalkTopic,
    OUTCOME_SEVERITY_LABELS, INJURY_TYPE_LABELS,
)

logger = logging.getLogger(__name__)


def _dir_default(env_name: str, subdir: str) -> str:
    # Prefer env var, then a disk mounted at /data, then local folder
    env_dir = os.getenv(env_name)
    if env_dir:
        return env_dir
    if os.path.isdir("/data"):
        return os.path.join("/data", subdir)
    return subdir


UPLOAD_DIR = _dir_default("UPLOAD_DIR", "uploads")
EXPORT_DIR = _dir_default("EXPORT_DIR", "exports")


def _year() -> int:
    year = request.args.get("year", type=int)
    if year is None:
        raise ValidationError("Query parameter 'year' is required and must be an integer")
    return year


def _json() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def create_app(config: dict = None):
    app = Flask(__name__)
    app.secret_key = os.getenv("FLASK_SECRET_KEY", "dev-secret")
    app.config.update(UPLOAD_DIR=UPLOAD_DIR, EXPORT_DIR=EXPORT_DIR, DATABASE_URL=None)
    if config:
        app.config.update(config)

    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    os.makedirs(app.config["UPLOAD_DIR"], exist_ok=True)
    os.makedirs(app.config["EXPORT_DIR"], exist_ok=True)

    bind = engine
    if app.config["DATABASE_URL"]:
        bind = make_engine(app.config["DATABASE_URL"])
        SessionLocal.remove()
        SessionLocal.configure(bind=bind)

    # Create DB tables
    Base.metadata.create_all(bind=bind)

    @app.teardown_appcontext
    def _remove_session(exc=None):
        SessionLocal.remove()

    @app.errorhandler(NotFoundError)
    def _not_found(e):
        return jsonify({"error": str(e)}), 404

    @app.errorhandler(ValidationError)
    def _invalid(e):
        SessionLocal.rollback()
        return jsonify({"error": str(e)}), 400

    # ---------- ROUTES ----------

    @app.route("/api/classifications")
    def classifications():
        return jsonify({
            "outcome_severity": OUTCOME_SEVERITY_LABELS,
            "injury_illness_type": INJURY_TYPE_LABELS,
            "import_fields": list(importer.CANONICAL_FIELDS),
        })

    # ---- Establishments & locations ----
    @app.route("/api/establishments", methods=["GET", "POST"])
    def establishments():
        db = next(get_db())
        if request.method == "POST":
            est = locations.create_establishment(db, _json())
            return jsonify(locations.establishment_to_dict(est)), 201
        return jsonify([locations.establishment_to_dict(e) for e in locations.list_establishments(db)])

    @app.route("/api/establishments/<int:establishment_id>", methods=["GET", "PUT", "DELETE"])
    def establishment(establishment_id):
        db = next(get_db())
        if request.method == "DELETE":
            locations.delete_establishment(db, establishment_id)
            return "", 204
        if request.method == "PUT":
            est = locations.update_establishment(db, establishment_id, _json())
        else:
            est = locations.get_establishment(db, establishment_id)
        return jsonify(locations.establishment_to_dict(est))

    @app.route("/api/establishments/<int:establishment_id>/locations", methods=["GET", "POST"])
    def establishment_locations(establishment_id):
        db = next(get_db())
        if request.method == "POST":
            loc = locations.create_location(db, establishment_id, _json())
            return jsonify(locations.location_to_dict(loc)), 201
        active_only = request.args.get("active_only") == "true"
        locs = locations.list_locations(db, establishment_id, active_only=active_only)
        return jsonify([locations.location_to_dict(loc) for loc in locs])

    @app.route("/api/locations/<int:location_id>", methods=["GET", "PUT", "DELETE"])
    def location(location_id):
        db = next(get_db())
        if request.method == "DELETE":
            locations.delete_location(db, location_id)
            return "", 204
        if request.method == "PUT":
            loc = locations.update_location(db, location_id, _json())
        else:
            loc = locations.get_location(db, location_id)
        return jsonify(locations.location_to_dict(loc))

    # ---- Incidents ----
    @app.route("/api/establishments/<int:establishment_id>/incidents", methods=["GET", "POST"])
    def establishment_incidents(establishment_id):
        db = next(get_db())
        if request.method == "POST":
            inc = incidents.create_incident(db, establishment_id, _json())
            return jsonify(incidents.incident_to_dict(inc, redact=False)), 201
        locations.get_establishment(db, establishment_id)
        found = incidents.list_incidents(
            db,
            establishment_id,
            location_id=request.args.get("location_id", type=int),
            status=request.args.get("status"),
            outcome_severity=request.args.get("outcome_severity"),
            date_from=request.args.get("date_from"),
            date_to=request.args.get("date_to"),
            search=request.args.get("search"),
        )
        return jsonify([incidents.incident_to_dict(i) for i in found])

    @app.route("/api/incidents/<int:incident_id>", methods=["GET", "PUT", "DELETE"])
    def incident(incident_id):
        db = next(get_db())
        if request.method == "DELETE":
            incidents.delete_incident(db, incident_id)
            return "", 204
        if request.method == "PUT":
            inc = incidents.update_incident(db, incident_id, _json())
        else:
            inc = incidents.get_incident(db, incident_id)
        return jsonify(incidents.incident_to_dict(inc, redact=False))

    # ---- CSV import ----
    def _save_upload() -> str:
        file = request.files.get("file")
        if not file or not file.filename:
            raise ValidationError("A CSV file upload is required")
        filename = secure_filename(file.filename)
        if not filename:
            raise ValidationError("Uploaded file name is not usable")
        # Uploads only live for the request that carries them
        path = os.path.join(app.config["UPLOAD_DIR"], f"{uuid.uuid4().hex}_{filename}")
        file.save(path)
        return path

    @app.route("/api/import/preview", methods=["POST"])
    def import_preview():
        path = _save_upload()
        try:
            preview = importer.preview_csv(path)
        finally:
            os.remove(path)
        return jsonify({
            **preview,
            "suggested_mapping": importer.auto_map_columns(preview["headers"]),
        })

    @app.route("/api/import/auto-map", methods=["POST"])
    def import_auto_map():
        headers = _json().get("headers") or []
        return jsonify(importer.auto_map_columns(headers))

    @app.route("/api/import", methods=["POST"])
    def import_incidents():
        db = next(get_db())
        establishment_id = request.form.get("establishment_id", type=int)
        if establishment_id is None:
            raise ValidationError("Form field 'establishment_id' is required")
        path = _save_upload()
        try:
            mapping = json.loads(request.form.get("mapping") or "{}")
        except json.JSONDecodeError as e:
            raise ValidationError(f"Invalid mapping JSON: {e}")
        if not isinstance(mapping, dict):
            raise ValidationError("Mapping must be a JSON object")
        try:
            result = importer.import_csv(
                db, path, establishment_id, mapping,
                default_location_id=request.form.get("location_id", type=int),
            )
        finally:
            os.remove(path)
        return jsonify(result)

    # ---- OSHA reports ----
    @app.route("/api/establishments/<int:establishment_id>/osha/300")
    def osha_300(establishment_id):
        db = next(get_db())
        return jsonify(osha.get_osha_300_log(db, establishment_id, _year()))

    @app.route("/api/establishments/<int:establishment_id>/osha/300.csv")
    def osha_300_csv(establishment_id):
        db = next(get_db())
        year = _year()
        filename = f"osha_300_{establishment_id}_{year}.csv"
        path = os.path.abspath(os.path.join(app.config["EXPORT_DIR"], filename))
        osha.export_osha_300_csv(db, establishment_id, year, path)
        return send_file(path, mimetype="text/csv", as_attachment=True, download_name=filename)

    @app.route("/api/establishments/<int:establishment_id>/osha/300a")
    def osha_300a(establishment_id):
        db = next(get_db())
        return jsonify(osha.get_osha_300a_summary(db, establishment_id, _year()))

    @app.route("/api/incidents/<int:incident_id>/osha/301")
    def osha_301(incident_id):
        db = next(get_db())
        return jsonify(osha.get_osha_301_report(db, incident_id))

    @app.route("/api/establishments/<int:establishment_id>/annual-stats", methods=["GET", "PUT"])
    def annual_stats(establishment_id):
        db = next(get_db())
        year = _year()
        if request.method == "PUT":
            stats = osha.upsert_annual_stats(db, establishment_id, year, _json())
            return jsonify(osha.annual_stats_to_dict(stats))
        osha.load_report_scope(db, establishment_id, year)
        stats = osha.get_annual_stats(db, establishment_id, year)
        return jsonify(osha.annual_stats_to_dict(stats) if stats else None)

    # ---- Dashboard ----
    @app.route("/api/establishments/<int:establishment_id>/dashboard")
    def dashboard_view(establishment_id):
        db = next(get_db())
        year = _year()
        return jsonify({
            "summary": dashboard.get_dashboard_summary(db, establishment_id, year),
            "by_month": dashboard.get_incidents_by_month(db, establishment_id, year),
            "by_severity": dashboard.get_incidents_by_severity(db, establishment_id, year),
            "by_type": dashboard.get_incidents_by_type(db, establishment_id, year),
            "by_location": dashboard.get_incidents_by_location(db, establishment_id, year),
            "corrective_actions": dashboard.get_corrective_action_summary(db, establishment_id),
        })

    # ---- Root cause analysis ----
    @app.route("/api/incidents/<int:incident_id>/rca", methods=["GET", "POST"])
    def incident_rca(incident_id):
        db = next(get_db())
        if request.method == "POST":
            s = rca.create_rca_session(db, incident_id, _json().get("method"))
            return jsonify(rca.session_to_dict(s)), 201
        return jsonify([rca.session_to_dict(s) for s in rca.list_rca_sessions(db, incident_id)])

    @app.route("/api/rca/<int:session_id>", methods=["GET", "DELETE"])
    def rca_session(session_id):
        db = next(get_db())
        if request.method == "DELETE":
            rca.delete_rca_session(db, session_id)
            return "", 204
        s = rca.get_rca_session(db, session_id)
        d = rca.session_to_dict(s)
        d["five_whys"] = [rca.step_to_dict(x) for x in s.five_whys_steps]
        d["fishbone"] = [rca.category_to_dict(x) for x in s.fishbone_categories]
        return jsonify(d)

    @app.route("/api/rca/<int:session_id>/complete", methods=["POST"])
    def rca_complete(session_id):
        db = next(get_db())
        s = rca.complete_rca_session(db, session_id, _json().get("root_cause_summary"))
        return jsonify(rca.session_to_dict(s))

    @app.route("/api/rca/<int:session_id>/five-whys", methods=["GET", "POST"])
    def rca_five_whys(session_id):
        db = next(get_db())
        if request.method == "POST":
            data = _json()
            step = rca.add_five_whys_step(
                db, session_id, data.get("step_number", 1),
                data.get("question"), data.get("answer"),
            )
            return jsonify(rca.step_to_dict(step)), 201
        return jsonify([rca.step_to_dict(x) for x in rca.list_five_whys_steps(db, session_id)])

    @app.route("/api/five-whys/<int:step_id>", methods=["PUT"])
    def five_whys_step(step_id):
        db = next(get_db())
        data = _json()
        step = rca.update_five_whys_step(db, step_id, data.get("question"), data.get("answer"))
        return jsonify(rca.step_to_dict(step))

    @app.route("/api/rca/<int:session_id>/fishbone", methods=["GET", "POST"])
    def rca_fishbone(session_id):
        db = next(get_db())
        if request.method == "POST":
            data = _json()
            cat = rca.add_fishbone_category(
                db, session_id, data.get("category"), data.get("sort_order", 0)
            )
            return jsonify(rca.category_to_dict(cat)), 201
        cats = rca.list_fishbone_categories(db, session_id)
        return jsonify([rca.category_to_dict(c) for c in cats])

    @app.route("/api/fishbone/<int:category_id>/causes", methods=["POST"])
    def fishbone_causes(category_id):
        db = next(get_db())
        data = _json()
        cause = rca.add_fishbone_cause(
            db, category_id, data.get("cause_text"),
            bool(data.get("is_root_cause")), data.get("sort_order", 0),
        )
        return jsonify(rca.cause_to_dict(cause)), 201

    @app.route("/api/fishbone/causes/<int:cause_id>", methods=["PUT", "DELETE"])
    def fishbone_cause(cause_id):
        db = next(get_db())
        if request.method == "DELETE":
            rca.delete_fishbone_cause(db, cause_id)
            return "", 204
        data = _json()
        cause = rca.update_fishbone_cause(
            db, cause_id, data.get("cause_text"), data.get("is_root_cause")
        )
        return jsonify(rca.cause_to_dict(cause))

    @app.route("/api/incidents/<int:incident_id>/corrective-actions", methods=["GET", "POST"])
    def incident_actions(incident_id):
        db = next(get_db())
        if request.method == "POST":
            action = rca.create_corrective_action(db, incident_id, _json())
            return jsonify(rca.action_to_dict(action)), 201
        actions = rca.list_corrective_actions(db, incident_id)
        return jsonify([rca.action_to_dict(a) for a in actions])

    @app.route("/api/corrective-actions/<int:action_id>", methods=["GET", "PUT", "DELETE"])
    def corrective_action(action_id):
        db = next(get_db())
        if request.method == "DELETE":
            rca.delete_corrective_action(db, action_id)
            return "", 204
        if request.method == "PUT":
            action = rca.update_corrective_action(db, action_id, _json())
        else:
            action = rca.get_corrective_action(db, action_id)
        return jsonify(rca.action_to_dict(action))

    # ---- Toolbox talks ----
    @app.route("/api/toolbox/topics", methods=["GET", "POST"])
    def toolbox_topics():
        db = next(get_db())
        if request.method == "POST":
            topic = workflows.create_topic(db, _json())
            return jsonify({"id": topic.id, "title": topic.title}), 201
        return jsonify([
            {
                "id": t.id, "title": t.title, "description": t.description,
                "category": t.category, "duration_minutes": t.duration_minutes,
            }
            for t in workflows.list_topics(db)
        ])

    @app.route("/api/establishments/<int:establishment_id>/toolbox-talks", methods=["GET", "POST"])
    def toolbox_talks(establishment_id):
        db = next(get_db())
        if request.method == "POST":
            talk = workflows.create_talk(db, establishment_id, _json())
            return jsonify(workflows.talk_to_dict(talk)), 201
        return jsonify([workflows.talk_to_dict(t) for t in workflows.list_talks(db, establishment_id)])

    @app.route("/api/toolbox-talks/<int:talk_id>")
    def toolbox_talk(talk_id):
        db = next(get_db())
        return jsonify(workflows.talk_to_dict(workflows.get_talk(db, talk_id)))

    @app.route("/api/toolbox-talks/<int:talk_id>/complete", methods=["POST"])
    def toolbox_talk_complete(talk_id):
        db = next(get_db())
        return jsonify(workflows.talk_to_dict(workflows.complete_talk(db, talk_id)))

    @app.route("/api/toolbox-talks/<int:talk_id>/attendees", methods=["POST"])
    def toolbox_attendees(talk_id):
        db = next(get_db())
        data = _json()
        workflows.add_attendee(db, talk_id, data.get("employee_name"), data.get("employee_id"))
        return jsonify(workflows.talk_to_dict(workflows.get_talk(db, talk_id))), 201

    @app.route("/api/toolbox/attendees/<int:attendee_id>/sign", methods=["POST"])
    def toolbox_sign(attendee_id):
        db = next(get_db())
        attendee = workflows.sign_attendee(db, attendee_id, _json().get("signature_data"))
        return jsonify({"id": attendee.id, "signed_at": attendee.signed_at.isoformat()})

    @app.route("/api/toolbox/attendees/<int:attendee_id>", methods=["DELETE"])
    def toolbox_attendee_delete(attendee_id):
        db = next(get_db())
        workflows.delete_attendee(db, attendee_id)
        return "", 204

    # ---- Job safety analysis ----
    @app.route("/api/jsa/templates")
    def jsa_templates():
        db = next(get_db())
        return jsonify([
            {"id": t.id, "name": t.name, "description": t.description, "trade": t.trade}
            for t in workflows.list_templates(db)
        ])

    @app.route("/api/establishments/<int:establishment_id>/jsa", methods=["GET", "POST"])
    def establishment_jsa(establishment_id):
        db = next(get_db())
        if request.method == "POST":
            jsa = workflows.create_jsa(db, establishment_id, _json())
            return jsonify(workflows.jsa_to_dict(jsa)), 201
        return jsonify([workflows.jsa_to_dict(j) for j in workflows.list_jsas(db, establishment_id)])

    @app.route("/api/jsa/<int:jsa_id>")
    def jsa_view(jsa_id):
        db = next(get_db())
        return jsonify(workflows.jsa_to_dict(workflows.get_jsa(db, jsa_id)))

    @app.route("/api/jsa/<int:jsa_id>/steps", methods=["POST"])
    def jsa_steps(jsa_id):
        db = next(get_db())
        data = _json()
        step = workflows.add_jsa_step(
            db, jsa_id, data.get("step_number", 1), data.get("task_description")
        )
        for h in data.get("hazards") or []:
            workflows.add_jsa_hazard(
                db, step.id, h.get("hazard_description"), h.get("control_measure")
            )
        return jsonify(workflows.jsa_to_dict(workflows.get_jsa(db, jsa_id))), 201

    @app.route("/api/jsa/steps/<int:step_id>/complete", methods=["POST"])
    def jsa_step_complete(step_id):
        db = next(get_db())
        data = request.get_json(silent=True) or {}
        step = workflows.complete_jsa_step(db, step_id, bool(data.get("is_completed", True)))
        return jsonify({"id": step.id, "is_completed": step.is_completed})

    @app.route("/api/jsa/<int:jsa_id>/approve", methods=["POST"])
    def jsa_approve(jsa_id):
        db = next(get_db())
        data = _json()
        jsa = workflows.approve_jsa(db, jsa_id, data.get("reviewed_by"), data.get("approved_by"))
        return jsonify(workflows.jsa_to_dict(jsa))

    # ---- Seed demo data ----
    @app.route("/seed", methods=["GET", "POST"])
    def seed():
        db = next(get_db())
        created = {"establishment": False, "incidents": 0, "topics": 0, "templates": 0}

        est = db.query(Establishment).filter(Establishment.name == "Demo Plant").first()
        if not est:
            est = locations.create_establishment(db, {
                "name": "Demo Plant",
                "street_address": "100 Industrial Way",
                "city": "Springfield",
                "state": "IL",
                "zip_code": "62701",
                "industry_description": "Metal fabrication",
                "naics_code": "332312",
            })
            created["establishment"] = True

            shop = locations.create_location(db, est.id, {"name": "Fabrication Shop"})
            locations.create_location(db, est.id, {"name": "Warehouse"})

            year = date.today().year
            incident_defs = [
                {
                    "employee_name": "Jane Doe",
                    "employee_job_title": "Welder",
                    "incident_date": f"{year}-01-15",
                    "description": "Burn to left forearm from weld spatter",
                    "outcome_severity": "days_away",
                    "days_away_count": 3,
                    "injury_illness_type": "injury",
                    "location_id": shop.id,
                },
                {
                    "employee_name": "John Roe",
                    "employee_job_title": "Forklift operator",
                    "incident_date": f"{year}-02-03",
                    "description": "Strained back lifting pallet",
                    "outcome_severity": "job_transfer_restriction",
                    "days_restricted_count": 10,
                },
                {
                    "employee_name": "Sam Poe",
                    "incident_date": f"{year}-03-20",
                    "description": "Contact dermatitis from cutting fluid",
                    "injury_illness_type": "skin_disorder",
                    "is_privacy_case": True,
                },
            ]
            for data in incident_defs:
                incidents.create_incident(db, est.id, data)
            created["incidents"] = len(incident_defs)

            osha.upsert_annual_stats(db, est.id, year, {
                "avg_employees": 50,
                "total_hours_worked": 100000,
            })

        if db.query(ToolboxTalkTopic).count() == 0:
            for title, category, content in (
                ("Ladder Safety", "falls", "Maintain three points of contact."),
                ("Lockout/Tagout", "energy", "Verify zero energy before servicing."),
                ("Heat Stress", "environment", "Hydrate, rest, and use shade."),
            ):
                workflows.create_topic(db, {"title": title, "category": category, "content": content})
                created["topics"] += 1

        if db.query(JsaTemplate).count() == 0:
            for name, trade in (("Hot Work", "Welding"), ("Confined Space Entry", "General")):
                db.add(JsaTemplate(name=name, trade=trade))
                created["templates"] += 1
            db.commit()

        logger.info("Seeded demo data: %s", created)
        return jsonify({"establishment_id": est.id, "created": created})

    return app


if __name__ == "__main__":
    app = create_app()
    app.run(debug=True)
