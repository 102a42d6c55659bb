import asyncio
from pathlib import Path
from typing import Optional

from flask import Flask, abort, jsonify, send_file, request

from buildboard_engine.artifact_manager import STATUS_PAGE_FILE_NAME, BADGE_FILE_NAME
from buildboard_engine.build_registry import BuildRegistry, LEDGER_FILE_NAME
from buildboard_engine.errors import CorruptLedger
from buildboard_engine.job import JobDescriptor, is_valid
from buildboard_engine.logger_setup import logger as global_logger
from buildboard_engine.project_manager import ProjectManager


def create_app(data_root: Path, projects_file: Optional[Path] = None):
    data_root = Path(data_root)
    registry = BuildRegistry(data_root)

    app = Flask(__name__)

    def branch_job(author: str, repo: str, branch: str) -> JobDescriptor:
        job = {"author": author, "repo": repo, "branch": branch}
        if not is_valid(job):
            abort(404)
        return JobDescriptor.from_dict(job)

    def serve_branch_file(author: str, repo: str, branch: str, file_name: str, mimetype: Optional[str] = None):
        job = branch_job(author, repo, branch)
        full_path = job.branch_dir(data_root) / file_name
        try:
            full_path.resolve().relative_to(data_root.resolve())
        except ValueError:
            abort(403, "Forbidden: Access outside the data directory.")
        if not full_path.is_file():
            abort(404, f"{file_name} not found")
        response = send_file(full_path, mimetype=mimetype)
        # Badges are embedded elsewhere and must not go stale
        response.headers["Cache-Control"] = "no-cache"
        return response

    @app.route('/')
    def index():
        projects = ProjectManager(projects_file).list_projects() if projects_file else []
        summary = []
        for project in projects:
            try:
                ledger = asyncio.run(registry.load_ledger(project))
            except CorruptLedger as e:
                global_logger.error(f"Could not load ledger for {project.project_key}: {e}")
                summary.append({"project": project.project_key, "error": str(e)})
                continue
            latest = ledger.get(ledger.latest) if ledger.latest is not None else None
            summary.append({
                "project": project.project_key,
                "page": f"/{project.key}/",
                "builds": len(ledger),
                "latest": ledger.latest,
                "last_successful": ledger.last_successful,
                "status": latest.status.value if latest else None,
            })
        return jsonify(summary)

    @app.route('/<author>/<repo>/<path:branch>/')
    def status_page(author, repo, branch):
        return serve_branch_file(author, repo, branch, STATUS_PAGE_FILE_NAME, mimetype="text/html")

    @app.route('/<author>/<repo>/<path:branch>/badge.svg')
    def badge(author, repo, branch):
        return serve_branch_file(author, repo, branch, BADGE_FILE_NAME, mimetype="image/svg+xml")

    @app.route('/<author>/<repo>/<path:branch>/builds.json')
    def builds_json(author, repo, branch):
        return serve_branch_file(author, repo, branch, LEDGER_FILE_NAME, mimetype="application/json")

    @app.route('/api/<author>/<repo>/<path:branch>/builds')
    def api_builds(author, repo, branch):
        job = branch_job(author, repo, branch)
        limit = request.args.get('limit', 25, type=int)
        try:
            records = asyncio.run(registry.list_builds(job, limit=limit))
        except CorruptLedger as e:
            global_logger.error(f"Could not load ledger for {job.key}: {e}")
            return jsonify({"error": str(e)}), 500
        return jsonify([record.to_dict() for record in records])

    return app
