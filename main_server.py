from buildboard_engine.config import DATA_ROOT, PROJECTS_FILE, WEB_PORT
from buildboard_engine.logger_setup import logger
from web_ui.app import create_app

if __name__ == "__main__":
    logger.info(f"Serving status pages and badges from {DATA_ROOT}")
    flask_app = create_app(DATA_ROOT, PROJECTS_FILE)
    logger.info(f"Starting Web UI on http://127.0.0.1:{WEB_PORT}")
    flask_app.run(debug=False, use_reloader=False, host="0.0.0.0", port=WEB_PORT)
