import logging

from api.routes import configure_logging, create_app

configure_logging()
logger = logging.getLogger(__name__)

app = create_app()

if __name__ == "__main__":
    # Log startup
    logger.info("Starting Flask server...")
    app.run(debug=True, port=8000, use_reloader=False)
