"""
API server entry point.

    python app.py                 # serve on 0.0.0.0:8000
    streamlit run Welcome.py      # dashboards
"""

import uvicorn

from drms_core.api import create_app
from drms_core.config import load_settings
from drms_core.logging import setup_logging

settings = load_settings()
setup_logging(
    level=settings.log_level,
    log_to_file=settings.log_to_file,
    log_filename="drms_api.log",
)
app = create_app(settings)


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=int(settings.extra.get("port", 8000)))
