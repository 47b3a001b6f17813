import logging
import os
import structlog
import sys
from pathlib import Path
from dotenv import load_dotenv

SERVICE_NAME = "cashflow"


def _add_service(_, __, event_dict):
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def setup_logging():
    env_path = Path(__file__).resolve().parents[1] / ".env"
    load_dotenv(dotenv_path=env_path)
    level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    log_level = getattr(logging, level_name, logging.INFO)
    error_log_path = os.getenv("LOG_ERROR_FILE", "").strip()

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(logging.DEBUG)

    formatter = logging.Formatter("%(message)s")
    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setLevel(log_level)
    stream_handler.setFormatter(formatter)
    root.addHandler(stream_handler)

    if error_log_path:
        Path(error_log_path).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(error_log_path)
        file_handler.setLevel(logging.ERROR)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    structlog.configure(
        processors=[
            # job and run_id are bound per run in jobs.tasks.run_job
            structlog.contextvars.merge_contextvars,
            _add_service,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(logging.DEBUG),
    )
    # APScheduler logs every job submission at INFO.
    logging.getLogger("apscheduler").setLevel(max(log_level, logging.WARNING))
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logging.getLogger(name).setLevel(log_level)
