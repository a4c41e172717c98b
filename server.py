import uvicorn  # type: ignore

from app.core import config
from app.utils import configure_logging, get_logger

configure_logging(config.LOG_LEVEL)
log = get_logger(__name__)

if __name__ == "__main__":
    log.info("Running server")
    uvicorn.run("app.main:app", reload=True, host="127.0.0.1", port=8000)
