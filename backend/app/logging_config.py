import json
import logging
import os
import time


def setup_logging() -> None:
    level = os.environ.get("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    if os.environ.get("JSON_LOGS", "0") == "1":
        logging.getLogger().handlers = [JSONLogHandler()]
    # requests/urllib3 chatter drowns out per-job lines at INFO
    logging.getLogger("urllib3").setLevel(max(logging.WARNING, logging.getLogger().level))


class JSONLogHandler(logging.StreamHandler):
    def emit(self, record: logging.LogRecord) -> None:  # type: ignore[override]
        try:
            msg = {
                "ts": time.strftime("%Y-%m-%dT%H:%M:%S", time.gmtime(record.created)),
                "level": record.levelname,
                "logger": record.name,
                "message": record.getMessage(),
            }
            if record.exc_info:
                msg["exc_info"] = self.formatException(record.exc_info)
            self.stream.write(json.dumps(msg) + "\n")
            self.flush()
        except Exception:
            self.handleError(record)
