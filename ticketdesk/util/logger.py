import logging, json, sys, os


class JsonFormatter(logging.Formatter):
    def format(self, record):
        d = {
            "lvl": record.levelname,
            "msg": record.getMessage(),
            "name": record.name,
        }
        if record.args and isinstance(record.args, dict):
            d.update(record.args)
        if record.exc_info:
            d["exc"] = self.formatException(record.exc_info)
        return json.dumps(d, ensure_ascii=False, default=str)


def get_logger(name="ticketdesk"):
    """
    Usage: log.info("ticket_created", {"ticket_id": t.id, "number": t.number})
    Dict args are merged into the JSON line.
    """
    log = logging.getLogger(name)
    if not log.handlers:
        h = logging.StreamHandler(sys.stdout)
        h.setFormatter(JsonFormatter())
        log.addHandler(h)
        level = getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)
        log.setLevel(level)
        log.propagate = False  # root has its own basicConfig handler
    return log
