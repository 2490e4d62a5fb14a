import os

from dotenv import load_dotenv, find_dotenv

# Load .env from project root if present (real env vars win)
load_dotenv(find_dotenv(usecwd=True), override=False)


def _flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default) in ("1", "true", "True", "yes")


APP_ENV = os.getenv("APP_ENV", "local")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./ticketdesk.db")

# Tokens are issued elsewhere; this service only verifies them.
JWT_SECRET = os.getenv("JWT_SECRET", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

# Outbound dispatch
DRY_RUN = _flag("DRY_RUN", "1")
DISPATCH_CONNECT_TIMEOUT = float(os.getenv("DISPATCH_CONNECT_TIMEOUT", "5"))
DISPATCH_READ_TIMEOUT = float(os.getenv("DISPATCH_READ_TIMEOUT", "15"))
DISPATCH_RETRIES = int(os.getenv("DISPATCH_RETRIES", "0"))

# Tickets
TICKET_NUMBER_RETRIES = int(os.getenv("TICKET_NUMBER_RETRIES", "1"))
STRICT_STATUS_TRANSITIONS = _flag("STRICT_STATUS_TRANSITIONS")
SLA_SWEEP_SECONDS = int(os.getenv("SLA_SWEEP_SECONDS", "0"))

# Real-time
WS_SEND_TIMEOUT = float(os.getenv("WS_SEND_TIMEOUT", "5"))
