"""Mock Plaid server: paginated /transactions/get and /webhook_verification_key/get"""

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from pathlib import Path
import json
import os

app = FastAPI(title="Mock Plaid Server", version="1.0.0")
# Support both local development and Docker
DATA_DIR = Path(os.environ.get("PROVIDER_STUB_DIR", "/provider_stub"))

# access_token -> raw Plaid transaction records; key_id -> JWK dict (with expired_at)
TRANSACTIONS: dict[str, list[dict]] = {}
VERIFICATION_KEYS: dict[str, dict] = {}


def _plaid_error(status_code: int, error_code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error_type": "INVALID_INPUT", "error_code": error_code, "error_message": message},
    )


def _load_transactions(access_token: str) -> list[dict] | None:
    if access_token in TRANSACTIONS:
        return TRANSACTIONS[access_token]
    file = DATA_DIR / f"transactions_{access_token}.json"
    if file.exists():
        return json.loads(file.read_text())["transactions"]
    return None


@app.get("/health")
def health(): return {"status": "ok"}


@app.post("/transactions/get")
def get_transactions(body: dict):
    transactions = _load_transactions(body.get("access_token", ""))
    if transactions is None:
        return _plaid_error(400, "INVALID_ACCESS_TOKEN", "provided access token is in an invalid format")

    start, end = body["start_date"], body["end_date"]
    in_range = [t for t in transactions if start <= t["date"] <= end]
    options = body.get("options") or {}
    offset, count = int(options.get("offset", 0)), int(options.get("count", 100))
    return {
        "transactions": in_range[offset:offset + count],
        "total_transactions": len(in_range),
    }


@app.post("/webhook_verification_key/get")
def get_verification_key(body: dict):
    key = VERIFICATION_KEYS.get(body.get("key_id", ""))
    if key is None:
        return _plaid_error(400, "INVALID_WEBHOOK_VERIFICATION_KEY_ID", "key not found")
    return {"key": key, "request_id": "mock"}
