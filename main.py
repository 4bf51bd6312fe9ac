"""Minimal pass-through proxy for the upstream shipping-orders API."""

import requests
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from backend.config import Settings, get_settings
from backend.logger import get_logger

logger = get_logger("proxy")

app = FastAPI()

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_http_session():
    # One session per request; sessions are not shared across worker threads.
    http = requests.Session()
    try:
        yield http
    finally:
        http.close()


@app.get("/api/health")
def health_check():
    return {"status": "running"}


@app.get("/api/shipping-orders")
def proxy_shipping_orders(
    request: Request,
    http: requests.Session = Depends(get_http_session),
    settings: Settings = Depends(get_settings),
):
    if not settings.api_token:
        return JSONResponse(status_code=503, content={"error": "APEX_API_TOKEN is not configured"})

    # multi_items keeps repeated keys such as ids[]=1&ids[]=2
    params = list(request.query_params.multi_items())
    try:
        response = http.get(
            f"{settings.api_url}/shipping-orders",
            params=params,
            headers={
                "Authorization": f"Bearer {settings.api_token}",
                "Accept": "application/json",
            },
            timeout=settings.summary_timeout,
        )
    except requests.exceptions.RequestException as exc:
        logger.error("Proxy error: %s", exc)
        return JSONResponse(status_code=502, content={"error": str(exc)})

    if not response.ok:
        try:
            details = response.json()
        except ValueError:
            details = response.text
        logger.error("Proxy error: %s %s", response.status_code, details)
        return JSONResponse(
            status_code=response.status_code,
            content={"error": f"Request failed with status code {response.status_code}", "details": details},
        )

    try:
        return response.json()
    except ValueError:
        return JSONResponse(status_code=502, content={"error": "Upstream returned a non-JSON body"})
