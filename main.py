import os
import logging

from fastapi import APIRouter, FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

import routes_admin
import routes_ads
import routes_jobs
import routes_main
import routes_tutorials
from config import ADMIN_APP_URL, JOBS_APP_URL, LOG_LEVEL, MAIN_APP_URL, TUTORIALS_APP_URL
from database import db

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "").split(",") if o.strip()] or [
    MAIN_APP_URL, TUTORIALS_APP_URL, JOBS_APP_URL, ADMIN_APP_URL,
]


# ----------------- Error handlers -----------------
async def http_error(request, exc: StarletteHTTPException):
    if isinstance(exc.detail, dict):
        body = {"success": False, **exc.detail}
    else:
        body = {"success": False, "error": exc.detail}
    return JSONResponse(body, status_code=exc.status_code, headers=getattr(exc, "headers", None))


async def validation_error(request, exc: RequestValidationError):
    details = [
        {"field": ".".join(str(p) for p in err.get("loc", ())[1:]), "message": err.get("msg")}
        for err in exc.errors()
    ]
    return JSONResponse({"success": False, "error": "Invalid request", "details": details}, status_code=400)


async def unhandled_error(request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        {"success": False, "error": "Internal server error", "details": str(exc)[:200]},
        status_code=500,
    )


# ----------------- App factory -----------------
def create_app(name: str, title: str, *routers: APIRouter) -> FastAPI:
    app = FastAPI(title=title)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(StarletteHTTPException, http_error)
    app.add_exception_handler(RequestValidationError, validation_error)
    app.add_exception_handler(Exception, unhandled_error)

    @app.get("/")
    def root():
        return {"message": f"{title} running", "app": name}

    @app.get("/test")
    def test_database():
        response = {
            "backend": "Running",
            "database": "Not Available",
            "database_url": "Set" if os.getenv("DATABASE_URL") else "Not Set",
            "database_name": "Set" if os.getenv("DATABASE_NAME") else "Not Set",
            "connection_status": "Not Connected",
            "collections": [],
        }
        if db is not None:
            response["connection_status"] = "Connected"
            try:
                response["collections"] = db.list_collection_names()[:10]
                response["database"] = "Connected & Working"
            except Exception as e:
                logger.warning("Database check failed: %s", e)
                response["database"] = f"Connected but Error: {str(e)[:50]}"
        return response

    for router in routers:
        app.include_router(router)
    return app


main_app = create_app("main", "AOTF API", routes_main.router)
tutorials_app = create_app("tutorials", "AOTF Tutorials API", routes_tutorials.router, routes_ads.router)
jobs_app = create_app("jobs", "AOTF Jobs API", routes_jobs.router, routes_ads.router)
admin_app = create_app("admin", "AOTF Admin API", routes_admin.router)

# One process serving all four: main at the root, the others under a prefix.
# Each sub-application can also be served on its own host (e.g. main:tutorials_app).
app = main_app
app.mount("/tutorials", tutorials_app)
app.mount("/jobs", jobs_app)
app.mount("/admin", admin_app)


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
