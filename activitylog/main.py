from fastapi import FastAPI

from activitylog.api.activities import router as activities_router
from activitylog.api.clarification import router as clarification_router
from activitylog.api.parse import router as parse_router
from activitylog.core.cache import ClassificationCache
from activitylog.db.session import create_tables

app = FastAPI(title="Activity Log Interpreter")


@app.on_event("startup")
def on_startup() -> None:
    create_tables()
    app.state.classification_cache = ClassificationCache()


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/api")
def api_root() -> dict[str, str]:
    return {"service": "Activity Log Interpreter API", "status": "ok"}


app.include_router(parse_router)
app.include_router(clarification_router)
app.include_router(activities_router)
