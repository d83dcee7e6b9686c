from __future__ import annotations

import secrets

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from kubernetes.config.config_exception import ConfigException

from ecr import db, kube_ops
from ecr.api_models import ActionModel, EventModel, UnitsResponse
from ecr.reconciler import Reconciler, build_reconciler
from ecr.settings import settings

app = FastAPI(title="Essential Container Reaper")
security = HTTPBasic()

reconciler: Reconciler | None = None


def get_current_username(credentials: HTTPBasicCredentials = Depends(security)) -> str:
    user_ok = secrets.compare_digest(credentials.username, settings.admin_user)
    pass_ok = secrets.compare_digest(credentials.password, settings.admin_password)
    if not (user_ok and pass_ok):
        raise HTTPException(status_code=401, detail="Invalid credentials", headers={"WWW-Authenticate": "Basic"})
    return credentials.username


@app.on_event("startup")
def startup() -> None:
    global reconciler
    db.init_db()
    if not settings.run_controller:
        db.log_event("INFO", "Controller disabled (ECR_RUN_CONTROLLER=false)")
        return
    try:
        kube_ops.load_config()
    except ConfigException as e:
        db.log_event("ERROR", f"No usable Kubernetes config, controller not started: {e}")
        return
    reconciler = build_reconciler()
    reconciler.start()


@app.on_event("shutdown")
def shutdown() -> None:
    if reconciler is not None:
        reconciler.stop()


@app.get("/healthz")
def healthz() -> dict:
    return {"status": "healthy", "controller": reconciler is not None}


@app.get("/units", response_model=UnitsResponse)
def list_units(username: str = Depends(get_current_username)) -> UnitsResponse:
    if reconciler is None:
        return UnitsResponse(action=settings.action, running=False, units=[], counters={}, tracked_pods=0)
    snap = reconciler.runtime.snapshot()
    return UnitsResponse(action=reconciler.action.value, running=True, **snap)


@app.get("/events", response_model=list[EventModel])
def list_events(limit: int = Query(50, ge=1, le=1000), username: str = Depends(get_current_username)):
    return db.latest_events(limit)


@app.get("/actions", response_model=list[ActionModel])
def list_actions(limit: int = Query(50, ge=1, le=1000), username: str = Depends(get_current_username)):
    return db.latest_actions(limit)
