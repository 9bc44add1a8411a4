from fastapi import FastAPI

from portal_stack.auth.routes import router as auth_router
from portal_stack.core.config import APP_NAME
from portal_stack.core.logging_setup import configure_logging
from portal_stack.db import Base, engine
from portal_stack.topology.routes import router as topology_router

configure_logging()

app = FastAPI(title=APP_NAME)


@app.on_event("startup")
def on_startup() -> None:
    Base.metadata.create_all(bind=engine)


@app.get("/health")
def health():
    return {"status": "ok"}


app.include_router(auth_router)
app.include_router(topology_router)
