"""
FastAPI Application Entry Point
================================
Academic Insight: role-gated staff dashboard API backed by a live,
realtime-synchronised cache of the remote student records.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Annotated, Awaitable, Callable

from fastapi import FastAPI, Depends, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import OAuth2PasswordRequestForm

from api.auth.security import authenticate_user, create_access_token, Token, get_current_user, User
from api.routes import students, grades, dashboard, connection
from api.runtime import DashboardRuntime
from config.logging_config import logger
from livesync.backend import RemoteBackend, create_supabase_backend

BackendFactory = Callable[[], Awaitable[RemoteBackend]]


def create_app(backend_factory: BackendFactory | None = None) -> FastAPI:
    factory = backend_factory or create_supabase_backend

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        runtime = DashboardRuntime(await factory())
        await runtime.start()
        app.state.runtime = runtime
        try:
            yield
        finally:
            await runtime.dispose()

    # ── App ────────────────────────────────────────────────────────────────────
    app = FastAPI(
        title       = "Academic Insight API",
        description = "Student records, live dashboard statistics and realtime sync status.",
        version     = "1.0.0",
        docs_url    = "/docs",
        redoc_url   = "/redoc",
        lifespan    = lifespan,
    )

    # ── CORS ───────────────────────────────────────────────────────────────────
    app.add_middleware(
        CORSMiddleware,
        allow_origins     = ["http://localhost:3000"],
        allow_credentials = True,
        allow_methods     = ["*"],
        allow_headers     = ["*"],
    )

    # ── Routers ────────────────────────────────────────────────────────────────
    app.include_router(students.router,  prefix="/students",  tags=["Students"])
    app.include_router(grades.router,    prefix="/grades",    tags=["Grades"])
    app.include_router(dashboard.router, prefix="/dashboard", tags=["Dashboard"])
    app.include_router(connection.router, prefix="/realtime",  tags=["Realtime"])

    # ── Auth endpoints ─────────────────────────────────────────────────────────
    @app.post("/auth/token", response_model=Token, tags=["Auth"])
    async def login(form_data: Annotated[OAuth2PasswordRequestForm, Depends()]):
        user = authenticate_user(form_data.username, form_data.password)
        if not user:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Incorrect email or password",
                headers={"WWW-Authenticate": "Bearer"},
            )
        logger.info(f"Login: {user.email} ({user.role.value})")
        return Token(access_token=create_access_token(user))

    @app.get("/auth/me", response_model=User, tags=["Auth"])
    async def get_me(current_user: Annotated[User, Depends(get_current_user)]):
        return current_user

    # ── Health ─────────────────────────────────────────────────────────────────
    @app.get("/health", tags=["System"])
    async def health():
        return {"status": "ok", "service": "academic-insight-api"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    from config.settings import settings
    uvicorn.run("api.main:app", host=settings.api_host, port=settings.api_port, reload=True)
