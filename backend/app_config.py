"""
Configuration centralisée de l'application Seido
Organisation des routes, middleware et configuration
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging
import os

# Import des modules de configuration
from database import engine
import models

# Import des middlewares
from middleware import RequestLoggingMiddleware
from error_handlers import WorkflowError
from validation_middleware import (
    workflow_exception_handler, request_validation_exception_handler,
    http_exception_handler, database_exception_handler, general_exception_handler
)

# Import des contrôleurs et routes
from controllers.auth_controller import router as auth_router
import intervention_routes
import conversation_routes
from notification_routes import notifications_router

# Import des constantes
from constants import APP_NAME, APP_VERSION, APP_DESCRIPTION, LOG_LEVEL, DEFAULT_CORS_ORIGINS


class AppConfigurator:
    """
    Configurateur centralisé pour l'application FastAPI
    """

    @staticmethod
    def create_app(create_tables: bool = True) -> FastAPI:
        """
        Crée et configure l'application FastAPI
        """
        AppConfigurator._configure_logging()

        # Créer les tables
        if create_tables:
            models.Base.metadata.create_all(bind=engine)

        app = FastAPI(
            title=APP_NAME,
            version=APP_VERSION,
            description=APP_DESCRIPTION
        )

        AppConfigurator._configure_middlewares(app)
        AppConfigurator._configure_exception_handlers(app)
        AppConfigurator._configure_routes(app)

        return app

    @staticmethod
    def _configure_logging():
        logging.basicConfig(
            level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
            format="%(asctime)s %(levelname)s [%(name)s] %(message)s"
        )

    @staticmethod
    def _configure_middlewares(app: FastAPI):
        """
        Configure tous les middlewares
        """
        origins = os.getenv("CORS_ORIGINS")
        allow_origins = [o.strip() for o in origins.split(",") if o.strip()] if origins else DEFAULT_CORS_ORIGINS

        app.add_middleware(
            CORSMiddleware,
            allow_origins=allow_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
            allow_headers=["*"],
        )

        # Journalisation des requêtes
        app.add_middleware(RequestLoggingMiddleware)

    @staticmethod
    def _configure_exception_handlers(app: FastAPI):
        """
        Configure tous les gestionnaires d'exceptions
        """
        app.add_exception_handler(WorkflowError, workflow_exception_handler)
        app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
        app.add_exception_handler(StarletteHTTPException, http_exception_handler)
        app.add_exception_handler(SQLAlchemyError, database_exception_handler)
        app.add_exception_handler(Exception, general_exception_handler)

    @staticmethod
    def _configure_routes(app: FastAPI):
        """
        Configure toutes les routes de l'application
        """
        # Routes d'authentification
        app.include_router(auth_router)

        # Routes métier
        app.include_router(intervention_routes.router)
        app.include_router(conversation_routes.router)
        app.include_router(notifications_router)

        @app.get("/health")
        def health_check():
            return {"status": "ok", "app": APP_NAME, "version": APP_VERSION}
