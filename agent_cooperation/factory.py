"""Application factory for creating FastAPI instances."""

from contextlib import asynccontextmanager
from typing import Optional, Tuple
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import AppConfig, get_config, validate_config
from .agents.builtin import register_builtin_agents
from .core.agent_registry import AgentRegistry
from .core.execution_engine import WorkflowEngine
from .core.interfaces import WorkflowPlanner
from .core.logging import setup_logging, get_logger
from .core.middleware import ErrorHandlingMiddleware, PerformanceMonitoringMiddleware
from .storage.audit import SqlAuditSink
from .storage.database import Database
from .api.endpoints import router


def initialize_database(config: AppConfig, logger) -> Optional[Database]:
    """Create the audit database, or return None when auditing is disabled."""
    if not config.audit_enabled:
        logger.info("Audit trail disabled")
        return None

    try:
        database = Database(config.database_url, echo=config.database_echo)
        database.create_tables()
        return database
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise


def initialize_core_components(config: AppConfig, agent_registry: AgentRegistry,
                               database: Optional[Database], logger,
                               planner: Optional[WorkflowPlanner] = None) -> Tuple[Optional[SqlAuditSink], WorkflowEngine]:
    """Build the audit sink and the workflow engine around the agent registry."""
    audit_sink = SqlAuditSink(database) if database is not None else None
    engine = WorkflowEngine(
        agent_runner=agent_registry,
        agent_lookup=agent_registry,
        audit_sink=audit_sink,
        config=config,
        planner=planner
    )
    logger.info("Core components initialized")
    return audit_sink, engine


def create_lifespan_handler(config: AppConfig, agent_registry: AgentRegistry,
                            planner: Optional[WorkflowPlanner] = None):
    """Create the application lifespan handler."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger = setup_logging(
            level=config.log_level.value,
            log_file=config.log_file,
            log_format=config.log_format,
            structured=config.log_structured,
            max_size=config.log_max_size,
            backup_count=config.log_backup_count
        )
        logger.info(f"Starting {config.app_name} v{config.app_version}")

        database = initialize_database(config, logger)
        register_builtin_agents(agent_registry)
        audit_sink, engine = initialize_core_components(config, agent_registry, database, logger, planner)

        app.state.config = config
        app.state.agent_registry = agent_registry
        app.state.database = database
        app.state.audit_sink = audit_sink
        app.state.engine = engine

        logger.info("Application startup completed successfully")

        yield

        logger.info(f"Shutting down {config.app_name}")
        if database is not None:
            try:
                database.dispose()
            except Exception as e:
                logger.error(f"Error disposing database engine: {str(e)}")

    return lifespan


def create_app(config: Optional[AppConfig] = None,
               agent_registry: Optional[AgentRegistry] = None,
               planner: Optional[WorkflowPlanner] = None) -> FastAPI:
    """Create and configure a FastAPI application instance.

    Args:
        config: Settings to use; loaded from the environment when omitted
        agent_registry: Registry holding the agents workflows may reference;
            the built-in agents are added to it at startup
        planner: Optional planner backing POST /api/v1/workflows/from-description
    """
    if config is None:
        config = get_config()

    validate_config(config)

    app = FastAPI(
        title=config.app_name,
        description="Create, store and execute multi-agent workflows",
        version=config.app_version,
        debug=config.debug,
        lifespan=create_lifespan_handler(config, agent_registry or AgentRegistry(), planner)
    )

    if config.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    if config.enable_performance_monitoring:
        app.add_middleware(PerformanceMonitoringMiddleware, slow_request_threshold=config.slow_request_threshold)
    app.add_middleware(ErrorHandlingMiddleware)

    app.include_router(router)

    add_health_endpoints(app, config)

    return app


def add_health_endpoints(app: FastAPI, config: AppConfig) -> None:
    """Add health check endpoints to the application."""

    @app.get("/")
    async def root():
        """Root endpoint for basic health check."""
        return {"message": f"{config.app_name} is running", "version": config.app_version}

    @app.get("/health")
    async def health_check():
        """Basic health check endpoint."""
        engine = getattr(app.state, "engine", None)
        registry = getattr(app.state, "agent_registry", None)
        return {
            "status": "healthy" if engine is not None else "starting",
            "service": config.app_name.lower().replace(" ", "-"),
            "version": config.app_version,
            "workflows_running": len(engine.guard.running()) if engine is not None else 0,
            "registered_agents": len(registry.list_agents()) if registry is not None else 0,
            "audit_enabled": config.audit_enabled
        }
