import logging

from fastapi import FastAPI

from trending_crawler.config import load_config, load_env
from trending_crawler.db.database import Database
from trending_crawler.routers import trending
from trending_crawler.services.pipeline import TrendingPipeline
from trending_crawler.services.scheduler import CycleScheduler

logger = logging.getLogger("app")


def create_app(database: Database = None, scheduler: CycleScheduler = None) -> FastAPI:
    """
    Build the API application.

    When no database or scheduler is passed in, they are created from the
    config file and environment on startup and torn down on shutdown.
    """
    app = FastAPI(title="Trending Keyword Crawler")
    app.include_router(trending.router, prefix="/api", tags=["trending"])
    app.state.database = database
    app.state.scheduler = scheduler
    app.state.pipeline = None

    @app.on_event("startup")
    async def startup_event():
        logger.info("Initializing application...")
        config = load_config()
        env = load_env()

        if app.state.database is None:
            app.state.database = Database(env["database_url"]).open()
        app.state.database.init_db()
        logger.info("Database tables created")

        if app.state.scheduler is None:
            pipeline = TrendingPipeline.from_config(config, env, app.state.database).open()
            app.state.pipeline = pipeline
            app.state.scheduler = CycleScheduler(pipeline, interval_minutes=config["crawl_interval_minutes"])
            app.state.scheduler.start(run_immediately=config["run_on_startup"])

    @app.on_event("shutdown")
    async def shutdown_event():
        if app.state.scheduler is not None:
            app.state.scheduler.shutdown(wait=True)
        if app.state.pipeline is not None:
            app.state.pipeline.close()
        if app.state.database is not None:
            app.state.database.close()

    @app.get("/")
    async def root():
        return {"message": "Trending Keyword Crawler API is running"}

    return app


app = create_app()
