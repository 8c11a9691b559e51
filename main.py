#!/usr/bin/env python
"""
Main entry point for the Trending Keyword Crawler application
"""
import argparse
import logging
import os
import socket

import uvicorn

from trending_crawler.config import load_config, load_env
from trending_crawler.db.database import Database
from trending_crawler.services.pipeline import TrendingPipeline


def find_free_port():
    """Find a free port on the system"""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(('', 0))
        return s.getsockname()[1]


def run_once():
    """Run a single crawl cycle and exit; a failed cycle raises"""
    config = load_config()
    env = load_env()
    with Database(env["database_url"]) as database:
        database.init_db()
        pipeline = TrendingPipeline.from_config(config, env, database).open()
        try:
            pipeline.run_cycle()
        finally:
            pipeline.close()


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s"
    )
    logger = logging.getLogger("main")

    parser = argparse.ArgumentParser(description="Trending keyword crawler")
    parser.add_argument("--once", action="store_true", help="run one crawl cycle and exit")
    args = parser.parse_args()

    if args.once:
        run_once()
    else:
        try:
            port = int(os.getenv("PORT", 8000))
            with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
                s.bind(('127.0.0.1', port))
        except OSError:
            logger.warning(f"Port {port} is already in use or access is denied. Finding a free port...")
            port = find_free_port()

        logger.info(f"Starting Trending Keyword Crawler on port {port}")
        uvicorn.run("trending_crawler.main:app", host="0.0.0.0", port=port)
