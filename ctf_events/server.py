"""
Main EventSystem class that orchestrates all components.
"""

import asyncio
import logging
from typing import Optional

import aiohttp_cors
from aiohttp import web, web_runner

from .config import EventConfig
from .database import DatabaseManager
from .events import EventService
from .middleware import error_middleware, identity_middleware
from .propagation import SnapshotPropagator
from .questions import QuestionService, QuestionSetService
from .scoring import AnswerEvaluator
from .web_handlers import WebHandlers

logger = logging.getLogger(__name__)


class EventSystem:
    """Async event and scoring system with a JSON API and HTML pages."""

    def __init__(
        self,
        db_path: str = "ctf_events.db",
        web_port: int = 8081,
        config_path: str = "ctf_events.json",
    ) -> None:
        self.web_port = web_port
        self.db_path = db_path

        # Load configuration
        self.config = EventConfig(config_path)
        # Initialize components
        self.db = DatabaseManager(db_path, self.config)
        self.propagator = SnapshotPropagator(self.db)
        self.questions = QuestionService(self.db, self.config, self.propagator)
        self.question_sets = QuestionSetService(self.db, self.propagator)
        self.events = EventService(self.db, self.config)
        self.evaluator = AnswerEvaluator(self.db, self.config)
        self.web_handlers = WebHandlers(
            self.config,
            self.questions,
            self.question_sets,
            self.events,
            self.evaluator,
        )

    async def init_db(self) -> None:
        """
        Initialize the database.

        Creates database tables and performs any necessary setup.
        """
        await self.db.init_db()

    def create_app(self) -> web.Application:
        """
        Build the aiohttp application with every route registered.

        @return: Application ready to be served or handed to a test client
        """
        app = web.Application(middlewares=[error_middleware, identity_middleware])
        handlers = self.web_handlers

        # Setup CORS
        cors = aiohttp_cors.setup(
            app,
            defaults={
                "*": aiohttp_cors.ResourceOptions(
                    allow_credentials=True,
                    expose_headers="*",
                    allow_headers="*",
                    allow_methods="*",
                )
            },
        )

        # Question catalog
        app.router.add_get("/api/questions", handlers.api_list_questions)
        app.router.add_post("/api/questions", handlers.api_create_question)
        app.router.add_get("/api/questions/{question_id}", handlers.api_get_question)
        app.router.add_put("/api/questions/{question_id}", handlers.api_update_question)
        app.router.add_delete("/api/questions/{question_id}", handlers.api_delete_question)

        app.router.add_get("/api/question-sets", handlers.api_list_question_sets)
        app.router.add_post("/api/question-sets", handlers.api_create_question_set)
        app.router.add_get("/api/question-sets/{set_id}", handlers.api_get_question_set)
        app.router.add_put("/api/question-sets/{set_id}", handlers.api_update_question_set)
        app.router.add_delete("/api/question-sets/{set_id}", handlers.api_delete_question_set)

        # Events; fixed paths before /api/events/{event_id}
        app.router.add_get("/api/events", handlers.api_list_events)
        app.router.add_post("/api/events", handlers.api_create_event)
        app.router.add_get("/api/events/active", handlers.api_active_events)
        app.router.add_get("/api/events/user", handlers.api_user_events)
        app.router.add_post("/api/events/join", handlers.api_join_event)
        app.router.add_get("/api/events/{event_id}", handlers.api_get_event)
        app.router.add_put("/api/events/{event_id}", handlers.api_update_event)
        app.router.add_delete("/api/events/{event_id}", handlers.api_delete_event)
        app.router.add_post("/api/events/{event_id}/resync", handlers.api_resync_event)
        app.router.add_get("/api/events/{event_id}/participants", handlers.api_participants)
        app.router.add_get("/api/events/{event_id}/leaderboard", handlers.api_leaderboard)

        # Answering
        answer_path = "/api/events/{event_id}/questions/{question_id}/answer"
        app.router.add_post(answer_path, handlers.api_submit_answer)
        app.router.add_put(answer_path, handlers.api_override_answer)
        app.router.add_get(
            "/api/events/{event_id}/questions/{question_id}/hint", handlers.api_get_hint
        )
        app.router.add_get("/api/events/{event_id}/answers", handlers.api_list_answers)
        app.router.add_get("/api/events/{event_id}/answers/{user_id}", handlers.api_user_answers)
        app.router.add_put(
            "/api/events/{event_id}/categories/{category_name}",
            handlers.api_category_visibility,
        )

        # Conditionally add HTML pages
        if self.config.is_feature_enabled("html_pages_enabled"):
            app.router.add_get("/events/{event_id}", handlers.web_event_board)
            app.router.add_get("/events/{event_id}/leaderboard", handlers.web_leaderboard)

        # Add CORS to all routes
        for route in list(app.router.routes()):
            cors.add(route)

        return app

    async def start_web_server(
        self,
        host: str = "localhost",
        port: Optional[int] = None,
    ) -> web_runner.AppRunner:
        """
        Start the web server.

        @param host: Host address to bind the server to (default "localhost")
        @param port: Port number to use (default uses configured web_port)
        @return: AppRunner instance for the web server
        """
        if port is None:
            port = self.web_port

        app_runner = web_runner.AppRunner(self.create_app())
        await app_runner.setup()

        site = web_runner.TCPSite(app_runner, host, port)
        await site.start()

        logger.info("Web server running on http://%s:%s", host, port)
        return app_runner

    async def run(
        self,
        host: str = "localhost",
        port: Optional[int] = None,
    ) -> None:
        """
        Serve until cancelled.

        @param host: Web server host address (default "localhost")
        @param port: Web server port (default uses configured web_port)
        """
        if port is None:
            port = self.web_port

        runner = await self.start_web_server(host, port)

        print(f"\n{self.config.get('ctf_name')} Running!")
        print(f"Web Interface: http://{host}:{port}")
        print("\nPress Ctrl+C to stop...\n")

        try:
            await asyncio.Event().wait()
        finally:
            logger.info("Shutting down web server")
            await runner.cleanup()

    async def print_events_summary(self) -> None:
        """
        Print every event and its standings to the console.

        Delegates to the database manager's print method.
        """
        await self.db.print_events_summary()
