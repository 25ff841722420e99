"""Component factory for LifeGit.

Creates and wires the store, completion client, event bus and the
lifecycle services once, so callers receive fully-initialized instances
instead of reaching for process-wide singletons.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from lifegit.commits.ledger import CommitLedger
from lifegit.core.config import AppConfig, PromptLoader, default_config_dir, load_config
from lifegit.core.events import EventBus
from lifegit.core.exceptions import ConfigError
from lifegit.db.engine import DatabaseEngine
from lifegit.db.memory import InMemoryStore
from lifegit.db.repository import Repository
from lifegit.db.store import Store
from lifegit.lifecycle.manager import BranchLifecycleManager
from lifegit.lifecycle.versioning import VersionEvaluator
from lifegit.llm.client import CompletionClient, DeepSeekClient
from lifegit.planning.editor import TaskPlanEditor
from lifegit.planning.failure_policy import AIFailurePolicy, Sleeper
from lifegit.planning.generator import TaskPlanGenerator
from lifegit.planning.progress import ProgressTracker

logger = logging.getLogger("lifegit.factory")


@dataclass
class ComponentBundle:
    """Container for all initialized components.

    Presentation code takes the services it needs from this bundle; the
    factory builds it once per process (or per CLI invocation).
    """

    config: AppConfig
    store: Store
    llm_client: CompletionClient
    events: EventBus
    ledger: CommitLedger
    tracker: ProgressTracker
    generator: TaskPlanGenerator
    policy: AIFailurePolicy
    editor: TaskPlanEditor
    manager: BranchLifecycleManager
    db_engine: Optional[DatabaseEngine] = None


class ComponentFactory:
    """Factory for creating and wiring all LifeGit services.

    Usage:
        bundle = ComponentFactory.create(env="test")
        creation = await bundle.manager.create_branch("Learn Go", "...")
        await ComponentFactory.close(bundle)
    """

    @staticmethod
    def create(
        config_dir: Optional[Path] = None,
        env: Optional[str] = None,
        api_key: Optional[str] = None,
        initialize_schema: bool = True,
        config: Optional[AppConfig] = None,
        llm_client: Optional[CompletionClient] = None,
        sleep: Optional[Sleeper] = None,
    ) -> ComponentBundle:
        """Create and wire all components.

        Args:
            config_dir: Path to config/ directory. Default: project root/config.
            env: Environment name for config overlay (e.g. "test").
            api_key: Completion API key. Falls back to the env var named by
                llm.api_key_env. A missing key is not fatal: plan generation
                then fails with AuthenticationError and the manual plan is used.
            initialize_schema: Whether to run schema.sql for the PostgreSQL backend.
            config: Pre-built config; skips the YAML cascade when given.
            llm_client: Completion client override (tests, alternative providers).
            sleep: Async sleep used for retry backoff.

        Returns:
            ComponentBundle with every service ready to use.
        """
        logger.info("Initializing components...")

        # --- Config ---
        if config is None:
            config = load_config(config_dir=config_dir, env=env)
        logger.info("Config loaded (storage=%s)", config.storage.backend)

        # --- Storage ---
        db_engine: Optional[DatabaseEngine] = None
        store: Store
        if config.storage.backend == "postgresql":
            db_engine = DatabaseEngine(config.database)
            if initialize_schema:
                db_engine.initialize_schema()
                logger.info("Database schema initialized")
            store = Repository(db_engine)
        elif config.storage.backend == "memory":
            store = InMemoryStore()
        else:
            raise ConfigError(f"Unknown storage backend '{config.storage.backend}'")

        # --- LLM ---
        if llm_client is None:
            if api_key is None:
                try:
                    api_key = config.api_key()
                except ConfigError as e:
                    logger.warning("%s; AI plans will fall back to manual plans", e)
                    api_key = ""
            llm_client = DeepSeekClient(config=config.llm, api_key=api_key)
            logger.info("LLM client configured (base_url=%s)", config.llm.base_url)

        # --- Services ---
        jsonl_path = Path(config.events.jsonl_path) if config.events.jsonl_path else None
        events = EventBus(jsonl_path=jsonl_path)
        ledger = CommitLedger(store, events=events)
        tracker = ProgressTracker()
        prompts = PromptLoader((config_dir or default_config_dir()) / "prompts")
        generator = TaskPlanGenerator(llm_client, config=config.llm, prompts=prompts)
        policy = AIFailurePolicy(config.retry, sleep=sleep)
        editor = TaskPlanEditor(store, ledger, tracker=tracker, events=events)
        manager = BranchLifecycleManager(
            store,
            generator,
            policy,
            ledger,
            tracker=tracker,
            config=config.lifecycle,
            events=events,
            versioning=VersionEvaluator(config.versioning),
        )

        logger.info("All components initialized")

        return ComponentBundle(
            config=config,
            store=store,
            llm_client=llm_client,
            events=events,
            ledger=ledger,
            tracker=tracker,
            generator=generator,
            policy=policy,
            editor=editor,
            manager=manager,
            db_engine=db_engine,
        )

    @staticmethod
    async def close(bundle: ComponentBundle) -> None:
        """Cleanly shut down all components."""
        close_client = getattr(bundle.llm_client, "close", None)
        if close_client is not None:
            await close_client()
        bundle.store.close()
        logger.info("All components shut down")
