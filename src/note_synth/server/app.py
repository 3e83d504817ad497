"""HTTP API exposing the task intelligence services."""

import hashlib
import hmac
import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from note_synth import __version__
from note_synth.config import Config, load_config
from note_synth.intelligence.coverage import CoverageAnalyzer
from note_synth.intelligence.dependencies import insert_bridging_tasks
from note_synth.intelligence.drafts import (
    DraftErrorCode,
    DraftGenerationError,
    DraftGenerator,
    DraftPipeline,
)
from note_synth.intelligence.gaps import MissingTaskError, detect_gaps
from note_synth.intelligence.quality import QualityEvaluator, summarize_quality
from note_synth.intelligence.reflections import rank_with_reflections
from note_synth.intelligence.retry import RetryQueue
from note_synth.intelligence.strategic import StrategicScorer, apply_sorting_strategy
from note_synth.llm.client import LLMClient, LLMError
from note_synth.models.reviews import ReviewDocument
from note_synth.models.scoring import SortingStrategy
from note_synth.models.tasks import (
    BridgingTaskInput,
    Gap,
    PlanTask,
    Reflection,
    RelationshipType,
    Task,
    TaskRelationship,
)
from note_synth.orchestrator.agents import (
    GeneratorValidationError,
    ManualPlacementAgent,
    PrioritizationContext,
    PrioritizationEvaluator,
    PrioritizationGenerator,
)
from note_synth.orchestrator.loop import HybridPrioritizationLoop
from note_synth.orchestrator.orchestrator import AgentOrchestrator
from note_synth.orchestrator.placement import (
    ManualTaskInvalidStateError,
    ManualTaskNotFoundError,
    ManualTaskPlacementError,
    ManualTaskPlacer,
)
from note_synth.reviews.aggregator import AggregatorConfig, ReviewAggregator
from note_synth.reviews.formatter import digest_as_json, lint_report_as_json
from note_synth.reviews.linter import lint_review
from note_synth.reviews.parser import parse_review
from note_synth.store import NotFoundError, TaskStore

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Signature-256"


@dataclass
class Services:
    """Everything the request handlers need, built once per app."""

    config: Config
    store: TaskStore
    client: LLMClient | None
    quality: QualityEvaluator
    scorer: StrategicScorer
    placer: ManualTaskPlacer | None
    aggregator: ReviewAggregator


def build_services(
    config: Config,
    store: TaskStore | None = None,
    client: LLMClient | None = None,
) -> Services:
    """Wire services from configuration.

    Args:
        config: Application configuration
        store: Existing store (a fresh one by default)
        client: LLM client (built from config when an API key is set)
    """
    store = store or TaskStore()
    client = client or LLMClient.from_config(config)

    placer = None
    if client is not None:
        placer = ManualTaskPlacer(
            store,
            ManualPlacementAgent(client),
            client=client,
            timeout_seconds=config.prioritization.manual_task_timeout_seconds,
            duplicate_threshold=config.scoring.manual_duplicate_threshold,
        )

    return Services(
        config=config,
        store=store,
        client=client,
        quality=QualityEvaluator(
            client,
            chunk_size=config.scoring.quality_batch_size,
            chunk_delay_seconds=config.scoring.quality_batch_delay_seconds,
        ),
        scorer=StrategicScorer(
            client,
            retry_queue=RetryQueue(),
            concurrency=config.scoring.max_concurrency,
            on_rescored=store.save_score,
        ),
        placer=placer,
        aggregator=ReviewAggregator(
            AggregatorConfig(similarity_threshold=config.reviews.similarity_threshold)
        ),
    )


def build_prioritization_loop(client: LLMClient, config: Config) -> HybridPrioritizationLoop:
    """Generator plus a single evaluator, or an evaluator panel when several models are set."""
    settings = config.prioritization
    evaluators = [
        PrioritizationEvaluator(client, agent_id=f"evaluator-{model}", model=model)
        for model in settings.evaluator_models
    ]
    evaluator_timeout = settings.evaluator_timeout_seconds
    if len(evaluators) > 1:
        evaluator = AgentOrchestrator(evaluators, timeout_seconds=evaluator_timeout)
        # One retry round per panel run
        evaluator_timeout *= 2
    else:
        evaluator = evaluators[0] if evaluators else PrioritizationEvaluator(client)

    return HybridPrioritizationLoop(
        PrioritizationGenerator(client),
        evaluator,
        max_iterations=settings.max_iterations,
        generator_timeout_seconds=settings.generator_timeout_seconds,
        evaluator_timeout_seconds=evaluator_timeout,
    )


def verify_signature(payload: bytes, signature: str, secret: str) -> bool:
    """Verify a request body signature.

    Args:
        payload: Raw request body
        signature: X-Signature-256 header value ("sha256=<hex>")
        secret: Shared signing secret

    Returns:
        True if signature is valid
    """
    if not signature.startswith("sha256="):
        return False

    expected = "sha256=" + hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature)


def _require_list(payload: dict[str, Any], key: str) -> list[Any]:
    value = payload.get(key)
    if not isinstance(value, list):
        raise HTTPException(status_code=400, detail=f"'{key}' must be a list")
    return value


def _require_text(payload: dict[str, Any], key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value.strip():
        raise HTTPException(status_code=400, detail=f"'{key}' is required")
    return value.strip()


def _positive_int(payload: dict[str, Any], key: str, default: int) -> int:
    value = payload.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise HTTPException(status_code=400, detail=f"'{key}' must be a positive integer")
    return value


def _parse_datetime(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _parse_tasks(raw_tasks: list[Any]) -> list[Task]:
    try:
        return [
            Task(
                id=str(raw["id"]),
                text=str(raw["text"]),
                created_at=_parse_datetime(raw.get("created_at")),
                embedding=raw.get("embedding"),
            )
            for raw in raw_tasks
        ]
    except (KeyError, TypeError, ValueError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid task: {e}") from e


def _parse_relationships(raw_relationships: list[Any]) -> list[TaskRelationship]:
    try:
        return [
            TaskRelationship(
                source_task_id=str(raw["source_task_id"]),
                target_task_id=str(raw["target_task_id"]),
                relationship_type=RelationshipType(raw.get("relationship_type", "prerequisite")),
                confidence=float(raw.get("confidence", 1.0)),
            )
            for raw in raw_relationships
        ]
    except (KeyError, TypeError, ValueError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid relationship: {e}") from e


def _parse_plan(raw_plan: list[Any]) -> list[PlanTask]:
    try:
        return [
            PlanTask(
                id=str(raw["id"]),
                text=str(raw["text"]),
                estimated_hours=float(raw.get("estimated_hours", 8)),
                depends_on=[str(d) for d in raw.get("depends_on") or []],
            )
            for raw in raw_plan
        ]
    except (KeyError, TypeError, ValueError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid plan task: {e}") from e


def _require_client(services: Services) -> LLMClient:
    if services.client is None:
        raise HTTPException(status_code=503, detail="LLM client is not configured")
    return services.client


def create_app(
    config: Config | None = None,
    services: Services | None = None,
) -> FastAPI:
    """Create the FastAPI application.

    Args:
        config: Configuration (loaded from config.yaml when omitted)
        services: Prebuilt services, mainly for tests

    Returns:
        FastAPI application
    """
    if services is None:
        services = build_services(config or load_config())
    config = services.config

    signing_secret = config.server.signing_secret

    app = FastAPI(
        title="note-synth",
        description="Task intelligence and prioritization API",
        version=__version__,
    )
    app.state.services = services

    async def read_payload(request: Request) -> dict[str, Any]:
        """Verify the signature (when configured) and decode the JSON body."""
        body = await request.body()

        if signing_secret:
            signature = request.headers.get(SIGNATURE_HEADER, "")
            if not verify_signature(body, signature, signing_secret):
                raise HTTPException(status_code=401, detail="Invalid signature")

        if not body:
            return {}
        try:
            payload = json.loads(body)
        except json.JSONDecodeError as e:
            raise HTTPException(status_code=400, detail=f"Invalid JSON: {e}") from e
        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="Request body must be a JSON object")
        return payload

    @app.exception_handler(LLMError)
    async def llm_error_handler(request: Request, exc: LLMError) -> JSONResponse:
        logger.error(f"LLM failure on {request.url.path}: {exc}")
        return JSONResponse(status_code=502, content={"detail": str(exc)})

    @app.exception_handler(GeneratorValidationError)
    async def generator_error_handler(request: Request, exc: GeneratorValidationError) -> JSONResponse:
        logger.error(f"Unusable generator output on {request.url.path}: {exc}")
        return JSONResponse(status_code=502, content={"detail": f"Prioritization failed: {exc}"})

    @app.exception_handler(TimeoutError)
    async def timeout_handler(request: Request, exc: TimeoutError) -> JSONResponse:
        logger.error(f"Agent timed out on {request.url.path}")
        return JSONResponse(status_code=502, content={"detail": "LLM agent timed out"})

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.get(config.server.health_check_path)
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "service": "note-synth"}

    @app.get("/")
    async def root():
        """Root endpoint with service info."""
        return {
            "service": "note-synth",
            "version": __version__,
            "endpoints": {
                "health": config.server.health_check_path,
                "quality": "/quality",
                "coverage": "/coverage",
                "drafts": "/drafts",
                "dependencies": "/dependencies/insert",
                "gaps": "/gaps",
                "strategic": "/strategic/score",
                "reflections": "/reflections/adjust",
                "manual_tasks": "/manual-tasks",
                "prioritize": "/prioritize",
                "reviews": "/reviews/lint",
            },
        }

    @app.post("/quality")
    async def evaluate_quality(payload: dict[str, Any] = Depends(read_payload)):
        """Score task clarity, with AI evaluation when an LLM is configured."""
        raw_tasks = _require_list(payload, "tasks")
        items = []
        for i, raw in enumerate(raw_tasks):
            if isinstance(raw, str):
                raw = {"id": str(i + 1), "text": raw}
            if not isinstance(raw, dict) or not str(raw.get("text", "")).strip():
                raise HTTPException(status_code=400, detail=f"Task {i} has no text")
            items.append({"id": str(raw.get("id", i + 1)), "text": str(raw["text"])})

        results = await services.quality.evaluate_batch(
            items, force_heuristic=bool(payload.get("force_heuristic", False))
        )
        return {
            "results": [{"task_id": r.task_id, **r.metadata.to_dict()} for r in results],
            "summary": asdict(summarize_quality(results)),
        }

    @app.post("/coverage")
    async def analyze_coverage(payload: dict[str, Any] = Depends(read_payload)):
        """Compare the outcome with the centroid of the task embeddings."""
        client = _require_client(services)
        outcome = _require_text(payload, "outcome")
        tasks = _parse_tasks(_require_list(payload, "tasks"))

        missing = [t for t in tasks if not t.embedding]
        if missing:
            vectors = await client.embed_many([t.text for t in missing])
            for task, vector in zip(missing, vectors):
                task.embedding = vector

        analyzer = CoverageAnalyzer(
            client,
            threshold=config.scoring.coverage_threshold / 100,
            dimension=config.embeddings.dimension,
        )
        analysis = await analyzer.analyze(
            outcome, [t.text for t in tasks], [t.embedding for t in tasks]
        )
        return {
            "coverage_percentage": analysis.coverage_percentage,
            "missing_areas": analysis.missing_areas,
            "task_count": analysis.task_count,
            "threshold_used": analysis.threshold_used,
            "should_generate_drafts": analysis.should_generate_drafts,
            "analyzed_at": analysis.analyzed_at.isoformat(),
        }

    @app.post("/drafts")
    async def generate_drafts(payload: dict[str, Any] = Depends(read_payload)):
        """Propose draft tasks for missing outcome coverage."""
        client = _require_client(services)
        outcome = _require_text(payload, "outcome")
        tasks = _parse_tasks(_require_list(payload, "tasks"))
        relationships = _parse_relationships(payload.get("relationships") or [])
        max_per_area = _positive_int(payload, "max_per_area", 3)

        missing = [t for t in tasks if not t.embedding]
        if missing:
            vectors = await client.embed_many([t.text for t in missing])
            for task, vector in zip(missing, vectors):
                task.embedding = vector

        pipeline = DraftPipeline(
            CoverageAnalyzer(
                client,
                threshold=config.scoring.coverage_threshold / 100,
                dimension=config.embeddings.dimension,
            ),
            DraftGenerator(client),
            duplicate_threshold=config.scoring.draft_duplicate_threshold,
        )
        try:
            plan = await pipeline.run(outcome, tasks, relationships, max_per_area=max_per_area)
        except DraftGenerationError as e:
            status = 400 if e.code is DraftErrorCode.VALIDATION_ERROR else 502
            raise HTTPException(
                status_code=status, detail={"error": str(e), "code": e.code.value, **e.metadata}
            ) from e

        return {
            "coverage_percentage": plan.coverage.coverage_percentage,
            "missing_areas": plan.coverage.missing_areas,
            "drafts": [d.to_dict() for d in plan.drafts],
            "deduplication_stats": asdict(plan.stats),
            "dependency_pass_triggered": plan.dependency_pass_triggered,
            "dependency_error": plan.dependency_error,
        }

    @app.post("/dependencies/insert")
    async def insert_dependencies(payload: dict[str, Any] = Depends(read_payload)):
        """Insert bridging tasks into a plan between a predecessor and successor."""
        raw_gap = payload.get("gap")
        if not isinstance(raw_gap, dict):
            raise HTTPException(status_code=400, detail="'gap' is required")
        try:
            gap = Gap(
                predecessor_id=str(raw_gap["predecessor_id"]),
                successor_id=str(raw_gap["successor_id"]),
            )
            bridging = [
                BridgingTaskInput(text=str(raw.get("text", "")), estimated_hours=float(raw["estimated_hours"]))
                for raw in _require_list(payload, "bridging_tasks")
            ]
        except (KeyError, TypeError, ValueError) as e:
            raise HTTPException(status_code=400, detail=f"Invalid request: {e}") from e

        use_store = "plan" not in payload
        plan = services.store.plan if use_store else _parse_plan(_require_list(payload, "plan"))

        result = insert_bridging_tasks(gap, bridging, plan)
        if not result.success:
            status = 409 if "circular" in (result.error or "") else 400
            raise HTTPException(status_code=status, detail=result.error)

        if use_store and result.updated_plan is not None:
            services.store.plan = result.updated_plan
        return {
            "success": True,
            "inserted_ids": result.inserted_ids,
            "updated_plan": [asdict(t) for t in result.updated_plan or []],
        }

    @app.post("/gaps")
    async def find_gaps(payload: dict[str, Any] = Depends(read_payload)):
        """Detect likely missing work between consecutive tasks."""
        task_ids = [str(t) for t in _require_list(payload, "task_ids")]
        tasks = dict(services.store.tasks)
        tasks.update({t.id: t for t in _parse_tasks(payload.get("tasks") or [])})
        relationships = services.store.relationships + _parse_relationships(
            payload.get("relationships") or []
        )

        try:
            analysis = detect_gaps(task_ids, tasks, relationships)
        except MissingTaskError as e:
            raise HTTPException(status_code=404, detail=str(e)) from e
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e

        return {
            "gaps": [
                {
                    "id": g.id,
                    "predecessor_task_id": g.predecessor_task_id,
                    "successor_task_id": g.successor_task_id,
                    "indicators": asdict(g.indicators),
                    "confidence": g.confidence,
                    "detected_at": g.detected_at.isoformat(),
                }
                for g in analysis.gaps
            ],
            "metadata": {
                "total_pairs_analyzed": analysis.total_pairs_analyzed,
                "gaps_detected": analysis.gaps_detected,
                "analysis_duration_ms": analysis.analysis_duration_ms,
            },
        }

    @app.post("/strategic/score")
    async def score_tasks(payload: dict[str, Any] = Depends(read_payload)):
        """Score tasks for impact, effort and confidence and sort them."""
        try:
            strategy = SortingStrategy(payload.get("strategy", "balanced"))
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e

        if payload.get("tasks") is not None:
            tasks = _parse_tasks(_require_list(payload, "tasks"))
        elif payload.get("task_ids") is not None:
            tasks = services.store.list_tasks([str(t) for t in _require_list(payload, "task_ids")])
        else:
            tasks = services.store.list_tasks()
        if not tasks:
            raise HTTPException(status_code=400, detail="No tasks to score")

        outcome = payload.get("outcome")
        if outcome is None and services.store.active_outcome():
            outcome = services.store.active_outcome().text

        scores = await services.scorer.score_tasks(
            tasks,
            outcome=outcome,
            similarity_scores=payload.get("similarity_scores"),
            dependency_scores=payload.get("dependency_scores"),
            history_scores=payload.get("history_scores"),
            session_id=payload.get("session_id"),
        )
        for score in scores.values():
            await services.store.save_score(score)

        ordered = apply_sorting_strategy(
            list(scores.values()), strategy, {t.id: t.text for t in tasks}
        )
        return {
            "strategy": strategy.value,
            "scores": {task_id: s.to_dict() for task_id, s in scores.items()},
            "ordered_task_ids": [s.task_id for s in ordered],
            "retry_status": services.scorer.retry_queue.status(payload.get("session_id")),
        }

    @app.post("/reflections/adjust")
    async def adjust_with_reflections(payload: dict[str, Any] = Depends(read_payload)):
        """Re-rank a plan against active reflections."""
        ordered = [str(t) for t in payload.get("ordered_task_ids") or []]
        confidence = payload.get("confidence_scores") or {}
        texts = payload.get("task_texts") or {t.id: t.text for t in services.store.tasks.values()}

        if payload.get("reflections") is not None:
            try:
                reflections = [
                    Reflection(
                        id=str(raw["id"]),
                        text=str(raw["text"]),
                        created_at=_parse_datetime(raw.get("created_at")) or datetime.now(),
                        is_active=bool(raw.get("is_active", True)),
                    )
                    for raw in _require_list(payload, "reflections")
                ]
            except (KeyError, TypeError, ValueError) as e:
                raise HTTPException(status_code=400, detail=f"Invalid reflection: {e}") from e
        else:
            reflections = services.store.active_reflections()

        try:
            adjusted = rank_with_reflections(ordered, confidence, texts, reflections)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e

        return {
            "ordered_task_ids": adjusted.ordered_task_ids,
            "confidence_scores": adjusted.confidence_scores,
            "moved": [asdict(m) for m in adjusted.moved],
            "filtered": adjusted.filtered,
            "adjusted_at": adjusted.adjusted_at.isoformat(),
        }

    @app.post("/prioritize")
    async def prioritize(payload: dict[str, Any] = Depends(read_payload)):
        """Run the generator/evaluator loop over the stored tasks."""
        client = _require_client(services)
        store = services.store

        outcome = store.active_outcome()
        outcome_text = payload.get("outcome") or (outcome.text if outcome else None)
        if not outcome_text:
            raise HTTPException(status_code=400, detail="No active outcome to prioritize against")

        if payload.get("task_ids") is not None:
            tasks = store.list_tasks([str(t) for t in _require_list(payload, "task_ids")])
        else:
            tasks = store.list_tasks()
        if not tasks:
            raise HTTPException(status_code=400, detail="No tasks to prioritize")

        context = PrioritizationContext(
            outcome=outcome_text,
            tasks=tasks,
            reflections=[r.text for r in store.active_reflections()],
            previous_plan=store.latest_plan,
        )
        loop = build_prioritization_loop(client, config)
        result = await loop.run(context)
        store.latest_plan = result.plan

        return {
            "plan": result.plan.to_dict(),
            "metadata": {
                "iterations": result.metadata.iterations,
                "duration_ms": result.metadata.duration_ms,
                "evaluation_triggered": result.metadata.evaluation_triggered,
                "converged": result.metadata.converged,
                "final_confidence": result.metadata.final_confidence,
            },
        }

    def require_placer() -> ManualTaskPlacer:
        if services.placer is None:
            raise HTTPException(status_code=503, detail="LLM client is not configured")
        return services.placer

    @app.post("/manual-tasks")
    async def create_manual_task(payload: dict[str, Any] = Depends(read_payload)):
        """Add a user-authored task and place it against the active outcome."""
        placer = require_placer()
        text = _require_text(payload, "text")
        outcome_id = payload.get("outcome_id")
        if outcome_id is None and services.store.active_outcome():
            outcome_id = services.store.active_outcome().id

        try:
            manual, analysis = await placer.create(text, outcome_id)
        except ManualTaskPlacementError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        return {"task_id": manual.task_id, **analysis.to_dict()}

    @app.get("/manual-tasks/{task_id}")
    async def manual_task_status(task_id: str):
        """Current placement state of a manual task."""
        try:
            manual = require_placer().get_status(task_id)
        except ManualTaskNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e)) from e
        return {
            "task_id": manual.task_id,
            "status": manual.status.value,
            "agent_rank": manual.agent_rank,
            "placement_reason": manual.placement_reason,
            "exclusion_reason": manual.exclusion_reason,
            "duplicate_task_id": manual.duplicate_task_id,
            "similarity_score": manual.similarity_score,
        }

    @app.post("/manual-tasks/{task_id}/override")
    async def override_manual_task(task_id: str, payload: dict[str, Any] = Depends(read_payload)):
        """Send a discarded manual task back for re-analysis."""
        placer = require_placer()
        try:
            analysis = await placer.override_discard(task_id, payload.get("user_justification"))
        except ManualTaskNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e)) from e
        except ManualTaskInvalidStateError as e:
            raise HTTPException(status_code=409, detail=str(e)) from e
        except ManualTaskPlacementError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        return {"task_id": task_id, **analysis.to_dict()}

    @app.post("/outcomes/{outcome_id}/invalidate-manual-tasks")
    async def invalidate_manual_tasks(outcome_id: str, payload: dict[str, Any] = Depends(read_payload)):
        """Discard prioritized manual tasks after the outcome changed."""
        count = require_placer().invalidate_manual_tasks(outcome_id)
        return {"outcome_id": outcome_id, "invalidated": count}

    @app.post("/reviews/lint")
    async def lint_reviews(payload: dict[str, Any] = Depends(read_payload)):
        """Lint one or more Markdown review documents."""
        documents = _review_documents(payload)
        results = {
            doc.source: lint_review(doc, config.reviews.disabled_rules) for doc in documents
        }
        return lint_report_as_json(results)

    @app.post("/reviews/digest")
    async def digest_reviews(payload: dict[str, Any] = Depends(read_payload)):
        """Consolidate issues across several review passes."""
        return digest_as_json(services.aggregator.aggregate(_review_documents(payload)))

    return app


def _review_documents(payload: dict[str, Any]) -> list[ReviewDocument]:
    if isinstance(payload.get("content"), str):
        raw_documents = [{"source": payload.get("source") or "document-1", "content": payload["content"]}]
    else:
        raw_documents = _require_list(payload, "documents")

    documents = []
    for i, raw in enumerate(raw_documents):
        if not isinstance(raw, dict) or not isinstance(raw.get("content"), str):
            raise HTTPException(status_code=400, detail=f"Document {i} has no content")
        documents.append(parse_review(raw["content"], source=str(raw.get("source") or f"document-{i + 1}")))
    return documents
