"""
Offline publishing QA — runs the pipeline over exported session artifacts.

Each session artifact is a JSON document with ``sessionId`` (or
``session_id``), a ``transcript`` list and an optional ``sessionState``.
For every session the driver runs extraction, the delta queue and
prepare_batch, then writes ``<sessionId>-offline-qa.json``. When more than
one session is processed an aggregate rollup file is written as well.

Usage:
    lore-pipeline-qa --input artifacts/sessions --output artifacts/offline-qa
"""

import argparse
import json
import logging
import sys
from datetime import timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from lore_pipeline.clock import Clock, utc_now
from lore_pipeline.config import LorePipelineSettings, get_settings
from lore_pipeline.delta.publisher import AlertPublisher, BufferedAlertPublisher
from lore_pipeline.delta.queue import WorldDeltaQueue
from lore_pipeline.errors import ContractViolation, PipelineError
from lore_pipeline.extraction.extractor import EntityExtractor
from lore_pipeline.extraction.lexicon import Lexicon
from lore_pipeline.logging import setup_logging
from lore_pipeline.models.transcript import TranscriptEntry
from lore_pipeline.publishing.cadence import PublishingCadence
from lore_pipeline.publishing.composer import BundleComposer
from lore_pipeline.publishing.coordinator import PublishingCoordinator
from lore_pipeline.search.retry_queue import SearchSyncRetryQueue
from lore_pipeline.telemetry.metrics import PublishingMetrics

logger = logging.getLogger(__name__)

SKIPPED_SUFFIXES = ("-summary.json", "-transcript.json")


def is_session_artifact_file(path: Path) -> bool:
    name = Path(path).name
    if not name.endswith(".json"):
        return False
    if "offline-qa" in name:
        return False
    return not name.endswith(SKIPPED_SUFFIXES)


def resolve_input_targets(input_path: Optional[Path]) -> List[Path]:
    """A single file is taken as-is; a directory yields its session artifacts, sorted."""
    if not input_path:
        raise ContractViolation("offline_qa_requires_input")

    path = Path(input_path)
    if not path.exists():
        raise ContractViolation("offline_qa_input_missing", str(path))
    if not path.is_dir():
        return [path]

    targets = sorted(
        candidate for candidate in path.iterdir()
        if candidate.is_file() and is_session_artifact_file(candidate)
    )
    if not targets:
        raise ContractViolation("offline_qa_no_session_artifacts", str(path))
    return targets


def load_session_artifact(path: Path) -> Dict[str, Any]:
    try:
        artifact = json.loads(Path(path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ContractViolation("offline_qa_input_parse_failed", str(exc))
    if not isinstance(artifact, dict):
        raise ContractViolation(
            "offline_qa_input_invalid", f"{path}: expected a JSON object, got {type(artifact).__name__}"
        )
    return artifact


def sanitize_transcript(transcript: Any) -> List[TranscriptEntry]:
    """Normalise loosely-shaped exported turns and drop the ones without text."""
    entries: List[TranscriptEntry] = []
    if not isinstance(transcript, list):
        return entries
    for index, raw in enumerate(transcript):
        if not isinstance(raw, dict):
            continue
        metadata = raw.get("metadata")
        if not isinstance(metadata, dict):
            metadata = {}
        text = raw.get("text")
        if not isinstance(text, str):
            text = raw.get("content") or ""
        if not isinstance(text, str) or not text.strip():
            continue

        turn_id = raw.get("turnId") or raw.get("turn_id") or raw.get("id") or f"turn-{index + 1}"
        scene_id = raw.get("sceneId") or raw.get("scene_id") or metadata.get("sceneId")
        timestamp = raw.get("timestamp") or metadata.get("timestamp")
        entries.append(TranscriptEntry(
            turn_id=str(turn_id),
            scene_id=str(scene_id) if scene_id is not None else None,
            speaker=raw.get("speaker") or raw.get("role") or "gm",
            text=text,
            timestamp=str(timestamp) if timestamp is not None else None,
            metadata=dict(metadata),
        ))
    return entries


def compose_batch_rollup(summaries: List[Dict[str, Any]]) -> Dict[str, int]:
    rollup = {
        "total_sessions": len(summaries),
        "total_mentions": 0,
        "total_deltas": 0,
        "sessions_with_moderation": 0,
        "sessions_with_capability_violations": 0,
        "sessions_with_conflicts": 0,
        "sessions_with_low_confidence": 0,
    }
    for summary in summaries:
        rollup["total_mentions"] += summary.get("mention_count", 0)
        rollup["total_deltas"] += summary.get("delta_count", 0)
        if summary.get("requires_moderation"):
            rollup["sessions_with_moderation"] += 1
        if summary.get("capability_violations", 0) > 0:
            rollup["sessions_with_capability_violations"] += 1
        if summary.get("conflict_detections", 0) > 0:
            rollup["sessions_with_conflicts"] += 1
        if summary.get("low_confidence_findings", 0) > 0:
            rollup["sessions_with_low_confidence"] += 1
    return rollup


def execute_offline_qa(
    input_path: Path,
    session_id: Optional[str] = None,
    settings: Optional[LorePipelineSettings] = None,
    clock: Optional[Clock] = None,
    publisher: Optional[AlertPublisher] = None,
    seed_canon: bool = False,
) -> Dict[str, Any]:
    """Run one session artifact through the pipeline and return its QA report."""
    settings = settings or get_settings()
    clock = clock or utc_now
    artifact = load_session_artifact(input_path)

    session_id = session_id or artifact.get("sessionId") or artifact.get("session_id")
    if not session_id:
        raise ContractViolation("offline_qa_requires_session_id", str(input_path))

    session_state = artifact.get("sessionState") or artifact.get("session_state")
    if not isinstance(session_state, dict):
        session_state = {}
    transcript = sanitize_transcript(artifact.get("transcript"))

    lexicon = Lexicon.default()
    extraction = EntityExtractor(
        lexicon=lexicon, config=settings.extraction_config()
    ).extract(transcript, session_id=session_id)

    queue = WorldDeltaQueue(
        canon_state=lexicon.canon_state() if seed_canon else {},
        publisher=publisher or BufferedAlertPublisher(),
        config=settings.delta_queue_config(),
        clock=clock,
    )
    deltas = queue.enqueue_from_mentions(extraction.mentions)

    metrics = PublishingMetrics()
    coordinator = PublishingCoordinator(
        clock=clock,
        metrics=metrics,
        cadence=PublishingCadence(clock=clock, config=settings.cadence_config()),
        composer=BundleComposer(clock=clock, metrics=metrics, config=settings.composer_config()),
        retry_queue=SearchSyncRetryQueue(
            clock=clock, metrics=metrics, config=settings.retry_queue_config()
        ),
    )
    preparation = coordinator.prepare_batch(
        session_id,
        session_closed_at=session_state.get("closedAt") or session_state.get("closed_at"),
        deltas=deltas,
        approved_by="qa.offline",
    )

    return {
        "session_id": session_id,
        "generated_at": clock().isoformat(),
        "entity_extraction": {
            "mention_count": len(extraction.mentions),
            "mentions": [m.model_dump(mode="json") for m in extraction.mentions],
        },
        "world_deltas": {
            "delta_count": len(deltas),
            "deltas": [d.model_dump(mode="json") for d in deltas],
        },
        "publishing": {
            "status": preparation.status,
            "schedule": preparation.schedule.model_dump(mode="json"),
            "prepared_batch": (
                preparation.publishing.model_dump(mode="json") if preparation.publishing else None
            ),
            "search_plan": preparation.search_plan.model_dump(mode="json"),
            "moderation_queue": preparation.moderation_queue.model_dump(mode="json"),
        },
        "moderation": preparation.moderation.model_dump(mode="json"),
    }


def summarize_report(report: Dict[str, Any], output_path: Path) -> Dict[str, Any]:
    moderation = report["moderation"]
    schedule = report["publishing"]["schedule"]
    prepared = report["publishing"]["prepared_batch"]
    return {
        "status": "ok",
        "session_id": report["session_id"],
        "mention_count": report["entity_extraction"]["mention_count"],
        "delta_count": report["world_deltas"]["delta_count"],
        "batch_id": prepared["batch_id"] if prepared else schedule["batches"][0]["batch_id"],
        "scheduled_run": prepared["scheduled_at"] if prepared else schedule["batches"][0]["run_at"],
        "output_path": str(output_path),
        "requires_moderation": moderation["requires_moderation"],
        "moderation_reasons": moderation["reasons"],
        "capability_violations": moderation["capability_violations"],
        "conflict_detections": moderation["conflict_detections"],
        "low_confidence_findings": moderation["low_confidence_findings"],
    }


def run_batch(
    input_path: Path,
    output_dir: Path,
    session_id: Optional[str] = None,
    settings: Optional[LorePipelineSettings] = None,
    clock: Optional[Clock] = None,
    seed_canon: bool = False,
) -> Dict[str, Any]:
    """
    Process every target under ``input_path``. A failing session is reported
    as ``{"status": "error", "message": ...}`` and the run moves on.
    """
    clock = clock or utc_now
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    summaries: List[Dict[str, Any]] = []
    for target in resolve_input_targets(input_path):
        try:
            report = execute_offline_qa(
                target,
                session_id=session_id,
                settings=settings,
                clock=clock,
                seed_canon=seed_canon,
            )
        except (PipelineError, ValueError, OSError) as exc:
            logger.error("offline QA failed for %s: %s", target, exc)
            summaries.append({"status": "error", "input": str(target), "message": str(exc)})
            continue

        output_path = output_dir / f"{report['session_id']}-offline-qa.json"
        output_path.write_text(json.dumps(report, indent=2), encoding="utf-8")
        summaries.append(summarize_report(report, output_path))

    if len(summaries) == 1:
        return {"status": summaries[0]["status"], "summary": summaries[0]}

    completed = [s for s in summaries if s["status"] == "ok"]
    rollup = compose_batch_rollup(completed)
    stamp = clock().astimezone(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S-%fZ")
    rollup_path = output_dir / f"offline-qa-batch-rollup-{stamp}.json"
    rollup_path.write_text(json.dumps(rollup, indent=2), encoding="utf-8")

    return {
        "status": "ok" if len(completed) == len(summaries) else "partial",
        "summaries": summaries,
        "rollup": rollup,
        "rollup_path": str(rollup_path),
    }


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lore-pipeline-qa",
        description="Run the offline publishing pipeline over session artifacts",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        '--input', '-i',
        required=True,
        type=Path,
        help='Session artifact file or directory of artifacts'
    )
    parser.add_argument(
        '--output', '-o',
        default=Path('artifacts/offline-qa'),
        type=Path,
        help='Output directory for QA reports'
    )
    parser.add_argument(
        '--session', '-s',
        default=None,
        help='Override the session id found in the artifact'
    )
    parser.add_argument(
        '--seed-canon',
        action='store_true',
        help='Diff against the default lexicon world state instead of an empty canon'
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable debug logging'
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    setup_logging("DEBUG" if args.verbose else settings.LOG_LEVEL)

    try:
        payload = run_batch(
            args.input,
            args.output,
            session_id=args.session,
            settings=settings,
            seed_canon=args.seed_canon,
        )
    except PipelineError as exc:
        print(json.dumps({"status": "error", "message": str(exc)}, indent=2), file=sys.stderr)
        return 1

    print(json.dumps(payload, indent=2))
    return 0 if payload["status"] == "ok" else 1


if __name__ == "__main__":
    sys.exit(main())
