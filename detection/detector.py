"""Incremental, resumable duplicate detection over the event catalog."""
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

from botocore.exceptions import ClientError
from sqlalchemy.exc import SQLAlchemyError

from detection.candidates import CandidateRetriever
from detection.config import DetectionConfig
from detection.models import (
    BatchResult,
    DuplicateScore,
    EventSummary,
    MergeRecommendation,
    ScanProgress,
    get_pair_key,
)
from detection.scoring import calculate_duplicate_score, choose_keep_event
from storage.event_store import EventStore
from storage.recommendations import RecommendationStore
from storage.scan_state import ScanStateStore

logger = logging.getLogger(__name__)

DETECTOR_VERSION = '1.2.0'

# Pairs scoring at least this much are logged even below the threshold
DEBUG_SCORE_FLOOR = 0.5


@dataclass
class DetectedDuplicate:
    """Duplicate pair with the event to keep already chosen."""
    keep: EventSummary
    duplicate: EventSummary
    score: DuplicateScore
    keep_reason: str


class DuplicateDetector:
    """Drives one detection batch per invocation."""

    def __init__(
        self,
        event_store: EventStore,
        retriever: CandidateRetriever,
        recommendations: RecommendationStore,
        state_store: ScanStateStore,
        config: DetectionConfig
    ):
        self.event_store = event_store
        self.retriever = retriever
        self.recommendations = recommendations
        self.state_store = state_store
        self.config = config

    def run(self, now: Optional[datetime] = None) -> BatchResult:
        """
        Resume the sweep, analyze one batch and persist progress.

        Store failures are fatal: they propagate and nothing is saved.
        """
        logger.info(
            f"Starting duplicate detection v{DETECTOR_VERSION}",
            extra={
                'agent_id': self.config.agent_id,
                'dry_run': self.config.dry_run,
                'batch_size': self.config.batch_size,
                'min_duplicate_score': self.config.min_duplicate_score
            }
        )
        progress = self.state_store.load(self.config.agent_id)
        logger.info(f"Resuming from event ID {progress.last_processed_event_id}")

        progress, result = self.process_batch(progress, now=now)

        self.state_store.save(self.config.agent_id, progress)
        return result

    def process_batch(
        self,
        progress: ScanProgress,
        now: Optional[datetime] = None
    ) -> Tuple[ScanProgress, BatchResult]:
        """
        Analyze the batch following the progress cursor.

        Args:
            progress: Current sweep state, updated in place
            now: Reference time (default: current UTC time)

        Returns:
            Tuple of (updated progress to persist, batch result)
        """
        start_time = time.time()
        now = now or datetime.now(timezone.utc)

        events = self.event_store.fetch_events_batch(
            progress.last_processed_event_id,
            self.config.batch_size,
            self.config.exclude_statuses
        )
        logger.info(f"Fetched {len(events)} events to analyze")

        if not events:
            return progress, self._complete_sweep(progress, now, start_time)

        events_processed = 0
        duplicates_found = 0
        recommendations_created = 0
        errors: List[str] = []

        for event in events:
            try:
                duplicates = self.analyze_event(event, progress, now)
                events_processed += 1
                duplicates_found += len(duplicates)

                for duplicate in duplicates:
                    if self._emit(duplicate, progress, now):
                        recommendations_created += 1

            except (SQLAlchemyError, ClientError):
                # Store outages abort the whole invocation
                raise
            except Exception as e:
                logger.error(
                    f"Error analyzing event {event.id}: {e}",
                    extra={'event_id': event.id, 'error_type': type(e).__name__},
                    exc_info=True
                )
                errors.append(f"Event {event.id}: {e}")

            # Advance past failed events too so they cannot block the sweep
            progress.last_processed_event_id = event.id

        progress.total_events_analyzed += events_processed
        progress.total_duplicates_found += duplicates_found

        duration = time.time() - start_time
        verb = 'would be created' if self.config.dry_run else 'created'
        prefix = '[DRY RUN] ' if self.config.dry_run else ''
        logger.info(
            f"{prefix}Batch complete: {events_processed} events, "
            f"{duplicates_found} duplicates, {recommendations_created} {verb}",
            extra={
                'events_processed': events_processed,
                'duplicates_found': duplicates_found,
                'recommendations_created': recommendations_created,
                'errors': len(errors),
                'duration_seconds': round(duration, 2)
            }
        )

        if errors:
            message = f"Completed with {len(errors)} errors"
        else:
            message = f"Processed {events_processed} events"

        return progress, BatchResult(
            success=not errors,
            message=message,
            events_processed=events_processed,
            duplicates_found=duplicates_found,
            recommendations_created=recommendations_created,
            last_processed_event_id=progress.last_processed_event_id,
            dry_run=self.config.dry_run,
            duration_seconds=round(duration, 2),
            errors=errors
        )

    def analyze_event(
        self,
        event: EventSummary,
        progress: ScanProgress,
        now: datetime
    ) -> List[DetectedDuplicate]:
        """
        Score an event against its candidates.

        Every scored pair is recorded in ``progress`` so it is not scored
        again before the next purge.
        """
        candidates = self.retriever.find_candidates(event)
        logger.debug(f"Event {event.id} '{event.name}': {len(candidates)} candidates found")

        duplicates = []
        for candidate in candidates:
            pair_key = get_pair_key(event.id, candidate.id)
            if progress.has_pair(pair_key):
                continue

            score = calculate_duplicate_score(
                event,
                candidate,
                self.config.scoring,
                self.config.min_duplicate_score,
                today=now.date()
            )

            if score.score >= DEBUG_SCORE_FLOOR:
                logger.debug(
                    f"Score {event.id} <-> {candidate.id}: {score.score * 100:.1f}% "
                    f"(threshold: {self.config.min_duplicate_score * 100:.0f}%)",
                    extra={'details': score.details.to_dict()}
                )

            progress.record_pair(pair_key, score.score, now.isoformat())

            if not score.is_duplicate:
                continue

            decision = choose_keep_event(event, candidate)
            duplicates.append(DetectedDuplicate(
                keep=decision.keep,
                duplicate=decision.duplicate,
                score=score,
                keep_reason=decision.reason
            ))
            logger.info(
                f"Duplicate detected: '{event.name}' <-> '{candidate.name}' "
                f"(score: {score.score:.2f})",
                extra={
                    'pair_key': pair_key,
                    'keep_event_id': decision.keep.id,
                    'duplicate_event_id': decision.duplicate.id,
                    'reason': decision.reason
                }
            )

        return duplicates

    def build_recommendation(
        self,
        duplicate: DetectedDuplicate,
        now: datetime
    ) -> MergeRecommendation:
        keep, dup, score = duplicate.keep, duplicate.duplicate, duplicate.score
        justification = [{
            'type': 'duplicate_detection',
            'message': (
                f"Potential duplicate detected automatically "
                f"(score: {score.score * 100:.1f}%). Keep reason: {duplicate.keep_reason}"
            ),
            'metadata': {
                'detectionMethod': 'automatic',
                'detectorVersion': DETECTOR_VERSION,
                'scores': score.details.to_dict(),
                'keepEventReason': duplicate.keep_reason,
                'analyzedAt': now.isoformat()
            }
        }]
        return MergeRecommendation(
            keep_event_id=keep.id,
            keep_event_name=keep.name,
            keep_event_city=keep.city,
            keep_event_editions_count=len(keep.editions),
            duplicate_event_id=dup.id,
            duplicate_event_name=dup.name,
            duplicate_event_city=dup.city,
            duplicate_event_editions_count=len(dup.editions),
            confidence=score.score,
            justification=justification
        )

    def _emit(
        self,
        duplicate: DetectedDuplicate,
        progress: ScanProgress,
        now: datetime
    ) -> bool:
        """Emit a recommendation unless an active one already exists."""
        keep, dup = duplicate.keep, duplicate.duplicate

        if self.recommendations.exists_for_pair(keep.id, dup.id):
            logger.debug(f"Skipping - merge recommendation already exists for {keep.id} <-> {dup.id}")
            return False

        if self.config.dry_run:
            logger.info(
                f"[DRY RUN] Would recommend keeping '{keep.name}' ({keep.id}) "
                f"and retiring '{dup.name}' ({dup.id})",
                extra={
                    'score': f"{duplicate.score.score * 100:.1f}%",
                    'details': duplicate.score.details.to_dict(),
                    'keep_reason': duplicate.keep_reason
                }
            )
            return True

        self.recommendations.create(
            self.build_recommendation(duplicate, now),
            self.config.agent_id
        )
        progress.mark_proposal_created(get_pair_key(keep.id, dup.id))
        return True

    def _complete_sweep(
        self,
        progress: ScanProgress,
        now: datetime,
        start_time: float
    ) -> BatchResult:
        progress.last_processed_event_id = 0
        progress.last_full_scan_at = now.isoformat()
        purged = progress.purge_pairs_older_than(
            now - timedelta(days=self.config.rescan_delay_days)
        )
        logger.info(
            f"No more events to process, sweep complete; purged {purged} analyzed pairs",
            extra={'remaining_pairs': len(progress.analyzed_pairs)}
        )
        return BatchResult(
            success=True,
            message='Full scan complete, waiting for next cycle',
            events_processed=0,
            duplicates_found=0,
            recommendations_created=0,
            last_processed_event_id=0,
            sweep_complete=True,
            dry_run=self.config.dry_run,
            duration_seconds=round(time.time() - start_time, 2)
        )
