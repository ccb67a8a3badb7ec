"""
Thread-safe, user-scoped registry of running import runs.

The streaming endpoint registers each run here so other requests can poll its
progress or ask for cancellation. Users can only see and cancel their own runs.
"""

import threading
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Any

logger = logging.getLogger(__name__)

FINISHED_STATUSES = ('completed', 'failed', 'cancelled')


class SafeImportJobManager:
    """Per-user job snapshots plus a cancellation flag for each run."""

    def __init__(self):
        self._jobs_by_user: Dict[str, Dict[str, dict]] = {}
        self._cancel_events: Dict[tuple, threading.Event] = {}
        self._locks_by_user: Dict[str, threading.RLock] = {}
        self._global_lock = threading.RLock()
        self._stats = {
            'jobs_created': 0,
            'jobs_completed': 0,
            'jobs_failed': 0,
            'jobs_cancelled': 0,
            'jobs_cleaned_up': 0,
        }

    def _get_user_lock(self, user_id: str) -> threading.RLock:
        with self._global_lock:
            if user_id not in self._locks_by_user:
                self._locks_by_user[user_id] = threading.RLock()
            return self._locks_by_user[user_id]

    def _increment_stat(self, stat_name: str):
        with self._global_lock:
            self._stats[stat_name] += 1

    def create_job(self, user_id: str, task_id: str, job_data: dict) -> Optional[threading.Event]:
        """
        Register a run for a user.

        Returns:
            threading.Event: the run's cancel flag, or None if the task id is taken
        """
        if not user_id or not task_id:
            logger.error("Cannot create job: user_id and task_id are required")
            return None

        with self._get_user_lock(user_id):
            user_jobs = self._jobs_by_user.setdefault(user_id, {})
            if task_id in user_jobs:
                logger.warning(f"Task {task_id} already exists for user {user_id}")
                return None

            job_copy = dict(job_data)
            job_copy.setdefault('status', 'pending')
            job_copy.setdefault('created_at', datetime.now(timezone.utc).isoformat())
            job_copy['user_id'] = user_id
            job_copy['task_id'] = task_id
            user_jobs[task_id] = job_copy

            cancel_event = threading.Event()
            self._cancel_events[(user_id, task_id)] = cancel_event

        self._increment_stat('jobs_created')
        logger.info(f"Created import job {task_id} for user {user_id}")
        return cancel_event

    def update_job(self, user_id: str, task_id: str, updates: dict) -> bool:
        if not user_id or not task_id:
            return False

        with self._get_user_lock(user_id):
            job = self._jobs_by_user.get(user_id, {}).get(task_id)
            if job is None:
                logger.warning(f"Task {task_id} not found for user {user_id}")
                return False
            previous = job.get('status')
            job.update(updates)
            job['updated_at'] = datetime.now(timezone.utc).isoformat()

        status = updates.get('status')
        if status and status != previous:
            if status == 'completed':
                self._increment_stat('jobs_completed')
            elif status == 'failed':
                self._increment_stat('jobs_failed')
            elif status == 'cancelled':
                self._increment_stat('jobs_cancelled')
        logger.debug(f"Updated job {task_id} for user {user_id}: {list(updates.keys())}")
        return True

    def get_job(self, user_id: str, task_id: str) -> Optional[dict]:
        """Copy of the job snapshot, or None if the user has no such job."""
        if not user_id or not task_id:
            return None
        with self._get_user_lock(user_id):
            job = self._jobs_by_user.get(user_id, {}).get(task_id)
            return dict(job) if job else None

    def get_user_jobs(self, user_id: str) -> Dict[str, dict]:
        if not user_id:
            return {}
        with self._get_user_lock(user_id):
            return {task_id: dict(job) for task_id, job in self._jobs_by_user.get(user_id, {}).items()}

    def request_cancel(self, user_id: str, task_id: str) -> bool:
        """Flag a running job for cancellation. False if unknown or already finished."""
        with self._get_user_lock(user_id):
            job = self._jobs_by_user.get(user_id, {}).get(task_id)
            event = self._cancel_events.get((user_id, task_id))
            if job is None or event is None or job.get('status') in FINISHED_STATUSES:
                return False
            event.set()
            job['cancel_requested'] = True
            job['status'] = 'cancelling'
        logger.info(f"Cancellation requested for job {task_id} (user {user_id})")
        return True

    def delete_job(self, user_id: str, task_id: str) -> bool:
        with self._get_user_lock(user_id):
            user_jobs = self._jobs_by_user.get(user_id, {})
            self._cancel_events.pop((user_id, task_id), None)
            if task_id in user_jobs:
                del user_jobs[task_id]
                return True
            return False

    def cleanup_finished_jobs(self, user_id: str, max_age_hours: int = 24) -> int:
        """Drop finished jobs older than max_age_hours. Returns how many were removed."""
        cutoff = datetime.now(timezone.utc) - timedelta(hours=max_age_hours)
        with self._get_user_lock(user_id):
            user_jobs = self._jobs_by_user.get(user_id, {})
            to_remove = []
            for task_id, job in user_jobs.items():
                if job.get('status') not in FINISHED_STATUSES:
                    continue
                try:
                    created = datetime.fromisoformat(job.get('created_at', ''))
                except (TypeError, ValueError):
                    to_remove.append(task_id)
                    continue
                if created.tzinfo is None:
                    created = created.replace(tzinfo=timezone.utc)
                if created < cutoff:
                    to_remove.append(task_id)
            for task_id in to_remove:
                del user_jobs[task_id]
                self._cancel_events.pop((user_id, task_id), None)

        if to_remove:
            with self._global_lock:
                self._stats['jobs_cleaned_up'] += len(to_remove)
            logger.info(f"Cleaned up {len(to_remove)} old import jobs for user {user_id}")
        return len(to_remove)

    def get_statistics(self) -> Dict[str, Any]:
        with self._global_lock:
            return {
                'total_users_with_jobs': len(self._jobs_by_user),
                'total_jobs': sum(len(jobs) for jobs in self._jobs_by_user.values()),
                'operation_stats': dict(self._stats),
            }


# Process-wide registry used by the import routes
safe_import_manager = SafeImportJobManager()


def safe_create_import_job(user_id: str, task_id: str, job_data: dict) -> Optional[threading.Event]:
    return safe_import_manager.create_job(user_id, task_id, job_data)


def safe_update_import_job(user_id: str, task_id: str, updates: dict) -> bool:
    return safe_import_manager.update_job(user_id, task_id, updates)


def safe_get_import_job(user_id: str, task_id: str) -> Optional[dict]:
    return safe_import_manager.get_job(user_id, task_id)


def safe_cancel_import_job(user_id: str, task_id: str) -> bool:
    return safe_import_manager.request_cancel(user_id, task_id)
